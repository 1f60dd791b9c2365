"""Room-scoped JSON documents kept in the key-value store."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any, Callable

from .errors import ConflictError
from .state import build_envelope, utc_now_iso
from .store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_ROOM = "default"
MAX_ROOM_LENGTH = 64
KEY_PREFIX = "tablekeeper"

_UNSAFE_ROOM_CHARS = re.compile(r"[^\w\-:.]", re.ASCII)


def resolve_room(raw: str | None) -> str:
    """Turn a caller-supplied room name into a safe storage-key suffix."""
    room = (raw or "").strip() or DEFAULT_ROOM
    safe = _UNSAFE_ROOM_CHARS.sub("_", room[:MAX_ROOM_LENGTH])
    return safe or DEFAULT_ROOM


def document_key(namespace: str, room: str) -> str:
    return f"{KEY_PREFIX}:{namespace}:{room}"


class DocumentSchema:
    """Validation and normalization rules for one kind of room document.

    Subclasses set ``namespace`` and override ``seed`` and ``normalize``.
    ``visible_to_players`` trims the body for readers other than the operator.
    """

    namespace = ""

    def seed(self) -> Any:
        return None

    def normalize(self, payload: Any, current: Any) -> Any:
        return payload

    def visible_to_players(self, data: Any) -> Any:
        return data


@dataclass
class RoomDocumentService:
    store: KeyValueStore
    schema: DocumentSchema

    def get(self, room: str) -> dict[str, Any] | None:
        return self.store.get(document_key(self.schema.namespace, room))

    def get_or_seed(self, room: str) -> dict[str, Any]:
        envelope = self.get(room)
        if envelope is not None:
            return envelope
        envelope = build_envelope(room=room, data=self.schema.seed(), version=1)
        self.store.set(document_key(self.schema.namespace, room), envelope)
        logger.info("Seeded %s document for room %s", self.schema.namespace, room)
        return envelope

    def put(self, room: str, payload: Any, expected_version: int | None = None) -> dict[str, Any]:
        """Normalize payload against the stored document and persist the result."""
        return self.update(
            room=room,
            mutate=lambda current: self.schema.normalize(payload, current),
            expected_version=expected_version,
        )

    def update(
        self,
        room: str,
        mutate: Callable[[Any], Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        """Replace the whole document with ``mutate(current_data)``.

        Without ``expected_version`` the later write wins. With it, a write
        against a different stored version is rejected before anything is saved.
        A room with no stored document starts from the seed at version 0, and
        nothing reaches the store unless ``mutate`` returns.
        """
        current = self.get(room)
        if current is None:
            current = build_envelope(room=room, data=self.schema.seed(), version=0)
        current_version = int(current.get("version", 0))
        if expected_version is not None and expected_version != current_version:
            logger.info(
                "Rejected stale %s write for room %s: expected v%d, stored v%d",
                self.schema.namespace,
                room,
                expected_version,
                current_version,
            )
            raise ConflictError(
                "Document changed since it was read",
                reason="version_conflict",
                details={"expected": expected_version, "current": current_version},
            )

        data = mutate(current.get("data"))
        envelope = build_envelope(room=room, data=data, version=current_version + 1, updated_at=utc_now_iso())
        self.store.set(document_key(self.schema.namespace, room), envelope)
        logger.info("Stored %s document for room %s at v%d", self.schema.namespace, room, envelope["version"])
        return envelope
