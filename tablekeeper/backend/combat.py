"""Encounter persistence and access rules for the combat tracker."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

from .documents import EncounterSchema
from .engine import apply_combat_action
from .errors import AuthorizationError
from .models import Actor, CombatUpdate
from .rooms import RoomDocumentService
from .store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class CombatService:
    """Keeps one encounter per room.

    ``shared`` decides who may read it: when False the encounter stays private
    to the DM's table, when True every signed-in player can follow along.
    Writes are always DM-only.
    """

    store: KeyValueStore
    shared: bool = False
    documents: RoomDocumentService = field(init=False)

    def __post_init__(self) -> None:
        self.documents = RoomDocumentService(store=self.store, schema=EncounterSchema())

    def get(self, actor: Actor, room: str) -> dict[str, Any]:
        if not actor.is_dm and not self.shared:
            raise AuthorizationError("The encounter is private to the DM", reason="combat_private")
        return self.documents.get_or_seed(room)

    def apply(
        self,
        actor: Actor,
        room: str,
        action: dict[str, Any],
        expected_version: int | None = None,
    ) -> CombatUpdate:
        self._require_dm(actor)
        events: list[dict[str, Any]] = []

        def mutate(current: Any) -> dict[str, Any]:
            result = apply_combat_action(state=current or self.documents.schema.seed(), action=action)
            events.extend(result.engine_events)
            return result.state

        envelope = self.documents.update(room=room, mutate=mutate, expected_version=expected_version)
        logger.debug("Combat action %s in room %s produced %d events", action.get("type"), room, len(events))
        return CombatUpdate(envelope=envelope, events=events)

    def replace(
        self,
        actor: Actor,
        room: str,
        payload: Any,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        self._require_dm(actor)
        return self.documents.put(room=room, payload=payload, expected_version=expected_version)

    def _require_dm(self, actor: Actor) -> None:
        if not actor.is_dm:
            raise AuthorizationError("Only the DM can change the encounter")
