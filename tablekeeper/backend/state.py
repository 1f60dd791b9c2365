"""State builders for room documents and encounters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_initial_encounter() -> dict[str, Any]:
    """Return an empty encounter: round 1, cursor on the first slot."""
    return {
        "round": 1,
        "turnIndex": 0,
        "combatants": [],
    }


def build_envelope(room: str, data: Any, version: int, updated_at: str | None = None) -> dict[str, Any]:
    """Wrap a document body with the metadata every reader relies on."""
    return {
        "room": room,
        "version": version,
        "lastUpdatedAt": updated_at if updated_at is not None else utc_now_iso(),
        "data": data,
    }
