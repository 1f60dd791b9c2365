"""Per-user character sheets."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from .accounts import USERS_SET_KEY, validate_username
from .errors import AuthorizationError
from .models import Actor
from .rooms import KEY_PREFIX
from .state import utc_now_iso
from .store import KeyValueStore

logger = logging.getLogger(__name__)


def character_key(username: str) -> str:
    return f"{KEY_PREFIX}:character:{username}"


@dataclass
class CharacterService:
    store: KeyValueStore

    def get_sheet(self, actor: Actor, username: str) -> dict[str, Any] | None:
        """Return the stored record ({sheet, lastUpdatedAt}) for self or, as DM, anyone."""
        username = validate_username(username)
        if not actor.is_dm and actor.username != username:
            raise AuthorizationError("Character sheets are private to their owner")
        return self.store.get(character_key(username))

    def save_sheet(self, actor: Actor, sheet: Any) -> dict[str, Any]:
        record = {"sheet": sheet, "lastUpdatedAt": utc_now_iso()}
        self.store.set(character_key(actor.username), record)
        if not actor.is_dm:
            self.store.add_to_set(USERS_SET_KEY, actor.username)
        logger.debug("Saved character sheet for %s", actor.username)
        return record
