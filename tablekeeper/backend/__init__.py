"""Backend package for the campaign companion."""

from .config import BackendSettings, load_settings
from .engine import apply_combat_action, sort_combatants
from .rooms import DocumentSchema, RoomDocumentService, document_key, resolve_room
from .security import client_password_hash, generate_token, hash_secret, verify_secret
from .state import build_envelope, build_initial_encounter
from .store import InMemoryKeyValueStore, KeyValueStore, PostgresKeyValueStore, create_store

__all__ = [
    "apply_combat_action",
    "BackendSettings",
    "build_envelope",
    "build_initial_encounter",
    "client_password_hash",
    "create_store",
    "document_key",
    "DocumentSchema",
    "generate_token",
    "hash_secret",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "load_settings",
    "PostgresKeyValueStore",
    "resolve_room",
    "RoomDocumentService",
    "sort_combatants",
    "verify_secret",
]
