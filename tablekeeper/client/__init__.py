"""Client helpers for following and editing room documents."""

from .sync import (
    Autosaver,
    CharacterClient,
    Debouncer,
    PollingSynchronizer,
    RoomClient,
    SaveFailed,
    VersionConflict,
    poll_once,
    run_poller,
    save_with_retry,
)

__all__ = [
    "Autosaver",
    "CharacterClient",
    "Debouncer",
    "poll_once",
    "PollingSynchronizer",
    "RoomClient",
    "run_poller",
    "save_with_retry",
    "SaveFailed",
    "VersionConflict",
]
