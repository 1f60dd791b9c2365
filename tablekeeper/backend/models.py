"""Domain records shared by services and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Actor:
    username: str
    is_dm: bool

    @property
    def role(self) -> str:
        return "dm" if self.is_dm else "player"


@dataclass(frozen=True)
class LoginResult:
    username: str
    token: str
    role: str
    expires_at: str


@dataclass(frozen=True)
class ResetTicket:
    username: str
    token: str
    expires_in_seconds: int


@dataclass(frozen=True)
class CombatUpdate:
    envelope: dict[str, Any]
    events: list[dict[str, Any]]
