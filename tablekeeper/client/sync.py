"""Client-side synchronization for room documents.

Readers poll the room endpoint and apply a response only when it is newer
than what they already show. Writers push the whole document after every
change, optionally guarded by the version they last saw.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Awaitable, Callable, Literal

import httpx

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.5
AUTOSAVE_DELAY = 0.45


class SaveFailed(Exception):
    """A user-initiated write did not reach the store; local state is untouched."""


class VersionConflict(SaveFailed):
    """The document changed on the server since the writer last read it."""


@dataclass
class PollingSynchronizer:
    """Decides whether a polled document should replace the local view.

    Every request is tagged with an increasing sequence number so that a slow
    response can never overwrite one that was issued later.
    """

    last_applied_stamp: str = ""
    _issued: int = field(default=0, init=False)
    _latest_seen: int = field(default=0, init=False)

    def next_sequence(self) -> int:
        self._issued += 1
        return self._issued

    def offer(self, sequence: int, envelope: dict[str, Any] | None) -> bool:
        """Return True when ``envelope`` should be applied to the local view."""
        if envelope is None or sequence <= self._latest_seen:
            return False
        self._latest_seen = sequence

        stamp = envelope.get("lastUpdatedAt") or ""
        if not stamp or stamp == self.last_applied_stamp:
            return False
        self.last_applied_stamp = stamp
        return True

    def mark_written(self, envelope: dict[str, Any]) -> None:
        """Record our own write so its echo is ignored and older polls are discarded."""
        self._latest_seen = self._issued
        self.last_applied_stamp = envelope.get("lastUpdatedAt") or self.last_applied_stamp


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise SaveFailed("response was not JSON") from exc
    if not isinstance(body, dict):
        raise SaveFailed("response was not a JSON object")
    return body


@dataclass
class RoomClient:
    http: httpx.Client
    resource: str
    room: str = "default"
    token: str | None = None

    @property
    def path(self) -> str:
        return f"/api/{self.resource}"

    def _headers(self, base_version: int | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if base_version is not None:
            headers["If-Match"] = f'"{base_version}"'
        return headers

    def fetch_strict(self) -> dict[str, Any] | None:
        """Fetch the envelope; raise SaveFailed when the request itself fails."""
        try:
            response = self.http.get(self.path, params={"room": self.room}, headers=self._headers())
        except httpx.HTTPError as exc:
            raise SaveFailed(f"Could not read {self.resource}") from exc
        if response.status_code != 200:
            raise SaveFailed(f"Reading {self.resource} returned {response.status_code}")
        envelope = _json_object(response).get("data")
        if envelope is not None and not isinstance(envelope, dict):
            raise SaveFailed(f"Reading {self.resource} returned no document")
        return envelope

    def fetch(self) -> dict[str, Any] | None:
        """Background read: failures yield None and leave the caller's view as is."""
        try:
            return self.fetch_strict()
        except SaveFailed as exc:
            logger.debug("Poll of %s/%s skipped: %s", self.resource, self.room, exc)
            return None

    def push(self, data: Any, base_version: int | None = None) -> dict[str, Any]:
        try:
            response = self.http.put(
                self.path,
                params={"room": self.room},
                headers=self._headers(base_version),
                json=data,
            )
        except httpx.HTTPError as exc:
            raise SaveFailed("save failed") from exc
        if response.status_code == 409:
            raise VersionConflict("document changed on the server")
        if response.status_code != 200:
            raise SaveFailed(f"save failed ({response.status_code})")
        envelope = _json_object(response).get("data")
        if not isinstance(envelope, dict):
            raise SaveFailed("save response carried no document")
        return envelope


def poll_once(
    client: RoomClient,
    synchronizer: PollingSynchronizer,
    apply: Callable[[dict[str, Any]], None],
) -> bool:
    sequence = synchronizer.next_sequence()
    envelope = client.fetch()
    if envelope is None or not synchronizer.offer(sequence, envelope):
        return False
    apply(envelope)
    return True


async def run_poller(
    client: RoomClient,
    synchronizer: PollingSynchronizer,
    apply: Callable[[dict[str, Any]], None],
    interval: float = DEFAULT_POLL_INTERVAL,
) -> None:
    """Poll until cancelled. Cancel the task when the view closes or the room changes."""
    while True:
        await asyncio.to_thread(poll_once, client, synchronizer, apply)
        await asyncio.sleep(interval)


def save_with_retry(
    client: RoomClient,
    mutate: Callable[[Any], Any],
    attempts: int = 3,
) -> dict[str, Any]:
    """Apply ``mutate`` to the latest document and write it back.

    On a version conflict the document is read again and the mutation replayed,
    up to ``attempts`` times.
    """
    for attempt in range(1, attempts + 1):
        current = client.fetch_strict()
        base_version = int(current["version"]) if current is not None else None
        data = mutate(current["data"] if current is not None else None)
        try:
            return client.push(data, base_version=base_version)
        except VersionConflict:
            logger.info("Conflict writing %s/%s (attempt %d of %d)", client.resource, client.room, attempt, attempts)
    raise VersionConflict(f"gave up after {attempts} conflicting writes")


class Debouncer:
    """Runs ``callback`` once ``delay`` seconds after the last ``trigger``.

    Only the pending timer is cancelled; a callback that already started runs
    to completion.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], delay: float = AUTOSAVE_DELAY) -> None:
        self.callback = callback
        self.delay = delay
        self._timer: asyncio.TimerHandle | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> None:
        """Wait for callbacks that already started."""
        if self._running:
            await asyncio.gather(*self._running)

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.callback())
        self._running.add(task)
        task.add_done_callback(self._running.discard)


SaveStatus = Literal["idle", "saving", "saved", "error"]


class Autosaver:
    """Debounced autosave for a single document, e.g. a character sheet.

    ``status`` moves to "saving" on every change and to "saved" or "error"
    once the debounced write of the newest change finishes; a write that an
    edit overtook leaves the status at "saving". A failed save is not retried;
    the next change schedules a fresh attempt.
    """

    def __init__(self, save: Callable[[Any], Any], delay: float = AUTOSAVE_DELAY) -> None:
        self._save = save
        self._latest: Any = None
        self._revision = 0
        self.status: SaveStatus = "idle"
        self.debouncer = Debouncer(self._write, delay=delay)

    def changed(self, document: Any) -> None:
        self._latest = document
        self._revision += 1
        self.status = "saving"
        self.debouncer.trigger()

    def close(self) -> None:
        self.debouncer.cancel()

    async def _write(self) -> None:
        revision, document = self._revision, self._latest
        try:
            await asyncio.to_thread(self._save, document)
        except SaveFailed:
            logger.warning("Autosave of change %d failed", revision)
            if revision == self._revision:
                self.status = "error"
            return
        if revision == self._revision:
            self.status = "saved"


@dataclass
class CharacterClient:
    http: httpx.Client
    token: str

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def load(self, username: str) -> Any:
        response = self.http.get("/api/character", params={"username": username}, headers=self._headers())
        if response.status_code != 200:
            return None
        return _json_object(response).get("sheet")

    def save(self, sheet: Any) -> str:
        try:
            response = self.http.put("/api/character", json={"sheet": sheet}, headers=self._headers())
        except httpx.HTTPError as exc:
            raise SaveFailed("save failed") from exc
        if response.status_code != 200:
            raise SaveFailed(f"save failed ({response.status_code})")
        return str(_json_object(response).get("lastUpdatedAt") or "")
