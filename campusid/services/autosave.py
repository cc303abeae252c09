import asyncio
import contextlib
import logging
from datetime import datetime
from typing import TypedDict

from ledger.codec import encode_entries, encode_identities
from ledger.errors import PersistenceError
from ledger.gateway import ATTENDANCE_FILENAME, IDENTITY_FILENAME, PersistenceGateway
from ledger.store import LedgerStore, Snapshot

logger = logging.getLogger(__name__)


def _write_snapshot(gateway: PersistenceGateway, snapshot: Snapshot) -> None:
    # Runs in a worker thread: inline images make encoding expensive.
    gateway.write_named(IDENTITY_FILENAME, encode_identities(snapshot.identities).encode("utf-8"))
    gateway.write_named(ATTENDANCE_FILENAME, encode_entries(snapshot.entries).encode("utf-8"))


class SaveStatus(TypedDict):
    connected: bool
    target: str | None
    dirty: bool
    saving: bool
    last_saved: str | None   # ISO string
    last_error: str | None
    interval_seconds: float


class AutosaveScheduler:
    """
    Moves the store from Dirty back to Clean by writing both files.

    - a periodic timer saves when dirty, skipping a tick if a write is
      already in flight;
    - ``flush`` (before navigating away, on shutdown) waits for the write;
    - one lock serializes all writes to the target.
    """

    def __init__(self, store: LedgerStore, interval_seconds: float):
        self.store = store
        self.interval_seconds = interval_seconds
        self.gateway: PersistenceGateway | None = None
        self.last_error: str | None = None
        self._write_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def saving(self) -> bool:
        return self._write_lock.locked()

    def status(self) -> SaveStatus:
        last_saved = self.store.last_saved
        return {
            "connected": self.gateway is not None,
            "target": repr(self.gateway) if self.gateway is not None else None,
            "dirty": self.store.dirty,
            "saving": self.saving,
            "last_saved": last_saved.isoformat(timespec="seconds") if last_saved else None,
            "last_error": self.last_error,
            "interval_seconds": self.interval_seconds,
        }

    async def save(self, *, force: bool = False) -> bool:
        """Write both collections to the gateway.

        Returns True when the target holds the current ledger afterwards.
        Failures are logged and leave the store dirty.
        """
        gateway = self.gateway
        if gateway is None:
            return False

        async with self._write_lock:
            if not force and not self.store.dirty:
                return True

            # Snapshot before the first await so both files match one revision.
            snapshot = self.store.snapshot()
            try:
                await asyncio.to_thread(_write_snapshot, gateway, snapshot)
            except PersistenceError as e:
                self.last_error = str(e)
                logger.warning("Auto-save failed: %s", e)
                return False

            self.last_error = None
            clean = self.store.mark_clean(snapshot.revision, datetime.now())
            logger.info(
                "Saved %d identities and %d entries (rev %d)",
                len(snapshot.identities),
                len(snapshot.entries),
                snapshot.revision,
            )
            return clean

    async def flush(self) -> bool:
        """Pre-navigation hook: wait for unsaved changes to reach storage.

        Without a configured target there is nothing to wait for.
        """
        if self.gateway is None:
            return not self.store.dirty
        return await self.save()

    async def tick(self) -> None:
        if self.gateway is None or not self.store.dirty or self.saving:
            return
        if await self.save():
            logger.info("Auto-save successful.")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tick()
            except Exception as e:
                # The timer must survive a gateway that raises something unexpected.
                self.last_error = str(e)
                logger.exception("Auto-save tick crashed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="campusid-autosave")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
