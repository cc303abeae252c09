import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, TypedDict

from campusid.oracle import MatchOracle
from campusid.services.autosave import AutosaveScheduler
from ledger.codec import decode_entries, decode_identities
from ledger.errors import LedgerError, NotFoundError, PersistenceError
from ledger.gateway import (
    ATTENDANCE_FILENAME,
    IDENTITY_FILENAME,
    RECOMMENDED_FOLDER_NAME,
    DirectoryGateway,
)
from ledger.models import AttendanceEntry, DailyStatus, Identity, local_date, new_id
from ledger.reconciliation import (
    OutcomeCode,
    StatusMutation,
    describe_outcome,
    find_registered_duplicate,
    submit_recognition,
    update_status,
)
from ledger.store import LedgerStore

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 6


class RegistrationBlocked(LedgerError):
    def __init__(self, existing: Identity):
        super().__init__(f"Face already matches {existing.name}.")
        self.existing = existing


class RecognitionOutcome(TypedDict):
    outcome: OutcomeCode
    message: str
    new_entries: list[dict[str, Any]]
    already_present_count: int
    low_confidence_rejected: bool
    reasoning: str | None


class ConnectResult(TypedDict):
    target: str
    identities: int
    entries: int
    missing: list[str]
    recommended_folder: bool


def identity_payload(identity: Identity, *, include_image: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": identity.id,
        "name": identity.name,
        "role": identity.role,
        "department": identity.department,
        "registered_at": identity.registered_at.isoformat(),
    }
    if include_image:
        payload["image"] = identity.image
    return payload


def entry_payload(entry: AttendanceEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "role": entry.role,
        "timestamp": entry.timestamp.isoformat(),
        "date": entry.day.isoformat(),
        "status": entry.status,
        "confidence": entry.confidence,
    }


class LedgerService:
    """Owns the ledger and runs every user-facing operation against it.

    Oracle calls and storage I/O run in worker threads; everything that reads
    or writes the store happens on the event loop between those awaits.
    """

    def __init__(
        self,
        oracle: MatchOracle,
        *,
        late_threshold: time,
        manual_entry_time: time,
        autosave_interval: float,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = LedgerStore()
        self.autosave = AutosaveScheduler(self.store, autosave_interval)
        self.oracle = oracle
        self.late_threshold = late_threshold
        self.manual_entry_time = manual_entry_time
        self.clock = clock

    # -----------------------------
    # Storage target
    # -----------------------------
    async def connect(self, folder: Path) -> ConnectResult:
        """Use ``folder`` as the storage target and load whatever it holds.

        Both files are decoded before anything changes, so a malformed file
        leaves the current ledger and target untouched. Unsaved changes are
        flushed to the previous target first; if that fails the switch is
        refused with PersistenceError.
        """
        gateway = DirectoryGateway(folder)
        await asyncio.to_thread(gateway.check)

        recommended = gateway.root.name == RECOMMENDED_FOLDER_NAME
        if not recommended:
            logger.warning(
                "Storage folder '%s' is not the recommended '%s' folder",
                gateway.root.name,
                RECOMMENDED_FOLDER_NAME,
            )

        missing: list[str] = []
        identities: list[Identity] = []
        entries: list[AttendanceEntry] = []
        try:
            raw = await asyncio.to_thread(gateway.read_named, IDENTITY_FILENAME)
            identities = decode_identities(raw)
        except NotFoundError:
            logger.info("No existing %s found in %s", IDENTITY_FILENAME, gateway.root)
            missing.append(IDENTITY_FILENAME)
        try:
            raw = await asyncio.to_thread(gateway.read_named, ATTENDANCE_FILENAME)
            entries = decode_entries(raw)
        except NotFoundError:
            logger.info("No existing %s found in %s", ATTENDANCE_FILENAME, gateway.root)
            missing.append(ATTENDANCE_FILENAME)

        if self.autosave.gateway is not None and self.store.dirty:
            logger.warning("Switching storage target; flushing unsaved changes to the previous one first")
            if not await self.autosave.flush():
                raise PersistenceError(
                    f"Unsaved changes could not be written to the current storage folder: {self.autosave.last_error}"
                )

        self.autosave.gateway = gateway
        self.autosave.last_error = None
        self.store.load(identities, entries, self.clock())
        logger.info("Connected to %s: %d identities, %d entries", gateway.root, len(identities), len(entries))
        return {
            "target": str(gateway.root),
            "identities": len(identities),
            "entries": len(entries),
            "missing": missing,
            "recommended_folder": recommended,
        }

    # -----------------------------
    # Roster
    # -----------------------------
    async def register(self, name: str, role: str, department: str, image: str) -> Identity:
        roster = self.store.identities()
        if roster:
            result = await asyncio.to_thread(self.oracle.match, image, roster)
            duplicate = find_registered_duplicate(result, self.store.identities())
            if duplicate is not None:
                logger.info("Registration of %s blocked: matches %s", name, duplicate.id)
                raise RegistrationBlocked(duplicate)

        identity = Identity(
            id=new_id(),
            name=name,
            role=role,
            department=department,
            image=image,
            registered_at=self.clock(),
        )
        self.store.register(identity)
        logger.info("Registered %s (%s)", identity.name, identity.id)
        return identity

    def delete_identity(self, identity_id: str) -> bool:
        deleted = self.store.delete_identity(identity_id)
        if deleted:
            logger.info("Deleted identity %s", identity_id)
        return deleted

    # -----------------------------
    # Attendance
    # -----------------------------
    async def recognize(self, probe_image: str) -> RecognitionOutcome:
        result = await asyncio.to_thread(self.oracle.match, probe_image, self.store.identities())

        # Snapshot after the await: other requests may have changed the log.
        reconciliation = submit_recognition(
            result.matches,
            self.store.identities(),
            self.store.entries(),
            self.clock(),
            self.late_threshold,
        )
        self.store.add_entries(reconciliation.new_entries)
        outcome, message = describe_outcome(reconciliation)
        logger.info(
            "Recognition: %s (%d new, %d already present, low_confidence=%s)",
            outcome,
            len(reconciliation.new_entries),
            reconciliation.already_present_count,
            reconciliation.low_confidence_rejected,
        )
        return {
            "outcome": outcome,
            "message": message,
            "new_entries": [entry_payload(e) for e in reconciliation.new_entries],
            "already_present_count": reconciliation.already_present_count,
            "low_confidence_rejected": reconciliation.low_confidence_rejected,
            "reasoning": result.reasoning,
        }

    def update_status(self, identity_id: str, status: DailyStatus, day: date) -> StatusMutation:
        mutation = update_status(
            identity_id,
            status,
            day,
            self.store.identities(),
            self.store.entries(),
            self.manual_entry_time,
        )
        if self.store.apply(mutation):
            logger.info("Manual status %s for %s on %s (%s)", status, identity_id, day, mutation.kind)
        return mutation

    def dashboard(self) -> dict[str, Any]:
        today = local_date(self.clock())
        entries = self.store.entries()
        return {
            "total_registered": len(self.store.identities()),
            "present_today": sum(1 for e in entries if e.day == today),
            "total_logs": len(entries),
            "recent": [entry_payload(e) for e in entries[:RECENT_ACTIVITY_LIMIT]],
            "late_threshold": self.late_threshold.strftime("%H:%M"),
        }

    # -----------------------------
    # Import
    # -----------------------------
    def import_identities(self, data: bytes) -> int:
        identities = decode_identities(data)
        self.store.replace_identities(identities)
        logger.info("Roster restored from import: %d identities", len(identities))
        return len(identities)

    def import_entries(self, data: bytes) -> int:
        entries = decode_entries(data)
        self.store.replace_entries(entries)
        logger.info("Attendance restored from import: %d entries", len(entries))
        return len(entries)
