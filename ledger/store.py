import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from typing import TypedDict

from ledger.models import AttendanceEntry, DailyStatus, Identity
from ledger.reconciliation import StatusMutation

logger = logging.getLogger(__name__)


class DailyReportRow(TypedDict):
    user_id: str
    name: str
    role: str
    department: str
    status: DailyStatus
    entry_id: str | None
    timestamp: str | None
    confidence: float | None


class DailySummary(TypedDict):
    date: str
    total: int
    present: int
    late: int
    absent: int


@dataclass(frozen=True)
class Snapshot:
    identities: tuple[Identity, ...]
    entries: tuple[AttendanceEntry, ...]
    revision: int


class LedgerStore:
    """In-memory roster and attendance log plus the unsaved-changes flag.

    The attendance log is kept newest first. Every mutation bumps
    ``revision`` and marks the store dirty; ``mark_clean`` only succeeds for
    the revision that was actually written.
    """

    def __init__(self) -> None:
        self._identities: list[Identity] = []
        self._entries: list[AttendanceEntry] = []
        self._dirty = False
        self._revision = 0
        self.last_saved: datetime | None = None

    # -----------------------------
    # Reads
    # -----------------------------
    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def revision(self) -> int:
        return self._revision

    def identities(self) -> tuple[Identity, ...]:
        return tuple(self._identities)

    def entries(self) -> tuple[AttendanceEntry, ...]:
        return tuple(self._entries)

    def snapshot(self) -> Snapshot:
        return Snapshot(self.identities(), self.entries(), self._revision)

    def get_identity(self, identity_id: str) -> Identity | None:
        return next((u for u in self._identities if u.id == identity_id), None)

    def entries_on(self, day: date) -> list[AttendanceEntry]:
        return [e for e in self._entries if e.day == day]

    # -----------------------------
    # Mutations
    # -----------------------------
    def _touch(self) -> None:
        self._revision += 1
        self._dirty = True

    def register(self, identity: Identity) -> None:
        if self.get_identity(identity.id) is not None:
            raise ValueError(f"Identity {identity.id} already exists.")
        self._identities.append(identity)
        self._touch()

    def delete_identity(self, identity_id: str) -> bool:
        # Past entries keep their denormalized name/role and stay in the log.
        before = len(self._identities)
        self._identities = [u for u in self._identities if u.id != identity_id]
        if len(self._identities) == before:
            return False
        self._touch()
        return True

    def add_entries(self, entries: Iterable[AttendanceEntry]) -> int:
        new = list(entries)
        if not new:
            return 0
        self._entries = new + self._entries
        self._touch()
        return len(new)

    def apply(self, mutation: StatusMutation) -> bool:
        if mutation.kind == "none":
            return False
        if mutation.kind == "delete":
            assert mutation.previous is not None
            removed = mutation.removed_ids()
            self._entries = [e for e in self._entries if e.id not in removed]
        elif mutation.kind == "update":
            assert mutation.entry is not None
            removed = mutation.removed_ids()
            self._entries = [
                mutation.entry if e.id == mutation.entry.id else e for e in self._entries if e.id not in removed
            ]
        elif mutation.kind == "insert":
            assert mutation.entry is not None
            self._entries.append(mutation.entry)
        self._touch()
        return True

    def replace_identities(self, identities: Iterable[Identity]) -> None:
        identities = list(identities)
        if len({u.id for u in identities}) != len(identities):
            raise ValueError("Roster contains duplicate identity ids")
        self._identities = identities
        self._touch()

    def replace_entries(self, entries: Iterable[AttendanceEntry]) -> None:
        self._entries = list(entries)
        self._touch()

    def load(self, identities: Iterable[Identity], entries: Iterable[AttendanceEntry], loaded_at: datetime) -> None:
        """Replace both collections with freshly read storage contents."""
        self._identities = list(identities)
        self._entries = list(entries)
        self._revision += 1
        self._dirty = False
        self.last_saved = loaded_at

    def mark_clean(self, revision: int, saved_at: datetime) -> bool:
        self.last_saved = saved_at
        if revision != self._revision:
            logger.info("Ledger changed during save (rev %d -> %d); staying dirty", revision, self._revision)
            return False
        self._dirty = False
        return True


def daily_report(identities: Iterable[Identity], entries: Iterable[AttendanceEntry], day: date) -> list[DailyReportRow]:
    """Status of every roster identity on ``day``; Absent is derived, never stored."""
    by_user: dict[str, AttendanceEntry] = {}
    for e in entries:
        if e.day == day:
            by_user.setdefault(e.user_id, e)
    rows: list[DailyReportRow] = []
    for identity in identities:
        entry = by_user.get(identity.id)
        rows.append(
            {
                "user_id": identity.id,
                "name": identity.name,
                "role": identity.role,
                "department": identity.department,
                "status": entry.status if entry else "Absent",
                "entry_id": entry.id if entry else None,
                "timestamp": entry.timestamp.isoformat() if entry else None,
                "confidence": entry.confidence if entry else None,
            }
        )
    return rows


def summarize(rows: list[DailyReportRow], day: date) -> DailySummary:
    present = sum(1 for r in rows if r["status"] == "Present")
    late = sum(1 for r in rows if r["status"] == "Late")
    absent = sum(1 for r in rows if r["status"] == "Absent")
    return {
        "date": day.isoformat(),
        "total": len(rows),
        "present": present,
        "late": late,
        "absent": absent,
    }
