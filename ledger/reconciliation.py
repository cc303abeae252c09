"""
Decision logic for new identity-match evidence and manual status edits.

Nothing here mutates the ledger: each function takes snapshots of the roster
and the attendance log and returns what should change. The caller applies the
result to the store, which keeps these rules testable without any I/O.
"""
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from typing import Literal

from ledger.models import (
    MANUAL_CONFIDENCE,
    AttendanceEntry,
    CheckInStatus,
    DailyStatus,
    Identity,
    MatchCandidate,
    RecognitionResult,
    local_date,
    new_id,
)

# Oracle matches at or below this score are never trusted.
MATCH_CONFIDENCE_THRESHOLD = 0.85

DEFAULT_MANUAL_ENTRY_TIME = time(9, 0)

OutcomeCode = Literal["checked_in", "already_present", "low_confidence", "no_match"]
MutationKind = Literal["insert", "update", "delete", "none"]


@dataclass
class ReconciliationResult:
    new_entries: list[AttendanceEntry] = field(default_factory=list)
    already_present_count: int = 0
    low_confidence_rejected: bool = False
    # Number of candidates the oracle reported, before any filtering.
    candidate_count: int = 0


@dataclass(frozen=True)
class StatusMutation:
    kind: MutationKind
    entry: AttendanceEntry | None = None
    previous: AttendanceEntry | None = None
    # Further same-day entries for the identity; dropped along with the edit.
    duplicates: tuple[AttendanceEntry, ...] = ()

    def removed_ids(self) -> set[str]:
        ids = {e.id for e in self.duplicates}
        if self.kind == "delete" and self.previous is not None:
            ids.add(self.previous.id)
        if self.kind == "update" and self.entry is not None:
            ids.discard(self.entry.id)
        return ids


def parse_clock(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a time of day."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Expected HH:MM, got {value!r}")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        raise ValueError(f"Expected HH:MM, got {value!r}") from None
    return time(*numbers)


def is_confident(candidate: MatchCandidate) -> bool:
    return candidate.confidence > MATCH_CONFIDENCE_THRESHOLD


def classify_check_in(now: datetime, late_threshold: time) -> CheckInStatus:
    threshold = datetime.combine(now.date(), late_threshold, tzinfo=now.tzinfo)
    if now > threshold:
        return "Late"
    return "Present"


def submit_recognition(
    candidate_matches: Sequence[MatchCandidate],
    roster: Sequence[Identity],
    existing_entries: Sequence[AttendanceEntry],
    now: datetime,
    late_threshold: time,
) -> ReconciliationResult:
    """Turn oracle candidates into new attendance entries.

    Candidates must score strictly above MATCH_CONFIDENCE_THRESHOLD and
    resolve to a roster identity. An identity that already has an entry on
    ``now``'s local date is counted as already present instead of getting a
    second entry. ``existing_entries`` must be a fresh snapshot.
    """
    result = ReconciliationResult(candidate_count=len(candidate_matches))
    confident = []
    for candidate in candidate_matches:
        if is_confident(candidate):
            confident.append(candidate)
        else:
            result.low_confidence_rejected = True
    if not confident:
        return result

    by_id = {identity.id: identity for identity in roster}
    today = local_date(now)
    checked_in = {e.user_id for e in existing_entries if e.day == today}
    status = classify_check_in(now, late_threshold)

    for candidate in confident:
        identity = by_id.get(candidate.user_id)
        if identity is None:
            continue
        if identity.id in checked_in:
            result.already_present_count += 1
            continue
        result.new_entries.append(
            AttendanceEntry(
                id=new_id(),
                user_id=identity.id,
                user_name=identity.name,
                role=identity.role,
                timestamp=now,
                status=status,
                confidence=candidate.confidence,
            )
        )
        checked_in.add(identity.id)
    return result


def describe_outcome(result: ReconciliationResult) -> tuple[OutcomeCode, str]:
    """Outcome code and operator-facing message for a reconciliation."""
    if result.new_entries:
        names = ", ".join(e.user_name for e in result.new_entries)
        message = f"Present: {names}."
        if result.already_present_count:
            message += f" (Skipped {result.already_present_count} already marked)"
        return "checked_in", message
    if result.already_present_count:
        return (
            "already_present",
            f"All identified people ({result.already_present_count}) are already marked present for today.",
        )
    if result.low_confidence_rejected:
        return "low_confidence", "Low confidence match. Please try closer to the camera or improve lighting."
    return "no_match", "No registered faces detected. Please ensure people are registered."


def find_registered_duplicate(result: RecognitionResult, roster: Sequence[Identity]) -> Identity | None:
    """Identity that a face about to be registered already belongs to, if any.

    Only the oracle's first match is considered.
    """
    if not result.matches:
        return None
    first = result.matches[0]
    if not is_confident(first):
        return None
    for identity in roster:
        if identity.id == first.user_id:
            return identity
    return None


def update_status(
    identity_id: str,
    new_status: DailyStatus,
    day: date,
    roster: Sequence[Identity],
    existing_entries: Sequence[AttendanceEntry],
    default_time: time = DEFAULT_MANUAL_ENTRY_TIME,
) -> StatusMutation:
    """Work out the single change that gives ``identity_id`` ``new_status`` on ``day``.

    Imported logs may hold several entries for one identity and day. Absent
    removes all of them; Present/Late keeps the first and drops the rest.
    """
    same_day = [e for e in existing_entries if e.user_id == identity_id and e.day == day]
    existing = same_day[0] if same_day else None
    duplicates = tuple(same_day[1:])

    if new_status == "Absent":
        if existing is None:
            return StatusMutation("none")
        return StatusMutation("delete", previous=existing, duplicates=duplicates)

    identity = next((u for u in roster if u.id == identity_id), None)
    if identity is None:
        return StatusMutation("none")

    if existing is not None:
        if existing.status == new_status and not duplicates:
            return StatusMutation("none", previous=existing)
        return StatusMutation(
            "update",
            entry=replace(existing, status=new_status),
            previous=existing,
            duplicates=duplicates,
        )

    entry = AttendanceEntry(
        id=new_id(),
        user_id=identity.id,
        user_name=identity.name,
        role=identity.role,
        timestamp=datetime.combine(day, default_time),
        status=new_status,
        confidence=MANUAL_CONFIDENCE,
    )
    return StatusMutation("insert", entry=entry)
