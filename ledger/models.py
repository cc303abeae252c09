import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal

CheckInStatus = Literal["Present", "Late"]
DailyStatus = Literal["Present", "Late", "Absent"]

CHECK_IN_STATUSES: tuple[str, ...] = ("Present", "Late")
DAILY_STATUSES: tuple[str, ...] = ("Present", "Late", "Absent")

# Confidence written on entries that were attested by hand.
MANUAL_CONFIDENCE = 1.0


def new_id() -> str:
    return str(uuid.uuid4())


def local_date(stamp: datetime) -> date:
    """Calendar day of ``stamp`` in the process's local time zone.

    Naive timestamps are taken to be local already.
    """
    if stamp.tzinfo is not None:
        return stamp.astimezone().date()
    return stamp.date()


@dataclass(frozen=True)
class Identity:
    id: str
    name: str
    role: str
    department: str
    image: str
    registered_at: datetime


@dataclass(frozen=True)
class AttendanceEntry:
    id: str
    user_id: str
    user_name: str
    role: str
    timestamp: datetime
    status: CheckInStatus
    confidence: float

    @property
    def day(self) -> date:
        return local_date(self.timestamp)


@dataclass(frozen=True)
class MatchCandidate:
    user_id: str
    confidence: float


@dataclass(frozen=True)
class RecognitionResult:
    matches: list[MatchCandidate] = field(default_factory=list)
    reasoning: str | None = None
