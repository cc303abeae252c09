"""
Delimited-text codec for the roster and the attendance log.

Both files share one format: comma-separated, one record per line, a header
row first. Fields that contain the delimiter, a double quote or a line break
are wrapped in double quotes with inner quotes doubled. Decoding uses the
quote-aware ``csv`` reader for both files, so a quoted field may carry commas
and newlines as data.
"""
import csv
import io
import logging
import math
from collections.abc import Iterable, Iterator, Sequence
from datetime import datetime

from ledger.errors import FormatError
from ledger.models import CHECK_IN_STATUSES, AttendanceEntry, Identity, local_date

logger = logging.getLogger(__name__)

DELIMITER = ","
QUOTE = '"'
LINE_BREAK = "\n"

IDENTITY_COLUMNS = ("id", "name", "role", "department", "image", "registeredAt")
ATTENDANCE_COLUMNS = ("id", "userId", "userName", "role", "timestamp", "status", "confidence")

# Header column that identifies each file type.
IDENTITY_MARKER = "image"
ATTENDANCE_MARKER = "userId"

ROSTER_LISTING_COLUMNS = ("Name", "Role", "Department")
REPORT_COLUMNS = ("Name", "Role", "Dept", "Date", "Time", "Status")

FIELD_SIZE_LIMIT = 256 * 1024 * 1024


def configure_field_size_limit(limit: int = FIELD_SIZE_LIMIT) -> None:
    """Raise the process-wide ``csv`` field limit to at least ``limit``.

    Reference images are stored inline as base64 and easily exceed the csv
    module's default 128 KiB limit. Call once at application startup.
    """
    if csv.field_size_limit() < limit:
        csv.field_size_limit(limit)


# -----------------------------
# Encoding
# -----------------------------
def quote_field(value: str) -> str:
    if any(ch in value for ch in (DELIMITER, QUOTE, "\n", "\r")):
        return QUOTE + value.replace(QUOTE, QUOTE * 2) + QUOTE
    return value


def _join_rows(header: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    lines = [DELIMITER.join(quote_field(v) for v in header)]
    lines.extend(DELIMITER.join(quote_field(v) for v in row) for row in rows)
    return LINE_BREAK.join(lines)


def _format_confidence(value: float) -> str:
    return repr(float(value))


def encode_identities(identities: Iterable[Identity]) -> str:
    return _join_rows(
        IDENTITY_COLUMNS,
        (
            (u.id, u.name, u.role, u.department, u.image, u.registered_at.isoformat())
            for u in identities
        ),
    )


def encode_entries(entries: Iterable[AttendanceEntry]) -> str:
    return _join_rows(
        ATTENDANCE_COLUMNS,
        (
            (
                r.id,
                r.user_id,
                r.user_name,
                r.role,
                r.timestamp.isoformat(),
                r.status,
                _format_confidence(r.confidence),
            )
            for r in entries
        ),
    )


def encode_roster_listing(identities: Iterable[Identity]) -> str:
    return _join_rows(ROSTER_LISTING_COLUMNS, ((u.name, u.role, u.department) for u in identities))


def encode_attendance_report(entries: Iterable[AttendanceEntry], identities: Iterable[Identity]) -> str:
    departments = {u.id: u.department for u in identities}
    rows = []
    for r in entries:
        stamp = r.timestamp.astimezone() if r.timestamp.tzinfo is not None else r.timestamp
        rows.append(
            (
                r.user_name,
                r.role,
                departments.get(r.user_id, ""),
                local_date(r.timestamp).isoformat(),
                stamp.strftime("%H:%M:%S"),
                r.status,
            )
        )
    return _join_rows(REPORT_COLUMNS, rows)


# -----------------------------
# Decoding
# -----------------------------
def _as_text(data: bytes | str) -> str:
    if isinstance(data, bytes):
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FormatError(f"File is not valid UTF-8 text: {e}") from e
    return data.removeprefix("\ufeff")


def _rows(text: str) -> Iterator[list[str]]:
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=DELIMITER, quotechar=QUOTE)
    try:
        for row in reader:
            if not row or (len(row) == 1 and not row[0].strip()):
                continue
            yield row
    except csv.Error as e:
        raise FormatError(f"Malformed delimited text at line {reader.line_num}: {e}") from e


def _split_header(text: str, marker: str) -> Iterator[list[str]]:
    rows = _rows(text)
    header = next(rows, None)
    if header is None:
        raise FormatError("File is empty.")
    if marker.lower() not in {col.strip().lower() for col in header}:
        raise FormatError(f"Header is missing the '{marker}' column.")
    return rows


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.strip())


def decode_identities(data: bytes | str) -> list[Identity]:
    """Parse a roster file.

    Raises FormatError when the header lacks the ``image`` column. Rows that
    are too short, carry an unreadable ``registeredAt`` or repeat an earlier
    row's id are skipped.
    """
    rows = _split_header(_as_text(data), IDENTITY_MARKER)
    out: list[Identity] = []
    seen: set[str] = set()
    skipped = 0
    for cols in rows:
        if len(cols) < len(IDENTITY_COLUMNS) or cols[0] in seen:
            skipped += 1
            continue
        try:
            registered_at = _parse_timestamp(cols[5])
        except ValueError:
            skipped += 1
            continue
        out.append(
            Identity(
                id=cols[0],
                name=cols[1],
                role=cols[2],
                department=cols[3],
                image=cols[4],
                registered_at=registered_at,
            )
        )
        seen.add(cols[0])
    if skipped:
        logger.warning("Skipped %d malformed or duplicate identity row(s)", skipped)
    return out


def decode_entries(data: bytes | str) -> list[AttendanceEntry]:
    """Parse an attendance file.

    Raises FormatError when the header lacks the ``userId`` column. Rows that
    are too short, or whose timestamp, status or confidence cannot be read,
    are skipped.
    """
    rows = _split_header(_as_text(data), ATTENDANCE_MARKER)
    out: list[AttendanceEntry] = []
    skipped = 0
    for cols in rows:
        if len(cols) < len(ATTENDANCE_COLUMNS):
            skipped += 1
            continue
        status = cols[5].strip()
        try:
            timestamp = _parse_timestamp(cols[4])
            confidence = float(cols[6])
        except ValueError:
            skipped += 1
            continue
        if status not in CHECK_IN_STATUSES or not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
            skipped += 1
            continue
        out.append(
            AttendanceEntry(
                id=cols[0],
                user_id=cols[1],
                user_name=cols[2],
                role=cols[3],
                timestamp=timestamp,
                status=status,  # type: ignore[arg-type]
                confidence=confidence,
            )
        )
    if skipped:
        logger.warning("Skipped %d malformed attendance row(s)", skipped)
    return out
