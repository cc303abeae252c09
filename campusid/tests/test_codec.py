import csv
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from ledger.codec import (
    configure_field_size_limit,
    decode_entries,
    decode_identities,
    encode_attendance_report,
    encode_entries,
    encode_identities,
    encode_roster_listing,
    quote_field,
)
from ledger.errors import FormatError
from ledger.models import AttendanceEntry, Identity


def _identity(user_id: str = "U1", name: str = "Ana, T.", department: str = "Science") -> Identity:
    return Identity(
        id=user_id,
        name=name,
        role="Student",
        department=department,
        image="data:image/jpeg;base64,/9j/4AAQSkZJRg==",
        registered_at=datetime(2026, 2, 9, 8, 15, 30, 123456),
    )


def _entry(entry_id: str = "R1", user_name: str = "Ana, T.", confidence: float = 0.9137) -> AttendanceEntry:
    return AttendanceEntry(
        id=entry_id,
        user_id="U1",
        user_name=user_name,
        role="Student",
        timestamp=datetime(2026, 2, 10, 9, 12, 3, 500000),
        status="Present",
        confidence=confidence,
    )


def test_quote_field_only_quotes_special_values():
    assert quote_field("plain") == "plain"
    assert quote_field("a,b") == '"a,b"'
    assert quote_field('say "hi"') == '"say ""hi"""'
    assert quote_field("two\nlines") == '"two\nlines"'


def test_identity_file_layout():
    text = encode_identities([_identity()])
    lines = text.split("\n")
    assert lines[0] == "id,name,role,department,image,registeredAt"
    assert lines[1] == 'U1,"Ana, T.",Student,Science,"data:image/jpeg;base64,/9j/4AAQSkZJRg==",2026-02-09T08:15:30.123456'
    assert not text.endswith("\n")


def test_name_with_embedded_comma_survives_round_trip():
    decoded = decode_identities(encode_identities([_identity()]).encode("utf-8"))
    assert decoded[0].name == "Ana, T."


def test_round_trip_with_quotes_and_newlines():
    identities = [
        _identity("U1", 'Jo "JJ" Smith', 'Dept, "A"'),
        _identity("U2", "Line\none", "Multi\r\nline"),
        _identity("U3", "", ""),
    ]
    entries = [
        _entry("R1", 'Jo "JJ" Smith', 0.86),
        _entry("R2", "Line\none", 1.0),
        _entry("R3", "Ana, T.", 0.8500000000000001),
    ]

    assert decode_identities(encode_identities(identities)) == identities
    assert decode_entries(encode_entries(entries)) == entries


def test_aware_timestamps_round_trip():
    entry = AttendanceEntry(
        id="R1",
        user_id="U1",
        user_name="Ana",
        role="Student",
        timestamp=datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc),
        status="Late",
        confidence=0.95,
    )
    assert decode_entries(encode_entries([entry])) == [entry]


def test_blank_lines_and_short_rows_are_skipped():
    text = (
        "id,userId,userName,role,timestamp,status,confidence\n"
        "\n"
        "R1,U1,Ana,Student,2026-02-10T09:00:00,Present,0.9\n"
        "R2,U2,truncated\n"
        "   \n"
        "R3,U3,Ben,Staff,2026-02-10T09:45:00,Late,0.97\n"
    )
    entries = decode_entries(text)
    assert [e.id for e in entries] == ["R1", "R3"]
    assert entries[1].status == "Late"


def test_corrupt_attendance_rows_are_skipped():
    text = (
        "id,userId,userName,role,timestamp,status,confidence\n"
        "R1,U1,Ana,Student,not-a-date,Present,0.9\n"
        "R2,U1,Ana,Student,2026-02-10T09:00:00,Absent,0.9\n"
        "R3,U1,Ana,Student,2026-02-10T09:00:00,Present,high\n"
        "R4,U1,Ana,Student,2026-02-10T09:00:00,Present,1.5\n"
        "R5,U1,Ana,Student,2026-02-10T09:00:00,Present,0.99\n"
    )
    assert [e.id for e in decode_entries(text)] == ["R5"]


def test_identity_header_without_image_column_is_rejected():
    with pytest.raises(FormatError):
        decode_identities(b"id,name,role,department,photo,registeredAt\nU1,Ana,Student,Sci,x,2026-02-10T09:00:00")


def test_attendance_header_without_user_column_is_rejected():
    # A roster file offered as attendance history.
    with pytest.raises(FormatError):
        decode_entries(encode_identities([_identity()]))


def test_empty_file_is_rejected():
    with pytest.raises(FormatError):
        decode_identities(b"")
    with pytest.raises(FormatError):
        decode_entries(b"\n\n")


def test_non_utf8_bytes_are_rejected():
    with pytest.raises(FormatError):
        decode_identities(b"\xff\xfe\x00id,image")


def test_reads_files_written_by_the_legacy_writer():
    # Legacy writer quoted name/department/image and used UTC "Z" stamps.
    text = (
        "id,name,role,department,image,registeredAt\r\n"
        'U1,"O\'Neil, Pat",Student,"Math","data:image/png;base64,AAAA",2026-02-09T08:00:00.000Z\r\n'
    )
    identity = decode_identities(("\ufeff" + text).encode("utf-8"))[0]
    assert identity.name == "O'Neil, Pat"
    assert identity.department == "Math"
    assert identity.image == "data:image/png;base64,AAAA"
    assert identity.registered_at == datetime(2026, 2, 9, 8, 0, tzinfo=timezone.utc)


def test_roster_listing_and_report():
    identity = _identity()
    orphan = AttendanceEntry(
        id="R9",
        user_id="GONE",
        user_name="Former Member",
        role="Staff",
        timestamp=datetime(2026, 2, 10, 10, 5, 9),
        status="Late",
        confidence=0.9,
    )

    listing = encode_roster_listing([identity]).split("\n")
    assert listing == ["Name,Role,Department", '"Ana, T.",Student,Science']

    report = encode_attendance_report([_entry(), orphan], [identity]).split("\n")
    assert report[0] == "Name,Role,Dept,Date,Time,Status"
    assert report[1] == '"Ana, T.",Student,Science,2026-02-10,09:12:03,Present'
    assert report[2] == "Former Member,Staff,,2026-02-10,10:05:09,Late"


def test_repeated_identity_id_keeps_first_row():
    text = (
        "id,name,role,department,image,registeredAt\n"
        "U1,Ana,Student,Science,,2026-02-09T08:00:00\n"
        "U1,Impostor,Staff,Admin,,2026-02-09T09:00:00\n"
        "U2,Ben,Student,Math,,2026-02-09T10:00:00\n"
    )
    decoded = decode_identities(text.encode("utf-8"))
    assert [(u.id, u.name) for u in decoded] == [("U1", "Ana"), ("U2", "Ben")]


def test_inline_images_larger_than_default_csv_limit():
    previous = csv.field_size_limit()
    try:
        csv.field_size_limit(128 * 1024)
        big = replace(_identity(), image="data:image/png;base64," + "A" * 300_000)
        blob = encode_identities([big]).encode("utf-8")

        with pytest.raises(FormatError):
            decode_identities(blob)

        configure_field_size_limit()
        assert decode_identities(blob)[0].image == big.image
    finally:
        csv.field_size_limit(previous)
