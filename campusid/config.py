import os
from datetime import time
from pathlib import Path


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_time(value: str | None, fallback: time) -> time:
    if not value:
        return fallback
    parts = value.split(":")
    try:
        hh = int(parts[0])
        mm = int(parts[1]) if len(parts) > 1 else 0
        ss = int(parts[2]) if len(parts) > 2 else 0
        return time(hh, mm, ss)
    except Exception:
        return fallback


def _parse_path(value: str | None) -> Path | None:
    if not value or not value.strip():
        return None
    return Path(value.strip()).expanduser()


DATA_DIR = _parse_path(os.getenv("CAMPUSID_DATA_DIR"))

LATE_THRESHOLD = _parse_time(os.getenv("CAMPUSID_LATE_THRESHOLD"), time(9, 30))
MANUAL_ENTRY_TIME = _parse_time(os.getenv("CAMPUSID_MANUAL_ENTRY_TIME"), time(9, 0))
AUTOSAVE_INTERVAL_SECONDS = max(
    1.0,
    float(os.getenv("CAMPUSID_AUTOSAVE_INTERVAL_SECONDS", "300")),
)
AUTOSAVE_ENABLED = _parse_bool(os.getenv("CAMPUSID_AUTOSAVE_ENABLED"), True)

ORACLE_URL = os.getenv("CAMPUSID_ORACLE_URL", "http://127.0.0.1:8100/match").strip()
ORACLE_API_KEY = os.getenv("CAMPUSID_ORACLE_API_KEY", "").strip()
ORACLE_TIMEOUT_SECONDS = float(os.getenv("CAMPUSID_ORACLE_TIMEOUT_SECONDS", "30"))

CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("CAMPUSID_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("CAMPUSID_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("CAMPUSID_CORS_ALLOW_HEADERS"),
    ["Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("CAMPUSID_CORS_ALLOW_CREDENTIALS"), True)

LOG_LEVEL = os.getenv("CAMPUSID_LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_FILE = _parse_path(os.getenv("CAMPUSID_LOG_FILE"))
LOG_MAX_BYTES = int(os.getenv("CAMPUSID_LOG_MAX_BYTES", str(20 * 1024 * 1024)))
LOG_BACKUP_COUNT = int(os.getenv("CAMPUSID_LOG_BACKUP_COUNT", "5"))

# Uploaded probe and reference images
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png")
