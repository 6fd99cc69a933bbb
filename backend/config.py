import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("QRATTEND_DB_PATH", BASE_DIR / "database" / "qrattend.db"))
SIGNING_KEY = os.getenv("QRATTEND_SIGNING_KEY", "").strip() or secrets.token_urlsafe(32)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("QRATTEND_AUTH_TOKEN_TTL_SECONDS", "43200"))
LOG_LEVEL = (os.getenv("QRATTEND_LOG_LEVEL") or "INFO").strip().upper()


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


def _parse_positive_float(value: str | None, fallback: float) -> float:
    if not value:
        return fallback
    try:
        parsed = float(value)
    except ValueError:
        return fallback
    return parsed if parsed > 0 else fallback


def _parse_positive_int(value: str | None, fallback: int) -> int:
    if not value:
        return fallback
    try:
        parsed = int(value)
    except ValueError:
        return fallback
    return parsed if parsed > 0 else fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("QRATTEND_CORS_ALLOW_ORIGINS"),
    ["http://localhost:3000", "http://127.0.0.1:3000"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("QRATTEND_CORS_ALLOW_METHODS"),
    ["GET", "POST", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("QRATTEND_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("QRATTEND_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("QRATTEND_ENABLE_DEBUG_ENDPOINTS"), False)


# Attendance windows (measured from session start)
ROTATION_INTERVAL_SECONDS = _parse_positive_int(
    os.getenv("QRATTEND_ROTATION_INTERVAL_SECONDS"),
    15,
)
PRESENT_WINDOW_MINUTES = _parse_positive_int(
    os.getenv("QRATTEND_PRESENT_WINDOW_MINUTES"),
    10,
)
LATE_WINDOW_MINUTES = max(
    PRESENT_WINDOW_MINUTES,
    _parse_positive_int(os.getenv("QRATTEND_LATE_WINDOW_MINUTES"), 20),
)

# Scanner client
API_URL = (os.getenv("QRATTEND_API_URL") or "http://127.0.0.1:8000").strip().rstrip("/")
SCANNER_DECODE_INTERVAL_SECONDS = _parse_positive_float(
    os.getenv("QRATTEND_SCANNER_DECODE_INTERVAL_SECONDS"),
    0.5,
)
SCANNER_REFRESH_INTERVAL_SECONDS = _parse_positive_float(
    os.getenv("QRATTEND_SCANNER_REFRESH_INTERVAL_SECONDS"),
    15.0,
)
SCANNER_RESTART_GAP_SECONDS = _parse_positive_float(
    os.getenv("QRATTEND_SCANNER_RESTART_GAP_SECONDS"),
    0.5,
)
SCANNER_MESSAGE_CLEAR_SECONDS = _parse_positive_float(
    os.getenv("QRATTEND_SCANNER_MESSAGE_CLEAR_SECONDS"),
    2.0,
)
SCANNER_REQUEST_TIMEOUT_SECONDS = _parse_positive_float(
    os.getenv("QRATTEND_SCANNER_REQUEST_TIMEOUT_SECONDS"),
    10.0,
)
FRONT_CAMERA_INDEX = int(os.getenv("QRATTEND_FRONT_CAMERA_INDEX", "0"))
REAR_CAMERA_INDEX = int(os.getenv("QRATTEND_REAR_CAMERA_INDEX", "0"))
