from fastapi import APIRouter, Depends, HTTPException

from backend.config import (
    DB_PATH,
    ENABLE_DEBUG_ENDPOINTS,
    LATE_WINDOW_MINUTES,
    PRESENT_WINDOW_MINUTES,
    ROTATION_INTERVAL_SECONDS,
)
from backend.security import require_session

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_session: dict = Depends(require_session)):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/attendance")
def attendance_config():
    return {
        "rotation_interval_seconds": ROTATION_INTERVAL_SECONDS,
        "present_window_minutes": PRESENT_WINDOW_MINUTES,
        "late_window_minutes": LATE_WINDOW_MINUTES,
    }
