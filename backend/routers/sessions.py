import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from backend.models import Token
from backend.routers.attendance import record_to_dict
from backend.security import require_teacher
from backend.services.rotator import rotator
from database.db import close_session, get_attendance_records, get_session

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_teacher)])


def _require_active_session(session_id: int) -> None:
    row = get_session(session_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Session not found.")
    if not row.is_active:
        raise HTTPException(status_code=409, detail="Session is closed.")


def _token_payload(token: Token, now: datetime) -> dict:
    return {
        "session_id": token.session_id,
        "token": token.value,
        "issued_at": token.issued_at.isoformat(),
        "expires_at": token.expires_at.isoformat(),
        "expires_in": max(0.0, round((token.expires_at - now).total_seconds(), 3)),
    }


@router.get("/sessions/{session_id}/token")
def session_token(session_id: int):
    _require_active_session(session_id)
    now = datetime.now(timezone.utc)
    token = rotator.current_token(session_id, now)
    if token is None:
        raise HTTPException(status_code=409, detail="Session is closed.")
    return _token_payload(token, now)


@router.post("/sessions/{session_id}/rotate")
def rotate_session_token(session_id: int):
    _require_active_session(session_id)
    now = datetime.now(timezone.utc)
    token = rotator.rotate(session_id, now)
    if token is None:
        raise HTTPException(status_code=409, detail="Session is closed.")
    return _token_payload(token, now)


@router.post("/sessions/{session_id}/close")
def close_attendance_session(session_id: int):
    if get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found.")
    close_session(session_id)
    rotator.discard(session_id)
    logger.info("Session %s closed", session_id)
    return {"ok": True, "session_id": session_id, "status": "closed"}


@router.get("/sessions/{session_id}/attendance")
def session_attendance(session_id: int):
    if get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found.")
    records = get_attendance_records(session_id=session_id)
    return {
        "session_id": session_id,
        "total": len(records),
        "present": sum(1 for r in records if r.status == "present"),
        "late": sum(1 for r in records if r.status == "late"),
        "rows": [record_to_dict(r) for r in records],
    }
