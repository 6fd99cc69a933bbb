from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.models import AttendanceRecord
from backend.security import require_student
from backend.services.rotator import token_session_id
from backend.services.verifier import REJECT_MESSAGES, verifier
from database.db import get_attendance_records

router = APIRouter()

REJECT_STATUS_CODES: dict[str, int] = {
    "SessionNotFound": 404,
    "SessionClosed": 410,
    "InvalidToken": 400,
    "WindowClosed": 403,
    "AlreadyMarked": 409,
}


class ScanRequest(BaseModel):
    token: str


def record_to_dict(record: AttendanceRecord) -> dict:
    return {
        "student_id": record.student_id,
        "session_id": record.session_id,
        "status": record.status,
        "marked_at": record.marked_at.isoformat(),
    }


def _reject(reason: str, session_id: int | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=REJECT_STATUS_CODES[reason],
        content={
            "success": False,
            "reason": reason,
            "error": REJECT_MESSAGES[reason],
            "session_id": session_id,
        },
    )


@router.post("/attendance/scan")
def scan_attendance(payload: ScanRequest, session: dict = Depends(require_student)):
    token = payload.token.strip()
    if not token:
        return _reject("InvalidToken")

    session_id = token_session_id(token)
    if session_id is None:
        return _reject("InvalidToken")

    result = verifier.verify(str(session["sub"]), session_id, token, datetime.now(timezone.utc))
    if not result["verified"]:
        return _reject(result["reason"] or "InvalidToken", session_id)

    marked_at = result["marked_at"]
    return {
        "success": True,
        "status": result["status"],
        "message": result["message"],
        "session_id": session_id,
        "marked_at": marked_at.isoformat() if marked_at else None,
    }


@router.get("/attendance/me")
def my_attendance(session: dict = Depends(require_student)):
    records = get_attendance_records(student_id=str(session["sub"]))
    return [record_to_dict(r) for r in records]
