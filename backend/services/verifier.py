import hmac
import logging
from datetime import datetime, timedelta
from typing import Callable, Literal, TypedDict

from backend.config import LATE_WINDOW_MINUTES, PRESENT_WINDOW_MINUTES
from backend.models import AttendanceStatus, ScanAttempt, Session, as_utc
from backend.services.rotator import TokenRotator, rotator as default_rotator
from database.db import LedgerOutcome, create_attendance_if_absent, get_session

logger = logging.getLogger(__name__)

RejectReason = Literal[
    "SessionNotFound",
    "SessionClosed",
    "InvalidToken",
    "WindowClosed",
    "AlreadyMarked",
]

REJECT_MESSAGES: dict[str, str] = {
    "SessionNotFound": "This class session does not exist.",
    "SessionClosed": "This class session is closed.",
    "InvalidToken": "QR code is invalid or has expired. Scan the current code.",
    "WindowClosed": "The attendance window for this session has closed.",
    "AlreadyMarked": "Attendance is already marked for this session.",
}


class VerifyResult(TypedDict):
    verified: bool
    status: AttendanceStatus | None
    reason: RejectReason | None
    message: str
    session_id: int
    marked_at: datetime | None


def _rejected(session_id: int, reason: RejectReason) -> VerifyResult:
    return {
        "verified": False,
        "status": None,
        "reason": reason,
        "message": REJECT_MESSAGES[reason],
        "session_id": session_id,
        "marked_at": None,
    }


def classify_elapsed(
    elapsed: timedelta,
    *,
    present_window: timedelta,
    late_window: timedelta,
) -> AttendanceStatus | None:
    """present / late by time since start, None once the window is closed."""
    if elapsed < present_window:
        return "present"
    if elapsed < late_window:
        return "late"
    return None


class ScanVerifier:
    """
    Validates a scan against the session, the rotator's current token and the
    attendance windows, then records it through the ledger.

    Holds no mutable state of its own, so a single instance is shared by every
    request thread.
    """

    def __init__(
        self,
        *,
        rotator: TokenRotator = default_rotator,
        present_window_minutes: int = PRESENT_WINDOW_MINUTES,
        late_window_minutes: int = LATE_WINDOW_MINUTES,
        session_loader: Callable[[int], Session | None] = get_session,
        ledger_insert: Callable[..., LedgerOutcome] = create_attendance_if_absent,
    ) -> None:
        self.rotator = rotator
        self.present_window = timedelta(minutes=present_window_minutes)
        self.late_window = timedelta(minutes=max(present_window_minutes, late_window_minutes))
        self._load_session = session_loader
        self._ledger_insert = ledger_insert

    def verify(self, student_id: str, session_id: int, token_value: str, now: datetime) -> VerifyResult:
        attempt = ScanAttempt(
            student_id=student_id,
            session_id=session_id,
            token_value=token_value,
            received_at=as_utc(now),
        )
        result = self._verify_attempt(attempt)
        if result["verified"]:
            logger.info(
                "Student %s marked %s in session %s",
                attempt.student_id,
                result["status"],
                attempt.session_id,
            )
        else:
            logger.info(
                "Scan rejected for student %s in session %s: %s (token %s...)",
                attempt.student_id,
                attempt.session_id,
                result["reason"],
                attempt.token_value[:10],
            )
        return result

    def _verify_attempt(self, attempt: ScanAttempt) -> VerifyResult:
        session = self._load_session(attempt.session_id)
        if session is None:
            return _rejected(attempt.session_id, "SessionNotFound")
        if not session.is_active:
            return _rejected(attempt.session_id, "SessionClosed")

        current = self.rotator.current_token(session.id, attempt.received_at)
        if current is None:
            # closed between the two reads
            return _rejected(attempt.session_id, "SessionClosed")
        if not hmac.compare_digest(
            attempt.token_value.encode("utf-8"),
            current.value.encode("utf-8"),
        ):
            return _rejected(attempt.session_id, "InvalidToken")

        status = classify_elapsed(
            attempt.received_at - as_utc(session.start_time),
            present_window=self.present_window,
            late_window=self.late_window,
        )
        if status is None:
            return _rejected(attempt.session_id, "WindowClosed")

        outcome = self._ledger_insert(attempt.student_id, session.id, status, attempt.received_at)
        if outcome == "already_exists":
            return _rejected(attempt.session_id, "AlreadyMarked")

        label = "Present" if status == "present" else "Late"
        return {
            "verified": True,
            "status": status,
            "reason": None,
            "message": f"Attendance marked: {label}.",
            "session_id": session.id,
            "marked_at": attempt.received_at,
        }


verifier = ScanVerifier()
