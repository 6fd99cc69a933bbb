from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

SessionStatus = Literal["active", "closed"]
AttendanceStatus = Literal["present", "late"]


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Session:
    id: int
    start_time: datetime
    status: SessionStatus

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True)
class Token:
    session_id: int
    issued_at: datetime
    expires_at: datetime
    value: str


@dataclass(frozen=True)
class ScanAttempt:
    student_id: str
    session_id: int
    token_value: str
    received_at: datetime


@dataclass(frozen=True)
class AttendanceRecord:
    student_id: str
    session_id: int
    status: AttendanceStatus
    marked_at: datetime
