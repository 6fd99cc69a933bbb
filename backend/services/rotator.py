import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from backend.config import ROTATION_INTERVAL_SECONDS
from backend.models import Session, Token, as_utc
from backend.security import sign_payload, unsign_payload
from database.db import get_session

logger = logging.getLogger(__name__)

TOKEN_PURPOSE = "attendance-qr"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _mint(session_id: int, issued_at: datetime, expires_at: datetime) -> Token:
    payload: dict[str, Any] = {
        "sid": session_id,
        "iat": issued_at.isoformat(timespec="microseconds"),
        "exp": expires_at.isoformat(timespec="microseconds"),
        "n": secrets.token_urlsafe(16),
    }
    return Token(
        session_id=session_id,
        issued_at=issued_at,
        expires_at=expires_at,
        value=sign_payload(payload, purpose=TOKEN_PURPOSE),
    )


def token_session_id(token_value: str) -> int | None:
    """Session id embedded in a QR token, or None if the token was not minted here."""
    payload = unsign_payload(token_value, purpose=TOKEN_PURPOSE)
    if payload is None:
        return None
    sid = payload.get("sid")
    if not isinstance(sid, int) or isinstance(sid, bool):
        return None
    return sid


class TokenRotator:
    """
    Owns the single current QR token of every active session.

    Tokens follow a fixed cadence anchored at the session start: slot k covers
    [start + k*interval, start + (k+1)*interval). rotate() supersedes the
    current token immediately, whatever its remaining lifetime.
    """

    def __init__(
        self,
        *,
        interval_seconds: int = ROTATION_INTERVAL_SECONDS,
        session_loader: Callable[[int], Session | None] = get_session,
    ) -> None:
        self.interval = timedelta(seconds=interval_seconds)
        self._load_session = session_loader
        self._lock = threading.Lock()
        self._tokens: dict[int, Token] = {}

    def _active_session(self, session_id: int) -> Session | None:
        session = self._load_session(session_id)
        if session is None or not session.is_active:
            self.discard(session_id)
            return None
        return session

    def _slot_bounds(self, session: Session, now: datetime) -> tuple[datetime, datetime]:
        start = as_utc(session.start_time)
        elapsed = now - start
        slot = max(0, int(elapsed // self.interval))
        issued_at = start + slot * self.interval
        return issued_at, issued_at + self.interval

    def current_token(self, session_id: int, now: datetime | None = None) -> Token | None:
        now = as_utc(now) if now is not None else _utcnow()
        session = self._active_session(session_id)
        if session is None:
            return None

        with self._lock:
            token = self._tokens.get(session_id)
            if token is not None and now < token.expires_at:
                return token
            issued_at, expires_at = self._slot_bounds(session, now)
            token = _mint(session_id, issued_at, expires_at)
            self._tokens[session_id] = token
            logger.debug("Session %s rotated to token issued at %s", session_id, issued_at.isoformat())
            return token

    def rotate(self, session_id: int, now: datetime | None = None) -> Token | None:
        now = as_utc(now) if now is not None else _utcnow()
        session = self._active_session(session_id)
        if session is None:
            return None

        with self._lock:
            token = _mint(session_id, now, now + self.interval)
            self._tokens[session_id] = token
        logger.info("Session %s token rotated manually", session_id)
        return token

    def discard(self, session_id: int) -> None:
        with self._lock:
            self._tokens.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()


rotator = TokenRotator()
