import asyncio
import logging
from dataclasses import dataclass
from typing import Literal

import httpx

from backend.config import API_URL, SCANNER_REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

FailureKind = Literal[
    "SessionNotFound",
    "SessionClosed",
    "InvalidToken",
    "WindowClosed",
    "AlreadyMarked",
    "CameraUnavailable",
    "ConnectionFailed",
    "Unauthorized",
]

KNOWN_REASONS: set[str] = {
    "SessionNotFound",
    "SessionClosed",
    "InvalidToken",
    "WindowClosed",
    "AlreadyMarked",
}

SCAN_ENDPOINT = "/attendance/scan"


@dataclass(frozen=True)
class ScanResult:
    success: bool
    message: str
    status: str | None = None
    reason: FailureKind | None = None
    error: str | None = None

    @classmethod
    def failure(cls, reason: FailureKind, error: str, message: str = "Scan failed") -> "ScanResult":
        return cls(success=False, message=message, reason=reason, error=error)


def connection_failed(error: str = "Network error. Please try again.") -> ScanResult:
    return ScanResult.failure("ConnectionFailed", error, message="Connection failed")


class VerifierClient:
    """
    Posts scanned tokens to the verification endpoint.

    Every call resolves to a ScanResult: transport errors and timeouts become
    ConnectionFailed instead of propagating.
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = API_URL,
        timeout: float = SCANNER_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def submit(self, token: str) -> ScanResult:
        logger.debug("Submitting token %s...", token[:10])
        try:
            response = await asyncio.wait_for(
                self._client.post(SCAN_ENDPOINT, json={"token": token}),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("Verification request timed out after %.1fs", self.timeout)
            return connection_failed("Request timed out. Please try again.")
        except httpx.HTTPError as exc:
            logger.warning("Verification request failed: %s", exc)
            return connection_failed()

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.is_success:
            return ScanResult(
                success=True,
                status=data.get("status"),
                message=data.get("message") or "Attendance marked.",
            )

        error = str(data.get("error") or data.get("detail") or f"HTTP {response.status_code}")
        reason = data.get("reason")
        if reason in KNOWN_REASONS:
            return ScanResult.failure(reason, error)
        if response.status_code in (401, 403):
            return ScanResult.failure("Unauthorized", error)
        return connection_failed(error)

    async def aclose(self) -> None:
        await self._client.aclose()
