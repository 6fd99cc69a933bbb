import asyncio
import logging
from typing import Any, Callable, Literal

from backend.config import (
    SCANNER_DECODE_INTERVAL_SECONDS,
    SCANNER_MESSAGE_CLEAR_SECONDS,
    SCANNER_REFRESH_INTERVAL_SECONDS,
    SCANNER_RESTART_GAP_SECONDS,
)
from scanner.camera import Camera, CameraUnavailable, OpenCVCamera, decode_qr, select_facing_mode
from scanner.transport import ScanResult, VerifierClient

logger = logging.getLogger(__name__)

ScannerState = Literal["idle", "starting", "active", "processing", "error"]

CAMERA_ERROR_MESSAGE = "Unable to access camera. Please check permissions or use manual entry."


class ScannerClient:
    """
    Client-side scanning state machine.

        idle -> starting -> active -> processing -> active | idle | error

    Runs on a single asyncio loop. Three timers are owned by the client: the
    decode poll, the camera auto-refresh and the transient-message clear. All
    of them are cancelled by stop() / aclose(); a verification already in
    flight is left to resolve. At most one verification request is in flight;
    anything submitted while `processing` is dropped.
    """

    def __init__(
        self,
        verifier: VerifierClient,
        camera: Camera | None = None,
        *,
        user_agent: str | None = None,
        decoder: Callable[[Any], str | None] = decode_qr,
        decode_interval: float = SCANNER_DECODE_INTERVAL_SECONDS,
        refresh_interval: float = SCANNER_REFRESH_INTERVAL_SECONDS,
        restart_gap: float = SCANNER_RESTART_GAP_SECONDS,
        message_clear_delay: float = SCANNER_MESSAGE_CLEAR_SECONDS,
    ) -> None:
        self.verifier = verifier
        self.camera: Camera = camera if camera is not None else OpenCVCamera()
        self.user_agent = user_agent
        self.decoder = decoder
        self.decode_interval = decode_interval
        self.refresh_interval = refresh_interval
        self.restart_gap = restart_gap
        self.message_clear_delay = message_clear_delay

        self.state: ScannerState = "idle"
        self.last_result: ScanResult | None = None
        self.manual_input = ""

        self._resume_state: ScannerState = "idle"
        self._camera_open = False
        self._decode_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None
        self._clear_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._draining: asyncio.Task | None = None
        self._cancelled: list[asyncio.Task] = []

    async def __aenter__(self) -> "ScannerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def is_scanning(self) -> bool:
        return self._camera_open

    # -----------------------------
    # Camera lifecycle
    # -----------------------------
    async def start(self) -> ScannerState:
        if self.state not in ("idle", "error"):
            return self.state

        self._clear_message()
        self.last_result = None
        self.state = "starting"
        return self._open_camera()

    def _open_camera(self) -> ScannerState:
        facing_mode = select_facing_mode(self.user_agent)
        logger.debug("Requesting camera with facing mode %s", facing_mode)
        try:
            self.camera.open(facing_mode)
        except CameraUnavailable as exc:
            logger.warning("Camera unavailable: %s", exc)
            self._release_camera()
            self.state = "error"
            self.last_result = ScanResult.failure(
                "CameraUnavailable",
                CAMERA_ERROR_MESSAGE,
                message="Camera access denied",
            )
            return self.state

        self._camera_open = True
        self.state = "active"
        self._decode_task = asyncio.create_task(self._decode_loop())
        self._refresh_task = asyncio.create_task(self._refresh_after_interval())
        return self.state

    async def stop(self) -> None:
        if self._decode_task is not None and self._decode_task is self._inflight:
            # let the pending verification resolve; the loop exits once it returns
            self._draining = self._decode_task
        else:
            self._cancel(self._decode_task)
        self._cancel(self._refresh_task)
        self._decode_task = None
        self._refresh_task = None
        self._release_camera()
        if self._clear_task is not None:
            self._clear_message()
            self.last_result = None
        if self.state == "processing":
            # the in-flight request settles into idle
            self._resume_state = "idle"
        else:
            self.state = "idle"

    async def aclose(self) -> None:
        await self.stop()
        draining, self._draining = self._draining, None
        if draining is not None and not draining.done() and draining is not asyncio.current_task():
            await asyncio.gather(draining, return_exceptions=True)
        self._clear_message()
        pending = [t for t in self._cancelled if t is not asyncio.current_task()]
        self._cancelled.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.verifier.aclose()

    def _release_camera(self) -> None:
        self._camera_open = False
        try:
            self.camera.release()
        except Exception:
            logger.exception("Failed to release camera")

    # -----------------------------
    # Submissions
    # -----------------------------
    async def submit_manual(self, text: str | None = None) -> ScanResult | None:
        if text is not None:
            self.manual_input = text
        return await self._submit(self.manual_input)

    async def _submit(self, token: str) -> ScanResult | None:
        token = (token or "").strip()
        if not token or self.state == "processing":
            return None

        self._clear_message()
        self.last_result = None
        self._resume_state = self.state
        self.state = "processing"
        self._inflight = asyncio.current_task()
        try:
            result = await self.verifier.submit(token)
        finally:
            self._inflight = None
            if self.state == "processing":
                self.state = self._resume_state

        self.last_result = result
        if result.success:
            logger.info("Attendance marked: %s", result.status)
            self.manual_input = ""
            # one successful mark per camera session
            await self.stop()
            self.last_result = result
        else:
            logger.info("Scan failed: %s", result.reason)
            self._clear_task = asyncio.create_task(self._clear_after_delay(result))
        return result

    # -----------------------------
    # Timers
    # -----------------------------
    async def _decode_loop(self) -> None:
        while self._camera_open and self._decode_task is asyncio.current_task():
            await asyncio.sleep(self.decode_interval)
            if not self._scanning_here():
                continue
            frame = await asyncio.to_thread(self.camera.read)
            if frame is None:
                continue
            try:
                value = await asyncio.to_thread(self.decoder, frame)
            except Exception:
                logger.exception("Error decoding frame")
                continue
            # the camera may have been stopped or refreshed while decoding
            if value and self._scanning_here():
                logger.debug("QR code detected: %s...", value[:10])
                await self._submit(value)

    def _scanning_here(self) -> bool:
        return (
            self.state == "active"
            and self._camera_open
            and self._decode_task is asyncio.current_task()
        )

    async def _refresh_after_interval(self) -> None:
        await asyncio.sleep(self.refresh_interval)
        while self.state == "processing":
            await asyncio.sleep(self.decode_interval)
        if self.state != "active":
            return

        logger.debug("Auto-refreshing camera")
        self._cancel(self._decode_task)
        self._decode_task = None
        self._release_camera()
        self.state = "starting"
        # the device must be fully released before it is reopened
        await asyncio.sleep(self.restart_gap)
        while self.state == "processing":
            await asyncio.sleep(self.decode_interval)
        if self.state != "starting":
            return
        self._open_camera()

    async def _clear_after_delay(self, result: ScanResult) -> None:
        await asyncio.sleep(self.message_clear_delay)
        if self.last_result is result:
            self.last_result = None
        self._clear_task = None

    def _clear_message(self) -> None:
        self._cancel(self._clear_task)
        self._clear_task = None

    def _cancel(self, task: asyncio.Task | None) -> None:
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        self._cancelled = [t for t in self._cancelled if not t.done()]
        self._cancelled.append(task)
