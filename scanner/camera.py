import logging
import re
import threading
from typing import Any, Literal, Protocol

import cv2  # type: ignore
import numpy as np  # type: ignore

from backend.config import FRONT_CAMERA_INDEX, REAR_CAMERA_INDEX

logger = logging.getLogger(__name__)

FacingMode = Literal["user", "environment"]

MOBILE_USER_AGENT = re.compile(
    r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini",
    re.IGNORECASE,
)


class CameraUnavailable(Exception):
    """Camera permission was denied or no capture device could be opened."""


def select_facing_mode(user_agent: str | None) -> FacingMode:
    # rear camera on phones/tablets, front camera on laptops and desktops
    if user_agent and MOBILE_USER_AGENT.search(user_agent):
        return "environment"
    return "user"


class Camera(Protocol):
    def open(self, facing_mode: FacingMode) -> None: ...

    def read(self) -> Any | None: ...

    def release(self) -> None: ...


class OpenCVCamera:
    """Capture device backed by cv2.VideoCapture; facing mode picks the device index."""

    def __init__(
        self,
        *,
        front_index: int = FRONT_CAMERA_INDEX,
        rear_index: int = REAR_CAMERA_INDEX,
    ) -> None:
        self.front_index = front_index
        self.rear_index = rear_index
        self._capture = None
        # read() runs off the event loop and may overlap release()
        self._lock = threading.Lock()

    def open(self, facing_mode: FacingMode) -> None:
        if self._capture is not None:
            raise CameraUnavailable("Camera is already in use.")

        index = self.rear_index if facing_mode == "environment" else self.front_index
        capture = cv2.VideoCapture(index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailable(f"Unable to open camera device {index}.")
        with self._lock:
            self._capture = capture
        logger.debug("Opened camera %s (%s)", index, facing_mode)

    def read(self) -> np.ndarray | None:
        with self._lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()
        if not ok:
            return None
        return frame

    def release(self) -> None:
        with self._lock:
            if self._capture is None:
                return
            self._capture.release()
            self._capture = None


_DETECTOR = cv2.QRCodeDetector()


def decode_qr(frame: np.ndarray) -> str | None:
    """
    Returns:
      decoded QR text, or None when the frame holds no readable code
    """
    if frame is None or getattr(frame, "size", 0) == 0:
        return None
    data, _points, _straight = _DETECTOR.detectAndDecode(frame)
    data = (data or "").strip()
    return data or None
