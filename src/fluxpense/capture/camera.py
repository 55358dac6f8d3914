"""
Camera session management.

A session owns at most one live stream per video surface. stop() is safe to
call at any time and is run on cancel, after capture and on close.
"""

import sys
from typing import List, Optional, Protocol

import cv2
import numpy as np

from fluxpense.exception import CameraAccessDenied, CustomException
from fluxpense.logger import get_logger
from fluxpense.settings import CameraSettings

logger = get_logger(__name__)


class MediaTrack(Protocol):
    def stop(self) -> None:
        ...


class MediaStream(Protocol):
    def get_tracks(self) -> List[MediaTrack]:
        ...

    def read_frame(self) -> np.ndarray:
        ...


class CameraDevice(Protocol):
    def get_user_media(self, facing_mode: str) -> MediaStream:
        ...


class VideoSurface:
    """The live preview target a stream is attached to."""

    def __init__(self, name: str = "capture"):
        self.name = name
        self.src_object: Optional[MediaStream] = None


# ---------------------------------------------------------------------
# OpenCV device
# ---------------------------------------------------------------------

class OpenCVTrack:
    def __init__(self, capture: "cv2.VideoCapture"):
        self._capture = capture
        self.ready_state = "live"

    def stop(self):
        if self.ready_state == "live":
            self._capture.release()
            self.ready_state = "ended"


class OpenCVStream:
    def __init__(self, capture: "cv2.VideoCapture"):
        self._capture = capture
        self._tracks = [OpenCVTrack(capture)]

    def get_tracks(self) -> List[OpenCVTrack]:
        return list(self._tracks)

    def read_frame(self) -> np.ndarray:
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise CustomException("Camera returned no frame")
        return frame


class OpenCVCameraDevice:
    """Maps facing modes ('environment', 'user') to local device indices."""

    def __init__(self, settings: Optional[CameraSettings] = None):
        self.settings = settings or CameraSettings()

    def get_user_media(self, facing_mode: str) -> OpenCVStream:
        index = self.settings.devices.get(facing_mode)
        if index is None:
            # Fall back to any configured camera; rear-facing is only a preference.
            index = next(iter(self.settings.devices.values()), 0)

        capture = cv2.VideoCapture(index)
        if not capture.isOpened():
            capture.release()
            raise CameraAccessDenied(f"Camera {index} ({facing_mode}) could not be opened")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.height)
        logger.info("Opened camera %s for facing mode '%s'", index, facing_mode)
        return OpenCVStream(capture)


# ---------------------------------------------------------------------
# Session manager
# ---------------------------------------------------------------------

class CameraSessionManager:
    def __init__(
        self,
        device: CameraDevice,
        surface: Optional[VideoSurface] = None,
        settings: Optional[CameraSettings] = None,
    ):
        self.device = device
        self.surface = surface or VideoSurface()
        self.settings = settings or CameraSettings()
        self._stream: Optional[MediaStream] = None

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    @property
    def stream(self) -> Optional[MediaStream]:
        return self._stream

    def start(self, facing_mode: Optional[str] = None) -> MediaStream:
        """Acquires the camera, preferring the rear (environment) camera."""
        if self.is_active:
            logger.info("Camera already active on surface '%s'; stopping it first.", self.surface.name)
            self.stop()

        facing_mode = facing_mode or self.settings.facing_mode
        try:
            stream = self.device.get_user_media(facing_mode)
        except CameraAccessDenied:
            logger.warning("Camera access denied (facing_mode=%s)", facing_mode)
            raise
        except Exception as e:
            logger.error("Error accessing camera: %s", e)
            raise CameraAccessDenied(e, sys)

        self._stream = stream
        self.surface.src_object = stream
        logger.debug("Camera stream attached to surface '%s'", self.surface.name)
        return stream

    def stop(self):
        """Stops every track of the held stream. No-op when nothing is active."""
        stream, self._stream = self._stream, None
        if self.surface.src_object is stream:
            self.surface.src_object = None
        if stream is None:
            return

        for track in stream.get_tracks():
            try:
                track.stop()
            except Exception as e:
                logger.error("Failed to stop camera track: %s", e)
        logger.info("Camera stream stopped.")

    def capture_frame(self) -> np.ndarray:
        if self._stream is None:
            raise CustomException("No active camera session to capture from")
        return self._stream.read_frame()
