import io
import sys
import time
from typing import BinaryIO, Optional, Union

import cv2
from PIL import Image, UnidentifiedImageError

from fluxpense.capture.camera import CameraSessionManager
from fluxpense.exception import (
    CustomException,
    EmptyInput,
    FileReadError,
    FileTooLarge,
    InvalidFileType,
)
from fluxpense.logger import get_logger
from fluxpense.models import CapturePayload, CaptureSource
from fluxpense.settings import CameraSettings, UploadLimits

logger = get_logger(__name__)


class CaptureSourceAdapter:
    """
    Normalizes camera frames, uploaded files and pasted email text into a
    CapturePayload. All validation here happens before any network call.
    """

    def __init__(self, limits: Optional[UploadLimits] = None, camera_settings: Optional[CameraSettings] = None):
        self.limits = limits or UploadLimits()
        self.camera_settings = camera_settings or CameraSettings()

    # ------------------------------------------------------------------
    # Camera
    # ------------------------------------------------------------------
    def from_camera(self, camera: CameraSessionManager) -> CapturePayload:
        """Encodes the current frame as JPEG and releases the camera."""
        try:
            frame = camera.capture_frame()
            ok, encoded = cv2.imencode(
                ".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.camera_settings.jpeg_quality]
            )
            if not ok:
                raise CustomException("Could not encode camera frame as JPEG")
        finally:
            camera.stop()

        height, width = frame.shape[:2]
        payload = CapturePayload.from_image_bytes(
            encoded.tobytes(),
            "image/jpeg",
            CaptureSource.CAMERA,
            filename=f"receipt-{int(time.time() * 1000)}.jpg",
            width=width,
            height=height,
        )
        logger.info("Captured camera frame %sx%s (%d bytes)", width, height, payload.size)
        return payload

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------
    def from_upload(
        self,
        file: Union[bytes, BinaryIO],
        filename: str,
        content_type: Optional[str],
        size: Optional[int] = None,
        purpose: str = "receipt",
    ) -> CapturePayload:
        """
        Validates and encodes a user-selected image file.

        Args:
            file: raw bytes or a readable binary file object.
            filename: original file name, kept on the Receipt record.
            content_type: MIME type reported by the browser / uploader.
            size: declared size in bytes; checked before reading when given.
            purpose: "receipt" (10 MB ceiling) or "profile_image" (5 MB).
        """
        if not content_type or not content_type.startswith("image/"):
            logger.warning("Rejected %s: content type %r is not an image", filename, content_type)
            raise InvalidFileType("Please select an image file (JPG, PNG, etc.)")

        ceiling = self.limits.ceiling_for(purpose)
        if size is not None and size > ceiling:
            raise FileTooLarge(f"Please select an image smaller than {ceiling // (1024 * 1024)}MB.")

        data = self._read(file, filename)
        if len(data) > ceiling:
            raise FileTooLarge(f"Please select an image smaller than {ceiling // (1024 * 1024)}MB.")

        try:
            with Image.open(io.BytesIO(data)) as image:
                width, height = image.size
        except (UnidentifiedImageError, OSError) as e:
            logger.error("Unreadable image %s: %s", filename, e)
            raise FileReadError(f"Could not read {filename}", sys)

        logger.info("Accepted upload %s (%s, %d bytes)", filename, content_type, len(data))
        return CapturePayload.from_image_bytes(
            data,
            content_type,
            CaptureSource.UPLOAD,
            filename=filename,
            width=width,
            height=height,
        )

    @staticmethod
    def _read(file: Union[bytes, BinaryIO], filename: str) -> bytes:
        if isinstance(file, (bytes, bytearray)):
            return bytes(file)
        try:
            return file.read()
        except (OSError, ValueError) as e:
            logger.error("Failed reading %s: %s", filename, e)
            raise FileReadError(f"Could not read {filename}", sys)

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------
    def from_email(self, content: str, subject: str = "", sender: str = "") -> CapturePayload:
        content = (content or "").strip()
        subject = (subject or "").strip()
        sender = (sender or "").strip()

        if not content and not subject:
            raise EmptyInput("Please provide email content or subject.")

        return CapturePayload(
            kind="text",
            data=content,
            source=CaptureSource.EMAIL,
            subject=subject or None,
            sender=sender or None,
        )
