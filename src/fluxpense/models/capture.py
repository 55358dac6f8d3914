import base64
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class CaptureSource(str, Enum):
    MANUAL = "manual"
    CAMERA = "camera"
    UPLOAD = "upload"
    EMAIL = "email"

    @property
    def is_image(self) -> bool:
        return self in (CaptureSource.CAMERA, CaptureSource.UPLOAD)


class CapturePayload(BaseModel):
    """
    Normalized capture: an image as a base64 data URL, or raw text.
    """
    kind: Literal["image", "text"]
    data: str = Field(..., description="data: URL for images, plain text otherwise")
    source: CaptureSource

    content_type: Optional[str] = None
    filename: Optional[str] = None
    size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    subject: Optional[str] = None
    sender: Optional[str] = None

    @classmethod
    def from_image_bytes(cls, data: bytes, content_type: str, source: CaptureSource, **kwargs) -> "CapturePayload":
        encoded = base64.b64encode(data).decode("ascii")
        return cls(
            kind="image",
            data=f"data:{content_type};base64,{encoded}",
            source=source,
            content_type=content_type,
            size=len(data),
            **kwargs,
        )

    @property
    def has_email_fields(self) -> bool:
        return bool(self.subject or self.sender)

    def to_bytes(self) -> bytes:
        if self.kind != "image":
            raise ValueError("Only image payloads carry binary data")
        _, _, encoded = self.data.partition("base64,")
        return base64.b64decode(encoded)
