import io
import pytest
from unittest.mock import MagicMock
import numpy as np
from PIL import Image
from fluxpense.capture.source_adapter import CaptureSourceAdapter
from fluxpense.exception import EmptyInput, FileReadError, FileTooLarge, InvalidFileType
from fluxpense.models import CaptureSource
from fluxpense.settings import UploadLimits

MB = 1024 * 1024


def make_image_bytes(fmt="PNG", size=(4, 3)):
    buf = io.BytesIO()
    Image.new("RGB", size, color=(255, 255, 255)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def adapter():
    return CaptureSourceAdapter(UploadLimits())

# --- Upload ---

def test_upload_valid_png(adapter):
    data = make_image_bytes()
    payload = adapter.from_upload(data, "receipt.png", "image/png")

    assert payload.kind == "image"
    assert payload.source == CaptureSource.UPLOAD
    assert payload.data.startswith("data:image/png;base64,")
    assert payload.filename == "receipt.png"
    assert payload.size == len(data)
    assert (payload.width, payload.height) == (4, 3)
    assert payload.to_bytes() == data

def test_upload_accepts_file_object(adapter):
    data = make_image_bytes("JPEG")
    payload = adapter.from_upload(io.BytesIO(data), "receipt.jpg", "image/jpeg")
    assert payload.content_type == "image/jpeg"
    assert payload.size == len(data)

def test_upload_rejects_text_plain_without_reading(adapter):
    file = MagicMock()
    with pytest.raises(InvalidFileType):
        adapter.from_upload(file, "notes.txt", "text/plain")
    file.read.assert_not_called()

def test_upload_rejects_missing_content_type(adapter):
    with pytest.raises(InvalidFileType):
        adapter.from_upload(make_image_bytes(), "receipt", None)

def test_upload_rejects_declared_size_over_ceiling(adapter):
    file = MagicMock()
    with pytest.raises(FileTooLarge) as excinfo:
        adapter.from_upload(file, "big.jpg", "image/jpeg", size=10 * MB + 1)
    assert "10MB" in excinfo.value.message
    file.read.assert_not_called()

def test_upload_rejects_actual_size_over_ceiling(adapter):
    with pytest.raises(FileTooLarge):
        adapter.from_upload(b"\x00" * (10 * MB + 1), "big.jpg", "image/jpeg")

def test_upload_at_ceiling_is_not_too_large(adapter):
    # Exactly at the ceiling passes the size check and fails later on decoding.
    with pytest.raises(FileReadError):
        adapter.from_upload(b"\x00" * (10 * MB), "edge.jpg", "image/jpeg")

def test_profile_image_has_lower_ceiling(adapter):
    with pytest.raises(FileTooLarge) as excinfo:
        adapter.from_upload(MagicMock(), "me.png", "image/png", size=5 * MB + 1, purpose="profile_image")
    assert "5MB" in excinfo.value.message

def test_upload_corrupt_image(adapter):
    with pytest.raises(FileReadError):
        adapter.from_upload(b"not really a png", "broken.png", "image/png")

def test_upload_read_error(adapter):
    file = MagicMock()
    file.read.side_effect = OSError("device not ready")
    with pytest.raises(FileReadError) as excinfo:
        adapter.from_upload(file, "receipt.png", "image/png")
    assert "receipt.png" in excinfo.value.message

# --- Email ---

def test_email_requires_content_or_subject(adapter):
    with pytest.raises(EmptyInput):
        adapter.from_email("   ", subject="", sender="shop@example.com")

def test_email_subject_only(adapter):
    payload = adapter.from_email("", subject="Your receipt from Starbucks")
    assert payload.kind == "text"
    assert payload.source == CaptureSource.EMAIL
    assert payload.data == ""
    assert payload.subject == "Your receipt from Starbucks"
    assert payload.sender is None

def test_email_trims_fields(adapter):
    payload = adapter.from_email("  Total: $5.00 \n", subject=" Receipt ", sender=" a@b.com ")
    assert payload.data == "Total: $5.00"
    assert payload.subject == "Receipt"
    assert payload.sender == "a@b.com"
    assert payload.has_email_fields

# --- Camera ---

def test_camera_capture_encodes_jpeg_and_stops_camera(adapter):
    camera = MagicMock()
    camera.capture_frame.return_value = np.zeros((10, 20, 3), dtype=np.uint8)

    payload = adapter.from_camera(camera)

    assert payload.source == CaptureSource.CAMERA
    assert payload.content_type == "image/jpeg"
    assert payload.filename.startswith("receipt-") and payload.filename.endswith(".jpg")
    assert (payload.width, payload.height) == (20, 10)
    assert payload.to_bytes()[:2] == b"\xff\xd8"
    camera.stop.assert_called_once()

def test_camera_is_stopped_when_capture_fails(adapter):
    camera = MagicMock()
    camera.capture_frame.side_effect = RuntimeError("no frame")

    with pytest.raises(RuntimeError):
        adapter.from_camera(camera)
    camera.stop.assert_called_once()
