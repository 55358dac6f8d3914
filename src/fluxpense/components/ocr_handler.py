import io
import re
import sys
from typing import Optional

import numpy as np
from PIL import Image, ImageOps
import pytesseract

from fluxpense.logger import get_logger
from fluxpense.exception import CustomException
from fluxpense.models import OCRResult

logger = get_logger(__name__)

MAX_SIDE = 2000


def prepare_image(image_bytes: bytes, max_side: int = MAX_SIDE) -> Image.Image:
    """
    Decodes an uploaded or captured receipt.
    Phone photos carry their rotation in EXIF, so it is applied before OCR;
    very large photos are scaled down so the longest side is `max_side`.
    """
    with Image.open(io.BytesIO(image_bytes)) as img:
        image = ImageOps.exif_transpose(img).convert("RGB")

    if max(image.size) > max_side:
        image.thumbnail((max_side, max_side))
    return image

# ---------------------------------------------------------------------
# RapidOCR backend
# ---------------------------------------------------------------------

_RAPIDOCR_ENGINE = None

def _get_rapidocr_engine():
    global _RAPIDOCR_ENGINE
    if _RAPIDOCR_ENGINE is None:
        try:
            from rapidocr_onnxruntime import RapidOCR
            _RAPIDOCR_ENGINE = RapidOCR()
        except Exception as e:
            logger.error("Could not start RapidOCR: %s", e)
            raise CustomException(e, sys)
    return _RAPIDOCR_ENGINE

def rapidocr_backend(image: Image.Image):
    """
    Returns RapidOCR detections: [ [box, text, score], ... ], box being 4 corner points.
    """
    try:
        detections, _ = _get_rapidocr_engine()(np.asarray(image))
        return detections or []
    except CustomException:
        raise
    except Exception as e:
        raise CustomException(e, sys)

# ---------------------------------------------------------------------
# Tesseract backend
# ---------------------------------------------------------------------

def tesseract_backend(image: Image.Image):
    """Returns Tesseract's plain-text reading of the receipt."""
    try:
        return pytesseract.image_to_string(image)
    except Exception as e:
        raise CustomException(e, sys)

# ---------------------------------------------------------------------
# OCR Handler
# ---------------------------------------------------------------------

class OCRHandler:
    """
    Reads receipt text for the local extraction endpoint.

    Usage:
        ocr = OCRHandler(backend="tesseract")
        result = ocr.run(payload.to_bytes())
    """

    def __init__(self, backend: str = "rapidocr", max_side: int = MAX_SIDE):
        self.backends = {
            "rapidocr": rapidocr_backend,
            "tesseract": tesseract_backend,
        }

        if backend not in self.backends:
            raise CustomException(
                f"Unsupported OCR backend '{backend}'. Available: {list(self.backends.keys())}",
                sys
            )

        self.backend_name = backend
        self.ocr_fn = self.backends[backend]
        self.max_side = max_side
        logger.info("OCRHandler ready (backend=%s, max_side=%d)", backend, max_side)

    def run(self, image_bytes: bytes) -> OCRResult:
        """
        Never raises: failures come back as OCRResult(success=False, error=...).
        """
        try:
            if not image_bytes:
                raise ValueError("Image data is empty")

            image = prepare_image(image_bytes, self.max_side)
            detections = self.ocr_fn(image)
            if detections is None:
                raise ValueError(f"{self.backend_name} returned no result")

            text = normalize_text(self._to_text(detections))
            if not text:
                logger.warning("No text detected on %dx%d receipt image", *image.size)

            return OCRResult(
                text=text,
                raw_data=detections,
                success=True,
                backend=self.backend_name,
                mean_confidence=self._mean_confidence(detections),
            )

        except Exception as e:
            logger.error("OCR (%s) failed: %s", self.backend_name, e)
            return OCRResult(text="", success=False, error=str(e), backend=self.backend_name)

    @staticmethod
    def _to_text(detections) -> str:
        if not isinstance(detections, list):
            return str(detections)

        # Receipts are read top to bottom; RapidOCR does not guarantee that order.
        entries = [d for d in detections if isinstance(d, (list, tuple)) and len(d) >= 2 and d[1]]
        entries.sort(key=_top_edge)
        return "\n".join(str(entry[1]) for entry in entries)

    @staticmethod
    def _mean_confidence(detections) -> Optional[float]:
        if not isinstance(detections, list):
            return None
        scores = [
            float(d[2]) for d in detections
            if isinstance(d, (list, tuple)) and len(d) >= 3 and isinstance(d[2], (int, float))
        ]
        return sum(scores) / len(scores) if scores else None


def _top_edge(detection) -> float:
    try:
        return min(float(point[1]) for point in detection[0])
    except (TypeError, ValueError, IndexError):
        return 0.0


def normalize_text(text: str) -> str:
    """Collapses runs of spaces/tabs and keeps at most one blank line between blocks."""
    if not text:
        return ""
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
