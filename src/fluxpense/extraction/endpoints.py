import base64
import sys
from typing import Any, Dict, Optional

import requests

from fluxpense.components.ocr_handler import OCRHandler
from fluxpense.exception import CustomException, ExtractionFailed
from fluxpense.extraction.email_parser import parse_receipt_text
from fluxpense.logger import get_logger
from fluxpense.models import ExpenseCategory, ReceiptExtractionLLMResponse
from fluxpense.settings import ExtractionSettings

logger = get_logger(__name__)

EXTRACTION_INSTRUCTIONS = """
You extract a single purchase from receipts and receipt emails.
From the text you are given, extract the total amount paid, the merchant name (no address),
the purchase date in YYYY-MM-DD format, the line item names and the best category.

Allowed categories: {categories}

Set confidence between 0 and 1: how sure you are that the text describes a purchase
and that the amount is the total paid. If the text is not a receipt, use a confidence below 0.3
and leave the other fields null.
"""


class HttpExtractionEndpoint:
    """
    Serverless extraction function reached over HTTPS.
    Request and response bodies are JSON; an `error` key marks a failure envelope.
    """

    def __init__(self, url: str, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        if not url:
            raise CustomException("Extraction endpoint URL is not configured.")
        self.url = url
        self.api_key = api_key
        self.session = session or requests.Session()

    def invoke(self, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self.session.post(self.url, json=request, headers=headers, timeout=timeout)
        except requests.Timeout:
            raise ExtractionFailed(f"Extraction timed out after {timeout:.0f}s")
        except requests.RequestException as e:
            raise ExtractionFailed(f"Extraction request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not isinstance(body, dict):
            raise ExtractionFailed("Extraction endpoint returned a malformed response")
        if not response.ok or body.get("error"):
            message = body.get("error") or f"HTTP {response.status_code}"
            raise ExtractionFailed(str(message))
        return body


class LocalExtractionEndpoint:
    """
    In-process implementation of the extraction contract:
    image -> OCR text -> LLM (or rule-based) parse.
    """

    def __init__(self, ocr_handler: Optional[OCRHandler] = None, llm_client=None):
        self.ocr_handler = ocr_handler or OCRHandler()
        self.llm_client = llm_client

    def invoke(self, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        if "image" in request or "imageUrl" in request:
            image_bytes = self._load_image(request, timeout)
            ocr_result = self.ocr_handler.run(image_bytes)
            if not ocr_result.success:
                raise ExtractionFailed(ocr_result.error or "OCR failed")
            if not ocr_result.text.strip():
                logger.warning("No text found on receipt image.")
                return {"amount": None, "merchant": None, "date": None, "items": [], "confidence": 0.0}
            logger.info(
                "OCR read %d lines (mean confidence %s)",
                ocr_result.line_count,
                "n/a" if ocr_result.mean_confidence is None else f"{ocr_result.mean_confidence:.2f}",
            )
            return self._parse_text(ocr_result.text)

        if "emailContent" in request:
            return self._parse_text(request["emailContent"])

        if "content" in request or "subject" in request:
            return self._parse_text(
                request.get("content") or "",
                subject=request.get("subject") or "",
                sender=request.get("sender") or "",
            )

        raise ExtractionFailed("No image or email content provided")

    def _load_image(self, request: Dict[str, Any], timeout: float) -> bytes:
        if request.get("image"):
            _, _, encoded = request["image"].partition("base64,")
            return base64.b64decode(encoded or request["image"])

        try:
            response = requests.get(request["imageUrl"], timeout=timeout)
            response.raise_for_status()
            return response.content
        except requests.RequestException as e:
            raise ExtractionFailed(f"Failed to download image: {e}")

    def _parse_text(self, text: str, subject: str = "", sender: str = "") -> Dict[str, Any]:
        if self.llm_client is None:
            return parse_receipt_text(text, subject=subject, sender=sender)

        lines = []
        if sender:
            lines.append(f"From: {sender}")
        if subject:
            lines.append(f"Subject: {subject}")
        lines.append(text)

        instructions = EXTRACTION_INSTRUCTIONS.format(
            categories=", ".join(category.name_text for category in ExpenseCategory),
        )

        try:
            response = self.llm_client.generate(
                prompt="\n".join(lines).strip(),
                response_model=ReceiptExtractionLLMResponse,
                instructions=instructions,
            )
        except Exception as e:
            logger.error("LLM extraction failed: %s", e)
            raise ExtractionFailed(e, sys)

        content = response.content
        if isinstance(content, str):
            logger.warning("LLM returned string instead of object. Attempting manual parse.")
            try:
                content = ReceiptExtractionLLMResponse.model_validate_json(content)
            except ValueError as e:
                raise ExtractionFailed(f"Unparseable extraction response: {e}")

        if not isinstance(content, ReceiptExtractionLLMResponse):
            raise ExtractionFailed(f"Unexpected content type: {type(content)}")

        logger.info("LLM extraction confidence: %.2f", content.confidence)
        return content.model_dump()


def build_extraction_endpoint(settings: ExtractionSettings, llm_client=None):
    """Endpoint selected by `extraction.backend` ("http" or "local")."""
    if settings.backend == "http":
        return HttpExtractionEndpoint(settings.endpoint_url, api_key=settings.api_key)
    if settings.backend == "local":
        return LocalExtractionEndpoint(OCRHandler(backend=settings.ocr_backend), llm_client=llm_client)
    raise CustomException(f"Unsupported extraction backend '{settings.backend}'. Available: ['http', 'local']")
