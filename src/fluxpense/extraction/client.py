import sys
from typing import Any, Dict, Optional, Protocol

from pydantic import ValidationError

from fluxpense.exception import ExtractionFailed, LowConfidenceNoMatch, WorkflowError
from fluxpense.logger import get_logger
from fluxpense.models import CapturePayload, ExtractionResult
from fluxpense.settings import ExtractionSettings
from fluxpense.utils.cancellation import CancellationToken

logger = get_logger(__name__)


class ExtractionEndpoint(Protocol):
    def invoke(self, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        ...


class ExtractionClient:
    """
    Submits a capture payload to the extraction endpoint.

    No retries: a failed call surfaces immediately as ExtractionFailed and the
    user may retry the whole operation.
    """

    def __init__(self, endpoint: ExtractionEndpoint, settings: Optional[ExtractionSettings] = None):
        settings = settings or ExtractionSettings()
        self.endpoint = endpoint
        self.min_confidence = settings.min_confidence
        self.timeout = settings.timeout_seconds

    @staticmethod
    def build_request(payload: CapturePayload, image_url: Optional[str] = None) -> Dict[str, Any]:
        if payload.kind == "image":
            if image_url:
                return {"imageUrl": image_url}
            return {"image": payload.data}

        if payload.has_email_fields:
            return {
                "subject": payload.subject or "",
                "sender": payload.sender or "",
                "content": payload.data,
            }
        return {"emailContent": payload.data}

    def extract(
        self,
        payload: CapturePayload,
        image_url: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExtractionResult:
        request = self.build_request(payload, image_url)
        logger.info("Requesting extraction (%s) for %s capture", ", ".join(request), payload.source.value)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled("extraction")

        try:
            response = self.endpoint.invoke(request, timeout=self.timeout)
        except WorkflowError:
            raise
        except Exception as e:
            logger.error("Extraction endpoint error: %s", e)
            raise ExtractionFailed(e, sys)

        if cancel_token is not None:
            # Result arrived after the capture was closed: drop it.
            cancel_token.raise_if_cancelled("extraction")

        if not isinstance(response, dict):
            raise ExtractionFailed("Extraction endpoint returned a malformed response")
        if response.get("error"):
            raise ExtractionFailed(str(response["error"]))

        try:
            result = ExtractionResult.from_response(response)
        except (ValidationError, TypeError, ValueError) as e:
            logger.error("Malformed extraction response: %s", e)
            raise ExtractionFailed(f"Malformed extraction response: {e}")

        logger.info(
            "Extraction finished: merchant=%r amount=%s confidence=%.2f",
            result.merchant, result.amount, result.confidence_score,
        )
        return result

    def check_confidence(self, result: ExtractionResult) -> ExtractionResult:
        """Raises LowConfidenceNoMatch below the configured threshold."""
        if result.confidence_score < self.min_confidence:
            logger.info("Confidence %.2f below threshold %.2f", result.confidence_score, self.min_confidence)
            raise LowConfidenceNoMatch(result.confidence_score, self.min_confidence)
        return result
