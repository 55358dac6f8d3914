from __future__ import annotations

import os
import sys
import time
from typing import Optional, Type, TypeVar

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, RateLimitError
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fluxpense.exception import CustomException
from fluxpense.logger import get_logger
from fluxpense.models import LLMResponse
from fluxpense.settings import LLMSettings

logger = get_logger(__name__)

StructuredOutput = TypeVar("StructuredOutput", bound=BaseModel)

TRANSIENT_ERRORS = (APITimeoutError, APIConnectionError, RateLimitError)


class OpenAIClient:
    """
    Structures receipt and email text with the OpenAI Responses API.

    Transient provider errors (timeouts, dropped connections, rate limits) are
    retried here, three attempts with exponential backoff. Everything else
    surfaces at once as CustomException.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        client: Optional[OpenAI] = None,
        base_url: Optional[str] = None,
        settings: Optional[LLMSettings] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = settings or LLMSettings()
        self.model = model or settings.extraction_model
        self.temperature = settings.temperature if temperature is None else temperature

        if client is None:
            key = api_key or os.getenv("OPENAI_API_KEY")
            if not key:
                raise CustomException("OPENAI_API_KEY is not set in the environment.")
            client = OpenAI(
                api_key=key,
                base_url=base_url or os.getenv("OPENAI_BASE_URL") or settings.base_url,
                timeout=timeout,
            )
        self.client = client

    def generate(
        self,
        prompt: str,
        response_model: Type[StructuredOutput],
        instructions: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """
        Parses the model's answer into `response_model`.

        Args:
            prompt: the receipt / email text to structure.
            instructions: system-level guidance sent as Responses `instructions`.

        Returns:
            LLMResponse; `content` is a `response_model` instance, or the raw
            output text when the SDK returned nothing parsed.
        """
        model_name = model or self.model
        kwargs = {
            "model": model_name,
            "input": [{"role": "user", "content": prompt}],
            "temperature": self.temperature if temperature is None else temperature,
            "text_format": response_model,
        }
        if instructions:
            kwargs["instructions"] = instructions

        started = time.perf_counter()
        try:
            response = self._parse(**kwargs)
        except APIStatusError as exc:
            logger.error("OpenAI returned HTTP %s for %s: %s", exc.status_code, model_name, exc)
            raise CustomException(exc, sys)
        except Exception as exc:
            logger.error("OpenAI request to %s failed: %s", model_name, exc)
            raise CustomException(exc, sys)
        elapsed_ms = (time.perf_counter() - started) * 1000

        parsed = getattr(response, "output_parsed", None)
        output_text = getattr(response, "output_text", None) or ""
        usage = getattr(response, "usage", None)
        logger.info("%s structured %s in %.0f ms", model_name, response_model.__name__, elapsed_ms)

        return LLMResponse(
            content=output_text if parsed is None else parsed,
            raw_response=output_text,
            model_name=model_name,
            provider=type(self).__name__,
            prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
            completion_tokens=getattr(usage, "output_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
            latency_ms=elapsed_ms,
        )

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
    )
    def _parse(self, **kwargs):
        return self.client.responses.parse(**kwargs)
