from typing import Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict


class OCRResult(BaseModel):
    """
    Text read from a receipt image by the local extraction endpoint.
    """
    text: str = Field(..., description="Whitespace-normalized text, one OCR line per row")
    raw_data: Optional[Any] = Field(None, description="Engine output, kept for debugging")
    success: bool
    error: Optional[str] = None
    backend: str = Field(..., description="rapidocr or tesseract")
    mean_confidence: Optional[float] = Field(None, description="Average per-line OCR score when the engine reports one")

    @property
    def line_count(self) -> int:
        return len(self.text.splitlines()) if self.text else 0


class LLMResponse(BaseModel):
    """Answer from the model used to structure receipt text."""
    content: Any = Field(..., description="Parsed response_model instance, or raw text if parsing failed")
    raw_response: str
    model_name: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: float = 0.0


class ReceiptExtractionLLMResponse(BaseModel):
    """Structured output requested from the LLM when parsing receipt or email text."""
    amount: Optional[float] = Field(None, description="Total amount paid, null if not present")
    merchant: Optional[str] = Field(None, description="Merchant / shop name without address")
    date: Optional[str] = Field(None, description="Purchase date in YYYY-MM-DD format")
    category: Optional[str] = Field(None, description="One of the allowed category names")
    items: List[str] = Field(default_factory=list, description="Line item names in receipt order")
    confidence: float = Field(..., description="0..1, how sure you are this text describes a purchase")
    model_config = ConfigDict(extra="forbid")
