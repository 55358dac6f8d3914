from .expense import (
    CandidateExpense,
    Expense,
    ExpenseCategory,
    ExtractionResult,
    Notification,
    OcrStatus,
    Receipt,
)
from .capture import CapturePayload, CaptureSource
from .extraction import LLMResponse, OCRResult, ReceiptExtractionLLMResponse
