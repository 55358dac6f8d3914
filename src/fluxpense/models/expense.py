from datetime import date as date_cls, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def today_iso() -> str:
    return date_cls.today().isoformat()


DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")


def parse_date(value: Any) -> Optional[str]:
    """ISO date string for an ISO or M/D/YYYY value; None when it is neither."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date_cls):
        return value.isoformat()
    text = str(value or "").strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


class ExpenseCategory(str, Enum):
    FOOD_AND_DINING = "🍔 Food & Dining"
    TRANSPORTATION = "⛽ Transportation"
    SHOPPING = "🛍️ Shopping"
    BILLS_AND_UTILITIES = "🏠 Bills & Utilities"
    ENTERTAINMENT = "🎬 Entertainment"
    HEALTHCARE = "💊 Healthcare"
    TRAVEL = "✈️ Travel"
    EDUCATION = "📚 Education"

    @property
    def name_text(self) -> str:
        """Label without the leading emoji, as stored in the categories table."""
        return self.value.split(" ", 1)[1]

    @classmethod
    def parse(cls, value: Any) -> Optional["ExpenseCategory"]:
        """Accepts a full label or the bare name; unknown/absent -> None."""
        if value is None:
            return None
        if isinstance(value, cls):
            return value

        text = str(value).strip()
        if not text:
            return None
        for category in cls:
            if text == category.value or text.lower() == category.name_text.lower():
                return category
        return None


class OcrStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CandidateExpense(BaseModel):
    """
    Provisional expense produced by extraction. Never stored as-is.
    """
    amount: Optional[float] = Field(None, description="None when the amount was not extracted")
    merchant: str = ""
    date: str = Field(default_factory=today_iso, description="ISO calendar date")
    category: Optional[ExpenseCategory] = None
    items: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class ExtractionResult(BaseModel):
    """
    Endpoint response with every field optional. Absent fields are defaulted
    explicitly in to_candidate().
    """
    amount: Optional[float] = None
    merchant: Optional[str] = None
    date: Optional[str] = None
    category: Optional[str] = None
    items: Optional[List[str]] = None
    confidence: Optional[float] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> "ExtractionResult":
        items = response.get("items")
        if isinstance(items, (str, dict)):
            items = [items]
        if items is not None:
            items = [_item_name(item) for item in items]
            items = [item for item in items if item]

        amount = response.get("amount")
        if amount is None:
            amount = response.get("total")

        return cls(
            amount=float(amount) if amount not in (None, "") else None,
            merchant=response.get("merchant"),
            date=response.get("date"),
            category=response.get("category"),
            items=items,
            confidence=float(response["confidence"]) if response.get("confidence") is not None else None,
            raw=dict(response),
        )

    @property
    def confidence_score(self) -> float:
        if self.confidence is None:
            return 0.0
        return min(max(self.confidence, 0.0), 1.0)

    def to_candidate(self) -> CandidateExpense:
        return CandidateExpense(
            amount=self.amount,
            merchant=self.merchant.strip() if self.merchant is not None else "",
            date=parse_date(self.date) or today_iso(),
            category=ExpenseCategory.parse(self.category) if self.category is not None else None,
            items=list(self.items) if self.items is not None else [],
            confidence=self.confidence_score,
        )


def _item_name(item: Any) -> str:
    # Endpoints return either plain names or {name|description, ...} objects.
    if isinstance(item, dict):
        return str(item.get("name") or item.get("description") or "").strip()
    return str(item).strip()


class Expense(BaseModel):
    id: str
    user_id: str
    amount: float
    description: str
    category_id: Optional[str] = None
    date: str
    merchant_name: Optional[str] = None
    payment_method: Optional[str] = None
    location: Optional[str] = None
    tags: Optional[List[str]] = None
    receipt_url: Optional[str] = None
    receipt_data: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None

    @field_validator("id", "user_id", "category_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        return str(value) if value is not None else None

    @field_validator("date", "created_at", mode="before")
    @classmethod
    def _stringify_dates(cls, value):
        if value is None:
            return None
        return value.isoformat() if hasattr(value, "isoformat") else str(value)


class Receipt(BaseModel):
    id: str
    user_id: str
    image_url: str
    original_filename: Optional[str] = None
    file_size: Optional[int] = None
    ocr_status: OcrStatus = OcrStatus.PENDING
    ocr_data: Optional[Dict[str, Any]] = None
    extracted_amount: Optional[float] = None
    extracted_merchant: Optional[str] = None
    extracted_date: Optional[str] = None
    extracted_items: Optional[List[str]] = None
    confidence_score: Optional[float] = None
    expense_id: Optional[str] = None

    @field_validator("id", "user_id", "expense_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        return str(value) if value is not None else None

    @field_validator("extracted_date", mode="before")
    @classmethod
    def _stringify_date(cls, value):
        if value is None:
            return None
        return value.isoformat() if hasattr(value, "isoformat") else str(value)


class Notification(BaseModel):
    id: Optional[str] = None
    user_id: str
    title: str
    message: str
    type: str = "success"
    is_read: bool = False
