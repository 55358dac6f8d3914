import math
from datetime import date as date_cls
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from fluxpense.exception import MissingRequiredField
from fluxpense.logger import get_logger
from fluxpense.models import CandidateExpense, CaptureSource, ExpenseCategory
from fluxpense.models.expense import parse_date, today_iso

logger = get_logger(__name__)


class ReviewBuffer(BaseModel):
    """
    Editable form state for one expense, held only while the capture dialog is open.
    Amount is kept as entered so an empty field can be told apart from zero.
    """
    source: CaptureSource = CaptureSource.MANUAL
    amount: str = ""
    description: str = ""
    merchant: str = ""
    date: str = Field(default_factory=today_iso)
    category: Optional[ExpenseCategory] = None
    payment_method: str = "card"
    items: List[str] = Field(default_factory=list)
    confidence: Optional[float] = None
    discarded: bool = False

    @classmethod
    def empty(cls, source: CaptureSource = CaptureSource.MANUAL) -> "ReviewBuffer":
        return cls(source=source)

    @classmethod
    def from_candidate(cls, candidate: CandidateExpense, source: CaptureSource) -> "ReviewBuffer":
        return cls(
            source=source,
            amount=_format_amount(candidate.amount),
            description=candidate.merchant,
            merchant=candidate.merchant,
            date=candidate.date,
            category=candidate.category,
            items=list(candidate.items),
            confidence=candidate.confidence,
        )

    # --- edits ---------------------------------------------------------
    def set_amount(self, value: Union[str, float, int, None]):
        self.amount = "" if value is None else str(value).strip()

    def set_description(self, value: str):
        self.description = value or ""

    def set_merchant(self, value: str):
        self.merchant = value or ""

    def set_date(self, value: Union[str, date_cls]):
        parsed = parse_date(value)
        if parsed is None:
            raise ValueError(f"Invalid date: {value}")
        self.date = parsed

    def set_category(self, value: Union[ExpenseCategory, str, None]):
        category = ExpenseCategory.parse(value)
        if value not in (None, "") and category is None:
            raise ValueError(f"Unknown category: {value}")
        self.category = category

    def set_payment_method(self, value: str):
        self.payment_method = value or "card"

    def apply(self, **fields: Any):
        """Applies several edits by field name (amount, description, merchant, date, category, payment_method)."""
        for name, value in fields.items():
            setter = getattr(self, f"set_{name}", None)
            if setter is None:
                raise ValueError(f"Field '{name}' is not editable")
            setter(value)

    # --- validation ----------------------------------------------------
    def parsed_amount(self) -> Optional[float]:
        try:
            amount = float(self.amount.replace(",", "")) if self.amount else None
        except ValueError:
            return None
        if amount is not None and not math.isfinite(amount):
            return None
        return amount

    def validate_required(self):
        missing = []
        amount = self.parsed_amount()
        if amount is None or amount == 0:
            missing.append("amount")
        if not self.description.strip():
            missing.append("description")
        if missing:
            raise MissingRequiredField(missing)

    def to_expense_fields(self) -> Dict[str, Any]:
        """Insert payload for the expenses table (user, category id and receipt fields are added by the caller)."""
        self.validate_required()
        return {
            "amount": round(self.parsed_amount(), 2),
            "description": self.description.strip(),
            "date": self.date,
            "merchant_name": self.merchant.strip() or None,
            "payment_method": self.payment_method,
        }

    def discard(self):
        logger.debug("Discarding review buffer (%s)", self.source.value)
        self.amount = ""
        self.description = ""
        self.merchant = ""
        self.date = today_iso()
        self.category = None
        self.items = []
        self.confidence = None
        self.discarded = True


def _format_amount(amount: Optional[float]) -> str:
    if amount is None or amount == 0:
        return ""
    return f"{amount:.2f}"
