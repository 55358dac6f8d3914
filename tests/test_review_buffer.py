import pytest
from datetime import date
from fluxpense.exception import MissingRequiredField
from fluxpense.models import CandidateExpense, CaptureSource, ExpenseCategory
from fluxpense.review.buffer import ReviewBuffer


@pytest.fixture
def candidate():
    return CandidateExpense(
        amount=42.5,
        merchant="Walmart",
        date="2024-01-15",
        category=ExpenseCategory.FOOD_AND_DINING,
        items=["Milk", "Bread"],
        confidence=0.92,
    )

# --- Seeding ---

def test_empty_buffer_defaults():
    buffer = ReviewBuffer.empty()
    assert buffer.source == CaptureSource.MANUAL
    assert buffer.amount == ""
    assert buffer.payment_method == "card"
    assert buffer.date == date.today().isoformat()
    assert buffer.category is None

def test_from_candidate(candidate):
    buffer = ReviewBuffer.from_candidate(candidate, CaptureSource.UPLOAD)
    assert buffer.amount == "42.50"
    assert buffer.description == "Walmart"
    assert buffer.merchant == "Walmart"
    assert buffer.date == "2024-01-15"
    assert buffer.category == ExpenseCategory.FOOD_AND_DINING
    assert buffer.items == ["Milk", "Bread"]
    assert buffer.confidence == 0.92

def test_from_candidate_without_amount():
    buffer = ReviewBuffer.from_candidate(CandidateExpense(confidence=0.5), CaptureSource.EMAIL)
    assert buffer.amount == ""
    assert buffer.description == ""

# --- Validation ---

@pytest.mark.parametrize("amount, description, missing", [
    ("", "Coffee", ["amount"]),
    ("0", "Coffee", ["amount"]),
    ("0.00", "Coffee", ["amount"]),
    ("abc", "Coffee", ["amount"]),
    ("nan", "Coffee", ["amount"]),
    ("inf", "Coffee", ["amount"]),
    ("-inf", "Coffee", ["amount"]),
    ("4.50", "", ["description"]),
    ("4.50", "   ", ["description"]),
    ("", "", ["amount", "description"]),
])
def test_required_fields(amount, description, missing):
    buffer = ReviewBuffer.empty()
    buffer.apply(amount=amount, description=description)
    with pytest.raises(MissingRequiredField) as excinfo:
        buffer.validate_required()
    assert excinfo.value.fields == missing

def test_to_expense_fields_validates_first():
    buffer = ReviewBuffer.empty()
    buffer.set_description("Coffee")
    with pytest.raises(MissingRequiredField):
        buffer.to_expense_fields()

def test_to_expense_fields():
    buffer = ReviewBuffer.empty()
    buffer.apply(amount="1,234.567", description="  Laptop ", merchant=" ", date="2024-02-01")
    assert buffer.to_expense_fields() == {
        "amount": 1234.57,
        "description": "Laptop",
        "date": "2024-02-01",
        "merchant_name": None,
        "payment_method": "card",
    }

# --- Edits ---

def test_set_date_accepts_date_object():
    buffer = ReviewBuffer.empty()
    buffer.set_date(date(2024, 1, 15))
    assert buffer.date == "2024-01-15"

def test_set_date_rejects_garbage():
    with pytest.raises(ValueError):
        ReviewBuffer.empty().set_date("yesterday")

def test_set_date_accepts_us_format():
    buffer = ReviewBuffer.empty()
    buffer.set_date("01/15/2024")
    assert buffer.date == "2024-01-15"

def test_set_category_by_bare_name():
    buffer = ReviewBuffer.empty()
    buffer.set_category("healthcare")
    assert buffer.category == ExpenseCategory.HEALTHCARE

def test_set_category_clear():
    buffer = ReviewBuffer.empty()
    buffer.set_category(ExpenseCategory.TRAVEL)
    buffer.set_category(None)
    assert buffer.category is None

def test_set_category_unknown():
    with pytest.raises(ValueError):
        ReviewBuffer.empty().set_category("Groceries")

def test_set_amount_accepts_numbers():
    buffer = ReviewBuffer.empty()
    buffer.set_amount(12.5)
    assert buffer.parsed_amount() == 12.5

def test_apply_unknown_field():
    with pytest.raises(ValueError):
        ReviewBuffer.empty().apply(receipt_url="https://x")

def test_discard(candidate):
    buffer = ReviewBuffer.from_candidate(candidate, CaptureSource.CAMERA)
    buffer.discard()
    assert buffer.discarded
    assert buffer.amount == ""
    assert buffer.items == []
    assert buffer.confidence is None
