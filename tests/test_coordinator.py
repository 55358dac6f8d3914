import pytest
from unittest.mock import MagicMock
from fluxpense.components.toast import LoggingToastSink
from fluxpense.exception import MissingRequiredField, PersistenceFailed
from fluxpense.models import (
    CandidateExpense,
    CapturePayload,
    CaptureSource,
    Expense,
    ExpenseCategory,
    ExtractionResult,
    OcrStatus,
    Receipt,
)
from fluxpense.persistence.coordinator import PersistenceCoordinator, extraction_fields
from fluxpense.review.buffer import ReviewBuffer

PUBLIC_ROOT = "https://storage.googleapis.com/fluxpense-receipts"


def fake_expense(user_id, fields):
    return Expense(id="e1", user_id=user_id, **fields)

def fake_receipt(user_id, image_url, ocr_status=OcrStatus.PENDING, original_filename=None, file_size=None, extraction=None):
    return Receipt(
        id="r1",
        user_id=user_id,
        image_url=image_url,
        ocr_status=ocr_status,
        original_filename=original_filename,
        file_size=file_size,
    )


@pytest.fixture
def backends():
    """Store and storage share one parent mock so call order can be asserted."""
    parent = MagicMock()
    parent.storage.upload.side_effect = lambda path, data, content_type=None: path
    parent.storage.get_public_url.side_effect = lambda path: f"{PUBLIC_ROOT}/{path}"
    parent.store.insert_receipt.side_effect = fake_receipt
    parent.store.insert_expense.side_effect = fake_expense
    parent.store.find_category_id.return_value = "cat-food"
    return parent

@pytest.fixture
def toasts():
    return LoggingToastSink()

@pytest.fixture
def coordinator(backends, toasts):
    return PersistenceCoordinator(backends.store, backends.storage, toasts)

@pytest.fixture
def walmart():
    return ExtractionResult.from_response({
        "amount": 42.50,
        "merchant": "Walmart",
        "date": "2024-01-15",
        "category": "🍔 Food & Dining",
        "confidence": 0.92,
    })

@pytest.fixture
def upload_payload():
    return CapturePayload.from_image_bytes(
        b"\xff\xd8" + b"\x00" * 2048, "image/jpeg", CaptureSource.UPLOAD, filename="walmart.jpg"
    )

# --- Commit ---

def test_commit_upload_order_and_fields(coordinator, backends, toasts, walmart, upload_payload):
    buffer = ReviewBuffer.from_candidate(walmart.to_candidate(), CaptureSource.UPLOAD)

    expense = coordinator.commit("u1", buffer, payload=upload_payload, extraction=walmart)

    assert expense.amount == 42.50
    assert expense.merchant_name == "Walmart"
    assert expense.category_id == "cat-food"
    assert expense.receipt_url.startswith(f"{PUBLIC_ROOT}/u1/receipt-")
    assert expense.receipt_data["merchant"] == "Walmart"

    order = [c[0] for c in backends.mock_calls]
    assert order == [
        "storage.upload",
        "storage.get_public_url",
        "store.insert_receipt",
        "store.find_category_id",
        "store.insert_expense",
        "store.link_receipt_expense",
        "store.insert_notification",
    ]
    backends.store.find_category_id.assert_called_once_with("u1", "Food & Dining")
    backends.store.link_receipt_expense.assert_called_once_with("u1", "r1", "e1")

    receipt_kwargs = backends.store.insert_receipt.call_args.kwargs
    assert receipt_kwargs["ocr_status"] == OcrStatus.COMPLETED
    assert receipt_kwargs["extraction"]["extracted_merchant"] == "Walmart"

    notification = backends.store.insert_notification.call_args.args[0]
    assert notification.title == "Receipt Processed"
    assert notification.message == "Successfully added expense: Walmart - $42.50"
    assert toasts.messages == [("Receipt processed successfully!", "$42.50 expense has been recorded.", "default")]

def test_commit_reuses_staged_receipt(coordinator, backends, walmart, upload_payload):
    staged = Receipt(id="r9", user_id="u1", image_url=f"{PUBLIC_ROOT}/u1/receipt-1.jpg", ocr_status=OcrStatus.COMPLETED)
    buffer = ReviewBuffer.from_candidate(walmart.to_candidate(), CaptureSource.UPLOAD)

    expense = coordinator.commit("u1", buffer, payload=upload_payload, receipt=staged, extraction=walmart)

    backends.storage.upload.assert_not_called()
    backends.store.insert_receipt.assert_not_called()
    assert expense.receipt_url == staged.image_url
    backends.store.link_receipt_expense.assert_called_once_with("u1", "r9", "e1")

def test_commit_manual_entry(coordinator, backends, toasts):
    buffer = ReviewBuffer.empty()
    buffer.apply(amount="4.50", description="Coffee")

    expense = coordinator.commit("u1", buffer)

    backends.storage.upload.assert_not_called()
    backends.store.find_category_id.assert_not_called()
    backends.store.link_receipt_expense.assert_not_called()
    assert expense.receipt_url is None
    assert expense.receipt_data is None
    assert toasts.messages[0][0] == "Expense added successfully!"
    assert backends.store.insert_notification.call_args.args[0].title == "Expense Added"

def test_commit_email_receipt_data(coordinator, backends):
    payload = CapturePayload(
        kind="text", data="Total $5.75", source=CaptureSource.EMAIL,
        subject="Your receipt from Starbucks", sender="receipts@starbucks.com",
    )
    extraction = ExtractionResult.from_response({"amount": 5.75, "merchant": "Starbucks", "confidence": 0.8})
    buffer = ReviewBuffer.from_candidate(extraction.to_candidate(), CaptureSource.EMAIL)

    expense = coordinator.commit("u1", buffer, payload=payload, extraction=extraction)

    backends.storage.upload.assert_not_called()
    assert expense.receipt_data["source"] == "email"
    assert expense.receipt_data["subject"] == "Your receipt from Starbucks"
    assert expense.receipt_data["sender"] == "receipts@starbucks.com"
    assert expense.receipt_data["extracted"]["merchant"] == "Starbucks"
    assert "processed_at" in expense.receipt_data

def test_commit_unknown_user_category_saves_uncategorized(coordinator, backends):
    backends.store.find_category_id.return_value = None
    buffer = ReviewBuffer.empty()
    buffer.apply(amount="12", description="Movie", category=ExpenseCategory.ENTERTAINMENT)

    expense = coordinator.commit("u1", buffer)
    assert expense.category_id is None

def test_commit_missing_fields_touches_nothing(coordinator, backends, upload_payload):
    buffer = ReviewBuffer.empty(CaptureSource.UPLOAD)
    buffer.set_description("Coffee")

    with pytest.raises(MissingRequiredField):
        coordinator.commit("u1", buffer, payload=upload_payload)
    assert backends.mock_calls == []

def test_callback_failure_does_not_fail_commit(coordinator, backends):
    buffer = ReviewBuffer.empty()
    buffer.apply(amount="3", description="Tea")
    callback = MagicMock(side_effect=RuntimeError("listener crashed"))

    expense = coordinator.commit("u1", buffer, on_expense_added=callback)

    callback.assert_called_once_with(expense)
    assert expense.id == "e1"

def test_notification_failure_does_not_fail_commit(coordinator, backends, toasts):
    backends.store.insert_notification.side_effect = PersistenceFailed("notifications table locked")
    buffer = ReviewBuffer.empty()
    buffer.apply(amount="3", description="Tea")

    expense = coordinator.commit("u1", buffer)

    assert expense.id == "e1"
    backends.store.insert_expense.assert_called_once()
    assert toasts.messages[-1][0] == "Expense added successfully!"

def test_link_failure_does_not_fail_commit(coordinator, backends, walmart, upload_payload):
    backends.store.link_receipt_expense.side_effect = PersistenceFailed("deadlock detected")
    buffer = ReviewBuffer.from_candidate(walmart.to_candidate(), CaptureSource.UPLOAD)

    expense = coordinator.commit("u1", buffer, payload=upload_payload, extraction=walmart)

    assert expense.receipt_url.startswith(f"{PUBLIC_ROOT}/u1/receipt-")
    backends.store.insert_notification.assert_called_once()

def test_upload_failure_is_persistence_failure(coordinator, backends, upload_payload):
    backends.storage.upload.side_effect = OSError("bucket unreachable")
    buffer = ReviewBuffer.empty(CaptureSource.UPLOAD)
    buffer.apply(amount="3", description="Tea")

    with pytest.raises(PersistenceFailed):
        coordinator.commit("u1", buffer, payload=upload_payload)
    backends.store.insert_receipt.assert_not_called()
    backends.store.insert_expense.assert_not_called()

# --- Orphaned receipt ---

class InMemoryStore:
    def __init__(self):
        self.receipts = {}
        self.expenses = {}

    def insert_receipt(self, user_id, image_url, ocr_status=OcrStatus.PENDING, original_filename=None, file_size=None, extraction=None):
        receipt = Receipt(id=f"r{len(self.receipts) + 1}", user_id=user_id, image_url=image_url, ocr_status=ocr_status)
        self.receipts[receipt.id] = receipt
        return receipt

    def get_receipt(self, user_id, receipt_id):
        return self.receipts.get(receipt_id)

    def find_category_id(self, user_id, name):
        return None

    def insert_expense(self, user_id, fields):
        raise PersistenceFailed("connection reset by peer")

    def link_receipt_expense(self, user_id, receipt_id, expense_id):
        self.receipts[receipt_id] = self.receipts[receipt_id].model_copy(update={"expense_id": expense_id})

    def insert_notification(self, notification):
        return notification


def test_failed_expense_insert_leaves_unlinked_receipt(toasts, walmart, upload_payload):
    store = InMemoryStore()
    storage = MagicMock()
    storage.upload.side_effect = lambda path, data, content_type=None: path
    storage.get_public_url.side_effect = lambda path: f"{PUBLIC_ROOT}/{path}"
    coordinator = PersistenceCoordinator(store, storage, toasts)
    buffer = ReviewBuffer.from_candidate(walmart.to_candidate(), CaptureSource.UPLOAD)

    with pytest.raises(PersistenceFailed):
        coordinator.commit("u1", buffer, payload=upload_payload, extraction=walmart)

    receipt = store.get_receipt("u1", "r1")
    assert receipt is not None
    assert receipt.expense_id is None
    assert store.expenses == {}
    assert toasts.messages == []

# --- Staging ---

def test_stage_receipt_is_processing(coordinator, backends, upload_payload):
    receipt = coordinator.stage_receipt("u1", upload_payload)

    kwargs = backends.store.insert_receipt.call_args.kwargs
    assert kwargs["ocr_status"] == OcrStatus.PROCESSING
    assert kwargs["original_filename"] == "walmart.jpg"
    assert kwargs["file_size"] == upload_payload.size
    assert receipt.image_url.startswith(f"{PUBLIC_ROOT}/u1/receipt-")
    assert receipt.image_url.endswith("-walmart.jpg")

def test_camera_filenames_are_kept(coordinator, backends):
    payload = CapturePayload.from_image_bytes(b"\xff\xd8", "image/jpeg", CaptureSource.CAMERA, filename="receipt-1700000000000.jpg")
    url = coordinator.upload_image("u1", payload)
    assert url == f"{PUBLIC_ROOT}/u1/receipt-1700000000000.jpg"

def test_record_extraction(coordinator, backends, walmart):
    receipt = Receipt(id="r1", user_id="u1", image_url="https://x/r.jpg", ocr_status=OcrStatus.PROCESSING)

    coordinator.record_extraction("u1", receipt, walmart)
    args = backends.store.update_receipt_extraction.call_args.args
    assert args[:3] == ("u1", "r1", OcrStatus.COMPLETED)
    assert args[3]["extracted_amount"] == 42.50
    assert args[3]["confidence_score"] == 0.92

    coordinator.record_extraction("u1", receipt, None)
    assert backends.store.update_receipt_extraction.call_args.args == ("u1", "r1", OcrStatus.FAILED, {})

def test_extraction_fields_drop_bad_dates():
    fields = extraction_fields(ExtractionResult(date="15/01/2024", confidence=0.5))
    assert fields["extracted_date"] is None
    assert extraction_fields(None) == {}
