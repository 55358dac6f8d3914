"""
Turns a reviewed buffer into persisted records.

Commit steps run in a fixed order and are NOT transactional:
  1. upload the image and insert a Receipt (image captures without a receipt yet)
  2. insert the Expense
  3. link the Receipt to the Expense
  4. insert a Notification
  5. success toast + "expense added" callback
A failure after step 1 leaves the Receipt in place with expense_id = NULL.
"""

import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol

from fluxpense.exception import PersistenceFailed, WorkflowError
from fluxpense.logger import get_logger
from fluxpense.models import (
    CapturePayload,
    CaptureSource,
    Expense,
    ExtractionResult,
    Notification,
    OcrStatus,
    Receipt,
)
from fluxpense.models.expense import parse_date
from fluxpense.review.buffer import ReviewBuffer

logger = get_logger(__name__)

NOTIFICATION_TITLES = {
    CaptureSource.MANUAL: "Expense Added",
    CaptureSource.UPLOAD: "Receipt Processed",
    CaptureSource.CAMERA: "Receipt Scanned",
    CaptureSource.EMAIL: "Email Receipt Processed",
}

TOAST_TITLES = {
    CaptureSource.MANUAL: "Expense added successfully!",
    CaptureSource.UPLOAD: "Receipt processed successfully!",
    CaptureSource.CAMERA: "Receipt scanned successfully!",
    CaptureSource.EMAIL: "Email processed successfully!",
}


class ObjectStorage(Protocol):
    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        ...

    def get_public_url(self, path: str) -> str:
        ...


class ToastSink(Protocol):
    def show(self, title: str, description: str = "", variant: str = "default") -> None:
        ...


def extraction_fields(result: Optional[ExtractionResult]) -> Dict[str, Any]:
    """Denormalized extraction copies stored on the Receipt row."""
    if result is None:
        return {}
    return {
        "ocr_data": result.raw,
        "extracted_amount": result.amount,
        "extracted_merchant": result.merchant,
        "extracted_date": parse_date(result.date),
        "extracted_items": result.items,
        "confidence_score": result.confidence_score,
    }


class PersistenceCoordinator:
    def __init__(self, store, storage: ObjectStorage, toasts: ToastSink):
        self.store = store
        self.storage = storage
        self.toasts = toasts

    # ------------------------------------------------------------------
    # Receipt staging
    # ------------------------------------------------------------------
    def upload_image(self, user_id: str, payload: CapturePayload) -> str:
        """Uploads the capture under the user's folder and returns its public URL."""
        name = payload.filename or "receipt.jpg"
        if not name.startswith("receipt-"):
            name = f"receipt-{int(time.time() * 1000)}-{name}"

        try:
            path = self.storage.upload(f"{user_id}/{name}", payload.to_bytes(), content_type=payload.content_type)
            return self.storage.get_public_url(path)
        except WorkflowError:
            raise
        except Exception as e:
            logger.error("Receipt upload failed for user %s: %s", user_id, e)
            raise PersistenceFailed(e, sys)

    def stage_receipt(self, user_id: str, payload: CapturePayload) -> Receipt:
        """Uploads the image and records a Receipt in 'processing' before extraction runs."""
        image_url = self.upload_image(user_id, payload)
        return self.store.insert_receipt(
            user_id,
            image_url,
            ocr_status=OcrStatus.PROCESSING,
            original_filename=payload.filename,
            file_size=payload.size,
        )

    def record_extraction(self, user_id: str, receipt: Receipt, result: Optional[ExtractionResult]) -> Receipt:
        """Marks the receipt completed with the extracted fields, or failed when result is None."""
        status = OcrStatus.COMPLETED if result is not None else OcrStatus.FAILED
        return self.store.update_receipt_extraction(user_id, receipt.id, status, extraction_fields(result))

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------
    def commit(
        self,
        user_id: str,
        buffer: ReviewBuffer,
        payload: Optional[CapturePayload] = None,
        receipt: Optional[Receipt] = None,
        extraction: Optional[ExtractionResult] = None,
        on_expense_added: Optional[Callable[[Expense], None]] = None,
    ) -> Expense:
        # Validation blocks commit before any storage or store call.
        fields = buffer.to_expense_fields()

        if payload is not None and payload.kind == "image" and receipt is None:
            image_url = self.upload_image(user_id, payload)
            receipt = self.store.insert_receipt(
                user_id,
                image_url,
                ocr_status=OcrStatus.COMPLETED,
                original_filename=payload.filename,
                file_size=payload.size,
                extraction=extraction_fields(extraction),
            )

        if buffer.category is not None:
            fields["category_id"] = self.store.find_category_id(user_id, buffer.category.name_text)
            if fields["category_id"] is None:
                logger.info("Category '%s' not set up for user %s; saving uncategorized", buffer.category.name_text, user_id)

        if receipt is not None:
            fields["receipt_url"] = receipt.image_url
        fields["receipt_data"] = self._receipt_data(payload, extraction)

        try:
            expense = self.store.insert_expense(user_id, fields)
        except PersistenceFailed:
            if receipt is not None:
                logger.warning("Expense insert failed; receipt %s left unlinked", receipt.id)
            raise

        # Expense is saved; later failures must not turn a retry into a duplicate.
        if receipt is not None:
            try:
                self.store.link_receipt_expense(user_id, receipt.id, expense.id)
            except Exception as e:
                logger.warning("Could not link receipt %s to expense %s: %s", receipt.id, expense.id, e)

        try:
            self._notify(user_id, buffer.source, expense)
        except Exception as e:
            logger.warning("Notification for expense %s not recorded: %s", expense.id, e)

        self.toasts.show(TOAST_TITLES[buffer.source], f"${expense.amount:.2f} expense has been recorded.")
        if on_expense_added is not None:
            try:
                on_expense_added(expense)
            except Exception as e:
                logger.error("on_expense_added callback failed: %s", e)
        return expense

    def _notify(self, user_id: str, source: CaptureSource, expense: Expense):
        notification = Notification(
            user_id=user_id,
            title=NOTIFICATION_TITLES[source],
            message=f"Successfully added expense: {expense.description} - ${expense.amount:.2f}",
            type="success",
        )
        self.store.insert_notification(notification)

    @staticmethod
    def _receipt_data(payload: Optional[CapturePayload], extraction: Optional[ExtractionResult]) -> Optional[Dict[str, Any]]:
        if payload is not None and payload.kind == "text":
            data: Dict[str, Any] = {
                "source": CaptureSource.EMAIL.value,
                "subject": payload.subject,
                "sender": payload.sender,
                "processed_at": datetime.now(timezone.utc).isoformat(),
            }
            if extraction is not None:
                data["extracted"] = extraction.raw
            return data
        if extraction is not None:
            return extraction.raw
        return None
