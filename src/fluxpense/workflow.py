"""
Capture session: hosts one "add expense" dialog.

Chains capture -> extraction -> review -> commit for a single dialog lifetime
and converts every error into a WorkflowOutcome so nothing raw reaches the page.
"""

import sys
from enum import Enum
from typing import BinaryIO, Callable, Literal, Optional, Union

from pydantic import BaseModel

from fluxpense.auth import AuthProvider, require_user_id
from fluxpense.capture.camera import CameraSessionManager
from fluxpense.capture.source_adapter import CaptureSourceAdapter
from fluxpense.exception import (
    CameraAccessDenied,
    ExtractionFailed,
    LowConfidenceNoMatch,
    OperationCancelled,
    PersistenceFailed,
    WorkflowError,
)
from fluxpense.extraction.client import ExtractionClient
from fluxpense.logger import get_logger
from fluxpense.models import (
    CandidateExpense,
    CapturePayload,
    CaptureSource,
    Expense,
    ExtractionResult,
    Receipt,
)
from fluxpense.persistence.coordinator import PersistenceCoordinator, ToastSink
from fluxpense.review.buffer import ReviewBuffer
from fluxpense.utils.cancellation import CancellationToken

logger = get_logger(__name__)


class EntryMethod(str, Enum):
    SELECTION = "selection"
    MANUAL = "manual"
    SCAN = "scan"
    UPLOAD = "upload"
    EMAIL = "email"


METHOD_SOURCES = {
    EntryMethod.MANUAL: CaptureSource.MANUAL,
    EntryMethod.SCAN: CaptureSource.CAMERA,
    EntryMethod.UPLOAD: CaptureSource.UPLOAD,
    EntryMethod.EMAIL: CaptureSource.EMAIL,
}

# kind -> (toast title, default description, toast variant)
ERROR_TOASTS = {
    "CameraAccessDenied": ("Camera access denied", "Please allow camera access to scan receipts.", "destructive"),
    "InvalidFileType": ("Invalid file type", "Please select an image file (JPG, PNG, etc.)", "destructive"),
    "FileTooLarge": ("File too large", "Please select a smaller image.", "destructive"),
    "EmptyInput": ("Missing information", "Please provide email content or subject.", "destructive"),
    "FileReadError": ("Could not read file", "Please select the image again.", "destructive"),
    "MissingRequiredField": ("Missing information", "Please fill in amount and description.", "destructive"),
    "ExtractionFailed": (
        "Processing failed",
        "Could not extract information from the receipt. Please try again or use manual entry.",
        "destructive",
    ),
    "LowConfidenceNoMatch": ("No expense found", "Could not extract expense information.", "info"),
    "PersistenceFailed": ("Failed to add expense", "Please try again.", "destructive"),
    "UserNotAuthenticated": ("Not signed in", "Please sign in to add expenses.", "destructive"),
}


class WorkflowOutcome(BaseModel):
    status: Literal["ok", "info", "error", "cancelled"]
    error_kind: Optional[str] = None
    message: str = ""
    expense: Optional[Expense] = None
    candidate: Optional[CandidateExpense] = None
    fallback: Optional[EntryMethod] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class CaptureSession:
    def __init__(
        self,
        auth: AuthProvider,
        adapter: CaptureSourceAdapter,
        extractor: ExtractionClient,
        coordinator: PersistenceCoordinator,
        toasts: ToastSink,
        camera: Optional[CameraSessionManager] = None,
        on_expense_added: Optional[Callable[[Expense], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self.auth = auth
        self.adapter = adapter
        self.extractor = extractor
        self.coordinator = coordinator
        self.toasts = toasts
        self.camera = camera
        self.on_expense_added = on_expense_added
        self.on_close = on_close

        self.method = EntryMethod.SELECTION
        self.is_open = False
        self.buffer: Optional[ReviewBuffer] = None
        self.payload: Optional[CapturePayload] = None
        self.receipt: Optional[Receipt] = None
        self.extraction: Optional[ExtractionResult] = None
        self.token = CancellationToken()
        self._user_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Dialog lifecycle
    # ------------------------------------------------------------------
    def open(self, method: Union[EntryMethod, str] = EntryMethod.SELECTION) -> WorkflowOutcome:
        if self.is_open:
            self._reset()
        self.is_open = True
        self.token = CancellationToken()
        return self.choose(method)

    def choose(self, method: Union[EntryMethod, str]) -> WorkflowOutcome:
        """Switches the dialog to an entry method (the 'selection' screen included)."""
        method = EntryMethod(method)
        self._reset()
        self.method = method
        logger.info("Capture dialog switched to '%s'", method.value)

        if method == EntryMethod.MANUAL:
            self.buffer = ReviewBuffer.empty(CaptureSource.MANUAL)
        elif method == EntryMethod.SCAN:
            return self._start_camera()
        return WorkflowOutcome(status="ok")

    def back(self) -> WorkflowOutcome:
        return self.choose(EntryMethod.SELECTION)

    def close(self) -> WorkflowOutcome:
        """Cancel, dismiss or post-commit close: camera released, buffer discarded."""
        self.token.cancel("capture closed")
        self._reset()
        self.method = EntryMethod.SELECTION
        was_open, self.is_open = self.is_open, False
        if was_open and self.on_close is not None:
            self.on_close()
        return WorkflowOutcome(status="ok")

    def _reset(self):
        if self.camera is not None:
            self.camera.stop()
        if self.buffer is not None:
            self.buffer.discard()
        self.buffer = None
        self.payload = None
        self.receipt = None
        self.extraction = None

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    def _start_camera(self) -> WorkflowOutcome:
        if self.camera is None:
            return self._fail(CameraAccessDenied("No camera available"), fallback=EntryMethod.UPLOAD)
        try:
            self.camera.start()
        except WorkflowError as e:
            return self._fail(e, fallback=EntryMethod.UPLOAD)
        return WorkflowOutcome(status="ok")

    def retake(self) -> WorkflowOutcome:
        self._reset()
        return self._start_camera()

    def capture_photo(self) -> WorkflowOutcome:
        if self.camera is None or not self.camera.is_active:
            return self._fail(CameraAccessDenied("Camera is not running"), fallback=EntryMethod.UPLOAD)
        try:
            payload = self.adapter.from_camera(self.camera)
        except WorkflowError as e:
            return self._fail(e)
        except Exception as e:
            logger.error("Camera capture failed: %s", e)
            return self._fail(ExtractionFailed(e, sys))
        return self._extract(payload)

    def select_file(
        self,
        file: Union[bytes, BinaryIO],
        filename: str,
        content_type: Optional[str],
        size: Optional[int] = None,
    ) -> WorkflowOutcome:
        try:
            payload = self.adapter.from_upload(file, filename, content_type, size=size)
        except WorkflowError as e:
            return self._fail(e)
        return self._extract(payload)

    def submit_email(self, content: str, subject: str = "", sender: str = "") -> WorkflowOutcome:
        try:
            payload = self.adapter.from_email(content, subject=subject, sender=sender)
        except WorkflowError as e:
            return self._fail(e)
        return self._extract(payload)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    def _extract(self, payload: CapturePayload) -> WorkflowOutcome:
        self.payload = payload
        self.receipt = None
        self.extraction = None
        token = self.token

        try:
            if payload.kind == "image":
                result = self._extract_image(payload, token)
            else:
                result = self.extractor.extract(payload, cancel_token=token)
            self.extraction = result
            self.extractor.check_confidence(result)
        except OperationCancelled as e:
            logger.info("Dropped extraction result: %s", e.message)
            return WorkflowOutcome(status="cancelled", error_kind=e.kind, message=e.message)
        except LowConfidenceNoMatch as e:
            self.buffer = ReviewBuffer.empty(payload.source)
            return self._fail(e)
        except WorkflowError as e:
            # Manual entry stays possible after a failed extraction.
            self.buffer = ReviewBuffer.empty(payload.source)
            return self._fail(e)
        except Exception as e:
            logger.error("Unexpected extraction error: %s", e)
            self.buffer = ReviewBuffer.empty(payload.source)
            return self._fail(ExtractionFailed(e, sys))

        candidate = result.to_candidate()
        self.buffer = ReviewBuffer.from_candidate(candidate, payload.source)
        self.toasts.show(
            "Receipt processed successfully!",
            f"Extracted data with {round(candidate.confidence * 100)}% confidence",
        )
        return WorkflowOutcome(status="ok", candidate=candidate)

    def _extract_image(self, payload: CapturePayload, token: CancellationToken) -> ExtractionResult:
        """Stores the image first, records a 'processing' receipt, then extracts by URL."""
        user_id = self._require_user()
        receipt = self.coordinator.stage_receipt(user_id, payload)
        self.receipt = receipt

        try:
            token.raise_if_cancelled("receipt upload")
            result = self.extractor.extract(payload, image_url=receipt.image_url, cancel_token=token)
        except Exception:
            # Staged receipt never stays in processing.
            try:
                failed = self.coordinator.record_extraction(user_id, receipt, None)
                if not token.cancelled:
                    self.receipt = failed
            except WorkflowError as e:
                logger.warning("Could not mark receipt %s failed: %s", receipt.id, e.message)
            raise

        self.receipt = self.coordinator.record_extraction(user_id, receipt, result)
        return result

    # ------------------------------------------------------------------
    # Review & commit
    # ------------------------------------------------------------------
    def edit(self, **fields) -> WorkflowOutcome:
        if self.buffer is None:
            self.buffer = ReviewBuffer.empty(METHOD_SOURCES.get(self.method, CaptureSource.MANUAL))
        try:
            self.buffer.apply(**fields)
        except ValueError as e:
            return WorkflowOutcome(status="error", error_kind="InvalidField", message=str(e))
        return WorkflowOutcome(status="ok")

    def commit(self) -> WorkflowOutcome:
        if self.buffer is None:
            self.buffer = ReviewBuffer.empty(METHOD_SOURCES.get(self.method, CaptureSource.MANUAL))

        try:
            self.buffer.validate_required()
            user_id = self._require_user()
            expense = self.coordinator.commit(
                user_id,
                self.buffer,
                payload=self.payload,
                receipt=self.receipt,
                extraction=self.extraction,
                on_expense_added=self.on_expense_added,
            )
        except WorkflowError as e:
            # Buffer is kept so the user can retry without re-entering data.
            return self._fail(e)
        except Exception as e:
            logger.error("Unexpected commit error: %s", e)
            return self._fail(PersistenceFailed(e, sys))

        self.close()
        return WorkflowOutcome(status="ok", expense=expense, message="Expense added")

    # ------------------------------------------------------------------
    def _require_user(self) -> str:
        if self._user_id is None:
            self._user_id = require_user_id(self.auth)
        return self._user_id

    def _fail(self, error: WorkflowError, fallback: Optional[EntryMethod] = None) -> WorkflowOutcome:
        kind = error.kind
        title, default_description, variant = ERROR_TOASTS.get(kind, ("Something went wrong", "", "destructive"))
        description = default_description
        if kind in ("FileTooLarge", "PersistenceFailed", "UserNotAuthenticated") and error.message != kind:
            description = error.message

        logger.warning("Capture %s failed with %s: %s", self.method.value, kind, error.message)
        self.toasts.show(title, description, variant)
        return WorkflowOutcome(
            status="info" if kind == "LowConfidenceNoMatch" else "error",
            error_kind=kind,
            message=title if kind == "LowConfidenceNoMatch" else error.message,
            fallback=fallback,
        )


def build_capture_session(
    settings,
    auth: AuthProvider,
    toasts: ToastSink,
    store=None,
    storage=None,
    endpoint=None,
    camera: Optional[CameraSessionManager] = None,
    on_expense_added: Optional[Callable[[Expense], None]] = None,
    on_close: Optional[Callable[[], None]] = None,
) -> CaptureSession:
    """Wires a CaptureSession from Settings; collaborators can be injected."""
    from fluxpense.dbs.expense_store import ExpenseStore
    from fluxpense.extraction.endpoints import build_extraction_endpoint
    from fluxpense.utils.receipt_storage import ReceiptStorage

    store = store or ExpenseStore(settings.database_url)
    storage = storage or ReceiptStorage(settings.storage)
    endpoint = endpoint or build_extraction_endpoint(settings.extraction)

    return CaptureSession(
        auth=auth,
        adapter=CaptureSourceAdapter(settings.upload_limits, settings.camera),
        extractor=ExtractionClient(endpoint, settings.extraction),
        coordinator=PersistenceCoordinator(store, storage, toasts),
        toasts=toasts,
        camera=camera,
        on_expense_added=on_expense_added,
        on_close=on_close,
    )
