"""
Error types for the capture workflow.

CustomException is the project-wide error wrapper. WorkflowError subclasses
carry a stable `kind` so the capture session can turn them into outcomes.
"""

from typing import Any, Optional


def error_message_detail(error: Any, error_detail: Optional[Any] = None) -> str:
    """Adds file/line information when raised while handling another exception."""
    message = str(error)
    if error_detail is None:
        return message

    _, _, exc_tb = error_detail.exc_info()
    if exc_tb is None:
        return message

    while exc_tb.tb_next is not None:
        exc_tb = exc_tb.tb_next
    file_name = exc_tb.tb_frame.f_code.co_filename
    return f"Error in [{file_name}] line [{exc_tb.tb_lineno}]: {message}"


class CustomException(Exception):
    def __init__(self, error_message: Any, error_detail: Optional[Any] = None):
        super().__init__(str(error_message))
        self.error_message = error_message_detail(error_message, error_detail)

    def __str__(self) -> str:
        return self.error_message


class WorkflowError(CustomException):
    """Base class for the error kinds surfaced by the capture workflow."""

    kind = "WorkflowError"

    def __init__(self, message: Any = "", error_detail: Optional[Any] = None):
        super().__init__(message or self.kind, error_detail)
        self.message = str(message or self.kind)


class CameraAccessDenied(WorkflowError):
    kind = "CameraAccessDenied"


class InvalidFileType(WorkflowError):
    kind = "InvalidFileType"


class FileTooLarge(WorkflowError):
    kind = "FileTooLarge"


class EmptyInput(WorkflowError):
    kind = "EmptyInput"


class FileReadError(WorkflowError):
    kind = "FileReadError"


class MissingRequiredField(WorkflowError):
    kind = "MissingRequiredField"

    def __init__(self, fields, error_detail: Optional[Any] = None):
        self.fields = list(fields)
        super().__init__(f"Missing required field(s): {', '.join(self.fields)}", error_detail)


class ExtractionFailed(WorkflowError):
    kind = "ExtractionFailed"


class LowConfidenceNoMatch(WorkflowError):
    kind = "LowConfidenceNoMatch"

    def __init__(self, confidence: float, threshold: float):
        self.confidence = confidence
        self.threshold = threshold
        super().__init__(f"No expense found (confidence {confidence:.2f} < {threshold:.2f})")


class PersistenceFailed(WorkflowError):
    kind = "PersistenceFailed"


class UserNotAuthenticated(WorkflowError):
    kind = "UserNotAuthenticated"


class OperationCancelled(WorkflowError):
    kind = "OperationCancelled"


__all__ = [
    "CustomException",
    "WorkflowError",
    "CameraAccessDenied",
    "InvalidFileType",
    "FileTooLarge",
    "EmptyInput",
    "FileReadError",
    "MissingRequiredField",
    "ExtractionFailed",
    "LowConfidenceNoMatch",
    "PersistenceFailed",
    "UserNotAuthenticated",
    "OperationCancelled",
]
