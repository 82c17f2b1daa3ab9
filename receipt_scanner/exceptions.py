"""
OCR pipeline exceptions.

Only InvalidInputError and ProcessingFailedError ever reach a caller of the
adaptive processor. The others are recovered from inside the pipeline:
ImageDecodeError by the analyzer's file-size heuristic, ModelInvocationError
by escalation, ResponseParseError by the regex extraction path.
"""

from typing import Optional


class OCRError(Exception):
    """Base exception for OCR errors."""
    pass


class InvalidInputError(OCRError):
    """Empty, oversized or wrong-type upload. Rejected before any model call."""

    def __init__(self, message: str, filename: Optional[str] = None):
        self.filename = filename
        super().__init__(message)


class ImageDecodeError(OCRError):
    """The image bytes could not be decoded into pixels."""
    pass


class ModelInvocationError(OCRError):
    """Network failure, timeout or non-2xx response from the vision endpoint."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        model_id: Optional[str] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        self.model_id = model_id
        super().__init__(message)


class ResponseParseError(OCRError):
    """Model output was not a usable JSON object."""
    pass


class ProcessingFailedError(OCRError):
    """Adaptive processing and the fallback strategy both failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
