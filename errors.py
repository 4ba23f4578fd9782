"""
errors.py
Typed errors raised by the importer. Messages stay human readable because
they are shown to the operator as-is; the code lets callers branch on them.
"""

from enum import Enum


class ErrorCode(str, Enum):
    TRANSIENT = "transient"
    HTTP = "http"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    STORAGE = "storage"
    CATALOG = "catalog"


class ScrapeError(Exception):
    code = ErrorCode.HTTP

    def __init__(self, message: str, code: ErrorCode = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self):
        return {"code": self.code.value, "message": self.message}


class FetchError(ScrapeError):
    """Non-OK response that is not worth retrying."""

    def __init__(self, message: str, status: int = None, code: ErrorCode = None):
        if code is None and status in (401, 403):
            code = ErrorCode.AUTHORIZATION
        super().__init__(message, code)
        self.status = status


class RetryExhausted(ScrapeError):
    code = ErrorCode.EXHAUSTED

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class ScrapeCancelled(ScrapeError):
    code = ErrorCode.CANCELLED


class ValidationError(ScrapeError):
    code = ErrorCode.VALIDATION


class StorageError(ScrapeError):
    code = ErrorCode.STORAGE


class CatalogError(ScrapeError):
    code = ErrorCode.CATALOG
