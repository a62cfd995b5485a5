from __future__ import annotations

from typing import Any


class StockSyncError(Exception):
    code: str = "stocksync_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class RemoteError(StockSyncError):
    code = "remote_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None, retryable: bool = False) -> None:
        super().__init__(message, details)
        self.retryable = retryable


class ConflictError(StockSyncError):
    code = "job_conflict"


class IndexBuildError(StockSyncError):
    code = "index_build_failed"


class ValidationRejection(StockSyncError):
    code = "row_rejected"

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason, {"reason": reason})
        self.reason = reason


class UploadError(StockSyncError):
    code = "upload_failed"

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message, {"stage": stage})
        self.stage = stage


class JobFailure(StockSyncError):
    code = "job_failed"

    def __init__(self, message: str, status: str | None = None, error_code: str | None = None) -> None:
        super().__init__(message, {"status": status, "error_code": error_code})
        self.status = status
        self.error_code = error_code


class ParseError(StockSyncError):
    code = "parse_error"

    def __init__(self, line_number: int, message: str) -> None:
        super().__init__(message, {"line_number": line_number})
        self.line_number = line_number
