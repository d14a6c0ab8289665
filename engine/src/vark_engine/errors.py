from __future__ import annotations

"""Structured error taxonomy shared by the engine, API, and CLI."""

from typing import Any


class VarkError(ValueError):
    """Base error with a stable code for API responses and CLI output."""

    code = "VARK_ERROR"

    def __init__(self, message: str, *, code: str | None = None, hint: str | None = None, **context: Any) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.hint = hint
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        for key, value in self.context.items():
            if value is not None:
                payload[key] = value
        return payload


class MalformedTokenError(VarkError):
    code = "TOKEN_MALFORMED"


class DomainNotAllowedError(VarkError):
    code = "DOMAIN_NOT_ALLOWED"


class NotAuthenticatedError(VarkError):
    code = "NOT_AUTHENTICATED"


class MissingNameError(VarkError):
    code = "NAME_REQUIRED"


class InvalidSumError(VarkError):
    code = "INVALID_SUM"

    def __init__(self, total: int, expected: int) -> None:
        super().__init__(
            f"The four scores must add up to exactly {expected}. The current total is {total}.",
            total=total,
            expected=expected,
        )
        self.total = total
        self.expected = expected


class StorageError(VarkError):
    code = "STORAGE_ERROR"


class SubmissionPendingError(VarkError):
    code = "SUBMISSION_PENDING"


class NegativeScoreError(VarkError):
    code = "SCORE_NEGATIVE"
