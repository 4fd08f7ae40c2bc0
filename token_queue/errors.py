"""Error types and the shared error envelope.

Every failure the service can report maps to one ``code`` string so that
customer and owner clients can render a specific message for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str
    reason: str | None = None

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if self.reason is not None:
            msg["reason"] = self.reason
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class TokenQueueError(Exception):
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, self.message)


class NotFoundError(TokenQueueError):
    """Shop or token absent."""

    code = "not_found"


class ConflictError(TokenQueueError):
    """A uniqueness rule of the store was violated."""

    code = "conflict"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class DuplicateError(ConflictError):
    """Ledger key already present."""

    code = "duplicate_token"


class PreconditionFailed(TokenQueueError):
    """The queue is not in a state that allows the operation.

    Expected and frequent (closed window, queue closed by the owner, shop not
    set up). ``reason`` is one of the ``REASON_*`` constants.
    """

    code = "precondition_failed"

    REASON_INACTIVE = "inactive"
    REASON_OWNER_CLOSED = "owner_closed"
    REASON_UNCONFIGURED = "unconfigured"

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, self.message, reason=self.reason)


class TransientStoreError(TokenQueueError):
    """Store timed out or was unreachable. Nothing was applied; caller may retry."""

    code = "store_unavailable"
