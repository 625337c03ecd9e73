from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(slots=True)
class DdbError(Exception):
    """Base error for DynamoDB operations.

    Each subclass carries the HTTP status/title it renders as, so the FastAPI
    exception handler in `main` can turn any storage failure into an RFC7807
    problem response without an isinstance ladder.
    """

    http_status: ClassVar[int] = 500
    http_title: ClassVar[str] = "Storage Error"

    message: str
    operation: str | None = None
    table_name: str | None = None
    key: dict[str, Any] | None = None
    aws_request_id: str | None = None
    retryable: bool = False
    cause: Exception | None = None
    reasons: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return self.message

    def to_extensions(self) -> dict[str, Any]:
        ext = {
            "operation": self.operation,
            "table": self.table_name,
            "key": self.key,
            "awsRequestId": self.aws_request_id,
            "retryable": bool(self.retryable),
            "reasons": self.reasons or None,
        }
        return {k: v for k, v in ext.items() if v is not None}


@dataclass(slots=True)
class DdbNotFound(DdbError):
    http_status: ClassVar[int] = 404
    http_title: ClassVar[str] = "Not Found"


@dataclass(slots=True)
class DdbConflict(DdbError):
    """A condition expression failed (item exists / missing / changed)."""

    http_status: ClassVar[int] = 409
    http_title: ClassVar[str] = "Conflict"


@dataclass(slots=True)
class DdbValidation(DdbError):
    http_status: ClassVar[int] = 400
    http_title: ClassVar[str] = "Bad Request"


@dataclass(slots=True)
class DdbThrottled(DdbError):
    http_status: ClassVar[int] = 503
    http_title: ClassVar[str] = "Service Unavailable"


@dataclass(slots=True)
class DdbUnavailable(DdbError):
    http_status: ClassVar[int] = 503
    http_title: ClassVar[str] = "Service Unavailable"


@dataclass(slots=True)
class DdbInternal(DdbError):
    pass
