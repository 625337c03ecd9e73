from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from ...observability.logging import get_logger
from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")

log = get_logger("dynamodb")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_s: float = 0.05
    max_delay_s: float = 1.5


TRANSACTION_POLICY = RetryPolicy(max_attempts=6, base_delay_s=0.08, max_delay_s=2.0)

_THROTTLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
    "TransactionConflictException",
}

_VALIDATION_CODES = {"ValidationException", "ParamValidationError"}
_ACCESS_CODES = {"AccessDeniedException", "UnrecognizedClientException"}


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    # Full jitter: uniform in [0, min(cap, base * 2^(attempt-1))].
    exp = min(policy.max_delay_s, policy.base_delay_s * (2 ** max(0, attempt - 1)))
    return random.random() * exp


def _error_code(e: ClientError) -> str:
    return str(((e.response or {}).get("Error") or {}).get("Code") or "")


def _request_id(e: ClientError) -> str | None:
    return ((e.response or {}).get("ResponseMetadata") or {}).get("RequestId")


def _cancellation_codes(e: ClientError) -> list[str]:
    # TransactWriteItems reports one reason per item; "None" marks items that were fine.
    reasons = (e.response or {}).get("CancellationReasons") or []
    return [str((r or {}).get("Code") or "None") for r in reasons]


def map_client_error(
    *,
    operation: str,
    table_name: str | None,
    key: dict[str, Any] | None,
    exc: Exception,
) -> DdbError:
    if isinstance(exc, DdbError):
        return exc

    ctx: dict[str, Any] = {
        "operation": operation,
        "table_name": table_name,
        "key": key,
        "cause": exc,
    }

    if isinstance(exc, ClientError):
        code = _error_code(exc)
        ctx["aws_request_id"] = _request_id(exc)

        if code == "ConditionalCheckFailedException":
            return DdbConflict(message="Conditional check failed", **ctx)

        if code == "TransactionCanceledException":
            reasons = _cancellation_codes(exc)
            if "ConditionalCheckFailed" in reasons:
                return DdbConflict(message="Transaction condition failed", reasons=reasons, **ctx)
            if "TransactionConflict" in reasons or "ThrottlingError" in reasons:
                return DdbThrottled(
                    message="Transaction conflicted with a concurrent write",
                    retryable=True,
                    reasons=reasons,
                    **ctx,
                )
            return DdbInternal(message="Transaction cancelled", reasons=reasons, **ctx)

        if code in _VALIDATION_CODES:
            return DdbValidation(message="DynamoDB request validation failed", **ctx)

        if code in _ACCESS_CODES:
            return DdbUnavailable(message="DynamoDB access denied", **ctx)

        if code in _THROTTLE_CODES:
            return DdbThrottled(message="DynamoDB request throttled", retryable=True, **ctx)

        return DdbInternal(message=f"DynamoDB request failed ({code or 'ClientError'})", **ctx)

    if isinstance(exc, BotoCoreError):
        return DdbUnavailable(message="DynamoDB client error", retryable=True, **ctx)

    return DdbInternal(message="Unexpected DynamoDB error", **ctx)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    """Run one DynamoDB call, retrying only throttling/transient failures."""
    policy = retry_policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except (ClientError, BotoCoreError) as e:
            mapped = map_client_error(operation=operation, table_name=table_name, key=key, exc=e)
            if not mapped.retryable or attempt >= attempts:
                raise mapped from e
            log.warning(
                "ddb_retry",
                operation=operation,
                attempt=attempt,
                error=mapped.message,
            )
            time.sleep(backoff_delay(policy, attempt))

    raise DdbInternal(message="DynamoDB request failed", operation=operation, table_name=table_name, key=key)
