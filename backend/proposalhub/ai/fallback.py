"""Ordered fallback across interchangeable strategies (AI models, logo providers).

Each strategy is tried once, in order, up to a bounded number of attempts.
A strategy "fails soft" when it raises a transient error or when its result is
rejected by the caller's `accept` check; the runner then moves on. A permanent
error (bad credentials, malformed request) stops the chain immediately, since
the next strategy would fail the same way. When every strategy has been tried
the runner raises one `FallbackExhausted` carrying the per-attempt reasons.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import httpx

from ..observability.logging import get_logger

log = get_logger("fallback")

T = TypeVar("T")

TRANSIENT_STATUS = frozenset({404, 408, 409, 425, 429, 500, 502, 503, 504})
PERMANENT_STATUS = frozenset({400, 401, 403, 422})

_TRANSIENT_HINTS = ("timeout", "timed out", "temporarily unavailable", "connection", "rate limit", "overloaded")
_MODEL_ACCESS_HINTS = ("model_not_found", "does not have access to model", "not have access to model")


class Skip(Exception):
    """Raised by a strategy that cannot run at all (e.g. provider not configured)."""


@dataclass(frozen=True)
class Attempt:
    strategy: str
    reason: str
    transient: bool


@dataclass(eq=False)
class FallbackExhausted(Exception):
    label: str
    attempts: list[Attempt] = field(default_factory=list)

    def __str__(self) -> str:
        tried = ", ".join(f"{a.strategy} ({a.reason})" for a in self.attempts) or "none"
        return f"{self.label}: all strategies failed; tried {tried}"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    strategy: str
    value: T
    attempts: int


def status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        v = getattr(exc, attr, None)
        if isinstance(v, int):
            return v
    resp = getattr(exc, "response", None)
    v = getattr(resp, "status_code", None)
    return v if isinstance(v, int) else None


def is_transient(exc: BaseException) -> bool:
    """Whether the next strategy could reasonably succeed where this one failed."""
    if isinstance(exc, Skip):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    msg = (str(exc) or "").lower()
    # A model the project cannot use is a reason to try the next model, not to stop.
    if any(h in msg for h in _MODEL_ACCESS_HINTS):
        return True
    code = status_code(exc)
    if code in PERMANENT_STATUS:
        return False
    if code in TRANSIENT_STATUS or (code is not None and code >= 500):
        return True
    if any(h in msg for h in _TRANSIENT_HINTS):
        return True
    # Unknown failures (parse errors, unexpected payloads) advance the chain.
    return code is None


def run_chain(
    strategies: Sequence[tuple[str, Callable[[], T]]],
    *,
    label: str,
    accept: Callable[[T], str | None] | None = None,
    max_attempts: int | None = None,
) -> Outcome[T]:
    """Return the first accepted result; raise FallbackExhausted (or the permanent error)."""
    attempts: list[Attempt] = []
    budget = len(strategies) if max_attempts is None else max(1, min(int(max_attempts), len(strategies)))

    for name, fn in list(strategies)[:budget]:
        try:
            value = fn()
        except Exception as e:
            transient = is_transient(e)
            attempts.append(Attempt(strategy=name, reason=str(e) or e.__class__.__name__, transient=transient))
            log.warning(
                "fallback_attempt_failed",
                chain=label,
                strategy=name,
                transient=transient,
                status_code=status_code(e),
                error=str(e)[:300],
            )
            if not transient:
                raise
            continue

        reason = accept(value) if accept is not None else None
        if reason:
            attempts.append(Attempt(strategy=name, reason=reason, transient=True))
            log.info("fallback_result_rejected", chain=label, strategy=name, reason=reason)
            continue

        log.info("fallback_succeeded", chain=label, strategy=name, attempts=len(attempts) + 1)
        return Outcome(strategy=name, value=value, attempts=len(attempts) + 1)

    raise FallbackExhausted(label=label, attempts=attempts)
