# app/core/resilience.py
"""
Fallible remote calls with a time bound and a degraded default.

Both optional subsystems of a verification (the on-chain registry read and
the AI risk assessment) go through `guarded_call`, so a slow or failing
remote never fails the request: the caller receives a `RemoteResult` with
`degraded=True` and decides what the degraded section of the response looks
like.

Cancellation of the surrounding request propagates (CancelledError is not
caught), which also cancels the in-flight remote call.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RemoteResult(Generic[T]):
    value: Optional[T]
    degraded: bool = False
    error: Optional[str] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return not self.degraded


async def guarded_call(
    fn: Callable[[], Awaitable[T]],
    *,
    subsystem: str,
    timeout: float,
    retries: int = 0,
    retry_delay: float = 0.2,
    context: Optional[Dict[str, Any]] = None,
    no_retry: Tuple[Type[BaseException], ...] = (),
) -> RemoteResult[T]:
    """
    Run `fn()` bounded by `timeout` seconds per attempt.

    Up to `retries` extra attempts are made with linear backoff. Exceptions
    listed in `no_retry` end the loop on first occurrence (e.g. a malformed
    response that a retry cannot fix).
    """
    ctx = context or {}
    attempts = 0
    last_error = "unknown error"

    while attempts <= retries:
        attempts += 1
        try:
            value = await asyncio.wait_for(fn(), timeout=timeout)
            return RemoteResult(value=value, attempts=attempts)
        except asyncio.TimeoutError:
            last_error = f"timeout after {timeout:.1f}s"
        except no_retry as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            break
        except Exception as exc:
            last_error = f"{type(exc).__name__}: {exc}"

        if attempts <= retries:
            await asyncio.sleep(retry_delay * attempts)

    logger.warning(
        "[%s] degraded after %d attempt(s): %s",
        subsystem,
        attempts,
        last_error,
        extra={"subsystem": subsystem, "error": last_error, **ctx},
    )
    return RemoteResult(value=None, degraded=True, error=last_error, attempts=attempts)
