"""
TrustScore Engine - Constituent Signal Calls
============================================

Every call to a model service or to the external integrity check is bounded
by a timeout and returns a tagged ``SignalResult`` instead of raising.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .config import SIGNAL_BACKOFF_SECONDS, SIGNAL_RETRIES

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SignalStatus(str, Enum):
    OK = "ok"
    TIMED_OUT = "timed_out"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SignalResult(Generic[T]):
    name: str
    status: SignalStatus
    value: Optional[T] = None
    error: Optional[str] = None
    attempts: int = 1
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == SignalStatus.OK


async def call_signal(
    name: str,
    call: Callable[[], Awaitable[T]],
    timeout: float,
    retries: int = SIGNAL_RETRIES,
    backoff: float = SIGNAL_BACKOFF_SECONDS,
) -> SignalResult[T]:
    """Invoke ``call`` with a timeout.

    A timeout is retried ``retries`` times with linear backoff. Any other
    exception marks the signal unavailable straight away.
    """
    start = time.perf_counter()
    attempts = 0

    while True:
        attempts += 1
        try:
            value = await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError:
            if attempts <= retries:
                logger.info("Signal %s timed out after %.2fs, retrying", name, timeout)
                await asyncio.sleep(backoff * attempts)
                continue
            logger.warning("Signal %s timed out %d time(s), treating as unavailable", name, attempts)
            return SignalResult(
                name=name,
                status=SignalStatus.TIMED_OUT,
                error=f"timed out after {timeout}s",
                attempts=attempts,
                latency_ms=_elapsed_ms(start),
            )
        except Exception as exc:
            logger.warning("Signal %s unavailable: %s", name, exc)
            return SignalResult(
                name=name,
                status=SignalStatus.UNAVAILABLE,
                error=str(exc) or exc.__class__.__name__,
                attempts=attempts,
                latency_ms=_elapsed_ms(start),
            )

        return SignalResult(
            name=name,
            status=SignalStatus.OK,
            value=value,
            attempts=attempts,
            latency_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def describe(result: SignalResult[Any]) -> str:
    if result.ok:
        return f"{result.name}: ok ({result.latency_ms} ms)"
    return f"{result.name}: {result.status.value} ({result.error})"
