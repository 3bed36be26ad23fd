"""Outcome of best-effort side effects (emails, card rendering)."""
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SideEffectResult:
    """
    Whether a best-effort side effect completed.

    The primary operation reports its own outcome separately; a failed side
    effect is logged and recorded here, never surfaced to the HTTP client.
    """

    name: str
    succeeded: bool
    error: str | None = None

    @classmethod
    def ok(cls, name: str) -> "SideEffectResult":
        """A side effect that completed."""
        return cls(name=name, succeeded=True)

    @classmethod
    def failed(cls, name: str, error: str) -> "SideEffectResult":
        """A side effect that failed with the given error description."""
        return cls(name=name, succeeded=False, error=error)


async def attempt(name: str, awaitable: Awaitable[T]) -> tuple[SideEffectResult, T | None]:
    """
    Await a side effect, converting any exception into a failed result.

    Returns:
        Tuple of (result, value). value is None when the side effect failed.
    """
    try:
        value = await awaitable
    except Exception as e:
        logger.exception("Side effect '%s' failed", name)
        return SideEffectResult.failed(name, f"{type(e).__name__}: {e}"), None
    return SideEffectResult.ok(name), value
