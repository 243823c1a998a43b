"""Running external calls against a deadline."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Completed(Generic[T]):
    value: T


@dataclass(frozen=True)
class TimedOut:
    timeout: float


async def run_with_deadline(operation: Awaitable[T], timeout: float) -> Completed[T] | TimedOut:
    """Await ``operation`` for at most ``timeout`` seconds.

    The operation is cancelled when the deadline passes. Exceptions raised by
    the operation itself propagate unchanged.

    Returns:
        ``Completed`` with the result, or ``TimedOut``.
    """
    try:
        value = await asyncio.wait_for(operation, timeout)
    except TimeoutError:
        return TimedOut(timeout)
    return Completed(value)
