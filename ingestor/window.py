"""
Stream Ingestors - In-Flight Window

AckWindow keeps at most ``limit`` ack handles outstanding on a session and
reports each resolution back to its owner. Deadline turns the invocation's
wall-clock deadline into a monotonic budget that bounds every wait.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

from .core.error_taxonomy import AckError, DeadlineExceededError, SubmitError
from .stream import IngestionSession

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K")


class Deadline:
    """Cooperative execution deadline; ``None`` expiry means unbounded."""

    def __init__(self, expires_at: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._expires_at = expires_at
        self._clock = clock

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    @classmethod
    def from_epoch_ms(
        cls,
        deadline_ms: Optional[int],
        *,
        now_ms: Optional[int] = None,
        margin_ms: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> "Deadline":
        """
        Build from an absolute deadline in epoch milliseconds.

        ``margin_ms`` is kept in reserve: the budget expires that long before
        ``deadline_ms`` so an abandoned invocation can still report.
        """
        if deadline_ms is None:
            return cls(None, clock)
        if now_ms is None:
            now_ms = time.time_ns() // 1_000_000
        return cls(clock() + (deadline_ms - margin_ms - now_ms) / 1000.0, clock)

    @property
    def bounded(self) -> bool:
        return self._expires_at is not None

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, stage: str) -> None:
        if self.expired:
            raise DeadlineExceededError(stage)

    async def run(self, awaitable: Awaitable[T], stage: str) -> T:
        """Await ``awaitable`` within the remaining budget."""
        remaining = self.remaining()
        if remaining is None:
            return await awaitable
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise DeadlineExceededError(stage)
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError:
            raise DeadlineExceededError(stage) from None


class AckWindow(Generic[K]):
    """
    Bounded set of outstanding ack handles for one session.

    ``submit`` blocks while ``limit`` handles are outstanding and resumes as
    soon as any of them resolves; resolution order is not assumed. Every
    submitted key is reported exactly once, through ``on_ack`` or
    ``on_failure``, unless the window is abandoned.
    """

    def __init__(
        self,
        limit: int,
        deadline: Deadline,
        on_ack: Callable[[K], None],
        on_failure: Callable[[K, BaseException], None],
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._deadline = deadline
        self._on_ack = on_ack
        self._on_failure = on_failure
        self._pending: Dict["asyncio.Future[Any]", Tuple[K, str]] = {}
        self.high_water = 0

    @property
    def outstanding(self) -> int:
        return len(self._pending)

    async def submit(self, session: IngestionSession, payload: bytes, identifier: str, key: K) -> None:
        """
        Submit one serialized record once capacity allows.

        Raises:
            DeadlineExceededError: The deadline passed before the record was submitted.
        """
        while len(self._pending) >= self._limit:
            await self._collect(asyncio.FIRST_COMPLETED, "waiting for in-flight capacity")

        self._deadline.check("submitting records")
        try:
            handle = await self._deadline.run(session.submit(payload, identifier), "submitting records")
        except SubmitError as exc:
            self._on_failure(key, exc)
            return

        self._pending[handle] = (key, identifier)
        self.high_water = max(self.high_water, len(self._pending))

    async def drain(self) -> None:
        """Wait until every outstanding handle has resolved."""
        while self._pending:
            await self._collect(asyncio.ALL_COMPLETED, "awaiting acknowledgments")

    def abandon(self) -> int:
        """Cancel every outstanding handle without reporting it. Returns the count."""
        count = len(self._pending)
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()
        if count:
            logger.warning("Abandoned %d outstanding acknowledgments", count, extra={"count": count})
        return count

    async def _collect(self, return_when: str, stage: str) -> None:
        done, _ = await asyncio.wait(
            self._pending,
            timeout=self._deadline.remaining(),
            return_when=return_when,
        )
        if not done:
            raise DeadlineExceededError(stage)

        for handle in done:
            key, identifier = self._pending.pop(handle)
            if handle.cancelled():
                self._on_failure(key, AckError(identifier, "acknowledgment cancelled"))
                continue
            exc = handle.exception()
            if exc is None:
                self._on_ack(key)
            else:
                self._on_failure(key, exc)
