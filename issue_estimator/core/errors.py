"""
Failure taxonomy and cooperative cancellation.

Tier invocations fail in four distinguishable ways so the fallback cascade
can pick the right reaction. Cancellation is carried by a token threaded
through every suspending call.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class AnalysisError(Exception):
    """Base error for a failed tier invocation.

    Attributes:
        tier_id: Tier the failure happened on, if known
        invoked: Whether the completion service was actually called
    """

    def __init__(self, message: str, *, tier_id: Optional[str] = None, invoked: bool = True):
        super().__init__(message)
        self.tier_id = tier_id
        self.invoked = invoked


class CapacityError(AnalysisError):
    """The tier's TPM quota cannot accept the request right now."""

    def __init__(
        self,
        message: str = "Tier capacity exceeded",
        *,
        tier_id: Optional[str] = None,
        invoked: bool = True,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, tier_id=tier_id, invoked=invoked)
        self.retry_after = retry_after


class ContextTooLargeError(AnalysisError):
    """The content does not fit the tier's context window."""


class ParseFailureError(AnalysisError):
    """The completion output is not valid structured data."""


class InvocationError(AnalysisError):
    """Network, timeout or unexpected service failure."""


class NoViableTierError(Exception):
    """No tier can structurally accept a request of the estimated size."""


class AnalysisCancelled(Exception):
    """Raised at a suspension point once the cancellation token has fired."""


class CancellationToken:
    """Cooperative cancellation signal backed by an ``asyncio.Event``.

    The transport layer calls ``cancel()`` (e.g. on client disconnect);
    the pipeline checks it at every suspension point.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Fire the signal. Idempotent."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise AnalysisCancelled if the signal has fired."""
        if self._event.is_set():
            raise AnalysisCancelled("Analysis cancelled")

    async def sleep(self, delay: float) -> bool:
        """Sleep up to ``delay`` seconds, returning early on cancellation.

        Returns:
            True if cancelled during (or before) the sleep
        """
        if self._event.is_set():
            return True
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` but abandon it as soon as the token fires.

        A result that is already available wins over a concurrent cancel.

        Raises:
            AnalysisCancelled: If cancelled before the awaitable finished
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise AnalysisCancelled("Analysis cancelled")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise AnalysisCancelled("Analysis cancelled")


async def guarded(awaitable: Awaitable[T], cancel_token: Optional[CancellationToken]) -> T:
    """Await with cancellation support when a token is available."""
    if cancel_token is None:
        return await awaitable
    return await cancel_token.guard(awaitable)
