"""
Per-invocation state handed to batch handlers.

- CancellationToken: host-owned, thread-safe cancellation signal. Handlers
  observe it through their context (`self.context.cancellation`) and stop by
  raising OperationCancelled (see raise_if_cancelled()).
- BatchContext: arguments, UTC start timestamp, cancellation token and logger of
  one invocation. Created by the engine, attached to the handler instance, and
  discarded when the invocation ends.
- BatchBase: convenience base class exposing the well-known `context` property
  the engine assigns before the handler body runs.
"""
import asyncio
import logging
import threading
from datetime import datetime, timezone

from .utils import Unset, coalesce, mirror


class OperationCancelled(Exception):
    """
    raised from inside a handler when its cancellation token was triggered.

    the engine treats it (and asyncio.CancelledError) as a quiet termination:
    no failure report, no nonzero exit code.
    """

    def __init__(self, message="the operation was cancelled", /):
        super().__init__(message)


class CancellationToken:
    """
    Cooperative cancellation signal shared between a host and its invocations.

    The engine never polls the token; handlers do, either by checking
    `cancelled`, by waiting on it, or by calling raise_if_cancelled() at safe
    points.
    """

    __slots__ = ("_event",)

    def __init__(self):
        self._event = threading.Event()

    @property
    def cancelled(self):
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelled()

    def wait(self, timeout=None):
        """
        Block until cancellation or until `timeout` seconds elapse.

        Returns True when the token was cancelled.
        """
        return self._event.wait(timeout)

    async def sleep(self, delay):
        """
        Suspend for `delay` seconds, raising OperationCancelled as soon as the
        token is cancelled (checked on every tick of at most 50ms).
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        while (remaining := deadline - loop.time()) > 0:
            self.raise_if_cancelled()
            await asyncio.sleep(min(remaining, 0.05))
        self.raise_if_cancelled()

    def __repr__(self):
        return f"CancellationToken(cancelled={self.cancelled!r})"


class BatchContext:
    """
    State bundle of a single invocation.

    Attributes (read-only)
    - arguments: tuple of the raw tokens received by the engine.
    - timestamp: aware UTC datetime captured when the invocation began.
    - cancellation: the host's CancellationToken.
    - logger: logging.Logger the engine reports through.
    - elapsed: timedelta since timestamp.
    """

    arguments = mirror("arguments")
    timestamp = mirror("timestamp")
    cancellation = mirror("cancellation")
    logger = mirror("logger")

    def __init__(self, arguments, timestamp=Unset, cancellation=Unset, logger=Unset):
        self._arguments = tuple(arguments)
        self._timestamp = coalesce(timestamp) or datetime.now(timezone.utc)
        self._cancellation = coalesce(cancellation) or CancellationToken()
        self._logger = coalesce(logger) or logging.getLogger("microbatch")

    @property
    def elapsed(self):
        return datetime.now(timezone.utc) - self._timestamp

    def __repr__(self):
        return f"BatchContext(arguments={self._arguments!r}, timestamp={self._timestamp.isoformat()!r})"


class BatchBase:
    """
    Optional base class for batch types.

    The engine assigns the invocation's BatchContext to `context` right before
    the selected handler runs. Accessing it earlier raises AttributeError.
    """

    @property
    def context(self):
        try:
            return self._context
        except AttributeError:
            raise AttributeError("context is only available while a handler runs") from None

    @context.setter
    def context(self, context):
        if not isinstance(context, BatchContext):
            raise TypeError("context must be a BatchContext")
        self._context = context


__all__ = (
    "OperationCancelled",
    "CancellationToken",
    "BatchContext",
    "BatchBase",
)
