"""
Lifecycle collaborators notified around every invocation.

- BatchInterceptor: no-op base. Override on_run_begin(context) and/or
  on_run_complete(context, message, cause); either hook may be a plain method
  or a coroutine function, the engine awaits whatever is awaitable.
- ConsoleInterceptor: prints each reported failure through rich.
- CompositeInterceptor: forwards each hook to several interceptors in order.

Contract
- on_run_begin is called once, before the handler is resolved.
- on_run_complete is called exactly once per non-cancelled invocation:
  (context, None, None) on success, (context, message, cause) on failure.
"""
import inspect

from rich.console import Console

from .faults import BatchFault
from .utils import Unset


class BatchInterceptor:
    def on_run_begin(self, context):
        pass

    def on_run_complete(self, context, message, cause):
        pass


class CompositeInterceptor(BatchInterceptor):
    """
    Fan-out interceptor: hooks run sequentially in registration order.
    """

    def __init__(self, *interceptors):
        for interceptor in interceptors:
            if not isinstance(interceptor, BatchInterceptor):
                raise TypeError("CompositeInterceptor() arguments must be batch interceptors")
        self._interceptors = interceptors

    @property
    def interceptors(self):
        return self._interceptors

    async def on_run_begin(self, context):
        for interceptor in self._interceptors:
            if inspect.isawaitable(result := interceptor.on_run_begin(context)):
                await result

    async def on_run_complete(self, context, message, cause):
        for interceptor in self._interceptors:
            if inspect.isawaitable(result := interceptor.on_run_complete(context, message, cause)):
                await result


class ConsoleInterceptor(BatchInterceptor):
    """
    Render every reported failure on a rich console.

    Options
    - console: rich Console to print to (stderr console by default).
    - fancy: draw a panel around the failure.
    - colorful: apply styles.
    - prog: program name shown in the header.
    """

    def __init__(self, *, console=Unset, fancy=False, colorful=True, prog=Unset):
        if console is not Unset and not isinstance(console, Console):
            raise TypeError("ConsoleInterceptor() 'console' must be a rich console")
        self._console = Console(stderr=True) if console is Unset else console
        self._options = {"fancy": bool(fancy), "colorful": bool(colorful)}
        if prog is not Unset:
            self._options["prog"] = prog

    @property
    def console(self):
        return self._console

    def on_run_complete(self, context, message, cause):
        if message is None:
            return
        self._console.print(BatchFault(
            message,
            title="batch failed",
            hint="%s: %s" % (type(cause).__name__, cause) if cause is not None else None,
            **self._options,
        ))


__all__ = (
    "BatchInterceptor",
    "ConsoleInterceptor",
    "CompositeInterceptor",
)
