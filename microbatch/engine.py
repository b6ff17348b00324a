"""
Microbatch engine: run one batch invocation end to end.

Stages
    begin → resolving → binding → instantiating → invoking → completing

- begin: a fresh BatchContext is built and interceptor.on_run_begin(context) runs.
- resolving: microbatch.commands.resolve selects the handler and argument offset.
- binding: microbatch.arguments.bind resolves and coerces the parameters.
- instantiating: provider(batch_type) builds the instance; the context is
  assigned to `instance.context` before the handler body runs.
- invoking: the bound method is called; awaitable results are awaited.
- completing: interceptor.on_run_complete(context, message, cause) runs exactly
  once, with (None, None) on success.

Every failure is caught at the stage that produced it, logged once, reported
once, and returned as an Outcome whose exit_code is 1. Cancellation raised from
the handler (OperationCancelled, asyncio.CancelledError, or an exception group
made only of those) ends the invocation quietly: nothing is logged, the
completion hook is not called, and exit_code stays 0. A cancellation request
on the task running the invocation is cleared once absorbed. An exception
raised by on_run_complete is logged and never escapes the engine.

Quick start
    import sys
    from microbatch import BatchBase, run

    class Cleanup(BatchBase):
        def run(self, days: int = 7):
            self.context.logger.info("removing files older than %d days", days)

    if __name__ == "__main__":
        sys.exit(run(Cleanup, shell=True).exit_code)
"""
import asyncio
import inspect
import logging
import shlex
import sys
from collections.abc import Iterable

from rich.console import Console

from .arguments import bind
from .commands import describe, resolve
from .context import BatchContext, CancellationToken, OperationCancelled
from .faults import *
from .interceptors import BatchInterceptor
from .utils import *

console = Console(stderr=True)

log = logging.getLogger(__name__)

_CANCELLATIONS = (OperationCancelled, asyncio.CancelledError)


class Outcome:
    """
    Terminal result of one invocation.

    - context: the invocation's BatchContext.
    - fault: the reported BatchFault (None on success or cancellation).
    - message: the reported message (None on success or cancellation).
    - cause: underlying exception of the failure, when there is one.
    - cancelled: True when the handler stopped on cancellation.
    - succeeded: True unless a failure was reported.
    - exit_code: 1 when a failure was reported, 0 otherwise.
    """

    __slots__ = ("context", "fault", "message", "cause", "cancelled")

    def __init__(self, context, fault=None, message=None, cause=None, *, cancelled=False):
        self.context = context
        self.fault = fault
        self.message = message
        self.cause = cause
        self.cancelled = cancelled

    @property
    def succeeded(self):
        return self.fault is None

    @property
    def exit_code(self):
        return 0 if self.fault is None else 1

    def __repr__(self):
        if self.cancelled:
            return "Outcome(cancelled)"
        if self.fault is None:
            return "Outcome(succeeded)"
        return f"Outcome(failed, message={self.message!r})"


def _construct(batch_type, /):
    return batch_type()


def _unwrap(error):
    """
    reduce single-member exception groups to the exception they carry.
    """
    while isinstance(error, BaseExceptionGroup) and len(error.exceptions) == 1:
        error = error.exceptions[0]
    return error


def _uncancel(error):
    """
    clear the cancel request of the running task when the handler absorbed it.
    """
    if isinstance(error, asyncio.CancelledError) and (task := asyncio.current_task()) is not None:
        if task.cancelling():
            task.uncancel()


def _cancelled(group):
    _, rest = group.split(_CANCELLATIONS)
    return rest is None


class BatchEngine:
    """
    Resolve, bind and invoke batch handlers.

    Options
    - provider: callable building an instance from a batch class
      (default: call the class without arguments).
    - interceptor: BatchInterceptor notified around each invocation.
    - cancellation: CancellationToken shared by every invocation of this engine
      (a fresh token when omitted).
    - logger: logging.Logger used for traces and failure reports; handed to
      handlers through their context.

    One engine may run many invocations, sequentially or concurrently; each
    invocation owns its own context and argument map.
    """

    def __init__(self, *, provider=Unset, interceptor=Unset, cancellation=Unset, logger=Unset):
        if provider is not Unset and not callable(provider):
            raise TypeError("BatchEngine() 'provider' must be callable")
        if not isinstance(interceptor, BatchInterceptor | UnsetType):
            raise TypeError("BatchEngine() 'interceptor' must be a batch interceptor")
        if not isinstance(cancellation, CancellationToken | UnsetType):
            raise TypeError("BatchEngine() 'cancellation' must be a cancellation token")
        if not isinstance(logger, logging.Logger | UnsetType):
            raise TypeError("BatchEngine() 'logger' must be a logging.Logger")

        self._provider = coalesce(provider, _construct)
        self._interceptor = interceptor if interceptor is not Unset else BatchInterceptor()
        self._cancellation = cancellation if cancellation is not Unset else CancellationToken()
        self._logger = logger if logger is not Unset else log

    @property
    def cancellation(self):
        return self._cancellation

    @property
    def logger(self):
        return self._logger

    def run(self, batch_type, args=(), /):
        """
        Synchronous wrapper around run_async() (starts its own event loop).
        """
        return asyncio.run(self.run_async(batch_type, args))

    def run_method(self, batch_type, method, args=(), /):
        """
        Synchronous wrapper around run_method_async() (starts its own event loop).
        """
        return asyncio.run(self.run_method_async(batch_type, method, args))

    async def run_async(self, batch_type, args=(), /):
        """
        Run the handler of `batch_type` selected by `args`.

        argv[0] is consumed as the command name when the class names its
        handlers; a single unnamed handler receives every token.
        """
        self._logger.debug("batch engine run start")
        context = self._context(args)

        try:
            await self._hook(self._interceptor.on_run_begin(context))
            resolution = resolve(batch_type, context.arguments)
        except Exception as error:
            return await self._fail(context, TypeOrMethodNotFoundError(
                "fail to get method. type: %s" % _name(batch_type),
                title="method discovery failed",
                code=FaultCode.METHOD_DISCOVERY,
                hint=str(error),
                batch_type=batch_type,
                cause=error,
                docs=getdoc(FaultCode.METHOD_DISCOVERY),
            ), cause=error)

        if resolution.fault is not None:
            return await self._fail(context, resolution.fault)

        return await self._run_core(context, resolution.handler, resolution.offset)

    async def run_method_async(self, batch_type, method, args=(), /):
        """
        Run an explicitly chosen handler of `batch_type`.

        `method` is the handler function or its name. argv[0] is the selector the
        host already consumed, so binding starts at offset 1.
        """
        self._logger.debug("batch engine run start")
        context = self._context(args)

        try:
            await self._hook(self._interceptor.on_run_begin(context))
            selected = None
            for handler in describe(batch_type):
                if handler.callback is method or handler.callback.__name__ == method:
                    selected = handler
                    break
        except Exception as error:
            return await self._fail(context, TypeOrMethodNotFoundError(
                "fail to get method. type: %s" % _name(batch_type),
                title="method discovery failed",
                code=FaultCode.METHOD_DISCOVERY,
                hint=str(error),
                batch_type=batch_type,
                cause=error,
                docs=getdoc(FaultCode.METHOD_DISCOVERY),
            ), cause=error)

        if selected is None:
            return await self._fail(context, TypeOrMethodNotFoundError(
                "method %s not found on %s. args: %s" % (
                    getattr(method, "__name__", method), _name(batch_type), " ".join(context.arguments)
                ),
                title="type or method not found",
                code=FaultCode.TYPE_OR_METHOD_NOT_FOUND,
                hint="pass a public method declared on %s" % _name(batch_type),
                batch_type=batch_type,
                arguments=context.arguments,
                docs=getdoc(FaultCode.TYPE_OR_METHOD_NOT_FOUND),
            ))

        return await self._run_core(context, selected, 1)

    def _context(self, args):
        if isinstance(args, str) or not isinstance(args, Iterable):
            raise TypeError("batch arguments must be an iterable of strings")
        args = tuple(args)
        if not all(isinstance(arg, str) for arg in args):
            raise TypeError("batch arguments must be an iterable of strings")
        return BatchContext(args, cancellation=self._cancellation, logger=self._logger)

    async def _run_core(self, context, handler, offset):
        received = " ".join(context.arguments)

        try:
            binding = bind(handler.parameters, context.arguments, offset)
        except Exception as error:
            return await self._fail(context, ParameterBindingError(
                "fail to match method parameter on %s. args: %s" % (handler.qualname, received),
                title="parameter inspection failed",
                code=FaultCode.PARAMETER_INSPECTION,
                hint=str(error),
                handler=handler,
                cause=error,
                docs=getdoc(FaultCode.PARAMETER_INSPECTION),
            ), cause=error)

        if binding.fault is not None:
            return await self._fail(
                context, binding.fault, message="%s. args: %s" % (binding.fault.message, received), cause=binding.fault.cause
            )

        try:
            instance = self._provider(handler.batch_type)
            instance.context = context
        except Exception as error:
            return await self._fail(context, InstanceConstructionError(
                "fail to create batch instance. type: %s" % _name(handler.batch_type),
                title="instance construction failed",
                code=FaultCode.INSTANCE_CONSTRUCTION,
                hint=str(error),
                batch_type=handler.batch_type,
                cause=error,
                docs=getdoc(FaultCode.INSTANCE_CONSTRUCTION),
            ), cause=error)

        try:
            result = handler.bound(instance)(*binding.args, **binding.kwargs)
            if inspect.isawaitable(result):
                await result
        except _CANCELLATIONS as error:
            _uncancel(error)
            return Outcome(context, cancelled=True)
        except BaseExceptionGroup as group:
            if _cancelled(group):
                return Outcome(context, cancelled=True)
            if not isinstance(group, Exception):
                raise
            return await self._crash(context, handler, _unwrap(group))
        except Exception as error:
            return await self._crash(context, handler, error)

        await self._complete(context, None, None)
        self._logger.debug("batch engine run complete successfully")
        return Outcome(context)

    async def _crash(self, context, handler, error):
        return await self._fail(context, HandlerRuntimeError(
            "fail in batch running on %s" % handler.qualname,
            title="batch failed",
            code=FaultCode.HANDLER_RUNTIME,
            hint="%s: %s" % (type(error).__name__, error),
            handler=handler,
            cause=error,
            docs=getdoc(FaultCode.HANDLER_RUNTIME),
        ), cause=error)

    async def _fail(self, context, fault, *, message=Unset, cause=None):
        message = coalesce(message, fault.message)
        self._logger.error("%s", message, exc_info=cause)
        await self._complete(context, message, cause)
        return Outcome(context, fault, message, cause)

    async def _complete(self, context, message, cause):
        try:
            await self._hook(self._interceptor.on_run_complete(context, message, cause))
        except Exception:
            self._logger.exception("fail in run complete hook of %s", type(self._interceptor).__qualname__)

    @staticmethod
    async def _hook(result):
        if inspect.isawaitable(result):
            await result


def _name(batch_type):
    return getattr(batch_type, "__qualname__", repr(batch_type))


def run(
        batch_type,
        args=Unset,
        /,
        *,
        provider=Unset,
        interceptor=Unset,
        cancellation=Unset,
        logger=Unset,
        shell=False,
        fancy=False,
        colorful=True,
):
    """
    Host entry point: run one invocation and return its Outcome.

    Parameters
    - batch_type: the batch class (None reports "type or method not found").
    - args:
      • Unset: read tokens from sys.argv[1:].
      • str: shell-like string; split with shlex.split.
      • Iterable[str]: pre-tokenized sequence, used as-is.
    - provider / interceptor / cancellation / logger: forwarded to BatchEngine.
    - shell: when True, a failure is rendered on stderr through rich.
    - fancy / colorful: rendering options of the failure in shell mode.

    The process exit status is left to the caller:
        sys.exit(run(MyBatch, shell=True).exit_code)
    """
    if args is Unset:
        tokens = sys.argv[1:]
    elif isinstance(args, str):
        tokens = shlex.split(args)
    elif isinstance(args, Iterable):
        tokens = list(args)
        for token in tokens:
            if not isinstance(token, str):
                raise TypeError("run() argument must be a string or an iterable of strings")
    else:
        raise TypeError("run() argument must be a string or an iterable of strings")

    engine = BatchEngine(provider=provider, interceptor=interceptor, cancellation=cancellation, logger=logger)
    outcome = engine.run(batch_type, tokens)

    if shell and outcome.fault is not None:
        console.print(outcome.fault.__replace__(fancy=fancy, colorful=colorful))

    return outcome


__all__ = (
    "Outcome",
    "BatchEngine",
    "run",
)
