"""
Microbatch command layer: declare, discover and select batch handlers.

What this module provides
- command(name): decorator naming a handler method. A batch class either names
  every public method (named-command mode, argv[0] selects the handler) or
  exposes exactly one public method (single-method mode, no token consumed).
- Handler: immutable descriptor of one candidate method (owning class, command
  name, callback, lazily-built Parameter descriptors).
- describe(batch_type): the ordered handlers of a class, built once per class.
- resolve(batch_type, args): select exactly one handler and the argument offset,
  or return a Resolution carrying the fault.
- usage(batch_type): rich renderable listing commands and their options.

Discovery rules
- Only functions declared on the class body itself are candidates (inherited
  members, including BatchBase.context, are ignored).
- Names starting with "_" are private helpers and never candidates.
- Static methods, class methods and properties are never candidates.

Quick start
    from microbatch import BatchBase, Option, command, run

    class Greeter(BatchBase):
        @command("hello")
        def hello(self, name: str = Option("-n")):
            self.context.logger.info("hello %s", name)

        @command("bye")
        def bye(self, name: str = "world"):
            ...

    run(Greeter, ["hello", "--name", "Bob"])
"""
import difflib
import functools
import inspect
from collections import namedtuple

from rich.box import ROUNDED
from rich.table import Table
from rich.text import Text

from .arguments import Parameter, SpecType
from .faults import *
from .utils import *

CommandInfo = namedtuple("CommandInfo", ("name", "descr"))


def command(name, /, *, descr=Unset):
    """
    Mark a batch method as the handler of command `name`.

    Parameters
    - name: str
      Command token matched case-insensitively against argv[0]. Must be a
      non-empty string without whitespace and must not start with "-".
    - descr: Unset | str
      Short description shown by usage().

    Returns
    - a decorator returning the same function with a __command__ marker.
    """
    if not isinstance(name, str):
        raise TypeError("@command() name must be a string")
    elif not (name := name.strip()) or name.startswith("-") or any(char.isspace() for char in name):
        raise ValueError("@command() name must be a non-empty word not starting with '-'")
    if not isinstance(descr, str | UnsetType):
        raise TypeError("@command() 'descr' must be a string")

    @rename("command")
    def wrapper(callback, /):
        if not inspect.isfunction(callback):
            raise TypeError("@command() must be applied to a function")
        callback.__command__ = CommandInfo(name, descr)
        return callback

    return wrapper


class Handler(metaclass=SpecType):
    """
    Descriptor of one candidate handler of a batch class.

    Fields
    - batch_type: the class declaring the method.
    - name: command name (Unset in single-method mode).
    - descr: command description (Unset when not declared).
    - callback: the plain function (called with the instance first).
    - parameters: tuple of Parameter descriptors, built on first access and
      reused afterwards.
    """

    __introspectable__ = (
        "batch_type",
        "name",
        "descr",
        "callback",
    )

    def __init__(self, batch_type, callback, /):
        info = getattr(callback, "__command__", CommandInfo(Unset, Unset))
        self._batch_type = batch_type
        self._callback = callback
        self._name = info.name
        self._descr = info.descr
        self._parameters = Unset

    @property
    def qualname(self):
        return f"{self._batch_type.__name__}.{self._callback.__name__}"

    @property
    def named(self):
        return self._name is not Unset

    @property
    def parameters(self):
        if self._parameters is Unset:
            signature = inspect.signature(self._callback, eval_str=True)
            parameters = list(signature.parameters.values())
            if not parameters:
                raise TypeError(f"handler {self.qualname} must accept the instance as first parameter")
            self._parameters = tuple(map(Parameter, parameters[1:]))
        return self._parameters

    def bound(self, instance, /):
        return self._callback.__get__(instance, self._batch_type)


@functools.cache
def describe(batch_type, /):
    """
    Return the ordered candidate handlers of a batch class (cached per class).
    """
    if not isinstance(batch_type, type):
        raise TypeError("describe() argument must be a class")
    return tuple(
        Handler(batch_type, member)
        for attribute, member in vars(batch_type).items()
        if not attribute.startswith("_") and inspect.isfunction(member)
    )


Resolution = namedtuple("Resolution", ("handler", "offset", "fault"))


def resolve(batch_type, args, /):
    """
    Select the handler of an invocation.

    Rules (first that applies)
    1. batch_type is None or exposes no handler → TypeOrMethodNotFoundError.
    2. more than one unnamed handler → AmbiguousCommandError.
    3. any named handler → argv[0] matched case-insensitively in declaration
       order; first match wins with offset 1; otherwise TypeOrMethodNotFoundError.
    4. a single unnamed handler → selected with offset 0.

    Returns
    - Resolution(handler, offset, None) or Resolution(None, 0, fault).
    """
    args = tuple(args)
    received = " ".join(args)

    if batch_type is None:
        return Resolution(None, 0, TypeOrMethodNotFoundError(
            "type or method not found on this program. args: %s" % received,
            title="type or method not found",
            code=FaultCode.TYPE_OR_METHOD_NOT_FOUND,
            hint="register a batch class before running the engine",
            arguments=args,
            docs=getdoc(FaultCode.TYPE_OR_METHOD_NOT_FOUND),
        ))

    handlers = describe(batch_type)

    if not handlers:
        return Resolution(None, 0, TypeOrMethodNotFoundError(
            "type %s exposes no public method. args: %s" % (batch_type.__qualname__, received),
            title="type or method not found",
            code=FaultCode.TYPE_OR_METHOD_NOT_FOUND,
            hint="declare a public method or a @command method on %s" % batch_type.__qualname__,
            batch_type=batch_type,
            arguments=args,
            docs=getdoc(FaultCode.TYPE_OR_METHOD_NOT_FOUND),
        ))

    if len(unnamed := [handler for handler in handlers if not handler.named]) > 1:
        return Resolution(None, 0, AmbiguousCommandError(
            "method can not be selected, %s must contain a single method or named commands. methods: %s. args: %s" % (
                batch_type.__qualname__, ", ".join(handler.qualname for handler in unnamed), received
            ),
            title="ambiguous command",
            code=FaultCode.AMBIGUOUS_COMMAND,
            hint="name every method with @command(...) or keep a single public method",
            batch_type=batch_type,
            arguments=args,
            docs=getdoc(FaultCode.AMBIGUOUS_COMMAND),
        ))

    if named := [handler for handler in handlers if handler.named]:
        if args:
            for handler in named:
                if handler.name.casefold() == args[0].casefold():
                    return Resolution(handler, 1, None)

        names = [handler.name for handler in named]
        suggestions = difflib.get_close_matches(args[0], names, 3) if args else []
        try:
            hint = "did you mean %r? available commands: %s" % (suggestions[0], ", ".join(names))
        except IndexError:
            hint = "available commands: %s" % ", ".join(names)
        return Resolution(None, 0, TypeOrMethodNotFoundError(
            "command %s not found on %s. args: %s" % (
                repr(args[0]) if args else "(none)", batch_type.__qualname__, received
            ),
            title="command not found",
            code=FaultCode.TYPE_OR_METHOD_NOT_FOUND,
            hint=hint,
            batch_type=batch_type,
            arguments=args,
            suggestions=suggestions,
            docs=getdoc(FaultCode.TYPE_OR_METHOD_NOT_FOUND),
        ))

    return Resolution(unnamed[0], 0, None)


def _typename(annotation):
    if annotation is inspect.Parameter.empty:
        return "str"
    if isinstance(annotation, type):
        return annotation.__name__
    return str(annotation).replace("typing.", "")


def usage(batch_type, /, *, colorful=True):
    """
    Build a rich Table describing the handlers of a batch class.

    One row per parameter; the command column is filled on the first row of
    each handler ("(default)" in single-method mode). A handler whose
    parameters cannot be inspected gets a single "not bindable" row.
    """
    table = Table(
        title=Text(batch_type.__qualname__, "bold" if colorful else ""),
        box=ROUNDED,
        show_lines=False,
        highlight=colorful,
    )
    table.add_column("command", style="bold #00E5FF" if colorful else "")
    table.add_column("option")
    table.add_column("short")
    table.add_column("index", justify="right")
    table.add_column("type", style="#9CE19C" if colorful else "")
    table.add_column("default")
    table.add_column("description")

    for handler in describe(batch_type):
        label = Text(handler.name if handler.named else "(default)")
        if handler.descr is not Unset:
            label.append("\n" + handler.descr, "dim" if colorful else "")
        try:
            parameters = handler.parameters
        except Exception as error:
            table.add_row(label, "", "", "", "", "", Text("not bindable: %s" % error, "italic red" if colorful else ""))
            continue
        if not parameters:
            table.add_row(label, "", "", "", "", "", "")
            continue
        for position, parameter in enumerate(parameters):
            table.add_row(
                label if not position else "",
                "--" + parameter.name,
                "" if parameter.short is Unset else "-" + parameter.short,
                "" if parameter.index is Unset else str(parameter.index),
                _typename(parameter.annotation),
                "(required)" if parameter.required else repr(parameter.default),
                coalesce(parameter.descr, ""),
            )
    return table


__all__ = (
    "CommandInfo",
    "command",
    "Handler",
    "Resolution",
    "describe",
    "resolve",
    "usage",
)
