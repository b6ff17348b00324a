"""
Microbatch faults (errors) and rendering.

Scope
- FaultCode: canonical, stable numeric identifiers for every failure a batch
  invocation can report. Codes are grouped by the stage that produces them
  to keep logs/searches predictable.
- BatchFault: base type that carries message + options and knows how to render
  itself in a friendly, lowercased, and actionable way (rich renderable).
- Concrete faults, one per stage of an invocation:
  • TypeOrMethodNotFoundError / AmbiguousCommandError (resolving)
  • ParameterBindingError / DuplicatedOptionError (binding)
  • InstanceConstructionError (instantiating)
  • HandlerRuntimeError (invoking)
- getdoc(): optional description lookup for a code from the host application.

Integration
- Resolver and binder return faults as values (never raise them); the engine
  reports them once through the lifecycle interceptor.
- Rendering is opt-in: a console host prints the fault via rich, any other host
  may only read `fault.message`, `fault.code` and `fault.options`.
"""
from collections import defaultdict
from enum import IntEnum
from types import MappingProxyType

from rich.console import Group
from rich.panel import Panel
from rich.text import Text

from .utils import Unset, UnsetType


class FaultCode(IntEnum):
    """
    canonical fault codes used across the engine (stable identifiers).

    grouping (by invocation stage)
    - resolving (111xx)
      • TYPE_OR_METHOD_NOT_FOUND, AMBIGUOUS_COMMAND, METHOD_DISCOVERY
    - binding (112xx)
      • REQUIRED_PARAMETER, INDEX_OUT_OF_RANGE, UNCASTABLE_PARAMETER,
        DUPLICATED_OPTION, PARAMETER_INSPECTION
    - instantiating (113xx)
      • INSTANCE_CONSTRUCTION
    - invoking (114xx)
      • HANDLER_RUNTIME
    """
    # --- resolving (111xx) ---
    TYPE_OR_METHOD_NOT_FOUND    = 11101
    AMBIGUOUS_COMMAND           = 11102
    METHOD_DISCOVERY            = 11103

    # --- binding (112xx) ---
    REQUIRED_PARAMETER          = 11201
    INDEX_OUT_OF_RANGE          = 11202
    UNCASTABLE_PARAMETER        = 11203
    DUPLICATED_OPTION           = 11204
    PARAMETER_INSPECTION        = 11205

    # --- instantiating (113xx) ---
    INSTANCE_CONSTRUCTION       = 11301

    # --- invoking (114xx) ---
    HANDLER_RUNTIME             = 11401

    def normalize(self):
        """
        return a host-normalized string for this code.

        the host application can provide a __codes__ mapping in __main__
        to override numeric ids with friendlier labels. when no mapping
        is present, the numeric value is returned as a string.
        """
        return str(getattr(__import__("__main__"), "__codes__", {}).get(self, self.value))


class BatchFault(Exception):
    """
    base class of every reportable failure.

    a fault is a plain value until someone decides to raise or render it:
    - message: one-sentence, lowercased description (also str(fault)).
    - options: read-only mapping with at least `code`, `title` and `hint`,
      plus any stage context (batch_type, method, parameter, arguments...).

    rendering options (read from options, defaulting when absent)
    - fancy: draw a panel around the fault (default False).
    - colorful: apply styles (default True).
    """

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | UnsetType)
        super().__init__(message if message is not Unset else "")
        self.message = message
        self.options = MappingProxyType(options)

    @property
    def code(self):
        return self.options.get("code")

    @property
    def cause(self):
        return self.options.get("cause")

    def __rich__(self):
        main = __import__("__main__")

        styles = defaultdict(str, {
            # header parts
            "prog-name": "bold #E6E6F0",  # near-white program name
            "code": "bold #00E5FF",  # neon cyan fault code
            "error-title": "bold #FF4DA6",  # friendly pinky title

            # body
            "error-message": "#C8C8D0",  # soft light gray message
            "hint-arrow": "#9CE19C dim",  # gentle green arrow
            "hint": "italic #9CE19C",  # gentle green hint text
        } | getattr(main, "__styles__", {}))

        colorful = self.options.get("colorful", True)

        def styler(style):
            return styles[style] if colorful else ""

        def text(fragment, style=""):
            if not fragment:
                return Text("")
            if not colorful:
                return Text(str(fragment))
            if isinstance(fragment, Text):
                return fragment
            return Text(str(fragment), style)

        prog = text(getattr(main, "__prog__", self.options.get("prog", "batch")), styler("prog-name"))

        header = Text.assemble(
            "[ ",
            prog,
            " — ",
            text(self.code.normalize() if self.code else "?", styler("code")),
            " | ",
            text(str(self.options.get("title", "failure")).title(), styler("error-title")),
            " ]"
        )
        message = text(self.message, styler("error-message"))

        if not (hint := self.options.get("hint")):
            body = Group(message)
        else:
            body = Group(message, Text.assemble(text(" → ", styler("hint-arrow")), text(hint, styler("hint"))))

        if self.options.get("fancy", False):
            return Panel(body, title=header, title_align="left")

        return Group(header, body)

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(self.message, **{**self.options, **overrides})


class TypeOrMethodNotFoundError(BatchFault): ...
class AmbiguousCommandError(BatchFault): ...
class ParameterBindingError(BatchFault): ...
class DuplicatedOptionError(ParameterBindingError): ...
class InstanceConstructionError(BatchFault): ...
class HandlerRuntimeError(BatchFault): ...


def getdoc(code, /):
    """
    optional documentation fetch for a fault code.

    lookup
    - the host application may expose a __docs__ mapping in __main__ where keys
      are FaultCode instances and values are short documentation strings.
    - when not found, returns None (renderers treat docs as optional).
    """
    if not isinstance(code, FaultCode):
        raise TypeError("getdoc() argument must be an fault-code")
    try:
        return getattr(__import__("__main__"), "__docs__", {})[code]
    except KeyError:
        return None


__all__ = (
    "FaultCode",
    "BatchFault",
    "TypeOrMethodNotFoundError",
    "AmbiguousCommandError",
    "ParameterBindingError",
    "DuplicatedOptionError",
    "InstanceConstructionError",
    "HandlerRuntimeError",
    "getdoc",
)
