r"""
Microbatch argument specifications, tokenizer and binder.

Overview
- Specs
  • Option: optional metadata attached to a handler parameter through its default
    value (short alias, positional index, default value, description).
  • Parameter: immutable descriptor of one handler parameter, built once when the
    handler is registered (see microbatch.commands.describe).

- Tokenizer
  • tokenize(args, offset): turn the unconsumed tail of argv into an ArgumentMap
    (case-insensitive key → raw string). Bare switches map to "true".

- Binder
  • bind(parameters, args, offset): resolve every parameter (position, name,
    short alias, default) and coerce it; returns a Binding whose `fault` is set
    when binding failed.

Coercion
- Each Parameter carries a Coercion chosen at registration:
  • VERBATIM: textual parameters (str, str | None, unannotated) receive the raw
    token unchanged, so embedded JSON escaping is never touched.
  • STRUCTURED: every other annotation validates the token as JSON through a
    pydantic TypeAdapter built for the annotation (numbers, booleans, dates,
    decimals, containers, unions, enums, dataclasses and models, nested).

Quick example:
    >>> class Greeter(BatchBase):
    ...     def run(self, name: str = Option("-n"), times: int = 1):
    ...         ...
    ...
    >>> bind(describe(Greeter)[0].parameters, ["-n", "Bob", "--times", "2"], 0)
    Binding(args=('Bob', 2), kwargs={}, fault=None)
"""
import enum
import functools
import inspect
import operator
import re
import types
import typing
from collections import namedtuple
from collections.abc import Mapping

from pydantic import TypeAdapter, ValidationError

from .faults import *
from .utils import *


class SpecType(type):
    """
    Metaclass that wires introspection on descriptor classes.

    Responsibilities
    - Expose every name listed in __introspectable__ as a read-only property
      mirroring the private "_{name}" field (unless the class defines it).
    - Provide stable __repr__/__rich_repr__ implementations for diagnostics.
    - Derive __typename__ (camel-case split with hyphens) for messages.
    """

    def __new__(cls, name, bases, namespace, **options):
        introspectable = namespace.get("__introspectable__", ())
        self = super().__new__(
            cls,
            name,
            bases,
            {
                name: mirror(name) for name in introspectable if name not in namespace
            } | namespace | {
                "__typename__": re.sub(r"(?<!^)(?=[A-Z])", r"-", name).lower(),
            },
        )

        @rename("__repr__")
        def __repr__(self):
            return f"{type(self).__typename__}({', '.join(map(functools.partial(operator.mod, '%s=%r'), self.__rich_repr__()))})"
        self.__repr__ = __repr__

        @rename("__rich_repr__")
        def __rich_repr__(self):
            for name in type(self).__introspectable__:
                yield name, getattr(self, name)
        self.__rich_repr__ = __rich_repr__

        return self


class Option(metaclass=SpecType):
    """
    Parameter metadata declared through the parameter's default value.

    Usage
        def run(self, path: str = Option(index=0), count: int = Option("-c", default=1)): ...

    Fields
    - short: Unset | str
      Alias looked up when the long name (the parameter name) is absent. Leading
      dashes are accepted and stripped ("-c", "c" and "--c" are equivalent).
    - index: Unset | int (>= 0)
      Binds the parameter to argv[offset + index] verbatim.
    - default: Unset | any
      Value used when the option is absent. Unset makes the parameter required.
    - descr: Unset | str
      Short description shown by usage().
    """

    __introspectable__ = (
        "short",
        "index",
        "default",
        "descr",
    )

    def __init__(self, short=Unset, /, *, index=Unset, default=Unset, descr=Unset):
        if not isinstance(short, str | UnsetType):
            raise TypeError(f"{type(self).__typename__} 'short' must be a string")
        elif isinstance(short, str) and not re.fullmatch(r"[^\W\d_][\w-]*", short := short.lstrip("-")):
            raise ValueError(f"{type(self).__typename__} 'short' must be a valid switch name")

        if not isinstance(index, int | UnsetType) or isinstance(index, bool):
            raise TypeError(f"{type(self).__typename__} 'index' must be an integer")
        elif isinstance(index, int) and index < 0:
            raise ValueError(f"{type(self).__typename__} 'index' must be greater than or equal to 0")

        if not isinstance(descr, str | UnsetType):
            raise TypeError(f"{type(self).__typename__} 'descr' must be a string")
        elif isinstance(descr, str) and not (descr := descr.strip()):
            raise ValueError(f"{type(self).__typename__} 'descr' cannot be empty")

        self._short = short
        self._index = index
        self._default = default
        self._descr = descr

    @property
    def default(self):
        return self._default


def _unwrap_annotated(annotation):
    if typing.get_origin(annotation) is typing.Annotated:
        return typing.get_args(annotation)[0]
    return annotation


def _textual(annotation):
    """
    tell whether a declared annotation binds the raw token verbatim.
    """
    annotation = _unwrap_annotated(annotation)
    if annotation is inspect.Parameter.empty or annotation is str:
        return True
    if typing.get_origin(annotation) in (typing.Union, types.UnionType):
        return set(typing.get_args(annotation)) == {str, type(None)}
    return False


class Coercion(enum.Enum):
    """
    tagged coercion strategy of a parameter (chosen once at registration).
    """
    VERBATIM = "verbatim"
    STRUCTURED = "structured"

    def __call__(self, raw, adapter, /):
        if self is Coercion.VERBATIM:
            return raw
        return adapter.validate_json(raw)


class Parameter(metaclass=SpecType):
    """
    Immutable descriptor of one handler parameter.

    Built from an inspect.Parameter and its optional Option metadata:
    - name: the Python parameter name, also the long option key.
    - annotation: declared type (inspect.Parameter.empty when unannotated).
    - keyword: True for keyword-only parameters (passed by keyword).
    - short / index / descr: copied from Option (Unset when not declared).
    - default: Option default, plain parameter default, or Unset (required).
    - coercion: Coercion.VERBATIM or Coercion.STRUCTURED.
    """

    __introspectable__ = (
        "name",
        "annotation",
        "keyword",
        "short",
        "index",
        "default",
        "descr",
        "coercion",
    )

    def __init__(self, parameter, /):
        if not isinstance(parameter, inspect.Parameter):
            raise TypeError(f"{type(self).__typename__} argument must be an inspect.Parameter")
        if parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise TypeError(f"variadic parameter {parameter.name!r} cannot be bound from the command line")

        option = parameter.default if isinstance(parameter.default, Option) else Option()

        self._name = parameter.name
        self._annotation = parameter.annotation
        self._keyword = parameter.kind is inspect.Parameter.KEYWORD_ONLY
        self._short = option.short
        self._index = option.index
        self._descr = option.descr
        if isinstance(parameter.default, Option):
            self._default = option.default
        else:
            self._default = Unset if parameter.default is inspect.Parameter.empty else parameter.default
        if _textual(parameter.annotation):
            self._coercion = Coercion.VERBATIM
            self._adapter = None
        else:
            self._coercion = Coercion.STRUCTURED
            self._adapter = TypeAdapter(parameter.annotation)

    @property
    def default(self):
        return self._default

    @property
    def required(self):
        return self._default is Unset

    def coerce(self, raw, /):
        return self._coercion(raw, self._adapter)


class ArgumentMap(Mapping):
    """
    Read-only, case-insensitive mapping of option key → raw string value.

    Keys keep the spelling they were given for iteration and display; lookups
    compare casefolded keys.
    """

    __slots__ = ("_items",)

    def __init__(self, items=()):
        self._items = {}
        for key, value in items:
            self._items[key.casefold()] = (key, value)

    def __getitem__(self, key, /):
        return self._items[key.casefold()][1]

    def __contains__(self, key, /):
        return isinstance(key, str) and key.casefold() in self._items

    def __iter__(self):
        return (key for key, _ in self._items.values())

    def __len__(self):
        return len(self._items)

    def __repr__(self):
        return f"ArgumentMap({dict(self._items.values())!r})"


def tokenize(args, offset=0, /):
    """
    Build the ArgumentMap of the tokens from `offset` onwards.

    Algorithm
    - each token is a key with its leading dashes stripped;
    - when the next token exists and does not start with "-", it is the value
      (cursor advances by two); otherwise the key maps to "true" (cursor by one).

    Raises
    - DuplicatedOptionError when a key repeats (compared case-insensitively).
    """
    items = []
    seen = {}
    index = offset
    while index < len(args):
        key = args[index].lstrip("-")
        if (previous := seen.setdefault(key.casefold(), index)) != index:
            raise DuplicatedOptionError(
                "option %r at %s position was already given at %s position" % (
                    key, ordinal(index + 1), ordinal(previous + 1)
                ),
                title="duplicated option",
                code=FaultCode.DUPLICATED_OPTION,
                hint="pass %r only once" % args[index],
                key=key,
                index=index,
                docs=getdoc(FaultCode.DUPLICATED_OPTION),
            )
        index += 1
        if index < len(args) and not args[index].startswith("-"):
            items.append((key, args[index]))
            index += 1
        else:
            items.append((key, "true"))  # boolean switch
    return ArgumentMap(items)


Binding = namedtuple("Binding", ("args", "kwargs", "fault"))


def _failure(fault):
    return Binding((), {}, fault)


def bind(parameters, args, offset=0, /):
    """
    Resolve and coerce every parameter of a handler.

    Resolution order per parameter (first that applies wins)
    1. positional index: args[offset + index], verbatim before coercion;
       out of range is a failure even when a default exists.
    2. ArgumentMap lookup by name, then by short alias.
    3. default.
    4. failure: required parameter not found.

    Returns
    - Binding(args, kwargs, None) on success; keyword-only parameters land in
      kwargs, every other parameter in args (declaration order).
    - Binding((), {}, fault) on the first failure (no partial result).
    """
    args = tuple(args)

    try:
        options = tokenize(args, offset)
    except DuplicatedOptionError as fault:
        return _failure(fault)

    positionals = []
    keywords = {}

    for parameter in parameters:
        raw = Unset

        if parameter.index is not Unset:
            try:
                raw = args[offset + parameter.index]
            except IndexError:
                return _failure(ParameterBindingError(
                    "parameter %r expects a value at %s position but only %d argument(s) were given" % (
                        parameter.name, ordinal(offset + parameter.index + 1), len(args)
                    ),
                    title="index out of range",
                    code=FaultCode.INDEX_OUT_OF_RANGE,
                    hint="pass a value for %r at that position" % parameter.name,
                    parameter=parameter,
                    docs=getdoc(FaultCode.INDEX_OUT_OF_RANGE),
                ))
        elif (raw := options.get(parameter.name, Unset)) is Unset and parameter.short is not Unset:
            raw = options.get(parameter.short, Unset)

        if raw is Unset:
            if parameter.required:
                return _failure(ParameterBindingError(
                    "required parameter %r not found in argument" % parameter.name,
                    title="required parameter not found",
                    code=FaultCode.REQUIRED_PARAMETER,
                    hint="pass it as --%s <value>%s" % (
                        parameter.name,
                        "" if parameter.short is Unset else " or -%s <value>" % parameter.short
                    ),
                    parameter=parameter,
                    docs=getdoc(FaultCode.REQUIRED_PARAMETER),
                ))
            value = parameter.default
        else:
            try:
                value = parameter.coerce(raw)
            except ValidationError as error:
                return _failure(ParameterBindingError(
                    "parameter %r fail on json deserialize, please check type or json escape" % parameter.name,
                    title="uncastable parameter",
                    code=FaultCode.UNCASTABLE_PARAMETER,
                    hint=str(error),
                    parameter=parameter,
                    raw=raw,
                    cause=error,
                    docs=getdoc(FaultCode.UNCASTABLE_PARAMETER),
                ))

        if parameter.keyword:
            keywords[parameter.name] = value
        else:
            positionals.append(value)

    return Binding(tuple(positionals), keywords, None)


__all__ = (
    "Option",
    "Parameter",
    "Coercion",
    "ArgumentMap",
    "Binding",
    "tokenize",
    "bind",
)
