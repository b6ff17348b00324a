"""
Arguments module behavioral tests (tokenizer, specs, binder, coercion).

Scope
- Validate tokenize(): key/value pairs, bare switches, offsets, case-insensitive
  lookups and duplicate rejection.
- Validate Option metadata normalization and Parameter descriptors.
- Validate bind(): positional, named, short alias, default and failure faults.
- Validate structured coercion of non-textual annotations.

Conventions
- Test method names follow CamelCase per project convention.
- Parameters are built from plain functions through inspect.signature.
"""

import enum
import inspect
import unittest
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Literal
from unittest import TestCase

from pydantic import ValidationError

from microbatch import (
    Option,
    Parameter,
    Coercion,
    ArgumentMap,
    tokenize,
    bind,
    FaultCode,
    ParameterBindingError,
    DuplicatedOptionError,
)
from microbatch.utils import Unset


def parameters(function):
    return tuple(map(Parameter, inspect.signature(function, eval_str=True).parameters.values()))


@dataclass
class Point:
    x: int
    y: int


@dataclass
class Segment:
    start: Point
    end: Point


class Color(enum.Enum):
    RED = "red"
    BLUE = "blue"


class TestTokenize(TestCase):
    """Behavioral tests for the argument tokenizer."""

    def testNameValueAndSwitch(self):
        options = tokenize(["--name", "Alice", "--verbose"], 0)
        self.assertEqual(dict(options), {"name": "Alice", "verbose": "true"})

    def testOffsetSkipsConsumedTokens(self):
        options = tokenize(["hello", "--name", "Bob"], 1)
        self.assertEqual(dict(options), {"name": "Bob"})

    def testSingleDashAndBareKeys(self):
        options = tokenize(["-n", "Bob", "quiet"], 0)
        self.assertEqual(dict(options), {"n": "Bob", "quiet": "true"})

    def testValueStartingWithDashIsASwitch(self):
        options = tokenize(["--delta", "-5"], 0)
        self.assertEqual(options["delta"], "true")
        self.assertEqual(options["5"], "true")

    def testLookupIsCaseInsensitive(self):
        options = tokenize(["--Name", "Bob"], 0)
        self.assertEqual(options["NAME"], "Bob")
        self.assertIn("name", options)
        self.assertEqual(list(options), ["Name"])

    def testDuplicateKeyRaises(self):
        with self.assertRaises(DuplicatedOptionError) as context:
            tokenize(["--name", "a", "--NAME", "b"], 0)
        self.assertEqual(context.exception.code, FaultCode.DUPLICATED_OPTION)
        self.assertIn("third", context.exception.message)

    def testEmptyTail(self):
        self.assertEqual(len(tokenize(["cmd"], 1)), 0)

    def testArgumentMapMissingKey(self):
        options = ArgumentMap([("a", "1")])
        with self.assertRaises(KeyError):
            options["b"]
        self.assertIsNone(options.get("b"))


class TestOption(TestCase):
    """Behavioral tests for Option metadata."""

    def testShortAliasDashesStripped(self):
        self.assertEqual(Option("--n").short, "n")
        self.assertEqual(Option("-v").short, "v")

    def testDefaultsAreUnset(self):
        option = Option()
        self.assertIs(option.short, Unset)
        self.assertIs(option.index, Unset)
        self.assertIs(option.default, Unset)
        self.assertIs(option.descr, Unset)

    def testInvalidShortRejected(self):
        with self.assertRaises(ValueError):
            Option("-1x")
        with self.assertRaises(TypeError):
            Option(1)

    def testNegativeIndexRejected(self):
        with self.assertRaises(ValueError):
            Option(index=-1)

    def testBooleanIndexRejected(self):
        with self.assertRaises(TypeError):
            Option(index=True)

    def testEmptyDescrRejected(self):
        with self.assertRaises(ValueError):
            Option(descr="  ")

    def testRepr(self):
        self.assertTrue(repr(Option("-n")).startswith("option("))


class TestParameter(TestCase):
    """Behavioral tests for Parameter descriptors."""

    def testPlainDefault(self):
        def handler(count: int = 3): ...

        parameter, = parameters(handler)
        self.assertEqual(parameter.name, "count")
        self.assertEqual(parameter.default, 3)
        self.assertFalse(parameter.required)
        self.assertIs(parameter.coercion, Coercion.STRUCTURED)

    def testOptionMetadata(self):
        def handler(name: str = Option("-n", default="world", descr="who to greet")): ...

        parameter, = parameters(handler)
        self.assertEqual(parameter.short, "n")
        self.assertEqual(parameter.default, "world")
        self.assertEqual(parameter.descr, "who to greet")
        self.assertIs(parameter.coercion, Coercion.VERBATIM)

    def testRequiredWithoutDefault(self):
        def handler(name, path: str = Option(index=0)): ...

        first, second = parameters(handler)
        self.assertTrue(first.required)
        self.assertTrue(second.required)
        self.assertEqual(second.index, 0)

    def testTextualAnnotations(self):
        def handler(a, b: str, c: str | None = None): ...

        for parameter in parameters(handler):
            self.assertIs(parameter.coercion, Coercion.VERBATIM)

    def testKeywordOnly(self):
        def handler(a, *, b=1): ...

        first, second = parameters(handler)
        self.assertFalse(first.keyword)
        self.assertTrue(second.keyword)

    def testVariadicRejected(self):
        def handler(*args): ...

        with self.assertRaises(TypeError):
            parameters(handler)


class TestBind(TestCase):
    """Behavioral tests for the parameter binder."""

    def testNamedLookup(self):
        def handler(name: str, count: int = 1): ...

        binding = bind(parameters(handler), ["--name", "Bob"], 0)
        self.assertIsNone(binding.fault)
        self.assertEqual(binding.args, ("Bob", 1))
        self.assertEqual(binding.kwargs, {})

    def testShortAliasLookup(self):
        def handler(name: str = Option("-n")): ...

        binding = bind(parameters(handler), ["-n", "Bob"], 0)
        self.assertEqual(binding.args, ("Bob",))

    def testNameWinsOverShortAlias(self):
        def handler(name: str = Option("-n")): ...

        binding = bind(parameters(handler), ["-n", "short", "--name", "long"], 0)
        self.assertEqual(binding.args, ("long",))

    def testNamedLookupIgnoresCase(self):
        def handler(name: str): ...

        binding = bind(parameters(handler), ["--NAME", "Bob"], 0)
        self.assertEqual(binding.args, ("Bob",))

    def testPositionalIndexAfterOffset(self):
        def handler(path: str = Option(index=0), count: int = Option(index=1)): ...

        binding = bind(parameters(handler), ["copy", "a.txt", "3"], 1)
        self.assertIsNone(binding.fault)
        self.assertEqual(binding.args, ("a.txt", 3))

    def testPositionalValueIsVerbatim(self):
        def handler(path: str = Option(index=0)): ...

        binding = bind(parameters(handler), ["--not-an-option"], 0)
        self.assertEqual(binding.args, ("--not-an-option",))

    def testPositionalOutOfRangeIgnoresDefault(self):
        def handler(path: str = Option(index=0, default="x")): ...

        binding = bind(parameters(handler), [], 0)
        self.assertIsInstance(binding.fault, ParameterBindingError)
        self.assertEqual(binding.fault.code, FaultCode.INDEX_OUT_OF_RANGE)
        self.assertEqual(binding.args, ())

    def testDefaultUsedWhenAbsent(self):
        def handler(name: str = Option(default="world"), times: int = 2): ...

        binding = bind(parameters(handler), [], 0)
        self.assertEqual(binding.args, ("world", 2))

    def testRequiredParameterMissing(self):
        def handler(count: int): ...

        binding = bind(parameters(handler), [], 0)
        self.assertEqual(binding.fault.code, FaultCode.REQUIRED_PARAMETER)
        self.assertIn("count", binding.fault.message)

    def testFirstFailureShortCircuits(self):
        def handler(first: int, second: int): ...

        binding = bind(parameters(handler), [], 0)
        self.assertEqual(binding.fault.options["parameter"].name, "first")

    def testUncastableValue(self):
        def handler(count: int): ...

        binding = bind(parameters(handler), ["--count", "abc"], 0)
        self.assertEqual(binding.fault.code, FaultCode.UNCASTABLE_PARAMETER)
        self.assertIn("count", binding.fault.message)
        self.assertIsInstance(binding.fault.cause, ValueError)

    def testTypeMismatch(self):
        def handler(count: int): ...

        binding = bind(parameters(handler), ["--count", "1.5"], 0)
        self.assertEqual(binding.fault.code, FaultCode.UNCASTABLE_PARAMETER)
        self.assertIsInstance(binding.fault.cause, ValidationError)

    def testDuplicateOptionIsBindingFault(self):
        def handler(name: str): ...

        binding = bind(parameters(handler), ["--name", "a", "--name", "b"], 0)
        self.assertIsInstance(binding.fault, DuplicatedOptionError)

    def testKeywordOnlyGoesToKwargs(self):
        def handler(path, *, verbose: bool = False): ...

        binding = bind(parameters(handler), ["--path", "x", "--verbose"], 0)
        self.assertEqual(binding.args, ("x",))
        self.assertEqual(binding.kwargs, {"verbose": True})


class TestCoercion(TestCase):
    """Behavioral tests for structured coercion."""

    def coerce(self, annotation, raw):
        def handler(value): ...

        handler.__annotations__ = {"value": annotation}
        parameter, = parameters(handler)
        return parameter.coerce(raw)

    def testStringIsNeverDecoded(self):
        raw = '{"text": "line\\nbreak"}'
        self.assertEqual(self.coerce(str, raw), raw)

    def testBoolean(self):
        self.assertIs(self.coerce(bool, "true"), True)
        self.assertIs(self.coerce(bool, "false"), False)
        with self.assertRaises(ValidationError):
            self.coerce(bool, '"maybe"')

    def testInteger(self):
        self.assertEqual(self.coerce(int, "42"), 42)
        with self.assertRaises(ValidationError):
            self.coerce(int, "1.5")

    def testFloatAcceptsIntegers(self):
        value = self.coerce(float, "2")
        self.assertEqual(value, 2.0)
        self.assertIsInstance(value, float)

    def testDecimalKeepsDigits(self):
        self.assertEqual(self.coerce(Decimal, "0.1"), Decimal("0.1"))
        self.assertEqual(self.coerce(Decimal, '"19.99"'), Decimal("19.99"))

    def testDate(self):
        self.assertEqual(self.coerce(date, '"2024-01-02"'), date(2024, 1, 2))

    def testContainers(self):
        self.assertEqual(self.coerce(list[int], "[1, 2]"), [1, 2])
        self.assertEqual(self.coerce(tuple[int, str], '[1, "a"]'), (1, "a"))
        self.assertEqual(self.coerce(tuple[int, ...], "[1, 2, 3]"), (1, 2, 3))
        self.assertEqual(self.coerce(set[str], '["a", "a"]'), {"a"})
        self.assertEqual(self.coerce(dict[str, int], '{"a": 1}'), {"a": 1})
        self.assertEqual(self.coerce(dict, '{"a": [1]}'), {"a": [1]})

    def testContainerItemMismatch(self):
        with self.assertRaises(ValidationError):
            self.coerce(list[int], '["a"]')
        with self.assertRaises(ValidationError):
            self.coerce(tuple[int, int], "[1]")

    def testOptional(self):
        self.assertIsNone(self.coerce(int | None, "null"))
        self.assertEqual(self.coerce(int | None, "7"), 7)

    def testLiteral(self):
        self.assertEqual(self.coerce(Literal["fast", "slow"], '"fast"'), "fast")
        with self.assertRaises(ValidationError):
            self.coerce(Literal["fast", "slow"], '"medium"')

    def testDataclassFromObject(self):
        self.assertEqual(self.coerce(Point, '{"x": 1, "y": 2}'), Point(1, 2))

    def testNestedDataclass(self):
        segment = self.coerce(Segment, '{"start": {"x": 0, "y": 0}, "end": {"x": 3, "y": 4}}')
        self.assertIsInstance(segment.start, Point)
        self.assertEqual(segment.end, Point(3, 4))

    def testEnumByValue(self):
        self.assertIs(self.coerce(Color, '"blue"'), Color.BLUE)
        with self.assertRaises(ValidationError):
            self.coerce(Color, '"green"')

    def testMalformedJson(self):
        with self.assertRaises(ValidationError):
            self.coerce(list[int], "[1, 2")

    def testAdapterBuiltOnce(self):
        def handler(value: list[int]): ...

        parameter, = parameters(handler)
        self.assertIs(parameter.coercion, Coercion.STRUCTURED)
        self.assertEqual(parameter.coerce("[1]"), [1])
        self.assertEqual(parameter.coerce("[2]"), [2])


if __name__ == "__main__":
    unittest.main()
