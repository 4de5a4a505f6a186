"""Value generators.

A generator knows how to ``produce`` a random value from a Cursor and how to
``shrink`` an existing value into a lazy sequence of simpler candidates,
simplest first. The runner walks those candidates to minimise a failing
input, so the candidate order decides what a counterexample ends up like.
"""

import json
import math
from typing import Any, Callable, Iterator

from .cursor import Cursor

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
SMALL_INT = 1000
MAX_FLOAT_EXPONENT = 300
FLOAT_DIGITS = 6
FLOAT_SHRINK_FLOOR = 1e-6
MAX_STRING_LENGTH = 64
DEFAULT_MIN_ITEMS = 1
DEFAULT_MAX_ITEMS = 10

# Header values must not contain control characters or start with whitespace.
HEADER_ALPHABET = "".join(chr(c) for c in range(0x21, 0x7F))
COOKIE_ALPHABET = "".join(c for c in HEADER_ALPHABET if c not in ';,"\\')

_SURROGATES = 0xE000 - 0xD800


def size(value: Any) -> float:
    """Measure used to keep shrinking monotonic."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float) and not value.is_integer():
        return abs(value) + 1
    if isinstance(value, (int, float)):
        return abs(value)
    if isinstance(value, str):
        return len(value)
    if isinstance(value, (list, tuple)):
        return len(value) + sum(size(v) for v in value)
    if isinstance(value, dict):
        return sum(size(v) for v in value.values())
    return 0


def shrink_integer(value: int) -> Iterator[int]:
    """Candidates between 0 and ``value``, closest to 0 first."""
    if value == 0:
        return
    yield 0
    sign = 1 if value > 0 else -1
    magnitude = abs(value)
    step = magnitude // 2
    while step > 0:
        yield sign * (magnitude - step)
        step //= 2


def shrink_float(value: float) -> Iterator[float]:
    if value == 0:
        return
    yield 0.0
    if value.is_integer():
        if abs(value) < 2**53:
            yield from (float(c) for c in shrink_integer(int(value)) if c != 0)
        else:
            yield value / 2
        return
    # whole numbers are simpler than any fraction, see size()
    truncated = float(math.trunc(value))
    yield truncated if truncated != 0 else math.copysign(1.0, value)
    seen = {value}
    for digits in range(1, FLOAT_DIGITS + 1):
        rounded = round(value, digits)
        if rounded not in seen and rounded != 0 and abs(rounded) <= abs(value):
            seen.add(rounded)
            yield rounded
    if abs(value) / 2 >= FLOAT_SHRINK_FLOOR:
        yield value / 2


class ValueGenerator:
    """Base class for all generators."""

    def produce(self, cursor: Cursor) -> Any:
        raise NotImplementedError

    def shrink(self, value: Any) -> Iterator[Any]:
        return iter(())

    def minimal(self) -> Any:
        """The simplest value this generator can produce."""
        raise NotImplementedError

    def matches(self, value: Any) -> bool:
        """Whether ``value`` has the shape this generator produces."""
        raise NotImplementedError

    def size(self, value: Any) -> float:
        return size(value)


class BooleanGenerator(ValueGenerator):
    def produce(self, cursor: Cursor) -> bool:
        return cursor.boolean()

    def shrink(self, value: bool) -> Iterator[bool]:
        if value:
            yield False

    def minimal(self) -> bool:
        return False

    def matches(self, value: Any) -> bool:
        return isinstance(value, bool)


class IntegerGenerator(ValueGenerator):
    """Signed 64-bit integers, biased towards small magnitudes."""

    def produce(self, cursor: Cursor) -> int:
        if cursor.chance(0.1):
            return cursor.choice((0, 1, -1, INT64_MIN, INT64_MAX))
        if cursor.boolean():
            return cursor.integer(-SMALL_INT, SMALL_INT)
        return cursor.integer(INT64_MIN, INT64_MAX)

    def shrink(self, value: int) -> Iterator[int]:
        return shrink_integer(value)

    def minimal(self) -> int:
        return 0

    def matches(self, value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)


class NumberGenerator(ValueGenerator):
    """Finite floats, so every value survives JSON encoding."""

    def produce(self, cursor: Cursor) -> float:
        if cursor.chance(0.25):
            return float(cursor.integer(-SMALL_INT, SMALL_INT))
        if cursor.boolean():
            return cursor.real(-SMALL_INT, SMALL_INT)
        return cursor.real(-1.0, 1.0) * 10.0 ** cursor.integer(-MAX_FLOAT_EXPONENT, MAX_FLOAT_EXPONENT)

    def shrink(self, value: float) -> Iterator[float]:
        return shrink_float(float(value))

    def minimal(self) -> float:
        return 0.0

    def matches(self, value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool)


class StringGenerator(ValueGenerator):
    """Text, optionally restricted to an alphabet.

    Without an alphabet most characters are printable ASCII, with arbitrary
    code points mixed in. Surrogates are never generated.
    """

    def __init__(self, alphabet: str | None = None, min_length: int = 0, max_length: int = MAX_STRING_LENGTH):
        self.alphabet = alphabet
        self.min_length = min_length
        self.max_length = max(min_length, max_length)
        self._allowed = frozenset(alphabet) if alphabet else None
        self.simplest = "a" if alphabet is None or "a" in alphabet else alphabet[0]

    def _char(self, cursor: Cursor) -> str:
        if self.alphabet:
            return cursor.choice(self.alphabet)
        if cursor.chance(0.8):
            return chr(cursor.integer(0x20, 0x7E))
        code = cursor.integer(0, 0x10FFFF - _SURROGATES)
        if code >= 0xD800:
            code += _SURROGATES
        return chr(code)

    def produce(self, cursor: Cursor) -> str:
        upper = min(cursor.choice((4, 16, self.max_length)), self.max_length)
        length = cursor.integer(self.min_length, max(self.min_length, upper))
        return "".join(self._char(cursor) for _ in range(length))

    def shrink(self, value: str) -> Iterator[str]:
        n = len(value)
        if n > self.min_length:
            for offset in shrink_integer(n - self.min_length):
                yield value[: self.min_length + offset]
            for i in range(n):
                yield value[:i] + value[i + 1 :]
        for i, ch in enumerate(value):
            if ch != self.simplest:
                yield value[:i] + self.simplest + value[i + 1 :]

    def minimal(self) -> str:
        return self.simplest * self.min_length

    def matches(self, value: Any) -> bool:
        if not isinstance(value, str) or len(value) < self.min_length:
            return False
        return self._allowed is None or all(ch in self._allowed for ch in value)


class ObjectGenerator(ValueGenerator):
    """Product of field generators. Every produced object has all the fields."""

    def __init__(self, fields: dict[str, ValueGenerator]):
        self.fields = dict(fields)

    def produce(self, cursor: Cursor) -> dict:
        return {name: gen.produce(cursor) for name, gen in self.fields.items()}

    def shrink(self, value: dict) -> Iterator[dict]:
        # one field at a time, in declaration order
        for name, gen in self.fields.items():
            for candidate in gen.shrink(value[name]):
                shrunk = dict(value)
                shrunk[name] = candidate
                yield shrunk

    def minimal(self) -> dict:
        return {name: gen.minimal() for name, gen in self.fields.items()}

    def matches(self, value: Any) -> bool:
        return (
            isinstance(value, dict)
            and set(value) == set(self.fields)
            and all(gen.matches(value[name]) for name, gen in self.fields.items())
        )


class ArrayGenerator(ValueGenerator):
    """Between ``min_items`` and ``max_items`` values of one item generator."""

    def __init__(self, item: ValueGenerator, min_items: int | None = None, max_items: int | None = None):
        self.item = item
        self.min_items = DEFAULT_MIN_ITEMS if min_items is None else min_items
        self.max_items = DEFAULT_MAX_ITEMS if max_items is None else max_items
        # minItems above the default ceiling with no maxItems
        self.max_items = max(self.min_items, self.max_items)

    def produce(self, cursor: Cursor) -> list:
        count = cursor.integer(self.min_items, self.max_items)
        return [self.item.produce(cursor) for _ in range(count)]

    def shrink(self, value: list) -> Iterator[list]:
        n = len(value)
        if n > self.min_items:
            for offset in shrink_integer(n - self.min_items):
                yield value[: self.min_items + offset]
            for i in range(n):
                yield value[:i] + value[i + 1 :]
        for i, element in enumerate(value):
            for candidate in self.item.shrink(element):
                yield value[:i] + [candidate] + value[i + 1 :]

    def minimal(self) -> list:
        return [self.item.minimal() for _ in range(self.min_items)]

    def matches(self, value: Any) -> bool:
        return (
            isinstance(value, list)
            and self.min_items <= len(value) <= self.max_items
            and all(self.item.matches(v) for v in value)
        )


class UnionGenerator(ValueGenerator):
    """One of several branches, chosen per production.

    Earlier branches count as simpler: shrinking first tries to switch to
    the minimal value of every earlier branch, then shrinks within the
    branch that produced the value.
    """

    def __init__(self, branches: list[ValueGenerator]):
        self.branches = list(branches)

    def produce(self, cursor: Cursor) -> Any:
        return cursor.choice(self.branches).produce(cursor)

    def branch_of(self, value: Any) -> int | None:
        for i, branch in enumerate(self.branches):
            if branch.matches(value):
                return i
        return None

    def shrink(self, value: Any) -> Iterator[Any]:
        index = self.branch_of(value)
        if index is None:
            return
        for branch in self.branches[:index]:
            yield branch.minimal()
        yield from self.branches[index].shrink(value)

    def minimal(self) -> Any:
        return self.branches[0].minimal()

    def matches(self, value: Any) -> bool:
        return self.branch_of(value) is not None


class RenderedGenerator(ValueGenerator):
    """Wraps a generator and renders its values as text.

    ``parse`` must invert ``render`` so rendered values can still be shrunk.
    """

    def __init__(self, inner: ValueGenerator, render: Callable[[Any], str], parse: Callable[[str], Any]):
        self.inner = inner
        self.render = render
        self.parse = parse

    def _parsed(self, text: str):
        try:
            return True, self.parse(text)
        except ValueError:
            return False, None

    def produce(self, cursor: Cursor) -> str:
        return self.render(self.inner.produce(cursor))

    def shrink(self, text: str) -> Iterator[str]:
        ok, value = self._parsed(text)
        if ok:
            for candidate in self.inner.shrink(value):
                yield self.render(candidate)

    def minimal(self) -> str:
        return self.render(self.inner.minimal())

    def matches(self, value: Any) -> bool:
        if not isinstance(value, str):
            return False
        ok, parsed = self._parsed(value)
        return ok and self.inner.matches(parsed)

    def size(self, text: str) -> float:
        ok, value = self._parsed(text)
        return self.inner.size(value) if ok else len(text)


def to_text(value: Any) -> str:
    """Canonical text form of a parameter value."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))
