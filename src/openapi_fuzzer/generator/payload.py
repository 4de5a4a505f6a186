"""Payload model and the assembler that generates one per trial."""

import json
import shlex
from typing import Any, Iterator
from urllib.parse import quote, unquote, urlencode, urljoin

from pydantic import BaseModel

from openapi_fuzzer.errors import TransportError
from openapi_fuzzer.parser.base import AnySchema, Operation, Param, StringSchema

from .compiler import AllOfPolicy, compile_schema
from .cursor import Cursor
from .strategies import (
    COOKIE_ALPHABET,
    HEADER_ALPHABET,
    RenderedGenerator,
    StringGenerator,
    ValueGenerator,
    to_text,
)

LOCATIONS = {
    "path": "path_params",
    "query": "query_params",
    "header": "headers",
    "cookie": "cookies",
}

# quote() escapes everything else, including "%" itself
_COOKIE_SAFE = COOKIE_ALPHABET.replace("%", "")


class Payload(BaseModel):
    """One synthesized request."""

    method: str
    path: str
    path_params: list[tuple[str, str]] = []
    query_params: list[tuple[str, str]] = []
    headers: list[tuple[str, str]] = []
    cookies: list[tuple[str, str]] = []
    body: Any = None
    has_body: bool = False
    seed: int | None = None

    def render_path(self) -> str:
        """Path template with ``{name}`` placeholders filled in."""
        path = self.path
        for name, value in self.path_params:
            path = path.replace("{" + name + "}", quote(value, safe=""))
        return path

    def url(self, base_url: str) -> str:
        try:
            return urljoin(base_url, self.render_path().lstrip("/"))
        except ValueError as e:
            raise TransportError(f"unable to join {base_url!r} and {self.path!r}: {e}") from e

    def header_items(self) -> list[tuple[str, str]]:
        """Headers as sent, with cookie parameters folded into one Cookie header."""
        items = list(self.headers)
        if not self.cookies:
            return items
        pairs = "; ".join(f"{name}={value}" for name, value in self.cookies)
        for i, (name, value) in enumerate(items):
            if name.lower() == "cookie":
                items[i] = (name, f"{value}; {pairs}")
                break
        else:
            items.append(("Cookie", pairs))
        return items

    def to_curl(self, base_url: str) -> str:
        parts = ["curl", "-X", self.method]
        if self.has_body:
            parts += ["-H", "Content-Type: application/json", "-d", json.dumps(self.body)]
        for name, value in self.header_items():
            parts += ["-H", f"{name}: {value}"]
        url = self.url(base_url)
        if self.query_params:
            url += "?" + urlencode(self.query_params)
        parts.append(url)
        return " ".join(shlex.quote(p) for p in parts)


def apply_header_overrides(headers: list[tuple[str, str]], overrides: dict[str, str]) -> list[tuple[str, str]]:
    """Replace same-named headers (case-insensitive) or append new ones."""
    headers = list(headers)
    for name, value in overrides.items():
        for i, (header_name, _) in enumerate(headers):
            if header_name.lower() == name.lower():
                headers[i] = (name, value)
                break
        else:
            headers.append((name, value))
    return headers


def _parse_text(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def _cookie_text(value: Any) -> str:
    return quote(to_text(value), safe=_COOKIE_SAFE)


def _parse_cookie_text(text: str) -> Any:
    return _parse_text(unquote(text))


def param_generator(param: Param, all_of_policy: AllOfPolicy = "last_wins") -> ValueGenerator:
    """A text generator for one parameter.

    Typed parameters are generated as values and rendered to their canonical
    text (``42``, ``true``, JSON for objects); strings are generated as text.
    Cookie values are percent-encoded, since JSON brings in quotes and commas.
    """
    alphabet = {"header": HEADER_ALPHABET, "cookie": COOKIE_ALPHABET}.get(param.location)
    schema = param.schema_
    if schema is None or isinstance(schema, (StringSchema, AnySchema)):
        return StringGenerator(alphabet)
    inner = compile_schema(schema, all_of_policy, alphabet)
    if param.location == "cookie":
        return RenderedGenerator(inner, _cookie_text, _parse_cookie_text)
    return RenderedGenerator(inner, to_text, _parse_text)


class PayloadGenerator(ValueGenerator):
    """Generates complete Payloads for one operation.

    ``extra_headers`` are applied after generation: a generated header with
    the same name (case-insensitive) gets the override value, otherwise the
    header is appended. Overridden headers are never shrunk.
    """

    def __init__(
        self,
        operation: Operation,
        extra_headers: dict[str, str] | None = None,
        all_of_policy: AllOfPolicy = "last_wins",
    ):
        self.operation = operation
        self.extra_headers = dict(extra_headers or {})
        self._override_names = {name.lower() for name in self.extra_headers}
        self.slots: dict[str, list[tuple[str, ValueGenerator]]] = {field: [] for field in LOCATIONS.values()}
        for param in operation.parameters:
            self.slots[LOCATIONS[param.location]].append((param.name, param_generator(param, all_of_policy)))
        self.body_generator = None
        if operation.request_body is not None:
            self.body_generator = compile_schema(operation.request_body.schema_, all_of_policy)

    def _build(self, fields: dict[str, list[tuple[str, str]]], body: Any, seed: int | None) -> Payload:
        return Payload(
            method=self.operation.method,
            path=self.operation.path,
            path_params=fields["path_params"],
            query_params=fields["query_params"],
            headers=apply_header_overrides(fields["headers"], self.extra_headers),
            cookies=fields["cookies"],
            body=body,
            has_body=self.body_generator is not None,
            seed=seed,
        )

    def produce(self, cursor: Cursor) -> Payload:
        fields = {
            field: [(name, gen.produce(cursor)) for name, gen in slots]
            for field, slots in self.slots.items()
        }
        body = self.body_generator.produce(cursor) if self.body_generator is not None else None
        return self._build(fields, body, cursor.seed)

    def shrink(self, payload: Payload) -> Iterator[Payload]:
        for field, slots in self.slots.items():
            entries = getattr(payload, field)
            for i, (name, gen) in enumerate(slots):
                if field == "headers" and name.lower() in self._override_names:
                    continue
                for candidate in gen.shrink(entries[i][1]):
                    updated = list(entries)
                    updated[i] = (entries[i][0], candidate)
                    yield payload.model_copy(update={field: updated})
        if self.body_generator is not None and payload.has_body:
            for candidate in self.body_generator.shrink(payload.body):
                yield payload.model_copy(update={"body": candidate})

    def minimal(self) -> Payload:
        fields = {
            field: [(name, gen.minimal()) for name, gen in slots]
            for field, slots in self.slots.items()
        }
        body = self.body_generator.minimal() if self.body_generator is not None else None
        return self._build(fields, body, None)

    def matches(self, value: Any) -> bool:
        return isinstance(value, Payload) and value.method == self.operation.method and value.path == self.operation.path

    def size(self, payload: Payload) -> float:
        total = 0
        for field, slots in self.slots.items():
            entries = getattr(payload, field)
            total += sum(gen.size(entries[i][1]) for i, (_, gen) in enumerate(slots))
        if self.body_generator is not None and payload.has_body:
            total += self.body_generator.size(payload.body)
        return total
