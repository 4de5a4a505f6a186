"""OpenAPI document loader.

Parses OpenAPI 3.x documents (YAML or JSON) into Operation models with every
``$ref`` resolved, so that downstream code works on plain schema trees.
"""

import logging
from pathlib import Path

import yaml

from openapi_fuzzer.errors import SchemaError

from .base import (
    AllOfSchema,
    AnyOfSchema,
    AnySchema,
    ArraySchema,
    BooleanSchema,
    IntegerSchema,
    NumberSchema,
    ObjectSchema,
    OneOfSchema,
    Operation,
    Param,
    RequestBody,
    SchemaNode,
    StringSchema,
)

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")
PARAM_LOCATIONS = ("query", "path", "header", "cookie")

# How many times references already on the current resolution path may be
# entered again, in total, before the next one is replaced by an Any node.
MAX_RECURSION = 2

_PRIMITIVES = {
    "boolean": BooleanSchema,
    "integer": IntegerSchema,
    "number": NumberSchema,
    "string": StringSchema,
}


def load_operations(file_path: Path) -> list[Operation]:
    """Parse an OpenAPI file into a list of dereferenced Operations."""
    try:
        text = file_path.read_text(encoding="utf-8")
        doc = yaml.safe_load(text)
    except (OSError, yaml.YAMLError) as e:
        raise SchemaError(f"unable to read {file_path}: {e}") from e
    return parse_document(doc)


def parse_document(doc: dict) -> list[Operation]:
    if not isinstance(doc, dict) or not isinstance(doc.get("paths"), dict):
        raise SchemaError("document has no 'paths' mapping")

    resolver = _Resolver(doc)
    operations = []
    for path, item in doc["paths"].items():
        item = resolver.deref(item)
        shared_params = item.get("parameters", [])
        for method in HTTP_METHODS:
            operation = item.get(method)
            if operation is None:
                continue
            params = _merge_parameters(resolver, shared_params, operation.get("parameters", []))
            operations.append(
                Operation(
                    method=method.upper(),
                    path=path,
                    summary=operation.get("summary", ""),
                    parameters=[_parse_parameter(resolver, p) for p in params if p.get("in", "query") in PARAM_LOCATIONS],
                    request_body=_parse_request_body(resolver, operation.get("requestBody")),
                    responses=_parse_responses(operation.get("responses", {})),
                )
            )
    logger.debug("loaded %d operations", len(operations))
    return operations


class _Resolver:
    """Resolves local JSON pointers against the root document."""

    def __init__(self, doc: dict):
        self.doc = doc

    def lookup(self, ref: str):
        if not ref.startswith("#/"):
            raise SchemaError(f"only local references are supported, got {ref!r}")
        node = self.doc
        for token in ref[2:].split("/"):
            token = token.replace("~1", "/").replace("~0", "~")
            try:
                node = node[int(token)] if isinstance(node, list) else node[token]
            except (KeyError, IndexError, ValueError, TypeError):
                raise SchemaError(f"unresolvable reference {ref!r}") from None
        return node

    def deref(self, node):
        """Follow a chain of $ref until a concrete mapping is reached."""
        seen = set()
        while isinstance(node, dict) and "$ref" in node:
            ref = node["$ref"]
            if ref in seen:
                raise SchemaError(f"reference loop at {ref!r}")
            seen.add(ref)
            node = self.lookup(ref)
        return node

    def schema(self, raw, stack: tuple[str, ...] = ()) -> SchemaNode:
        """Convert a raw schema mapping into a SchemaNode tree."""
        if isinstance(raw, dict) and "$ref" in raw:
            ref = raw["$ref"]
            if ref in stack and len(stack) - len(set(stack)) >= MAX_RECURSION:
                logger.debug("recursion cap reached at %s", ref)
                return AnySchema()
            return self.schema(self.lookup(ref), stack + (ref,))

        if not isinstance(raw, dict):
            return AnySchema()

        for key, model in (("allOf", AllOfSchema), ("anyOf", AnyOfSchema), ("oneOf", OneOfSchema)):
            if raw.get(key):
                children = [self.schema(child, stack) for child in raw[key]]
                return model(**{_snake(key): children})

        schema_type = raw.get("type")
        if isinstance(schema_type, list):
            # OpenAPI 3.1 style ["string", "null"]
            schema_type = next((t for t in schema_type if t != "null"), None)

        if schema_type in _PRIMITIVES:
            return _PRIMITIVES[schema_type]()
        if schema_type == "object" or (schema_type is None and "properties" in raw):
            properties = {
                name: self.schema(child, stack)
                for name, child in (raw.get("properties") or {}).items()
            }
            return ObjectSchema(properties=properties)
        if schema_type == "array" or (schema_type is None and "items" in raw):
            return ArraySchema(
                items=self.schema(raw.get("items", {}), stack),
                min_items=raw.get("minItems"),
                max_items=raw.get("maxItems"),
            )
        return AnySchema()


def _snake(key: str) -> str:
    return {"allOf": "all_of", "anyOf": "any_of", "oneOf": "one_of"}[key]


def _merge_parameters(resolver: _Resolver, shared: list, own: list) -> list[dict]:
    merged: dict[tuple[str, str], dict] = {}
    for raw in list(shared) + list(own):
        p = resolver.deref(raw)
        merged[(p["name"], p.get("in", "query"))] = p
    return list(merged.values())


def _parse_parameter(resolver: _Resolver, p: dict) -> Param:
    raw_schema = p.get("schema")
    return Param(
        name=p["name"],
        location=p.get("in", "query"),
        required=p.get("required", False),
        schema=resolver.schema(raw_schema) if raw_schema is not None else None,
    )


def _parse_request_body(resolver: _Resolver, body: dict | None) -> RequestBody | None:
    body = resolver.deref(body)
    if not body:
        return None
    for media_type, media in (body.get("content") or {}).items():
        if "json" in media_type and media and media.get("schema") is not None:
            return RequestBody(media_type=media_type, schema=resolver.schema(media["schema"]))
    return None


def _parse_responses(responses: dict) -> list[int]:
    codes = []
    for status_code in responses:
        try:
            codes.append(int(status_code))
        except (TypeError, ValueError):
            # "default" and "2XX" style ranges are not explicit declarations
            continue
    return codes
