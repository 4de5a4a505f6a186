from pathlib import Path

import pytest

from openapi_fuzzer.errors import SchemaError
from openapi_fuzzer.parser.base import (
    AllOfSchema,
    AnySchema,
    ArraySchema,
    BooleanSchema,
    IntegerSchema,
    ObjectSchema,
    OneOfSchema,
    StringSchema,
)
from openapi_fuzzer.parser.openapi import MAX_RECURSION, load_operations, parse_document

FIXTURES = Path(__file__).parent / "fixtures"


def _find(operations, method, path):
    return [op for op in operations if op.method == method and op.path == path][0]


class TestLoadPetstore:
    def test_operations_count(self):
        operations = load_operations(FIXTURES / "petstore.yaml")
        assert len(operations) == 3

    def test_get_pets_parameters(self):
        get_pets = _find(load_operations(FIXTURES / "petstore.yaml"), "GET", "/pets")
        assert get_pets.summary == "List all pets"
        assert [(p.name, p.location) for p in get_pets.parameters] == [
            ("limit", "query"),
            ("X-Request-Id", "header"),
            ("session", "cookie"),
        ]
        assert isinstance(get_pets.parameters[0].schema_, IntegerSchema)

    def test_only_explicit_status_codes_kept(self):
        get_pets = _find(load_operations(FIXTURES / "petstore.yaml"), "GET", "/pets")
        assert get_pets.responses == [200]

    def test_post_body_uses_json_media_type(self):
        post_pets = _find(load_operations(FIXTURES / "petstore.yaml"), "POST", "/pets")
        body = post_pets.request_body
        assert body.media_type == "application/json"
        assert isinstance(body.schema_, ObjectSchema)
        assert list(body.schema_.properties) == ["id", "name", "tag", "owner"]
        assert isinstance(body.schema_.properties["owner"], AllOfSchema)

    def test_path_level_parameter_ref_resolved(self):
        get_pet = _find(load_operations(FIXTURES / "petstore.yaml"), "GET", "/pets/{petId}")
        assert get_pet.parameters[0].name == "petId"
        assert get_pet.parameters[0].location == "path"
        assert get_pet.parameters[0].required is True
        assert get_pet.request_body is None

    def test_unreadable_document(self, tmp_path):
        f = tmp_path / "broken.yaml"
        f.write_text("paths: [unclosed\n")
        with pytest.raises(SchemaError):
            load_operations(f)


def _doc(schemas: dict, body_ref: str) -> dict:
    return {
        "openapi": "3.0.0",
        "paths": {
            "/things": {
                "post": {
                    "requestBody": {"content": {"application/json": {"schema": {"$ref": body_ref}}}},
                    "responses": {"200": {"description": "ok"}},
                }
            }
        },
        "components": {"schemas": schemas},
    }


class TestSchemaConversion:
    def test_recursive_reference_is_capped(self):
        doc = _doc(
            {
                "Tree": {
                    "type": "object",
                    "properties": {"children": {"type": "array", "items": {"$ref": "#/components/schemas/Tree"}}},
                }
            },
            "#/components/schemas/Tree",
        )
        node = parse_document(doc)[0].request_body.schema_
        depth = 0
        while isinstance(node, ObjectSchema):
            node = node.properties["children"].items
            depth += 1
        assert depth == MAX_RECURSION + 1
        assert isinstance(node, AnySchema)

    def test_mutual_recursion_shares_one_budget(self):
        doc = _doc(
            {
                "A": {"type": "object", "properties": {"next": {"$ref": "#/components/schemas/B"}}},
                "B": {"type": "object", "properties": {"next": {"$ref": "#/components/schemas/A"}}},
            },
            "#/components/schemas/A",
        )
        node = parse_document(doc)[0].request_body.schema_
        depth = 0
        while isinstance(node, ObjectSchema):
            node = node.properties["next"]
            depth += 1
        assert depth == 2 + MAX_RECURSION
        assert isinstance(node, AnySchema)

    def test_composition_and_inference(self):
        doc = _doc(
            {
                "Choice": {
                    "oneOf": [
                        {"type": "boolean"},
                        {"items": {"type": "string"}, "minItems": 2},
                        {"properties": {"n": {"type": ["integer", "null"]}}},
                        {"format": "uuid"},
                    ]
                }
            },
            "#/components/schemas/Choice",
        )
        node = parse_document(doc)[0].request_body.schema_
        assert isinstance(node, OneOfSchema)
        boolean, array, obj, untyped = node.one_of
        assert isinstance(boolean, BooleanSchema)
        assert isinstance(array, ArraySchema) and isinstance(array.items, StringSchema)
        assert array.min_items == 2
        assert isinstance(obj.properties["n"], IntegerSchema)
        assert isinstance(untyped, AnySchema)

    def test_escaped_pointer(self):
        doc = _doc({"a/b": {"type": "integer"}}, "#/components/schemas/a~1b")
        assert isinstance(parse_document(doc)[0].request_body.schema_, IntegerSchema)

    def test_remote_reference_rejected(self):
        doc = _doc({}, "other.yaml#/Pet")
        with pytest.raises(SchemaError):
            parse_document(doc)

    def test_missing_reference_rejected(self):
        doc = _doc({}, "#/components/schemas/Nope")
        with pytest.raises(SchemaError):
            parse_document(doc)

    def test_document_without_paths(self):
        with pytest.raises(SchemaError):
            parse_document({"openapi": "3.0.0"})
