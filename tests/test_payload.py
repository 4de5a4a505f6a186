import json
from pathlib import Path
from urllib.parse import unquote

import yaml
from hypothesis import given
from hypothesis import strategies as st

from openapi_fuzzer.generator.cursor import Cursor
from openapi_fuzzer.generator.payload import Payload, PayloadGenerator, apply_header_overrides
from openapi_fuzzer.generator.strategies import COOKIE_ALPHABET, HEADER_ALPHABET
from openapi_fuzzer.parser.base import (
    ArraySchema,
    BooleanSchema,
    IntegerSchema,
    NumberSchema,
    ObjectSchema,
    Operation,
    Param,
    RequestBody,
    StringSchema,
)
from openapi_fuzzer.parser.openapi import parse_document

FIXTURES = Path(__file__).parent / "fixtures"

seeds = st.integers(min_value=0, max_value=2**64 - 1)


def _operation(**kwargs) -> Operation:
    defaults = dict(method="GET", path="/items/{id}", responses=[200])
    defaults.update(kwargs)
    return Operation(**defaults)


TYPED = _operation(
    parameters=[
        Param(name="id", location="path", schema=IntegerSchema()),
        Param(name="flag", location="query", schema=BooleanSchema()),
        Param(name="ratio", location="query", schema=NumberSchema()),
        Param(name="q", location="query"),
        Param(name="X-Trace", location="header"),
        Param(name="X-Count", location="header", schema=IntegerSchema()),
        Param(name="sid", location="cookie"),
    ]
)

COMPOSITE_COOKIE = _operation(
    parameters=[
        Param(
            name="prefs",
            location="cookie",
            schema=ObjectSchema(properties={"n": IntegerSchema(), "tags": ArraySchema(items=StringSchema())}),
        ),
    ]
)


class TestParameterRendering:
    @given(seed=seeds)
    def test_typed_params_render_canonically(self, seed):
        payload = PayloadGenerator(TYPED).produce(Cursor(seed))
        params = dict(payload.path_params + payload.query_params)
        int(params["id"])
        assert params["flag"] in ("true", "false")
        assert isinstance(json.loads(params["ratio"]), (int, float))
        assert isinstance(params["q"], str)

    @given(seed=seeds)
    def test_header_values_are_transmissible(self, seed):
        payload = PayloadGenerator(TYPED).produce(Cursor(seed))
        for name, value in payload.headers:
            assert set(value) <= set(HEADER_ALPHABET)
        for name, value in payload.cookies:
            assert set(value) <= set(COOKIE_ALPHABET)

    def test_locations_are_kept_apart(self):
        payload = PayloadGenerator(TYPED).produce(Cursor(5))
        assert [n for n, _ in payload.path_params] == ["id"]
        assert [n for n, _ in payload.query_params] == ["flag", "ratio", "q"]
        assert [n for n, _ in payload.headers] == ["X-Trace", "X-Count"]
        assert [n for n, _ in payload.cookies] == ["sid"]
        assert payload.seed == 5

    def test_same_name_in_two_locations(self):
        op = _operation(parameters=[Param(name="id", location="path"), Param(name="id", location="query")])
        payload = PayloadGenerator(op).produce(Cursor(1))
        assert len(payload.path_params) == 1
        assert len(payload.query_params) == 1


    @given(seed=seeds)
    def test_composite_cookie_values_are_transmissible(self, seed):
        gen = PayloadGenerator(COMPOSITE_COOKIE)
        payload = gen.produce(Cursor(seed))
        (name, value), = payload.cookies
        assert set(value) <= set(COOKIE_ALPHABET)
        decoded = json.loads(unquote(value))
        assert set(decoded) == {"n", "tags"}
        for candidate in gen.shrink(payload):
            assert set(candidate.cookies[0][1]) <= set(COOKIE_ALPHABET)

    def test_composite_cookie_shrinks_through_encoding(self):
        gen = PayloadGenerator(COMPOSITE_COOKIE)
        payload = Payload(method="GET", path="/items/{id}", cookies=[("prefs", "%7B%22n%22:4%2C%22tags%22:[%22b%22]%7D")])
        candidates = [json.loads(unquote(c.cookies[0][1])) for c in gen.shrink(payload)]
        assert candidates[0] == {"n": 0, "tags": ["b"]}
        assert {"n": 4, "tags": ["a"]} in candidates


class TestBody:
    def test_body_present_when_declared(self):
        op = _operation(method="POST", request_body=RequestBody(schema=ObjectSchema(properties={"t": IntegerSchema()})))
        payload = PayloadGenerator(op).produce(Cursor(9))
        assert payload.has_body
        assert set(payload.body) == {"t"}

    def test_body_absent_otherwise(self):
        payload = PayloadGenerator(_operation()).produce(Cursor(9))
        assert payload.has_body is False
        assert payload.body is None


class TestHeaderOverrides:
    def test_override_replaces_case_insensitively(self):
        gen = PayloadGenerator(TYPED, extra_headers={"x-trace": "fixed"})
        for seed in range(20):
            headers = gen.produce(Cursor(seed)).headers
            assert ("x-trace", "fixed") in headers
            assert all(name != "X-Trace" for name, _ in headers)

    def test_override_appended_when_missing(self):
        gen = PayloadGenerator(TYPED, extra_headers={"authorization": "Bearer t"})
        assert gen.produce(Cursor(1)).headers[-1] == ("authorization", "Bearer t")

    def test_overridden_header_is_never_shrunk(self):
        gen = PayloadGenerator(TYPED, extra_headers={"x-trace": "fixed"})
        payload = gen.produce(Cursor(2))
        for candidate in gen.shrink(payload):
            assert ("x-trace", "fixed") in candidate.headers

    def test_apply_header_overrides(self):
        headers = [("Accept", "a"), ("X-A", "1")]
        assert apply_header_overrides(headers, {"accept": "b", "X-B": "2"}) == [
            ("accept", "b"),
            ("X-A", "1"),
            ("X-B", "2"),
        ]


class TestPayloadShrinking:
    def test_shrinks_one_slot_at_a_time_and_keeps_shape(self):
        gen = PayloadGenerator(TYPED)
        payload = gen.produce(Cursor(11))
        for candidate in gen.shrink(payload):
            assert gen.matches(candidate)
            assert [n for n, _ in candidate.query_params] == ["flag", "ratio", "q"]

    def test_typed_param_shrinks_as_number(self):
        op = _operation(parameters=[Param(name="id", location="path", schema=IntegerSchema())])
        gen = PayloadGenerator(op)
        payload = Payload(method="GET", path="/items/{id}", path_params=[("id", "-8")])
        assert [c.path_params[0][1] for c in gen.shrink(payload)] == ["0", "-4", "-6", "-7"]
        assert gen.size(payload) == 8


def _count_nodes(value) -> int:
    if isinstance(value, dict):
        return 1 + sum(_count_nodes(v) for v in value.values())
    if isinstance(value, list):
        return 1 + sum(_count_nodes(v) for v in value)
    return 1


def _tree_operation() -> Operation:
    doc = yaml.safe_load((FIXTURES / "petstore.yaml").read_text())
    doc["paths"] = {
        "/trees": {
            "post": {
                "requestBody": {"content": {"application/json": {"schema": {"$ref": "#/components/schemas/Tree"}}}},
                "responses": {"201": {"description": "created"}},
            }
        }
    }
    return parse_document(doc)[0]


class TestRecursiveBodies:
    def test_recursive_body_stays_small(self):
        gen = PayloadGenerator(_tree_operation())
        counts = [_count_nodes(gen.produce(Cursor(seed)).body) for seed in range(30)]
        # three Tree levels of at most ten children each
        assert max(counts) <= 3 + 10 * (3 + 10 * (3 + 10))

    def test_recursive_body_has_nested_trees(self):
        gen = PayloadGenerator(_tree_operation())
        body = gen.produce(Cursor(3))
        assert set(body) == {"value", "children"}
        assert all(set(child) == {"value", "children"} for child in body["children"])


class TestRequestRendering:
    PAYLOAD = Payload(
        method="POST",
        path="/items/{id}",
        path_params=[("id", "a/b c")],
        query_params=[("q", "x y")],
        headers=[("X-Trace", "abc")],
        cookies=[("sid", "1"), ("lang", "en")],
        body={"t": -1},
        has_body=True,
    )

    def test_url_substitutes_and_encodes_path_params(self):
        assert self.PAYLOAD.url("http://api.test/v1/") == "http://api.test/v1/items/a%2Fb%20c"

    def test_cookies_fold_into_one_header(self):
        assert self.PAYLOAD.header_items() == [("X-Trace", "abc"), ("Cookie", "sid=1; lang=en")]

    def test_cookies_append_to_existing_cookie_header(self):
        payload = self.PAYLOAD.model_copy(update={"headers": [("cookie", "theme=dark")]})
        assert payload.header_items() == [("cookie", "theme=dark; sid=1; lang=en")]

    def test_curl(self):
        curl = self.PAYLOAD.to_curl("http://api.test/")
        assert curl.startswith("curl -X POST")
        assert "'Content-Type: application/json'" in curl
        assert """-d '{"t": -1}'""" in curl
        assert "'Cookie: sid=1; lang=en'" in curl
        assert curl.endswith("'http://api.test/items/a%2Fb%20c?q=x+y'")
