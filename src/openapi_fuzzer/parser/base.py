"""Schema model for one API operation.

The loader (see ``openapi.py``) turns an OpenAPI document into these
immutable models. Every node is fully dereferenced, so the generator
compiler never sees a ``$ref``.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Node(BaseModel):
    model_config = ConfigDict(frozen=True)


class BooleanSchema(_Node):
    kind: Literal["boolean"] = "boolean"


class IntegerSchema(_Node):
    kind: Literal["integer"] = "integer"


class NumberSchema(_Node):
    kind: Literal["number"] = "number"


class StringSchema(_Node):
    kind: Literal["string"] = "string"


class AnySchema(_Node):
    kind: Literal["any"] = "any"


class ObjectSchema(_Node):
    kind: Literal["object"] = "object"
    properties: dict[str, "SchemaNode"] = {}


class ArraySchema(_Node):
    kind: Literal["array"] = "array"
    items: "SchemaNode"
    min_items: int | None = None
    max_items: int | None = None


class AllOfSchema(_Node):
    kind: Literal["all_of"] = "all_of"
    all_of: list["SchemaNode"]


class AnyOfSchema(_Node):
    kind: Literal["any_of"] = "any_of"
    any_of: list["SchemaNode"]


class OneOfSchema(_Node):
    kind: Literal["one_of"] = "one_of"
    one_of: list["SchemaNode"]


SchemaNode = Annotated[
    Union[
        BooleanSchema,
        IntegerSchema,
        NumberSchema,
        StringSchema,
        ObjectSchema,
        ArraySchema,
        AllOfSchema,
        AnyOfSchema,
        OneOfSchema,
        AnySchema,
    ],
    Field(discriminator="kind"),
]

for _model in (ObjectSchema, ArraySchema, AllOfSchema, AnyOfSchema, OneOfSchema):
    _model.model_rebuild()


class Param(BaseModel):
    """A single API parameter (query, path, header, or cookie)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    location: Literal["query", "path", "header", "cookie"]
    required: bool = False
    schema_: SchemaNode | None = Field(default=None, alias="schema")  # None -> free-form string


class RequestBody(BaseModel):
    """The JSON part of an operation's request body."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    media_type: str = "application/json"
    schema_: SchemaNode = Field(alias="schema")


class Operation(BaseModel):
    """A single API operation with everything needed to fuzz it."""

    model_config = ConfigDict(frozen=True)

    method: str  # GET / POST / PUT / DELETE / PATCH ...
    path: str  # /api/users/{id}
    summary: str = ""
    parameters: list[Param] = []
    request_body: RequestBody | None = None
    responses: list[int] = []  # explicitly declared status codes

    @property
    def key(self) -> tuple[str, str]:
        return self.path, self.method
