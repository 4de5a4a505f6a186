"""Compiles schema nodes into value generators.

Compilation is pure: randomness only enters at ``produce`` time. A node
kind without a case here is a bug and fails at compile time.
"""

from typing import Literal

from openapi_fuzzer.errors import GenerationError
from openapi_fuzzer.parser.base import (
    AllOfSchema,
    AnyOfSchema,
    AnySchema,
    ArraySchema,
    BooleanSchema,
    IntegerSchema,
    NumberSchema,
    ObjectSchema,
    OneOfSchema,
    SchemaNode,
    StringSchema,
)

from .strategies import (
    ArrayGenerator,
    BooleanGenerator,
    IntegerGenerator,
    NumberGenerator,
    ObjectGenerator,
    StringGenerator,
    UnionGenerator,
    ValueGenerator,
)

AllOfPolicy = Literal["last_wins", "first_wins", "reject"]


def compile_schema(
    node: SchemaNode,
    all_of_policy: AllOfPolicy = "last_wins",
    alphabet: str | None = None,
) -> ValueGenerator:
    """Build the generator for ``node`` and everything below it.

    ``alphabet`` restricts every string leaf, e.g. to header-safe characters.
    """
    if isinstance(node, BooleanSchema):
        return BooleanGenerator()
    if isinstance(node, IntegerSchema):
        return IntegerGenerator()
    if isinstance(node, NumberSchema):
        return NumberGenerator()
    if isinstance(node, (StringSchema, AnySchema)):
        return StringGenerator(alphabet)
    if isinstance(node, ObjectSchema):
        return ObjectGenerator(
            {name: compile_schema(child, all_of_policy, alphabet) for name, child in node.properties.items()}
        )
    if isinstance(node, ArraySchema):
        return ArrayGenerator(compile_schema(node.items, all_of_policy, alphabet), node.min_items, node.max_items)
    if isinstance(node, AnyOfSchema):
        return _union(node.any_of, all_of_policy, alphabet)
    if isinstance(node, OneOfSchema):
        return _union(node.one_of, all_of_policy, alphabet)
    if isinstance(node, AllOfSchema):
        return _all_of(node.all_of, all_of_policy, alphabet)
    raise GenerationError(f"no generator for schema node {type(node).__name__}")


def _union(children: list[SchemaNode], policy: AllOfPolicy, alphabet: str | None) -> ValueGenerator:
    if not children:
        raise GenerationError("anyOf/oneOf without branches")
    return UnionGenerator([compile_schema(child, policy, alphabet) for child in children])


def _all_of(children: list[SchemaNode], policy: AllOfPolicy, alphabet: str | None) -> ValueGenerator:
    """Merge allOf branches.

    Object branches are merged into one object whose field map is the union
    of theirs; a field declared twice keeps the later declaration. If any
    branch is not an object, ``policy`` decides: ``last_wins`` and
    ``first_wins`` keep that single branch, ``reject`` refuses the schema.
    """
    if not children:
        raise GenerationError("allOf without branches")
    branches = [compile_schema(child, policy, alphabet) for child in children]
    if all(isinstance(b, ObjectGenerator) for b in branches):
        fields: dict[str, ValueGenerator] = {}
        for branch in branches:
            fields.update(branch.fields)
        return ObjectGenerator(fields)
    if policy == "last_wins":
        return branches[-1]
    if policy == "first_wins":
        return branches[0]
    raise GenerationError("allOf mixes non-object branches")
