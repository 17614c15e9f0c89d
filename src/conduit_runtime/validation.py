"""Parameter validation for command inputs.

Schemas are pydantic models (or annotated types for scalar units). Failures
are converted into a single ValidationError naming the offending field, so a
bad call is rejected locally without ever reaching the executor.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError

CANVAS_EXTENT = 10_000
MAX_BATCH_UNITS = 200
MAX_NAME_LENGTH = 100

# Plain ids ("12:34") and instance ids ("I422:10713;1082:2236")
NODE_ID_PATTERN = r"^I?\d+:\d+(;I?\d+:\d+)*$"

NodeId = Annotated[str, Field(pattern=NODE_ID_PATTERN, description="Node id, e.g. '12:34'")]
Coordinate = Annotated[float, Field(ge=-CANVAS_EXTENT, le=CANVAS_EXTENT)]
Dimension = Annotated[float, Field(gt=0, le=CANVAS_EXTENT)]
ColorChannel = Annotated[float, Field(ge=0, le=1)]
Opacity = Annotated[float, Field(ge=0, le=1)]
LayerName = Annotated[str, Field(min_length=1, max_length=MAX_NAME_LENGTH)]


class ParamsModel(BaseModel):
    """Base for command param models: camelCase on the wire, no extras."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class Color(ParamsModel):
    r: ColorChannel
    g: ColorChannel
    b: ColorChannel
    a: Opacity = 1.0


def format_location(loc: tuple[int | str, ...], prefix: str | None = None) -> str:
    """Render a pydantic error location as ``renames[1].newName``."""
    path = prefix or ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif path:
            path += f".{part}"
        else:
            path = str(part)
    return path


def validate_params(schema: Any, params: Any, *, prefix: str | None = None) -> Any:
    """Validate ``params`` against ``schema``.

    Args:
        schema: A pydantic model class or any type TypeAdapter accepts
        params: Raw input, usually decoded JSON
        prefix: Location prepended to the field name in errors

    Returns:
        The validated value (model instance or coerced scalar)

    Raises:
        ValidationError: Naming the first offending field
    """
    try:
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            return schema.model_validate(params)
        return TypeAdapter(schema).validate_python(params)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = format_location(tuple(first.get("loc", ())), prefix)
        raise ValidationError(first.get("msg", "invalid value"), field=field or prefix) from e


def dump_params(value: Any) -> Any:
    """Convert a validated value back into wire form (camelCase, no nulls)."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def json_schema(schema: Any) -> dict[str, Any]:
    """JSON Schema of a params schema, using wire (alias) names."""
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema(by_alias=True)
    return TypeAdapter(schema).json_schema(by_alias=True)
