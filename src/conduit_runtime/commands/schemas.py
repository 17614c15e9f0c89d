"""Param models for the command catalogue.

Batch commands declare the shape of one unit; plain commands declare the
whole params object. Field names are snake_case here and camelCase on the
wire.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import Field

from ..subscriptions import EventType
from ..validation import (
    CANVAS_EXTENT,
    MAX_BATCH_UNITS,
    Color,
    Coordinate,
    Dimension,
    LayerName,
    NodeId,
    ParamsModel,
)

CanvasPosition = Annotated[float, Field(ge=0, le=CANVAS_EXTENT)]
MAX_TEXT_LENGTH = 10_000


class EmptyParams(ParamsModel):
    pass


class RenameUnit(ParamsModel):
    node_id: NodeId
    new_name: LayerName
    set_auto_rename: bool | None = None


class MoveUnit(ParamsModel):
    node_id: NodeId
    x: Coordinate
    y: Coordinate


class RectangleUnit(ParamsModel):
    x: CanvasPosition
    y: CanvasPosition
    width: Dimension
    height: Dimension
    name: LayerName | None = None
    parent_id: NodeId | None = None
    corner_radius: float | None = Field(default=None, ge=0, le=CANVAS_EXTENT)
    fill_color: Color | None = None
    stroke_color: Color | None = None
    stroke_weight: float | None = Field(default=None, ge=0, le=100)


class FillUnit(ParamsModel):
    node_id: NodeId
    color: Color


class InsertChildUnit(ParamsModel):
    parent_id: NodeId
    child_id: NodeId
    index: int | None = Field(default=None, ge=0)


class TextUnit(ParamsModel):
    node_id: NodeId
    text: str = Field(max_length=MAX_TEXT_LENGTH)


class FontUnit(ParamsModel):
    node_id: NodeId
    family: str = Field(min_length=1, max_length=100)
    style: str = Field(default="Regular", min_length=1, max_length=100)


class ScanTextNodesParams(ParamsModel):
    node_id: NodeId
    use_chunking: bool = True
    chunk_size: int | None = Field(default=None, ge=1, le=100)


class ExportParams(ParamsModel):
    node_id: NodeId
    format: Literal["PNG", "JPG", "SVG", "PDF"] = "PNG"
    scale: float = Field(default=1.0, gt=0, le=4)


class SelectionParams(ParamsModel):
    node_ids: list[NodeId] = Field(max_length=MAX_BATCH_UNITS)


class SubscribeParams(ParamsModel):
    event_type: EventType
    filter: dict[str, Any] | None = None


class UnsubscribeParams(ParamsModel):
    subscription_id: str = Field(min_length=1)
