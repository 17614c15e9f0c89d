"""Unit tests for param validation."""

from __future__ import annotations

import pytest

from conduit_runtime.commands.schemas import RectangleUnit, RenameUnit, SelectionParams
from conduit_runtime.errors import ValidationError
from conduit_runtime.validation import (
    Color,
    NodeId,
    dump_params,
    format_location,
    json_schema,
    validate_params,
)


class TestFormatLocation:
    """Tests for rendering pydantic error locations."""

    def test_plain_field(self):
        assert format_location(("newName",)) == "newName"

    def test_nested_with_prefix(self):
        assert format_location(("fillColor", "r"), "rectangles[2]") == "rectangles[2].fillColor.r"

    def test_list_index(self):
        assert format_location(("nodeIds", 3)) == "nodeIds[3]"

    def test_empty_location_keeps_prefix(self):
        assert format_location((), "nodeId") == "nodeId"


class TestValidateParams:
    """Tests for validate_params."""

    def test_model_accepts_camel_case(self):
        unit = validate_params(RenameUnit, {"nodeId": "1:2", "newName": "Header"})

        assert unit.node_id == "1:2"
        assert unit.new_name == "Header"

    def test_empty_name_names_the_field(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_params(RenameUnit, {"nodeId": "1:2", "newName": ""}, prefix="renames[1]")

        assert exc_info.value.field == "renames[1].newName"
        assert str(exc_info.value).startswith("renames[1].newName: ")

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_params(RenameUnit, {"nodeId": "1:2", "newName": "x", "colour": "red"})

        assert exc_info.value.field == "colour"

    def test_scalar_node_id(self):
        assert validate_params(NodeId, "12:34") == "12:34"
        assert validate_params(NodeId, "I422:10713;1082:2236") == "I422:10713;1082:2236"

    def test_scalar_node_id_rejects_garbage(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_params(NodeId, "not-an-id", prefix="nodeIds[0]")

        assert exc_info.value.field == "nodeIds[0]"

    def test_coordinates_bounded_by_canvas(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_params(RectangleUnit, {"x": 20_000, "y": 0, "width": 10, "height": 10})

        assert exc_info.value.field == "x"

    def test_color_channel_range(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_params(Color, {"r": 1.5, "g": 0, "b": 0})

        assert exc_info.value.field == "r"

    def test_selection_list_items(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_params(SelectionParams, {"nodeIds": ["1:2", "bad"]})

        assert exc_info.value.field == "nodeIds[1]"

    def test_error_dict_includes_field(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_params(RenameUnit, {"nodeId": "1:2"})

        data = exc_info.value.to_dict()
        assert data["code"] == "validation_error"
        assert data["field"] == "newName"


class TestDumpAndSchema:
    """Tests for wire dumps and JSON schemas."""

    def test_dump_uses_aliases_and_drops_nulls(self):
        unit = validate_params(RenameUnit, {"node_id": "1:2", "new_name": "A"})

        assert dump_params(unit) == {"nodeId": "1:2", "newName": "A"}

    def test_dump_passes_scalars_through(self):
        assert dump_params("1:2") == "1:2"

    def test_json_schema_uses_aliases(self):
        schema = json_schema(RenameUnit)

        assert set(schema["required"]) == {"nodeId", "newName"}
        assert schema["properties"]["newName"]["maxLength"] == 100
