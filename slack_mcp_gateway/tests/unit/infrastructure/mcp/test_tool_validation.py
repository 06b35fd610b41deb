"""Tests for Pydantic-based tool argument validation."""

import pytest

from slack_mcp_gateway.domain.exceptions.mcp import BadToolArgsError
from slack_mcp_gateway.infrastructure.mcp.validation import ToolArgumentValidator


@pytest.fixture
def validator():
    validator = ToolArgumentValidator()
    validator.register_schema(
        "list_dir",
        {
            "type": "object",
            "properties": {
                "relative_workspace_path": {"type": "string"},
                "depth": {"type": "integer"},
                "mode": {"type": "string", "enum": ["short", "long"]},
                "globs": {"type": "array", "items": {"type": "string"}},
                "options": {
                    "type": "object",
                    "properties": {"hidden": {"type": "boolean"}},
                    "required": ["hidden"],
                },
            },
            "required": ["relative_workspace_path"],
        },
    )
    return validator


@pytest.mark.unit
class TestToolArgumentValidator:
    """Tests for ToolArgumentValidator."""

    def test_valid_arguments_returned_unchanged(self, validator):
        """Test conforming arguments pass through as given."""
        args = {"relative_workspace_path": ".", "depth": 2, "extra": True}

        assert validator.validate("list_dir", args) is args

    def test_missing_required_field(self, validator):
        """Test a missing required property is reported with its location."""
        with pytest.raises(BadToolArgsError) as exc_info:
            validator.validate("list_dir", {})

        error = exc_info.value
        assert error.tool_name == "list_dir"
        assert error.errors[0]["loc"] == ("relative_workspace_path",)
        assert "relative_workspace_path" in str(error)

    def test_strict_types(self, validator):
        """Test numeric strings are not coerced into integers."""
        with pytest.raises(BadToolArgsError):
            validator.validate("list_dir", {"relative_workspace_path": ".", "depth": "2"})

    def test_enum_values(self, validator):
        """Test values outside an enum are rejected."""
        validator.validate("list_dir", {"relative_workspace_path": ".", "mode": "long"})

        with pytest.raises(BadToolArgsError):
            validator.validate("list_dir", {"relative_workspace_path": ".", "mode": "wide"})

    def test_array_items_and_nested_objects(self, validator):
        """Test item types and nested required fields are enforced."""
        validator.validate(
            "list_dir",
            {"relative_workspace_path": ".", "globs": ["*.py"], "options": {"hidden": False}},
        )

        with pytest.raises(BadToolArgsError):
            validator.validate("list_dir", {"relative_workspace_path": ".", "globs": [1]})
        with pytest.raises(BadToolArgsError):
            validator.validate("list_dir", {"relative_workspace_path": ".", "options": {}})

    def test_non_object_arguments(self, validator):
        """Test arguments that are not an object are rejected."""
        with pytest.raises(BadToolArgsError, match="must be an object"):
            validator.validate("list_dir", ["."])

    def test_unknown_tool_passes(self, validator):
        """Test tools without a registered schema are not validated."""
        assert validator.validate("other", {"x": 1}) == {"x": 1}

    def test_empty_schema_accepts_anything(self):
        """Test a tool without an input schema accepts any object."""
        validator = ToolArgumentValidator()
        validator.register_schema("ping", None)

        assert validator.validate("ping", {"anything": [1, 2]}) == {"anything": [1, 2]}
        assert validator.has_schema("ping")
        assert validator.get_model("ping") is not None

    def test_required_without_properties(self):
        """Test required keys without property definitions must still be present."""
        validator = ToolArgumentValidator()
        validator.register_schema("fetch", {"type": "object", "required": ["url"]})

        with pytest.raises(BadToolArgsError):
            validator.validate("fetch", {})
        validator.validate("fetch", {"url": "https://example.com"})

    @pytest.mark.parametrize(
        "schema",
        [
            ["not", "an", "object"],
            "string schema",
            {"type": "object", "properties": ["a", "b"], "required": "a"},
        ],
    )
    def test_malformed_schema_accepts_any_object(self, schema):
        """Test malformed input schemas register without raising."""
        validator = ToolArgumentValidator()
        validator.register_schema("odd", schema)

        assert validator.validate("odd", {"a": 1}) == {"a": 1}
        with pytest.raises(BadToolArgsError):
            validator.validate("odd", ["a"])

    def test_unregister(self, validator):
        """Test unregistering removes the compiled model."""
        validator.unregister("list_dir")

        assert "list_dir" not in validator
