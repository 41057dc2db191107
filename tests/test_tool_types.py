"""Tests for ai/tools/types.py."""

from __future__ import annotations

import pytest

from datamachine.ai.tools import (
    ErrorCode,
    LazyDefinition,
    ToolDefinition,
    ToolParameter,
    ToolResult,
    resolve_definition,
)


# -----------------------------------------------------------------------------
# Tests: ToolDefinition
# -----------------------------------------------------------------------------


class TestToolDefinition:
    """Tests for ToolDefinition."""

    def test_from_mapping_accepts_short_keys(self) -> None:
        definition = ToolDefinition.from_mapping(
            "wordpress_publish",
            {
                "description": "Publish a post",
                "parameters": {
                    "title": {"type": "string", "required": True, "description": "Post title"},
                    "tags": {"type": "array"},
                },
                "handler": "wordpress",
                "async": True,
                "class": "package.module:Publisher",
            },
        )

        assert definition.name == "wordpress_publish"
        assert definition.handler_binding == "wordpress"
        assert definition.is_handler_tool
        assert definition.is_async
        assert definition.executable_ref == "package.module:Publisher"
        assert definition.required_parameters == ["title"]
        assert definition.parameters["tags"] == ToolParameter(type="array")

    def test_display_name(self) -> None:
        assert ToolDefinition(name="skip_item").display_name == "Skip Item"

    def test_provider_schema(self) -> None:
        definition = ToolDefinition(
            name="web_fetch",
            description="Fetch a page",
            parameters={
                "url": ToolParameter(required=True, description="Page URL"),
                "timeout": ToolParameter(type="integer"),
            },
        )

        schema = definition.to_provider_schema()

        assert schema["type"] == "function"
        assert schema["function"]["name"] == "web_fetch"
        assert schema["function"]["parameters"] == {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "Page URL"},
                "timeout": {"type": "integer"},
            },
            "required": ["url"],
        }

    def test_to_dict_omits_executable(self) -> None:
        definition = ToolDefinition(name="skip_item", executable_ref=object(), handler_config={"a": 1})

        payload = definition.to_dict()

        assert "executable_ref" not in payload
        assert payload["handler_config"] == {"a": 1}
        assert payload["handler"] is None


# -----------------------------------------------------------------------------
# Tests: Definition resolution
# -----------------------------------------------------------------------------


class TestResolveDefinition:
    """Tests for lazy and mapping definition sources."""

    def test_lazy_definition_resolves_once(self) -> None:
        calls: list[int] = []

        def factory() -> ToolDefinition:
            calls.append(1)
            return ToolDefinition(name="web_fetch")

        lazy = LazyDefinition(factory, name="web_fetch")
        assert not lazy.is_resolved

        first = lazy.resolve()
        second = lazy.resolve()

        assert first is second
        assert calls == [1]
        assert lazy.is_resolved

    def test_lazy_definition_reset(self) -> None:
        calls: list[int] = []
        lazy = LazyDefinition(lambda: calls.append(1) or {"name": "x"})

        lazy.resolve()
        lazy.reset()
        lazy.resolve()

        assert calls == [1, 1]

    def test_thunk_returning_mapping(self) -> None:
        definition = resolve_definition("local_search", lambda: {"description": "Search posts"})

        assert definition.name == "local_search"
        assert definition.description == "Search posts"

    def test_invalid_source_raises_type_error(self) -> None:
        with pytest.raises(TypeError):
            resolve_definition("broken", lambda: 42)

    def test_nameless_mapping_raises_type_error(self) -> None:
        with pytest.raises(TypeError):
            resolve_definition(None, {"description": "no name"})


# -----------------------------------------------------------------------------
# Tests: ToolResult
# -----------------------------------------------------------------------------


class TestToolResult:
    """Tests for ToolResult construction and coercion."""

    def test_pending_result_is_successful(self) -> None:
        result = ToolResult.pending_job("generate_image", "job-99")

        assert result.success
        assert result.pending
        assert result.to_dict() == {
            "success": True,
            "tool_name": "generate_image",
            "pending": True,
            "job_reference": "job-99",
        }

    def test_coerce_mapping_keeps_extra_keys(self) -> None:
        result = ToolResult.coerce({"success": True, "data": {"id": 5}, "post_url": "https://x"}, "publish")

        assert result.success
        assert result.tool_name == "publish"
        assert result.extra == {"post_url": "https://x"}
        assert result.to_dict()["post_url"] == "https://x"

    def test_coerce_failure_without_code(self) -> None:
        result = ToolResult.coerce({"success": False, "error": "nope"}, "publish")

        assert not result.success
        assert result.code == ErrorCode.EXECUTION_FAILED

    def test_coerce_failure_keeps_code(self) -> None:
        result = ToolResult.coerce({"success": False, "error": "nope", "code": "rate_limited"}, "publish")

        assert result.code == "rate_limited"

    def test_coerce_plain_value_is_success_data(self) -> None:
        result = ToolResult.coerce(["a", "b"], "local_search")

        assert result == ToolResult.ok("local_search", data=["a", "b"])

    def test_coerce_passes_results_through(self) -> None:
        original = ToolResult.fail("x", "bad", code=ErrorCode.TOOL_NOT_FOUND)

        assert ToolResult.coerce(original, "y") is original
