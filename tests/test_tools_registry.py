"""Tests for ai/tools/registry.py."""

from __future__ import annotations

from typing import Any, Mapping

import pytest

from datamachine.ai.tools import (
    DuplicateToolError,
    HandlerToolRequest,
    LazyDefinition,
    StaticToolProvider,
    ToolDefinition,
    ToolNotFoundError,
    ToolProvider,
    ToolRegistry,
)

from tests.helpers import make_tool


class _ConfigEchoProvider:
    """Handler provider that names its tool after the handler config."""

    def __init__(self) -> None:
        self.requests: list[HandlerToolRequest] = []

    def list_tools(self, request: HandlerToolRequest) -> Mapping[str, Any]:
        self.requests.append(request)
        return {
            "wordpress_publish": ToolDefinition(
                name="wordpress_publish",
                description=f"Publish as {request.handler_config.get('post_status', 'publish')}",
                handler_binding="wordpress",
            )
        }


# -----------------------------------------------------------------------------
# Tests: Global and chat registration
# -----------------------------------------------------------------------------


class TestToolRegistration:
    """Tests for registering global and chat tools."""

    def test_register_and_lookup_global(self, registry: ToolRegistry) -> None:
        registry.register_global("web_fetch", make_tool("web_fetch"))

        assert registry.has_global("web_fetch")
        assert registry.get_global("web_fetch").name == "web_fetch"
        assert list(registry.global_tools()) == ["web_fetch"]
        assert len(registry) == 1

    def test_chat_tools_are_separate(self, registry: ToolRegistry) -> None:
        registry.register_global("web_fetch", make_tool("web_fetch"))
        registry.register_chat("create_flow", make_tool("create_flow"))

        assert list(registry.global_tools()) == ["web_fetch"]
        assert list(registry.chat_tools()) == ["create_flow"]
        assert not registry.has_global("create_flow")

    def test_duplicate_name_across_kinds_rejected(self, registry: ToolRegistry) -> None:
        registry.register_global("web_fetch", make_tool("web_fetch"))

        with pytest.raises(DuplicateToolError) as excinfo:
            registry.register_chat("web_fetch", make_tool("web_fetch"))

        assert excinfo.value.existing_source == "global"

    def test_empty_name_rejected(self, registry: ToolRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register_global("", make_tool("x"))

    def test_get_unknown_global_raises(self, registry: ToolRegistry) -> None:
        with pytest.raises(ToolNotFoundError):
            registry.get_global("missing")

    def test_unregister(self, registry: ToolRegistry) -> None:
        registry.register_global("web_fetch", make_tool("web_fetch"))

        registry.unregister("web_fetch")

        assert not registry.has_global("web_fetch")
        with pytest.raises(ToolNotFoundError):
            registry.unregister("web_fetch")


# -----------------------------------------------------------------------------
# Tests: Lazy resolution
# -----------------------------------------------------------------------------


class TestLazyRegistration:
    """Definition thunks are evaluated once, on first use."""

    def test_thunk_not_called_at_registration(self, registry: ToolRegistry) -> None:
        calls: list[str] = []
        registry.register_global("web_fetch", lambda: calls.append("x") or make_tool("web_fetch"))

        assert calls == []
        registry.global_tools()
        registry.global_tools()
        registry.get_global("web_fetch")

        assert calls == ["x"]

    def test_clear_cache_reevaluates(self, registry: ToolRegistry) -> None:
        calls: list[str] = []
        registry.register_global("web_fetch", lambda: calls.append("x") or make_tool("web_fetch"))

        registry.global_tools()
        registry.clear_cache()
        registry.global_tools()

        assert calls == ["x", "x"]

    def test_lazy_definition_source(self, registry: ToolRegistry) -> None:
        lazy = LazyDefinition(lambda: make_tool("local_search"), name="local_search")
        registry.register_global("local_search", lazy)

        assert registry.get_global("local_search") is lazy.resolve()

    def test_broken_thunk_is_skipped(self, registry: ToolRegistry) -> None:
        registry.register_global("broken", lambda: "not a definition")
        registry.register_global("web_fetch", make_tool("web_fetch"))

        assert list(registry.global_tools()) == ["web_fetch"]


# -----------------------------------------------------------------------------
# Tests: Handler providers
# -----------------------------------------------------------------------------


class TestHandlerTools:
    """Tests for handler-scoped tool providers."""

    def test_provider_receives_handler_config(self, registry: ToolRegistry) -> None:
        provider = _ConfigEchoProvider()
        assert isinstance(provider, ToolProvider)
        registry.register_handler_provider("wordpress", provider)

        tools = registry.handler_tools("wordpress", {"post_status": "draft"}, {"job": 1})

        assert tools["wordpress_publish"].description == "Publish as draft"
        assert tools["wordpress_publish"].handler_config == {"post_status": "draft"}
        assert provider.requests[0].engine_data == {"job": 1}

    def test_unknown_handler_has_no_tools(self, registry: ToolRegistry) -> None:
        assert registry.handler_tools("twitter") == {}

    def test_register_handler_tool(self, registry: ToolRegistry) -> None:
        registry.register_handler_tool("twitter", "twitter_publish", make_tool("twitter_publish", handler="twitter"))

        tools = registry.handler_tools("twitter", {"account": "@dm"})

        assert registry.handler_slugs() == ["twitter"]
        assert tools["twitter_publish"].handler_config == {"account": "@dm"}

    def test_first_provider_wins_on_duplicate_name(self, registry: ToolRegistry) -> None:
        registry.register_handler_tool("wordpress", "wordpress_publish", make_tool("wordpress_publish", description="first"))
        registry.register_handler_provider("wordpress", _ConfigEchoProvider())

        tools = registry.handler_tools("wordpress")

        assert tools["wordpress_publish"].description == "first"

    def test_static_provider_rejects_duplicates(self) -> None:
        provider = StaticToolProvider({"a": make_tool("a")})

        with pytest.raises(DuplicateToolError):
            provider.add("a", make_tool("a"))

    def test_handler_slug_required(self, registry: ToolRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register_handler_provider("", StaticToolProvider())
