"""Tests for ai/tools/discovery.py."""

from __future__ import annotations

import logging

import pytest

from datamachine.ai.tools import (
    SettingsSelectionStore,
    StaticToolProvider,
    ToolAvailabilityGate,
    ToolDiscovery,
    ToolRegistry,
    handler_slugs_for,
)
from datamachine.services.settings import Settings

from tests.helpers import engine_snapshot, make_tool


@pytest.fixture
def populated_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_handler_tool("rss", "rss_refetch", make_tool("rss_refetch", handler="rss"))
    registry.register_handler_tool(
        "wordpress", "wordpress_publish", make_tool("wordpress_publish", required=["content"], handler="wordpress")
    )
    registry.register_handler_tool("twitter", "twitter_publish", make_tool("twitter_publish", handler="twitter"))
    registry.register_global("web_fetch", make_tool("web_fetch"))
    registry.register_global("google_search", make_tool("google_search", requires_config=True))
    registry.register_chat("create_pipeline", make_tool("create_pipeline"))
    return registry


def _discovery(registry: ToolRegistry, settings: Settings, **step_disabled: list[str]) -> ToolDiscovery:
    return ToolDiscovery(ToolAvailabilityGate(registry, SettingsSelectionStore(settings, step_disabled)))


# -----------------------------------------------------------------------------
# Tests: handler_slugs_for
# -----------------------------------------------------------------------------


class TestHandlerSlugs:
    """Tests for reading handler slugs from a step config."""

    def test_list_form_preferred(self) -> None:
        assert handler_slugs_for({"handler_slugs": ["wordpress", "", "twitter"], "handler_slug": "x"}) == [
            "wordpress",
            "twitter",
        ]

    def test_single_form(self) -> None:
        assert handler_slugs_for({"handler_slug": "rss"}) == ["rss"]

    def test_missing(self) -> None:
        assert handler_slugs_for(None) == []
        assert handler_slugs_for({}) == []


# -----------------------------------------------------------------------------
# Tests: Pipeline discovery
# -----------------------------------------------------------------------------


class TestPipelineDiscovery:
    """Tools visible to an AI pipeline step."""

    def test_union_of_adjacent_handlers_and_globals(self, populated_registry: ToolRegistry) -> None:
        engine = engine_snapshot()
        discovery = _discovery(populated_registry, Settings())

        tools = discovery.get_available_tools(
            engine["flow_config"]["fetch_7"], engine["flow_config"]["publish_7"], "ai", engine
        )

        assert list(tools) == ["rss_refetch", "wordpress_publish", "web_fetch"]
        assert tools["wordpress_publish"].handler_config == {"post_status": "draft"}

    def test_non_adjacent_handlers_excluded(self, populated_registry: ToolRegistry) -> None:
        tools = _discovery(populated_registry, Settings()).get_available_tools(
            None, {"handler_slug": "wordpress"}, "ai"
        )

        assert "twitter_publish" not in tools
        assert "rss_refetch" not in tools
        assert "create_pipeline" not in tools

    def test_multi_handler_step(self, populated_registry: ToolRegistry) -> None:
        next_step = {
            "handler_slugs": ["wordpress", "twitter"],
            "handler_configs": {"wordpress": {"post_status": "publish"}, "twitter": {"account": "@dm"}},
        }

        tools = _discovery(populated_registry, Settings()).get_available_tools(None, next_step, "ai")

        assert tools["wordpress_publish"].handler_config == {"post_status": "publish"}
        assert tools["twitter_publish"].handler_config == {"account": "@dm"}

    def test_handler_tool_bound_elsewhere_is_excluded(self) -> None:
        registry = ToolRegistry()
        registry.register_handler_provider(
            "wordpress",
            StaticToolProvider({"stray_publish": make_tool("stray_publish", handler="twitter")}),
        )

        tools = _discovery(registry, Settings()).get_available_tools(None, {"handler_slug": "wordpress"}, "ai")

        assert tools == {}

    def test_step_disabled_global_excluded(self, populated_registry: ToolRegistry) -> None:
        discovery = _discovery(populated_registry, Settings(), ai=["web_fetch"])

        tools = discovery.get_available_tools(None, {"handler_slug": "wordpress"}, "ai")

        assert list(tools) == ["wordpress_publish"]

    def test_step_exclusion_does_not_touch_handler_tools(self, populated_registry: ToolRegistry) -> None:
        discovery = _discovery(populated_registry, Settings(), ai=["wordpress_publish"])

        tools = discovery.get_available_tools(None, {"handler_slug": "wordpress"}, "ai")

        assert "wordpress_publish" in tools

    def test_first_source_wins_on_name_collision(self, caplog: pytest.LogCaptureFixture) -> None:
        registry = ToolRegistry()
        registry.register_handler_tool(
            "rss", "shared", make_tool("shared", handler="rss", description="from previous")
        )
        registry.register_handler_tool(
            "wordpress", "shared", make_tool("shared", handler="wordpress", description="from next")
        )
        registry.register_global("other", make_tool("other"))

        with caplog.at_level(logging.WARNING, logger="datamachine.ai.tools.discovery"):
            tools = _discovery(registry, Settings()).get_available_tools(
                {"handler_slug": "rss"}, {"handler_slug": "wordpress"}, "ai"
            )

        assert tools["shared"].description == "from previous"
        assert "shadowed" in caplog.text

    def test_no_adjacent_steps_gives_globals_only(self, populated_registry: ToolRegistry) -> None:
        tools = _discovery(populated_registry, Settings()).get_available_tools(None, None, "ai")

        assert list(tools) == ["web_fetch"]


# -----------------------------------------------------------------------------
# Tests: Chat discovery
# -----------------------------------------------------------------------------


class TestChatDiscovery:
    """Tools visible to chat agents."""

    def test_chat_sees_globals_and_chat_tools(self, populated_registry: ToolRegistry) -> None:
        tools = _discovery(populated_registry, Settings()).get_available_tools_for_chat()

        assert sorted(tools) == ["create_pipeline", "web_fetch"]

    def test_chat_respects_global_enablement(self, populated_registry: ToolRegistry) -> None:
        settings = Settings(enabled_tools={"google_search": True}, tool_configs={"google_search": {"key": "k"}})

        tools = _discovery(populated_registry, settings).get_available_tools_for_chat()

        assert sorted(tools) == ["create_pipeline", "google_search"]
