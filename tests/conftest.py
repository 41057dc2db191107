"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from datamachine.ai.agent_context import get_agent_context
from datamachine.ai.orchestration.directives import DirectiveComposer
from datamachine.ai.orchestration.loop import ConversationLoop
from datamachine.ai.orchestration.providers import ProviderRegistry
from datamachine.ai.tools.availability import SettingsSelectionStore, ToolAvailabilityGate
from datamachine.ai.tools.discovery import ToolDiscovery
from datamachine.ai.tools.registry import ToolRegistry
from datamachine.services.settings import Settings

from tests.helpers import ScriptedProvider


@pytest.fixture
def settings() -> Settings:
    return Settings(default_provider="scripted", default_model="test-model", max_turns=5)


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def selection_store(settings: Settings) -> SettingsSelectionStore:
    return SettingsSelectionStore(settings)


@pytest.fixture
def gate(registry: ToolRegistry, selection_store: SettingsSelectionStore) -> ToolAvailabilityGate:
    return ToolAvailabilityGate(registry, selection_store)


@pytest.fixture
def discovery(gate: ToolAvailabilityGate) -> ToolDiscovery:
    return ToolDiscovery(gate)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def providers(provider: ScriptedProvider) -> ProviderRegistry:
    return ProviderRegistry({"scripted": provider})


@pytest.fixture
def loop(providers: ProviderRegistry, settings: Settings) -> ConversationLoop:
    return ConversationLoop(providers, directives=DirectiveComposer.default(settings))


@pytest.fixture(autouse=True)
def _no_leaked_agent_context():
    assert get_agent_context() is None
    yield
    assert get_agent_context() is None
