"""Shared fixtures for the orchestration core tests."""
from __future__ import annotations

import pytest

from conductor.config import Config
from conductor.contexts.manager import ContextManager
from conductor.contexts.providers import MemoryProvider
from conductor.core.message_bus import MessageBus
from conductor.core.registry import AgentRegistry
from conductor.orchestration.orchestrator import Orchestrator
from conductor.runtime import build_orchestrator


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def registry() -> AgentRegistry:
    return AgentRegistry()


@pytest.fixture
def bus() -> MessageBus:
    return MessageBus()


@pytest.fixture
def provider() -> MemoryProvider:
    return MemoryProvider()


@pytest.fixture
def contexts(provider: MemoryProvider) -> ContextManager:
    return ContextManager(provider, session_name="test")


@pytest.fixture
def orchestrator(provider: MemoryProvider) -> Orchestrator:
    return build_orchestrator(Config(session_name="test"), provider=provider)
