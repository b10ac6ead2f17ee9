"""Application runtime composition helpers."""
from __future__ import annotations

from typing import Dict, Optional, Type

from conductor.agents.base import Agent
from conductor.agents.echo import EchoAgent
from conductor.config import Config
from conductor.contexts.manager import ContextManager
from conductor.contexts.providers import ContextProvider, build_provider
from conductor.core.message_bus import MessageBus
from conductor.core.registry import AgentRegistry
from conductor.orchestration.orchestrator import Orchestrator

# Types without an entry here get the context-forwarding worker.
AGENT_CATALOG: Dict[str, Type[Agent]] = {
    "echo": EchoAgent,
}


def build_orchestrator(
    config: Optional[Config] = None,
    provider: Optional[ContextProvider] = None,
) -> Orchestrator:
    """Wire a registry, bus and context manager into a fresh orchestrator.

    Each call owns its own instances; nothing is shared between orchestrators.
    """
    config = config or Config.from_env()
    registry = AgentRegistry()
    bus = MessageBus(registry=registry, dead_letter_limit=config.dead_letter_limit)
    contexts = ContextManager(
        provider or build_provider(config.provider, shell=config.shell),
        session_name=config.session_name,
    )
    return Orchestrator(
        registry=registry,
        bus=bus,
        contexts=contexts,
        agent_catalog=AGENT_CATALOG,
        default_priority=config.default_priority,
    )
