"""Single source of truth for which agents exist and what state they are in."""
from __future__ import annotations

import dataclasses
import threading
from typing import Dict, List, Optional

from conductor.logging_config import get_logger
from .errors import DuplicateAgent, UnknownAgent
from .models import Agent, AgentStatus

logger = get_logger(__name__)


class AgentRegistry:
    """Thread-safe store of :class:`Agent` entries keyed by agent ID.

    Callers only ever receive copies, so a snapshot never changes under them.
    Status transitions are applied unconditionally.
    """

    def __init__(self) -> None:
        self._agents: Dict[str, Agent] = {}
        self._lock = threading.Lock()

    def register(self, agent: Agent) -> Agent:
        with self._lock:
            if agent.agent_id in self._agents:
                raise DuplicateAgent(agent.agent_id)
            self._agents[agent.agent_id] = dataclasses.replace(agent)
        logger.debug("Registered agent %s (%s)", agent.agent_id, agent.agent_type)
        return dataclasses.replace(agent)

    def update_status(self, agent_id: str, status: AgentStatus) -> Agent:
        status = AgentStatus(status)
        with self._lock:
            agent = self._require(agent_id)
            previous = agent.status
            agent.status = status
            snapshot = dataclasses.replace(agent)
        if previous is not status:
            logger.info("Agent %s: %s -> %s", agent_id, previous.value, status.value)
        return snapshot

    def record_error(self, agent_id: str, error: str) -> Agent:
        with self._lock:
            agent = self._require(agent_id)
            agent.last_error = error
            return dataclasses.replace(agent)

    def record_task(self, agent_id: str) -> Agent:
        with self._lock:
            agent = self._require(agent_id)
            agent.task_count += 1
            return dataclasses.replace(agent)

    def get(self, agent_id: str) -> Agent:
        with self._lock:
            return dataclasses.replace(self._require(agent_id))

    def remove(self, agent_id: str) -> Agent:
        with self._lock:
            agent = self._agents.pop(agent_id, None)
        if agent is None:
            raise UnknownAgent(agent_id)
        logger.debug("Removed agent %s", agent_id)
        return agent

    def contains(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._agents

    def list(self, agent_type: Optional[str] = None) -> List[Agent]:
        """Snapshots of every entry, oldest first, optionally filtered by type."""
        with self._lock:
            agents = [dataclasses.replace(a) for a in self._agents.values()]
        if agent_type is not None:
            agents = [a for a in agents if a.agent_type == agent_type]
        return agents

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return isinstance(agent_id, str) and self.contains(agent_id)

    def _require(self, agent_id: str) -> Agent:
        # Caller holds the lock.
        try:
            return self._agents[agent_id]
        except KeyError:
            raise UnknownAgent(agent_id) from None
