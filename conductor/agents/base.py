"""Base agent definition used by the orchestrator."""
from __future__ import annotations

import abc
from typing import Any, Optional

from conductor.contexts.manager import ContextManager
from conductor.core.message_bus import MessageBus
from conductor.core.models import MASTER_ID, AgentStatus, Message, MessageKind
from conductor.logging_config import get_logger

logger = get_logger(__name__)


class Agent(abc.ABC):
    """In-process bus endpoint standing in for one worker.

    The agent subscribes itself under its own ID, reports lifecycle changes
    to the master as ``status`` messages and answers ``task``/``query``
    messages. Faults while handling are reported back as ``error`` messages
    correlated with the request.
    """

    def __init__(
        self,
        agent_id: str,
        agent_type: str,
        bus: MessageBus,
        contexts: ContextManager,
        context: Optional[str] = None,
    ) -> None:
        self.agent_id = agent_id
        self.agent_type = agent_type
        self.context = context
        self._bus = bus
        self._contexts = contexts
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Attach to the bus and announce readiness to the master."""
        if self._started:
            return
        self._bus.subscribe(self.agent_id, self._receive)
        self._started = True
        await self.on_start()
        await self.report_status(AgentStatus.ACTIVE)

    async def stop(self) -> None:
        """Detach from the bus. Queued messages for this agent are then dropped."""
        if not self._started:
            return
        self._bus.unsubscribe(self.agent_id, self._receive)
        self._started = False
        await self.on_stop()

    async def _receive(self, message: Message) -> None:
        if message.kind not in (MessageKind.TASK, MessageKind.QUERY):
            await self.on_notification(message)
            return
        try:
            await self.handle_message(message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Agent %s failed on %s: %s", self.agent_id, message.kind.value, exc)
            await self.send(
                message.reply(
                    self.agent_id,
                    MessageKind.ERROR,
                    {"error": str(exc), "agent_id": self.agent_id},
                )
            )

    async def send(self, message: Message) -> None:
        """Send a message via the shared bus."""
        await self._bus.publish(message)

    async def respond(self, request: Message, payload: Any) -> None:
        await self.send(request.reply(self.agent_id, MessageKind.RESPONSE, payload))

    async def report_status(self, status: AgentStatus) -> None:
        await self.send(
            Message(
                sender=self.agent_id,
                recipient=MASTER_ID,
                kind=MessageKind.STATUS,
                payload={"agent_id": self.agent_id, "status": status.value},
            )
        )

    @abc.abstractmethod
    async def handle_message(self, message: Message) -> None:
        """Process a ``task`` or ``query`` addressed to this agent."""

    async def on_notification(self, message: Message) -> None:
        """Hook for ``status``/``response``/``error`` traffic reaching this agent."""
        return None

    async def on_start(self) -> None:
        return None

    async def on_stop(self) -> None:
        return None
