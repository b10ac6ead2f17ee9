"""Agent that hands its tasks to the process running in its execution context."""
from __future__ import annotations

from conductor.agents.base import Agent
from conductor.core.models import Message


class ContextAgent(Agent):
    """Forward task text into the agent's pane or child process.

    The response only acknowledges delivery; the real work happens in the
    execution context and is reported later by whatever runs there.
    """

    async def handle_message(self, message: Message) -> None:
        if self.context is None:
            raise RuntimeError(f"agent {self.agent_id} has no execution context")
        text = message.payload_value("description") or message.payload_value("content")
        if text is None or not str(text).strip():
            raise ValueError("task has no description to forward")
        await self._contexts.send_input(self.context, str(text))
        await self.respond(message, {"delivered": True, "context": self.context})
