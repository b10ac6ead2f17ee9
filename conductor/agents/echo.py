"""Simple agent answering every task in-process."""
from __future__ import annotations

from conductor.agents.base import Agent
from conductor.core.models import Message


class EchoAgent(Agent):
    """Agent that echoes incoming tasks to demonstrate the request/response loop."""

    async def handle_message(self, message: Message) -> None:
        content = message.payload_value("description") or message.payload_value("content", "")
        await self.respond(message, {"echo": f"{self.agent_id} heard {content}"})
