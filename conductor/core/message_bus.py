"""In-memory bus delivering messages between the master and its agents.

Messages wait in a single pending queue ordered by descending priority with
FIFO tie-breaking. Only one delivery pass runs at a time: ``publish`` on an
idle bus drains the queue before returning, while ``publish`` during an
active pass (from a handler, or from another task while a handler is
suspended) only enqueues and lets that pass pick the message up.
"""
from __future__ import annotations

import heapq
import inspect
import itertools
from collections import deque
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Tuple,
    Union,
)

from conductor.logging_config import get_logger
from .errors import BusClosed, HandlerFault, UnknownAgent
from .models import AgentStatus, Message

if TYPE_CHECKING:
    from .registry import AgentRegistry

logger = get_logger(__name__)

Handler = Callable[[Message], Union[Awaitable[None], None]]
DeadLetterHook = Callable[[Message, str], None]


@dataclass(slots=True)
class BusStats:
    published: int = 0
    delivered: int = 0
    dropped: int = 0
    faults: int = 0


class MessageBus:
    """Priority queue plus pub/sub router with per-handler fault isolation."""

    def __init__(
        self,
        registry: Optional[AgentRegistry] = None,
        dead_letter_limit: int = 100,
        on_dead_letter: Optional[DeadLetterHook] = None,
    ) -> None:
        self._registry = registry
        self._subscriptions: Dict[str, List[Handler]] = {}
        self._queue: List[Tuple[int, int, Message]] = []
        self._sequence = itertools.count()
        self._delivering = False
        self._closed = False
        self.dead_letters: Deque[Message] = deque(maxlen=dead_letter_limit)
        self.on_dead_letter = on_dead_letter
        self.stats = BusStats()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def delivering(self) -> bool:
        return self._delivering

    @property
    def pending(self) -> int:
        return len(self._queue)

    def subscribe(self, agent_id: str, handler: Handler) -> None:
        """Register ``handler`` for messages addressed to ``agent_id``."""
        handlers = self._subscriptions.setdefault(agent_id, [])
        if handler in handlers:
            return
        handlers.append(handler)
        logger.debug("Subscribed handler %d for %s", len(handlers), agent_id)

    def unsubscribe(self, agent_id: str, handler: Optional[Handler] = None) -> None:
        """Drop one handler, or every handler of ``agent_id`` when none is given."""
        if handler is None:
            self._subscriptions.pop(agent_id, None)
            return
        handlers = self._subscriptions.get(agent_id)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._subscriptions[agent_id]

    def subscribers(self) -> Dict[str, int]:
        """Handler count per subscribed agent, in subscription order."""
        return {agent_id: len(handlers) for agent_id, handlers in self._subscriptions.items()}

    def is_subscribed(self, agent_id: str) -> bool:
        return bool(self._subscriptions.get(agent_id))

    async def publish(self, message: Message) -> None:
        if self._closed:
            raise BusClosed("Message bus is closed")
        heapq.heappush(self._queue, (-message.priority, next(self._sequence), message))
        self.stats.published += 1
        if self._delivering:
            return
        await self._drain()

    def close(self) -> None:
        """Refuse further publishes; an active pass still runs to completion."""
        self._closed = True

    async def _drain(self) -> None:
        self._delivering = True
        try:
            while self._queue:
                _, _, message = heapq.heappop(self._queue)
                await self._dispatch(message)
        finally:
            self._delivering = False

    async def _dispatch(self, message: Message) -> None:
        if message.is_broadcast:
            targets = [
                (agent_id, handler)
                for agent_id, handlers in list(self._subscriptions.items())
                if agent_id != message.sender and self._is_live(agent_id)
                for handler in list(handlers)
            ]
        elif not self._is_live(message.recipient):
            self._dead_letter(message, "recipient terminated")
            return
        else:
            targets = [
                (message.recipient, handler)
                for handler in list(self._subscriptions.get(message.recipient, ()))
            ]

        if not targets:
            self._dead_letter(message, "no subscribers")
            return

        for agent_id, handler in targets:
            # An earlier handler may have unsubscribed this one.
            if handler not in self._subscriptions.get(agent_id, ()):
                continue
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                self.stats.faults += 1
                fault = HandlerFault(agent_id, message.message_id, exc)
                logger.warning(
                    "Delivery error: %s",
                    fault,
                    exc_info=exc,
                    extra={"agent_id": agent_id, "correlation_id": message.correlation_id},
                )
            else:
                self.stats.delivered += 1

    def _is_live(self, agent_id: str) -> bool:
        # IDs the registry does not track (the master, front-end clients) are live.
        if self._registry is None:
            return True
        try:
            return self._registry.get(agent_id).status is not AgentStatus.TERMINATED
        except UnknownAgent:
            return True

    def _dead_letter(self, message: Message, reason: str) -> None:
        self.stats.dropped += 1
        self.dead_letters.append(message)
        logger.debug(
            "Dropped %s message %s to %s (%s)",
            message.kind.value,
            message.message_id,
            message.recipient,
            reason,
        )
        if self.on_dead_letter is None:
            return
        try:
            self.on_dead_letter(message, reason)
        except Exception:  # noqa: BLE001
            logger.exception("Dead-letter hook failed for message %s", message.message_id)
