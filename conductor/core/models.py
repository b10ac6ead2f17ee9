"""Core data models shared across orchestrator components."""
from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Optional

BROADCAST = "broadcast"
MASTER_ID = "master"

MIN_PRIORITY = 0
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def freeze(value: Any) -> Any:
    """Read-only copy of a JSON value: objects become mapping proxies, arrays tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Plain ``dict``/``list`` copy of a frozen value, for serialization."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value


class AgentStatus(str, Enum):
    """Lifecycle states for an agent tracked by the registry."""

    SPAWNING = "spawning"
    ACTIVE = "active"
    DEGRADED = "degraded"
    TERMINATED = "terminated"


class MessageKind(str, Enum):
    TASK = "task"
    STATUS = "status"
    QUERY = "query"
    RESPONSE = "response"
    ERROR = "error"


class TaskState(str, Enum):
    """Progress of a task handed to the orchestrator."""

    RECEIVED = "received"
    DECOMPOSED = "decomposed"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)


@dataclass(slots=True)
class Agent:
    """Registry entry for a worker managed by the orchestrator."""

    agent_id: str
    agent_type: str
    status: AgentStatus = AgentStatus.SPAWNING
    context: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    task_count: int = 0
    last_error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Message:
    """Canonical message exchanged between agents over the bus.

    ``payload`` may be any JSON value. It is frozen on creation so no
    handler can alter what the next one receives, and the bus never looks
    inside it; its shape is a contract between sender and final consumer.
    """

    sender: str
    recipient: str
    kind: MessageKind
    payload: Any = field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    correlation_id: str = field(default_factory=new_correlation_id)
    timestamp: datetime = field(default_factory=utcnow)
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not MIN_PRIORITY <= self.priority <= MAX_PRIORITY:
            raise ValueError(
                f"priority {self.priority} outside [{MIN_PRIORITY}, {MAX_PRIORITY}]"
            )
        object.__setattr__(self, "kind", MessageKind(self.kind))
        object.__setattr__(self, "payload", freeze(self.payload))

    @property
    def is_broadcast(self) -> bool:
        return self.recipient == BROADCAST

    def payload_value(self, key: str, default: Any = None) -> Any:
        """Look up ``key`` when the payload is an object, else ``default``."""
        if isinstance(self.payload, Mapping):
            return self.payload.get(key, default)
        return default

    def reply(
        self,
        sender: str,
        kind: MessageKind = MessageKind.RESPONSE,
        payload: Any = None,
        priority: Optional[int] = None,
    ) -> "Message":
        """Build a follow-up addressed to this message's sender, same correlation."""
        return Message(
            sender=sender,
            recipient=self.sender,
            kind=kind,
            payload={} if payload is None else payload,
            priority=self.priority if priority is None else priority,
            correlation_id=self.correlation_id,
        )


@dataclass(slots=True)
class TaskRecord:
    """A unit of user intent tracked from receipt to completion."""

    task_id: str
    description: str
    plan: List[str] = field(default_factory=list)
    state: TaskState = TaskState.RECEIVED
    correlation_id: str = field(default_factory=new_correlation_id)
    recipient: str = BROADCAST
    targets: List[str] = field(default_factory=list)
    results: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    retry_of: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
