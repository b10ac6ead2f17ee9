"""JSON wire shape used when agents live in separate OS processes."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import WireFormatError
from .models import MAX_PRIORITY, MIN_PRIORITY, Message, MessageKind, thaw


class WireMessage(BaseModel):
    """Serialized form of a :class:`Message`."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender: str = Field(..., alias="from")
    recipient: str = Field(..., alias="to")
    kind: MessageKind = Field(..., alias="type")
    priority: int = Field(..., ge=MIN_PRIORITY, le=MAX_PRIORITY)
    payload: Any = Field(default_factory=dict)
    timestamp: datetime
    correlation_id: str = Field(..., alias="correlationId")

    @classmethod
    def from_message(cls, message: Message) -> "WireMessage":
        return cls(
            sender=message.sender,
            recipient=message.recipient,
            kind=message.kind,
            priority=message.priority,
            payload=thaw(message.payload),
            timestamp=message.timestamp,
            correlation_id=message.correlation_id,
        )

    def to_message(self) -> Message:
        return Message(
            sender=self.sender,
            recipient=self.recipient,
            kind=self.kind,
            payload=self.payload,
            priority=self.priority,
            correlation_id=self.correlation_id,
            timestamp=self.timestamp,
        )


def to_wire(message: Message) -> str:
    return WireMessage.from_message(message).model_dump_json(by_alias=True)


def from_wire(data: str | bytes) -> Message:
    """Parse a wire document into a message, raising WireFormatError if malformed."""
    try:
        return WireMessage.model_validate_json(data).to_message()
    except ValidationError as exc:
        raise WireFormatError(str(exc)) from exc
