"""Error taxonomy shared by the orchestration core."""
from __future__ import annotations


class ConductorError(Exception):
    """Base class for every error raised by the orchestration core."""


class DuplicateAgent(ConductorError):
    """An agent with the same identifier is already registered."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent '{agent_id}' is already registered")
        self.agent_id = agent_id


class UnknownAgent(ConductorError):
    """No agent with the given identifier is registered."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Unknown agent '{agent_id}'")
        self.agent_id = agent_id


class UnknownTask(ConductorError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown task '{task_id}'")
        self.task_id = task_id


class ProvisioningFailed(ConductorError):
    """The execution context provider could not create a run slot."""


class ContextNotFound(ConductorError):
    """The execution context handle is stale or was never issued."""

    def __init__(self, handle: str) -> None:
        super().__init__(f"Execution context '{handle}' not found")
        self.handle = handle


class BusClosed(ConductorError):
    """The message bus has been shut down and accepts no new messages."""


class HandlerFault(ConductorError):
    """A subscriber raised while a message was being delivered to it.

    Only ever logged by the bus, never raised to the publisher.
    """

    def __init__(self, agent_id: str, message_id: str, cause: BaseException) -> None:
        super().__init__(f"Handler for '{agent_id}' failed on message {message_id}: {cause!r}")
        self.agent_id = agent_id
        self.message_id = message_id
        self.cause = cause


class WireFormatError(ConductorError):
    """A serialized message does not match the wire shape."""
