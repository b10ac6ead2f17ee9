"""Orchestrator responsible for provisioning, supervising and tasking agents."""
from __future__ import annotations

import asyncio
import itertools
import uuid
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from conductor.agents.base import Agent
from conductor.agents.worker import ContextAgent
from conductor.contexts.manager import ContextManager
from conductor.core.errors import ConductorError, DuplicateAgent, UnknownAgent, UnknownTask
from conductor.core.message_bus import MessageBus
from conductor.core.models import Agent as AgentEntry
from conductor.core.models import (
    BROADCAST,
    DEFAULT_PRIORITY,
    MASTER_ID,
    AgentStatus,
    Message,
    MessageKind,
    TaskRecord,
    TaskState,
    thaw,
)
from conductor.core.registry import AgentRegistry
from conductor.logging_config import get_logger

logger = get_logger(__name__)

HELP_TEXT = """Commands:
  /status              summary of agents, tasks and the message bus
  /list                list agents
  /spawn <type>        start a new agent of the given type
  /terminate <id>      stop an agent and release its execution context
  /tasks               list tasks and their state
  /retry <task_id>     re-dispatch a task under a new correlation ID
  /help                show this help
Any other line is dispatched as a task to every live agent;
prefix it with @<agent_id> to address a single agent.
Type exit or quit to leave."""

CommandHandler = Callable[[str], Awaitable[str]]


class Orchestrator:
    """Coordinate agent lifecycle and route user intent onto the bus.

    The orchestrator subscribes to the bus as ``master``. Agent status only
    changes in response to ``status`` and ``error`` messages it observes;
    ``response`` messages complete the task sharing their correlation ID.
    """

    def __init__(
        self,
        *,
        registry: AgentRegistry,
        bus: MessageBus,
        contexts: ContextManager,
        agent_catalog: Optional[Dict[str, Type[Agent]]] = None,
        default_agent: Type[Agent] = ContextAgent,
        default_priority: int = DEFAULT_PRIORITY,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._contexts = contexts
        self._agent_catalog = dict(agent_catalog or {})
        self._default_agent = default_agent
        self._default_priority = default_priority
        self._agents: Dict[str, Agent] = {}
        self._tasks: Dict[str, TaskRecord] = {}
        self._by_correlation: Dict[str, str] = {}
        self._task_ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._commands: Dict[str, CommandHandler] = {
            "/help": self._cmd_help,
            "/status": self._cmd_status,
            "/list": self._cmd_list,
            "/spawn": self._cmd_spawn,
            "/terminate": self._cmd_terminate,
            "/tasks": self._cmd_tasks,
            "/retry": self._cmd_retry,
        }
        self._bus.subscribe(MASTER_ID, self._observe)

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def bus(self) -> MessageBus:
        return self._bus

    @property
    def contexts(self) -> ContextManager:
        return self._contexts

    # Front end

    async def handle_input(self, text: str) -> str:
        """Answer one line from a front end; tasks are acknowledged, not awaited."""
        line = text.strip()
        if not line:
            return ""
        if line.startswith("/"):
            command, _, argument = line.partition(" ")
            handler = self._commands.get(command.lower())
            if handler is None:
                return f"Unknown command {command}. Type /help for the list of commands."
            try:
                return await handler(argument.strip())
            except ConductorError as exc:
                return f"Error: {exc}"

        target: Optional[str] = None
        if line.startswith("@"):
            target, _, line = line[1:].partition(" ")
            line = line.strip()
            if not target or not line:
                return "Usage: @<agent_id> <task>"
        try:
            record = await self.submit(line, target=target)
        except ConductorError as exc:
            return f"Error: {exc}"
        if not record.targets:
            return f"Task {record.task_id} failed: {record.error}"
        return f"Task {record.task_id} accepted, dispatched to {', '.join(record.targets)}"

    # Agent lifecycle

    async def spawn(self, agent_type: str, placement_hint: str = "horizontal") -> str:
        """Provision, register and start a new agent, returning its ID.

        Provisioning failures propagate with no registry entry left behind.
        """
        agent_type = agent_type.strip()
        if not agent_type:
            raise ValueError("agent type must not be empty")
        agent_id = f"{agent_type}-{uuid.uuid4().hex[:8]}"
        handle = await self._contexts.create_context(agent_id, placement_hint)

        try:
            self._registry.register(AgentEntry(agent_id=agent_id, agent_type=agent_type, context=handle))
        except DuplicateAgent:
            await self._contexts.destroy_context(handle)
            raise

        agent_cls = self._agent_catalog.get(agent_type, self._default_agent)
        agent = agent_cls(agent_id, agent_type, self._bus, self._contexts, context=handle)
        async with self._lock:
            self._agents[agent_id] = agent
        try:
            await self._announce(agent_id, AgentStatus.SPAWNING, agent_type=agent_type)
            await agent.start()
        except Exception:
            logger.error("Agent %s failed to start, rolling back", agent_id)
            async with self._lock:
                self._agents.pop(agent_id, None)
            await agent.stop()
            self._registry.remove(agent_id)
            await self._contexts.destroy_context(handle)
            raise
        logger.info("Spawned %s agent %s in %s", agent_type, agent_id, handle)
        return agent_id

    async def terminate(self, agent_id: str) -> None:
        """Stop routing to an agent, detach it and release its context."""
        self._registry.update_status(agent_id, AgentStatus.TERMINATED)
        async with self._lock:
            agent = self._agents.pop(agent_id, None)
        try:
            if agent is not None:
                await agent.stop()
        finally:
            self._bus.unsubscribe(agent_id)
            entry = self._registry.remove(agent_id)
            if entry.context is not None:
                await self._contexts.destroy_context(entry.context)
        if not self._bus.closed:
            await self._announce(agent_id, AgentStatus.TERMINATED, agent_type=entry.agent_type)
        logger.info("Terminated agent %s", agent_id)

    async def shutdown(self) -> None:
        """Terminate every agent and close the bus."""
        for entry in self._registry.list():
            try:
                await self.terminate(entry.agent_id)
            except ConductorError as exc:
                logger.error("Cleanup of %s failed: %s", entry.agent_id, exc)
        await self._contexts.destroy_all()
        self._bus.close()

    def list_agents(self, agent_type: Optional[str] = None) -> List[AgentEntry]:
        return self._registry.list(agent_type)

    # Tasks

    async def submit(
        self,
        description: str,
        *,
        target: Optional[str] = None,
        priority: Optional[int] = None,
        retry_of: Optional[str] = None,
    ) -> TaskRecord:
        """Record, decompose and dispatch a task without waiting for it to finish."""
        if target is not None:
            entry = self._registry.get(target)
            if entry.status is AgentStatus.TERMINATED:
                raise UnknownAgent(target)

        record = TaskRecord(
            task_id=f"task-{next(self._task_ids)}",
            description=description,
            recipient=target or BROADCAST,
            retry_of=retry_of,
        )
        self._tasks[record.task_id] = record
        self._by_correlation[record.correlation_id] = record.task_id

        record.plan = self._decompose(description)
        record.state = TaskState.DECOMPOSED

        record.targets = [target] if target else self._live_agent_ids()
        if not record.targets:
            record.state = TaskState.FAILED
            record.error = "no active agents to accept the task"
            logger.warning("Task %s has no recipients", record.task_id)
            return record

        message = Message(
            sender=MASTER_ID,
            recipient=record.recipient,
            kind=MessageKind.TASK,
            payload={
                "task_id": record.task_id,
                "description": description,
                "plan": list(record.plan),
            },
            priority=self._default_priority if priority is None else priority,
            correlation_id=record.correlation_id,
        )
        # Set before publishing: an idle bus delivers, and agents may answer, inside publish.
        record.state = TaskState.DISPATCHED
        await self._bus.publish(message)
        logger.info(
            "Dispatched %s to %s",
            record.task_id,
            record.recipient,
            extra={"task_id": record.task_id, "correlation_id": record.correlation_id},
        )
        return record

    async def retry(self, task_id: str) -> TaskRecord:
        """Re-publish a task as a fresh one with a new correlation ID."""
        original = self.get_task(task_id)
        target = None if original.recipient == BROADCAST else original.recipient
        return await self.submit(original.description, target=target, retry_of=original.task_id)

    def get_task(self, task_id: str) -> TaskRecord:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise UnknownTask(task_id) from None

    def tasks(self) -> List[TaskRecord]:
        return list(self._tasks.values())

    def _decompose(self, description: str) -> List[str]:
        # Placeholder: every task is a single step handed over verbatim.
        return [description]

    def _live_agent_ids(self) -> List[str]:
        return [
            entry.agent_id
            for entry in self._registry.list()
            if entry.status is not AgentStatus.TERMINATED
        ]

    # Bus observer

    async def _observe(self, message: Message) -> None:
        if message.kind is MessageKind.STATUS:
            self._apply_status(message)
        elif message.kind is MessageKind.ERROR:
            self._apply_error(message)
        elif message.kind is MessageKind.RESPONSE:
            self._apply_response(message)
        else:
            logger.debug("Ignoring %s message from %s", message.kind.value, message.sender)

    def _apply_status(self, message: Message) -> None:
        agent_id = message.payload_value("agent_id", message.sender)
        try:
            status = AgentStatus(message.payload_value("status"))
        except ValueError:
            logger.warning("Invalid status %r from %s", message.payload_value("status"), message.sender)
            return
        try:
            self._registry.update_status(agent_id, status)
        except UnknownAgent:
            logger.warning("Status update for unknown agent %s", agent_id)

    def _apply_error(self, message: Message) -> None:
        agent_id = message.payload_value("agent_id", message.sender)
        error = str(message.payload_value("error", "unspecified error"))
        logger.error(
            "Agent %s reported an error: %s",
            agent_id,
            error,
            extra={"agent_id": agent_id, "correlation_id": message.correlation_id},
        )
        try:
            self._registry.update_status(agent_id, AgentStatus.DEGRADED)
            self._registry.record_error(agent_id, error)
        except UnknownAgent:
            logger.warning("Error report for unknown agent %s", agent_id)

        record = self._task_for(message.correlation_id)
        if record is not None and record.state is not TaskState.COMPLETED:
            record.state = TaskState.FAILED
            record.error = f"{agent_id}: {error}"

    def _apply_response(self, message: Message) -> None:
        record = self._task_for(message.correlation_id)
        if record is None:
            logger.debug("Uncorrelated response %s from %s", message.correlation_id, message.sender)
            return
        payload = thaw(message.payload)
        result = {"agent_id": message.sender}
        if isinstance(payload, dict):
            result.update(payload)
        else:
            result["payload"] = payload
        record.results.append(result)
        # Settled tasks keep their outcome; late answers are only recorded.
        if not record.state.finished:
            record.state = TaskState.COMPLETED
            logger.info("Task %s completed by %s", record.task_id, message.sender)
        if message.sender in self._registry:
            self._registry.record_task(message.sender)

    def _task_for(self, correlation_id: str) -> Optional[TaskRecord]:
        task_id = self._by_correlation.get(correlation_id)
        return self._tasks.get(task_id) if task_id else None

    async def _announce(self, agent_id: str, status: AgentStatus, **extra: Any) -> None:
        await self._bus.publish(
            Message(
                sender=MASTER_ID,
                recipient=BROADCAST,
                kind=MessageKind.STATUS,
                payload={"agent_id": agent_id, "status": status.value, **extra},
            )
        )

    # Reporting

    def status_report(self) -> Dict[str, Any]:
        agents = self._registry.list()
        stats = self._bus.stats
        return {
            "session": self._contexts.session_name,
            "agents": len(agents),
            "agents_by_status": dict(Counter(a.status.value for a in agents)),
            "tasks": len(self._tasks),
            "tasks_by_state": dict(Counter(t.state.value for t in self._tasks.values())),
            "bus": {
                "published": stats.published,
                "delivered": stats.delivered,
                "dropped": stats.dropped,
                "faults": stats.faults,
                "pending": self._bus.pending,
                "closed": self._bus.closed,
            },
        }

    async def _cmd_help(self, argument: str) -> str:
        return HELP_TEXT

    async def _cmd_status(self, argument: str) -> str:
        summary = self.status_report()
        by_status = ", ".join(f"{k}={v}" for k, v in summary["agents_by_status"].items()) or "none"
        by_state = ", ".join(f"{k}={v}" for k, v in summary["tasks_by_state"].items()) or "none"
        bus = summary["bus"]
        return (
            f"Session: {summary['session']}\n"
            f"Agents: {summary['agents']} ({by_status})\n"
            f"Tasks: {summary['tasks']} ({by_state})\n"
            f"Bus: published={bus['published']} delivered={bus['delivered']} "
            f"dropped={bus['dropped']} faults={bus['faults']} pending={bus['pending']}"
        )

    async def _cmd_list(self, argument: str) -> str:
        agents = self._registry.list(argument or None)
        if not agents:
            return "No agents running."
        return "\n".join(
            f"{a.agent_id}  {a.agent_type}  {a.status.value}  {a.context or '-'}" for a in agents
        )

    async def _cmd_spawn(self, argument: str) -> str:
        if not argument:
            return "Usage: /spawn <type>"
        agent_id = await self.spawn(argument)
        return f"Spawned {argument} agent {agent_id}"

    async def _cmd_terminate(self, argument: str) -> str:
        if not argument:
            return "Usage: /terminate <agent_id>"
        await self.terminate(argument)
        return f"Terminated {argument}"

    async def _cmd_tasks(self, argument: str) -> str:
        if not self._tasks:
            return "No tasks yet."
        lines = []
        for record in self._tasks.values():
            line = f"{record.task_id}  {record.state.value}  {record.description}"
            if record.error:
                line += f"  ({record.error})"
            lines.append(line)
        return "\n".join(lines)

    async def _cmd_retry(self, argument: str) -> str:
        if not argument:
            return "Usage: /retry <task_id>"
        record = await self.retry(argument)
        if not record.targets:
            return f"Task {record.task_id} failed: {record.error}"
        return f"Task {argument} re-dispatched as {record.task_id}"
