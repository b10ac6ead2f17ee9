"""Delivery order, fan-out and fault isolation of the message bus."""
from __future__ import annotations

from typing import List, Tuple

import anyio
import pytest

from conductor.core.errors import BusClosed
from conductor.core.message_bus import MessageBus
from conductor.core.models import BROADCAST, MAX_PRIORITY, Agent, AgentStatus, Message, MessageKind
from conductor.core.registry import AgentRegistry


def make(sender: str, recipient: str, priority: int = 5, name: str = "") -> Message:
    return Message(
        sender=sender,
        recipient=recipient,
        kind=MessageKind.STATUS,
        payload={"name": name},
        priority=priority,
    )


async def publish_in_one_pass(bus: MessageBus, messages: List[Message]) -> None:
    """Queue every message behind a gate so they are all pending when delivery starts."""

    async def gate(_: Message) -> None:
        bus.unsubscribe("gate")
        for message in messages:
            await bus.publish(message)

    bus.subscribe("gate", gate)
    await bus.publish(make("test", "gate", priority=MAX_PRIORITY, name="gate"))


def recorder(log: List[Tuple[str, str]], agent_id: str):
    async def handler(message: Message) -> None:
        log.append((agent_id, message.payload["name"]))

    return handler


@pytest.mark.anyio
async def test_publish_on_idle_bus_delivers_before_returning(bus: MessageBus) -> None:
    log: List[Tuple[str, str]] = []
    bus.subscribe("a", recorder(log, "a"))

    await bus.publish(make("test", "a", name="m1"))

    assert log == [("a", "m1")]
    assert bus.pending == 0
    assert not bus.delivering


@pytest.mark.anyio
async def test_higher_priority_delivered_first_and_ties_keep_publish_order(bus: MessageBus) -> None:
    log: List[Tuple[str, str]] = []
    bus.subscribe("a", recorder(log, "a"))

    await publish_in_one_pass(
        bus,
        [
            make("test", "a", 1, "low-1"),
            make("test", "a", 7, "high-1"),
            make("test", "a", 4, "mid-1"),
            make("test", "a", 7, "high-2"),
            make("test", "a", 1, "low-2"),
            make("test", "a", 4, "mid-2"),
        ],
    )

    assert [name for _, name in log] == ["high-1", "high-2", "mid-1", "mid-2", "low-1", "low-2"]


@pytest.mark.anyio
async def test_direct_beats_earlier_low_priority_broadcast_and_sender_is_skipped(bus: MessageBus) -> None:
    log: List[Tuple[str, str]] = []
    bus.subscribe("a", recorder(log, "a"))
    bus.subscribe("b", recorder(log, "b"))

    await publish_in_one_pass(
        bus,
        [
            make("a", BROADCAST, priority=1, name="B1"),
            make("test", "a", priority=5, name="D1"),
        ],
    )

    assert log == [("a", "D1"), ("b", "B1")]


@pytest.mark.anyio
async def test_handlers_run_in_registration_order_and_resubscribe_is_noop(bus: MessageBus) -> None:
    calls: List[str] = []

    async def first(_: Message) -> None:
        calls.append("first")

    async def second(_: Message) -> None:
        calls.append("second")

    bus.subscribe("a", first)
    bus.subscribe("a", second)
    bus.subscribe("a", first)

    await bus.publish(make("test", "a"))

    assert calls == ["first", "second"]
    assert bus.subscribers() == {"a": 2}


@pytest.mark.anyio
async def test_plain_function_handlers_are_supported(bus: MessageBus) -> None:
    seen: List[str] = []
    bus.subscribe("a", lambda message: seen.append(message.payload["name"]))

    await bus.publish(make("test", "a", name="sync"))

    assert seen == ["sync"]


@pytest.mark.anyio
async def test_unsubscribe_one_handler_keeps_the_others(bus: MessageBus) -> None:
    calls: List[str] = []

    async def first(_: Message) -> None:
        calls.append("first")

    async def second(_: Message) -> None:
        calls.append("second")

    bus.subscribe("a", first)
    bus.subscribe("a", second)
    bus.unsubscribe("a", first)
    await bus.publish(make("test", "a"))

    assert calls == ["second"]


@pytest.mark.anyio
async def test_unsubscribed_agent_gets_nothing_and_queued_messages_drop(bus: MessageBus) -> None:
    log: List[Tuple[str, str]] = []
    bus.subscribe("a", recorder(log, "a"))

    async def gate(_: Message) -> None:
        await bus.publish(make("test", "a", name="queued"))
        bus.unsubscribe("a")

    bus.subscribe("gate", gate)
    await bus.publish(make("test", "gate", priority=MAX_PRIORITY))
    await bus.publish(make("test", "a", name="later"))

    assert log == []
    assert [m.payload["name"] for m in bus.dead_letters] == ["queued", "later"]
    assert bus.stats.dropped == 2


@pytest.mark.anyio
async def test_faulty_handler_does_not_block_other_handlers_or_later_messages(bus: MessageBus) -> None:
    log: List[Tuple[str, str]] = []

    async def broken(message: Message) -> None:
        raise RuntimeError(f"cannot handle {message.payload['name']}")

    bus.subscribe("a", broken)
    bus.subscribe("a", recorder(log, "a"))
    bus.subscribe("b", recorder(log, "b"))

    await publish_in_one_pass(
        bus,
        [make("test", "a", 5, "m1"), make("test", "b", 4, "m2")],
    )

    assert log == [("a", "m1"), ("b", "m2")]
    assert bus.stats.faults == 1
    assert not bus.delivering


@pytest.mark.anyio
async def test_messages_published_by_handlers_join_the_active_pass(bus: MessageBus) -> None:
    log: List[Tuple[str, str]] = []

    async def ping(message: Message) -> None:
        log.append(("a", message.payload["name"]))
        await bus.publish(make("a", "b", name="pong"))
        # Still queued: the reply waits for the current delivery to finish.
        assert bus.pending == 1

    bus.subscribe("a", ping)
    bus.subscribe("b", recorder(log, "b"))

    await bus.publish(make("test", "a", name="ping"))

    assert log == [("a", "ping"), ("b", "pong")]


@pytest.mark.anyio
async def test_publish_during_suspended_pass_only_enqueues(bus: MessageBus) -> None:
    seen: List[str] = []
    release = anyio.Event()

    async def slow(message: Message) -> None:
        seen.append(message.payload["name"])
        if message.payload["name"] == "first":
            await release.wait()

    bus.subscribe("a", slow)

    async with anyio.create_task_group() as tg:
        tg.start_soon(bus.publish, make("test", "a", name="first"))
        while not bus.delivering:
            await anyio.sleep(0)

        await bus.publish(make("test", "a", name="second"))
        assert seen == ["first"]
        assert bus.pending == 1

        release.set()

    assert seen == ["first", "second"]


@pytest.mark.anyio
async def test_message_without_subscribers_goes_to_dead_letters(bus: MessageBus) -> None:
    dropped: List[Tuple[str, str]] = []
    bus.on_dead_letter = lambda message, reason: dropped.append((message.recipient, reason))

    await bus.publish(make("test", "nobody"))
    await bus.publish(make("test", BROADCAST))

    assert dropped == [("nobody", "no subscribers"), (BROADCAST, "no subscribers")]


@pytest.mark.anyio
async def test_terminated_agents_are_not_delivered_to(registry: AgentRegistry) -> None:
    bus = MessageBus(registry=registry)
    log: List[Tuple[str, str]] = []
    registry.register(Agent(agent_id="a", agent_type="worker"))
    registry.register(Agent(agent_id="b", agent_type="worker"))
    bus.subscribe("a", recorder(log, "a"))
    bus.subscribe("b", recorder(log, "b"))
    registry.update_status("a", AgentStatus.TERMINATED)

    await bus.publish(make("test", "a", name="direct"))
    await bus.publish(make("test", BROADCAST, name="all"))

    assert log == [("b", "all")]
    assert [m.payload["name"] for m in bus.dead_letters] == ["direct"]


@pytest.mark.anyio
async def test_closed_bus_rejects_publish(bus: MessageBus) -> None:
    bus.close()

    with pytest.raises(BusClosed):
        await bus.publish(make("test", "a"))
    assert bus.stats.published == 0


def test_priority_is_bounded() -> None:
    with pytest.raises(ValueError):
        make("test", "a", priority=MAX_PRIORITY + 1)
    with pytest.raises(ValueError):
        make("test", "a", priority=-1)


@pytest.mark.anyio
async def test_broadcast_payload_cannot_be_changed_by_a_handler(bus: MessageBus) -> None:
    seen: List[dict] = []

    async def tamper(message: Message) -> None:
        message.payload["x"] = "tampered"

    async def record(message: Message) -> None:
        seen.append(dict(message.payload))

    bus.subscribe("a", tamper)
    bus.subscribe("b", record)

    await bus.publish(Message(sender="test", recipient=BROADCAST, kind=MessageKind.STATUS, payload={"x": "orig"}))

    assert seen == [{"x": "orig"}]
    assert bus.stats.faults == 1
