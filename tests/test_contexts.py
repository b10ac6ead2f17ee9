"""Execution context manager and the providers behind it."""
from __future__ import annotations

import shutil
import uuid

import pytest

from conductor.contexts.manager import ContextManager
from conductor.contexts.providers import MemoryProvider, SubprocessProvider, TmuxProvider, build_provider
from conductor.core.errors import ContextNotFound, ProvisioningFailed


@pytest.mark.anyio
async def test_create_send_and_destroy(contexts: ContextManager, provider: MemoryProvider) -> None:
    handle = await contexts.create_context("frontend-1", "vertical")

    await contexts.send_input(handle, "npm run build")

    assert provider.session == "test"
    assert provider.inputs[handle] == ["npm run build"]
    assert await contexts.exists(handle)
    assert contexts.handles() == [handle]

    await contexts.destroy_context(handle)
    await contexts.destroy_context(handle)

    assert not await contexts.exists(handle)
    assert handle not in provider.inputs


@pytest.mark.anyio
async def test_stale_handle_is_rejected(contexts: ContextManager, provider: MemoryProvider) -> None:
    with pytest.raises(ContextNotFound):
        await contexts.send_input("test:99", "hello")

    handle = await contexts.create_context("worker-1")
    # Slot vanished behind the manager's back, e.g. a pane closed by hand.
    await provider.kill_slot(handle)

    with pytest.raises(ContextNotFound):
        await contexts.send_input(handle, "hello")


@pytest.mark.anyio
async def test_provider_failure_becomes_provisioning_failed() -> None:
    contexts = ContextManager(MemoryProvider(fail_on_create=True), session_name="test")

    with pytest.raises(ProvisioningFailed):
        await contexts.create_context("frontend-1")
    assert contexts.handles() == []


@pytest.mark.anyio
async def test_destroy_all_releases_every_slot(contexts: ContextManager, provider: MemoryProvider) -> None:
    await contexts.create_context("a")
    await contexts.create_context("b")

    await contexts.destroy_all()

    assert contexts.handles() == []
    assert provider.inputs == {}


def test_build_provider_by_name() -> None:
    assert isinstance(build_provider("memory"), MemoryProvider)
    assert isinstance(build_provider("tmux"), TmuxProvider)
    assert isinstance(build_provider("subprocess"), SubprocessProvider)
    with pytest.raises(ValueError):
        build_provider("docker")


needs_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="no POSIX shell")
needs_tmux = pytest.mark.skipif(shutil.which("tmux") is None, reason="tmux not installed")


@needs_sh
@pytest.mark.anyio
async def test_subprocess_slot_is_reaped_on_destroy() -> None:
    provider = SubprocessProvider("sh")
    contexts = ContextManager(provider, session_name="test")
    handle = await contexts.create_context("worker-1")

    await contexts.send_input(handle, "echo hi")
    await contexts.destroy_context(handle)

    assert provider._processes == {}
    assert await provider.list_slots() == []


@needs_sh
@pytest.mark.anyio
async def test_subprocess_slot_that_exited_is_still_released() -> None:
    provider = SubprocessProvider("sh")
    contexts = ContextManager(provider, session_name="test")
    handle = await contexts.create_context("worker-1")

    await contexts.send_input(handle, "exit")
    await provider._processes[handle].wait()
    assert not await contexts.exists(handle)

    await contexts.destroy_context(handle)

    assert provider._processes == {}
    assert contexts.handles() == []
    with pytest.raises(ContextNotFound):
        await contexts.send_input(handle, "echo hi")


@needs_tmux
@pytest.mark.anyio
async def test_tmux_pane_lifecycle() -> None:
    provider = TmuxProvider()
    contexts = ContextManager(provider, session_name=f"conductor-test-{uuid.uuid4().hex[:8]}")
    try:
        handle = await contexts.create_context("worker-1", "vertical")
        assert handle in await provider.list_slots()

        await contexts.send_input(handle, "echo hi")
        await contexts.destroy_context(handle)

        assert handle not in await provider.list_slots()
        # A pane that is already gone is not an error.
        await provider.kill_slot(handle)
    finally:
        await provider.kill_session()
