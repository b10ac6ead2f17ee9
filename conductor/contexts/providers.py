"""Execution context providers: where an agent's real work runs.

A provider owns one session (a tmux session, a process group, or nothing at
all for the in-memory variant) and hands out opaque slot handles inside it.
"""
from __future__ import annotations

import asyncio
import itertools
import shlex
from typing import Dict, List, Optional, Protocol

from conductor.logging_config import get_logger

logger = get_logger(__name__)

DIRECTIONS = ("horizontal", "vertical")


class ProviderError(RuntimeError):
    """Raised by providers; the context manager translates it for callers."""


class ContextProvider(Protocol):
    """Capability contract for anything that can host isolated run slots."""

    async def create(self, session_name: str) -> bool:
        """Ensure the session exists. Returns True if it was created now."""
        ...

    async def create_slot(self, name: str, direction: str) -> str:
        ...

    async def send_text(self, handle: str, text: str) -> None:
        ...

    async def list_slots(self) -> List[str]:
        ...

    async def kill_slot(self, handle: str) -> None:
        ...


class MemoryProvider:
    """Slots that only record the text sent to them. Used for dry runs and tests."""

    def __init__(self, fail_on_create: bool = False) -> None:
        self.fail_on_create = fail_on_create
        self.session: Optional[str] = None
        self.inputs: Dict[str, List[str]] = {}
        self._ids = itertools.count(1)

    async def create(self, session_name: str) -> bool:
        created = self.session is None
        self.session = session_name
        return created

    async def create_slot(self, name: str, direction: str) -> str:
        if self.fail_on_create:
            raise ProviderError(f"refusing to create slot '{name}'")
        handle = f"{self.session}:{next(self._ids)}"
        self.inputs[handle] = []
        return handle

    async def send_text(self, handle: str, text: str) -> None:
        if handle not in self.inputs:
            raise ProviderError(f"no such slot {handle}")
        self.inputs[handle].append(text)

    async def list_slots(self) -> List[str]:
        return list(self.inputs)

    async def kill_slot(self, handle: str) -> None:
        self.inputs.pop(handle, None)


class TmuxProvider:
    """One tmux session; every slot is a pane split off the session's window."""

    def __init__(self, tmux: str = "tmux") -> None:
        self._tmux = tmux
        self.session: Optional[str] = None

    async def _run(self, *args: str) -> str:
        process = await asyncio.create_subprocess_exec(
            self._tmux,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise ProviderError(
                f"{self._tmux} {' '.join(args)} exited {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        return stdout.decode(errors="replace")

    async def create(self, session_name: str) -> bool:
        self.session = session_name
        try:
            await self._run("has-session", "-t", session_name)
        except ProviderError:
            await self._run("new-session", "-d", "-s", session_name)
            logger.info("Created tmux session %s", session_name)
            return True
        return False

    async def create_slot(self, name: str, direction: str) -> str:
        if self.session is None:
            raise ProviderError("tmux session not created")
        flag = "-v" if direction == "vertical" else "-h"
        out = await self._run(
            "split-window", flag, "-d", "-P", "-F", "#{pane_id}", "-t", self.session
        )
        handle = out.strip()
        await self._run("select-pane", "-t", handle, "-T", name)
        # Keep panes usable after many splits.
        await self._run("select-layout", "-t", self.session, "tiled")
        return handle

    async def send_text(self, handle: str, text: str) -> None:
        await self._run("send-keys", "-t", handle, "-l", text)
        await self._run("send-keys", "-t", handle, "Enter")

    async def list_slots(self) -> List[str]:
        if self.session is None:
            return []
        try:
            out = await self._run("list-panes", "-s", "-t", self.session, "-F", "#{pane_id}")
        except ProviderError:
            return []
        return [line for line in out.splitlines() if line]

    async def kill_slot(self, handle: str) -> None:
        if handle not in await self.list_slots():
            return
        await self._run("kill-pane", "-t", handle)

    async def kill_session(self) -> None:
        if self.session is None:
            return
        try:
            await self._run("kill-session", "-t", self.session)
        except ProviderError:
            logger.debug("tmux session %s already gone", self.session)
        self.session = None


class SubprocessProvider:
    """Each slot is a child shell; text is written to its stdin as one line."""

    def __init__(self, shell: str = "/bin/sh") -> None:
        self._shell = shlex.split(shell)
        self.session: Optional[str] = None
        self._processes: Dict[str, asyncio.subprocess.Process] = {}
        self._ids = itertools.count(1)

    async def create(self, session_name: str) -> bool:
        created = self.session is None
        self.session = session_name
        return created

    async def create_slot(self, name: str, direction: str) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                *self._shell,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise ProviderError(f"cannot start {self._shell[0]}: {exc}") from exc
        handle = f"{self.session}:{name}:{next(self._ids)}"
        self._processes[handle] = process
        logger.debug("Started pid %s for slot %s", process.pid, handle)
        return handle

    async def send_text(self, handle: str, text: str) -> None:
        process = self._processes.get(handle)
        if process is None or process.returncode is not None or process.stdin is None:
            raise ProviderError(f"slot {handle} is not running")
        process.stdin.write(text.encode() + b"\n")
        await process.stdin.drain()

    async def list_slots(self) -> List[str]:
        return [h for h, p in self._processes.items() if p.returncode is None]

    async def kill_slot(self, handle: str) -> None:
        process = self._processes.pop(handle, None)
        if process is None:
            return
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is not None:
            # Exited on its own; wait() collects the status.
            await process.wait()
            return
        try:
            process.terminate()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()


def build_provider(kind: str, shell: str = "/bin/sh") -> ContextProvider:
    if kind == "memory":
        return MemoryProvider()
    if kind == "tmux":
        return TmuxProvider()
    if kind == "subprocess":
        return SubprocessProvider(shell=shell)
    raise ValueError(f"Unknown execution context provider '{kind}'")
