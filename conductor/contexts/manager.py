"""Adapter between the orchestrator and a concrete execution context provider."""
from __future__ import annotations

import asyncio
from typing import List, Set

from conductor.core.errors import ContextNotFound, ProvisioningFailed
from conductor.logging_config import get_logger
from .providers import DIRECTIONS, ContextProvider

logger = get_logger(__name__)


class ContextManager:
    """Create, feed and release isolated run slots. No business logic lives here."""

    def __init__(self, provider: ContextProvider, session_name: str = "conductor") -> None:
        self._provider = provider
        self._session_name = session_name
        self._session_ready = False
        self._handles: Set[str] = set()
        self._lock = asyncio.Lock()

    @property
    def session_name(self) -> str:
        return self._session_name

    async def create_context(self, name: str, placement_hint: str = "horizontal") -> str:
        """Provision a slot and return its handle, or raise ProvisioningFailed."""
        direction = placement_hint if placement_hint in DIRECTIONS else "horizontal"
        try:
            async with self._lock:
                if not self._session_ready:
                    await self._provider.create(self._session_name)
                    self._session_ready = True
            handle = await self._provider.create_slot(name, direction)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not provision context for %s: %s", name, exc)
            raise ProvisioningFailed(f"Could not provision context for '{name}': {exc}") from exc
        self._handles.add(handle)
        logger.info("Provisioned context %s for %s", handle, name)
        return handle

    async def send_input(self, handle: str, text: str) -> None:
        if not await self.exists(handle):
            raise ContextNotFound(handle)
        await self._provider.send_text(handle, text)

    async def destroy_context(self, handle: str) -> None:
        """Release a slot. Unknown or already released handles are ignored."""
        if handle not in self._handles:
            return
        self._handles.discard(handle)
        # Providers treat dead or unknown slots as a no-op and reap what is left.
        await self._provider.kill_slot(handle)
        logger.info("Released context %s", handle)

    async def destroy_all(self) -> None:
        for handle in list(self._handles):
            await self.destroy_context(handle)

    async def exists(self, handle: str) -> bool:
        if handle not in self._handles:
            return False
        return handle in await self._provider.list_slots()

    def handles(self) -> List[str]:
        return sorted(self._handles)
