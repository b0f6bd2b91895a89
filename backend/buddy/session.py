"""Per-client session bundle and the registry used for shutdown"""
from __future__ import annotations
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Set

from .client_audio import ClientAudioDevices, Outbox
from .clip import ClipRecorder
from .live import LiveSessionManager
from .transcript import Conversation


@dataclass
class ClientSession:
    id: str
    outbox: Outbox
    devices: ClientAudioDevices
    conversation: Conversation
    manager: LiveSessionManager
    clip: ClipRecorder
    created_at: float = field(default_factory=time.time)
    tasks: Set[asyncio.Task] = field(default_factory=set)

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def close(self) -> None:
        await self.manager.disconnect()
        for task in list(self.tasks):
            task.cancel()
        self.outbox.close()


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, ClientSession] = {}

    def add(self, s: ClientSession):
        self._sessions[s.id] = s

    def remove(self, sid: str):
        self._sessions.pop(sid, None)

    def all(self) -> List[ClientSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    async def broadcast_shutdown(self, reason: str = "server_shutdown"):
        for s in self.all():
            s.outbox.put({"type": "info", "message": "Server shutting down", "reason": reason})
            await s.close()


registry = SessionRegistry()
