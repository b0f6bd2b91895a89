"""Fixed-window capture: record a short clip, then send it as one request"""
from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from .chat import ChatService
from .errors import BuddyError, PermissionDeniedError, log_event
from .pcm import resample, to_wav_bytes
from .transcript import Conversation, Role, Turn

logger = logging.getLogger(__name__)


class ClipRecorder:
    """Status runs requesting -> listening -> thinking -> idle, or ends in error."""

    def __init__(self, devices: Any, chat: ChatService, conversation: Conversation,
                 emit: Callable[[Dict[str, Any]], None], seconds: float = 4.0,
                 sample_rate: int = 16000):
        self.devices = devices
        self.chat = chat
        self.conversation = conversation
        self.emit = emit
        self.seconds = seconds
        self.sample_rate = sample_rate
        self.status = "idle"
        self._frames: List[np.ndarray] = []

    @property
    def busy(self) -> bool:
        return self.status in ("requesting", "listening", "thinking")

    def _set(self, status: str, **extra: Any) -> None:
        self.status = status
        self.emit({"type": "clip_state", "status": status, **extra})

    async def run(self) -> Optional[str]:
        if self.busy:
            return None
        self._frames = []
        self._set("requesting")
        try:
            mic = await self.devices.acquire_microphone(self.sample_rate)
        except BuddyError as e:
            self._set("error", message=e.user_message)
            return None
        except Exception as e:
            logger.error(f"Microphone request failed: {e}")
            self._set("error", message=PermissionDeniedError.user_message)
            return None

        mic.start(self._frames.append)
        self._set("listening")
        try:
            await asyncio.sleep(self.seconds)
        finally:
            mic.stop()
        self._set("thinking")

        samples = np.concatenate(self._frames) if self._frames else np.zeros(0, dtype=np.float32)
        samples = resample(samples, mic.sample_rate, self.sample_rate)
        log_event("clip_recorded", seconds=round(samples.size / float(self.sample_rate), 2))
        try:
            raw_reply = await self.chat.reply_audio(to_wav_bytes(samples, self.sample_rate), "audio/wav")
        except BuddyError as e:
            self._set("error", message=e.user_message)
            return None
        self.conversation.append(Turn(Role.USER, "(voice clip)"))
        turn = self.conversation.apply_model_reply(raw_reply)
        self.emit({"type": "turn", **turn.as_dict()})
        self.emit({"type": "stats", **self.conversation.stats.as_dict()})
        self._set("idle")
        return turn.text
