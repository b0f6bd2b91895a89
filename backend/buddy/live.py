"""Live session manager: owns the one bidirectional audio/text session.

States run ``IDLE -> REQUESTING_PERMISSION -> OPENING -> OPEN -> CLOSING -> IDLE``;
any failure passes through ``ERROR`` and the full teardown before returning
to ``IDLE``. Everything here runs on one event loop, so shared state is only
guarded by liveness checks: a connect generation counter for async
continuations and the current ``SessionHandle`` for sends.
"""
from __future__ import annotations
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Union

import numpy as np

from .config import SessionState, Settings
from .errors import (BuddyError, DecodeError, PermissionDeniedError,
                     TransportError, error_frame, log_event)
from .metadata import hide_partial_metadata
from .pcm import PcmBlob, decode_chunk, encode_frame, rate_from_mime
from .persona import SYSTEM_INSTRUCTION, split_coach_corner
from .playback import PlaybackContext, PlaybackScheduler
from .transcript import Conversation

logger = logging.getLogger(__name__)


# Inbound messages, one event per optional payload of a server message.
@dataclass(frozen=True)
class InputTranscription:
    text: str


@dataclass(frozen=True)
class OutputTranscription:
    text: str


@dataclass(frozen=True)
class ModelText:
    text: str


@dataclass(frozen=True)
class AudioData:
    data: Union[bytes, str]
    mime_type: Optional[str] = None


@dataclass(frozen=True)
class Interrupted:
    pass


@dataclass(frozen=True)
class TurnComplete:
    pass


InboundEvent = Union[InputTranscription, OutputTranscription, ModelText, AudioData, Interrupted, TurnComplete]


@dataclass
class LiveConfig:
    model: str
    response_modalities: List[str]
    voice_name: str
    system_instruction: str
    safety_threshold: str = "BLOCK_NONE"
    input_transcription: bool = True
    output_transcription: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, system_instruction: str = SYSTEM_INSTRUCTION) -> "LiveConfig":
        return cls(
            model=settings.live_model,
            response_modalities=[m.upper() for m in settings.response_modalities],
            voice_name=settings.voice_name,
            system_instruction=system_instruction,
            safety_threshold=settings.safety_threshold,
        )


class LiveCallbacks(Protocol):
    async def on_open(self) -> None: ...
    async def on_message(self, event: InboundEvent) -> None: ...
    async def on_close(self, reason: Optional[str]) -> None: ...
    async def on_error(self, exc: BaseException) -> None: ...


class LiveHandle(Protocol):
    async def send_realtime_input(self, blob: PcmBlob) -> None: ...
    async def close(self) -> None: ...


class LiveConnector(Protocol):
    async def connect(self, config: LiveConfig, callbacks: LiveCallbacks) -> LiveHandle: ...


class Microphone(Protocol):
    sample_rate: int

    def start(self, on_frame: Callable[[np.ndarray], None]) -> None: ...

    def stop(self) -> None: ...


class AudioDevices(Protocol):
    async def acquire_microphone(self, sample_rate: int) -> Microphone: ...

    def open_playback(self, sample_rate: int) -> PlaybackContext: ...


@dataclass
class SessionHandle:
    generation: int
    connection: Optional[LiveHandle] = None
    remote_open: bool = False
    is_open: bool = False
    user_text: str = ""
    model_text: str = ""
    outbox: "asyncio.Queue[PcmBlob]" = field(default_factory=asyncio.Queue)


class _GenerationCallbacks:
    """Connector callbacks pinned to one connect attempt; stale ones are ignored."""

    def __init__(self, manager: "LiveSessionManager", generation: int):
        self.manager = manager
        self.generation = generation

    def _live(self) -> bool:
        return self.manager._generation == self.generation and self.manager._session is not None

    async def on_open(self) -> None:
        if self._live():
            self.manager._session.remote_open = True
            self.manager._maybe_open()

    async def on_message(self, event: InboundEvent) -> None:
        if self._live():
            await self.manager._handle_event(event)

    async def on_close(self, reason: Optional[str]) -> None:
        if self._live():
            log_event("remote_close", reason=reason)
            message = f"Closed: {reason}" if reason else None
            await self.manager._shutdown(message=message)

    async def on_error(self, exc: BaseException) -> None:
        if self._live():
            await self.manager._fail(TransportError(), cause=exc)


class LiveSessionManager:
    def __init__(self, settings: Settings, connector: LiveConnector, devices: AudioDevices,
                 conversation: Optional[Conversation] = None,
                 emit: Optional[Callable[[Dict[str, Any]], None]] = None,
                 live_config: Optional[LiveConfig] = None):
        self.settings = settings
        self.connector = connector
        self.devices = devices
        self.conversation = conversation or Conversation()
        self.emit = emit or (lambda payload: None)
        self.live_config = live_config or LiveConfig.from_settings(settings)
        self.state = SessionState.IDLE
        self.scheduler: Optional[PlaybackScheduler] = None
        self.dropped_frames = 0
        self._generation = 0
        self._session: Optional[SessionHandle] = None
        self._mic: Optional[Microphone] = None
        self._playback: Optional[PlaybackContext] = None
        self._sender: Optional[asyncio.Task] = None
        self._pending: Deque[PcmBlob] = deque(maxlen=settings.pending_frame_limit)

    @property
    def connected(self) -> bool:
        return self.state is SessionState.OPEN

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        log_event("state", old=self.state.value, new=state.value)
        self.state = state
        self.emit({"type": "state", "state": state.value})

    async def toggle(self) -> None:
        """Connect when idle; any other state means disconnect."""
        if self.state is SessionState.IDLE:
            await self.connect()
        else:
            await self.disconnect()

    async def connect(self) -> None:
        if self.state is not SessionState.IDLE:
            return
        self._generation += 1
        gen = self._generation
        self._set_state(SessionState.REQUESTING_PERMISSION)
        try:
            self.settings.require_api_key()
            mic = await self.devices.acquire_microphone(self.settings.capture_sample_rate)
        except BuddyError as e:
            if gen == self._generation:
                await self._fail(e)
            return
        except Exception as e:
            if gen == self._generation:
                await self._fail(PermissionDeniedError(), cause=e)
            return
        if gen != self._generation:
            # torn down while waiting for consent
            _quiet(mic.stop)
            return

        self._mic = mic
        self._set_state(SessionState.OPENING)
        session = SessionHandle(generation=gen)
        self._session = session
        self._pending.clear()

        try:
            self._playback = self.devices.open_playback(self.settings.playback_sample_rate)
            self.scheduler = PlaybackScheduler(self._playback)
            mic.start(self._on_capture_frame)
            connection = await self.connector.connect(self.live_config, _GenerationCallbacks(self, gen))
        except Exception as e:
            if gen == self._generation:
                await self._fail(TransportError(), cause=e)
            return
        if gen != self._generation or self._session is not session:
            await _close_connection(connection)
            return
        session.connection = connection
        self._sender = asyncio.create_task(self._send_loop(session))
        log_event("session_connecting", model=self.live_config.model)
        self._maybe_open()

    async def disconnect(self) -> None:
        self._generation += 1
        if self.state is not SessionState.IDLE:
            self._set_state(SessionState.CLOSING)
        await self._teardown()
        self._set_state(SessionState.IDLE)

    def _maybe_open(self) -> None:
        s = self._session
        if s is None or s.is_open or s.connection is None or not s.remote_open:
            return
        if self.state is not SessionState.OPENING:
            return
        s.is_open = True
        flushed = len(self._pending)
        while self._pending:
            s.outbox.put_nowait(self._pending.popleft())
        self._set_state(SessionState.OPEN)
        log_event("session_open", flushed_frames=flushed)

    def _on_capture_frame(self, samples: np.ndarray) -> None:
        s = self._session
        mic = self._mic
        if s is None or mic is None:
            return
        blob = encode_frame(samples, source_rate=mic.sample_rate, wire_rate=self.settings.capture_sample_rate)
        if s.is_open:
            s.outbox.put_nowait(blob)
            return
        if len(self._pending) == self._pending.maxlen:
            self.dropped_frames += 1
            logger.warning(f"Pending capture queue full ({self._pending.maxlen}); dropping oldest frame")
        self._pending.append(blob)

    async def _send_loop(self, session: SessionHandle) -> None:
        while True:
            blob = await session.outbox.get()
            if self._session is not session or session.connection is None:
                return
            try:
                await session.connection.send_realtime_input(blob)
            except Exception as e:
                if self._session is session:
                    await self._fail(TransportError(), cause=e)
                return

    async def _handle_event(self, event: InboundEvent) -> None:
        s = self._session
        if s is None:
            return
        if isinstance(event, InputTranscription):
            s.user_text += event.text
            self.emit({"type": "partial_transcript", "role": "user", "text": s.user_text})
        elif isinstance(event, (OutputTranscription, ModelText)):
            s.model_text += event.text
            self.emit({"type": "partial_transcript", "role": "model", "text": hide_partial_metadata(s.model_text)})
        elif isinstance(event, AudioData):
            self._play(event)
        elif isinstance(event, Interrupted):
            if self.scheduler is not None:
                self.scheduler.interrupt()
            self.emit({"type": "interrupted"})
        elif isinstance(event, TurnComplete):
            self._complete_turn(s)
        else:
            raise TypeError(f"unhandled inbound event: {event!r}")

    def _play(self, event: AudioData) -> None:
        if self.scheduler is None or self._playback is None:
            return
        source_rate = rate_from_mime(event.mime_type, self.settings.playback_sample_rate)
        try:
            chunk = decode_chunk(event.data, source_rate=source_rate, target_rate=self._playback.sample_rate)
        except DecodeError as e:
            log_event("decode_failure", error=str(e))
            return
        self.scheduler.schedule(chunk)

    def _complete_turn(self, s: SessionHandle) -> None:
        # Empty model text still yields a turn so nothing disappears silently.
        user_turn, model_turn = self.conversation.append_exchange(s.user_text, s.model_text)
        s.user_text = ""
        s.model_text = ""
        self.emit({"type": "turn", **user_turn.as_dict()})
        reply, correction = split_coach_corner(model_turn.text)
        self.emit({"type": "turn", **model_turn.as_dict(), "reply": reply, "correction": correction})
        self.emit({"type": "stats", **self.conversation.stats.as_dict()})
        log_event("turn_complete", user_chars=len(user_turn.text), model_chars=len(model_turn.text))

    async def _fail(self, exc: BuddyError, cause: Optional[BaseException] = None) -> None:
        if cause is not None:
            logger.error(f"Live session failure ({exc.code}): {cause!r}")
        self._generation += 1
        self._set_state(SessionState.ERROR)
        self.emit(error_frame(exc.code, exc.user_message, recoverable=False))
        log_event("error", code=exc.code, message=exc.user_message)
        await self._teardown()
        self._set_state(SessionState.IDLE)

    async def _shutdown(self, message: Optional[str] = None) -> None:
        self._generation += 1
        self._set_state(SessionState.CLOSING)
        if message:
            self.emit({"type": "info", "message": message})
        await self._teardown()
        self._set_state(SessionState.IDLE)

    async def _teardown(self) -> None:
        """Release everything; safe to repeat and safe when nothing was acquired."""
        session, self._session = self._session, None
        mic, self._mic = self._mic, None
        playback, self._playback = self._playback, None
        scheduler, self.scheduler = self.scheduler, None
        sender, self._sender = self._sender, None
        self._pending.clear()

        if mic is not None:
            _quiet(mic.stop)
        if scheduler is not None:
            scheduler.interrupt()
        if playback is not None:
            _quiet(playback.close)
        if session is not None and session.connection is not None:
            await _close_connection(session.connection)
        if sender is not None and sender is not asyncio.current_task():
            sender.cancel()
        if session is not None:
            log_event("session_close", generation=session.generation)


def _quiet(fn: Callable[[], Any]) -> None:
    try:
        fn()
    except Exception as e:
        logger.debug(f"teardown step {getattr(fn, '__qualname__', fn)} failed: {e}")


async def _close_connection(connection: LiveHandle) -> None:
    try:
        await connection.close()
    except Exception as e:
        logger.debug(f"live connection already closed: {e}")

