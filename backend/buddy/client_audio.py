"""Browser-backed microphone and speaker for the /ws bridge.

The client captures float32 frames and plays scheduled PCM chunks; the server
keeps the session clock (seconds since the playback context opened) and tells
the client when each chunk starts.
"""
from __future__ import annotations
import asyncio
import base64
import logging
from typing import Any, Callable, Dict, Optional

import numpy as np

from .errors import DecodeError, PermissionDeniedError
from .pcm import AudioChunk, float32_to_pcm16, pcm_mime, samples_from_float32_bytes

logger = logging.getLogger(__name__)


class Outbox:
    """Ordered JSON frames for one socket, drained by a single writer task."""

    def __init__(self):
        self.queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()

    def put(self, payload: Dict[str, Any]) -> None:
        self.queue.put_nowait(payload)

    def close(self) -> None:
        self.queue.put_nowait(None)

    async def drain(self, send_json: Callable[[Dict[str, Any]], Any]) -> None:
        while True:
            payload = await self.queue.get()
            if payload is None:
                return
            try:
                await send_json(payload)
            except Exception as e:
                logger.debug(f"client send failed, stopping writer: {e}")
                return


class ClientMicrophone:
    def __init__(self, outbox: Outbox, sample_rate: int):
        self.outbox = outbox
        self.sample_rate = sample_rate
        self._on_frame: Optional[Callable[[np.ndarray], None]] = None
        self.stopped = False

    def start(self, on_frame: Callable[[np.ndarray], None]) -> None:
        self._on_frame = on_frame
        self.outbox.put({"type": "mic_start"})

    def feed(self, raw: bytes) -> None:
        if self.stopped or self._on_frame is None:
            return
        self._on_frame(samples_from_float32_bytes(raw))

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        self._on_frame = None
        self.outbox.put({"type": "mic_stop"})


class ClientPlaybackSource:
    def __init__(self, context: "ClientPlaybackContext", seq: int, timer: asyncio.TimerHandle):
        self.context = context
        self.seq = seq
        self._timer = timer
        self.done = False

    def finish(self, on_ended: Callable[[], None]) -> None:
        self.done = True
        on_ended()

    def stop(self) -> None:
        if self.done:
            return
        self.done = True
        self._timer.cancel()
        if not self.context.closed:
            self.context.outbox.put({"type": "audio_stop", "seq": self.seq})


class ClientPlaybackContext:
    def __init__(self, outbox: Outbox, sample_rate: int):
        self.outbox = outbox
        self.sample_rate = sample_rate
        self._loop = asyncio.get_running_loop()
        self._t0 = self._loop.time()
        self._seq = 0
        self.closed = False
        outbox.put({"type": "playback_open", "sample_rate": sample_rate})

    @property
    def current_time(self) -> float:
        return self._loop.time() - self._t0

    def play(self, chunk: AudioChunk, when: float, on_ended: Callable[[], None]) -> ClientPlaybackSource:
        seq = self._seq
        self._seq += 1
        self.outbox.put({
            "type": "audio",
            "seq": seq,
            "start": when,
            "duration": chunk.duration,
            "sample_rate": chunk.sample_rate,
            "mime": pcm_mime(chunk.sample_rate),
            "audio_b64": base64.b64encode(float32_to_pcm16(chunk.samples)).decode("ascii"),
        })
        end_at = self._t0 + when + chunk.duration
        holder = []
        timer = self._loop.call_at(end_at, lambda: holder[0].finish(on_ended))
        source = ClientPlaybackSource(self, seq, timer)
        holder.append(source)
        return source

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.outbox.put({"type": "playback_close"})


class ClientAudioDevices:
    """Microphone permission is asked of the browser and answered with a ``mic`` frame."""

    def __init__(self, outbox: Outbox):
        self.outbox = outbox
        self.microphone: Optional[ClientMicrophone] = None
        self._grant: Optional[asyncio.Future] = None

    async def acquire_microphone(self, sample_rate: int) -> ClientMicrophone:
        stale = self._grant
        if stale is not None and not stale.done():
            stale.set_exception(PermissionDeniedError("Microphone requested again"))
        loop = asyncio.get_running_loop()
        grant = self._grant = loop.create_future()
        self.outbox.put({"type": "mic_request", "sample_rate": sample_rate})
        try:
            actual_rate = await grant
        finally:
            if self._grant is grant:
                self._grant = None
        self.microphone = ClientMicrophone(self.outbox, actual_rate)
        return self.microphone

    def answer(self, granted: bool, sample_rate: int, reason: Optional[str] = None) -> bool:
        """Resolve a pending permission request; False when nothing was asked."""
        grant = self._grant
        if grant is None or grant.done():
            return False
        if granted:
            grant.set_result(sample_rate)
        else:
            logger.info(f"Client denied microphone: {reason or 'no reason given'}")
            grant.set_exception(PermissionDeniedError())
        return True

    def feed(self, raw: bytes) -> None:
        mic = self.microphone
        if mic is None or mic.stopped:
            return
        try:
            mic.feed(raw)
        except DecodeError as e:
            logger.warning(f"Dropping malformed capture frame: {e}")

    def open_playback(self, sample_rate: int) -> ClientPlaybackContext:
        return ClientPlaybackContext(self.outbox, sample_rate)
