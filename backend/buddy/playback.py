"""Gapless playback scheduling with barge-in"""
from __future__ import annotations
import logging
from typing import Callable, Protocol, Set

from .pcm import AudioChunk

logger = logging.getLogger(__name__)


class PlaybackSource(Protocol):
    def stop(self) -> None:
        """Stop playback; must be safe on an already finished source."""


class PlaybackContext(Protocol):
    sample_rate: int

    @property
    def current_time(self) -> float: ...

    def play(self, chunk: AudioChunk, when: float, on_ended: Callable[[], None]) -> PlaybackSource: ...

    def close(self) -> None: ...


class PlaybackScheduler:
    """Queues chunks back to back against the context clock.

    ``cursor`` is the next free slot. Each chunk starts at
    ``max(clock, cursor)`` and pushes the cursor by its duration.
    """

    def __init__(self, context: PlaybackContext):
        self.context = context
        self.cursor = 0.0
        self._pending: Set[PlaybackSource] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, chunk: AudioChunk) -> float:
        start = max(self.context.current_time, self.cursor)
        holder = []
        ended = []

        def _ended():
            ended.append(True)
            if holder:
                self._pending.discard(holder[0])

        source = self.context.play(chunk, start, _ended)
        holder.append(source)
        if not ended:
            self._pending.add(source)
        self.cursor = start + chunk.duration
        return start

    def interrupt(self) -> None:
        for source in list(self._pending):
            try:
                source.stop()
            except Exception as e:
                logger.debug("stopping playback source failed: %s", e)
        self._pending.clear()
        self.cursor = 0.0
