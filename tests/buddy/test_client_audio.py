import asyncio

import numpy as np
import pytest

from backend.buddy.client_audio import ClientAudioDevices, Outbox
from backend.buddy.errors import PermissionDeniedError
from backend.buddy.pcm import AudioChunk

from fakes import settle


def _drain(outbox):
    frames = []
    while not outbox.queue.empty():
        frames.append(outbox.queue.get_nowait())
    return frames


def test_microphone_grant_and_feed():
    async def run():
        outbox = Outbox()
        devices = ClientAudioDevices(outbox)
        task = asyncio.create_task(devices.acquire_microphone(16000))
        await settle()
        assert _drain(outbox) == [{"type": "mic_request", "sample_rate": 16000}]
        assert devices.answer(True, 48000) is True
        mic = await task
        assert mic.sample_rate == 48000

        received = []
        mic.start(received.append)
        devices.feed(np.array([0.5, -0.5], dtype="<f4").tobytes())
        devices.feed(b"\x00\x01\x02")  # malformed, dropped
        mic.stop()
        devices.feed(np.zeros(4, dtype="<f4").tobytes())
        assert len(received) == 1
        assert received[0].tolist() == [0.5, -0.5]
        assert [f["type"] for f in _drain(outbox)] == ["mic_start", "mic_stop"]
    asyncio.run(run())


def test_microphone_denied():
    async def run():
        devices = ClientAudioDevices(Outbox())
        task = asyncio.create_task(devices.acquire_microphone(16000))
        await settle()
        devices.answer(False, 16000, reason="NotAllowedError")
        with pytest.raises(PermissionDeniedError):
            await task
        assert devices.answer(True, 16000) is False
    asyncio.run(run())


def test_playback_frames_and_stop():
    async def run():
        outbox = Outbox()
        devices = ClientAudioDevices(outbox)
        ctx = devices.open_playback(24000)
        chunk = AudioChunk(samples=np.zeros(240, dtype=np.float32), sample_rate=24000)
        ended = []
        first = ctx.play(chunk, 0.0, lambda: ended.append(0))
        second = ctx.play(chunk, 5.0, lambda: ended.append(1))
        await asyncio.sleep(0.05)
        assert ended == [0]
        second.stop()
        ctx.close()
        ctx.close()
        frames = _drain(outbox)
        assert [f["type"] for f in frames] == ["playback_open", "audio", "audio", "audio_stop", "playback_close"]
        audio = frames[2]
        assert audio["seq"] == 1
        assert audio["start"] == 5.0
        assert audio["duration"] == pytest.approx(0.01)
        assert audio["mime"] == "audio/pcm;rate=24000"
        assert frames[3] == {"type": "audio_stop", "seq": 1}
        first.stop()
        assert _drain(outbox) == []
    asyncio.run(run())


def test_outbox_drain_stops_on_close():
    async def run():
        outbox = Outbox()
        sent = []

        async def send(payload):
            sent.append(payload)
        outbox.put({"type": "a"})
        outbox.put({"type": "b"})
        outbox.close()
        await outbox.drain(send)
        assert sent == [{"type": "a"}, {"type": "b"}]
    asyncio.run(run())


def test_second_microphone_request_releases_the_first():
    async def run():
        devices = ClientAudioDevices(Outbox())
        first = asyncio.create_task(devices.acquire_microphone(16000))
        await settle()
        second = asyncio.create_task(devices.acquire_microphone(16000))
        await settle()
        with pytest.raises(PermissionDeniedError):
            await first
        assert devices.answer(True, 16000) is True
        mic = await second
        assert mic.sample_rate == 16000
    asyncio.run(run())
