import asyncio

import numpy as np

from backend.buddy.clip import ClipRecorder
from backend.buddy.transcript import Conversation, Role, Turn

from fakes import FakeDevices, StubChat, settle


def test_clip_records_then_replies():
    async def run():
        devices = FakeDevices(mic_rate=48000)
        chat = StubChat(reply="Nice voice! [METADATA]BOND_SCORE: 55[/METADATA]")
        convo = Conversation()
        events = []
        clip = ClipRecorder(devices, chat, convo, events.append, seconds=0.05, sample_rate=16000)
        task = asyncio.create_task(clip.run())
        await settle()
        assert clip.busy
        devices.mic.push(np.zeros(4800))
        devices.mic.push(np.zeros(4800))
        text = await task

        assert text == "Nice voice!"
        assert devices.mic.stopped
        statuses = [e["status"] for e in events if e["type"] == "clip_state"]
        assert statuses == ["requesting", "listening", "thinking", "idle"]
        kind, mime, size = chat.calls[0]
        assert (kind, mime) == ("audio", "audio/wav")
        assert size == 44 + 2 * 3200  # wav header + 0.2 s at 16 kHz
        assert convo.turns == [Turn(Role.USER, "(voice clip)"), Turn(Role.MODEL, "Nice voice!")]
        assert convo.stats.bond_score == 55
        assert not clip.busy
    asyncio.run(run())


def test_clip_backend_failure_sets_error():
    async def run():
        events = []
        clip = ClipRecorder(FakeDevices(), StubChat(fail=True), Conversation(), events.append, seconds=0.01)
        assert await clip.run() is None
        assert events[-1] == {"type": "clip_state", "status": "error", "message": "AI failed"}
        assert clip.status == "error"
    asyncio.run(run())


def test_clip_permission_denied():
    async def run():
        events = []
        chat = StubChat()
        clip = ClipRecorder(FakeDevices(deny=True), chat, Conversation(), events.append, seconds=0.01)
        await clip.run()
        assert events[-1]["status"] == "error"
        assert events[-1]["message"] == "Mic permission issue."
        assert chat.calls == []
    asyncio.run(run())
