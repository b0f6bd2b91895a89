import asyncio
from types import SimpleNamespace

from google.genai import types
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from backend.buddy.config import Settings
from backend.buddy.gemini_live import (GeminiLiveConnector, build_connect_config,
                                       parse_server_message)
from backend.buddy.live import (AudioData, InputTranscription, Interrupted, LiveConfig,
                                ModelText, OutputTranscription, TurnComplete)
from backend.buddy.pcm import encode_frame


def _message(**content):
    return types.LiveServerMessage(server_content=types.LiveServerContent(**content))


def test_connect_config_from_settings():
    config = LiveConfig.from_settings(Settings(gemini_api_key="k", voice_name="Puck"))
    cc = build_connect_config(config)
    assert cc.response_modalities == [types.Modality.AUDIO]
    assert cc.speech_config.voice_config.prebuilt_voice_config.voice_name == "Puck"
    assert cc.input_audio_transcription is not None
    assert cc.output_audio_transcription is not None


def test_parse_server_message_order():
    msg = _message(
        input_transcription=types.Transcription(text="hi"),
        output_transcription=types.Transcription(text="hello"),
        model_turn=types.Content(role="model", parts=[
            types.Part(text="thinking...", thought=True),
            types.Part(inline_data=types.Blob(data=b"\x00\x00", mime_type="audio/pcm;rate=24000")),
            types.Part(text="hello"),
        ]),
        interrupted=True,
        turn_complete=True,
    )
    assert parse_server_message(msg) == [
        InputTranscription("hi"),
        OutputTranscription("hello"),
        AudioData(b"\x00\x00", "audio/pcm;rate=24000"),
        ModelText("hello"),
        Interrupted(),
        TurnComplete(),
    ]


def test_parse_server_message_without_content():
    assert parse_server_message(types.LiveServerMessage()) == []
    assert parse_server_message(_message(turn_complete=False)) == []


class _Recorder:
    def __init__(self):
        self.calls = []

    async def on_open(self):
        self.calls.append("open")

    async def on_message(self, event):
        self.calls.append(event)

    async def on_close(self, reason):
        self.calls.append(("close", reason))

    async def on_error(self, exc):
        self.calls.append(("error", exc))


class _FakeLiveSession:
    def __init__(self, batches, final_exc):
        self.batches = list(batches)
        self.final_exc = final_exc
        self.sent = []

    async def receive(self):
        if not self.batches:
            raise self.final_exc
        for message in self.batches.pop(0):
            yield message

    async def send_realtime_input(self, audio):
        self.sent.append(audio)


class _FakeContext:
    def __init__(self, session):
        self.session = session
        self.exited = False

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc):
        self.exited = True


def _connector(session):
    ctx = _FakeContext(session)
    seen = {}

    def connect(model, config):
        seen["model"] = model
        seen["config"] = config
        return ctx
    client = SimpleNamespace(aio=SimpleNamespace(live=SimpleNamespace(connect=connect)))
    return GeminiLiveConnector(Settings(gemini_api_key="k"), client=client), ctx, seen


def test_connector_streams_events_until_remote_close():
    async def run():
        session = _FakeLiveSession(
            [[_message(input_transcription=types.Transcription(text="a"), turn_complete=True)],
             [_message(output_transcription=types.Transcription(text="b"))]],
            ConnectionClosed(Close(1011, "deadline"), None),
        )
        connector, ctx, seen = _connector(session)
        recorder = _Recorder()
        config = LiveConfig.from_settings(connector.settings)
        handle = await connector.connect(config, recorder)
        assert seen["model"] == config.model
        assert recorder.calls == ["open"]
        await handle._receiver
        assert recorder.calls[1:] == [InputTranscription("a"), TurnComplete(),
                                      OutputTranscription("b"), ("close", "deadline")]
        await handle.send_realtime_input(encode_frame([0.0, 0.5]))
        assert session.sent[0].mime_type == "audio/pcm;rate=16000"
        assert session.sent[0].data == b"\x00\x00\x00\x40"
        await handle.close()
        await handle.close()
        assert ctx.exited
        await handle.send_realtime_input(encode_frame([0.0]))
        assert len(session.sent) == 1
    asyncio.run(run())


def test_receive_failure_reports_error():
    async def run():
        boom = RuntimeError("socket exploded")
        connector, _, _ = _connector(_FakeLiveSession([], boom))
        recorder = _Recorder()
        handle = await connector.connect(LiveConfig.from_settings(connector.settings), recorder)
        await handle._receiver
        assert recorder.calls == ["open", ("error", boom)]
        await handle.close()
    asyncio.run(run())
