import asyncio
import json

import httpx
import pytest

from backend.buddy.config import Settings
from backend.buddy.tts import ElevenLabsTTS, Pyttsx3TTS, TTSError, build_tts


def _settings(**kw):
    kw.setdefault("elevenlabs_api_key", "el-key")
    return Settings(gemini_api_key="k", **kw)


def test_elevenlabs_request_shape():
    async def run():
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["xi-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"ID3mp3bytes")
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        tts = ElevenLabsTTS(_settings(), client=client)
        audio = await tts.synthesize("hello")
        await tts.aclose()
        assert audio == b"ID3mp3bytes"
        assert tts.media_type == "audio/mpeg"
        assert seen["url"].endswith("/v1/text-to-speech/EXAVITQu4vr4xnSDxMaL")
        assert seen["key"] == "el-key"
        assert seen["body"]["model_id"] == "eleven_multilingual_v2"
        assert seen["body"]["voice_settings"] == {"stability": 0.4, "similarity_boost": 0.8}
    asyncio.run(run())


def test_elevenlabs_error_status():
    async def run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401, text="bad key")))
        tts = ElevenLabsTTS(_settings(), client=client)
        with pytest.raises(TTSError) as exc:
            await tts.synthesize("hello")
        assert exc.value.user_message == "TTS Failed"
        await tts.aclose()
    asyncio.run(run())


def test_build_tts_selection():
    assert build_tts(_settings(tts_engine="none")) is None
    assert isinstance(build_tts(_settings()), ElevenLabsTTS)
    assert isinstance(build_tts(_settings(elevenlabs_api_key="")), Pyttsx3TTS)
    assert isinstance(build_tts(_settings(tts_engine="pyttsx3")), Pyttsx3TTS)
