"""Text-to-speech: ElevenLabs over HTTP, or a local pyttsx3 engine"""
from __future__ import annotations
import asyncio
import logging
import os
import tempfile
from typing import Optional

import httpx

from .config import Settings
from .errors import BuddyError

logger = logging.getLogger(__name__)

try:  # pragma: no cover - needs a system speech driver
    import pyttsx3  # type: ignore
except Exception as e:
    pyttsx3 = None  # type: ignore
    logger.warning(f"pyttsx3 unavailable: {e}")

ELEVENLABS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


class TTSError(BuddyError):
    code = "TTS_FAIL"
    user_message = "TTS Failed"


class TTSEngine:
    """Base class for TTS engines"""

    media_type = "audio/wav"

    def __init__(self, engine_name: str):
        self.engine_name = engine_name

    @property
    def available(self) -> bool:
        return True

    async def synthesize(self, text: str) -> bytes:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class ElevenLabsTTS(TTSEngine):
    media_type = "audio/mpeg"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__("elevenlabs")
        self.settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.tts_timeout_s)

    @property
    def available(self) -> bool:
        return bool(self.settings.elevenlabs_api_key)

    async def synthesize(self, text: str) -> bytes:
        url = ELEVENLABS_URL.format(voice_id=self.settings.elevenlabs_voice_id)
        payload = {
            "text": text,
            "model_id": self.settings.elevenlabs_model,
            "voice_settings": {
                "stability": self.settings.elevenlabs_stability,
                "similarity_boost": self.settings.elevenlabs_similarity_boost,
            },
        }
        headers = {"xi-api-key": self.settings.elevenlabs_api_key, "Content-Type": "application/json"}
        try:
            response = await self._client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"ElevenLabs Error: {e.response.status_code} {e.response.text[:200]}")
            raise TTSError() from e
        except httpx.HTTPError as e:
            logger.error(f"ElevenLabs Error: {e}")
            raise TTSError() from e
        return response.content

    async def aclose(self) -> None:
        await self._client.aclose()


class Pyttsx3TTS(TTSEngine):
    """pyttsx3 engine; synthesis blocks, so it runs in the default executor"""

    def __init__(self, rate: int = 190):
        super().__init__("pyttsx3")
        self.rate = rate
        self.engine = None
        self._init_failed = pyttsx3 is None

    def _ensure_engine(self):
        if self.engine is None and not self._init_failed:
            try:
                self.engine = pyttsx3.init()
                self.engine.setProperty('rate', self.rate)
            except Exception as e:
                logger.error(f"Failed to initialize pyttsx3 engine: {e}")
                self._init_failed = True
        return self.engine

    @property
    def available(self) -> bool:
        return self._ensure_engine() is not None

    async def synthesize(self, text: str) -> bytes:
        if not self.available:
            raise TTSError("TTS engine not initialized")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._synth_blocking, text)

    def _synth_blocking(self, text: str) -> bytes:
        with tempfile.NamedTemporaryFile(suffix='.wav', delete=False) as tmp:
            name = tmp.name
        try:
            self.engine.save_to_file(text, name)
            self.engine.runAndWait()
            with open(name, 'rb') as f:
                return f.read()
        except Exception as e:
            logger.error(f"Error synthesizing text with pyttsx3: {e}")
            raise TTSError() from e
        finally:
            try:
                os.unlink(name)
            except OSError:
                pass

    async def aclose(self) -> None:
        if self.engine:
            self.engine.stop()


def build_tts(settings: Settings) -> Optional[TTSEngine]:
    if settings.tts_engine == "none":
        return None
    if settings.tts_engine == "elevenlabs":
        if settings.elevenlabs_api_key:
            return ElevenLabsTTS(settings)
        logger.warning("ELEVENLABS_API_KEY not set; falling back to pyttsx3")
    return Pyttsx3TTS()
