"""Request/response fallback when the live session is not used"""
from __future__ import annotations
import asyncio
import logging
from typing import List, Optional

from google import genai
from google.genai import types

from .config import Settings
from .errors import BackendError
from .persona import SYSTEM_INSTRUCTION, safety_settings

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(self, settings: Settings, client: Optional[genai.Client] = None,
                 system_instruction: str = SYSTEM_INSTRUCTION):
        self.settings = settings
        self._client = client
        self.system_instruction = system_instruction

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.require_api_key())
        return self._client

    def _config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=self.system_instruction,
            safety_settings=safety_settings(self.settings.safety_threshold),
        )

    async def _generate(self, parts: List[types.Part]) -> str:
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.settings.chat_model,
                    contents=[types.Content(role="user", parts=parts)],
                    config=self._config(),
                ),
                timeout=self.settings.chat_timeout_s,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Gemini timed out after {self.settings.chat_timeout_s}s")
            raise BackendError() from e
        except Exception as e:
            logger.error(f"Gemini Error: {e}")
            raise BackendError() from e
        text = response.text
        if not text:
            raise BackendError("No reply")
        return text

    async def reply(self, text: str) -> str:
        return await self._generate([types.Part(text=text)])

    async def reply_audio(self, data: bytes, mime_type: str = "audio/wav") -> str:
        """Single-request path for a recorded clip."""
        if not data:
            raise BackendError("Empty audio clip")
        return await self._generate([types.Part.from_bytes(data=data, mime_type=mime_type)])
