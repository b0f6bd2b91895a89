"""Gemini Live connector built on the google-genai SDK"""
from __future__ import annotations
import asyncio
import logging
from typing import Any, List, Optional

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosed

from .config import Settings
from .live import (AudioData, InboundEvent, InputTranscription, Interrupted, LiveCallbacks,
                   LiveConfig, ModelText, OutputTranscription, TurnComplete)
from .pcm import PcmBlob
from .persona import safety_settings

logger = logging.getLogger(__name__)


def build_connect_config(config: LiveConfig) -> types.LiveConnectConfig:
    kwargs: dict = {
        "response_modalities": [types.Modality(m) for m in config.response_modalities],
        "system_instruction": config.system_instruction,
    }
    if "AUDIO" in config.response_modalities:
        kwargs["speech_config"] = types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=config.voice_name)
            )
        )
        if config.output_transcription:
            kwargs["output_audio_transcription"] = types.AudioTranscriptionConfig()
    if config.input_transcription:
        kwargs["input_audio_transcription"] = types.AudioTranscriptionConfig()
    # Older SDK releases do not accept safety settings on live sessions.
    if "safety_settings" in types.LiveConnectConfig.model_fields:
        kwargs["safety_settings"] = safety_settings(config.safety_threshold)
    return types.LiveConnectConfig(**kwargs)


def parse_server_message(message: types.LiveServerMessage) -> List[InboundEvent]:
    """Flatten one server message into inbound events, in handling order."""
    content = message.server_content
    if content is None:
        return []
    events: List[InboundEvent] = []
    if content.input_transcription and content.input_transcription.text:
        events.append(InputTranscription(content.input_transcription.text))
    if content.output_transcription and content.output_transcription.text:
        events.append(OutputTranscription(content.output_transcription.text))
    if content.model_turn and content.model_turn.parts:
        for part in content.model_turn.parts:
            if part.inline_data and part.inline_data.data:
                events.append(AudioData(part.inline_data.data, part.inline_data.mime_type))
            elif part.text and not part.thought:
                events.append(ModelText(part.text))
    if content.interrupted:
        events.append(Interrupted())
    if content.turn_complete:
        events.append(TurnComplete())
    return events


class GeminiLiveHandle:
    def __init__(self, context_manager: Any, session: Any):
        self._cm = context_manager
        self._session = session
        self._receiver: Optional[asyncio.Task] = None
        self.closed = False

    async def send_realtime_input(self, blob: PcmBlob) -> None:
        if self.closed:
            return
        await self._session.send_realtime_input(audio=types.Blob(data=blob.raw(), mime_type=blob.mime_type))

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        receiver, self._receiver = self._receiver, None
        if receiver is not None and receiver is not asyncio.current_task():
            receiver.cancel()
        await self._cm.__aexit__(None, None, None)

    async def _receive(self, callbacks: LiveCallbacks) -> None:
        reason: Optional[str] = None
        try:
            # receive() stops after each turn_complete, so keep re-entering it
            while not self.closed:
                async for message in self._session.receive():
                    for event in parse_server_message(message):
                        await callbacks.on_message(event)
                    if message.go_away is not None:
                        logger.info(f"Server go_away, time left: {message.go_away.time_left}")
        except asyncio.CancelledError:
            return
        except ConnectionClosed as e:
            reason = e.rcvd.reason if e.rcvd is not None else None
        except Exception as e:
            if not self.closed:
                await callbacks.on_error(e)
            return
        if not self.closed:
            await callbacks.on_close(reason)


class GeminiLiveConnector:
    def __init__(self, settings: Settings, client: Optional[genai.Client] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.require_api_key())
        return self._client

    async def connect(self, config: LiveConfig, callbacks: LiveCallbacks) -> GeminiLiveHandle:
        cm = self.client.aio.live.connect(model=config.model, config=build_connect_config(config))
        session = await cm.__aenter__()
        handle = GeminiLiveHandle(cm, session)
        await callbacks.on_open()
        handle._receiver = asyncio.create_task(handle._receive(callbacks))
        return handle
