"""Settings and session state enum"""
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError


class SessionState(str, Enum):
    IDLE = "IDLE"
    REQUESTING_PERMISSION = "REQUESTING_PERMISSION"
    OPENING = "OPENING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    ERROR = "ERROR"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    gemini_api_key: str = ""
    live_model: str = "gemini-2.5-flash-native-audio-preview-12-2025"
    chat_model: str = "gemini-flash-latest"
    voice_name: str = "Kore"
    response_modalities: List[str] = ["AUDIO"]
    safety_threshold: str = "BLOCK_NONE"
    chat_timeout_s: float = 30.0

    # Audio
    capture_sample_rate: int = 16000
    playback_sample_rate: int = 24000
    capture_buffer_size: int = 4096
    pending_frame_limit: int = 256
    max_frame_bytes: int = 256 * 1024
    clip_seconds: float = 4.0

    # TTS
    tts_engine: str = "elevenlabs"
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = "EXAVITQu4vr4xnSDxMaL"
    elevenlabs_model: str = "eleven_multilingual_v2"
    elevenlabs_stability: float = 0.4
    elevenlabs_similarity_boost: float = 0.8
    tts_timeout_s: float = 10.0

    history_path: str = "data/history.json"
    cors_origins: List[str] = ["*"]
    host: str = "0.0.0.0"
    port: int = 3001

    def validate_ranges(self) -> None:
        errs = []
        if self.capture_sample_rate not in (8000, 16000, 22050, 24000, 44100, 48000):
            errs.append(f"capture_sample_rate unsupported (got {self.capture_sample_rate})")
        if self.playback_sample_rate <= 0:
            errs.append(f"playback_sample_rate must be >0 (got {self.playback_sample_rate})")
        if self.pending_frame_limit < 1:
            errs.append("pending_frame_limit must be >=1")
        if not (0.5 <= self.clip_seconds <= 60):
            errs.append(f"clip_seconds must be 0.5-60 (got {self.clip_seconds})")
        if self.tts_engine not in ("elevenlabs", "pyttsx3", "none"):
            errs.append(f"tts_engine must be elevenlabs, pyttsx3 or none (got {self.tts_engine})")
        bad = [m for m in self.response_modalities if m.upper() not in ("AUDIO", "TEXT")]
        if not self.response_modalities or bad:
            errs.append(f"response_modalities must be AUDIO and/or TEXT (got {self.response_modalities})")
        if errs:
            raise ValueError("Configuration validation failed:\n" + "\n".join(errs))

    def require_api_key(self) -> str:
        if not self.gemini_api_key:
            raise ConfigError("API Key missing! Set GEMINI_API_KEY in .env")
        return self.gemini_api_key

    def as_dict(self) -> Dict[str, Any]:
        return {
            "live_model": self.live_model,
            "chat_model": self.chat_model,
            "voice_name": self.voice_name,
            "response_modalities": list(self.response_modalities),
            "capture_sample_rate": self.capture_sample_rate,
            "playback_sample_rate": self.playback_sample_rate,
            "capture_buffer_size": self.capture_buffer_size,
            "clip_seconds": self.clip_seconds,
            "tts_engine": self.tts_engine,
        }


def load_settings(**overrides: Any) -> Settings:
    cfg = Settings(**overrides)
    cfg.validate_ranges()
    return cfg
