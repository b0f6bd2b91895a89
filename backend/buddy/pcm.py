"""PCM codec for the live session: float32 capture frames <-> base64 int16 LE"""
from __future__ import annotations
import base64
import binascii
import io
import wave
from dataclasses import dataclass
from typing import Union

import numpy as np

from .errors import DecodeError

CAPTURE_SAMPLE_RATE = 16000
PLAYBACK_SAMPLE_RATE = 24000
BYTES_PER_SAMPLE = 2
INT16_SCALE = 32768.0


def pcm_mime(sample_rate: int) -> str:
    return f"audio/pcm;rate={sample_rate}"


@dataclass(frozen=True)
class PcmBlob:
    data: str  # base64
    mime_type: str

    def raw(self) -> bytes:
        return base64.b64decode(self.data)


@dataclass
class AudioChunk:
    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate)


def resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Linear-interpolation resample; identity when the rates match."""
    if source_rate == target_rate or samples.size == 0:
        return samples.astype(np.float32, copy=False)
    n_out = max(1, int(round(samples.size * target_rate / float(source_rate))))
    src_t = np.arange(samples.size, dtype=np.float64) / source_rate
    dst_t = np.arange(n_out, dtype=np.float64) / target_rate
    return np.interp(dst_t, src_t, samples.astype(np.float64)).astype(np.float32)


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    quantized = np.clip(np.round(clipped * INT16_SCALE), -32768, 32767)
    return quantized.astype("<i2").tobytes()


def pcm16_to_float32(pcm: bytes) -> np.ndarray:
    if not pcm:
        return np.zeros(0, dtype=np.float32)
    return np.frombuffer(pcm, dtype="<i2").astype(np.float32) / INT16_SCALE


def samples_from_float32_bytes(raw: bytes) -> np.ndarray:
    """Client capture frames arrive as little-endian float32 sample buffers."""
    if len(raw) % 4:
        raise DecodeError(f"capture frame length {len(raw)} is not a multiple of 4")
    return np.frombuffer(raw, dtype="<f4").astype(np.float32)


def encode_frame(samples: np.ndarray, source_rate: int = CAPTURE_SAMPLE_RATE,
                 wire_rate: int = CAPTURE_SAMPLE_RATE) -> PcmBlob:
    """One captured frame -> one realtime-input blob."""
    data = resample(np.asarray(samples, dtype=np.float32).reshape(-1), source_rate, wire_rate)
    pcm = float32_to_pcm16(data)
    return PcmBlob(data=base64.b64encode(pcm).decode("ascii"), mime_type=pcm_mime(wire_rate))


def decode_chunk(payload: Union[str, bytes], source_rate: int = PLAYBACK_SAMPLE_RATE,
                 target_rate: int = PLAYBACK_SAMPLE_RATE) -> AudioChunk:
    """Inbound audio (base64 text or raw bytes) -> playback-ready chunk."""
    if isinstance(payload, str):
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"invalid base64 audio: {e}") from e
    else:
        raw = bytes(payload)
    if not raw:
        raise DecodeError("empty audio payload")
    if len(raw) % BYTES_PER_SAMPLE:
        raise DecodeError(f"odd PCM byte length {len(raw)}")
    samples = resample(pcm16_to_float32(raw), source_rate, target_rate)
    return AudioChunk(samples=samples, sample_rate=target_rate)


def rate_from_mime(mime_type: str | None, default: int = PLAYBACK_SAMPLE_RATE) -> int:
    # "audio/pcm;rate=24000"
    if not mime_type:
        return default
    for part in mime_type.split(";"):
        key, _, value = part.strip().partition("=")
        if key == "rate" and value.isdigit():
            return int(value)
    return default


def to_wav_bytes(samples: np.ndarray, sample_rate: int) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(BYTES_PER_SAMPLE)
        w.setframerate(sample_rate)
        w.writeframes(float32_to_pcm16(samples))
    return buf.getvalue()
