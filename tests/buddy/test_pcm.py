import base64
import io
import wave

import numpy as np
import pytest

from backend.buddy.errors import DecodeError
from backend.buddy.pcm import (decode_chunk, encode_frame, rate_from_mime, resample,
                               samples_from_float32_bytes, to_wav_bytes)


def test_encode_then_decode_within_quantization_error():
    rng = np.random.default_rng(7)
    samples = rng.uniform(-1.0, 1.0, size=1000).astype(np.float32)
    blob = encode_frame(samples)
    assert blob.mime_type == "audio/pcm;rate=16000"
    chunk = decode_chunk(blob.data, source_rate=16000, target_rate=16000)
    assert chunk.frames == samples.size
    assert np.max(np.abs(chunk.samples - samples)) <= 1.0 / 32768 + 1e-6


def test_full_scale_is_clipped():
    blob = encode_frame(np.array([1.0, -1.0, 1.5, -2.0], dtype=np.float32))
    pcm = np.frombuffer(blob.raw(), dtype="<i2")
    assert pcm.tolist() == [32767, -32768, 32767, -32768]


def test_arbitrary_frame_lengths():
    for n in (1, 3, 4095, 4096, 4097):
        blob = encode_frame(np.zeros(n, dtype=np.float32))
        assert len(blob.raw()) == 2 * n


def test_encode_resamples_to_wire_rate():
    blob = encode_frame(np.zeros(4800, dtype=np.float32), source_rate=48000, wire_rate=16000)
    assert len(blob.raw()) == 2 * 1600
    assert blob.mime_type == "audio/pcm;rate=16000"


def test_decode_chunk_duration():
    pcm = np.zeros(2400, dtype="<i2").tobytes()
    chunk = decode_chunk(base64.b64encode(pcm).decode("ascii"))
    assert chunk.sample_rate == 24000
    assert chunk.duration == pytest.approx(0.1)


def test_decode_failures():
    with pytest.raises(DecodeError):
        decode_chunk("not base64 at all!!")
    with pytest.raises(DecodeError):
        decode_chunk(base64.b64encode(b"\x00\x01\x02").decode("ascii"))
    with pytest.raises(DecodeError):
        decode_chunk(b"")


def test_capture_bytes_must_be_float32():
    raw = np.array([0.25, -0.5], dtype="<f4").tobytes()
    assert samples_from_float32_bytes(raw).tolist() == [0.25, -0.5]
    with pytest.raises(DecodeError):
        samples_from_float32_bytes(raw[:-1])


def test_resample_length():
    out = resample(np.ones(1600, dtype=np.float32), 16000, 24000)
    assert out.size == 2400
    assert np.allclose(out, 1.0)


def test_rate_from_mime():
    assert rate_from_mime("audio/pcm;rate=16000") == 16000
    assert rate_from_mime("audio/pcm") == 24000
    assert rate_from_mime(None, 8000) == 8000


def test_wav_container():
    data = to_wav_bytes(np.zeros(160, dtype=np.float32), 16000)
    with wave.open(io.BytesIO(data), "rb") as w:
        assert w.getframerate() == 16000
        assert w.getnchannels() == 1
        assert w.getnframes() == 160
