import pytest

from backend.buddy.config import Settings, load_settings
from backend.buddy.errors import ConfigError, BuddyError, error_frame


def test_defaults():
    s = Settings(gemini_api_key="k")
    assert s.capture_sample_rate == 16000
    assert s.playback_sample_rate == 24000
    assert s.response_modalities == ["AUDIO"]
    assert s.voice_name == "Kore"
    assert s.as_dict()["live_model"] == s.live_model


def test_validate_ranges_collects_every_problem():
    with pytest.raises(ValueError) as exc:
        load_settings(capture_sample_rate=12345, clip_seconds=0, tts_engine="say",
                      response_modalities=["VIDEO"])
    message = str(exc.value)
    for field in ("capture_sample_rate", "clip_seconds", "tts_engine", "response_modalities"):
        assert field in message


def test_missing_api_key():
    with pytest.raises(ConfigError) as exc:
        Settings(gemini_api_key="").require_api_key()
    assert exc.value.user_message.startswith("API Key missing!")
    assert Settings(gemini_api_key="abc").require_api_key() == "abc"


def test_error_frames():
    assert error_frame("DECODE_FAILURE", "x")["recoverable"] is True
    assert error_frame("TRANSPORT_ERROR", "x")["recoverable"] is False
    err = BuddyError()
    assert str(err) == err.user_message
