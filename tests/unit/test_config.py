"""Unit tests for settings validation."""
import pytest
from pydantic import ValidationError

from voicebridge.core.config import Settings


class TestAudioSettings:
    """Test the realtime audio format settings."""

    def test_pcm16_defaults_to_24khz(self):
        settings = Settings(openai_api_key="k")
        assert settings.ai_input_encoding == "pcm16"
        assert settings.ai_sample_rate == 24000

    @pytest.mark.parametrize("rate", [8000, 16000, 48000])
    def test_pcm16_rejects_other_rates(self, rate):
        """The realtime API's pcm16 audio is 24 kHz; any other rate would be mis-resampled."""
        with pytest.raises(ValidationError, match="ai_sample_rate must be 24000"):
            Settings(openai_api_key="k", ai_sample_rate=rate)

    def test_pcm16_on_one_side_still_checked(self):
        with pytest.raises(ValidationError):
            Settings(openai_api_key="k", ai_input_encoding="g711_ulaw", ai_sample_rate=16000)

    def test_ulaw_ignores_sample_rate(self):
        settings = Settings(
            openai_api_key="k",
            ai_input_encoding="g711_ulaw",
            ai_output_encoding="g711_ulaw",
            ai_sample_rate=16000,
        )
        assert settings.ai_sample_rate == 16000
