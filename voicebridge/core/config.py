"""Application configuration."""
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# The realtime API's pcm16 format is always 24 kHz mono
REALTIME_PCM16_SAMPLE_RATE = 24000


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI Realtime
    openai_api_key: str
    openai_realtime_url: str = "wss://api.openai.com/v1/realtime"
    openai_realtime_model: str = "gpt-4o-realtime-preview-2024-12-17"
    openai_voice: str = "verse"

    # Twilio (only needed for call control fallback and SMS summaries)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    summary_sms_to: str = ""

    # Public hostname Twilio connects the media stream to (e.g. Render/Railway host)
    public_hostname: str = ""

    # Agent behaviour
    business_name: str = "AC & Heating"
    agent_instructions: str = ""
    greeting_enabled: bool = True
    greeting_instructions: str = (
        "Greet the caller warmly, introduce yourself and ask how you can help today."
    )
    fallback_message: str = (
        "I'm sorry, we're having trouble connecting your call right now. "
        "Please call back in a few minutes. Goodbye."
    )
    rate_limited_message: str = (
        "I'm sorry, we can't take another call from this number right now. "
        "Please try again later. Goodbye."
    )

    # Audio
    telephony_sample_rate: int = 8000
    ai_input_encoding: Literal["pcm16", "g711_ulaw"] = "pcm16"
    ai_output_encoding: Literal["pcm16", "g711_ulaw"] = "pcm16"
    ai_sample_rate: int = 24000
    frame_duration_ms: int = 20

    # Turn taking (local VAD is authoritative)
    vad_rms_threshold: float = 500.0
    vad_silence_ms: int = 700
    vad_poll_interval_ms: int = 100
    ai_server_vad_advisory: bool = False

    # Per-caller rate limiting (0 disables)
    rate_limit_max_calls: int = 0
    rate_limit_window_seconds: int = 3600

    # Server
    host: str = "0.0.0.0"
    port: int = 10000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def check_ai_sample_rate(self) -> "Settings":
        """Reject a pcm16 rate the realtime API would not actually use."""
        uses_pcm16 = "pcm16" in (self.ai_input_encoding, self.ai_output_encoding)
        if uses_pcm16 and self.ai_sample_rate != REALTIME_PCM16_SAMPLE_RATE:
            raise ValueError(
                f"ai_sample_rate must be {REALTIME_PCM16_SAMPLE_RATE} for pcm16 audio, "
                f"got {self.ai_sample_rate}"
            )
        return self


settings = Settings()
