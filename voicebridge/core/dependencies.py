"""FastAPI dependencies."""
from functools import lru_cache
from typing import Callable, Optional

from voicebridge.core.config import Settings, settings
from voicebridge.services.call_session.rate_limit import CallerRateLimiter
from voicebridge.services.notifications.sms import SmsNotifier
from voicebridge.services.realtime.client import RealtimeClient
from voicebridge.services.telephony.call_control import CallControl


def get_settings() -> Settings:
    """Get application settings."""
    return settings


def get_call_control() -> CallControl:
    """Get Twilio call control for fallback announcements."""
    return CallControl(settings)


def get_notifier() -> SmsNotifier:
    """Get post-call SMS notifier."""
    return SmsNotifier(settings)


@lru_cache
def get_rate_limiter() -> Optional[CallerRateLimiter]:
    """Get the process-wide caller rate limiter, or None when disabled."""
    if settings.rate_limit_max_calls <= 0:
        return None
    return CallerRateLimiter(
        max_calls=settings.rate_limit_max_calls,
        window_seconds=settings.rate_limit_window_seconds,
    )


def get_client_factory() -> Callable[..., RealtimeClient]:
    """Get the factory used to open each call's realtime session."""
    return RealtimeClient
