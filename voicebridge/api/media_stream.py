"""Twilio Media Streams WebSocket endpoint."""
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, WebSocket

from voicebridge.core.config import Settings
from voicebridge.core.dependencies import (
    get_call_control,
    get_client_factory,
    get_notifier,
    get_rate_limiter,
    get_settings,
)
from voicebridge.services.call_session.bridge import CallBridge
from voicebridge.services.call_session.rate_limit import CallerRateLimiter
from voicebridge.services.notifications.sms import SmsNotifier
from voicebridge.services.realtime.client import RealtimeClient
from voicebridge.services.telephony.call_control import CallControl
from voicebridge.services.telephony.session import TelephonySession

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/media-stream")
async def media_stream(
    websocket: WebSocket,
    config: Settings = Depends(get_settings),
    call_control: CallControl = Depends(get_call_control),
    notifier: SmsNotifier = Depends(get_notifier),
    rate_limiter: Optional[CallerRateLimiter] = Depends(get_rate_limiter),
    client_factory: Callable[..., RealtimeClient] = Depends(get_client_factory),
):
    """Bridge one Twilio media stream to the realtime agent."""
    await websocket.accept()
    logger.info(
        f"[MEDIA STREAM] Connection accepted - "
        f"Client: {websocket.client.host if websocket.client else 'unknown'}"
    )

    bridge = CallBridge(
        TelephonySession(websocket),
        config,
        call_control=call_control,
        notifier=notifier,
        rate_limiter=rate_limiter,
        client_factory=client_factory,
    )
    await bridge.run()
    logger.info(f"[MEDIA STREAM] Connection finished - Stream: {bridge.name}")
