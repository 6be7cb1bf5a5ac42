"""Twilio voice webhook endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import Response
from twilio.twiml.voice_response import Connect, VoiceResponse

from voicebridge.core.config import Settings
from voicebridge.core.dependencies import get_settings
from voicebridge.services.telephony.call_control import build_goodbye_twiml

router = APIRouter()
logger = logging.getLogger(__name__)

MEDIA_STREAM_PATH = "/media-stream"


def get_stream_host(request: Request, config: Settings) -> str:
    """
    Get the public host Twilio should open the media stream to.

    Uses PUBLIC_HOSTNAME if set (e.g., on Render), otherwise the Host header
    of the webhook request (works behind ngrok).
    """
    if config.public_hostname:
        host = config.public_hostname.strip()
        for prefix in ("https://", "http://", "wss://"):
            if host.startswith(prefix):
                host = host[len(prefix):]
        return host.rstrip("/")
    return request.headers.get("host") or request.url.netloc


def build_stream_twiml(
    stream_url: str,
    call_sid: Optional[str] = None,
    caller: Optional[str] = None,
    callee: Optional[str] = None,
) -> str:
    """
    Generate TwiML that connects the call to a bidirectional media stream.

    Call details travel as stream parameters so they arrive in the
    ``start`` event's customParameters.
    """
    response = VoiceResponse()
    connect = Connect()
    stream = connect.stream(url=stream_url)
    for name, value in (("callSid", call_sid), ("from", caller), ("to", callee)):
        if value:
            stream.parameter(name=name, value=value)
    response.append(connect)
    return str(response)


@router.post("/voice/incoming")
async def handle_incoming_call(
    request: Request,
    CallSid: Optional[str] = Form(None),
    From: Optional[str] = Form(None),
    To: Optional[str] = Form(None),
    config: Settings = Depends(get_settings),
):
    """
    Handle incoming call from Twilio.

    Answers with TwiML that opens the media stream to this service.
    """
    logger.info(
        f"[INCOMING CALL] Received incoming call webhook - CallSid: {CallSid}, "
        f"From: {From}, To: {To}"
    )

    try:
        stream_url = f"wss://{get_stream_host(request, config)}{MEDIA_STREAM_PATH}"
        twiml = build_stream_twiml(stream_url, call_sid=CallSid, caller=From, callee=To)
    except Exception as e:
        logger.error(
            f"[INCOMING CALL] Error building stream TwiML - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return Response(
            content=build_goodbye_twiml(config.fallback_message), media_type="application/xml"
        )

    logger.info(
        f"[INCOMING CALL] Connecting media stream - CallSid: {CallSid}, URL: {stream_url}"
    )
    return Response(content=twiml, media_type="application/xml")
