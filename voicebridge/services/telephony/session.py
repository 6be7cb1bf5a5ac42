"""Twilio Media Streams connection for one call."""
import base64
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from voicebridge.services.telephony.models import TelephonyEvent

logger = logging.getLogger(__name__)


class TelephonySession:
    """Parses inbound Media Streams frames and sends media back to the caller."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.stream_sid: Optional[str] = None
        self.frames_received = 0
        self.frames_dropped = 0

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def parse_frame(self, raw: str) -> Optional[TelephonyEvent]:
        """Parse one JSON frame. Malformed frames are logged and dropped."""
        try:
            event = TelephonyEvent.model_validate_json(raw)
        except ValidationError as e:
            self.frames_dropped += 1
            logger.warning(
                f"[TELEPHONY] Dropping malformed frame - Stream: {self.stream_sid}, "
                f"Errors: {e.error_count()}"
            )
            return None

        if event.event == "start" and event.start:
            self.stream_sid = event.start.stream_sid
        return event

    async def events(self) -> AsyncIterator[TelephonyEvent]:
        """Yield parsed events until the socket closes."""
        async for raw in self.websocket.iter_text():
            self.frames_received += 1
            event = self.parse_frame(raw)
            if event is not None:
                yield event

    async def send_media(self, audio: bytes) -> bool:
        """Send one encoded audio frame to the caller."""
        if self.stream_sid is None:
            return False
        return await self.send_json(
            {
                "event": "media",
                "streamSid": self.stream_sid,
                "media": {"payload": base64.b64encode(audio).decode("ascii")},
            }
        )

    async def send_json(self, message: Dict[str, Any]) -> bool:
        if not self.is_open:
            return False
        try:
            await self.websocket.send_text(json.dumps(message))
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug(f"[TELEPHONY] Send failed - Stream: {self.stream_sid}, Error: {e}")
            return False

    async def close(self) -> None:
        if not self.is_open:
            return
        try:
            await self.websocket.close()
        except (RuntimeError, OSError) as e:
            logger.debug(f"[TELEPHONY] Close failed - Stream: {self.stream_sid}, Error: {e}")
