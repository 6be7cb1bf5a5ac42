"""OpenAI Realtime session client."""
import asyncio
import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from voicebridge.core.config import Settings
from voicebridge.core.errors import BridgeError, ConfigurationError, RealtimeConnectionError
from voicebridge.services.audio.codec import AudioFormat
from voicebridge.services.realtime import events
from voicebridge.services.realtime.prompt import resolve_instructions

logger = logging.getLogger(__name__)


class RealtimeState(str, Enum):
    """Lifecycle of the realtime connection."""

    CONNECTING = "connecting"
    READY = "ready"
    STREAMING = "streaming"
    RESPONDING = "responding"
    CLOSED = "closed"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


ACCEPTS_AUDIO = {RealtimeState.READY, RealtimeState.STREAMING, RealtimeState.RESPONDING}


class RealtimeListener(ABC):
    """Receiver of translated realtime events."""

    @abstractmethod
    async def on_ai_ready(self) -> None:
        """Session is configured and accepts audio."""
        pass

    @abstractmethod
    async def on_ai_audio(self, audio: bytes) -> None:
        """A chunk of agent audio in the negotiated output format."""
        pass

    @abstractmethod
    async def on_response_done(self) -> None:
        """The in-flight response finished."""
        pass

    @abstractmethod
    async def on_transcript(self, role: str, text: str) -> None:
        """A finished caller or agent utterance."""
        pass

    @abstractmethod
    async def on_ai_failure(self, reason: str) -> None:
        """The connection failed and the session cannot continue."""
        pass


def ai_audio_format(encoding: str, sample_rate: int) -> AudioFormat:
    # The realtime API only speaks mu-law at 8 kHz
    if encoding == "g711_ulaw":
        return AudioFormat(encoding="g711_ulaw", sample_rate=8000)
    return AudioFormat(encoding="pcm16", sample_rate=sample_rate)


def _transcript_text(event: Dict[str, Any]) -> str:
    text = event.get("transcript")
    return text.strip() if isinstance(text, str) else ""


class RealtimeClient:
    """
    Owns one call's connection to the OpenAI Realtime API.

    CONNECTING -> READY -> (STREAMING <-> RESPONDING)* -> CLOSED, with ERROR
    reachable from anywhere. Errors are never retried: a reconnect would lose
    the conversation, so the listener is told and the call is wound down.
    """

    def __init__(
        self,
        config: Settings,
        listener: RealtimeListener,
        name: str = "",
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.config = config
        self.listener = listener
        self.name = name
        self._connect = connect
        self._ws = None
        self.state = RealtimeState.CONNECTING
        self.response_in_flight = False
        self._failure_reported = False
        self.input_format = ai_audio_format(config.ai_input_encoding, config.ai_sample_rate)
        self.output_format = ai_audio_format(config.ai_output_encoding, config.ai_sample_rate)

    @property
    def url(self) -> str:
        return f"{self.config.openai_realtime_url}?model={self.config.openai_realtime_model}"

    @property
    def accepts_audio(self) -> bool:
        return self.state in ACCEPTS_AUDIO

    async def connect(self) -> bool:
        """
        Open the socket and send the session configuration.

        Returns:
            False if the client was closed before the session came up
        """
        if self.state == RealtimeState.CLOSED:
            return False
        if not self.config.openai_api_key:
            self.state = RealtimeState.ERROR
            raise ConfigurationError("OPENAI_API_KEY is not set")

        headers = {
            "Authorization": f"Bearer {self.config.openai_api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        logger.info(f"[REALTIME] Connecting to {self.url} - Stream: {self.name}")
        try:
            ws = await self._connect(
                self.url,
                additional_headers=headers,
                max_size=16 * 1024 * 1024,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self.state = RealtimeState.ERROR
            raise RealtimeConnectionError(f"{type(e).__name__}: {str(e)}") from e

        if self.state == RealtimeState.CLOSED:
            # The call ended while the handshake was in flight
            logger.info(f"[REALTIME] Closed during connect, dropping connection - Stream: {self.name}")
            await self._close_socket(ws)
            return False
        self._ws = ws

        configured = await self._send(
            events.session_update(
                instructions=resolve_instructions(self.config),
                voice=self.config.openai_voice,
                input_format=self.input_format,
                output_format=self.output_format,
                server_vad_advisory=self.config.ai_server_vad_advisory,
                silence_ms=self.config.vad_silence_ms,
            )
        )
        if self.state == RealtimeState.CLOSED:
            return False
        if not configured:
            self.state = RealtimeState.ERROR
            raise RealtimeConnectionError("connection closed before session configuration")

        self.state = RealtimeState.READY
        logger.info(f"[REALTIME] Session configured - Stream: {self.name}")
        await self.listener.on_ai_ready()
        return True

    async def run(self) -> None:
        """Connect, then pump inbound events until the connection ends."""
        try:
            if not await self.connect():
                return
        except BridgeError as e:
            await self._fail(str(e))
            return

        ws = self._ws
        if ws is None:
            return
        try:
            async for message in ws:
                await self.handle_message(message)
        except ConnectionClosed as e:
            await self._fail(f"connection lost: {e}")
            return
        except Exception as e:
            logger.error(
                f"[REALTIME] Event loop failed - Stream: {self.name}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            await self._fail(f"unexpected error: {type(e).__name__}")
            return

        await self._fail("connection closed by server")

    async def handle_message(self, message: Any) -> None:
        """Parse one raw message; malformed JSON is logged and dropped."""
        try:
            event = json.loads(message)
        except (TypeError, ValueError):
            logger.warning(f"[REALTIME] Dropping malformed message - Stream: {self.name}")
            return
        if not isinstance(event, dict):
            logger.warning(f"[REALTIME] Dropping non-object message - Stream: {self.name}")
            return
        await self.handle_event(event)

    async def handle_event(self, event: Dict[str, Any]) -> None:
        """Translate one inbound event into listener calls. Badly typed fields are dropped."""
        event_type = event.get("type")
        if not isinstance(event_type, str):
            logger.warning(f"[REALTIME] Dropping event without a type - Stream: {self.name}")
            return

        if event_type in events.AUDIO_DELTA_EVENTS:
            delta = event.get("delta")
            if not isinstance(delta, str):
                logger.warning(f"[REALTIME] Dropping audio delta without payload - Stream: {self.name}")
                return
            try:
                audio = base64.b64decode(delta, validate=True)
            except (binascii.Error, TypeError, ValueError):
                logger.warning(f"[REALTIME] Dropping undecodable audio delta - Stream: {self.name}")
                return
            if audio:
                await self.listener.on_ai_audio(audio)

        elif event_type == events.RESPONSE_DONE_EVENT:
            self.response_in_flight = False
            if self.state == RealtimeState.RESPONDING:
                self.state = RealtimeState.READY
            response = event.get("response")
            status = response.get("status", "unknown") if isinstance(response, dict) else "unknown"
            logger.info(f"[REALTIME] Response done - Stream: {self.name}, Status: {status}")
            await self.listener.on_response_done()

        elif event_type in events.AGENT_TRANSCRIPT_EVENTS:
            text = _transcript_text(event)
            if text:
                await self.listener.on_transcript("Agent", text)

        elif event_type == events.CALLER_TRANSCRIPT_EVENT:
            text = _transcript_text(event)
            if text:
                await self.listener.on_transcript("Caller", text)

        elif event_type in (events.SPEECH_STARTED_EVENT, events.SPEECH_STOPPED_EVENT):
            # Advisory only; the local VAD decides when a turn ends
            logger.debug(f"[REALTIME] {event_type} - Stream: {self.name}")

        elif event_type == events.ERROR_EVENT:
            error = event.get("error")
            if not isinstance(error, dict):
                error = {"message": str(error)} if error else {}
            code = str(error.get("code") or error.get("type") or "unknown")
            logger.error(
                f"[REALTIME] Server error - Stream: {self.name}, Code: {code}, "
                f"Message: {error.get('message', '')}"
            )
            if code in events.FATAL_ERROR_CODES:
                await self._fail(f"server error: {code}")

        elif event_type in events.SESSION_EVENTS:
            logger.debug(f"[REALTIME] {event_type} - Stream: {self.name}")

    async def append_audio(self, audio: bytes) -> bool:
        """Forward caller audio. Dropped (False) until the session is ready."""
        if not self.accepts_audio or not audio:
            return False
        sent = await self._send(events.input_audio_append(audio))
        if sent and self.state == RealtimeState.READY:
            self.state = RealtimeState.STREAMING
        return sent

    async def commit_audio(self) -> bool:
        """Close the input buffer without asking for a reply."""
        if not self.accepts_audio:
            return False
        return await self._send(events.input_audio_commit())

    async def request_response(self, commit: bool = True, instructions: Optional[str] = None) -> bool:
        """
        Finalize the caller's turn and ask for a reply.

        Only one response may be in flight; a second request is refused.
        """
        if not self.accepts_audio or self.response_in_flight:
            return False
        self.response_in_flight = True
        self.state = RealtimeState.RESPONDING
        if commit and not await self._send(events.input_audio_commit()):
            return False
        return await self._send(events.response_create(instructions))

    async def close(self) -> None:
        if self.state != RealtimeState.ERROR:
            self.state = RealtimeState.CLOSED
        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_socket(ws)

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"[REALTIME] Error while closing - Stream: {self.name}, Error: {e}")

    async def _send(self, event: Dict[str, Any]) -> bool:
        if self._ws is None:
            return False
        try:
            await self._ws.send(json.dumps(event))
            return True
        except ConnectionClosed as e:
            await self._fail(f"connection lost while sending {event.get('type')}: {e}")
            return False

    async def _fail(self, reason: str) -> None:
        if self._failure_reported or self.state == RealtimeState.CLOSED:
            return
        self._failure_reported = True
        self.state = RealtimeState.ERROR
        logger.error(f"[REALTIME] Session failed - Stream: {self.name}, Reason: {reason}")
        await self.listener.on_ai_failure(reason)
