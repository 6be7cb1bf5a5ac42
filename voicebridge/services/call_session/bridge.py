"""Call bridge: one Twilio media stream relayed to one OpenAI Realtime session."""
import asyncio
import base64
import binascii
import logging
import time
from typing import Callable, Optional

from voicebridge.core.config import Settings
from voicebridge.services.audio.codec import (
    AudioFormat,
    decode_audio,
    encode_audio,
    resample_linear,
    transcode,
)
from voicebridge.services.audio.pacer import OutboundPacer
from voicebridge.services.audio.vad import VoiceActivityDetector
from voicebridge.services.call_session.models import CallSession, CallState
from voicebridge.services.call_session.rate_limit import CallerRateLimiter
from voicebridge.services.notifications.sms import SmsNotifier
from voicebridge.services.realtime.client import RealtimeClient, RealtimeListener, ai_audio_format
from voicebridge.services.telephony.call_control import CallControl
from voicebridge.services.telephony.models import CallMetadata, TelephonyEvent
from voicebridge.services.telephony.session import TelephonySession

logger = logging.getLogger(__name__)

# Time allowed for the realtime client to wind down after the call ends
CLIENT_SHUTDOWN_TIMEOUT = 5.0


class CallBridge(RealtimeListener):
    """
    Session controller for exactly one call.

    The call is ACTIVE once Twilio has sent ``start`` and the realtime session
    is configured. Agent audio produced before that is held in
    ``session.pending_outbound_audio`` and handed to the pacer in order when the
    call becomes ACTIVE. Whichever side ends first moves the call to CLOSING;
    cleanup runs once no matter how many termination signals arrive.
    """

    def __init__(
        self,
        telephony: TelephonySession,
        config: Settings,
        call_control: CallControl,
        notifier: Optional[SmsNotifier] = None,
        rate_limiter: Optional[CallerRateLimiter] = None,
        client_factory: Callable[..., RealtimeClient] = RealtimeClient,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.telephony = telephony
        self.config = config
        self.call_control = call_control
        self.notifier = notifier
        self.rate_limiter = rate_limiter
        self.client_factory = client_factory
        self.session = CallSession()

        self.telephony_format = AudioFormat(
            encoding="g711_ulaw", sample_rate=config.telephony_sample_rate
        )
        self.ai_input_format = ai_audio_format(config.ai_input_encoding, config.ai_sample_rate)
        self.ai_output_format = ai_audio_format(config.ai_output_encoding, config.ai_sample_rate)

        self.pacer = OutboundPacer(
            send_frame=self.telephony.send_media,
            is_open=self._can_send_audio,
            frame_size=config.telephony_sample_rate * config.frame_duration_ms // 1000,
            interval=config.frame_duration_ms / 1000.0,
        )
        self.vad = VoiceActivityDetector(
            threshold=config.vad_rms_threshold,
            silence_ms=config.vad_silence_ms,
            clock=clock,
        )
        self.client: Optional[RealtimeClient] = None
        self._client_task: Optional[asyncio.Task] = None
        self._vad_task: Optional[asyncio.Task] = None
        self.fallback_issued = False

    @property
    def name(self) -> str:
        return self.session.stream_sid or "pending"

    def _can_send_audio(self) -> bool:
        return self.session.state == CallState.ACTIVE and self.telephony.is_open

    async def run(self) -> None:
        """Relay the call until either side ends it."""
        try:
            async for event in self.telephony.events():
                await self.handle_telephony_event(event)
                if self.session.terminating:
                    break
        except RuntimeError as e:
            # Starlette raises once our own close has been sent
            if not self.session.terminating:
                logger.error(f"[BRIDGE] Telephony socket error - Stream: {self.name}, Error: {e}")
        except Exception as e:
            logger.error(
                f"[BRIDGE] Unexpected error in call loop - Stream: {self.name}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
        finally:
            await self.shutdown("telephony stream ended")
            await self._wait_for_client()

    async def handle_telephony_event(self, event: TelephonyEvent) -> None:
        """Dispatch one inbound Media Streams event."""
        if event.event == "start":
            await self.handle_start(event)
        elif event.event == "media":
            await self.handle_media(event)
        elif event.event == "stop":
            await self.handle_stop(event)
        elif event.event == "mark":
            logger.debug(f"[BRIDGE] Mark {event.mark.name if event.mark else ''} - Stream: {self.name}")
        elif event.event == "dtmf":
            logger.info(f"[BRIDGE] DTMF {event.dtmf.digit if event.dtmf else ''} - Stream: {self.name}")
        elif event.event == "connected":
            logger.debug("[BRIDGE] Media stream connected")

    async def handle_start(self, event: TelephonyEvent) -> None:
        if self.session.telephony_started or self.session.terminating:
            logger.warning(f"[BRIDGE] Ignoring repeated start - Stream: {self.name}")
            return
        if event.start is None:
            logger.warning("[BRIDGE] Start event without start payload, ignoring")
            return

        metadata = CallMetadata.from_start(event.start)
        self.session.telephony_started = True
        self.session.stream_sid = metadata.stream_sid
        self.session.metadata = metadata
        self.pacer.name = metadata.stream_sid
        logger.info(
            f"[BRIDGE] Stream started - Stream: {metadata.stream_sid}, CallSid: {metadata.call_sid}, "
            f"From: {metadata.caller}, To: {metadata.callee}"
        )

        if self.rate_limiter and metadata.caller and not self.rate_limiter.allow(metadata.caller):
            await self.shutdown("caller rate limited", fallback_message=self.config.rate_limited_message)
            return

        self.client = self.client_factory(self.config, self, name=metadata.stream_sid)
        self._client_task = asyncio.create_task(
            self.client.run(), name=f"realtime-{metadata.stream_sid}"
        )
        self._vad_task = asyncio.create_task(self._vad_loop(), name=f"vad-{metadata.stream_sid}")
        self._maybe_activate()

    async def handle_media(self, event: TelephonyEvent) -> None:
        """Caller audio: decode, feed the VAD, forward to the realtime session."""
        if self.session.terminating or event.media is None:
            return
        if self.client is None or not self.client.accepts_audio:
            return

        try:
            encoded = base64.b64decode(event.media.payload, validate=True)
        except (binascii.Error, ValueError):
            logger.warning(f"[BRIDGE] Dropping undecodable media payload - Stream: {self.name}")
            return

        samples = decode_audio(encoded, self.telephony_format)
        self.vad.process(samples)
        converted = resample_linear(
            samples, self.telephony_format.sample_rate, self.ai_input_format.sample_rate
        )
        if await self.client.append_audio(encode_audio(converted, self.ai_input_format)):
            self.session.audio_since_last_turn = True

    async def handle_stop(self, event: Optional[TelephonyEvent] = None) -> None:
        if self.session.terminating:
            return
        logger.info(f"[BRIDGE] Stream stopped by Twilio - Stream: {self.name}")
        await self._flush_caller_audio()
        await self.shutdown("telephony stop")

    async def on_ai_ready(self) -> None:
        self.session.ai_ready = True
        logger.info(f"[BRIDGE] Realtime session ready - Stream: {self.name}")
        await self._request_greeting()
        self._maybe_activate()

    async def on_ai_audio(self, audio: bytes) -> None:
        if self.session.terminating:
            return
        encoded = transcode(audio, self.ai_output_format, self.telephony_format)
        if not encoded:
            return
        if self.session.state == CallState.ACTIVE:
            self.pacer.enqueue(encoded)
        else:
            self.session.pending_outbound_audio.append(encoded)

    async def on_response_done(self) -> None:
        self.session.awaiting_ai_response = False

    async def on_transcript(self, role: str, text: str) -> None:
        self.session.transcript.add_transcript_turn(role, text)
        logger.info(f"[BRIDGE] {role}: '{text[:200]}' - Stream: {self.name}")

    async def on_ai_failure(self, reason: str) -> None:
        await self.shutdown(f"realtime failure: {reason}", fallback_message=self.config.fallback_message)

    async def check_turn(self) -> bool:
        """One VAD poll: finalize the caller's turn if they have gone quiet."""
        if self.session.state != CallState.ACTIVE or self.client is None:
            return False
        if not self.vad.should_finalize(
            self.session.audio_since_last_turn, self.session.awaiting_ai_response
        ):
            return False
        return await self.finalize_turn()

    async def finalize_turn(self) -> bool:
        """Commit the caller's audio and request a response; single-flight."""
        if self.client is None or self.session.awaiting_ai_response or self.client.response_in_flight:
            return False

        last_speech_at = self.vad.last_speech_at
        self.session.awaiting_ai_response = True
        self.session.audio_since_last_turn = False
        self.vad.reset_turn()
        if not await self.client.request_response(commit=True):
            # Keep the turn pending so the next poll can retry
            self.session.awaiting_ai_response = False
            self.session.audio_since_last_turn = True
            self.vad.last_speech_at = last_speech_at
            return False

        self.session.turns_finalized += 1
        logger.info(
            f"[BRIDGE] Caller turn finalized - Stream: {self.name}, Turn: {self.session.turns_finalized}"
        )
        return True

    async def shutdown(self, reason: str, fallback_message: Optional[str] = None) -> None:
        """
        Tear the call down. Only the first caller does any work.

        Timers stop before anything is awaited, so no frame is sent after
        teardown begins.
        """
        if self.session.terminating:
            return
        self.session.advance(CallState.CLOSING)
        logger.info(f"[BRIDGE] Closing call - Stream: {self.name}, Reason: {reason}")

        if self._vad_task is not None and self._vad_task is not asyncio.current_task():
            self._vad_task.cancel()
        self.pacer.stop()
        self.session.pending_outbound_audio.clear()

        if fallback_message and not self.fallback_issued:
            self.fallback_issued = True
            call_sid = self.session.metadata.call_sid if self.session.metadata else None
            await self.call_control.speak_and_hangup(call_sid, fallback_message)

        if self.client is not None:
            await self.client.close()
        await self.telephony.close()

        if self.notifier is not None and self.session.telephony_started:
            await self.notifier.send_call_summary(
                self.session.metadata, self.session.transcript, self.session.duration()
            )

        self.session.advance(CallState.CLOSED)
        logger.info(
            f"[BRIDGE] Call closed - Stream: {self.name}, Turns: {self.session.turns_finalized}, "
            f"Frames sent: {self.pacer.frames_sent}"
        )

    def _maybe_activate(self) -> None:
        if not (self.session.telephony_started and self.session.ai_ready):
            return
        if not self.session.advance(CallState.ACTIVE):
            return

        pending = self.session.pending_outbound_audio
        if pending:
            logger.info(f"[BRIDGE] Flushing {len(pending)} buffered audio chunks - Stream: {self.name}")
        while pending:
            self.pacer.enqueue(pending.popleft())
        self.pacer.start()
        logger.info(f"[BRIDGE] Call active - Stream: {self.name}")

    async def _request_greeting(self) -> None:
        if (
            not self.config.greeting_enabled
            or self.session.greeted
            or self.session.state != CallState.AWAITING_START
            or self.client is None
        ):
            return
        self.session.greeted = True
        self.session.awaiting_ai_response = True
        if not await self.client.request_response(
            commit=False, instructions=self.config.greeting_instructions
        ):
            self.session.awaiting_ai_response = False

    async def _flush_caller_audio(self) -> None:
        """Commit caller audio that has not been finalized so the last words reach the session."""
        if self.client is None or not self.session.audio_since_last_turn:
            return
        if await self.client.commit_audio():
            self.session.audio_since_last_turn = False
            logger.info(f"[BRIDGE] Flushed final caller audio - Stream: {self.name}")

    async def _vad_loop(self) -> None:
        interval = self.config.vad_poll_interval_ms / 1000.0
        try:
            while not self.session.terminating:
                await asyncio.sleep(interval)
                await self.check_turn()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(
                f"[BRIDGE] VAD loop failed - Stream: {self.name}, Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            await self.shutdown("turn detection failure", fallback_message=self.config.fallback_message)

    async def _wait_for_client(self) -> None:
        task = self._client_task
        if task is None or task is asyncio.current_task():
            return
        done, _ = await asyncio.wait({task}, timeout=CLIENT_SHUTDOWN_TIMEOUT)
        if not done:
            logger.warning(f"[BRIDGE] Realtime client did not stop in time, cancelling - Stream: {self.name}")
            task.cancel()
            if self.client is not None:
                await self.client.close()
