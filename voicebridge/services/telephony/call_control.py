"""Twilio REST call control used for the spoken fallback."""
import asyncio
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from voicebridge.core.config import Settings

logger = logging.getLogger(__name__)


def build_goodbye_twiml(message: str) -> str:
    """TwiML that speaks a message and hangs up."""
    response = VoiceResponse()
    response.say(message, voice="Polly.Joanna-Neural")
    response.hangup()
    return str(response)


class CallControl:
    """Redirects a live call to new TwiML through the Twilio REST API."""

    def __init__(self, config: Settings, client: Optional[Client] = None):
        self.config = config
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(
            self.config.twilio_account_sid and self.config.twilio_auth_token
        )

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.config.twilio_account_sid, self.config.twilio_auth_token)
        return self._client

    async def speak_and_hangup(self, call_sid: Optional[str], message: str) -> bool:
        """
        Replace the call's TwiML with an apology and a hangup.

        Returns:
            True if Twilio accepted the update
        """
        if not call_sid:
            logger.error("[CALL CONTROL] Cannot issue fallback: call SID unknown")
            return False
        if not self.configured:
            logger.error(
                f"[CALL CONTROL] Cannot issue fallback: Twilio credentials not set - CallSid: {call_sid}"
            )
            return False

        twiml = build_goodbye_twiml(message)
        try:
            await asyncio.to_thread(self.client.calls(call_sid).update, twiml=twiml)
        except (TwilioException, OSError) as e:
            logger.error(
                f"[CALL CONTROL] Fallback update failed - CallSid: {call_sid}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return False

        logger.info(f"[CALL CONTROL] Fallback issued - CallSid: {call_sid}")
        return True
