"""Post-call SMS summary."""
import asyncio
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from voicebridge.core.config import Settings
from voicebridge.services.call_session.models import CallTranscript
from voicebridge.services.telephony.models import CallMetadata

logger = logging.getLogger(__name__)

# Twilio concatenates long messages; keep summaries to a few segments
MAX_SMS_LENGTH = 1200


def build_call_summary(
    metadata: Optional[CallMetadata], transcript: CallTranscript, duration_seconds: float
) -> str:
    """Build the text of the summary message."""
    caller = (metadata.caller if metadata else None) or "Unknown"
    call_sid = (metadata.call_sid if metadata else None) or "Unknown"
    header = (
        f"New call\n\n"
        f"From: {caller}\n"
        f"Call: {call_sid}\n"
        f"Duration: {int(duration_seconds)}s\n\n"
    )
    body = transcript.get_transcript_text() or "No transcript captured."
    summary = header + body
    if len(summary) > MAX_SMS_LENGTH:
        summary = summary[: MAX_SMS_LENGTH - 3] + "..."
    return summary


class SmsNotifier:
    """Sends the call summary SMS once a call ends."""

    def __init__(self, config: Settings, client: Optional[Client] = None):
        self.config = config
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(
            self.config.summary_sms_to
            and self.config.twilio_phone_number
            and (self._client is not None or (self.config.twilio_account_sid and self.config.twilio_auth_token))
        )

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.config.twilio_account_sid, self.config.twilio_auth_token)
        return self._client

    async def send_call_summary(
        self,
        metadata: Optional[CallMetadata],
        transcript: CallTranscript,
        duration_seconds: float = 0.0,
    ) -> bool:
        if not self.enabled:
            logger.debug("[NOTIFY] SMS summary disabled")
            return False

        body = build_call_summary(metadata, transcript, duration_seconds)
        try:
            await asyncio.to_thread(
                self.client.messages.create,
                body=body,
                from_=self.config.twilio_phone_number,
                to=self.config.summary_sms_to,
            )
        except (TwilioException, OSError) as e:
            logger.error(
                f"[NOTIFY] Summary SMS failed - CallSid: {metadata.call_sid if metadata else None}, "
                f"Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return False

        logger.info(
            f"[NOTIFY] Summary SMS sent to {self.config.summary_sms_to} - "
            f"CallSid: {metadata.call_sid if metadata else None}"
        )
        return True
