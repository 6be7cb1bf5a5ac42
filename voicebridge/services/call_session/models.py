"""Call session models."""
import time
from collections import deque
from enum import Enum
from typing import Deque, List, Optional

from pydantic import BaseModel

from voicebridge.services.telephony.models import CallMetadata


class CallState(str, Enum):
    """Call session lifecycle. Transitions only move forward."""

    AWAITING_START = "awaiting_start"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


_ORDER = [CallState.AWAITING_START, CallState.ACTIVE, CallState.CLOSING, CallState.CLOSED]


class CallTranscript(BaseModel):
    """Finished utterances of both parties, in order."""

    turns: List[str] = []

    def add_transcript_turn(self, role: str, text: str) -> None:
        """Add a turn to the transcript."""
        self.turns.append(f"{role}: {text}")

    def get_transcript_text(self) -> str:
        """Get full transcript as text."""
        return "\n".join(self.turns)


class CallSession:
    """Per-call state owned by one bridge."""

    def __init__(self, connection_id: str = ""):
        self.connection_id = connection_id
        self.state = CallState.AWAITING_START
        self.stream_sid: Optional[str] = None
        self.metadata: Optional[CallMetadata] = None
        self.transcript = CallTranscript()
        # Encoded telephony frames produced before the stream SID is known
        self.pending_outbound_audio: Deque[bytes] = deque()
        self.audio_since_last_turn = False
        self.awaiting_ai_response = False
        self.greeted = False
        self.telephony_started = False
        self.ai_ready = False
        self.turns_finalized = 0
        self.started_at = time.monotonic()

    @property
    def session_id(self) -> Optional[str]:
        return self.stream_sid

    @property
    def terminating(self) -> bool:
        return self.state in (CallState.CLOSING, CallState.CLOSED)

    def advance(self, new_state: CallState) -> bool:
        """Move forward to ``new_state``. Returns False for a backwards or repeated transition."""
        if _ORDER.index(new_state) <= _ORDER.index(self.state):
            return False
        self.state = new_state
        return True

    def duration(self) -> float:
        return time.monotonic() - self.started_at
