"""Local energy-based voice activity detection."""
import time
from typing import Callable, Optional

import numpy as np

from voicebridge.services.audio.codec import rms


class VoiceActivityDetector:
    """
    Tracks caller speech energy and decides when a turn is over.

    A frame whose RMS exceeds ``threshold`` counts as speech. The caller's turn
    is over once speech has been heard since the last finalized turn, audio
    has been forwarded, no response is pending, and ``silence_ms`` has passed
    since the last speech frame.
    """

    def __init__(
        self,
        threshold: float = 500.0,
        silence_ms: int = 700,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.silence_seconds = silence_ms / 1000.0
        self.clock = clock
        self.last_speech_at: Optional[float] = None
        self.last_energy = 0.0

    def process(self, samples: np.ndarray) -> bool:
        """Update from one decoded inbound frame. Returns True if it contained speech."""
        self.last_energy = rms(samples)
        if self.last_energy > self.threshold:
            self.last_speech_at = self.clock()
            return True
        return False

    def silence_elapsed(self) -> Optional[float]:
        """Seconds since the last speech frame, or None if no speech since the last turn."""
        if self.last_speech_at is None:
            return None
        return self.clock() - self.last_speech_at

    def should_finalize(self, audio_since_last_turn: bool, awaiting_response: bool) -> bool:
        if not audio_since_last_turn or awaiting_response:
            return False
        elapsed = self.silence_elapsed()
        return elapsed is not None and elapsed > self.silence_seconds

    def reset_turn(self) -> None:
        """Forget speech heard so far; called once a turn is finalized."""
        self.last_speech_at = None
