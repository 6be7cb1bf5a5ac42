"""Real-time pacing of outbound telephony audio."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from voicebridge.services.audio.codec import ULAW_SILENCE

logger = logging.getLogger(__name__)


class OutboundPacer:
    """
    Drains a byte queue into fixed-size frames at playback rate.

    The realtime model produces audio in bursts, faster or slower than it
    plays. Twilio expects a steady 20 ms cadence, so every tick takes exactly
    one frame off the queue and short frames are padded with encoded silence.
    """

    def __init__(
        self,
        send_frame: Callable[[bytes], Awaitable[None]],
        is_open: Callable[[], bool],
        frame_size: int = 160,
        interval: float = 0.02,
        silence_byte: int = ULAW_SILENCE,
        name: str = "",
    ):
        self.send_frame = send_frame
        self.is_open = is_open
        self.frame_size = frame_size
        self.interval = interval
        self.silence_byte = silence_byte
        self.name = name
        self._buffer = bytearray()
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self.frames_sent = 0
        self.frames_dropped = 0

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, data: bytes) -> None:
        """Append encoded audio to the outbound queue."""
        if self._stopped or not data:
            return
        self._buffer.extend(data)

    def clear(self) -> int:
        """Discard everything queued. Returns the number of bytes dropped."""
        dropped = len(self._buffer)
        self._buffer.clear()
        return dropped

    def next_frame(self) -> Optional[bytes]:
        """Take one frame off the queue, padded with silence; None when empty."""
        if not self._buffer:
            return None
        frame = bytes(self._buffer[: self.frame_size])
        del self._buffer[: self.frame_size]
        if len(frame) < self.frame_size:
            frame += bytes([self.silence_byte]) * (self.frame_size - len(frame))
        return frame

    async def tick(self) -> bool:
        """Emit at most one frame. Returns True if a frame was sent."""
        if self._stopped:
            return False
        frame = self.next_frame()
        if frame is None:
            return False
        if not self.is_open():
            # Never hold audio for a socket that is gone
            self.frames_dropped += 1
            return False
        await self.send_frame(frame)
        self.frames_sent += 1
        return True

    def start(self) -> None:
        if self._stopped or self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"pacer-{self.name}")

    def stop(self) -> None:
        """Stop ticking immediately and drop anything still queued."""
        self._stopped = True
        dropped = self.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if dropped:
            logger.debug(f"[PACER] Dropped {dropped} queued bytes on stop - Stream: {self.name}")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        try:
            while not self._stopped:
                await self.tick()
                deadline += self.interval
                delay = deadline - loop.time()
                if delay < -self.interval:
                    # Fell behind (event loop stall); resync instead of bursting
                    deadline = loop.time()
                    delay = 0
                await asyncio.sleep(max(delay, 0))
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(
                f"[PACER] Send loop failed - Stream: {self.name}, Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
