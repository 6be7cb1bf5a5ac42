"""Test doubles and Twilio frame builders shared by the unit tests."""
import asyncio
import base64
import json
from unittest.mock import AsyncMock

import numpy as np
from starlette.websockets import WebSocketState

from voicebridge.services.realtime.client import ACCEPTS_AUDIO, RealtimeState


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebSocket:
    """Stands in for a Starlette WebSocket on the Twilio side."""

    def __init__(self, frames=None):
        self.frames = list(frames or [])
        self.sent = []
        self.close_calls = 0
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.client = None

    async def iter_text(self):
        for frame in self.frames:
            yield frame

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.close_calls += 1
        self.application_state = WebSocketState.DISCONNECTED

    @property
    def media(self):
        return [message for message in self.sent if message["event"] == "media"]


class FakeRealtimeClient:
    """Realtime client double driven directly by the tests."""

    def __init__(self, config, listener, name=""):
        self.config = config
        self.listener = listener
        self.name = name
        self.state = RealtimeState.CONNECTING
        self.response_in_flight = False
        self.appended = []
        self.commits = 0
        self.requests = []
        self.run = AsyncMock()
        self.close = AsyncMock()

    @property
    def accepts_audio(self) -> bool:
        return self.state in ACCEPTS_AUDIO

    async def append_audio(self, audio: bytes) -> bool:
        if not self.accepts_audio:
            return False
        self.appended.append(audio)
        return True

    async def commit_audio(self) -> bool:
        self.commits += 1
        return True

    async def request_response(self, commit: bool = True, instructions=None) -> bool:
        if not self.accepts_audio or self.response_in_flight:
            return False
        self.response_in_flight = True
        self.requests.append({"commit": commit, "instructions": instructions})
        return True

    async def become_ready(self) -> None:
        self.state = RealtimeState.READY
        await self.listener.on_ai_ready()

    async def finish_response(self) -> None:
        self.response_in_flight = False
        await self.listener.on_response_done()


def start_frame(stream_sid="MZ0001", call_sid="CA0001", caller="+15550001111", callee="+15559990000"):
    """Raw Twilio start event."""
    return json.dumps(
        {
            "event": "start",
            "sequenceNumber": "1",
            "streamSid": stream_sid,
            "start": {
                "streamSid": stream_sid,
                "callSid": call_sid,
                "accountSid": "AC0001",
                "tracks": ["inbound"],
                "customParameters": {"callSid": call_sid, "from": caller, "to": callee},
                "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
            },
        }
    )


def media_frame(audio: bytes, stream_sid="MZ0001"):
    """Raw Twilio media event carrying mu-law audio."""
    return json.dumps(
        {
            "event": "media",
            "streamSid": stream_sid,
            "media": {
                "track": "inbound",
                "chunk": "1",
                "timestamp": "20",
                "payload": base64.b64encode(audio).decode("ascii"),
            },
        }
    )


def stop_frame(stream_sid="MZ0001"):
    return json.dumps({"event": "stop", "streamSid": stream_sid, "stop": {"callSid": "CA0001"}})


def tone(amplitude: int, count: int, rate: int = 8000, frequency: float = 440.0) -> np.ndarray:
    """Sine tone as int16 samples."""
    t = np.arange(count) / rate
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.int16)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


