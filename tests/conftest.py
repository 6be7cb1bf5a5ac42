"""Shared test fixtures and configuration."""
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "test-sid")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+1234567890")
os.environ.setdefault("BUSINESS_NAME", "Test Heating")

from voicebridge.main import app
from voicebridge.core.config import Settings
from voicebridge.core.dependencies import (
    get_call_control,
    get_client_factory,
    get_notifier,
    get_rate_limiter,
    get_settings,
)
from voicebridge.services.audio.codec import pcm16_to_ulaw, samples_to_pcm16_bytes
from voicebridge.services.call_session.bridge import CallBridge
from voicebridge.services.telephony.session import TelephonySession
from tests.helpers import FakeClock, FakeRealtimeClient, FakeWebSocket, tone


@pytest.fixture
def test_settings():
    """Override settings for testing."""
    return Settings(
        openai_api_key="test-key",
        twilio_account_sid="test-sid",
        twilio_auth_token="test-token",
        twilio_phone_number="+1234567890",
        summary_sms_to="+15558675309",
        public_hostname="",
        business_name="Test Heating",
        greeting_enabled=False,
        ai_input_encoding="pcm16",
        ai_output_encoding="pcm16",
        ai_sample_rate=24000,
        vad_rms_threshold=500.0,
        vad_silence_ms=700,
        # Tests drive turn detection by hand
        vad_poll_interval_ms=60000,
        rate_limit_max_calls=0,
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def speech_frame():
    """One 20 ms mu-law frame well above the VAD threshold."""
    return pcm16_to_ulaw(tone(8000, 160))


@pytest.fixture
def silence_frame():
    return bytes([0xFF]) * 160


@pytest.fixture
def ai_chunk():
    """Build 20 ms of 24 kHz PCM16 agent audio at a given amplitude."""
    def _chunk(amplitude: int = 4000) -> bytes:
        return samples_to_pcm16_bytes(tone(amplitude, 480, rate=24000))
    return _chunk


@pytest.fixture
def mock_call_control():
    """Mock Twilio call control."""
    call_control = Mock()
    call_control.speak_and_hangup = AsyncMock(return_value=True)
    return call_control


@pytest.fixture
def mock_notifier():
    """Mock SMS notifier."""
    notifier = Mock()
    notifier.send_call_summary = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
async def make_bridge(test_settings, mock_call_control, mock_notifier, fake_clock):
    """Build a CallBridge wired to fakes; returns a namespace with every collaborator."""
    bridges = []

    def _make(frames=None, client_factory=None, rate_limiter=None, **overrides):
        config = test_settings.model_copy(update=overrides)
        websocket = FakeWebSocket(frames)
        telephony = TelephonySession(websocket)
        clients = []

        def _factory(cfg, listener, name=""):
            client = FakeRealtimeClient(cfg, listener, name=name)
            clients.append(client)
            return client

        bridge = CallBridge(
            telephony,
            config,
            call_control=mock_call_control,
            notifier=mock_notifier,
            rate_limiter=rate_limiter,
            client_factory=client_factory or _factory,
            clock=fake_clock,
        )
        bridges.append(bridge)
        return SimpleNamespace(
            bridge=bridge,
            websocket=websocket,
            telephony=telephony,
            clients=clients,
            call_control=mock_call_control,
            notifier=mock_notifier,
            config=config,
        )

    yield _make

    # Stop background timers left running by a test
    for bridge in bridges:
        await bridge.shutdown("test teardown")
        if bridge._client_task is not None and not bridge._client_task.done():
            bridge._client_task.cancel()


@pytest.fixture
def test_client(test_settings, mock_call_control, mock_notifier):
    """Create FastAPI test client with overrides."""
    clients = []

    def _factory(cfg, listener, name=""):
        client = FakeRealtimeClient(cfg, listener, name=name)
        clients.append(client)
        return client

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_call_control] = lambda: mock_call_control
    app.dependency_overrides[get_notifier] = lambda: mock_notifier
    app.dependency_overrides[get_rate_limiter] = lambda: None
    app.dependency_overrides[get_client_factory] = lambda: _factory

    client = TestClient(app)
    client.realtime_clients = clients

    yield client

    # Clear overrides
    app.dependency_overrides.clear()
