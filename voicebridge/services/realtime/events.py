"""OpenAI Realtime client events."""
import base64
from typing import Any, Dict, Optional

from voicebridge.services.audio.codec import AudioFormat

# Inbound event types. GA and beta protocol revisions name audio events differently.
AUDIO_DELTA_EVENTS = {"response.audio.delta", "response.output_audio.delta"}
AGENT_TRANSCRIPT_EVENTS = {
    "response.audio_transcript.done",
    "response.output_audio_transcript.done",
}
CALLER_TRANSCRIPT_EVENT = "conversation.item.input_audio_transcription.completed"
RESPONSE_DONE_EVENT = "response.done"
SPEECH_STARTED_EVENT = "input_audio_buffer.speech_started"
SPEECH_STOPPED_EVENT = "input_audio_buffer.speech_stopped"
ERROR_EVENT = "error"
SESSION_EVENTS = {"session.created", "session.updated"}

# Error codes after which the session cannot be used any more
FATAL_ERROR_CODES = {
    "invalid_api_key",
    "session_expired",
    "insufficient_quota",
    "model_not_found",
}


def session_update(
    instructions: str,
    voice: str,
    input_format: AudioFormat,
    output_format: AudioFormat,
    server_vad_advisory: bool = False,
    silence_ms: int = 700,
) -> Dict[str, Any]:
    """
    Build the one-time session configuration event.

    The format names carry the rate: ``pcm16`` is 24 kHz and ``g711_ulaw`` is
    8 kHz. Settings refuses any other pcm16 rate.

    Turn detection stays with the bridge's local VAD. With
    ``server_vad_advisory`` the server still reports speech start/stop, but
    never commits or answers on its own.
    """
    turn_detection: Optional[Dict[str, Any]] = None
    if server_vad_advisory:
        turn_detection = {
            "type": "server_vad",
            "silence_duration_ms": silence_ms,
            "create_response": False,
            "interrupt_response": False,
        }

    return {
        "type": "session.update",
        "session": {
            "modalities": ["audio", "text"],
            "instructions": instructions,
            "voice": voice,
            "input_audio_format": input_format.encoding,
            "output_audio_format": output_format.encoding,
            "input_audio_transcription": {"model": "whisper-1"},
            "turn_detection": turn_detection,
        },
    }


def input_audio_append(audio: bytes) -> Dict[str, Any]:
    return {
        "type": "input_audio_buffer.append",
        "audio": base64.b64encode(audio).decode("ascii"),
    }


def input_audio_commit() -> Dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def response_create(instructions: Optional[str] = None) -> Dict[str, Any]:
    event: Dict[str, Any] = {"type": "response.create"}
    if instructions:
        event["response"] = {"instructions": instructions}
    return event
