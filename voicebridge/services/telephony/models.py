"""Twilio Media Streams message models."""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class StreamMessage(BaseModel):
    """Base for Twilio messages: camelCase on the wire, unknown fields ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StartPayload(StreamMessage):
    stream_sid: str = Field(alias="streamSid")
    call_sid: Optional[str] = Field(None, alias="callSid")
    account_sid: Optional[str] = Field(None, alias="accountSid")
    custom_parameters: Dict[str, str] = Field(default_factory=dict, alias="customParameters")
    media_format: Dict[str, Any] = Field(default_factory=dict, alias="mediaFormat")


class MediaPayload(StreamMessage):
    payload: str
    track: Optional[str] = None
    chunk: Optional[str] = None
    timestamp: Optional[str] = None


class MarkPayload(StreamMessage):
    name: str


class DtmfPayload(StreamMessage):
    digit: str
    track: Optional[str] = None


class TelephonyEvent(StreamMessage):
    """One inbound Media Streams message (connected, start, media, mark, dtmf, stop)."""

    event: str
    stream_sid: Optional[str] = Field(None, alias="streamSid")
    sequence_number: Optional[str] = Field(None, alias="sequenceNumber")
    start: Optional[StartPayload] = None
    media: Optional[MediaPayload] = None
    mark: Optional[MarkPayload] = None
    dtmf: Optional[DtmfPayload] = None
    stop: Optional[Dict[str, Any]] = None


class CallMetadata(BaseModel):
    """Who called whom, taken from the start event for post-call side effects."""

    stream_sid: str
    call_sid: Optional[str] = None
    caller: Optional[str] = None
    callee: Optional[str] = None

    @classmethod
    def from_start(cls, start: StartPayload) -> "CallMetadata":
        params = start.custom_parameters
        return cls(
            stream_sid=start.stream_sid,
            call_sid=params.get("callSid") or start.call_sid,
            caller=params.get("from") or None,
            callee=params.get("to") or None,
        )
