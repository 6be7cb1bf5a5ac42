"""Audio codec helpers for the Twilio <-> OpenAI Realtime bridge.

Twilio Media Streams: G.711 mu-law, 8 kHz mono, base64-encoded
OpenAI Realtime:      PCM 16-bit little-endian mono (24 kHz by default)
                      or G.711 mu-law at 8 kHz

Every conversion goes through linear PCM:

    mu-law 8k  --decode-->  int16 8k  --resample-->  int16 24k  (caller -> AI)
    int16 24k  --resample-->  int16 8k  --encode-->  mu-law 8k  (AI -> caller)
"""
from typing import Literal

import numpy as np
from pydantic import BaseModel, ConfigDict

ULAW_BIAS = 0x84
ULAW_CLIP = 32635
# Encoded value of a zero sample. Twilio pads with this, not 0x00.
ULAW_SILENCE = 0xFF

AudioEncoding = Literal["pcm16", "g711_ulaw"]


class AudioFormat(BaseModel):
    """Encoding and sample rate of one direction of an audio stream."""

    model_config = ConfigDict(frozen=True)

    encoding: AudioEncoding
    sample_rate: int

    @property
    def bytes_per_sample(self) -> int:
        return 2 if self.encoding == "pcm16" else 1


TELEPHONY_FORMAT = AudioFormat(encoding="g711_ulaw", sample_rate=8000)


def decode_ulaw_sample(value: int) -> int:
    """Expand one mu-law byte to a signed 16-bit sample."""
    value = ~value & 0xFF
    sign = value & 0x80
    exponent = (value >> 4) & 0x07
    mantissa = value & 0x0F
    sample = (((mantissa << 3) + ULAW_BIAS) << exponent) - ULAW_BIAS
    return -sample if sign else sample


def encode_ulaw_sample(sample: int) -> int:
    """Compress one signed 16-bit sample to a mu-law byte, clipping at the law's maximum."""
    sign = 0x80 if sample < 0 else 0
    magnitude = min(abs(int(sample)), ULAW_CLIP) + ULAW_BIAS
    exponent = int(_EXPONENT_LUT[magnitude >> 7])
    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    return ~(sign | (exponent << 4) | mantissa) & 0xFF


# floor(log2(i)) for the top byte of a biased magnitude, 0 for i == 0
_EXPONENT_LUT = np.array(
    [0 if i == 0 else int(i).bit_length() - 1 for i in range(256)], dtype=np.int32
)
_DECODE_TABLE = np.array([decode_ulaw_sample(b) for b in range(256)], dtype=np.int16)


def ulaw_to_pcm16(data: bytes) -> np.ndarray:
    """Decode a mu-law byte string to an int16 sample array."""
    if not data:
        return np.zeros(0, dtype=np.int16)
    return _DECODE_TABLE[np.frombuffer(data, dtype=np.uint8)]


def pcm16_to_ulaw(samples: np.ndarray) -> bytes:
    """Encode int16 samples to mu-law bytes."""
    if len(samples) == 0:
        return b""
    values = np.asarray(samples, dtype=np.int32)
    sign = np.where(values < 0, 0x80, 0).astype(np.int32)
    magnitude = np.minimum(np.abs(values), ULAW_CLIP) + ULAW_BIAS
    exponent = _EXPONENT_LUT[magnitude >> 7]
    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    encoded = ~(sign | (exponent << 4) | mantissa) & 0xFF
    return encoded.astype(np.uint8).tobytes()


def pcm16_bytes_to_samples(data: bytes) -> np.ndarray:
    """Interpret little-endian 16-bit PCM bytes as samples; a trailing odd byte is dropped."""
    usable = len(data) - (len(data) % 2)
    if usable <= 0:
        return np.zeros(0, dtype=np.int16)
    return np.frombuffer(data[:usable], dtype="<i2").astype(np.int16)


def samples_to_pcm16_bytes(samples: np.ndarray) -> bytes:
    return np.asarray(samples, dtype="<i2").tobytes()


def resample_linear(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """
    Resample int16 audio with linear interpolation.

    Output length is floor(len(samples) * dst_rate / src_rate). The right-hand
    neighbour of the last input sample is clamped to the last valid index.
    Equal rates return the input untouched.

    Args:
        samples: int16 sample array
        src_rate: Input sample rate in Hz
        dst_rate: Output sample rate in Hz

    Returns:
        int16 sample array at dst_rate
    """
    if src_rate <= 0 or dst_rate <= 0:
        raise ValueError(f"Sample rates must be positive: {src_rate} -> {dst_rate}")
    if src_rate == dst_rate:
        return samples

    count = len(samples)
    out_count = count * dst_rate // src_rate
    if count == 0 or out_count == 0:
        return np.zeros(0, dtype=np.int16)

    positions = np.arange(out_count, dtype=np.float64) * (src_rate / dst_rate)
    left = np.minimum(np.floor(positions).astype(np.int64), count - 1)
    right = np.minimum(left + 1, count - 1)
    fraction = positions - left

    source = np.asarray(samples, dtype=np.float64)
    interpolated = source[left] + (source[right] - source[left]) * fraction
    return np.clip(np.round(interpolated), -32768, 32767).astype(np.int16)


def rms(samples: np.ndarray) -> float:
    """Root-mean-square energy of int16 samples (0.0 for an empty frame)."""
    if len(samples) == 0:
        return 0.0
    values = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(values * values)))


def decode_audio(data: bytes, fmt: AudioFormat) -> np.ndarray:
    """Decode encoded bytes in the given format to int16 samples."""
    if fmt.encoding == "g711_ulaw":
        return ulaw_to_pcm16(data)
    return pcm16_bytes_to_samples(data)


def encode_audio(samples: np.ndarray, fmt: AudioFormat) -> bytes:
    """Encode int16 samples into the given format."""
    if fmt.encoding == "g711_ulaw":
        return pcm16_to_ulaw(samples)
    return samples_to_pcm16_bytes(samples)


def transcode(data: bytes, src: AudioFormat, dst: AudioFormat) -> bytes:
    """Convert audio bytes between formats, always via linear PCM."""
    samples = decode_audio(data, src)
    samples = resample_linear(samples, src.sample_rate, dst.sample_rate)
    return encode_audio(samples, dst)
