"""Conversion between encoded audio payloads and float PCM buffers.

Decoding goes through pydub. WAV payloads are read natively; other containers (MP3,
OGG, ...) need ffmpeg on the PATH.
"""

import io

import numpy as np
from pydub import AudioSegment

_SAMPLE_DTYPES = {1: np.int8, 2: np.int16, 4: np.int32}


class AudioDecodeError(Exception):
    """Raised when a payload cannot be decoded to PCM."""


class PcmBuffer:
    """Float32 PCM samples shaped ``(frames, channels)`` in the range [-1, 1]."""

    def __init__(self, samples: np.ndarray, sample_rate: int) -> None:
        if samples.ndim != 2:
            raise ValueError("samples must be shaped (frames, channels)")
        self.samples = samples
        self.sample_rate = sample_rate

    @property
    def frames(self) -> int:
        return self.samples.shape[0]

    @property
    def channels(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate

    @classmethod
    def silence(cls, duration: float, sample_rate: int = 24000, channels: int = 1) -> "PcmBuffer":
        return cls(np.zeros((int(round(duration * sample_rate)), channels), dtype=np.float32), sample_rate)

    def to_segment(self) -> AudioSegment:
        ints = (np.clip(self.samples, -1.0, 1.0) * 32767.0).astype(np.int16)
        return AudioSegment(data=ints.tobytes(), sample_width=2, frame_rate=self.sample_rate, channels=self.channels)


def sniff_format(payload: bytes) -> str | None:
    """Guess the container format from the payload's magic bytes."""
    if payload[:4] == b"RIFF" and payload[8:12] == b"WAVE":
        return "wav"
    if payload[:4] == b"OggS":
        return "ogg"
    if payload[:4] == b"fLaC":
        return "flac"
    if payload[:3] == b"ID3" or (len(payload) > 1 and payload[0] == 0xFF and payload[1] & 0xE0 == 0xE0):
        return "mp3"
    return None


def segment_to_pcm(segment: AudioSegment) -> PcmBuffer:
    dtype = _SAMPLE_DTYPES.get(segment.sample_width)
    if dtype is None:
        segment = segment.set_sample_width(2)
        dtype = np.int16
    raw = np.frombuffer(segment.raw_data, dtype=dtype).astype(np.float32)
    scale = float(1 << (8 * segment.sample_width - 1))
    return PcmBuffer((raw / scale).reshape(-1, segment.channels), segment.frame_rate)


def decode_audio(payload: bytes, sample_rate: int | None = None, channels: int | None = None) -> PcmBuffer:
    """Decode an encoded payload, converting it to the requested rate and channel count.

    Args:
        payload: Encoded audio (WAV, MP3, OGG, ...)
        sample_rate: Target sample rate, None keeps the payload's own rate
        channels: Target channel count, None keeps the payload's own layout

    Returns:
        PcmBuffer: The decoded samples

    Raises:
        AudioDecodeError: If the payload is empty or cannot be decoded
    """
    if not payload:
        raise AudioDecodeError("empty payload")
    try:
        segment = AudioSegment.from_file(io.BytesIO(payload), format=sniff_format(payload))
        if sample_rate and segment.frame_rate != sample_rate:
            segment = segment.set_frame_rate(sample_rate)
        if channels and segment.channels != channels:
            segment = segment.set_channels(channels)
    except Exception as e:
        raise AudioDecodeError(f"{type(e).__name__}: {e}") from e
    return segment_to_pcm(segment)


def probe_duration(payload: bytes) -> float:
    """Duration of an encoded payload in seconds."""
    return decode_audio(payload).duration


def encode_audio(buffer: PcmBuffer, audio_format: str = "wav", bitrate: str | None = None) -> bytes:
    """Encode a PCM buffer as 16-bit WAV, or any format ffmpeg can write (e.g. mp3)."""
    out = io.BytesIO()
    segment = buffer.to_segment()
    if audio_format == "wav":
        segment.export(out, format="wav")
    else:
        segment.export(out, format=audio_format, bitrate=bitrate)
    return out.getvalue()
