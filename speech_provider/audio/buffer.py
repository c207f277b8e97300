"""Decoded audio buffers and payload decoding."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)


class AudioError(Exception):
    """Base error for audio processing and playback."""


class AudioDecodeError(AudioError):
    """Raised when a synthesized payload cannot be decoded."""


class PlaybackError(AudioError):
    """Raised when the output device cannot be opened or written."""


@dataclass(frozen=True, eq=False)
class AudioBuffer:
    """Float PCM audio, one row per channel, samples nominally in [-1, 1].

    The sample array is copied on construction and made read-only, so a
    buffer never changes once built; processing always returns a new one.
    """

    channels: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        data = np.array(self.channels, dtype=np.float32, copy=True, ndmin=2)
        if data.ndim != 2:
            raise ValueError(f"channels must be 2-D (channels, length), got shape {data.shape}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        data.setflags(write=False)
        object.__setattr__(self, "channels", data)

    @property
    def n_channels(self) -> int:
        return self.channels.shape[0]

    @property
    def length(self) -> int:
        return self.channels.shape[1]

    @property
    def duration(self) -> float:
        return self.length / self.sample_rate

    def with_channels(self, channels: np.ndarray) -> AudioBuffer:
        """Return a buffer with the same sample rate and new sample data."""
        return AudioBuffer(channels=channels, sample_rate=self.sample_rate)

    def to_pcm16(self) -> bytes:
        """Interleaved little-endian 16-bit PCM for the output device."""
        clipped = np.clip(self.channels, -1.0, 1.0)
        return (clipped.T * 32767.0).astype("<i2").tobytes()


def decode_audio(payload: bytes, output_format: str | None = None) -> AudioBuffer:
    """Decode a synthesized payload into an :class:`AudioBuffer`.

    ``output_format`` follows the provider naming (``mp3_44100_128``,
    ``pcm_24000``...).  Raw ``pcm_<rate>`` payloads are headerless mono
    16-bit little-endian; anything else is handed to libsndfile.
    """
    if not payload:
        raise AudioDecodeError("Empty audio payload")
    if output_format and output_format.startswith("pcm_"):
        return _decode_pcm16(payload, _format_rate(output_format))
    try:
        data, rate = sf.read(io.BytesIO(payload), dtype="float32", always_2d=True)
    except (RuntimeError, TypeError) as exc:
        raise AudioDecodeError(f"Cannot decode audio payload ({len(payload)} bytes): {exc}") from exc
    logger.debug("Decoded %d frames at %dHz, %d channel(s)", data.shape[0], rate, data.shape[1])
    return AudioBuffer(channels=data.T, sample_rate=int(rate))


def _decode_pcm16(payload: bytes, sample_rate: int) -> AudioBuffer:
    if len(payload) % 2:
        raise AudioDecodeError(f"Odd-length 16-bit PCM payload ({len(payload)} bytes)")
    samples = np.frombuffer(payload, dtype="<i2").astype(np.float32) / 32768.0
    return AudioBuffer(channels=samples[np.newaxis, :], sample_rate=sample_rate)


def _format_rate(output_format: str) -> int:
    try:
        return int(output_format.split("_")[1])
    except (IndexError, ValueError) as exc:
        raise AudioDecodeError(f"Unrecognised output format '{output_format}'") from exc
