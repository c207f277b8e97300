"""Loudness normalization for synthesized speech.

Each channel is scaled to a target RMS level, then passed through a tanh
soft limiter so boosted peaks bend toward full scale instead of clipping.
"""

from __future__ import annotations

import numpy as np

from speech_provider.audio.buffer import AudioBuffer
from speech_provider.config import NormalizationParams


def rms(samples: np.ndarray) -> float:
    """Root mean square of *samples* (0.0 for an empty array)."""
    if samples.size == 0:
        return 0.0
    x = samples.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(x * x)))


def soft_limit(samples: np.ndarray, threshold: float = 0.8) -> np.ndarray:
    """Compress magnitudes above *threshold* toward 1.0, preserving sign.

    ``|s| > T`` maps to ``T + (1 - T) * tanh((|s| - T) / (1 - T))``.
    """
    if not 0.0 < threshold < 1.0:
        raise ValueError(f"threshold must be in (0, 1), got {threshold}")
    out = samples.astype(np.float64, copy=True)
    mag = np.abs(out)
    over = mag > threshold
    headroom = 1.0 - threshold
    out[over] = np.sign(out[over]) * (
        threshold + headroom * np.tanh((mag[over] - threshold) / headroom)
    )
    # float rounding at the tanh asymptote
    np.clip(out, -1.0, 1.0, out=out)
    return out


def normalize(
    buffer: AudioBuffer,
    target_rms: float | None = None,
    params: NormalizationParams | None = None,
) -> AudioBuffer:
    """Return a new buffer with every channel scaled to *target_rms*.

    Silent channels (RMS 0) keep unit gain.  The input buffer is untouched.
    """
    params = params or NormalizationParams()
    target = params.target_rms if target_rms is None else target_rms
    if target <= 0:
        raise ValueError(f"target_rms must be positive, got {target}")

    out = np.empty(buffer.channels.shape, dtype=np.float32)
    for i, channel in enumerate(buffer.channels):
        level = rms(channel)
        gain = target / level if level > 0 else 1.0
        out[i] = soft_limit(channel.astype(np.float64) * gain, params.limiter_threshold)
    return buffer.with_channels(out)
