"""Dynamics stages for the playback signal chain.

The compressor is a feed-forward design: a linked peak detector (loudest
channel per frame) feeds a soft-knee static curve, and the resulting gain
reduction is smoothed with separate attack and release time constants.  A
limiter is the same stage with a hard knee and short time constants.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from speech_provider.audio.buffer import AudioBuffer
from speech_provider.config import CompressorSettings, NormalizationParams

logger = logging.getLogger(__name__)

_MIN_DB = -120.0


def _to_db(x: np.ndarray) -> np.ndarray:
    return 20.0 * np.log10(np.maximum(x, 10 ** (_MIN_DB / 20.0)))


def _time_coefficient(seconds: float, sample_rate: int) -> float:
    if seconds <= 0:
        return 0.0
    return math.exp(-1.0 / (seconds * sample_rate))


class DynamicsCompressor:
    """Downward compressor with soft knee and attack/release smoothing."""

    def __init__(self, settings: CompressorSettings | None = None):
        self.settings = settings or CompressorSettings()

    def static_gain_db(self, level_db: np.ndarray) -> np.ndarray:
        """Gain (dB, <= 0) the static curve applies at each input level."""
        s = self.settings
        over = level_db - s.threshold_db
        slope = 1.0 / s.ratio - 1.0
        gain = np.zeros_like(level_db)
        if s.knee_db > 0:
            half = s.knee_db / 2.0
            in_knee = np.abs(over) <= half
            gain[in_knee] = slope * (over[in_knee] + half) ** 2 / (2.0 * s.knee_db)
            above = over > half
        else:
            above = over > 0
        gain[above] = slope * over[above]
        return gain

    def process(self, samples: np.ndarray, sample_rate: int) -> np.ndarray:
        """Return compressed ``(channels, length)`` samples."""
        if samples.shape[-1] == 0:
            return samples.astype(np.float64, copy=True)
        detector = np.max(np.abs(samples), axis=0)
        target = self.static_gain_db(_to_db(detector))
        smoothed = self._smooth(
            target,
            _time_coefficient(self.settings.attack, sample_rate),
            _time_coefficient(self.settings.release, sample_rate),
        )
        return samples * (10.0 ** (smoothed / 20.0))

    @staticmethod
    def _smooth(target: np.ndarray, attack: float, release: float) -> np.ndarray:
        out = np.empty_like(target)
        state = 0.0
        for i, g in enumerate(target.tolist()):
            coeff = attack if g < state else release
            state = coeff * state + (1.0 - coeff) * g
            out[i] = state
        return out


class GainStage:
    """Fixed linear gain."""

    def __init__(self, gain: float = 0.9):
        self.gain = gain

    def process(self, samples: np.ndarray, sample_rate: int) -> np.ndarray:
        return samples * self.gain


class SignalChain:
    """Ordered list of stages, each mapping samples → samples."""

    def __init__(self, stages: list | None = None):
        self.stages = list(stages or [])

    @classmethod
    def from_params(cls, params: NormalizationParams | None = None) -> SignalChain:
        """Compressor → limiter → output gain."""
        params = params or NormalizationParams()
        return cls([
            DynamicsCompressor(params.compressor),
            DynamicsCompressor(params.limiter),
            GainStage(params.output_gain),
        ])

    def process(self, buffer: AudioBuffer) -> AudioBuffer:
        data = buffer.channels.astype(np.float64)
        for stage in self.stages:
            data = stage.process(data, buffer.sample_rate)
        logger.debug(
            "Signal chain processed %d frames through %d stage(s)",
            buffer.length, len(self.stages),
        )
        return buffer.with_channels(data)
