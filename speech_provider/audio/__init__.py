"""speech_provider.audio: decoding, loudness normalization and playback.

Public re-exports for convenient import.
"""

from speech_provider.audio.buffer import (
    AudioBuffer,
    AudioDecodeError,
    AudioError,
    PlaybackError,
    decode_audio,
)
from speech_provider.audio.dynamics import DynamicsCompressor, GainStage, SignalChain
from speech_provider.audio.normalize import normalize, rms, soft_limit
from speech_provider.audio.playback import AlsaSink, AudioSink, PlaybackChain

__all__ = [
    "AudioBuffer",
    "AudioDecodeError",
    "AudioError",
    "PlaybackError",
    "decode_audio",
    "DynamicsCompressor",
    "GainStage",
    "SignalChain",
    "normalize",
    "rms",
    "soft_limit",
    "AlsaSink",
    "AudioSink",
    "PlaybackChain",
]
