"""speech_provider.voice: utterances and the ElevenLabs synthesis client."""

from speech_provider.voice.base import Utterance
from speech_provider.voice.elevenlabs import (
    ElevenLabsAPIError,
    ElevenLabsClient,
    ElevenLabsError,
    ElevenLabsResponseError,
    ElevenLabsUtterance,
)
from speech_provider.voice.schema import ElevenLabsVoiceData

__all__ = [
    "Utterance",
    "ElevenLabsAPIError",
    "ElevenLabsClient",
    "ElevenLabsError",
    "ElevenLabsResponseError",
    "ElevenLabsUtterance",
    "ElevenLabsVoiceData",
]
