"""speech-provider: text-to-speech with a resilient response cache.

Synthesized audio is fetched through a best-effort cache and can be
loudness-normalized before playback.

Quickstart::

    from speech_provider import SpeechConfig
    from speech_provider.voice import ElevenLabsClient

    client = ElevenLabsClient.from_config(SpeechConfig.from_env())
    utterance = client.create_utterance("Hello there.", voice_id="21m00Tcm4TlvDq8ikWAM")
    utterance.onend = lambda: print("done")
    await utterance.start()
"""

from speech_provider.config import CompressorSettings, NormalizationParams, SpeechConfig

__version__ = "0.2.0"

__all__ = ["CompressorSettings", "NormalizationParams", "SpeechConfig", "__version__"]
