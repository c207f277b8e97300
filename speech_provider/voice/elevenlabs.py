"""ElevenLabs remote synthesis through the response cache.

Voice lists and synthesized audio are both fetched via :class:`CachedFetch`,
so repeating a phrase with the same voice is served from the cache.  The
returned payload is decoded and played through a :class:`PlaybackChain`,
normalized when ``normalize_volume`` is set.
"""

from __future__ import annotations

import json
import logging
from typing import Callable

from speech_provider.audio.buffer import decode_audio
from speech_provider.audio.playback import AlsaSink, AudioSink, PlaybackChain
from speech_provider.cache.fetch import CacheOptions, CachedFetch
from speech_provider.cache.store import SQLiteCacheStore
from speech_provider.config import (
    DEFAULT_MAX_AGE,
    ELEVEN_LABS_BASE_URL,
    NormalizationParams,
    SpeechConfig,
)
from speech_provider.voice.base import Utterance
from speech_provider.voice.schema import (
    ElevenLabsVoiceData,
    check_objects_against_schema,
    log_distinct_property_values,
)

logger = logging.getLogger(__name__)

_PROPERTIES_OMITTED = ("name", "voice_id", "sharing", "voice_verification", "fine_tuning")


class ElevenLabsError(Exception):
    """Base error for ElevenLabs failures."""


class ElevenLabsAPIError(ElevenLabsError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ElevenLabsResponseError(ElevenLabsError):
    """Raised when a response body does not have the expected shape."""


class ElevenLabsClient:
    """Voice listing and speech synthesis against the ElevenLabs API."""

    name = "ElevenLabs"

    def __init__(
        self,
        api_key: str,
        base_url: str = ELEVEN_LABS_BASE_URL,
        *,
        fetcher: CachedFetch,
        model_id: str = "eleven_turbo_v2_5",
        output_format: str | None = None,
        cache_max_age: int | None = DEFAULT_MAX_AGE,
        validate_responses: bool = False,
        print_voice_properties: bool = False,
        normalize_volume: bool = False,
        params: NormalizationParams | None = None,
        sink_factory: Callable[[], AudioSink] | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.fetcher = fetcher
        self.model_id = model_id
        self.output_format = output_format
        self.cache_max_age = cache_max_age
        self.validate_responses = validate_responses
        self.print_voice_properties = print_voice_properties
        self.normalize_volume = normalize_volume
        self.params = params or NormalizationParams()
        self.sink_factory = sink_factory or AlsaSink
        self._active: ElevenLabsUtterance | None = None

    @classmethod
    def from_config(
        cls,
        config: SpeechConfig,
        fetcher: CachedFetch | None = None,
        sink_factory: Callable[[], AudioSink] | None = None,
    ) -> ElevenLabsClient:
        """Build a client (and, if not given, a SQLite-backed fetcher) from *config*."""
        if not config.elevenlabs_api_key:
            raise ValueError("ElevenLabs API key is not configured (ELEVENLABS_API_KEY)")
        if fetcher is None:
            fetcher = CachedFetch(
                SQLiteCacheStore(config.cache_path),
                default_max_age=config.cache_max_age,
            )
        return cls(
            config.elevenlabs_api_key,
            config.elevenlabs_base_url,
            fetcher=fetcher,
            model_id=config.elevenlabs_model,
            cache_max_age=config.cache_max_age,
            validate_responses=config.validate_responses,
            print_voice_properties=config.print_voice_properties,
            normalize_volume=config.normalize_volume,
            params=config.normalization_params(),
            sink_factory=sink_factory or (lambda: AlsaSink(config.audio_device)),
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def get_voices(self, language: str | None = None) -> list[dict]:
        """Return the raw voice records, optionally for a language (``en-US`` → ``en``)."""
        url = f"{self.base_url}/voices"
        if language:
            url += f"?language={language[:2]}"
        response = await self.fetcher.fetch(
            url,
            headers={"xi-api-key": self.api_key},
            cache_options=self._cache_options(),
        )
        if not response.is_success:
            raise ElevenLabsAPIError(
                f"Failed to fetch voices: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ElevenLabsResponseError("Invalid response format from Eleven Labs API") from exc
        voices = data.get("voices") if isinstance(data, dict) else None
        if not isinstance(voices, list):
            raise ElevenLabsResponseError("Invalid response format from Eleven Labs API")

        if self.validate_responses:
            check_objects_against_schema(voices, ElevenLabsVoiceData)
        if self.print_voice_properties:
            log_distinct_property_values(voices, omit=_PROPERTIES_OMITTED)
        return voices

    async def synthesize(
        self,
        text: str,
        voice_id: str,
        language_code: str | None = None,
    ) -> bytes:
        """Return the synthesized audio payload for *text*."""
        url = f"{self.base_url}/text-to-speech/{voice_id}"
        if self.output_format:
            url += f"?output_format={self.output_format}"
        payload: dict = {"model_id": self.model_id, "text": text}
        if language_code:
            payload["language_code"] = language_code
        response = await self.fetcher.fetch(
            url,
            method="POST",
            headers={
                "xi-api-key": self.api_key,
                "Content-Type": "application/json",
                "Cache-Control": "max-age=604800",  # one week
            },
            body=json.dumps(payload),
            cache_options=self._cache_options(),
        )
        if not response.is_success:
            raise ElevenLabsAPIError(
                f"Failed to synthesize speech: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )
        logger.info("Synthesized %d bytes for voice %s", len(response.content), voice_id)
        return response.content

    def create_utterance(
        self,
        text: str,
        voice_id: str,
        language_code: str | None = None,
    ) -> ElevenLabsUtterance:
        return ElevenLabsUtterance(self, text, voice_id, language_code)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _cache_options(self) -> CacheOptions:
        return CacheOptions(max_age=self.cache_max_age)

    def _activate(self, utterance: ElevenLabsUtterance) -> None:
        """Make *utterance* the active one, stopping whichever was playing."""
        if self._active is not None and self._active is not utterance:
            self._active.stop()
        self._active = utterance

    def _release(self, utterance: ElevenLabsUtterance) -> None:
        if self._active is utterance:
            self._active = None


class ElevenLabsUtterance(Utterance):
    """Text bound to an ElevenLabs voice; fetched on :meth:`start`."""

    def __init__(
        self,
        client: ElevenLabsClient,
        text: str,
        voice_id: str,
        language_code: str | None = None,
    ) -> None:
        super().__init__()
        self.client = client
        self.text = text
        self.voice_id = voice_id
        self.language_code = language_code
        self._chain = PlaybackChain(
            client.sink_factory,
            normalize_volume=client.normalize_volume,
            params=client.params,
        )
        self._chain.onstart = self._emit_start
        self._chain.onend = self._emit_end
        self._stopped = False

    async def start(self) -> None:
        """Fetch, decode and play the utterance.

        Network, decode and playback errors propagate to the caller.
        """
        self._stopped = False
        self.client._activate(self)
        try:
            payload = await self.client.synthesize(self.text, self.voice_id, self.language_code)
            if self._stopped:
                return
            buffer = decode_audio(payload, self.client.output_format)
            if self._stopped:
                return
            await self._chain.start(buffer)
        finally:
            self.client._release(self)

    def stop(self) -> None:
        self._stopped = True
        self._chain.stop()
