"""Tests for the ElevenLabs client and utterances."""

from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
import numpy as np
import pytest

from tests.conftest import CountingHandler, RecordingSink, sine

_VOICE = {
    "voice_id": "voice1",
    "name": "Voice 1",
    "description": "Rachel - calm narration",
    "category": "premade",
    "labels": {"accent": "american", "age": "young", "gender": "female", "language": "en", "use_case": "social media"},
    "preview_url": "https://example.com/preview.mp3",
    "samples": None,
    "settings": None,
    "sharing": None,
    "safety_control": None,
    "fine_tuning": {},
    "is_legacy": False,
    "is_mixed": False,
    "high_quality_base_model_ids": ["eleven_turbo_v2_5"],
    "available_for_tiers": ["pro"],
    "voice_verification": {},
    "permission_on_resource": None,
}

_PCM = (sine(amplitude=0.02, sample_rate=24000, seconds=0.25) * 32767).astype("<i2").tobytes()


def _client(handler, sink=None, **kwargs):
    from speech_provider.cache.fetch import CachedFetch
    from speech_provider.cache.store import MemoryResponseStore
    from speech_provider.voice.elevenlabs import ElevenLabsClient

    fetcher = CachedFetch(
        MemoryResponseStore(),
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    sink = sink or RecordingSink()
    return ElevenLabsClient("fake-api-key", fetcher=fetcher, sink_factory=lambda: sink, **kwargs)


def _voices_handler(body=None, status=200):
    payload = {"voices": [_VOICE]} if body is None else body
    return CountingHandler(lambda request: httpx.Response(status, json=payload))


def _tts_handler(audio=_PCM):
    return CountingHandler(lambda request: httpx.Response(200, content=audio, headers={"content-type": "audio/pcm"}))


# ===========================================================================
# Voice listing
# ===========================================================================

class TestGetVoices:
    async def test_returns_voice_records(self):
        handler = _voices_handler()
        voices = await _client(handler).get_voices("en-US")

        assert [v["voice_id"] for v in voices] == ["voice1"]
        request = handler.requests[0]
        assert request.url.params["language"] == "en"
        assert request.headers["xi-api-key"] == "fake-api-key"

    async def test_repeat_is_served_from_cache(self):
        handler = _voices_handler()
        client = _client(handler)
        first = await client.get_voices("en")
        second = await client.get_voices("en")
        assert handler.calls == 1
        assert first == second

    async def test_cache_disabled(self):
        handler = _voices_handler()
        client = _client(handler, cache_max_age=None)
        await client.get_voices("en")
        await client.get_voices("en")
        assert handler.calls == 2

    async def test_api_failure(self):
        from speech_provider.voice.elevenlabs import ElevenLabsAPIError

        handler = _voices_handler({"error": "Invalid API key"}, status=401)
        with pytest.raises(ElevenLabsAPIError, match="Failed to fetch voices: 401 Unauthorized") as exc_info:
            await _client(handler).get_voices("en")
        assert exc_info.value.status_code == 401

    @pytest.mark.parametrize("body", [b'{"result": "success"}', b"null", b'{"voices": "none"}', b"<html>"])
    async def test_malformed_response(self, body):
        from speech_provider.voice.elevenlabs import ElevenLabsResponseError

        handler = CountingHandler(lambda request: httpx.Response(200, content=body))
        with pytest.raises(ElevenLabsResponseError, match="Invalid response format from Eleven Labs API"):
            await _client(handler).get_voices("en")

    async def test_empty_voice_list(self):
        assert await _client(_voices_handler({"voices": []})).get_voices() == []

    async def test_validation_accepts_known_shape(self):
        voices = await _client(_voices_handler(), validate_responses=True).get_voices("en")
        assert len(voices) == 1

    async def test_validation_rejects_unknown_fields(self):
        from pydantic import ValidationError

        bad = dict(_VOICE, surprise="field")
        client = _client(_voices_handler({"voices": [bad]}), validate_responses=True)
        with pytest.raises(ValidationError):
            await client.get_voices("en")

    async def test_print_voice_properties(self, caplog):
        client = _client(_voices_handler(), print_voice_properties=True)
        with caplog.at_level(logging.INFO, logger="speech_provider.voice.schema"):
            await client.get_voices("en")
        assert "category: premade" in caplog.text
        assert "voice_id" not in caplog.text


class TestLogDistinctPropertyValues:
    def test_collects_distinct_values(self):
        from speech_provider.voice.schema import log_distinct_property_values

        values = log_distinct_property_values(
            [{"a": 1, "b": {"x": 1}}, {"a": 1, "b": {"x": 2}}, {"a": 2, "skip": 0}],
            omit=("skip",),
        )
        assert values["a"] == [1, 2]
        assert values["b"] == ['{"x": 1}', '{"x": 2}']
        assert "skip" not in values


# ===========================================================================
# Synthesis
# ===========================================================================

class TestSynthesize:
    async def test_request_shape(self):
        handler = _tts_handler()
        audio = await _client(handler).synthesize("Hello there.", "voice1", "en")

        assert audio == _PCM
        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/text-to-speech/voice1")
        assert json.loads(request.content) == {
            "model_id": "eleven_turbo_v2_5",
            "language_code": "en",
            "text": "Hello there.",
        }
        assert request.headers["cache-control"] == "max-age=604800"

    async def test_same_phrase_is_cached(self):
        handler = _tts_handler()
        client = _client(handler)
        await client.synthesize("Hello.", "voice1")
        await client.synthesize("Hello.", "voice1")
        await client.synthesize("Goodbye.", "voice1")
        assert handler.calls == 2

    async def test_output_format_query(self):
        handler = _tts_handler()
        await _client(handler, output_format="pcm_24000").synthesize("Hi.", "voice1")
        assert handler.requests[0].url.params["output_format"] == "pcm_24000"

    async def test_failure_raises(self):
        from speech_provider.voice.elevenlabs import ElevenLabsAPIError

        handler = CountingHandler(lambda request: httpx.Response(429, json={"detail": "quota"}))
        with pytest.raises(ElevenLabsAPIError, match="429"):
            await _client(handler).synthesize("Hi.", "voice1")


# ===========================================================================
# Utterances
# ===========================================================================

class TestElevenLabsUtterance:
    async def test_start_plays_audio_and_fires_callbacks(self):
        sink = RecordingSink()
        client = _client(_tts_handler(), sink, output_format="pcm_24000")
        utterance = client.create_utterance("Hello.", "voice1", "en")
        started, ended = MagicMock(), MagicMock()
        utterance.onstart = started
        utterance.onend = ended

        await utterance.start()

        assert sink.opened == (24000, 1)
        assert len(sink.data) == len(_PCM)
        started.assert_called_once()
        ended.assert_called_once()

    async def test_callbacks_replace_previous(self):
        client = _client(_tts_handler(), output_format="pcm_24000")
        utterance = client.create_utterance("Hello.", "voice1")
        first, second = MagicMock(), MagicMock()
        utterance.onstart = first
        utterance.onstart = second
        await utterance.start()
        first.assert_not_called()
        second.assert_called_once()

    async def test_normalized_playback_is_louder(self):
        from speech_provider.audio.normalize import rms

        plain_sink, loud_sink = RecordingSink(), RecordingSink()
        await _client(_tts_handler(), plain_sink, output_format="pcm_24000").create_utterance("Hi.", "v").start()
        await _client(
            _tts_handler(), loud_sink, output_format="pcm_24000", normalize_volume=True
        ).create_utterance("Hi.", "v").start()

        plain = np.frombuffer(plain_sink.data, dtype="<i2") / 32768.0
        loud = np.frombuffer(loud_sink.data, dtype="<i2") / 32768.0
        assert plain.shape == loud.shape
        assert rms(loud) > 2 * rms(plain)

    async def test_decode_failure_propagates_without_playing(self):
        from speech_provider.audio.buffer import AudioDecodeError

        sink = RecordingSink()
        client = _client(_tts_handler(b"not audio at all" * 8), sink, normalize_volume=True)
        utterance = client.create_utterance("Hi.", "voice1")
        ended = MagicMock()
        utterance.onend = ended

        with pytest.raises(AudioDecodeError):
            await utterance.start()
        assert sink.opened is None
        ended.assert_not_called()

    async def test_network_failure_propagates(self):
        def _fail(request):
            raise httpx.ConnectError("offline", request=request)

        client = _client(CountingHandler(_fail))
        with pytest.raises(httpx.ConnectError):
            await client.create_utterance("Hi.", "voice1").start()

    async def test_stop_during_fetch_skips_playback(self):
        sink = RecordingSink()
        client = _client(_tts_handler(), sink, output_format="pcm_24000")
        utterance = client.create_utterance("Hi.", "voice1")

        async def _synth(*args):
            utterance.stop()
            return _PCM

        client.synthesize = AsyncMock(side_effect=_synth)
        started = MagicMock()
        utterance.onstart = started

        await utterance.start()
        assert sink.opened is None
        started.assert_not_called()

    def test_starting_another_utterance_stops_the_active_one(self):
        client = _client(_tts_handler())
        first = client.create_utterance("One.", "voice1")
        second = client.create_utterance("Two.", "voice1")
        first.stop = MagicMock()

        client._activate(first)
        client._activate(second)
        first.stop.assert_called_once()

        client._release(first)
        assert client._active is second


class TestFromConfig:
    def test_requires_api_key(self):
        from speech_provider.config import SpeechConfig
        from speech_provider.voice.elevenlabs import ElevenLabsClient

        with pytest.raises(ValueError, match="API key"):
            ElevenLabsClient.from_config(SpeechConfig())

    def test_builds_sqlite_backed_client(self, tmp_path):
        from speech_provider.cache.store import SQLiteCacheStore
        from speech_provider.config import SpeechConfig
        from speech_provider.voice.elevenlabs import ElevenLabsClient

        cfg = SpeechConfig(
            cache_dir=str(tmp_path),
            cache_max_age=86400,
            elevenlabs_api_key="k",
            normalize_volume=True,
            target_rms=0.15,
        )
        client = ElevenLabsClient.from_config(cfg)
        assert isinstance(client.fetcher.store, SQLiteCacheStore)
        assert client.fetcher.store.path == tmp_path / "speech-provider-cache.db"
        assert client.cache_max_age == 86400
        assert client.normalize_volume is True
        assert client.params.target_rms == 0.15
