"""Configuration for speech-provider.

Values come from a JSON file (:meth:`SpeechConfig.load`) and/or environment
variables (:meth:`SpeechConfig.from_env`).  Audio processing constants live in
:class:`NormalizationParams`; the defaults are the values the playback chain
was tuned with.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = 3600  # seconds
ELEVEN_LABS_BASE_URL = "https://api.elevenlabs.io/v1"
CACHE_DB_NAME = "speech-provider-cache.db"


@dataclass(frozen=True)
class CompressorSettings:
    """Parameters of one dynamics stage (compressor or limiter).

    ``attack`` and ``release`` are time constants in seconds.
    """

    threshold_db: float = -24.0
    knee_db: float = 30.0
    ratio: float = 12.0
    attack: float = 0.003
    release: float = 0.25

    def __post_init__(self) -> None:
        if self.ratio < 1.0:
            raise ValueError(f"ratio must be >= 1, got {self.ratio}")
        if self.knee_db < 0:
            raise ValueError(f"knee_db must be >= 0, got {self.knee_db}")
        if self.attack < 0 or self.release < 0:
            raise ValueError("attack and release must be non-negative")


def _default_limiter() -> CompressorSettings:
    return CompressorSettings(threshold_db=-1.0, knee_db=0.0, ratio=20.0, attack=0.001, release=0.01)


@dataclass(frozen=True)
class NormalizationParams:
    """Loudness normalization and playback chain constants."""

    target_rms: float = 0.2
    limiter_threshold: float = 0.8
    compressor: CompressorSettings = field(default_factory=CompressorSettings)
    limiter: CompressorSettings = field(default_factory=_default_limiter)
    output_gain: float = 0.9

    def __post_init__(self) -> None:
        if self.target_rms <= 0:
            raise ValueError(f"target_rms must be positive, got {self.target_rms}")
        if not 0.0 < self.limiter_threshold < 1.0:
            raise ValueError(
                f"limiter_threshold must be in (0, 1), got {self.limiter_threshold}"
            )
        if self.output_gain < 0:
            raise ValueError(f"output_gain must be non-negative, got {self.output_gain}")


@dataclass
class SpeechConfig:
    """speech-provider configuration, loaded from config.json or the environment."""

    # Cache
    cache_dir: str = "./data"
    cache_max_age: int | None = DEFAULT_MAX_AGE  # None or 0 disables caching

    # ElevenLabs
    elevenlabs_api_key: str = ""
    elevenlabs_base_url: str = ELEVEN_LABS_BASE_URL
    elevenlabs_model: str = "eleven_turbo_v2_5"
    validate_responses: bool = False
    print_voice_properties: bool = False

    # Audio
    normalize_volume: bool = False
    target_rms: float = 0.2
    limiter_threshold: float = 0.8
    output_gain: float = 0.9
    audio_device: str = "default"

    @classmethod
    def load(cls, path: str | Path) -> SpeechConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {k for k in cls.__dataclass_fields__}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    @classmethod
    def from_env(cls, base: SpeechConfig | None = None) -> SpeechConfig:
        """Return *base* (or defaults) with environment overrides applied."""
        cfg = replace(base) if base is not None else cls()
        env = _env_config()
        if "SPEECH_CACHE_DIR" in env:
            cfg.cache_dir = env["SPEECH_CACHE_DIR"]
        if "SPEECH_CACHE_MAX_AGE" in env:
            raw = env["SPEECH_CACHE_MAX_AGE"].strip()
            cfg.cache_max_age = (int(raw) if raw else 0) or None
        if "ELEVENLABS_API_KEY" in env:
            cfg.elevenlabs_api_key = env["ELEVENLABS_API_KEY"]
        if "ELEVENLABS_BASE_URL" in env:
            cfg.elevenlabs_base_url = env["ELEVENLABS_BASE_URL"].rstrip("/")
        if "ELEVENLABS_MODEL" in env:
            cfg.elevenlabs_model = env["ELEVENLABS_MODEL"]
        if "SPEECH_NORMALIZE" in env:
            cfg.normalize_volume = _truthy(env["SPEECH_NORMALIZE"])
        if "SPEECH_TARGET_RMS" in env:
            cfg.target_rms = float(env["SPEECH_TARGET_RMS"])
        if "SPEECH_LIMITER_THRESHOLD" in env:
            cfg.limiter_threshold = float(env["SPEECH_LIMITER_THRESHOLD"])
        if "SPEECH_OUTPUT_GAIN" in env:
            cfg.output_gain = float(env["SPEECH_OUTPUT_GAIN"])
        if "SPEECH_AUDIO_DEVICE" in env:
            cfg.audio_device = env["SPEECH_AUDIO_DEVICE"]
        return cfg

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(dict(self.__dict__), f, indent=2)

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir) / CACHE_DB_NAME

    def normalization_params(self) -> NormalizationParams:
        return NormalizationParams(
            target_rms=self.target_rms,
            limiter_threshold=self.limiter_threshold,
            output_gain=self.output_gain,
        )


def _env_config() -> dict:
    """Build a config dict from environment variables."""
    keys = (
        "SPEECH_CACHE_DIR",
        "SPEECH_CACHE_MAX_AGE",
        "ELEVENLABS_API_KEY",
        "ELEVENLABS_BASE_URL",
        "ELEVENLABS_MODEL",
        "SPEECH_NORMALIZE",
        "SPEECH_TARGET_RMS",
        "SPEECH_LIMITER_THRESHOLD",
        "SPEECH_OUTPUT_GAIN",
        "SPEECH_AUDIO_DEVICE",
    )
    return {k: v for k in keys if (v := os.environ.get(k)) is not None}


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
