"""pytest configuration and shared fixtures for speech-provider tests."""

from __future__ import annotations

import threading

import httpx
import numpy as np
import pytest

from speech_provider.audio.playback import AudioSink


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


# ---------------------------------------------------------------------------
# Helpers / stubs
# ---------------------------------------------------------------------------

class Clock:
    """Settable wall clock (seconds) for freshness tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink(AudioSink):
    """In-memory output device recording everything written to it."""

    def __init__(self):
        self.opened: tuple[int, int] | None = None
        self.chunks: list[bytes] = []
        self.closed = False

    def open(self, sample_rate: int, channels: int) -> None:
        self.opened = (sample_rate, channels)

    def write(self, data: bytes) -> None:
        self.chunks.append(data)

    def close(self) -> None:
        self.closed = True

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


class GatedSink(RecordingSink):
    """Blocks inside the first write until :attr:`release` is set."""

    def __init__(self):
        super().__init__()
        self.first_written = threading.Event()
        self.release = threading.Event()

    def write(self, data: bytes) -> None:
        super().write(data)
        if not self.first_written.is_set():
            self.first_written.set()
            self.release.wait(timeout=5.0)


class CountingHandler:
    """``httpx.MockTransport`` handler that records requests."""

    def __init__(self, respond):
        self._respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


def sine(freq: float = 100.0, amplitude: float = 0.5, sample_rate: int = 8000, seconds: float = 1.0) -> np.ndarray:
    t = np.arange(int(sample_rate * seconds)) / sample_rate
    return amplitude * np.sin(2 * np.pi * freq * t)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()
