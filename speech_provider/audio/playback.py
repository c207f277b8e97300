"""Playback of decoded speech through an output sink.

:class:`PlaybackChain` owns one playback at a time.  With normalization
requested, audio is normalized and run through compressor → limiter →
output gain before it reaches the device; otherwise it plays as decoded.
Frames are written from a worker thread so the event loop stays free, and
:meth:`PlaybackChain.stop` halts the writer at the next period boundary.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional

from speech_provider.audio.buffer import AudioBuffer, PlaybackError
from speech_provider.audio.dynamics import SignalChain
from speech_provider.audio.normalize import normalize
from speech_provider.config import NormalizationParams

logger = logging.getLogger(__name__)

try:
    import alsaaudio
except ImportError:
    alsaaudio = None  # type: ignore[assignment]

PERIOD_FRAMES = 1024


class AudioSink:
    """Output device interface: open → write periods → close."""

    def open(self, sample_rate: int, channels: int) -> None:
        raise NotImplementedError

    def write(self, data: bytes) -> None:
        """Write one period of interleaved 16-bit PCM."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class AlsaSink(AudioSink):
    """Plays audio through an ALSA device (pyalsaaudio)."""

    def __init__(self, device: str = "default"):
        self.device = device
        self._pcm = None

    def open(self, sample_rate: int, channels: int) -> None:
        if alsaaudio is None:
            raise PlaybackError("pyalsaaudio not installed, audio output disabled")
        try:
            pcm = alsaaudio.PCM(
                alsaaudio.PCM_PLAYBACK,
                alsaaudio.PCM_NORMAL,
                device=self.device,
            )
            pcm.setchannels(channels)
            pcm.setrate(sample_rate)
            pcm.setformat(alsaaudio.PCM_FORMAT_S16_LE)
            pcm.setperiodsize(PERIOD_FRAMES)
        except alsaaudio.ALSAAudioError as exc:
            raise PlaybackError(f"Could not open playback device {self.device}: {exc}") from exc
        self._pcm = pcm
        logger.info("Playback device %s opened: rate=%d ch=%d", self.device, sample_rate, channels)

    def write(self, data: bytes) -> None:
        if self._pcm is None:
            raise PlaybackError("Playback device is not open")
        try:
            self._pcm.write(data)
        except alsaaudio.ALSAAudioError as exc:
            raise PlaybackError(f"ALSA write error: {exc}") from exc

    def close(self) -> None:
        if self._pcm is not None:
            self._pcm.close()
            self._pcm = None


class PlaybackChain:
    """Renders and plays one buffer at a time with start/end callbacks.

    ``onstart`` and ``onend`` are single-slot: assigning a callback replaces
    the previous one.  ``onend`` fires only when playback runs to completion,
    never after :meth:`stop`.
    """

    def __init__(
        self,
        sink_factory: Callable[[], AudioSink] | None = None,
        *,
        normalize_volume: bool = False,
        params: NormalizationParams | None = None,
    ):
        self._sink_factory = sink_factory or AlsaSink
        self.normalize_volume = normalize_volume
        self.params = params or NormalizationParams()
        self._chain = SignalChain.from_params(self.params)
        self._onstart: Optional[Callable[[], None]] = None
        self._onend: Optional[Callable[[], None]] = None
        self._cancel: threading.Event | None = None
        self._writing: asyncio.Future | None = None

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    @property
    def onstart(self) -> Optional[Callable[[], None]]:
        return self._onstart

    @onstart.setter
    def onstart(self, callback: Optional[Callable[[], None]]) -> None:
        self._onstart = callback

    @property
    def onend(self) -> Optional[Callable[[], None]]:
        return self._onend

    @onend.setter
    def onend(self, callback: Optional[Callable[[], None]]) -> None:
        self._onend = callback

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, buffer: AudioBuffer) -> AudioBuffer:
        """Return the buffer as it will reach the device."""
        if not self.normalize_volume:
            return buffer
        return self._chain.process(normalize(buffer, params=self.params))

    # ------------------------------------------------------------------
    # Playback control
    # ------------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        return self._cancel is not None and not self._cancel.is_set()

    async def start(self, buffer: AudioBuffer) -> bool:
        """Play *buffer* to completion or until :meth:`stop`.

        Returns True when playback completed, False when it was stopped.
        Any playback already in progress is stopped first, and its device is
        closed before the next one opens.  Rendering runs in the default
        executor.
        """
        if self.is_playing:
            self.stop()

        previous = self._writing
        cancel = threading.Event()
        self._cancel = cancel

        loop = asyncio.get_running_loop()
        sink = None
        writing = None
        completed = False
        try:
            # the previous writer must release the device before it is reopened
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            rendered = await loop.run_in_executor(None, self.render, buffer)
            if cancel.is_set():
                return False
            opened = self._sink_factory()
            opened.open(rendered.sample_rate, rendered.n_channels)
            sink = opened
            if self._onstart is not None:
                self._onstart()
            writing = loop.run_in_executor(None, self._write_frames, sink, rendered, cancel)
            self._writing = writing
            completed = await writing and not cancel.is_set()
        finally:
            # the writer closes the sink; close it here only if it never ran
            if sink is not None and writing is None:
                sink.close()
            cancel.set()

        if not completed:
            logger.debug("Playback stopped before completion")
            return False
        logger.debug("Playback complete (%d frames at %dHz)", rendered.length, rendered.sample_rate)
        if self._onend is not None:
            self._onend()
        return True

    def stop(self) -> None:
        """Halt the current playback; its ``onend`` will not fire."""
        if self._cancel is not None and not self._cancel.is_set():
            self._cancel.set()
            logger.info("Playback stopped")

    @staticmethod
    def _write_frames(sink: AudioSink, buffer: AudioBuffer, cancel: threading.Event) -> bool:
        pcm = buffer.to_pcm16()
        period_bytes = PERIOD_FRAMES * 2 * buffer.n_channels
        try:
            for i in range(0, len(pcm), period_bytes):
                if cancel.is_set():
                    return False
                sink.write(pcm[i : i + period_bytes])
            return not cancel.is_set()
        finally:
            sink.close()
