"""
Audio: decode, trimmed looping, capture sink, and preview looping.

Decoding goes through ffmpeg (encoded bytes on stdin, float32 PCM on stdout)
so any container ffmpeg understands works. The trim window on the scene is
the single source of truth for both the preview play-head and the samples
that end up in the export, so what you hear while editing is what you get.
"""
import logging
import math
import subprocess
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from wavegen.config import CONFIG

logger = logging.getLogger(__name__)


class AudioDecodeError(RuntimeError):
    """ffmpeg could not turn the supplied bytes into PCM."""


def format_time(seconds: float) -> str:
    """m:ss, as shown next to the trim sliders."""
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{mins}:{secs:02d}"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

@dataclass
class DecodedAudio:
    samples: np.ndarray     # (frames, channels) float32
    sample_rate: int

    @property
    def channels(self) -> int:
        return self.samples.shape[1]

    @property
    def frame_count(self) -> int:
        return self.samples.shape[0]

    @property
    def duration(self) -> float:
        return self.frame_count / self.sample_rate

    def frame_at(self, seconds: float) -> int:
        return int(round(seconds * self.sample_rate))


def decode_audio(data: bytes, sample_rate: Optional[int] = None,
                 channels: Optional[int] = None) -> DecodedAudio:
    """Decode a whole encoded audio file into memory."""
    sample_rate = sample_rate or CONFIG["audio_sample_rate"]
    channels = channels or CONFIG["audio_channels"]
    cmd = [
        CONFIG["ffmpeg"], "-v", "error",
        "-i", "pipe:0",
        "-f", "f32le", "-acodec", "pcm_f32le",
        "-ac", str(channels), "-ar", str(sample_rate),
        "pipe:1",
    ]
    try:
        result = subprocess.run(cmd, input=data, capture_output=True)
    except OSError as e:
        raise AudioDecodeError(f"Could not run ffmpeg: {e}") from e
    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace")[-2000:]
        raise AudioDecodeError(f"ffmpeg failed to decode audio: {stderr}")

    samples = np.frombuffer(result.stdout, dtype="<f4")
    usable = len(samples) - len(samples) % channels
    samples = samples[:usable].reshape(-1, channels)
    if not len(samples):
        raise AudioDecodeError("Decoded audio contains no samples")
    return DecodedAudio(samples, sample_rate)


def probe_duration(data: bytes) -> float:
    """Duration in seconds of an encoded audio file.

    Tries the container header via ffprobe first; streams that do not carry
    a duration (raw ADTS, some piped formats) are decoded and measured.
    """
    cmd = [
        CONFIG["ffprobe"], "-v", "quiet",
        "-show_entries", "format=duration",
        "-of", "csv=p=0", "-i", "pipe:0",
    ]
    try:
        result = subprocess.run(cmd, input=data, capture_output=True)
    except OSError as e:
        raise AudioDecodeError(f"Could not run ffprobe: {e}") from e
    try:
        duration = float(result.stdout.decode().strip())
    except ValueError:
        duration = 0.0
    if result.returncode == 0 and duration > 0 and math.isfinite(duration):
        return duration
    return decode_audio(data).duration


# ---------------------------------------------------------------------------
# Export path: looping source and capture sink
# ---------------------------------------------------------------------------

class LoopingSource:
    """Plays decoded samples from `start`, looping natively over [start, end).

    A capture longer than the trimmed segment just keeps wrapping around;
    `loops_completed` counts the wraps.
    """

    def __init__(self, audio, start, end):
        self.audio = audio
        self.loop_start = min(audio.frame_at(start), audio.frame_count - 1)
        self.loop_end = max(self.loop_start + 1, min(audio.frame_at(end), audio.frame_count))
        self.position = self.loop_start
        self.loops_completed = 0
        self.playing = False

    @property
    def sample_rate(self) -> int:
        return self.audio.sample_rate

    @property
    def channels(self) -> int:
        return self.audio.channels

    def start(self):
        self.position = self.loop_start
        self.loops_completed = 0
        self.playing = True

    def read(self, frames):
        """Next `frames` samples of playback, wrapping at the loop end."""
        blocks = []
        remaining = frames
        while remaining > 0:
            take = min(remaining, self.loop_end - self.position)
            blocks.append(self.audio.samples[self.position:self.position + take])
            self.position += take
            remaining -= take
            if self.position >= self.loop_end:
                self.position = self.loop_start
                self.loops_completed += 1
        if not blocks:
            return np.zeros((0, self.channels), dtype=np.float32)
        return np.concatenate(blocks)

    def stop(self):
        self.playing = False


class CaptureAudioSink:
    """Records the looping source in step with the capture clock.

    Only captures; nothing is sent to a local output device, so the export
    never plays twice.
    """

    def __init__(self, source):
        self.source = source
        self.frames_captured = 0
        self._blocks = []

    def pull_until(self, elapsed_ms):
        target = int(round(elapsed_ms / 1000.0 * self.source.sample_rate))
        missing = target - self.frames_captured
        if missing > 0:
            self._blocks.append(self.source.read(missing))
            self.frames_captured += missing

    def samples(self) -> np.ndarray:
        if not self._blocks:
            return np.zeros((0, self.source.channels), dtype=np.float32)
        return np.concatenate(self._blocks)

    def release(self):
        self.source.stop()
        self._blocks = []


# ---------------------------------------------------------------------------
# Preview path: trimmed looping on a playback primitive
# ---------------------------------------------------------------------------

class ClockPlayback:
    """Playback primitive whose play-head is driven by a monotonic clock.

    Stands in for a real output device in headless previews. Exposes the
    same small surface a media element does: current_time, seek, play,
    pause and a whole-file `loop` flag.
    """

    def __init__(self, duration, clock=time.monotonic):
        self.duration = duration
        self.clock = clock
        self.loop = False
        self._position = 0.0
        self._started_at = None

    @property
    def playing(self) -> bool:
        return self._started_at is not None

    @property
    def current_time(self) -> float:
        position = self._position
        if self._started_at is not None:
            position += self.clock() - self._started_at
        if self.loop:
            return position % self.duration
        return min(position, self.duration)

    def seek(self, seconds):
        self._position = min(max(seconds, 0.0), self.duration)
        if self._started_at is not None:
            self._started_at = self.clock()

    def play(self):
        if self._started_at is None:
            self._started_at = self.clock()

    def pause(self):
        self._position = self.current_time
        self._started_at = None


class TrimLoopPreview:
    """Keeps a preview play-head inside the trim window.

    The primitive's own loop flag is switched off: it would loop the whole
    file, not the window. Instead, reaching `end` seeks back to `start`.
    """

    def __init__(self, playback, trim):
        self.playback = playback
        self.playback.loop = False
        self.trim = trim
        self.active = False

    def set_trim(self, trim):
        self.trim = trim
        if not trim.contains(self.playback.current_time):
            self.playback.seek(trim.start)
        logger.debug("Audio trim %s - %s", format_time(trim.start), format_time(trim.end))

    def set_active(self, active):
        self.active = active
        if active:
            if not self.trim.contains(self.playback.current_time):
                self.playback.seek(self.trim.start)
            self.playback.play()
        else:
            self.playback.pause()

    def on_time_update(self):
        if self.playback.current_time >= self.trim.end:
            self.playback.seek(self.trim.start)
            if self.active:
                self.playback.play()
