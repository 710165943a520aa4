"""Shared fakes for the wavegen tests (no ffmpeg required)."""

import random

import numpy as np
import pytest
from PIL import Image

from wavegen.audio import DecodedAudio


class FakeClock:
    """Manual clock; sleeping advances it exactly."""

    def __init__(self, start: float = 0.0, tick_cost: float = 0.0):
        self.now = start
        self.tick_cost = tick_cost
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        # Round so repeated float additions land exactly on frame slots
        self.now = round(self.now + seconds + self.tick_cost, 9)


class FakeEncoder:
    """Records frames and audio instead of running ffmpeg."""

    instances = []

    def __init__(self, fmt, size, fps=None, audio_rate=None, audio_channels=None):
        self.format = fmt
        self.size = size
        self.fps = fps
        self.audio_rate = audio_rate
        self.audio_channels = audio_channels
        self.frames = []
        self.audio = None
        self.started = False
        self.stopped = False
        self.aborted = False
        FakeEncoder.instances.append(self)

    def start(self):
        self.started = True

    def write_frame(self, data):
        self.frames.append(data)

    def stop(self, audio=None):
        self.stopped = True
        self.audio = audio
        return b"fake-container"

    def abort(self):
        self.aborted = True


class FakePreview:
    """Stands in for PreviewScheduler inside a SchedulerSwitch."""

    def __init__(self):
        self.running = False
        self.starts = 0
        self.stops = 0

    def start(self):
        self.running = True
        self.starts += 1

    def stop(self):
        self.running = False
        self.stops += 1


def ramp_audio(seconds: float, sample_rate: int = 100, channels: int = 2) -> DecodedAudio:
    """Audio whose sample value is its own frame index, for easy position checks."""
    frames = int(seconds * sample_rate)
    ramp = np.arange(frames, dtype=np.float32)
    return DecodedAudio(np.repeat(ramp[:, None], channels, axis=1), sample_rate)


def tiny_frame(elapsed_ms: float) -> Image.Image:
    return Image.new("RGBA", (4, 2), (int(elapsed_ms) % 256, 0, 0, 255))


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_fake_encoders():
    FakeEncoder.instances.clear()
    yield
    FakeEncoder.instances.clear()
