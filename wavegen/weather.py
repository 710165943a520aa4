"""
Weather particle simulator.

Particles live for the lifetime of the simulator. A particle that falls past
the bottom edge is moved back above the top at a new random x instead of
being removed, so the particle count (and memory) stays constant. The whole
set is only rebuilt when the weather kind, its intensity, or the canvas size
changes.
"""
import logging
import math
import random
from dataclasses import dataclass

from wavegen.config import CONFIG
from wavegen.scene import NoWeather

logger = logging.getLogger(__name__)


@dataclass
class WeatherParticle:
    x: float
    y: float
    speed: float
    size: float
    opacity: float
    wobble: float   # phase of the sideways drift, snow only


def particle_count(weather):
    if weather.kind == "none":
        return 0
    per = CONFIG["rain_per_intensity"] if weather.kind == "rain" else CONFIG["snow_per_intensity"]
    return int(math.floor(weather.intensity * per))


class WeatherSimulator:
    """Owns the particle list and steps it once per rendered frame."""

    def __init__(self, rng=None):
        self.rng = rng or random.Random()
        self.weather = NoWeather()
        self.width = 0
        self.height = 0
        self.particles = []
        self._key = None

    def configure(self, weather, width, height):
        """Rebuild the particle set if the weather or canvas changed.

        Returns True when the set was regenerated.
        """
        key = (weather.kind, weather.intensity, width, height)
        if key == self._key:
            return False
        self.weather = weather
        self.width = width
        self.height = height
        self._key = key
        self.regenerate()
        return True

    def regenerate(self):
        rng = self.rng
        kind = self.weather.kind
        if kind == "rain":
            speed_min, speed_spread = CONFIG["rain_speed"]
            size_min, size_spread = CONFIG["rain_size"]
        else:
            speed_min, speed_spread = CONFIG["snow_speed"]
            size_min, size_spread = CONFIG["snow_size"]
        op_min, op_spread = CONFIG["particle_opacity"]

        self.particles = [
            WeatherParticle(
                x=rng.random() * self.width,
                y=rng.random() * self.height,
                speed=rng.random() * speed_spread + speed_min,
                size=rng.random() * size_spread + size_min,
                opacity=rng.random() * op_spread + op_min,
                wobble=rng.random() * math.pi * 2,
            )
            for _ in range(particle_count(self.weather))
        ]
        logger.debug("Weather %s: %d particles for %dx%d",
                     kind, len(self.particles), self.width, self.height)

    def step(self):
        """Advance every particle by one tick and wrap the ones past the bottom."""
        snow = self.weather.kind == "snow"
        wobble_step = CONFIG["snow_wobble_step"]
        wobble_amp = CONFIG["snow_wobble_amplitude"]
        respawn_y = CONFIG["particle_respawn_y"]
        for p in self.particles:
            p.y += p.speed
            if snow:
                p.x += math.sin(p.wobble) * wobble_amp
                p.wobble += wobble_step
            if p.y > self.height:
                p.y = respawn_y
                p.x = self.rng.random() * self.width
