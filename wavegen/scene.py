"""
Scene Model
===========
Immutable snapshot of everything the renderer draws. A new SceneState is
built for every edit (dataclasses.replace), so a render call always sees one
consistent snapshot even while the user keeps dragging sliders.

Background and weather are small sum types instead of loose optional fields:
a scene either has a solid colour or a bitmap behind it, and either no
weather, snow, or rain.
"""
from __future__ import annotations

import dataclasses
import math
import random
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple, Union

from PIL import Image

from wavegen.config import ASPECT_RATIOS, BLEND_MODES, CONFIG, DEFAULT_COLORS


# ---------------------------------------------------------------------------
# Blob descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BlobDescriptor:
    """Static description of one gradient blob.

    The position is not stored: it is derived from the elapsed time every
    frame (see wavegen.motion). base_cycles_x/y are drawn once from {1, 2}
    and never change for the lifetime of the descriptor.
    """
    id: str
    radius_factor: float
    color: str
    phase_x: float
    phase_y: float
    base_cycles_x: int
    base_cycles_y: int


def _new_id(rng: random.Random) -> str:
    return uuid.UUID(int=rng.getrandbits(128)).hex[:9]


def generate_blobs(palette, rng: Optional[random.Random] = None) -> Tuple[BlobDescriptor, ...]:
    """Create one blob per palette colour with fresh random ids and phases."""
    rng = rng or random.Random()
    lo, hi = CONFIG["blob_radius_range"]
    return tuple(
        BlobDescriptor(
            id=_new_id(rng),
            radius_factor=lo + rng.random() * (hi - lo),
            color=color,
            phase_x=rng.random() * math.pi * 2,
            phase_y=rng.random() * math.pi * 2,
            base_cycles_x=rng.choice((1, 2)),
            base_cycles_y=rng.choice((1, 2)),
        )
        for color in palette
    )


# ---------------------------------------------------------------------------
# Background and weather
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SolidBackground:
    color: str = "#000000"


@dataclass(frozen=True, eq=False)
class BitmapBackground:
    """A decoded bitmap placed with cover scaling. None renders solid black."""
    image: Optional[Image.Image]


Background = Union[SolidBackground, BitmapBackground]


@dataclass(frozen=True)
class NoWeather:
    kind = "none"
    intensity = 0


@dataclass(frozen=True)
class Snow:
    intensity: int = 50
    kind = "snow"


@dataclass(frozen=True)
class Rain:
    intensity: int = 50
    kind = "rain"


Weather = Union[NoWeather, Snow, Rain]

WEATHER_TYPES = {"none": NoWeather, "snow": Snow, "rain": Rain}


def make_weather(kind: str, intensity: int = 50) -> Weather:
    if kind not in WEATHER_TYPES:
        raise ValueError(f"Unknown weather type: {kind!r}")
    if kind == "none":
        return NoWeather()
    lo, hi = CONFIG["weather_intensity_range"]
    if not lo <= intensity <= hi:
        raise ValueError(f"Weather intensity {intensity} outside [{lo}, {hi}]")
    return WEATHER_TYPES[kind](intensity)


# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------

TEXT_ALIGNMENTS = ("left", "center", "right")


@dataclass(frozen=True)
class TextLayer:
    text: str = "Wave Gen"
    font_family: str = "Poppins"
    font_weight: int = 800
    italic: bool = False
    font_size: float = 100          # px at the reference width
    align: str = "center"
    color: str = "#ffffff"
    shadow: bool = True
    x: float = 0.5                  # 0-1 fraction of canvas width
    y: float = 0.5                  # 0-1 fraction of canvas height
    opacity: float = 1.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])

    def __post_init__(self):
        if self.align not in TEXT_ALIGNMENTS:
            raise ValueError(f"Unknown text alignment: {self.align!r}")
        if not 0.0 <= self.opacity <= 1.0:
            raise ValueError(f"Text opacity {self.opacity} outside [0, 1]")


@dataclass(frozen=True, eq=False)
class LogoLayer:
    image: Image.Image
    x: float = 0.5
    y: float = 0.5
    size: float = 0.2               # width as a fraction of the canvas width
    opacity: float = 1.0


# ---------------------------------------------------------------------------
# Audio trim window
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AudioTrimWindow:
    """The [start, end) slice of an audio asset that is looped.

    Updates never raise: a value is clamped into [0, asset_duration] and if
    the result would break start < end the update is ignored and the
    current window comes back unchanged.
    """
    asset_duration: float
    start: float
    end: float

    def __post_init__(self):
        if not 0 <= self.start < self.end <= self.asset_duration:
            raise ValueError(
                f"Invalid trim window [{self.start}, {self.end}) "
                f"for a {self.asset_duration}s asset"
            )

    @classmethod
    def full(cls, asset_duration: float) -> "AudioTrimWindow":
        return cls(asset_duration, 0.0, asset_duration)

    @property
    def length(self) -> float:
        return self.end - self.start

    def _clamp(self, value: float) -> float:
        return min(max(value, 0.0), self.asset_duration)

    def with_start(self, value: float) -> "AudioTrimWindow":
        value = self._clamp(value)
        if value >= self.end:
            return self
        return dataclasses.replace(self, start=value)

    def with_end(self, value: float) -> "AudioTrimWindow":
        value = self._clamp(value)
        if value <= self.start:
            return self
        return dataclasses.replace(self, end=value)

    def contains(self, position: float) -> bool:
        return self.start <= position < self.end


@dataclass(frozen=True, eq=False)
class AudioAttachment:
    """Encoded audio bytes as supplied by the user, plus the trim window."""
    name: str
    data: bytes
    trim: AudioTrimWindow


# ---------------------------------------------------------------------------
# Scene snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SceneState:
    duration: float = 10.0
    aspect_ratio: str = "16:9"
    speed: float = 1.0
    blur_radius: float = 120.0
    blend_mode: str = "screen"
    blob_opacity: float = 1.0
    palette: Tuple[str, ...] = DEFAULT_COLORS
    background: Background = field(default_factory=SolidBackground)
    weather: Weather = field(default_factory=NoWeather)
    text_layers: Tuple[TextLayer, ...] = field(default_factory=lambda: (TextLayer(),))
    logo: Optional[LogoLayer] = None
    audio: Optional[AudioAttachment] = None

    def __post_init__(self):
        # Lists from callers are frozen into tuples so the snapshot stays immutable
        object.__setattr__(self, "palette", tuple(self.palette))
        object.__setattr__(self, "text_layers", tuple(self.text_layers))

        if self.duration <= 0:
            raise ValueError(f"Duration must be positive, got {self.duration}")
        if self.speed <= 0:
            raise ValueError(f"Speed must be positive, got {self.speed}")
        if self.blur_radius < 0:
            raise ValueError(f"Blur radius must be >= 0, got {self.blur_radius}")
        if not 0.0 <= self.blob_opacity <= 1.0:
            raise ValueError(f"Blob opacity {self.blob_opacity} outside [0, 1]")
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise ValueError(f"Unknown aspect ratio: {self.aspect_ratio!r}")
        if self.blend_mode not in BLEND_MODES:
            raise ValueError(f"Unknown blend mode: {self.blend_mode!r}")
        if not CONFIG["min_colors"] <= len(self.palette) <= CONFIG["max_colors"]:
            raise ValueError(
                f"Palette needs {CONFIG['min_colors']}-{CONFIG['max_colors']} "
                f"colours, got {len(self.palette)}"
            )

    @property
    def dimensions(self) -> Tuple[int, int]:
        return ASPECT_RATIOS[self.aspect_ratio]

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000.0

    def evolve(self, **changes) -> "SceneState":
        return dataclasses.replace(self, **changes)


def next_aspect_ratio(current: str) -> str:
    """The aspect ratio after `current` in preset order, wrapping around."""
    keys = list(ASPECT_RATIOS)
    return keys[(keys.index(current) + 1) % len(keys)]


def scene_from_dict(data: Mapping[str, Any]) -> SceneState:
    """Build a scene from a JSON-style mapping.

    Keys mirror the SceneState fields. Background and weather use small
    nested objects::

        {"background": {"type": "color", "color": "#101020"},
         "weather": {"type": "snow", "intensity": 40},
         "text_layers": [{"text": "Hello", "y": 0.3}]}

    Bitmap backgrounds and logos are not part of the mapping; they are
    attached from image bytes (see Studio.set_background_image).
    """
    kwargs = {}
    for key in ("duration", "speed", "blur_radius", "blob_opacity"):
        if key in data:
            kwargs[key] = float(data[key])
    for key in ("aspect_ratio", "blend_mode"):
        if key in data:
            kwargs[key] = str(data[key])
    if "palette" in data:
        kwargs["palette"] = tuple(data["palette"])

    bg = data.get("background")
    if bg is not None:
        if bg.get("type", "color") != "color":
            raise ValueError("Only colour backgrounds can be described in a scene file")
        kwargs["background"] = SolidBackground(bg.get("color", "#000000"))

    weather = data.get("weather")
    if weather is not None:
        kwargs["weather"] = make_weather(weather.get("type", "none"),
                                         int(weather.get("intensity", 50)))

    if "text_layers" in data:
        kwargs["text_layers"] = tuple(TextLayer(**layer) for layer in data["text_layers"])

    return SceneState(**kwargs)
