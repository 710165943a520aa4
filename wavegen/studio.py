"""
Studio: the object a UI (or the CLI) talks to.

Holds the current scene snapshot and the state derived from it: blob
descriptors, the weather simulator, the audio preview, and both render
drivers. Edits replace the snapshot as a whole; the next scheduled tick
picks the new one up, so a frame never mixes two versions of the scene.

Derived state is regenerated only when its inputs change:
    blobs      <- palette, aspect ratio (or an explicit regenerate_blobs())
    particles  <- weather kind/intensity, aspect ratio
Text and logo layers are never touched by either.
"""
import io
import logging
import random
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from wavegen.audio import (AudioDecodeError, ClockPlayback, TrimLoopPreview,
                           probe_duration)
from wavegen.capture import CapturePipeline, CaptureState
from wavegen.compose import render_frame
from wavegen.config import CONFIG
from wavegen.scene import (AudioAttachment, AudioTrimWindow, BitmapBackground,
                           LogoLayer, SceneState, generate_blobs, next_aspect_ratio)
from wavegen.scheduler import Driver, PreviewScheduler, SchedulerSwitch
from wavegen.weather import WeatherSimulator

logger = logging.getLogger(__name__)

# Fields that change the export's container or length; frozen during capture
LOCKED_WHILE_CAPTURING = ("aspect_ratio", "duration", "audio")


def _decode_image(data):
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class Studio:
    """Scene editing, preview and export behind one facade.

    Args:
        scene: Initial snapshot (defaults to SceneState()).
        present: Receives every preview frame; without it the preview still
            renders but the frames are dropped.
        rng: Random source for blob and particle generation.
        capture_options: Extra keyword arguments for the CapturePipeline
            (encoder_factory, clock, sleep, ...).
        preview_size: Preview render size; defaults to the export size
            scaled by CONFIG["preview_scale"].
    """

    def __init__(self, scene=None, present=None, rng=None, capture_options=None,
                 preview_size=None, font_resolver=None):
        self.rng = rng or random.Random()
        self._scene = scene or SceneState()
        self.present = present
        self.font_resolver = font_resolver
        self._preview_size = preview_size

        self.blobs = generate_blobs(self._scene.palette, self.rng)
        self.weather = WeatherSimulator(self.rng)
        self.weather.configure(self._scene.weather, *self._scene.dimensions)

        self.preview = PreviewScheduler(self._preview_tick)
        self.switch = SchedulerSwitch(self.preview)
        self.pipeline = CapturePipeline(self.switch, **(capture_options or {}))

        self.audio_preview = None
        if self._scene.audio is not None:
            self._start_audio_preview(self._scene.audio.trim)

    # ------------------------------------------------------------------
    # Scene state
    # ------------------------------------------------------------------

    @property
    def scene(self) -> SceneState:
        return self._scene

    @property
    def capturing(self) -> bool:
        return self.pipeline.state is CaptureState.CAPTURING

    def update(self, **changes) -> SceneState:
        """Replace the snapshot with `changes` applied.

        Raises ValueError for invalid values (the snapshot is unchanged).
        While capturing, changes to aspect ratio, duration and audio are
        dropped with a warning.
        """
        if self.capturing:
            for key in LOCKED_WHILE_CAPTURING:
                if key in changes:
                    logger.warning("Ignoring %s change during capture", key)
                    changes.pop(key)
        old = self._scene
        new = old.evolve(**changes)

        if new.palette != old.palette or new.aspect_ratio != old.aspect_ratio:
            self.blobs = generate_blobs(new.palette, self.rng)
        self.weather.configure(new.weather, *new.dimensions)

        if new.audio is not old.audio:
            if new.audio is None:
                self._stop_audio_preview()
            elif old.audio is not None and new.audio.data is old.audio.data:
                self.audio_preview.set_trim(new.audio.trim)
            else:
                self._start_audio_preview(new.audio.trim)

        self._scene = new
        return new

    def regenerate_blobs(self):
        """Fresh phases, radii and cycle counts for the current palette."""
        self.blobs = generate_blobs(self._scene.palette, self.rng)

    def cycle_aspect_ratio(self) -> SceneState:
        return self.update(aspect_ratio=next_aspect_ratio(self._scene.aspect_ratio))

    def add_color(self, color="#ffffff"):
        if len(self._scene.palette) >= CONFIG["max_colors"]:
            return self._scene
        return self.update(palette=self._scene.palette + (color,))

    def remove_color(self, index):
        palette = self._scene.palette
        if len(palette) <= CONFIG["min_colors"]:
            return self._scene
        return self.update(palette=palette[:index] + palette[index + 1:])

    def set_color(self, index, color):
        palette = list(self._scene.palette)
        palette[index] = color
        return self.update(palette=tuple(palette))

    def set_background_image(self, data: bytes) -> bool:
        """Use decoded `data` as the background. Undecodable bytes keep the old one."""
        try:
            image = _decode_image(data)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning("Background image could not be decoded, keeping previous: %s", e)
            return False
        self.update(background=BitmapBackground(image))
        return True

    def set_logo_image(self, data, **placement):
        try:
            image = _decode_image(data)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning("Logo image could not be decoded, keeping previous: %s", e)
            return False
        self.update(logo=LogoLayer(image, **placement))
        return True

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def attach_audio(self, name: str, data: bytes) -> bool:
        """Attach an audio file with a trim window covering all of it."""
        try:
            duration = probe_duration(data)
        except AudioDecodeError as e:
            logger.warning("Audio %s could not be read: %s", name, e)
            return False
        self.update(audio=AudioAttachment(name, data, AudioTrimWindow.full(duration)))
        logger.info("Attached audio %s (%.1fs)", name, duration)
        return True

    def detach_audio(self):
        self.update(audio=None)

    def _set_trim(self, trim):
        audio = self._scene.audio
        if trim is not audio.trim:
            self.update(audio=AudioAttachment(audio.name, audio.data, trim))
        return self._scene.audio.trim

    def set_trim_start(self, seconds):
        if self._scene.audio is None:
            return None
        return self._set_trim(self._scene.audio.trim.with_start(seconds))

    def set_trim_end(self, seconds):
        if self._scene.audio is None:
            return None
        return self._set_trim(self._scene.audio.trim.with_end(seconds))

    def _start_audio_preview(self, trim):
        self.audio_preview = TrimLoopPreview(ClockPlayback(trim.asset_duration), trim)
        self.audio_preview.playback.seek(trim.start)
        if self.previewing:
            self.audio_preview.set_active(True)

    def _stop_audio_preview(self):
        if self.audio_preview is not None:
            self.audio_preview.set_active(False)
        self.audio_preview = None

    @property
    def previewing(self) -> bool:
        return self.switch.state is Driver.PREVIEW

    # ------------------------------------------------------------------
    # Rendering and drivers
    # ------------------------------------------------------------------

    @property
    def preview_size(self) -> Tuple[int, int]:
        if self._preview_size is not None:
            return self._preview_size
        w, h = self._scene.dimensions
        scale = CONFIG["preview_scale"]
        return max(2, int(w * scale)), max(2, int(h * scale))

    def render(self, elapsed_ms: float, size: Optional[Tuple[int, int]] = None) -> Image.Image:
        """Render the current snapshot without advancing the weather."""
        scene = self._scene
        return render_frame(scene, self.blobs, self.weather.particles, elapsed_ms,
                            size=size, font_resolver=self.font_resolver)

    def _frame(self, elapsed_ms, size=None):
        # One weather step per rendered frame, whichever driver is active
        self.weather.step()
        return self.render(elapsed_ms, size)

    def _preview_tick(self, elapsed_ms):
        frame = self._frame(elapsed_ms, self.preview_size)
        if self.present is not None:
            self.present(frame)
        if self.audio_preview is not None:
            self.audio_preview.on_time_update()

    def start_preview(self):
        self.switch.start_preview()
        if self.audio_preview is not None:
            self.audio_preview.set_active(True)

    def stop_preview(self):
        self.switch.stop_preview()
        if self.audio_preview is not None:
            self.audio_preview.set_active(False)

    def export(self, on_progress=None):
        """Record one loop of the current scene in real time."""
        if self.audio_preview is not None:
            self.audio_preview.set_active(False)
        try:
            return self.pipeline.export(self._scene, self._frame, on_progress)
        finally:
            if self.audio_preview is not None and self.previewing:
                self.audio_preview.set_active(True)
