"""
Frame Composition Engine
========================
Renders one frame from a scene snapshot and a timestamp. Layers, bottom to
top:

    1. Background: solid colour or cover-placed bitmap (black if missing)
    2. Blob field: blurred radial gradients, scene blend mode and opacity
    3. Weather: crisp particles, always composited with "screen"
    4. Logo: crisp, normal compositing, aspect preserved
    5. Text: crisp, normal compositing, optional soft drop shadow

Blend math is done in numpy on float arrays in [0, 1]; shape and text
rasterisation is done with Pillow. The canvas behind the blob field is always
opaque, so every blend reduces to

    result = backdrop + alpha * (B(backdrop, source) - backdrop)

with B the separable blend function from W3C Compositing and Blending.

The renderer never mutates the scene or the particles. Output size defaults
to the scene's aspect-ratio dimensions; a smaller `size` gives the same
layout scaled down (used for the live preview).
"""
import functools
import logging
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFilter, ImageFont, ImageOps

from wavegen.config import CONFIG
from wavegen.motion import blob_position
from wavegen.scene import (BitmapBackground, BlobDescriptor, SceneState,
                           SolidBackground, TextLayer)
from wavegen.weather import WeatherParticle

logger = logging.getLogger(__name__)

FontResolver = Callable[[str, int, bool, float], ImageFont.FreeTypeFont]


# ---------------------------------------------------------------------------
# Blend operators
# ---------------------------------------------------------------------------

def _multiply(cb, cs):
    return cb * cs


def _screen(cb, cs):
    return cb + cs - cb * cs


def _hard_light(cb, cs):
    return np.where(cs <= 0.5, _multiply(cb, 2 * cs), _screen(cb, 2 * cs - 1))


def _overlay(cb, cs):
    return _hard_light(cs, cb)


def _soft_light(cb, cs):
    d = np.where(cb <= 0.25, ((16 * cb - 12) * cb + 4) * cb, np.sqrt(cb))
    return np.where(cs <= 0.5,
                    cb - (1 - 2 * cs) * cb * (1 - cb),
                    cb + (2 * cs - 1) * (d - cb))


BLEND_FUNCTIONS = {
    "source-over": lambda cb, cs: np.broadcast_to(cs, cb.shape),
    "screen": _screen,
    "overlay": _overlay,
    "multiply": _multiply,
    "difference": lambda cb, cs: np.abs(cb - cs),
    "exclusion": lambda cb, cs: cb + cs - 2 * cb * cs,
    "hard-light": _hard_light,
    "soft-light": _soft_light,
}


def blend(backdrop: np.ndarray, source, alpha: np.ndarray, mode: str) -> np.ndarray:
    """Composite `source` over an opaque `backdrop` (H, W, 3) with per-pixel alpha (H, W)."""
    source = np.asarray(source, dtype=np.float32)
    blended = BLEND_FUNCTIONS[mode](backdrop, source)
    return backdrop + alpha[..., np.newaxis] * (blended - backdrop)


def parse_color(color: str) -> Tuple[int, int, int]:
    return ImageColor.getrgb(color)[:3]


def _unit_color(color):
    return np.array(parse_color(color), dtype=np.float32) / 255.0


# ---------------------------------------------------------------------------
# Fonts
# ---------------------------------------------------------------------------
# Font files are not loaded by the engine; it only looks up what is already
# installed in the configured font directories and otherwise falls back to
# Pillow's bundled default font.

_FONT_SUFFIXES = (".ttf", ".otf", ".ttc")


@functools.lru_cache(maxsize=1)
def _font_index():
    index = {}
    for directory in CONFIG["font_dirs"]:
        directory = Path(directory)
        if not directory.is_dir():
            continue
        for path in directory.rglob("*"):
            if path.suffix.lower() in _FONT_SUFFIXES:
                index.setdefault(path.stem.lower().replace(" ", ""), path)
    return index


def _style_names(weight, italic):
    if weight >= 800:
        weights = ["ExtraBold", "Black", "Bold"]
    elif weight >= 600:
        weights = ["Bold", "SemiBold"]
    elif weight <= 300:
        weights = ["Light"]
    else:
        weights = []
    weights.append("Regular")
    if italic:
        names = [w + "Italic" for w in weights] + ["Italic"]
        return names + weights
    return weights


@functools.lru_cache(maxsize=64)
def resolve_font(family: str, weight: int, italic: bool, size: float):
    """Best installed match for a font identity at `size` px."""
    size = max(1, int(round(size)))
    index = _font_index()
    family_key = family.lower().replace(" ", "")
    candidates = [f"{family_key}-{style.lower()}" for style in _style_names(weight, italic)]
    candidates.append(family_key)
    for name in candidates:
        path = index.get(name)
        if path is None:
            continue
        try:
            return ImageFont.truetype(str(path), size)
        except OSError:
            continue
    logger.debug("No installed font for %s %d, using Pillow default", family, weight)
    return ImageFont.load_default(size=size)


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------

def draw_background(scene: SceneState, size: Tuple[int, int]) -> Image.Image:
    """Layer 1: solid fill, or the bitmap scaled to cover and centre-cropped."""
    bg = scene.background
    if isinstance(bg, SolidBackground):
        return Image.new("RGB", size, parse_color(bg.color))

    canvas = Image.new("RGB", size, (0, 0, 0))
    if isinstance(bg, BitmapBackground) and bg.image is not None:
        cover = ImageOps.fit(bg.image.convert("RGBA"), size,
                             method=Image.LANCZOS, centering=(0.5, 0.5))
        canvas.paste(cover, (0, 0), cover)
    return canvas


def blob_alpha(cx: float, cy: float, radius: float,
               xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """Radial gradient from opaque at the centre to transparent at `radius`."""
    dist = np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2)
    return np.clip(1.0 - dist / radius, 0.0, 1.0)


def _gaussian_blur(alpha, radius):
    mask = Image.fromarray(np.round(alpha * 255).astype(np.uint8))
    mask = mask.filter(ImageFilter.GaussianBlur(radius=radius))
    return np.asarray(mask, dtype=np.float32) / 255.0


def draw_blobs(canvas: np.ndarray, scene: SceneState,
               blobs: Sequence[BlobDescriptor], elapsed_ms: float,
               scale: float) -> np.ndarray:
    """Layer 2: the animated blob field.

    Each blob is blurred and blended on its own, so later blobs blend with
    the result of earlier ones exactly like successive canvas fills.
    """
    h, w = canvas.shape[:2]
    ys, xs = np.ogrid[0:h, 0:w]
    xs = xs.astype(np.float32) + 0.5
    ys = ys.astype(np.float32) + 0.5
    blur = scene.blur_radius * scale

    for blob in blobs:
        cx, cy = blob_position(blob, elapsed_ms, scene.speed, scene.duration, w, h)
        outer = CONFIG["blob_outer_scale"] * blob.radius_factor * min(w, h)
        alpha = blob_alpha(cx, cy, outer, xs, ys)
        if blur > 0:
            alpha = _gaussian_blur(alpha, blur)
        canvas = blend(canvas, _unit_color(blob.color), alpha * scene.blob_opacity,
                       scene.blend_mode)
    return canvas


def draw_weather(canvas: np.ndarray, kind: str,
                 particles: Iterable[WeatherParticle], scale: float) -> np.ndarray:
    """Layer 3: white rain streaks or snow flakes, screened onto the canvas."""
    if kind == "none":
        return canvas
    h, w = canvas.shape[:2]
    layer = Image.new("L", (w, h), 0)
    draw = ImageDraw.Draw(layer)
    drawn = 0
    for p in particles:
        x, y = p.x * scale, p.y * scale
        value = int(round(p.opacity * 255))
        if kind == "rain":
            draw.rectangle([x, y, x, y + p.size * 5 * scale], fill=value)
        else:
            r = p.size * scale
            draw.ellipse([x - r, y - r, x + r, y + r], fill=value)
        drawn += 1
    if not drawn:
        return canvas
    alpha = np.asarray(layer, dtype=np.float32) / 255.0
    return blend(canvas, np.ones(3, dtype=np.float32), alpha, "screen")


def _with_opacity(image, opacity):
    if opacity >= 1.0:
        return image
    alpha = image.getchannel("A").point(lambda v: int(v * opacity + 0.5))
    image.putalpha(alpha)
    return image


def draw_logo(canvas, logo):
    """Layer 4: logo centred on its anchor, width = logo.size * canvas width."""
    if logo is None or logo.image is None:
        return
    w, h = canvas.size
    img_w, img_h = logo.image.size
    target_w = w * logo.size
    target_h = target_w / (img_w / img_h)
    left = logo.x * w - target_w / 2
    top = logo.y * h - target_h / 2

    scaled = logo.image.convert("RGBA").resize(
        (max(1, int(round(target_w))), max(1, int(round(target_h)))), Image.LANCZOS)
    scaled = _with_opacity(scaled, logo.opacity)
    canvas.paste(scaled, (int(round(left)), int(round(top))), scaled)


_ANCHORS = {"left": "lm", "center": "mm", "right": "rm"}


def draw_text_layer(canvas: Image.Image, layer: TextLayer,
                    font_resolver: FontResolver) -> None:
    """Layer 5 (one entry): multi-line text centred as a block on its anchor."""
    if not layer.text:
        return
    w, h = canvas.size
    scale = w / CONFIG["reference_width"]
    font_size = layer.font_size * scale
    font = font_resolver(layer.font_family, layer.font_weight, layer.italic, font_size)

    lines = layer.text.split("\n")
    line_height = font_size * CONFIG["line_height"]
    center_x = layer.x * w
    center_y = layer.y * h
    first_y = center_y - (len(lines) * line_height) / 2 + line_height / 2
    anchor = _ANCHORS[layer.align]

    text_img = Image.new("RGBA", (w, h), (0, 0, 0, 0))
    draw = ImageDraw.Draw(text_img)
    fill = parse_color(layer.color) + (255,)

    shadow_mask = None
    if layer.shadow:
        shadow_mask = Image.new("L", (w, h), 0)
        shadow_draw = ImageDraw.Draw(shadow_mask)
        offset = CONFIG["shadow_offset"] * scale

    for i, line in enumerate(lines):
        y = first_y + i * line_height
        draw.text((center_x, y), line, font=font, fill=fill, anchor=anchor)
        if shadow_mask is not None:
            shadow_draw.text((center_x + offset, y + offset), line, font=font,
                             fill=CONFIG["shadow_alpha"], anchor=anchor)

    if shadow_mask is not None:
        # canvas shadowBlur is twice the Gaussian standard deviation
        sigma = CONFIG["shadow_blur"] * scale / 2
        shadow_mask = shadow_mask.filter(ImageFilter.GaussianBlur(radius=sigma))
        if layer.opacity < 1.0:
            shadow_mask = shadow_mask.point(lambda v: int(v * layer.opacity + 0.5))
        canvas.paste((0, 0, 0), (0, 0, w, h), shadow_mask)

    text_img = _with_opacity(text_img, layer.opacity)
    canvas.paste(text_img, (0, 0), text_img)


# ---------------------------------------------------------------------------
# Frame
# ---------------------------------------------------------------------------

def render_frame(scene: SceneState, blobs: Sequence[BlobDescriptor],
                 particles: Sequence[WeatherParticle], elapsed_ms: float,
                 size: Optional[Tuple[int, int]] = None,
                 font_resolver: Optional[FontResolver] = None) -> Image.Image:
    """Compose all layers for `elapsed_ms` and return an opaque RGBA image."""
    scene_w, scene_h = scene.dimensions
    size = size or (scene_w, scene_h)
    scale = size[0] / scene_w
    font_resolver = font_resolver or resolve_font

    base = draw_background(scene, size)
    canvas = np.asarray(base, dtype=np.float32) / 255.0
    canvas = draw_blobs(canvas, scene, blobs, elapsed_ms, scale)
    canvas = draw_weather(canvas, scene.weather.kind, particles, scale)

    image = Image.fromarray(np.round(np.clip(canvas, 0.0, 1.0) * 255).astype(np.uint8))
    draw_logo(image, scene.logo)
    for layer in scene.text_layers:
        draw_text_layer(image, layer, font_resolver)
    return image.convert("RGBA")


class RenderTarget:
    """Fixed-size RGBA surface the schedulers draw into.

    The encoder reads raw bytes from here; the size never changes for the
    lifetime of the target.
    """

    def __init__(self, size):
        self.size = tuple(size)
        self.image = Image.new("RGBA", self.size, (0, 0, 0, 255))

    def draw(self, scene: SceneState, blobs: Sequence[BlobDescriptor],
             particles: Sequence[WeatherParticle], elapsed_ms: float,
             font_resolver: Optional[FontResolver] = None) -> Image.Image:
        frame = render_frame(scene, blobs, particles, elapsed_ms,
                             size=self.size, font_resolver=font_resolver)
        self.image.paste(frame, (0, 0))
        return self.image

    def tobytes(self):
        return self.image.tobytes()
