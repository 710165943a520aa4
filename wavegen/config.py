"""
Configuration
=============
All tunable parameters live here. Modules read from these dicts so you can
adjust any value without hunting through the code. Parameters are grouped by
the part of the system they affect.
"""
from pathlib import Path

# ---------------------------------------------------------------------------
# Canvas presets
# ---------------------------------------------------------------------------
# Keyed by the ratio label shown to the user. The label also ends up in the
# export file name (with ':' replaced by '-').
ASPECT_RATIOS = {
    "16:9": (1920, 1080),   # Landscape
    "9:16": (1080, 1920),   # Story
    "1:1": (1080, 1080),    # Square
    "4:5": (1080, 1350),    # Portrait
}

BLEND_MODES = (
    "source-over",
    "screen",
    "overlay",
    "multiply",
    "difference",
    "exclusion",
    "hard-light",
    "soft-light",
)

DEFAULT_COLORS = (
    "#FF0080",  # Pink
    "#7928CA",  # Purple
    "#0070F3",  # Blue
    "#00DFD8",  # Cyan
    "#FF4D4D",  # Red
)

CONFIG = {
    # --- Scene limits ---
    "min_colors": 2,
    "max_colors": 8,
    "reference_width": 1920,       # Text sizes are authored at this width

    # --- Motion ---
    # Speed 1x means each blob axis completes roughly baseline_hz cycles per
    # second, before rounding to a whole number of cycles per loop.
    "baseline_hz": 0.5,
    "orbit_amplitude": 0.35,       # Offset as a fraction of the canvas axis
    "blob_radius_range": (0.4, 0.8),
    "blob_outer_scale": 1.5,       # Gradient disk radius = scale * radius

    # --- Weather ---
    "weather_intensity_range": (10, 100),
    "rain_per_intensity": 5,
    "snow_per_intensity": 2,
    "rain_speed": (10.0, 20.0),    # (minimum, random spread) px per tick
    "snow_speed": (0.5, 2.0),
    "rain_size": (1.0, 3.0),
    "snow_size": (1.0, 5.0),
    "particle_opacity": (0.3, 0.5),
    "snow_wobble_step": 0.05,
    "snow_wobble_amplitude": 0.5,
    "particle_respawn_y": -10.0,

    # --- Text ---
    "line_height": 1.2,            # Multiple of the scaled font size
    "shadow_alpha": 128,           # 50% black
    "shadow_blur": 20,             # At reference width, canvas shadowBlur units
    "shadow_offset": 4,            # At reference width
    "font_dirs": [
        Path(__file__).parent / "fonts",
        Path.home() / ".fonts",
        Path("/usr/share/fonts"),
        Path("/System/Library/Fonts"),
    ],

    # --- Preview ---
    "preview_fps": 60,             # Display refresh the preview ticks at
    "preview_scale": 0.5,          # Preview renders at this fraction of export size

    # --- Export ---
    "export_fps": 60,
    "video_bitrate": "5000k",      # Plenty for soft gradients at HD
    "audio_bitrate": "192k",
    "audio_sample_rate": 48000,
    "audio_channels": 2,
    "export_basename": "gradient-wave",
    "ffmpeg": "ffmpeg",
    "ffprobe": "ffprobe",

    # Tried in order; the first one whose codecs the local ffmpeg can encode
    # wins. The last entry is used unconditionally when nothing matches.
    "export_formats": [
        {
            "mime_type": 'video/mp4; codecs="avc1.42E01E, mp4a.40.2"',
            "extension": "mp4",
            "muxer": "mp4",
            "video_codec": "libx264",
            "audio_codec": "aac",
        },
        {
            "mime_type": "video/webm; codecs=vp9",
            "extension": "webm",
            "muxer": "webm",
            "video_codec": "libvpx-vp9",
            "audio_codec": "libopus",
        },
    ],
}
