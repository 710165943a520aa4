"""
Perfect-loop motion model.

Each blob orbits the canvas centre: x follows a sine, y a cosine, each with
its own whole number of cycles per loop. The speed dial sets a target
frequency, but the cycle count over one loop is rounded to an integer so the
position at elapsed = duration is exactly the position at elapsed = 0. The
requested speed is missed by at most half a cycle over the whole loop; in
exchange the exported video can be played back-to-back without a jump.
"""
import math
from typing import Tuple

from wavegen.config import CONFIG
from wavegen.scene import BlobDescriptor


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (builtin round() is banker's)."""
    return int(math.floor(value + 0.5))


def effective_total_cycles(base_cycles: int, speed: float, duration: float) -> int:
    """Whole cycles one axis completes over a loop of `duration` seconds."""
    target_freq = speed * CONFIG["baseline_hz"]
    ideal_total_cycles = base_cycles * target_freq * duration
    return max(1, round_half_up(ideal_total_cycles))


def loop_progress(elapsed_ms: float, duration: float) -> float:
    """Position inside the loop, in [0, 1)."""
    period_ms = duration * 1000.0
    return (elapsed_ms % period_ms) / period_ms


def axis_angle(base_cycles: int, phase: float, elapsed_ms: float,
               speed: float, duration: float) -> float:
    cycles = effective_total_cycles(base_cycles, speed, duration)
    return loop_progress(elapsed_ms, duration) * 2 * math.pi * cycles + phase


def blob_offset(blob: BlobDescriptor, elapsed_ms: float, speed: float,
                duration: float, width: float, height: float) -> Tuple[float, float]:
    """Offset of the blob centre from the canvas centre."""
    amplitude = CONFIG["orbit_amplitude"]
    angle_x = axis_angle(blob.base_cycles_x, blob.phase_x, elapsed_ms, speed, duration)
    angle_y = axis_angle(blob.base_cycles_y, blob.phase_y, elapsed_ms, speed, duration)
    return (math.sin(angle_x) * amplitude * width,
            math.cos(angle_y) * amplitude * height)


def blob_position(blob: BlobDescriptor, elapsed_ms: float, speed: float,
                  duration: float, width: float, height: float) -> Tuple[float, float]:
    """Blob centre in canvas pixels. Pure: same inputs, same position."""
    dx, dy = blob_offset(blob, elapsed_ms, speed, duration, width, height)
    return width / 2 + dx, height / 2 + dy
