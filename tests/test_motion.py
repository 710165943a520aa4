"""Tests for the perfect-loop motion model."""

import math

import pytest

from wavegen.motion import (blob_offset, blob_position, effective_total_cycles,
                            loop_progress, round_half_up)
from wavegen.scene import BlobDescriptor, generate_blobs


def make_blob(cycles_x=1, cycles_y=1, phase_x=0.3, phase_y=1.1):
    return BlobDescriptor(id="b1", radius_factor=0.5, color="#ff0000",
                          phase_x=phase_x, phase_y=phase_y,
                          base_cycles_x=cycles_x, base_cycles_y=cycles_y)


class TestEffectiveTotalCycles:
    """Tests for integer cycle rounding."""

    def test_concrete_case(self):
        """10s at 1x with one base cycle gives five whole cycles."""
        assert effective_total_cycles(1, 1.0, 10) == 5

    def test_rounds_half_up(self):
        """2.5 ideal cycles round to 3, not to the even 2."""
        assert round_half_up(2.5) == 3
        assert effective_total_cycles(1, 1.0, 5) == 3

    def test_floor_of_one(self):
        """Very slow or short loops still complete one cycle."""
        assert effective_total_cycles(1, 0.1, 1) == 1

    def test_base_cycles_scale(self):
        """A blob with two base cycles runs twice as many cycles."""
        assert effective_total_cycles(2, 1.0, 10) == 10

    @pytest.mark.parametrize("duration", [1, 5, 7.5, 10, 33, 90])
    @pytest.mark.parametrize("base", [1, 2])
    def test_monotonic_in_speed(self, duration, base):
        """Raising the speed never lowers the cycle count."""
        speeds = [0.1 * i for i in range(1, 41)]
        counts = [effective_total_cycles(base, s, duration) for s in speeds]
        assert counts == sorted(counts)

    def test_error_bounded_by_half_cycle(self):
        """The rounded count is within half a cycle of the requested one."""
        for speed in (0.3, 0.7, 1.3, 2.9):
            ideal = 1 * speed * 0.5 * 17
            assert abs(effective_total_cycles(1, speed, 17) - ideal) <= 0.5 or ideal < 1


class TestLoopProgress:
    """Tests for loop_progress."""

    def test_range(self):
        """Progress stays in [0, 1)."""
        for t in (0, 1, 4999, 9999.999, 10000, 25000):
            assert 0 <= loop_progress(t, 10) < 1

    def test_wraps_at_duration(self):
        """A full loop maps back to zero progress."""
        assert loop_progress(10000, 10) == 0
        assert loop_progress(12500, 10) == pytest.approx(0.25)


class TestBlobPosition:
    """Tests for the derived blob position."""

    @pytest.mark.parametrize("duration", [0.5, 3, 10, 12.3, 60])
    @pytest.mark.parametrize("speed", [0.1, 0.7, 1.0, 2.5, 4.0])
    @pytest.mark.parametrize("cycles", [(1, 1), (1, 2), (2, 1), (2, 2)])
    def test_loop_continuity(self, duration, speed, cycles):
        """Position at t=0 equals position at t=duration."""
        blob = make_blob(*cycles)
        start = blob_position(blob, 0, speed, duration, 1920, 1080)
        end = blob_position(blob, duration * 1000, speed, duration, 1920, 1080)
        assert start[0] == pytest.approx(end[0], abs=1e-9)
        assert start[1] == pytest.approx(end[1], abs=1e-9)

    def test_loop_continuity_approaching_seam(self):
        """Just before the seam the position is close to the start."""
        blob = make_blob(2, 1)
        start = blob_position(blob, 0, 1.3, 10, 1920, 1080)
        near_end = blob_position(blob, 9999.99, 1.3, 10, 1920, 1080)
        assert start[0] == pytest.approx(near_end[0], abs=0.5)
        assert start[1] == pytest.approx(near_end[1], abs=0.5)

    def test_half_loop_is_opposite_phase(self):
        """Five cycles over 10s: at 5s the x offset is mirrored."""
        blob = make_blob(1, 1, phase_x=0.4)
        dx0, _ = blob_offset(blob, 0, 1.0, 10, 1920, 1080)
        dx_half, _ = blob_offset(blob, 5000, 1.0, 10, 1920, 1080)
        assert dx_half == pytest.approx(-dx0, abs=1e-9)

    def test_amplitude_and_centre(self):
        """Offsets stay within 35% of the canvas around its centre."""
        blob = make_blob(1, 2)
        for t in range(0, 10000, 250):
            x, y = blob_position(blob, t, 1.0, 10, 1000, 500)
            assert 500 - 350 - 1e-9 <= x <= 500 + 350 + 1e-9
            assert 250 - 175 - 1e-9 <= y <= 250 + 175 + 1e-9

    def test_x_uses_sine_and_y_cosine(self):
        """With zero phase the blob starts centred in x and at the bottom extreme in y."""
        blob = make_blob(1, 1, phase_x=0.0, phase_y=0.0)
        x, y = blob_position(blob, 0, 1.0, 10, 1000, 1000)
        assert x == pytest.approx(500)
        assert y == pytest.approx(500 + 350)

    def test_equal_times_mod_duration_are_identical(self):
        """Renders one loop apart give bit-identical positions."""
        for blob in generate_blobs(["#fff", "#000", "#f00"]):
            a = blob_position(blob, 1234.5, 1.7, 10, 1080, 1920)
            b = blob_position(blob, 1234.5 + 10000 * 3, 1.7, 10, 1080, 1920)
            assert a[0] == pytest.approx(b[0], abs=1e-6)
            assert a[1] == pytest.approx(b[1], abs=1e-6)

    def test_pure(self):
        """Evaluating a position does not change the descriptor."""
        blob = make_blob()
        before = (blob.phase_x, blob.phase_y)
        blob_position(blob, 500, 1, 10, 100, 100)
        assert (blob.phase_x, blob.phase_y) == before
        assert math.isfinite(blob_position(blob, 1e9, 1, 10, 100, 100)[0])
