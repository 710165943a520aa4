"""Tests for the real-time capture pipeline.

A fake clock makes the wall-clock loop deterministic: sleeping advances time
exactly, and 8 fps keeps every frame slot exactly representable in floats.
"""

import pytest

from conftest import FakeClock, FakeEncoder, FakePreview, ramp_audio, tiny_frame
from wavegen.audio import AudioDecodeError
from wavegen.capture import CaptureError, CapturePipeline, CaptureState
from wavegen.encoder import EncoderError
from wavegen.scene import AudioAttachment, AudioTrimWindow, SceneState
from wavegen.scheduler import Driver, SchedulerSwitch

ALL_CODECS = {"libx264", "aac", "libvpx-vp9", "libopus"}


class FailingStartEncoder(FakeEncoder):
    def start(self):
        raise EncoderError("ffmpeg missing")


class FailingWriteEncoder(FakeEncoder):
    def write_frame(self, data):
        if len(self.frames) >= 3:
            raise EncoderError("pipe closed")
        super().write_frame(data)


def make_pipeline(switch=None, clock=None, encoder_factory=FakeEncoder,
                  decoder=None, probe=None, fps=8):
    clock = clock or FakeClock()
    return CapturePipeline(
        switch or SchedulerSwitch(),
        encoder_factory=encoder_factory,
        probe=probe or (lambda: ALL_CODECS),
        decoder=decoder or (lambda data: ramp_audio(30)),
        clock=clock,
        sleep=clock.sleep,
        fps=fps,
    )


def scene_with_audio(duration=20.0, start=5.0, end=15.0):
    trim = AudioTrimWindow(30.0, start, end)
    return SceneState(duration=duration, text_layers=(),
                      audio=AudioAttachment("loop.wav", b"encoded", trim))


class TestCaptureLoop:
    """Tests for frame pacing and progress."""

    def test_frame_count_matches_duration(self):
        """20s at 8 fps writes exactly 160 frames."""
        pipeline = make_pipeline()
        pipeline.export(SceneState(duration=20, text_layers=()), tiny_frame)
        assert len(FakeEncoder.instances[0].frames) == 160

    def test_renders_at_wall_clock_time(self):
        """Each tick renders the frame for its measured elapsed time."""
        seen = []

        def source(elapsed):
            seen.append(elapsed)
            return tiny_frame(elapsed)
        make_pipeline().export(SceneState(duration=1, text_layers=()), source)
        assert seen == [i * 125.0 for i in range(8)]

    def test_slow_renderer_repeats_frames(self):
        """When ticks run late the encoder still gets a full duration of frames."""
        clock = FakeClock(tick_cost=0.3)
        calls = []

        def source(elapsed):
            calls.append(elapsed)
            return tiny_frame(elapsed)
        make_pipeline(clock=clock).export(SceneState(duration=10, text_layers=()), source)
        frames = FakeEncoder.instances[0].frames
        assert len(frames) >= 80
        assert len(calls) < len(frames)
        # the second tick lands at 425ms and fills slots 1-3 with one frame
        assert frames[1] == frames[2] == frames[3]
        assert frames[0] != frames[1]

    def test_sixty_fps_covers_duration(self):
        """At 60 fps a 20s capture lands on 1200 frames, padding a partial slot at most."""
        clock = FakeClock(tick_cost=0.0005)
        make_pipeline(clock=clock, fps=60).export(SceneState(duration=20, text_layers=()),
                                                  tiny_frame)
        assert 1200 <= len(FakeEncoder.instances[0].frames) <= 1201

    def test_progress_monotonic_and_complete(self):
        """Progress never decreases and ends at 100."""
        values = []
        pipeline = make_pipeline()
        pipeline.export(SceneState(duration=5, text_layers=()), tiny_frame, values.append)
        assert values == sorted(values)
        assert values[-1] == 100
        assert all(0 <= v <= 100 for v in values)
        assert pipeline.progress == 0

    def test_artifact(self):
        """The artifact carries the container bytes, MIME type and file name."""
        artifact = make_pipeline().export(SceneState(duration=2, text_layers=()), tiny_frame)
        assert artifact.data == b"fake-container"
        assert artifact.filename == "gradient-wave-16-9-2s.mp4"
        assert artifact.mime_type.startswith("video/mp4")

    def test_encoder_gets_scene_size_and_rate(self):
        """The encoder is built for the scene dimensions at the capture rate."""
        make_pipeline().export(SceneState(duration=1, aspect_ratio="9:16", text_layers=()),
                               tiny_frame)
        enc = FakeEncoder.instances[0]
        assert enc.size == (1080, 1920)
        assert enc.fps == 8
        assert enc.started and enc.stopped

    def test_fallback_format(self):
        """Without H.264 the export falls back to WebM."""
        pipeline = make_pipeline(probe=lambda: {"libvpx-vp9", "libopus"})
        artifact = pipeline.export(SceneState(duration=1, text_layers=()), tiny_frame)
        assert artifact.filename.endswith(".webm")
        assert FakeEncoder.instances[0].format.video_codec == "libvpx-vp9"


class TestCaptureAudio:
    """Tests for audio captured alongside the frames."""

    def test_trim_loops_twice(self):
        """A 10s trim under a 20s export is captured as exactly two loops."""
        make_pipeline().export(scene_with_audio(), tiny_frame)
        enc = FakeEncoder.instances[0]
        audio = enc.audio
        assert audio.shape == (2000, 2)
        assert audio[0, 0] == 500
        assert audio[999, 0] == 1499
        assert (audio[:1000] == audio[1000:]).all()
        assert enc.audio_rate == 100
        assert enc.audio_channels == 2

    def test_audio_length_matches_video(self):
        """Captured audio spans exactly the written frames."""
        make_pipeline().export(scene_with_audio(duration=7), tiny_frame)
        enc = FakeEncoder.instances[0]
        assert len(enc.audio) == len(enc.frames) * 100 // 8

    def test_decode_failure_degrades_to_video_only(self):
        """Undecodable audio still produces a video, just without sound."""
        def bad_decoder(data):
            raise AudioDecodeError("corrupt")
        pipeline = make_pipeline(decoder=bad_decoder)
        artifact = pipeline.export(scene_with_audio(duration=2), tiny_frame)
        enc = FakeEncoder.instances[0]
        assert artifact.data == b"fake-container"
        assert enc.audio is None
        assert enc.audio_rate is None
        assert pipeline.state is CaptureState.IDLE

    def test_no_audio(self):
        """A scene without audio passes no samples to the encoder."""
        make_pipeline().export(SceneState(duration=1, text_layers=()), tiny_frame)
        assert FakeEncoder.instances[0].audio is None


class TestCaptureFailures:
    """Tests for failure handling and the scheduler hand-off."""

    def test_encoder_start_failure(self):
        """An encoder that cannot start fails the capture and frees the renderer."""
        switch = SchedulerSwitch()
        pipeline = make_pipeline(switch=switch, encoder_factory=FailingStartEncoder)
        with pytest.raises(CaptureError):
            pipeline.export(SceneState(duration=1, text_layers=()), tiny_frame)
        assert pipeline.state is CaptureState.IDLE
        assert isinstance(pipeline.last_error, EncoderError)
        assert pipeline.progress == 0
        assert switch.state is Driver.IDLE
        assert FakeEncoder.instances[0].aborted

    def test_failed_while_tearing_down(self):
        """The pipeline reports FAILED while the broken encoder is aborted."""
        seen = []

        class RecordingEncoder(FailingStartEncoder):
            def abort(self):
                seen.append(pipeline.state)
                super().abort()
        pipeline = make_pipeline(encoder_factory=RecordingEncoder)
        with pytest.raises(CaptureError):
            pipeline.export(SceneState(duration=1, text_layers=()), tiny_frame)
        assert seen == [CaptureState.FAILED]
        assert pipeline.state is CaptureState.IDLE

    def test_write_failure_aborts(self):
        """A broken pipe mid-capture aborts the encoder."""
        pipeline = make_pipeline(encoder_factory=FailingWriteEncoder)
        with pytest.raises(CaptureError):
            pipeline.export(scene_with_audio(duration=2), tiny_frame)
        assert FakeEncoder.instances[0].aborted
        assert pipeline.state is CaptureState.IDLE
        assert isinstance(pipeline.last_error, EncoderError)

    def test_failed_state_allows_retry(self):
        """After a failure a new export can start."""
        switch = SchedulerSwitch()
        failing = make_pipeline(switch=switch, encoder_factory=FailingStartEncoder)
        with pytest.raises(CaptureError):
            failing.export(SceneState(duration=1, text_layers=()), tiny_frame)
        failing.encoder_factory = FakeEncoder
        artifact = failing.export(SceneState(duration=1, text_layers=()), tiny_frame)
        assert artifact.data == b"fake-container"
        assert failing.state is CaptureState.IDLE
        assert failing.last_error is None

    def test_rejects_concurrent_export(self):
        """A second export while capturing is refused without touching the switch."""
        switch = SchedulerSwitch()
        pipeline = make_pipeline(switch=switch)
        pipeline.state = CaptureState.CAPTURING
        with pytest.raises(CaptureError):
            pipeline.export(SceneState(duration=1, text_layers=()), tiny_frame)
        assert switch.state is Driver.IDLE

    def test_preview_paused_and_resumed(self):
        """Preview stops for the capture and restarts afterwards."""
        preview = FakePreview()
        switch = SchedulerSwitch(preview)
        switch.start_preview()
        states = []

        def source(elapsed):
            states.append((switch.state, preview.running))
            return tiny_frame(elapsed)
        make_pipeline(switch=switch).export(SceneState(duration=1, text_layers=()), source)
        assert set(states) == {(Driver.CAPTURE, False)}
        assert switch.state is Driver.PREVIEW
        assert preview.running
        assert preview.starts == 2

    def test_preview_resumed_after_failure(self):
        """A failed capture still hands the renderer back to the preview."""
        preview = FakePreview()
        switch = SchedulerSwitch(preview)
        switch.start_preview()
        pipeline = make_pipeline(switch=switch, encoder_factory=FailingStartEncoder)
        with pytest.raises(CaptureError):
            pipeline.export(SceneState(duration=1, text_layers=()), tiny_frame)
        assert switch.state is Driver.PREVIEW
        assert preview.running
