"""
Real-time capture and export.

The export re-drives the same renderer as the preview, but on its own clock:
every tick measures wall-clock time since capture start, renders the frame
for that instant, and fills the encoder's fixed-rate frame slots up to it.
A slow machine therefore repeats frames (lower effective frame rate) but the
video still covers exactly the loop duration, and the audio captured in step
with the same clock stays in sync.

State machine:  IDLE -> CAPTURING -> IDLE, or CAPTURING -> FAILED -> IDLE
(FAILED lasts while the failure is logged and the encoder torn down)

Audio decode failure and an unsupported preferred codec degrade the export
(video only / fallback format). Any encoder failure aborts it, but the
switch is always released and progress is reset, so the
pipeline never stays stuck in CAPTURING.

There is no cancel: once started, a capture runs for its full duration.
"""
import enum
import logging
import math
import time
from typing import Callable, Optional

from PIL import Image

from wavegen.audio import (AudioDecodeError, CaptureAudioSink, LoopingSource,
                           decode_audio, format_time)
from wavegen.config import CONFIG
from wavegen.encoder import (ExportArtifact, FfmpegEncoder, export_filename,
                             probe_encoders, select_format)
from wavegen.scene import SceneState

logger = logging.getLogger(__name__)

FrameSource = Callable[[float], Image.Image]
ProgressCallback = Callable[[int], None]


class CaptureError(RuntimeError):
    """The export was aborted and produced no output."""


class CaptureState(enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    FAILED = "failed"


class CapturePipeline:
    """Drives one export at a time through the encoder.

    Args:
        switch: Scheduler switch shared with the live preview.
        encoder_factory: Called as factory(fmt, size, fps=, audio_rate=,
            audio_channels=); must return an object with start(),
            write_frame(bytes), stop(audio) -> bytes and abort().
        probe: Returns the set of encoder names available right now.
        decoder: Turns encoded audio bytes into DecodedAudio.
        clock, sleep: Wall-clock source and delay, injectable for tests.
        fps: Fixed capture rate of the encoder.
    """

    def __init__(self, switch, encoder_factory=FfmpegEncoder, probe=probe_encoders,
                 decoder=decode_audio, clock=time.perf_counter, sleep=time.sleep,
                 fps=None):
        self.switch = switch
        self.encoder_factory = encoder_factory
        self.probe = probe
        self.decoder = decoder
        self.clock = clock
        self.sleep = sleep
        self.fps = fps or CONFIG["export_fps"]
        self.state = CaptureState.IDLE
        self.progress = 0
        self.last_error = None

    def _publish(self, value, on_progress):
        value = max(self.progress, min(100, value))
        self.progress = value
        if on_progress is not None:
            on_progress(value)

    def _prepare_audio(self, scene):
        if scene.audio is None:
            return None
        try:
            decoded = self.decoder(scene.audio.data)
        except AudioDecodeError as e:
            logger.warning("Audio decode failed, exporting video only: %s", e)
            return None
        trim = scene.audio.trim
        logger.info("Audio: %s, looping %s - %s (%.1fs)", scene.audio.name,
                    format_time(trim.start), format_time(trim.end), trim.length)
        return CaptureAudioSink(LoopingSource(decoded, trim.start, trim.end))

    def _run(self, scene: SceneState, frame_source: FrameSource, encoder,
             sink: Optional[CaptureAudioSink],
             on_progress: Optional[ProgressCallback]) -> int:
        """The tick loop. Returns the number of frames written."""
        fps = self.fps
        duration_ms = scene.duration_ms
        written = 0
        last_frame = None

        if sink is not None:
            sink.source.start()
        start = self.clock()

        while True:
            elapsed = (self.clock() - start) * 1000.0
            if elapsed >= duration_ms:
                break

            frame = frame_source(elapsed).tobytes()
            due = int(elapsed * fps / 1000.0) + 1
            while written < due:
                encoder.write_frame(frame)
                written += 1
            last_frame = frame

            if sink is not None:
                sink.pull_until(elapsed)
            self._publish(int(round(elapsed / duration_ms * 100)), on_progress)

            next_slot = start + due / fps
            self.sleep(max(0.0, next_slot - self.clock()))

        # Pad the last partial slot so the video is never shorter than the loop
        total = max(written, int(math.ceil(elapsed * fps / 1000.0)))
        if last_frame is None:
            last_frame = frame_source(0.0).tobytes()
        while written < total:
            encoder.write_frame(last_frame)
            written += 1
        if sink is not None:
            sink.pull_until(total * 1000.0 / fps)
        self._publish(100, on_progress)
        return written

    def export(self, scene: SceneState, frame_source: FrameSource,
               on_progress: Optional[ProgressCallback] = None) -> ExportArtifact:
        """Capture `scene.duration` seconds of `frame_source` in real time.

        Args:
            scene: Snapshot taken at capture start; duration, size and audio
                come from here.
            frame_source: Renders the frame for a given elapsed time (ms).
                It may read a newer snapshot for every tick.
            on_progress: Receives an integer 0-100 once per tick.

        Returns:
            ExportArtifact with the container bytes, MIME type and file name.

        Raises:
            CaptureError: The encoder failed. The pipeline passes through
                FAILED back to IDLE, `last_error` holds the cause and the
                renderer has been handed back.
        """
        if self.state is CaptureState.CAPTURING:
            raise CaptureError("A capture is already running")
        self.switch.acquire_capture()
        self.state = CaptureState.CAPTURING
        self.progress = 0
        self.last_error = None
        logger.info("Capturing %.1fs at %dx%d, %d fps", scene.duration,
                    *scene.dimensions, self.fps)

        sink = None
        encoder = None
        finished = False
        try:
            sink = self._prepare_audio(scene)
            fmt = select_format(self.probe())
            logger.info("Export format: %s", fmt.mime_type)

            audio_kwargs = {}
            if sink is not None:
                audio_kwargs = {"audio_rate": sink.source.sample_rate,
                                "audio_channels": sink.source.channels}
            encoder = self.encoder_factory(fmt, scene.dimensions, fps=self.fps, **audio_kwargs)
            encoder.start()

            frames = self._run(scene, frame_source, encoder, sink, on_progress)
            data = encoder.stop(sink.samples() if sink is not None else None)
            finished = True
        except Exception as e:
            self.state = CaptureState.FAILED
            self.last_error = e
            logger.exception("Export failed")
            if encoder is not None and not finished:
                encoder.abort()
            raise CaptureError(f"Export failed: {e}") from e
        finally:
            if sink is not None:
                sink.release()
            self.progress = 0
            self.switch.release_capture()
            self.state = CaptureState.IDLE

        filename = export_filename(CONFIG["export_basename"], scene.aspect_ratio,
                                   scene.duration, fmt.extension)
        logger.info("Export finished: %s (%d frames, %.1f MB)", filename, frames,
                    len(data) / 1e6)
        return ExportArtifact(data, fmt.mime_type, filename)
