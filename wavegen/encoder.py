"""
Encoder sink: raw RGBA frames in, one finished container out.

Frames are piped to ffmpeg as rawvideo at a fixed frame rate and encoded into
a temporary video-only file. When capture stops, the captured PCM (if any) is
muxed in with a second ffmpeg pass that copies the video stream, and the
finished container is returned as bytes. Writing the two streams separately
avoids juggling two live pipes into one ffmpeg process.

Why a stderr drain thread? ffmpeg writes progress to stderr continuously. If
nobody reads it, the OS pipe buffer fills, ffmpeg blocks on the write, stops
reading stdin, and our frame writes block forever.
"""
import logging
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set, Tuple

import numpy as np

from wavegen.config import CONFIG

logger = logging.getLogger(__name__)


class EncoderError(RuntimeError):
    """The encoder could not be started or did not produce output."""


@dataclass(frozen=True)
class ExportFormat:
    mime_type: str
    extension: str
    muxer: str
    video_codec: str
    audio_codec: str

    @property
    def codecs(self) -> Tuple[str, str]:
        return self.video_codec, self.audio_codec


def configured_formats() -> List[ExportFormat]:
    return [ExportFormat(**entry) for entry in CONFIG["export_formats"]]


def probe_encoders() -> Set[str]:
    """Names of the encoders the local ffmpeg build offers.

    An unusable ffmpeg yields an empty set; the format choice then falls
    through to the last configured format and any real problem surfaces
    when the encoder is started.
    """
    try:
        output = subprocess.run(
            [CONFIG["ffmpeg"], "-hide_banner", "-encoders"],
            capture_output=True, text=True, check=True,
        ).stdout
    except (OSError, subprocess.CalledProcessError) as e:
        logger.warning("Could not query ffmpeg encoders: %s", e)
        return set()

    encoders = set()
    in_table = False
    for line in output.splitlines():
        if line.strip().startswith("------"):
            in_table = True
            continue
        if not in_table:
            continue
        parts = line.split()
        if len(parts) >= 2:
            encoders.add(parts[1])
    return encoders


def select_format(available: Set[str],
                  formats: Optional[List[ExportFormat]] = None) -> ExportFormat:
    """First configured format whose codecs are available, else the last one."""
    formats = formats or configured_formats()
    for fmt in formats:
        if all(codec in available for codec in fmt.codecs):
            if fmt is not formats[0]:
                logger.warning("Preferred format %s unsupported, using %s",
                               formats[0].mime_type, fmt.mime_type)
            return fmt
    fallback = formats[-1]
    logger.warning("No probed format matched, falling back to %s", fallback.mime_type)
    return fallback


def export_filename(base: str, aspect_ratio: str, duration: float, extension: str) -> str:
    """e.g. gradient-wave-16-9-10s.mp4"""
    return f"{base}-{aspect_ratio.replace(':', '-')}-{duration:g}s.{extension}"


@dataclass(frozen=True)
class ExportArtifact:
    data: bytes
    mime_type: str
    filename: str

    def save(self, directory) -> Path:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.filename
        path.write_bytes(self.data)
        return path


class FfmpegEncoder:
    """Streams raw frames into ffmpeg at a fixed rate."""

    def __init__(self, fmt, size, fps=None, audio_rate=None, audio_channels=None):
        self.format = fmt
        self.width, self.height = size
        self.fps = fps or CONFIG["export_fps"]
        self.audio_rate = audio_rate or CONFIG["audio_sample_rate"]
        self.audio_channels = audio_channels or CONFIG["audio_channels"]
        self.frames_written = 0
        self._proc = None
        self._tmpdir = None
        self._video_path = None
        self._stderr_chunks = []
        self._stderr_thread = None

    def _video_command(self):
        cmd = [
            CONFIG["ffmpeg"], "-y",
            "-f", "rawvideo",
            "-pix_fmt", "rgba",
            "-s", f"{self.width}x{self.height}",
            "-r", str(self.fps),
            "-i", "pipe:0",
            "-c:v", self.format.video_codec,
            "-b:v", CONFIG["video_bitrate"],
            "-pix_fmt", "yuv420p",
            "-an",
            "-f", self.format.muxer,
            str(self._video_path),
        ]
        return cmd

    def start(self):
        self._tmpdir = tempfile.TemporaryDirectory(prefix="wavegen-")
        self._video_path = Path(self._tmpdir.name) / f"video.{self.format.extension}"
        cmd = self._video_command()
        logger.debug("Starting encoder: %s", " ".join(cmd))
        try:
            self._proc = subprocess.Popen(cmd, stdin=subprocess.PIPE,
                                          stdout=subprocess.DEVNULL,
                                          stderr=subprocess.PIPE)
        except OSError as e:
            self._cleanup()
            raise EncoderError(f"Could not start ffmpeg: {e}") from e

        def drain_stderr():
            while True:
                chunk = self._proc.stderr.read(4096)
                if not chunk:
                    break
                self._stderr_chunks.append(chunk)
        self._stderr_thread = threading.Thread(target=drain_stderr, daemon=True)
        self._stderr_thread.start()

    def write_frame(self, data):
        try:
            self._proc.stdin.write(data)
        except (BrokenPipeError, ValueError) as e:
            raise EncoderError(
                f"ffmpeg closed pipe at frame {self.frames_written}: {self._stderr_tail()}") from e
        self.frames_written += 1

    def _stderr_tail(self):
        return b"".join(self._stderr_chunks).decode(errors="replace")[-3000:]

    def _finish_video(self):
        try:
            self._proc.stdin.close()
        except BrokenPipeError:
            pass
        self._stderr_thread.join(timeout=30)
        self._proc.wait()
        if self._proc.returncode != 0:
            raise EncoderError(f"ffmpeg failed:\n{self._stderr_tail()}")

    def _mux(self, audio):
        out_path = Path(self._tmpdir.name) / f"export.{self.format.extension}"
        duration = self.frames_written / self.fps
        cmd = [
            CONFIG["ffmpeg"], "-y",
            "-i", str(self._video_path),
            "-f", "f32le",
            "-ar", str(self.audio_rate),
            "-ac", str(self.audio_channels),
            "-i", "pipe:0",
            "-map", "0:v", "-map", "1:a",
            "-c:v", "copy",
            "-c:a", self.format.audio_codec,
            "-b:a", CONFIG["audio_bitrate"],
            "-t", f"{duration:.6f}",
            "-f", self.format.muxer,
            str(out_path),
        ]
        pcm = np.ascontiguousarray(audio, dtype="<f4").tobytes()
        try:
            result = subprocess.run(cmd, input=pcm, capture_output=True)
        except OSError as e:
            raise EncoderError(f"Could not run ffmpeg for muxing: {e}") from e
        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace")[-3000:]
            raise EncoderError(f"ffmpeg mux failed:\n{stderr}")
        return out_path

    def stop(self, audio: Optional[np.ndarray] = None) -> bytes:
        """Finalize the container and return its bytes."""
        try:
            self._finish_video()
            path = self._video_path
            if audio is not None and len(audio):
                path = self._mux(audio)
            data = path.read_bytes()
        finally:
            self._cleanup()
        logger.debug("Encoder produced %d bytes from %d frames", len(data), self.frames_written)
        return data

    def abort(self):
        """Tear down without producing output (used after a failure)."""
        if self._proc is not None:
            if self._proc.poll() is None:
                try:
                    self._proc.stdin.close()
                except (BrokenPipeError, OSError) as e:
                    logger.debug("Closing encoder stdin on abort: %s", e)
                self._proc.kill()
            self._proc.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=5)
            self._stderr_thread = None
        self._cleanup()

    def _cleanup(self):
        if self._tmpdir is not None:
            self._tmpdir.cleanup()
            self._tmpdir = None
