"""
Render schedulers.

Two drivers may call the frame renderer: the live preview (free-running,
once per display refresh) and the capture loop (wall-clock paced, see
wavegen.capture). Only one may be active at a time. SchedulerSwitch owns
that decision: handing over to capture stops the preview synchronously,
and handing back restarts it if it was running before.
"""
import enum
import logging
import threading
import time

from wavegen.config import CONFIG

logger = logging.getLogger(__name__)


class SchedulerError(RuntimeError):
    """A driver tried to start while another one owns the renderer."""


class Driver(enum.Enum):
    IDLE = "idle"
    PREVIEW = "preview"
    CAPTURE = "capture"


class PreviewScheduler:
    """Calls `tick(elapsed_ms)` once per display refresh on a background thread.

    The clock is free running: elapsed time counts from construction and is
    not reset by stop/start, so the animation resumes where the wall clock
    says it should be. Stopping only ends the re-scheduling; there is never
    a half-rendered frame to abort.
    """

    def __init__(self, tick, fps=None, clock=time.perf_counter):
        self.tick = tick
        self.interval = 1.0 / (fps or CONFIG["preview_fps"])
        self.clock = clock
        self.origin = clock()
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def elapsed_ms(self) -> float:
        return (self.clock() - self.origin) * 1000.0

    def tick_once(self):
        self.tick(self.elapsed_ms())

    def _run(self):
        next_due = self.clock()
        while not self._stop.is_set():
            try:
                self.tick_once()
            except Exception:
                logger.exception("Preview tick failed, stopping preview")
                return
            next_due += self.interval
            delay = next_due - self.clock()
            if delay < 0:
                # Running behind: skip ahead instead of bursting to catch up
                next_due = self.clock()
                delay = 0
            self._stop.wait(delay)

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="wavegen-preview", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None


class SchedulerSwitch:
    """Explicit owner of the renderer: IDLE, PREVIEW or CAPTURE.

    A preview whose thread has died (a tick raised) reports as IDLE.
    """

    def __init__(self, preview=None):
        self.preview = preview
        self._state = Driver.IDLE
        self._resume_preview = False
        self._lock = threading.Lock()

    @property
    def state(self) -> Driver:
        if self._state is Driver.PREVIEW and not self.preview.running:
            return Driver.IDLE
        return self._state

    def start_preview(self):
        with self._lock:
            if self._state is Driver.CAPTURE:
                raise SchedulerError("Cannot start preview while capturing")
            if self.preview is None:
                raise SchedulerError("No preview scheduler attached")
            self.preview.start()
            self._state = Driver.PREVIEW

    def stop_preview(self):
        with self._lock:
            if self._state is not Driver.PREVIEW:
                return
            self.preview.stop()
            self._state = Driver.IDLE

    def acquire_capture(self):
        """Hand the renderer to the capture loop; returns once preview has stopped."""
        with self._lock:
            if self._state is Driver.CAPTURE:
                raise SchedulerError("A capture is already running")
            self._resume_preview = self.state is Driver.PREVIEW
            if self._state is Driver.PREVIEW:
                self.preview.stop()
            self._state = Driver.CAPTURE
        logger.debug("Renderer handed to capture")

    def release_capture(self):
        """Give the renderer back, resuming the preview only if it ran before capture."""
        with self._lock:
            if self._state is not Driver.CAPTURE:
                return
            if self._resume_preview:
                self.preview.start()
                self._state = Driver.PREVIEW
            else:
                self._state = Driver.IDLE
            self._resume_preview = False
        logger.debug("Renderer released by capture (now %s)", self._state.value)
