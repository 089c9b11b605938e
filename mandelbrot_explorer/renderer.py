"""
Asynchronous progressive renderer with render sessions.

The ProgressiveRenderer class handles:
- Background (async) rendering so the UI stays responsive
- One RenderSession per request, superseding (cancelling) the previous one
- Progress, flush and completion notifications posted to the UI context
- Tagging flushed frames with their session so stale frames can be dropped
"""

import itertools
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from .scheduler import (
    DEFAULT_CHUNK_BLOCKS,
    CancellationToken,
    ProgressiveScheduler,
    RenderOutcome,
)
from .viewport import InvalidRenderRequest, RenderRequest, Viewport

LOGGER = logging.getLogger(__name__)


def _call_inline(fn):
    fn()


@dataclass(frozen=True)
class Frame:
    """
    Read-only snapshot of a session's buffer taken after a pass.

    Attributes:
        session_id: Session that produced the frame
        pass_index: Pass (0..3) that had just finished
        width, height: Image dimensions
        viewport: Viewport the pixels were rendered from
        pixels: (height, width) uint32 array of packed 0x00RRGGBB colors
    """

    session_id: int
    pass_index: int
    width: int
    height: int
    viewport: Viewport
    pixels: np.ndarray

    def rgb(self):
        """Unpack into a (height, width, 3) uint8 RGB image."""
        rgb = np.empty((self.height, self.width, 3), dtype=np.uint8)
        rgb[..., 0] = (self.pixels >> 16) & 0xFF
        rgb[..., 1] = (self.pixels >> 8) & 0xFF
        rgb[..., 2] = self.pixels & 0xFF
        return rgb


class RenderSession:
    """
    One render of one RenderRequest.

    Owns the pixel buffer and cancellation token for its lifetime. Created
    and started by ProgressiveRenderer.generate(); cancelled when a newer
    request supersedes it.

    Attributes:
        session_id: Identity used to tag flushed frames
        request: The RenderRequest being rendered
        buffer: Flat uint32 buffer, row-major, pixel_width * pixel_height long
        token: CancellationToken shared with the workers
        progress: Last reported (pass_index, percentage), or None
        outcome: RenderOutcome once finished, else None
        error: Exception that failed the run, if any
    """

    def __init__(self, session_id, request, scheduler, post=None,
                 on_progress=None, on_flush=None, on_finished=None):
        self.session_id = session_id
        self.request = request
        self.buffer = np.zeros(request.pixel_count, dtype=np.uint32)
        self.token = CancellationToken()
        self.progress = None
        self.outcome = None
        self.error = None

        self._scheduler = scheduler
        self._post = post or _call_inline
        self._on_progress = on_progress
        self._on_flush = on_flush
        self._on_finished = on_finished
        self._finished = threading.Event()
        self._thread = None

    def start(self):
        """Start rendering on a background thread and return immediately."""
        if self._thread is not None:
            raise RuntimeError(f"session {self.session_id} already started")
        self._thread = threading.Thread(
            target=self._run, name=f"mandelbrot-render-{self.session_id}", daemon=True
        )
        self._thread.start()

    def cancel(self):
        """Request cooperative cancellation; workers stop after their current block."""
        self.token.cancel()

    @property
    def cancelled(self):
        return self.token.cancelled

    @property
    def done(self):
        return self._finished.is_set()

    def wait(self, timeout=None):
        """Block until the session finishes; returns its outcome or None on timeout."""
        if not self._finished.wait(timeout):
            return None
        return self.outcome

    def snapshot(self, pass_index):
        """Copy the buffer into a read-only Frame."""
        pixels = self.buffer.reshape(self.request.pixel_height, self.request.pixel_width).copy()
        pixels.flags.writeable = False
        return Frame(
            session_id=self.session_id,
            pass_index=pass_index,
            width=self.request.pixel_width,
            height=self.request.pixel_height,
            viewport=self.request.viewport,
            pixels=pixels,
        )

    def _run(self):
        LOGGER.debug("Session %d started: %dx%d, %d iterations", self.session_id,
                     self.request.pixel_width, self.request.pixel_height,
                     self.request.max_iterations)
        try:
            outcome = self._scheduler.run(
                self.request, self.buffer, self.token,
                on_progress=self._report_progress,
                on_flush=self._flush,
            )
        except Exception as exc:
            if self.token.cancelled:
                # Pool shut down underneath a cancelled session
                LOGGER.debug("Session %d stopped during shutdown: %s", self.session_id, exc)
                outcome = RenderOutcome.CANCELLED
            else:
                LOGGER.exception("Session %d failed: %s", self.session_id, exc)
                self.error = exc
                outcome = RenderOutcome.FAILED

        if outcome is RenderOutcome.CANCELLED:
            LOGGER.info("Session %d cancelled", self.session_id)
        elif outcome is RenderOutcome.COMPLETED:
            LOGGER.info("Session %d completed", self.session_id)
        self.outcome = outcome
        try:
            if self._on_finished is not None:
                self._post(lambda: self._on_finished(self.session_id, outcome))
        finally:
            self._finished.set()

    def _report_progress(self, pass_index, percentage):
        self.progress = (pass_index, percentage)
        if self._on_progress is not None:
            self._post(lambda: self._on_progress(self.session_id, pass_index, percentage))

    def _flush(self, pass_index):
        if self._on_flush is None:
            return
        frame = self.snapshot(pass_index)
        self._post(lambda: self._on_flush(frame))


class ProgressiveRenderer:
    """
    Handles async progressive rendering with supersession.

    Usage:
        renderer = ProgressiveRenderer(on_flush=show_frame, post=ui_queue.put)
        renderer.generate(RenderRequest(Viewport(), 800, 450, 100))

        # In your display code:
        def show_frame(frame):
            if renderer.accepts(frame):
                display(frame.rgb())

    Attributes:
        max_workers: Size of the worker pool (default: CPU count)
        chunk_blocks: Blocks per worker task
        post: Callable that runs a notification in the UI context
              (default: run inline on the session thread; workers never
              run notifications)
    """

    def __init__(self, on_progress=None, on_flush=None, on_finished=None,
                 post=None, max_workers=None, chunk_blocks=DEFAULT_CHUNK_BLOCKS):
        self.max_workers = max_workers or os.cpu_count() or 1
        self.chunk_blocks = chunk_blocks
        self.post = post
        self.on_progress = on_progress
        self.on_flush = on_flush
        self.on_finished = on_finished

        self._pool = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="mandelbrot-worker"
        )
        self._scheduler = ProgressiveScheduler(self._pool, chunk_blocks=chunk_blocks)
        self._ids = itertools.count(1)
        self._current = None
        self.lock = threading.Lock()

    def generate(self, request):
        """
        Start rendering request, cancelling any render still in flight.

        Args:
            request: RenderRequest to render

        Returns:
            The new, already started RenderSession

        Raises:
            InvalidRenderRequest if request is not a valid RenderRequest
        """
        if not isinstance(request, RenderRequest):
            raise InvalidRenderRequest(f"expected a RenderRequest, got {type(request).__name__}")

        with self.lock:
            previous = self._current
            if previous is not None and not previous.done:
                LOGGER.debug("Session %d superseded", previous.session_id)
                previous.cancel()
            session = RenderSession(
                next(self._ids), request, self._scheduler, post=self.post,
                on_progress=self.on_progress,
                on_flush=self.on_flush,
                on_finished=self.on_finished,
            )
            self._current = session
        session.start()
        return session

    @property
    def current_session(self):
        with self.lock:
            return self._current

    def is_current(self, session_id):
        """True if session_id belongs to the session whose flushes are accepted."""
        with self.lock:
            return self._current is not None and self._current.session_id == session_id

    def accepts(self, frame):
        """Flush acceptance: only frames of the current session may be shown."""
        return self.is_current(frame.session_id)

    def cancel(self):
        """Cancel the current session, if any."""
        with self.lock:
            if self._current is not None:
                self._current.cancel()

    def shutdown(self, wait=True):
        """Cancel outstanding work and stop the worker pool."""
        self.cancel()
        self._pool.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
