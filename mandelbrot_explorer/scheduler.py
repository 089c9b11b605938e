"""
Four-pass progressive refinement scheduler.

Pixels are grouped into blocks of 4 along row-major order. Pass p computes
the true color of position p of every block and paints positions p..3 with
it, so pass 0 gives an instant coarse preview and pass 3 leaves every pixel
exact. Blocks are independent and are rendered in parallel on a thread
pool; the passes themselves run strictly one after another.
"""

import enum
import logging
import queue
import threading

import numpy as np

from .compute import BLOCK_SIZE, render_blocks

LOGGER = logging.getLogger(__name__)

PASS_COUNT = 4
DEFAULT_CHUNK_BLOCKS = 256

_CHUNK_DONE = object()


class RenderOutcome(enum.Enum):
    """Terminal state of a render run."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancellationToken:
    """
    Cooperative cancellation flag shared with the render kernels.

    The flag lives in a one-element numpy array so the JIT-compiled block
    kernel can poll it without the GIL.
    """

    def __init__(self):
        self.flag = np.zeros(1, dtype=np.uint8)

    def cancel(self):
        self.flag[0] = 1

    @property
    def cancelled(self):
        return bool(self.flag[0])


def block_count(pixel_count):
    """Number of blocks covering pixel_count pixels (the last may be partial)."""
    return -(-pixel_count // BLOCK_SIZE)


def pass_indices(block, pass_index, pixel_count):
    """Linear indices written by pass_index inside block."""
    start = block * BLOCK_SIZE
    return range(min(start + pass_index, pixel_count), min(start + BLOCK_SIZE, pixel_count))


def chunk_size(total_blocks, chunk_blocks=DEFAULT_CHUNK_BLOCKS):
    """
    Blocks handed to one worker task.

    Never more than 1% of the pass, so the per-pass percentage moves by at
    most one between updates and every value up to 100 is reported.
    """
    return max(1, min(chunk_blocks, total_blocks // 100))


class _PassProgress:
    """Counts finished blocks of one pass and queues each new percentage."""

    def __init__(self, total_blocks, events):
        self.total_blocks = total_blocks
        self.events = events
        self.done = 0
        self.last_percentage = -1
        self.lock = threading.Lock()

    def advance(self, blocks):
        with self.lock:
            self.done += blocks
            percentage = self.done * 100 // self.total_blocks
            if percentage != self.last_percentage:
                self.last_percentage = percentage
                # Queued under the lock so percentages stay in increasing order
                self.events.put(percentage)


class ProgressiveScheduler:
    """
    Fills a pixel buffer in four interlaced passes.

    Usage:
        scheduler = ProgressiveScheduler(pool)
        outcome = scheduler.run(request, pixels, token,
                                on_progress=lambda p, pct: ...,
                                on_flush=lambda p: ...)

    Attributes:
        pool: Executor the block chunks are submitted to
        chunk_blocks: Upper bound on consecutive blocks handed to one task
    """

    def __init__(self, pool, chunk_blocks=DEFAULT_CHUNK_BLOCKS):
        if chunk_blocks < 1:
            raise ValueError("chunk_blocks must be at least 1")
        self.pool = pool
        self.chunk_blocks = chunk_blocks

    def run(self, request, pixels, token, on_progress=None, on_flush=None):
        """
        Render request into pixels, blocking until done or cancelled.

        Workers only queue progress; on_progress and on_flush are called on
        the thread that called run(), so a slow callback never holds back a
        worker.

        Args:
            request: RenderRequest to render
            pixels: Flat uint32 array of request.pixel_count entries
            token: CancellationToken polled between and within passes
            on_progress: Called as on_progress(pass_index, percentage)
            on_flush: Called as on_flush(pass_index) after every finished pass

        Returns:
            RenderOutcome.COMPLETED or RenderOutcome.CANCELLED. Exceptions
            raised by a worker propagate to the caller.
        """
        pixel_count = request.pixel_count
        if pixels.shape != (pixel_count,):
            raise ValueError(f"buffer has shape {pixels.shape}, expected ({pixel_count},)")
        if pixel_count == 0:
            return RenderOutcome.COMPLETED

        total_blocks = block_count(pixel_count)
        step = chunk_size(total_blocks, self.chunk_blocks)
        for pass_index in range(PASS_COUNT):
            if token.cancelled:
                return RenderOutcome.CANCELLED

            events = queue.SimpleQueue()
            progress = _PassProgress(total_blocks, events)
            futures = [
                self.pool.submit(self._render_chunk, request, pixels, token, pass_index,
                                 first, min(first + step, total_blocks), progress)
                for first in range(0, total_blocks, step)
            ]
            for future in futures:
                future.add_done_callback(lambda _: events.put(_CHUNK_DONE))
            self._deliver_progress(events, len(futures), pass_index, on_progress)
            for future in futures:
                future.result()

            if token.cancelled:
                LOGGER.debug("Pass %d interrupted after %d/%d blocks",
                             pass_index, progress.done, total_blocks)
                return RenderOutcome.CANCELLED
            LOGGER.debug("Pass %d finished (%d blocks)", pass_index, total_blocks)
            if on_flush is not None:
                on_flush(pass_index)

        return RenderOutcome.COMPLETED

    @staticmethod
    def _deliver_progress(events, pending, pass_index, on_progress):
        """Hand queued percentages to on_progress until every chunk has finished."""
        while pending:
            event = events.get()
            if event is _CHUNK_DONE:
                pending -= 1
            elif on_progress is not None:
                on_progress(pass_index, event)

    @staticmethod
    def _render_chunk(request, pixels, token, pass_index, first, stop, progress):
        if token.cancelled:
            return
        viewport = request.viewport
        processed = render_blocks(
            pixels, first, stop, pass_index,
            request.pixel_width, request.pixel_height,
            viewport.origin[0], viewport.origin[1],
            viewport.extent[0], viewport.extent[1],
            request.max_iterations, token.flag,
        )
        if processed:
            progress.advance(processed)
