from __future__ import annotations

import threading
import unittest

import numpy as np

from mandelbrot_explorer.colormaps import GRAYSCALE, colorize, get_colormap
from mandelbrot_explorer.renderer import Frame, ProgressiveRenderer, RenderSession
from mandelbrot_explorer.scheduler import PASS_COUNT, RenderOutcome
from mandelbrot_explorer.viewport import InvalidRenderRequest, RenderRequest, Viewport

TIMEOUT = 60.0


class _Collector:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.frames: list[Frame] = []
        self.progress: list[tuple[int, int, int]] = []
        self.finished: dict[int, RenderOutcome] = {}

    def on_progress(self, session_id: int, pass_index: int, percentage: int) -> None:
        with self.lock:
            self.progress.append((session_id, pass_index, percentage))

    def on_flush(self, frame: Frame) -> None:
        with self.lock:
            self.frames.append(frame)

    def on_finished(self, session_id: int, outcome: RenderOutcome) -> None:
        with self.lock:
            self.finished[session_id] = outcome

    def frames_of(self, session_id: int) -> list[Frame]:
        with self.lock:
            return [f for f in self.frames if f.session_id == session_id]


def _request(width: int = 32, height: int = 18, max_iterations: int = 80) -> RenderRequest:
    return RenderRequest(Viewport.default(), width, height, max_iterations)


class ProgressiveRendererTests(unittest.TestCase):
    def setUp(self) -> None:
        self.collector = _Collector()
        self.renderer = ProgressiveRenderer(
            on_progress=self.collector.on_progress,
            on_flush=self.collector.on_flush,
            on_finished=self.collector.on_finished,
            max_workers=4,
            chunk_blocks=8,
        )

    def tearDown(self) -> None:
        self.renderer.shutdown()

    def test_generate_completes_with_one_flush_per_pass(self) -> None:
        session = self.renderer.generate(_request())
        self.assertIs(session.wait(TIMEOUT), RenderOutcome.COMPLETED)
        self.assertTrue(session.done)

        frames = self.collector.frames_of(session.session_id)
        self.assertEqual([f.pass_index for f in frames], list(range(PASS_COUNT)))
        last = frames[-1]
        self.assertEqual((last.width, last.height), (32, 18))
        self.assertEqual(last.pixels.shape, (18, 32))
        self.assertEqual(last.viewport, session.request.viewport)
        np.testing.assert_array_equal(last.pixels.ravel(), session.buffer)
        self.assertEqual(self.collector.finished[session.session_id], RenderOutcome.COMPLETED)
        self.assertEqual(session.progress, (PASS_COUNT - 1, 100))

    def test_flushed_frames_are_read_only_snapshots(self) -> None:
        session = self.renderer.generate(_request())
        session.wait(TIMEOUT)
        frames = self.collector.frames_of(session.session_id)
        with self.assertRaises(ValueError):
            frames[0].pixels[0, 0] = 1
        self.assertFalse(np.shares_memory(frames[0].pixels, frames[-1].pixels))
        self.assertFalse(np.shares_memory(frames[-1].pixels, session.buffer))

    def test_same_request_renders_identical_buffers(self) -> None:
        first = self.renderer.generate(_request())
        first.wait(TIMEOUT)
        second = self.renderer.generate(_request())
        second.wait(TIMEOUT)
        self.assertNotEqual(first.session_id, second.session_id)
        np.testing.assert_array_equal(first.buffer, second.buffer)

    def test_new_request_cancels_render_in_flight(self) -> None:
        big = _request(320, 240, 2000)
        small = _request(16, 9, 50)
        sessions: dict[str, RenderSession] = {}
        triggered = threading.Event()

        def on_progress(session_id: int, pass_index: int, percentage: int) -> None:
            self.collector.on_progress(session_id, pass_index, percentage)
            # A fresh renderer numbers its first session 1
            if session_id == 1 and not triggered.is_set():
                triggered.set()
                sessions["second"] = self.renderer.generate(small)

        self.renderer.on_progress = on_progress
        sessions["first"] = self.renderer.generate(big)

        self.assertIs(sessions["first"].wait(TIMEOUT), RenderOutcome.CANCELLED)
        self.assertTrue(triggered.wait(TIMEOUT))
        self.assertIs(sessions["second"].wait(TIMEOUT), RenderOutcome.COMPLETED)

        self.assertEqual(self.collector.frames_of(sessions["first"].session_id), [])
        self.assertEqual(len(self.collector.frames_of(sessions["second"].session_id)), PASS_COUNT)
        self.assertEqual(self.collector.finished[sessions["first"].session_id], RenderOutcome.CANCELLED)
        self.assertTrue(sessions["first"].cancelled)
        self.assertTrue(self.renderer.is_current(sessions["second"].session_id))
        self.assertFalse(self.renderer.is_current(sessions["first"].session_id))

    def test_stale_frames_are_not_accepted(self) -> None:
        first = self.renderer.generate(_request())
        first.wait(TIMEOUT)
        stale = self.collector.frames_of(first.session_id)[-1]
        self.assertTrue(self.renderer.accepts(stale))

        second = self.renderer.generate(_request(8, 8, 10))
        second.wait(TIMEOUT)
        self.assertFalse(self.renderer.accepts(stale))
        self.assertTrue(self.renderer.accepts(self.collector.frames_of(second.session_id)[-1]))
        self.assertIs(self.renderer.current_session, second)

    def test_invalid_request_is_rejected_before_any_work(self) -> None:
        with self.assertRaises(InvalidRenderRequest):
            self.renderer.generate("not a request")
        with self.assertRaises(InvalidRenderRequest):
            self.renderer.generate(RenderRequest(Viewport.default(), 4, 1, 0))
        self.assertIsNone(self.renderer.current_session)
        self.assertEqual(self.collector.frames, [])
        self.assertEqual(self.collector.progress, [])
        self.assertEqual(self.collector.finished, {})

    def test_empty_request_completes_immediately(self) -> None:
        session = self.renderer.generate(_request(0, 10))
        self.assertIs(session.wait(TIMEOUT), RenderOutcome.COMPLETED)
        self.assertEqual(self.collector.frames, [])
        self.assertEqual(self.collector.finished[session.session_id], RenderOutcome.COMPLETED)

    def test_cancel_current_session(self) -> None:
        session = self.renderer.generate(_request(320, 240, 5000))
        self.renderer.cancel()
        self.assertIs(session.wait(TIMEOUT), RenderOutcome.CANCELLED)
        self.assertLess(len(self.collector.frames_of(session.session_id)), PASS_COUNT)

    def test_default_notifications_never_run_on_workers(self) -> None:
        threads = set()

        def on_progress(session_id: int, pass_index: int, percentage: int) -> None:
            threads.add(threading.current_thread().name)

        self.renderer.on_progress = on_progress
        session = self.renderer.generate(_request(64, 40))
        self.assertIs(session.wait(TIMEOUT), RenderOutcome.COMPLETED)
        self.assertEqual(threads, {f"mandelbrot-render-{session.session_id}"})

    def test_notifications_go_through_post(self) -> None:
        posted = []
        renderer = ProgressiveRenderer(
            on_flush=self.collector.on_flush,
            on_finished=self.collector.on_finished,
            post=posted.append,
            max_workers=2,
        )
        try:
            session = renderer.generate(_request(8, 4, 20))
            session.wait(TIMEOUT)
            self.assertEqual(self.collector.frames, [])
            self.assertEqual(len(posted), PASS_COUNT + 1)
            for notification in posted:
                notification()
            self.assertEqual(len(self.collector.frames_of(session.session_id)), PASS_COUNT)
            self.assertEqual(self.collector.finished[session.session_id], RenderOutcome.COMPLETED)
        finally:
            renderer.shutdown()


class _NoopScheduler:
    def run(self, request, pixels, token, on_progress=None, on_flush=None):
        return RenderOutcome.COMPLETED


class _ExplodingScheduler:
    def run(self, request, pixels, token, on_progress=None, on_flush=None):
        raise RuntimeError("boom")


class RenderSessionTests(unittest.TestCase):
    def test_worker_failure_is_reported_as_failed(self) -> None:
        finished = []
        session = RenderSession(7, _request(), _ExplodingScheduler(),
                                on_finished=lambda sid, outcome: finished.append((sid, outcome)))
        with self.assertLogs("mandelbrot_explorer.renderer", level="ERROR"):
            session.start()
            self.assertIs(session.wait(TIMEOUT), RenderOutcome.FAILED)
        self.assertIsInstance(session.error, RuntimeError)
        self.assertEqual(finished, [(7, RenderOutcome.FAILED)])

    def test_session_cannot_start_twice(self) -> None:
        session = RenderSession(1, _request(0, 0), _NoopScheduler())
        session.start()
        session.wait(TIMEOUT)
        with self.assertRaises(RuntimeError):
            session.start()

    def test_wait_times_out_before_start(self) -> None:
        session = RenderSession(1, _request(), _ExplodingScheduler())
        self.assertIsNone(session.wait(0.01))
        self.assertIsNone(session.outcome)


class FrameTests(unittest.TestCase):
    def test_rgb_unpacks_channels(self) -> None:
        pixels = np.array([[0x808080, 0xFFFFFFFF, 0x000000]], dtype=np.uint32)
        frame = Frame(session_id=1, pass_index=3, width=3, height=1,
                      viewport=Viewport.default(), pixels=pixels)
        rgb = frame.rgb()
        self.assertEqual(rgb.shape, (1, 3, 3))
        self.assertEqual(rgb.dtype, np.uint8)
        self.assertEqual(rgb[0, 0].tolist(), [128, 128, 128])
        self.assertEqual(rgb[0, 1].tolist(), [255, 255, 255])
        self.assertEqual(rgb[0, 2].tolist(), [0, 0, 0])
        np.testing.assert_array_equal(rgb, colorize(pixels, get_colormap(GRAYSCALE)))


if __name__ == "__main__":
    unittest.main()
