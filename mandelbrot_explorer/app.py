"""
Main application module for the Mandelbrot explorer.

Contains the MandelbrotApp class which handles:
- Window setup and main loop
- User input (zoom, pan, keyboard)
- Draining renderer notifications on the UI thread
- Displaying progressively refined frames
"""

import os
import queue
from datetime import datetime

import pygame

from .colormaps import GRAYSCALE, colorize, get_colormap, list_colormap_names
from .compute import warmup_jit
from .renderer import ProgressiveRenderer
from .scheduler import PASS_COUNT, RenderOutcome
from .viewport import RenderRequest, Viewport


class MandelbrotApp:
    """
    Main application class for the Mandelbrot explorer.

    Handles the pygame window and event loop, and acts as the display
    collaborator of the ProgressiveRenderer: notifications are queued by
    the render threads and handled here, on the UI thread.
    """

    # Default configuration
    DEFAULT_WIDTH = 960
    DEFAULT_HEIGHT = 540
    DEFAULT_MAX_ITER = 100
    DEFAULT_PALETTE = GRAYSCALE
    RENDER_DELAY_MS = 25  # Delay before starting render after user action

    # Zoom factors
    ZOOM_IN_FACTOR = 0.9
    ZOOM_OUT_FACTOR = 1.1

    def __init__(self, width=None, height=None, max_iter=None, palette=None):
        """
        Initialize the application.

        Args:
            width: Window width in pixels (default 960)
            height: Window height in pixels (default 540)
            max_iter: Maximum iteration count (default 100)
            palette: Colormap name (default 'Grayscale')
        """
        self.width = width or self.DEFAULT_WIDTH
        self.height = height or self.DEFAULT_HEIGHT
        self.max_iter = max_iter or self.DEFAULT_MAX_ITER
        self.palette_names = list_colormap_names()
        self.palette_name = palette or self.DEFAULT_PALETTE
        self.colormap = get_colormap(self.palette_name)

        self.viewport = Viewport.default().fitted(self.width, self.height)

        # Pygame state (initialized in run())
        self.screen = None
        self.clock = None

        # Renderer notifications, drained on the UI thread
        self.ui_queue = queue.SimpleQueue()
        self.renderer = None

        # Display state
        self.current_frame = None
        self.current_surface = None
        self.surface_viewport = None
        self.status = ""

        # Input state
        self.dragging = False
        self.drag_start = None
        self.drag_start_viewport = None

        # Render timing
        self.last_action_time = 0
        self.pending_render = False

        self.running = False

    def run(self):
        """Run the application main loop."""
        self._init_pygame()
        self._init_renderer()

        self.running = True
        self._request_render(pygame.time.get_ticks(), delay=False)
        try:
            while self.running:
                current_time = pygame.time.get_ticks()

                self._handle_events(current_time)
                self._drain_notifications()
                self._maybe_start_render(current_time)
                self._draw()

                self.clock.tick(60)
        finally:
            self.renderer.shutdown(wait=False)
            pygame.quit()

    def _init_pygame(self):
        """Initialize pygame and create window."""
        pygame.init()
        self.screen = pygame.display.set_mode((self.width, self.height), pygame.DOUBLEBUF)
        self.clock = pygame.time.Clock()
        pygame.display.set_caption("Compiling (first run only)...")
        pygame.display.flip()

    def _init_renderer(self):
        """Warm up JIT and create the renderer."""
        warmup_jit()
        self.renderer = ProgressiveRenderer(
            on_progress=self._on_progress,
            on_flush=self._on_flush,
            on_finished=self._on_finished,
            post=self.ui_queue.put,
        )

    # -- renderer notifications (UI thread) ---------------------------------

    def _drain_notifications(self):
        """Run every queued renderer notification."""
        while True:
            try:
                notification = self.ui_queue.get_nowait()
            except queue.Empty:
                return
            notification()

    def _on_progress(self, session_id, pass_index, percentage):
        if self.renderer.is_current(session_id):
            self.status = f"Pass {pass_index + 1}/{PASS_COUNT} - {percentage}%"
            self._update_caption()

    def _on_flush(self, frame):
        if not self.renderer.accepts(frame):
            return
        self.current_frame = frame
        self.surface_viewport = frame.viewport
        self._rebuild_surface()

    def _on_finished(self, session_id, outcome):
        if not self.renderer.is_current(session_id):
            return
        if outcome is RenderOutcome.COMPLETED:
            self.status = "Done"
        elif outcome is RenderOutcome.FAILED:
            self.status = "Render failed"
        self._update_caption()

    def _rebuild_surface(self):
        if self.current_frame is None:
            return
        if self.palette_name == GRAYSCALE:
            # Gray frames already hold their display colors
            rgb = self.current_frame.rgb()
        else:
            rgb = colorize(self.current_frame.pixels, self.colormap)
        self.current_surface = pygame.surfarray.make_surface(rgb.swapaxes(0, 1))

    def _update_caption(self, mouse_pos=None):
        caption = f"Mandelbrot Set - {self.max_iter} iterations - {self.palette_name}"
        if mouse_pos is not None:
            re, im = self.viewport.to_complex(mouse_pos[0], mouse_pos[1], self.width, self.height)
            caption += f" - X: {re:.5f} Y: {im:.5f}"
        if self.status:
            caption += f" - {self.status}"
        pygame.display.set_caption(caption)

    # -- input ----------------------------------------------------------------

    def _handle_events(self, current_time):
        """Process all pending pygame events."""
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False
            elif event.type == pygame.MOUSEWHEEL:
                self._handle_zoom(event, current_time)
            elif event.type == pygame.MOUSEBUTTONDOWN:
                self._handle_mouse_down(event)
            elif event.type == pygame.MOUSEBUTTONUP:
                self._handle_mouse_up(event, current_time)
            elif event.type == pygame.MOUSEMOTION:
                self._handle_mouse_motion(event)
            elif event.type == pygame.KEYDOWN:
                self._handle_key(event, current_time)

    def _handle_zoom(self, event, current_time):
        """Handle mouse wheel zoom at the cursor position."""
        mx, my = pygame.mouse.get_pos()
        zoom = self.ZOOM_IN_FACTOR if event.y > 0 else self.ZOOM_OUT_FACTOR
        self.viewport = self.viewport.zoomed(zoom, mx, my, self.width, self.height)
        self._request_render(current_time)

    def _handle_mouse_down(self, event):
        """Handle mouse button press."""
        if event.button == 1:  # Left click
            self.dragging = True
            self.drag_start = event.pos
            self.drag_start_viewport = self.viewport

    def _handle_mouse_up(self, event, current_time):
        """Handle mouse button release."""
        if event.button == 1 and self.dragging:
            self.dragging = False
            self._request_render(current_time)

    def _handle_mouse_motion(self, event):
        """Handle mouse movement (dragging and coordinate readout)."""
        if self.dragging and self.drag_start:
            dx = event.pos[0] - self.drag_start[0]
            dy = event.pos[1] - self.drag_start[1]
            self.viewport = self.drag_start_viewport.panned(dx, dy, self.width, self.height)
        self._update_caption(event.pos)

    def _handle_key(self, event, current_time):
        """Handle keyboard input."""
        shift = pygame.key.get_mods() & pygame.KMOD_SHIFT
        if event.key == pygame.K_r:
            # Reset to default view
            self.viewport = Viewport.default().fitted(self.width, self.height)
            self._request_render(current_time)
        elif event.key == pygame.K_i:
            self.max_iter = self.max_iter * 2 if shift else self.max_iter + 1
            self._request_render(current_time)
        elif event.key == pygame.K_d:
            self.max_iter = max(1, self.max_iter // 2 if shift else self.max_iter - 1)
            self._request_render(current_time)
        elif event.key == pygame.K_c:
            self._cycle_palette()
        elif event.key == pygame.K_s:
            self._save_image()
        elif event.key == pygame.K_ESCAPE:
            self.running = False

    def _cycle_palette(self):
        """Switch to the next colormap; recolors without re-rendering."""
        idx = self.palette_names.index(self.palette_name)
        self.palette_name = self.palette_names[(idx + 1) % len(self.palette_names)]
        self.colormap = get_colormap(self.palette_name)
        self._rebuild_surface()
        self._update_caption()

    def _save_image(self):
        """Save the last displayed frame as a PNG in the working directory."""
        if self.current_surface is None:
            return
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = os.path.abspath(f"mandelbrot_{timestamp}.png")
        pygame.image.save(self.current_surface, filename)
        print(f"Image saved to: {filename}")

    # -- rendering ------------------------------------------------------------

    def _request_render(self, current_time, delay=True):
        self.last_action_time = current_time - (0 if delay else self.RENDER_DELAY_MS + 1)
        self.pending_render = True

    def _maybe_start_render(self, current_time):
        """Start a new render once the user has paused."""
        if self.dragging or not self.pending_render:
            return
        if current_time - self.last_action_time <= self.RENDER_DELAY_MS:
            return
        self.pending_render = False
        self.renderer.generate(
            RenderRequest(self.viewport, self.width, self.height, self.max_iter)
        )
        self.status = "Computing..."
        self._update_caption()

    def _draw(self):
        """Draw the current frame, transformed to the live view."""
        self.screen.fill((0, 0, 0))
        if self.current_surface is not None:
            self._blit_surface_to_view(self.current_surface, self.surface_viewport)
        pygame.display.flip()

    def _blit_surface_to_view(self, surface, viewport):
        """
        Blit a rendered surface to the screen, transforming for current view.

        This handles the case where the rendered viewport doesn't exactly
        match the current view (e.g., during panning/zooming).
        """
        left, top = self.viewport.to_pixel(*viewport.origin, self.width, self.height)
        scale_x = viewport.extent[0] / self.viewport.extent[0]
        scale_y = viewport.extent[1] / self.viewport.extent[1]
        size = (int(round(self.width * scale_x)), int(round(self.height * scale_y)))
        if size[0] <= 0 or size[1] <= 0:
            return
        if max(size) > 8 * max(self.width, self.height):
            return  # Zoomed far past the rendered frame; wait for the next flush
        if size != surface.get_size():
            surface = pygame.transform.smoothscale(surface, size)
        self.screen.blit(surface, (int(round(left)), int(round(top))))


def run(width=None, height=None, max_iter=None, palette=None):
    """
    Run the Mandelbrot explorer.

    Args:
        width: Window width (default 960)
        height: Window height (default 540)
        max_iter: Maximum iterations (default 100)
        palette: Colormap name (default 'Grayscale')
    """
    app = MandelbrotApp(width, height, max_iter, palette)
    try:
        app.run()
    except KeyboardInterrupt:
        pass
