"""
Progressive Mandelbrot Set Explorer Package

An interactive Mandelbrot set explorer that renders in four progressively
refined passes on a thread pool, using Numba for JIT-compiled evaluation
and Pygame for display. A new view cancels the render still in flight.

Quick Start:
    from mandelbrot_explorer import run
    run()

Or from command line:
    python -m mandelbrot_explorer

Package Structure:
    - viewport.py: Viewport (pixel <-> complex plane mapping) and RenderRequest
    - compute.py: JIT-compiled escape-time evaluator and block kernel
    - scheduler.py: Four-pass progressive scheduler with cancellation
    - renderer.py: Render sessions, supersession and flush snapshots
    - colormaps.py: Display palettes (grayscale, hot, ocean, etc.)
    - app.py: Main application and event loop

Controls:
    - Scroll: Zoom in/out at mouse position
    - Drag: Pan around
    - I / Shift+I: Add one iteration / double the iterations
    - D / Shift+D: Remove one iteration / halve the iterations
    - C: Cycle palette
    - S: Save the current image
    - R: Reset to default view
    - ESC: Quit
"""

from .viewport import InvalidRenderRequest, RenderRequest, Viewport
from .compute import INTERIOR, INTERIOR_COLOR, evaluate
from .scheduler import CancellationToken, ProgressiveScheduler, RenderOutcome
from .renderer import Frame, ProgressiveRenderer, RenderSession
from .colormaps import COLORMAPS, colorize, get_colormap, list_colormap_names


def run(width=None, height=None, max_iter=None, palette=None):
    """Run the interactive explorer (imports pygame lazily)."""
    from .app import run as _run
    _run(width, height, max_iter, palette)


__version__ = "1.0.0"
__all__ = [
    "run",
    "Viewport",
    "RenderRequest",
    "InvalidRenderRequest",
    "evaluate",
    "INTERIOR",
    "INTERIOR_COLOR",
    "CancellationToken",
    "ProgressiveScheduler",
    "RenderOutcome",
    "Frame",
    "ProgressiveRenderer",
    "RenderSession",
    "COLORMAPS",
    "colorize",
    "get_colormap",
    "list_colormap_names",
]
