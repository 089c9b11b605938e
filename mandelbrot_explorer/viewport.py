"""
Viewport and render request types.

A Viewport describes the visible rectangle of the complex plane:
- origin: the complex value at the top-left pixel
- extent: the (width, height) span in plane units

Image rows increase downward while the imaginary part decreases downward,
so the y-extent is applied with an inverted sign.
"""

import math
from dataclasses import dataclass, replace


U32_MAX = 2**32 - 1  # Sizes and iteration budgets are unsigned 32-bit


class InvalidRenderRequest(ValueError):
    """Raised when a viewport or render request cannot be rendered."""


def _check_finite(name, values):
    for value in values:
        if not math.isfinite(value):
            raise InvalidRenderRequest(f"{name} must be finite, got {values!r}")


@dataclass(frozen=True)
class Viewport:
    """
    Immutable window onto the complex plane.

    Build a new Viewport for every pan or zoom; use panned(), zoomed()
    and fitted() to derive one from the current view.
    """

    origin: tuple = (-2.5, 1.5)
    extent: tuple = (4.0, 2.25)

    def __post_init__(self):
        origin = tuple(float(v) for v in self.origin)
        extent = tuple(float(v) for v in self.extent)
        if len(origin) != 2 or len(extent) != 2:
            raise InvalidRenderRequest("origin and extent must be (re, im) pairs")
        _check_finite("origin", origin)
        _check_finite("extent", extent)
        if extent[0] <= 0.0 or extent[1] <= 0.0:
            raise InvalidRenderRequest(f"extent must be strictly positive, got {extent!r}")
        object.__setattr__(self, "origin", origin)
        object.__setattr__(self, "extent", extent)

    @classmethod
    def default(cls):
        """The classic overview of the whole set."""
        return cls()

    def to_complex(self, col, row, pixel_width, pixel_height):
        """
        Map a pixel coordinate to a point of the complex plane.

        Args:
            col, row: Pixel coordinate (row 0 is the top of the image)
            pixel_width, pixel_height: Image dimensions in pixels

        Returns:
            (re, im) tuple of floats
        """
        re = self.origin[0] + (col / pixel_width) * self.extent[0]
        im = self.origin[1] - (row / pixel_height) * self.extent[1]
        return re, im

    def to_pixel(self, re, im, pixel_width, pixel_height):
        """Inverse of to_complex(); returns fractional (col, row)."""
        col = (re - self.origin[0]) / self.extent[0] * pixel_width
        row = (self.origin[1] - im) / self.extent[1] * pixel_height
        return col, row

    def panned(self, d_col, d_row, pixel_width, pixel_height):
        """
        Shift the view by a pixel delta.

        Dragging the image right by d_col pixels moves the origin left,
        so the content follows the pointer.
        """
        dx = d_col / pixel_width * self.extent[0]
        dy = d_row / pixel_height * self.extent[1]
        return replace(self, origin=(self.origin[0] - dx, self.origin[1] + dy))

    def zoomed(self, factor, col, row, pixel_width, pixel_height):
        """
        Scale the extent by factor, keeping the point under (col, row) fixed.

        factor < 1 zooms in, factor > 1 zooms out.
        """
        if not (factor > 0.0 and math.isfinite(factor)):
            raise InvalidRenderRequest(f"zoom factor must be positive, got {factor!r}")
        re, im = self.to_complex(col, row, pixel_width, pixel_height)
        new_w = self.extent[0] * factor
        new_h = self.extent[1] * factor
        origin = (re - col / pixel_width * new_w, im + row / pixel_height * new_h)
        return Viewport(origin=origin, extent=(new_w, new_h))

    def fitted(self, pixel_width, pixel_height):
        """Match the plane aspect ratio to the pixel aspect, keeping the real span."""
        if pixel_width <= 0 or pixel_height <= 0:
            return self
        height = self.extent[0] * pixel_height / pixel_width
        return replace(self, extent=(self.extent[0], height))


@dataclass(frozen=True)
class RenderRequest:
    """Everything needed to render one image."""

    viewport: Viewport
    pixel_width: int
    pixel_height: int
    max_iterations: int

    def __post_init__(self):
        if not isinstance(self.viewport, Viewport):
            raise InvalidRenderRequest("viewport must be a Viewport")
        for name in ("pixel_width", "pixel_height", "max_iterations"):
            value = getattr(self, name)
            try:
                as_int = int(value)
            except (TypeError, ValueError, OverflowError):
                raise InvalidRenderRequest(f"{name} must be an integer, got {value!r}") from None
            if isinstance(value, bool) or as_int != value:
                raise InvalidRenderRequest(f"{name} must be an integer, got {value!r}")
            if as_int > U32_MAX:
                raise InvalidRenderRequest(f"{name} must not exceed {U32_MAX}, got {as_int}")
            object.__setattr__(self, name, as_int)
        if self.pixel_width < 0 or self.pixel_height < 0:
            raise InvalidRenderRequest(
                f"image size must not be negative, got {self.pixel_width}x{self.pixel_height}"
            )
        if self.max_iterations < 1:
            raise InvalidRenderRequest(
                f"max_iterations must be at least 1, got {self.max_iterations}"
            )

    @property
    def pixel_count(self):
        return self.pixel_width * self.pixel_height
