"""
Display palettes for rendered frames.

The renderer always produces grayscale 0x00GGGGGG pixels (plus the
all-bits-set interior color). A palette is a numpy array of shape (256, 3)
with RGB values (uint8), indexed by the gray byte, so recoloring a frame
is a single table lookup and never requires a new render.

To add a new colormap:
1. Define a create_colormap_xxx() function that returns the color array
2. Add it to the COLORMAPS dictionary at the bottom of this file
"""

import numpy as np

from .compute import INTERIOR_COLOR


NUM_COLORS = 256  # One entry per gray level
INSIDE_COLOR = (255, 255, 255)  # Interior pixels, as the all-bits-set sentinel shows
GRAYSCALE = 'Grayscale'


def _ramp():
    return np.linspace(0.0, 1.0, NUM_COLORS)


def _to_uint8(r, g, b):
    colors = np.stack([r, g, b], axis=1)
    return np.clip(np.rint(colors * 255.0), 0, 255).astype(np.uint8)


def create_colormap_grayscale():
    """
    Grayscale colormap: black -> white.

    Identity mapping; shows exactly what the evaluator produced.
    """
    v = np.arange(NUM_COLORS, dtype=np.uint8)
    return np.stack([v, v, v], axis=1)


def create_colormap_hot():
    """
    Hot colormap: black -> red -> orange -> yellow -> white.

    Uses a power curve to spend more time in the bright colors.
    """
    t = _ramp() ** 0.8
    return _to_uint8(
        np.minimum(1.0, t * 2.5),
        np.clip((t - 0.4) * 2.5, 0.0, 1.0),
        np.clip((t - 0.7) * 3.3, 0.0, 1.0),
    )


def create_colormap_ocean():
    """Ocean colormap: deep blue -> cyan -> white."""
    t = _ramp()
    return _to_uint8(
        np.clip((t - 0.5) * 2.0, 0.0, 1.0),
        t,
        (50.0 + 205.0 * t) / 255.0,
    )


def create_colormap_forest():
    """Forest colormap: dark green -> lime -> yellow."""
    t = _ramp()
    return _to_uint8(
        np.clip((t - 0.3) * 1.4, 0.0, 1.0),
        (80.0 + 175.0 * t) / 255.0,
        np.clip((t - 0.7) * 3.3, 0.0, 1.0),
    )


def create_colormap_purple():
    """Purple colormap: deep purple -> magenta -> pink -> white."""
    t = _ramp()
    return _to_uint8(
        (100.0 + 155.0 * t) / 255.0,
        np.clip((t - 0.3) * 1.4, 0.0, 1.0),
        (80.0 + 175.0 * t) / 255.0,
    )


def create_colormap_rainbow():
    """
    Rainbow colormap: cycles through hues.

    Five complete hue rotations; high contrast between nearby gray levels.
    """
    h = (_ramp() * 5.0) % 1.0
    sector = np.minimum((h * 6.0).astype(np.int64), 5)
    rise = h * 6.0 - sector   # 0 -> 1 across the sector
    fall = 1.0 - rise
    one = np.ones_like(h)
    zero = np.zeros_like(h)
    r = np.choose(sector, [one, fall, zero, zero, rise, one])
    g = np.choose(sector, [rise, one, one, fall, zero, zero])
    b = np.choose(sector, [zero, zero, rise, one, one, fall])
    return _to_uint8(r, g, b)


# Registry of all available colormaps.
# Keys are display names, values are factory functions.
COLORMAPS = {
    GRAYSCALE: create_colormap_grayscale,
    'Hot': create_colormap_hot,
    'Ocean': create_colormap_ocean,
    'Forest': create_colormap_forest,
    'Purple': create_colormap_purple,
    'Rainbow': create_colormap_rainbow,
}


def get_colormap(name):
    """
    Get a colormap by name.

    Args:
        name: Key from COLORMAPS dictionary

    Returns:
        Colormap array (256, 3) of uint8 RGB values

    Raises:
        KeyError if name not found
    """
    return COLORMAPS[name]()


def list_colormap_names():
    """Get list of available colormap names."""
    return list(COLORMAPS.keys())


def colorize(pixels, colormap, inside_color=INSIDE_COLOR):
    """
    Map packed grayscale pixels to an RGB image.

    Args:
        pixels: uint32 array of packed 0x00GGGGGG colors, any shape
        colormap: (256, 3) uint8 palette
        inside_color: RGB triple for interior (INTERIOR_COLOR) pixels

    Returns:
        uint8 array of shape pixels.shape + (3,)
    """
    pixels = np.asarray(pixels, dtype=np.uint32)
    gray = (pixels & 0xFF).astype(np.intp)
    rgb = np.asarray(colormap, dtype=np.uint8)[gray]
    rgb[pixels == INTERIOR_COLOR] = inside_color
    return rgb
