"""
Escape-time evaluation functions using Numba JIT compilation.

This module contains the performance-critical functions of the renderer.
They are compiled with nogil=True so a thread pool can run them truly in
parallel:
- Escape-time evaluation with smooth (continuous) iteration counting
- Grayscale packing of intensities into 32-bit 0x00RRGGBB colors
- The block kernel used by the progressive scheduler

Points that never escape are "interior" and are packed as INTERIOR_COLOR
(every bit set), a color no escaped pixel can produce.
"""

import math

import numpy as np
from numba import jit


BAILOUT = float(1 << 16)   # Squared-magnitude escape threshold
INTERIOR = -1.0            # Intensity sentinel for points inside the set
INTERIOR_COLOR = 0xFFFFFFFF
BLOCK_SIZE = 4             # Pixels per block, one per refinement pass


@jit(nopython=True, nogil=True, cache=True)
def escape_intensity(cr, ci, max_iter):
    """
    Evaluate z = z² + c from z = 0 and return a smoothed intensity.

    Iteration stops the first time |z|² exceeds BAILOUT. The escape index
    is blended between the two neighbouring discrete intensities using
    the fractional part of i + 2 - log2(log2(|z|²)) to avoid banding.

    Args:
        cr, ci: Real and imaginary parts of c
        max_iter: Iteration budget (>= 1)

    Returns:
        Intensity in [0, 1), or INTERIOR if the point never escaped.
    """
    zr = 0.0
    zi = 0.0
    sqr_magnitude = 0.0
    last = 0
    escaped = False

    for i in range(max_iter):
        last = i
        zr, zi = zr * zr - zi * zi + cr, 2.0 * zr * zi + ci
        sqr_magnitude = zr * zr + zi * zi
        if sqr_magnitude > BAILOUT:
            escaped = True
            break

    if not escaped:
        return INTERIOR

    # Escaped on the final permitted iteration: no next bucket to blend toward
    if last == max_iter - 1:
        return last / max_iter

    smooth = last + 2.0 - math.log2(math.log2(sqr_magnitude))
    if math.isfinite(smooth):
        frac = smooth - math.floor(smooth)
    else:
        frac = 0.0

    color0 = last / max_iter
    color1 = (last + 1) / max_iter
    return color0 + (color1 - color0) * frac


@jit(nopython=True, nogil=True, cache=True)
def pack_gray(intensity):
    """Pack an intensity into 0x00GGGGGG, or INTERIOR into INTERIOR_COLOR."""
    if intensity < 0.0:
        return INTERIOR_COLOR
    gray = int(math.floor(intensity * 255.0 + 0.5))
    if gray > 255:
        gray = 255
    return (gray << 16) | (gray << 8) | gray


@jit(nopython=True, nogil=True, cache=True)
def escape_color(cr, ci, max_iter):
    """Packed grayscale color of the point c = cr + ci·i."""
    return pack_gray(escape_intensity(cr, ci, max_iter))


@jit(nopython=True, nogil=True, cache=True)
def pixel_color(index, width, height, origin_re, origin_im, extent_re, extent_im, max_iter):
    """
    Packed color of the pixel at a row-major linear index.

    Uses the same arithmetic as Viewport.to_complex().
    """
    col = index % width
    row = index // width
    cr = origin_re + (col / width) * extent_re
    ci = origin_im - (row / height) * extent_im
    return escape_color(cr, ci, max_iter)


@jit(nopython=True, nogil=True, cache=True)
def render_blocks(pixels, first_block, stop_block, pass_index, width, height,
                  origin_re, origin_im, extent_re, extent_im, max_iter, cancel_flag):
    """
    Run one refinement pass over the blocks [first_block, stop_block).

    For every block b the true color of pixel 4b + pass_index is computed
    and written to [4b + pass_index, 4b + 4), clipped to the buffer. Earlier
    positions of the block are never touched.

    Args:
        pixels: Flat uint32 pixel buffer (modified in place)
        first_block, stop_block: Half-open block range
        pass_index: Refinement pass, 0..3
        width, height: Image dimensions
        origin_re, origin_im, extent_re, extent_im: Viewport
        max_iter: Iteration budget
        cancel_flag: One-element uint8 array, polled once per block

    Returns:
        Number of blocks processed before finishing or seeing cancellation.
    """
    length = pixels.shape[0]
    processed = 0
    for block in range(first_block, stop_block):
        if cancel_flag[0] != 0:
            break
        start = block * BLOCK_SIZE
        index = start + pass_index
        if index < length:
            color = pixel_color(index, width, height, origin_re, origin_im,
                                extent_re, extent_im, max_iter)
            end = min(start + BLOCK_SIZE, length)
            for j in range(index, end):
                pixels[j] = color
        processed += 1
    return processed


def evaluate(c, max_iterations):
    """
    Evaluate a single complex point.

    Args:
        c: Complex number (or anything complex() accepts)
        max_iterations: Iteration budget (>= 1)

    Returns:
        Intensity in [0, 1), or INTERIOR for points inside the set.
    """
    c = complex(c)
    return escape_intensity(c.real, c.imag, int(max_iterations))


def warmup_jit():
    """
    Warm up JIT compilation with a tiny dummy render.

    Call this once at startup to pre-compile the Numba functions,
    avoiding a delay on the first real render.
    """
    pixels = np.zeros(10, dtype=np.uint32)
    flag = np.zeros(1, dtype=np.uint8)
    render_blocks(pixels, 0, 3, 0, 5, 2, -2.5, 1.5, 4.0, 2.25, 10, flag)
    escape_intensity(0.0, 0.0, 10)
