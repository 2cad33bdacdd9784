"""
Pixel Encoder
=============
Converts raw RGB24 / RGBA32 sample buffers into standalone PNG files
using PyMuPDF pixmaps.
"""

from __future__ import annotations

import logging
from typing import Optional

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


def expand_rgb_to_rgba(data: bytes, pixel_count: int) -> bytes:
    """Interleave a fully opaque alpha channel into RGB samples."""
    out = bytearray(pixel_count * 4)
    out[0::4] = data[0::3]
    out[1::4] = data[1::3]
    out[2::4] = data[2::3]
    out[3::4] = b"\xff" * pixel_count
    return bytes(out)


def encode_png(data: bytes, width: int, height: int) -> Optional[bytes]:
    """
    Encode a row-major pixel buffer as PNG.

    Args:
        data: RGB24 or RGBA32 samples.
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        PNG bytes, or None when the buffer length matches neither layout.
    """
    if width <= 0 or height <= 0:
        return None

    pixel_count = width * height
    if len(data) == pixel_count * 4:
        rgba = bytes(data)
    elif len(data) == pixel_count * 3:
        rgba = expand_rgb_to_rgba(data, pixel_count)
    else:
        logger.debug(
            f"Unsupported pixel layout: {len(data)} bytes for {width}x{height}"
        )
        return None

    pix = fitz.Pixmap(fitz.csRGB, width, height, rgba, True)
    return pix.tobytes("png")
