"""
Bitmap primitives for SteelClock.

Widgets and the layout manager draw into grayscale canvases; the encoder
turns the final canvas into the packed 1-bpp frame the gateway expects.
All of it is plain numpy, so identical inputs always give identical bytes.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
from PIL import Image

from .config import (
    DEFAULT_DISPLAY_HEIGHT,
    DEFAULT_DISPLAY_WIDTH,
    DEFAULT_THRESHOLD,
    MAX_DISPLAY_PIXELS,
    DisplayConfig,
)
from .errors import EncodingError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Display:
    """Immutable per-session display description."""

    width: int = DEFAULT_DISPLAY_WIDTH
    height: int = DEFAULT_DISPLAY_HEIGHT
    background: int = 0
    threshold: int = DEFAULT_THRESHOLD

    def __post_init__(self):
        if self.width <= 0 or self.width % 8:
            raise ValueError(f"display width must be a positive multiple of 8, got {self.width}")
        if self.height <= 0:
            raise ValueError(f"display height must be positive, got {self.height}")
        if self.width * self.height > MAX_DISPLAY_PIXELS:
            raise ValueError(
                f"display {self.width}x{self.height} exceeds the {MAX_DISPLAY_PIXELS} pixel budget"
            )

    @classmethod
    def from_config(cls, config: DisplayConfig) -> "Display":
        return cls(
            width=config.width,
            height=config.height,
            background=config.background,
            threshold=config.threshold,
        )

    @property
    def frame_size(self) -> int:
        """Length of one packed frame in bytes."""
        return (self.width * self.height + 7) // 8

    @property
    def resolution_key(self) -> str:
        return resolution_key(self.width, self.height)


def resolution_key(width: int, height: int) -> str:
    """JSON key carrying frame bytes for a resolution, e.g. "image-data-128x40"."""
    return f"image-data-{width}x{height}"


class Canvas:
    """
    Grayscale drawing surface.

    Wraps a (height, width) uint8 array. Widgets render into one of these
    and the layout manager composites them onto the display canvas.
    """

    __slots__ = ("_data",)

    def __init__(self, data: np.ndarray):
        if data.ndim != 2:
            raise ValueError(f"canvas data must be 2-D, got shape {data.shape}")
        self._data = data if data.dtype == np.uint8 else data.astype(np.uint8)

    @property
    def data(self) -> np.ndarray:
        """Raw pixel data as numpy array (height, width)."""
        return self._data

    @property
    def width(self) -> int:
        return self._data.shape[1]

    @property
    def height(self) -> int:
        return self._data.shape[0]

    def fill(self, value: int) -> None:
        self._data.fill(value)

    def set_pixel(self, x: int, y: int, value: int) -> None:
        """Set a single pixel; out-of-bounds writes are ignored."""
        if 0 <= x < self.width and 0 <= y < self.height:
            self._data[y, x] = value

    def get_pixel(self, x: int, y: int) -> int:
        if 0 <= x < self.width and 0 <= y < self.height:
            return int(self._data[y, x])
        return 0

    def fill_rect(self, x: int, y: int, w: int, h: int, value: int) -> None:
        """Fill a rectangle, clipped to the canvas."""
        x0, y0 = max(x, 0), max(y, 0)
        x1, y1 = min(x + w, self.width), min(y + h, self.height)
        if x0 < x1 and y0 < y1:
            self._data[y0:y1, x0:x1] = value

    def draw_line(self, x0: int, y0: int, x1: int, y1: int, value: int) -> None:
        """Draw a line using Bresenham's algorithm."""
        dx = abs(x1 - x0)
        dy = abs(y1 - y0)
        sx = 1 if x0 < x1 else -1
        sy = 1 if y0 < y1 else -1
        err = dx - dy

        while True:
            self.set_pixel(x0, y0, value)
            if x0 == x1 and y0 == y1:
                break
            e2 = 2 * err
            if e2 > -dy:
                err -= dy
                x0 += sx
            if e2 < dx:
                err += dx
                y0 += sy

    def draw_border(self, value: int) -> None:
        """Draw a one-pixel frame around the canvas edge."""
        self._data[0, :] = value
        self._data[-1, :] = value
        self._data[:, 0] = value
        self._data[:, -1] = value

    def to_image(self) -> Image.Image:
        """Convert canvas to a Pillow "L" image."""
        return Image.fromarray(self._data)

    @classmethod
    def from_image(cls, image: Image.Image) -> "Canvas":
        if image.mode != "L":
            image = image.convert("L")
        return cls(np.array(image, dtype=np.uint8))

    def copy(self) -> "Canvas":
        return Canvas(self._data.copy())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Canvas):
            return NotImplemented
        return np.array_equal(self._data, other._data)

    def __repr__(self) -> str:
        return f"Canvas({self.width}x{self.height})"


ImageLike = Union[Canvas, np.ndarray, Image.Image]


def new_canvas(width: int, height: int, background: int = 0) -> Canvas:
    """Allocate a width x height canvas filled with the background intensity."""
    return Canvas(np.full((height, width), background, dtype=np.uint8))


def as_canvas(image: ImageLike) -> Canvas:
    """Normalise whatever a widget returned into a Canvas."""
    if isinstance(image, Canvas):
        return image
    if isinstance(image, Image.Image):
        return Canvas.from_image(image)
    if isinstance(image, np.ndarray):
        return Canvas(image)
    raise TypeError(f"unsupported image type: {type(image).__name__}")


def draw_sub(
    dst: Canvas,
    src: Canvas,
    dx: int,
    dy: int,
    transparent_value: Optional[int] = None,
) -> None:
    """
    Copy src onto dst with its top-left corner at (dx, dy).

    The copy is clipped to dst. When transparent_value is given, source
    pixels equal to it are left untouched in dst.
    """
    h, w = src.height, src.width

    # Calculate clipping bounds
    src_x, src_y = 0, 0
    dst_x, dst_y = dx, dy

    if dst_x < 0:
        src_x = -dst_x
        w += dst_x
        dst_x = 0
    if dst_y < 0:
        src_y = -dst_y
        h += dst_y
        dst_y = 0

    w = min(w, dst.width - dst_x)
    h = min(h, dst.height - dst_y)

    if w <= 0 or h <= 0:
        return

    region = src.data[src_y : src_y + h, src_x : src_x + w]
    target = dst.data[dst_y : dst_y + h, dst_x : dst_x + w]

    if transparent_value is None:
        target[:, :] = region
    else:
        mask = region != transparent_value
        target[mask] = region[mask]


def encode(canvas: Canvas, display: Display) -> bytes:
    """
    Pack a canvas into a 1-bpp frame.

    Row-major, most significant bit is the leftmost pixel. A bit is set
    when the pixel intensity is >= the display threshold.
    """
    if canvas.width != display.width or canvas.height != display.height:
        raise EncodingError(
            f"canvas is {canvas.width}x{canvas.height}, "
            f"display expects {display.width}x{display.height}"
        )
    bits = canvas.data >= display.threshold
    return np.packbits(bits, axis=None, bitorder="big").tobytes()


def decode(frame: bytes, width: int, height: int) -> Canvas:
    """Unpack a 1-bpp frame into a 0/255 canvas (used by the preview)."""
    expected = (width * height + 7) // 8
    if len(frame) != expected:
        raise EncodingError(f"frame is {len(frame)} bytes, expected {expected}")
    bits = np.unpackbits(np.frombuffer(frame, dtype=np.uint8), count=width * height)
    return Canvas((bits.reshape(height, width) * 255).astype(np.uint8))
