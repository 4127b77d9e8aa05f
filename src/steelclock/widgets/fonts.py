"""
Font utilities for SteelClock widgets.

Loads BDF, PIL and TrueType fonts for use with Pillow and draws aligned
text into widget canvases.
"""

import logging
import math
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Tuple, Union

import requests
from PIL import BdfFontFile, Image, ImageDraw, ImageFont

from ..core.display import Canvas

log = logging.getLogger(__name__)

H_ALIGNS = ("left", "center", "right")
V_ALIGNS = ("top", "center", "bottom")

DOWNLOAD_TIMEOUT = 10.0

# Cache for loaded fonts, keyed by (path, size)
_font_cache = {}

# Cache directory for converted and downloaded fonts
_cache_dir = None

# Pillow font objects are not documented as thread-safe; every measure and
# draw goes through this lock
_font_lock = threading.RLock()

# Font downloaded when a widget asks for no particular font
_bundled_font_url: Optional[str] = None
# Set after a failed download so later widgets don't wait on it again
_bundled_font_failed = False

FontType = Union[ImageFont.ImageFont, ImageFont.FreeTypeFont]


def _get_cache_dir() -> str:
    """Get or create a cache directory for converted fonts."""
    global _cache_dir
    if _cache_dir is None:
        _cache_dir = os.path.join(tempfile.gettempdir(), "steelclock_fonts")
        os.makedirs(_cache_dir, exist_ok=True)
    return _cache_dir


def set_bundled_font_url(url: Optional[str]) -> None:
    """Set the URL of the fallback TrueType font (None disables downloading)."""
    global _bundled_font_url, _bundled_font_failed
    url = url or None
    if url != _bundled_font_url:
        _bundled_font_failed = False
    _bundled_font_url = url
    if _bundled_font_url:
        log.info(f"Using bundled font URL: {_bundled_font_url}")


def download_bundled_font() -> Optional[str]:
    """
    Fetch the bundled font into the cache directory.

    Returns the local path, or None when no URL is set or the download
    fails. A failed download is not retried until the URL changes.
    """
    global _bundled_font_failed
    if not _bundled_font_url or _bundled_font_failed:
        return None

    name = os.path.basename(_bundled_font_url.split("?", 1)[0]) or "bundled.ttf"
    font_path = os.path.join(_get_cache_dir(), name)
    if os.path.exists(font_path):
        return font_path

    try:
        r = requests.get(_bundled_font_url, timeout=DOWNLOAD_TIMEOUT)
        r.raise_for_status()
    except requests.RequestException as e:
        log.warning(f"Failed to download bundled font {_bundled_font_url}: {e}")
        _bundled_font_failed = True
        return None

    with open(font_path, "wb") as f:
        f.write(r.content)
    log.info(f"Downloaded bundled font to {font_path}")
    return font_path


def load_bdf_font(bdf_path: str) -> ImageFont.ImageFont:
    """
    Load a BDF font file and convert to PIL format.

    PIL requires fonts in its own format (.pil), so we convert
    BDF files on first load and cache the result.
    """
    font_name = Path(bdf_path).stem
    pil_path = os.path.join(_get_cache_dir(), f"{font_name}.pil")

    if not os.path.exists(pil_path):
        log.info(f"Converting BDF font to PIL format: {bdf_path} -> {pil_path}")
        with open(bdf_path, "rb") as fp:
            p = BdfFontFile.BdfFontFile(fp)
            p.save(pil_path)

    return ImageFont.load(pil_path)


def _load_uncached(path: Optional[str], size: int) -> FontType:
    if path is None:
        return ImageFont.load_default()

    suffix = Path(path).suffix.lower()
    if suffix == ".bdf":
        return load_bdf_font(path)
    if suffix == ".pil":
        return ImageFont.load(path)
    return ImageFont.truetype(path, size)


def load_font(path: Optional[str] = None, size: int = 10) -> FontType:
    """
    Load a font by file path.

    BDF and PIL bitmap fonts ignore size. With no path the bundled font is
    tried, then Pillow's built-in default. A font that fails to load falls
    back to the default as well, so widgets always get something to draw with.
    """
    if path is None:
        path = download_bundled_font()

    key = (path, size)
    with _font_lock:
        if key in _font_cache:
            return _font_cache[key]

        try:
            font = _load_uncached(path, size)
        except (OSError, ValueError) as e:
            log.warning(f"Failed to load font {path}: {e}; using default font")
            font = ImageFont.load_default()

        _font_cache[key] = font
        return font


def _measure(text: str, font: FontType) -> Tuple[int, int, int]:
    """(width, height, ascent) of text. Caller holds _font_lock."""
    width = int(math.ceil(font.getlength(text)))
    if hasattr(font, "getmetrics"):
        ascent, descent = font.getmetrics()
    else:
        # Bitmap fonts have no metrics; use the tallest glyph box
        _, _, _, bottom = font.getbbox("Ag")
        ascent, descent = bottom, 0
    return width, ascent + descent, ascent


def text_size(text: str, font: FontType) -> Tuple[int, int]:
    """Width and line height (ascent + descent) of text in pixels."""
    with _font_lock:
        width, height, _ = _measure(text, font)
    return width, height


def text_position(
    text: str,
    font: FontType,
    rect: Tuple[int, int, int, int],
    h_align: str = "center",
    v_align: str = "center",
) -> Tuple[int, int]:
    """Top-left corner at which text lands when aligned inside rect (x, y, w, h)."""
    x0, y0, w, h = rect
    with _font_lock:
        text_w, text_h, _ = _measure(text, font)

    if h_align == "left":
        x = x0
    elif h_align == "right":
        x = x0 + w - text_w
    else:
        x = x0 + (w - text_w) // 2

    if v_align == "top":
        y = y0
    elif v_align == "bottom":
        y = y0 + h - text_h
    else:
        y = y0 + (h - text_h) // 2

    return x, y


def draw_text(
    target: Union[Canvas, Image.Image],
    text: str,
    font: FontType,
    rect: Optional[Tuple[int, int, int, int]] = None,
    h_align: str = "center",
    v_align: str = "center",
    fill: int = 255,
) -> None:
    """
    Draw text aligned inside rect (defaults to the whole target).

    Works on a Canvas or a Pillow "L" image.
    """
    if h_align not in H_ALIGNS:
        raise ValueError(f"invalid horizontal alignment '{h_align}'")
    if v_align not in V_ALIGNS:
        raise ValueError(f"invalid vertical alignment '{v_align}'")

    image = target.to_image() if isinstance(target, Canvas) else target
    if rect is None:
        rect = (0, 0, image.width, image.height)

    x, y = text_position(text, font, rect, h_align, v_align)
    with _font_lock:
        ImageDraw.Draw(image).text((x, y), text, fill=fill, font=font)

    if isinstance(target, Canvas):
        target.data[:, :] = Canvas.from_image(image).data


def clear_cache() -> None:
    """Forget loaded fonts (the on-disk conversions are kept)."""
    with _font_lock:
        _font_cache.clear()
