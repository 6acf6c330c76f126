"""Raw interleaved 8-bit image buffer with simple overlay drawing."""

from __future__ import annotations

import functools
import logging
from contextlib import contextmanager

import numpy as np
from PIL import Image, ImageDraw, ImageFont

_log = logging.getLogger(__name__)

_DRAWABLE_BPP = (1, 3, 4)

_BLACK = (0, 0, 0)
_STATS_COLOR = (255, 0, 0)
_GUIDE_TEXT_COLOR = (0, 255, 0)

_CENTER_WIDTH = 20
_CENTER_COLOR = (255, 150, 150)
_HORIZONTAL_LINE_COLOR = (255, 0, 255)
_VERTICAL_LINE_COLOR = (255, 255, 0)

_BRIGHTNESS_STEP = 5


@functools.lru_cache(maxsize=None)
def _font():
    return ImageFont.load_default()


def _flat_bytes(data):
    """View ``data`` as a flat uint8 array, sharing memory where possible."""
    if isinstance(data, np.ndarray):
        if data.dtype != np.uint8:
            raise ValueError("image data must be of type uint8")
        return data.reshape(-1)
    return np.frombuffer(data, dtype=np.uint8)


class RawImage:
    """An image of ``width`` x ``height`` pixels with ``bpp`` bytes per pixel.

    When ``data`` is given the image works on that buffer directly instead of
    allocating its own.
    """

    def __init__(self, width, height, bpp=3, data=None):
        if width <= 0 or height <= 0 or bpp <= 0:
            raise ValueError("image dimensions must be positive")
        self.width = width
        self.height = height
        self.bpp = bpp
        if data is None:
            self.data = np.zeros(self.size, dtype=np.uint8)
        else:
            flat = _flat_bytes(data)
            if flat.size < self.size:
                raise ValueError(
                    f"buffer holds {flat.size} bytes, {self.size} are needed"
                )
            self.data = flat[: self.size]

    @property
    def size(self):
        """Number of bytes in the image."""
        return self.width * self.height * self.bpp

    @property
    def pixels(self):
        """The buffer viewed as a ``(height, width, bpp)`` array."""
        return self.data.reshape(self.height, self.width, self.bpp)

    def _rgb_view(self):
        """The first ``width * height * 3`` bytes as a three-channel image."""
        needed = self.width * self.height * 3
        if self.data.size < needed:
            raise ValueError("operation needs at least three bytes per pixel")
        return self.data[:needed].reshape(self.height, self.width, 3)

    def swap_rgb(self):
        """Exchange the first and third channel of every pixel."""
        view = self._rgb_view()
        view[:, :, [0, 2]] = view[:, :, [2, 0]]

    def update_image(self, data, width, height, bpp):
        """Copy new pixel data in, adopting its format if it differs."""
        source = _flat_bytes(data)
        needed = width * height * bpp
        if width <= 0 or height <= 0 or bpp <= 0:
            raise ValueError("image dimensions must be positive")
        if source.size < needed:
            raise ValueError(f"buffer holds {source.size} bytes, {needed} are needed")
        if (self.width, self.height, self.bpp) != (width, height, bpp):
            _log.info(
                "Readjusting image format from %ix%i %ibpp to %ix%i %ibpp.",
                self.width, self.height, self.bpp, width, height, bpp,
            )
            self.width, self.height, self.bpp = width, height, bpp
            self.data = np.empty(needed, dtype=np.uint8)
        self.data[:] = source[:needed]

    def _color(self, scalar):
        if self.bpp == 1:
            return scalar[0]
        return tuple(scalar[: self.bpp]) + (0,) * (self.bpp - len(scalar))

    @contextmanager
    def _canvas(self):
        if self.bpp not in _DRAWABLE_BPP:
            raise ValueError(f"cannot draw on an image with {self.bpp} bytes per pixel")
        px = self.pixels
        target = px[:, :, 0] if self.bpp == 1 else px
        image = Image.fromarray(np.ascontiguousarray(target))
        yield ImageDraw.Draw(image)
        target[...] = np.asarray(image)

    @staticmethod
    def _text_size(draw, text):
        left, top, right, bottom = draw.textbbox((0, 0), text, font=_font())
        return right, bottom

    def _put_text(self, draw, text, x, baseline, color):
        _, height = self._text_size(draw, text)
        draw.text((x, baseline - height), text, fill=self._color(color), font=_font())

    def draw_time_stats(self, eval_time, num_markers):
        """Write the detection time summary in the top-left corner; return the text."""
        text = f"Found {num_markers} markers in {eval_time / 1000.0:.3f} ms"
        with self._canvas() as draw:
            width, height = self._text_size(draw, text)
            draw.rectangle([(0, 0), (width, height + 3)], fill=self._color(_BLACK))
            self._put_text(draw, text, 0, height + 1, _STATS_COLOR)
        return text

    def draw_stats(self, marker, trans_2d):
        """Write a marker's position and orientation below it; return both lines."""
        obj, seg = marker.obj, marker.seg
        if trans_2d:
            first = f"{1000 * obj.x:03.0f} {1000 * obj.y:03.0f}"
            second = f"{seg.id:02d} {int(obj.yaw / np.pi * 180):03d}"
        else:
            first = f"{obj.x:.3f} {obj.y:.3f} {obj.z:.3f}"
            second = f"{seg.id:02d} {obj.roll:.3f} {obj.pitch:.3f} {obj.yaw:.3f}"
        with self._canvas() as draw:
            _, h0 = self._text_size(draw, first)
            self._put_text(draw, first, seg.minx - 30, seg.maxy + h0, _STATS_COLOR)
            _, h1 = self._text_size(draw, second)
            self._put_text(draw, second, seg.minx - 30, seg.maxy + 2 * h1 + 5, _STATS_COLOR)
        return first, second

    def draw_guide_calibration(self, calib_num, dim_x, dim_y):
        """Show which calibration marker to click next; return the text."""
        targets = {
            1: f"{dim_x:.3f}, 0.000",
            2: f"0.000, {dim_y:.3f}",
            3: f"{dim_x:.3f}, {dim_y:.3f}",
        }
        text = f"Click the marker at the [{targets.get(calib_num, '0.000, 0.000')}]."
        x, y = self.width // 2 - 130, self.height // 2
        with self._canvas() as draw:
            width, height = self._text_size(draw, text)
            draw.rectangle([(x, y - height), (x + width, y)], fill=self._color(_BLACK))
            self._put_text(draw, text, x, y, _GUIDE_TEXT_COLOR)
        return text

    def plot_center(self):
        """Draw a square outline around the image centre."""
        view = self._rgb_view()
        cx, cy, r = self.width // 2, self.height // 2, _CENTER_WIDTH
        if cx - r < 0 or cy - r < 0 or cx + r >= self.width or cy + r >= self.height:
            raise ValueError("image is too small for the centre mark")
        view[cy - r : cy + r, cx - r] = _CENTER_COLOR
        view[cy - r : cy + r, cx + r] = _CENTER_COLOR
        view[cy - r, cx - r : cx + r] = _CENTER_COLOR
        view[cy + r, cx - r : cx + r] = _CENTER_COLOR

    def plot_line(self, x, y):
        """Draw a cross-hair through (x, y); out-of-range values fall back to the centre."""
        view = self._rgb_view()
        if not 0 <= y < self.height:
            y = self.height // 2
        if not 0 <= x < self.width:
            x = self.width // 2
        columns = np.arange(self.width)
        view[y, columns[columns != self.width // 2]] = _HORIZONTAL_LINE_COLOR
        rows = np.arange(self.height)
        view[rows[rows != self.height // 2 + 1], x] = _VERTICAL_LINE_COLOR

    def overall_brightness(self, upper_half):
        """Sampled brightness of one half of the image, biased by saturated pixels."""
        w, h, bpp = self.width, self.height, self.bpp
        limit = 0 if upper_half else h // 2
        rows = np.arange(limit, h // 2 + limit, _BRIGHTNESS_STEP)
        cols = np.arange(0, w, _BRIGHTNESS_STEP)
        if rows.size == 0:
            raise ValueError("image is too small to measure brightness")
        pos = ((rows[:, None] * w + cols[None, :]) * bpp).ravel()
        if pos.max() + 2 >= self.data.size:
            raise ValueError("brightness needs three bytes around every sample")
        c0, c1, c2 = (self.data[pos + k].astype(np.int64) for k in range(3))
        sat_max = int(np.count_nonzero((c0 >= 250) & (c1 >= 250) & (c2 >= 250)))
        sat_min = int(np.count_nonzero((c0 <= 25) & (c1 <= 25) & (c2 <= 25)))
        total = int(c0.sum() + c1.sum() + c2.sum())
        num = pos.size
        return float(total // num // bpp) + (sat_max - sat_min) * 100.0 / num