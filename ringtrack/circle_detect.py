"""Detection and tracking of black-and-white ring markers in raw images."""

from __future__ import annotations

import logging
import math
from dataclasses import replace

import numpy as np

from .code_reader import calc_segment, mark_samples, normalize_angle, read_ring_code
from .structs import EllipseCenters, Marker, Segment, TrackedObject

_log = logging.getLogger(__name__)

_BORDER = -1000
_DARK = -2
_BRIGHT = -1

_INNER_COLOR = (0, 0, 0)
_OUTER_COLOR = (255, 255, 200)
_OUTER_CENTER_COLOR = (255, 0, 0)
_INNER_CENTER_COLOR = (0, 255, 0)

_CODE_RING_SCALE = 0.33 / 0.70


class _SharedBuffer:
    """Segmentation labels shared by every detector working on the same frames."""

    __slots__ = ("cells",)

    def __init__(self):
        self.cells = None


_SHARED = _SharedBuffer()


def _sqrt_or_nan(value):
    return math.sqrt(value) if value >= 0 else math.nan


def _moments(positions, width):
    sx = sy = c0 = c1 = c2 = 0
    for pos in positions:
        tx, ty = pos % width, pos // width
        sx += tx
        sy += ty
        c0 += tx * tx
        c1 += tx * ty
        c2 += ty * ty
    return sx, sy, c0, c1, c2


def _paint(image, positions, color):
    if not positions:
        return
    data = image.data
    base = np.asarray(positions, dtype=np.int64) * image.bpp
    for channel, value in enumerate(color):
        target = base + channel
        data[target[(target >= 0) & (target < data.size)]] = value


class CircleDetector:
    """Finds one ring marker per call, tracking it from where it was seen last."""

    def __init__(self, width, height, identify, id_bits, id_samples, draw,
                 transformation, decoder=None, debug=False):
        if width < 3 or height < 3:
            raise ValueError("image must be at least 3x3 pixels")
        self.width = width
        self.height = height
        self.length = width * height
        self.identify = identify
        self.id_bits = id_bits
        self.id_samples = id_samples
        self.draw = draw
        self.transformation = transformation
        self.decoder = decoder
        self.debug = debug

        self.track = True
        self.last_track_ok = False
        self.local_search = False
        self.enable_corrections = False
        self.max_failed = 0
        self.num_failed = self.max_failed
        self.min_size = 100
        self.max_threshold = 256
        self.threshold = self.max_threshold // 2
        self.last_threshold = self.threshold
        self.center_distance_tolerance_ratio = 0.01
        self.center_distance_tolerance_abs = 5
        self.circular_tolerance = 0.8
        self.ratio_tolerance = 0.8
        self.circularity_tolerance = 0.02

        self.diameter_ratio = 33.0 / 70.0
        area_ratio = self.diameter_ratio * self.diameter_ratio
        self.outer_area_ratio = math.pi * (1.0 - area_ratio) / 4
        self.inner_area_ratio = math.pi / 4.0
        self.areas_ratio = (1.0 - area_ratio) / area_ratio

        self.inner = Segment()
        self.outer = Segment()
        self.ellipse_centers = EllipseCenters()
        self.tracked_object = TrackedObject()
        self.num_segments = 0
        self._queue = []
        self._queue_start = 0
        self._queue_old_start = 0

        if _SHARED.cells is None or len(_SHARED.cells) != self.length:
            self._clear_all()

    @property
    def buffer(self):
        """The shared segmentation labels, one per pixel."""
        return _SHARED.cells

    def reconfigure(self, ict, fct, art, cdtr, cdta, identify, min_size):
        """Set the tolerances (given in percent) and the minimal segment size."""
        self.circular_tolerance = ict / 100.0
        self.circularity_tolerance = fct / 100.0
        self.ratio_tolerance = 1 + art / 100.0
        self.center_distance_tolerance_ratio = cdtr / 100.0
        self.center_distance_tolerance_abs = cdta
        self.min_size = min_size
        self.identify = identify

    def adjust_dimensions(self, width, height):
        """Adopt a new image size and reallocate the shared labels."""
        if width < 3 or height < 3:
            raise ValueError("image must be at least 3x3 pixels")
        self.width = width
        self.height = height
        self.length = width * height
        self._clear_all()

    def change_threshold(self):
        """Pick the next threshold to try; False once the search is exhausted."""
        div = 1
        dum = self.num_failed
        while dum > 1:
            dum //= 2
            div *= 2
        t_step = 256 // div
        self.threshold = t_step * (self.num_failed - div) + t_step // 2
        if self.debug:
            _log.debug("Threshold: %i %i %i", div, self.num_failed, self.threshold)
        return t_step > 16

    def _clear_all(self):
        w, h = self.width, self.height
        cells = [0] * (w * h)
        cells[:w] = [_BORDER] * w
        cells[(h - 1) * w:] = [_BORDER] * w
        cells[::w] = [_BORDER] * h
        cells[w - 1::w] = [_BORDER] * h
        _SHARED.cells = cells

    def buffer_cleanup(self, init):
        """Reset the labels: around ``init`` after a clean track, everywhere otherwise."""
        if (not init.valid or not self.track or not self.last_track_ok
                or _SHARED.cells is None or len(_SHARED.cells) != self.length):
            self._clear_all()
            return
        w, h = self.width, self.height
        ix = max(init.minx - 2, 1)
        ax = min(init.maxx + 2, w - 2)
        iy = max(init.miny - 2, 1)
        ay = min(init.maxy + 2, h - 2)
        if ax <= ix:
            return
        cells = _SHARED.cells
        for y in range(iy, ay):
            cells[y * w + ix:y * w + ax] = [0] * (ax - ix)

    @staticmethod
    def _channel(image):
        return image.data[::image.bpp][: image.width * image.height].tolist()

    def examine_segment(self, image, segment, ii, area_ratio):
        """Flood-fill the region containing pixel ``ii`` into ``segment``.

        Returns True when the region is larger than the minimal size.
        """
        if image.width != self.width or image.height != self.height:
            raise ValueError("image size differs from the detector's")
        w = self.width
        x, y = ii % w, ii // w
        if not (0 < x < w - 1 and 0 < y < self.height - 1):
            raise ValueError("seed pixel must lie inside the image border")
        channel = self._channel(image)
        cells = _SHARED.cells
        if cells[ii] == 0:
            cells[ii] = (1 if channel[ii] > self.threshold else 0) - 2
        if cells[ii] not in (_DARK, _BRIGHT):
            raise ValueError("seed pixel belongs to an examined segment")
        self._queue = []
        self._queue_start = 0
        return self._examine(channel, segment, ii, area_ratio)

    def _examine(self, channel, segment, ii, area_ratio):
        cells = _SHARED.cells
        w = self.width
        thr = self.threshold
        queue = self._queue
        self._queue_old_start = self._queue_start

        kind = cells[ii]
        self.num_segments += 1
        label = self.num_segments
        cells[ii] = label
        minx = maxx = ii % w
        miny = maxy = ii // w
        segment.x = float(minx)
        segment.y = float(miny)
        segment.valid = False
        segment.round = False
        queue.append(ii)

        head = self._queue_start
        while head < len(queue):
            position = queue[head]
            head += 1
            for pos in (position + 1, position - 1, position - w, position + w):
                if cells[pos] == 0:
                    cells[pos] = (1 if channel[pos] > thr else 0) - 2
                if cells[pos] == kind:
                    queue.append(pos)
                    cells[pos] = label
                    px, py = pos % w, pos // w
                    minx, maxx = min(minx, px), max(maxx, px)
                    miny, maxy = min(miny, py), max(maxy, py)
        self._queue_start = head

        segment.size = len(queue) - self._queue_old_start
        if segment.size <= self.min_size:
            return False
        segment.maxx, segment.maxy, segment.minx, segment.miny = maxx, maxy, minx, miny
        segment.type = -kind
        vx = maxx - minx + 1
        vy = maxy - miny + 1
        segment.x = float((maxx + minx) // 2)
        segment.y = float((maxy + miny) // 2)
        segment.roundness = vx * vy * area_ratio / segment.size
        segment.round = True
        total = sum(channel[p] for p in queue[self._queue_old_start:])
        segment.mean = total // segment.size
        return True

    def _correct_aberration(self, inner, outer):
        r = self.diameter_ratio * self.diameter_ratio
        m0o, m1o = outer.m0, outer.m1
        ratio = inner.size / (outer.size + inner.size)
        m0i = math.sqrt(ratio) * m0o
        m1i = math.sqrt(ratio) * m1o
        a = 1 - r
        b = -(m0i + m1i) - (m0o + m1o) * r
        c = (m0i * m1i) - (m0o * m1o) * r
        t = (-b - _sqrt_or_nan(b * b - 4 * a * c)) / (2 * a)
        inner.m0 = m0o + t
        inner.m1 = m1o + t

    def _try_pattern(self, channel, ii, start, init_valid):
        """Test the dark region at ``ii``; return the scan position to continue from."""
        retreat = start - 1 if (self.track and init_valid) else ii
        cells = _SHARED.cells
        w = self.width

        if not self._examine(channel, self.outer, ii, self.outer_area_ratio):
            if self.debug:
                _log.debug("Outer segment %.0f %.0f %i not a circle",
                           self.outer.x, self.outer.y, self.outer.size)
            return retreat
        outer = self.outer
        pos = int(outer.y) * w + int(outer.x)
        if cells[pos] == 0:
            cells[pos] = (1 if channel[pos] >= self.threshold else 0) - 2
        if cells[pos] != _BRIGHT:
            if self.debug:
                _log.debug("Inner segment not white")
            return retreat
        if not self._examine(channel, self.inner, pos, self.inner_area_ratio):
            if self.debug:
                _log.debug("Inner segment not a circle")
            return retreat
        inner = self.inner

        ratio = outer.size / self.areas_ratio / inner.size
        if not (ratio - self.ratio_tolerance < 1.0 and ratio + self.ratio_tolerance > 1.0):
            if self.debug:
                _log.debug("Segment failed BW test.")
            return retreat
        tol_abs = self.center_distance_tolerance_abs
        tol_ratio = self.center_distance_tolerance_ratio
        if not (abs(inner.x - outer.x) <= tol_abs + tol_ratio * (outer.maxx - outer.minx)
                and abs(inner.y - outer.y) <= tol_abs + tol_ratio * (outer.maxy - outer.miny)):
            if self.debug:
                _log.debug("Segment failed concentricity test.")
            return retreat

        queue = self._queue
        old = self._queue_old_start
        inner_sums = _moments(queue[old:], w)
        self.inner = inner = calc_segment(inner, len(queue) - old, *inner_sums)
        outer_sums = _moments(queue[:old], w)
        totals = [a + b for a, b in zip(inner_sums, outer_sums)]
        self.outer = outer = calc_segment(outer, len(queue), *totals)
        outer.bw_ratio = inner.size / outer.size

        circularity = math.pi * 4 * outer.m0 * outer.m1 / len(queue)
        if self.debug:
            _log.debug("Segment circularity: %i %f", len(queue), circularity)
        if not (circularity - 1.0 < self.circularity_tolerance
                and circularity - 1.0 > -self.circularity_tolerance):
            if self.debug:
                _log.debug("Segment failed circularity test.")
            return retreat

        if self.enable_corrections:
            self._correct_aberration(inner, outer)
        outer.size += inner.size
        outer.horizontal = outer.x - inner.x
        if abs(inner.v0 * outer.v0 + inner.v1 * outer.v1) > 0.5:
            outer.r0 = inner.m0 / outer.m0
            outer.r1 = inner.m1 / outer.m1
        else:
            outer.r0 = inner.m1 / outer.m0
            outer.r1 = inner.m0 / outer.m1
        orient = math.atan2(outer.y - inner.y, outer.x - inner.x)
        outer.angle = math.atan2(outer.v1, outer.v0)
        if abs(normalize_angle(outer.angle - orient)) > math.pi / 2:
            outer.angle = normalize_angle(outer.angle + math.pi)
        outer.valid = inner.valid = True
        self.threshold = (outer.mean + inner.mean) // 2
        return start - 1 if self.track else ii

    def _manage_threshold(self):
        if self.outer.valid:
            self.last_threshold = self.threshold
            self.num_failed = 0
        elif self.num_failed < self.max_failed:
            previous = self.num_failed
            self.num_failed += 1
            if previous % 2 == 0:
                self.change_threshold()
            else:
                self.threshold = self.last_threshold
        else:
            self.num_failed += 1
            if not self.change_threshold():
                self.num_failed = 0

    def find_segment(self, image, init):
        """Search the image for a marker, starting at ``init`` when it is valid."""
        self.num_segments = 0
        init_valid = init.valid
        if (image.width != self.width or image.height != self.height
                or _SHARED.cells is None or len(_SHARED.cells) != self.length):
            self.adjust_dimensions(image.width, image.height)
            init_valid = False
        channel = self._channel(image)
        cells = _SHARED.cells

        ii = start = 0
        if init_valid and self.track:
            ii = int(int(init.y) * self.width + init.x)
            if not 0 <= ii < self.length:
                ii = 0
            start = ii
        while True:
            if cells[ii] == 0 and channel[ii] < self.threshold:
                cells[ii] = _DARK
            if cells[ii] == _DARK:
                self._queue = []
                self._queue_start = 0
                ii = self._try_pattern(channel, ii, start, init_valid)
            ii += 1
            if ii >= self.length:
                ii = 0
            if ii == start:
                break

        outer = self.outer
        if self.debug:
            _log.debug("%s", self.inner.describe(0, "Inner"))
            _log.debug("%s", outer.describe(0, "Outer"))
        if outer.valid:
            self.last_track_ok = self.num_segments == 2
        self._manage_threshold()

        if outer.valid:
            self.ellipse_centers = self.transformation.calc_solutions(outer)
            if self.identify:
                if not self.ambiguity_and_obtain_code(image):
                    outer.valid = False
            else:
                self.ambiguity_plain()
            if outer.valid:
                self.transformation.calc_orientation(self.tracked_object)
                self.transformation.transform_coordinates(self.tracked_object)

        old = self._queue_old_start
        if outer.valid:
            _paint(image, self._queue[old:], _INNER_COLOR)
        if self.draw and (init_valid or self.track or self.last_track_ok):
            _paint(image, self._queue[:old], _OUTER_COLOR)
            if self.debug:
                limit = image.width * image.height
                for seg, color in ((outer, _OUTER_CENTER_COLOR),
                                   (self.inner, _INNER_CENTER_COLOR)):
                    pos = int(seg.x) + int(seg.y) * image.width
                    if 0 < pos < limit:
                        _paint(image, [pos], color)

        self.buffer_cleanup(outer)
        return Marker(valid=outer.valid, seg=replace(outer), obj=replace(self.tracked_object))

    def _adopt_solution(self, idx):
        c = self.ellipse_centers
        t = self.tracked_object
        t.u = c.u[idx]
        t.v = c.v[idx]
        t.x, t.y, t.z = c.t[idx]
        t.n0, t.n1, t.n2 = c.n[idx]

    def ambiguity_and_obtain_code(self, image):
        """Choose the solution whose code ring reads most cleanly and decode the ID."""
        if self.decoder is None:
            raise ValueError("identification needs a decoder")
        outer = self.outer
        c = self.ellipse_centers
        readings = []
        for i in range(2):
            reading = read_ring_code(
                image, c.u[i], c.v[i],
                _CODE_RING_SCALE * outer.m0, _CODE_RING_SCALE * outer.m1,
                outer.v0, outer.v1, self.id_bits, self.id_samples,
            )
            if reading is None:
                return False
            readings.append(reading)
        idx = 0 if readings[0].variance < readings[1].variance else 1
        if self.debug:
            _log.debug("solution %d", idx)
        self._adopt_solution(idx)
        reading = readings[idx]
        decoded = self.decoder.decode(reading.code, reading.max_index, outer.v0, outer.v1)
        outer.id = decoded.id + 1
        self.tracked_object.angle = decoded.angle
        if self.debug:
            _log.debug("CODE %i %i %.3f %s", decoded.id, reading.max_index,
                       decoded.angle, reading.code)
        mark_samples(image, reading.xs, reading.ys)
        return True

    def ambiguity_plain(self):
        """Choose the solution whose image centre is nearer the inner circle's centre."""
        c = self.ellipse_centers
        ix, iy = self.inner.x, self.inner.y
        dist0 = _sqrt_or_nan((ix - c.u[0]) * (ix - c.u[0]) + (iy - c.v[0]) * (iy - c.v[1]))
        dist1 = _sqrt_or_nan((ix - c.u[1]) * (ix - c.u[1]) + (iy - c.v[1]) * (iy - c.v[1]))
        self._adopt_solution(0 if dist0 < dist1 else 1)
        self.tracked_object.angle = self.outer.angle

    def set_draw(self, draw):
        self.draw = draw