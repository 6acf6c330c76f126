"""Ellipse moments and reading of the binary code printed around a ring marker."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class RingCode:
    """Samples taken along the code ring of one candidate ellipse and what they encode."""

    xs: tuple  # sample positions in image columns
    ys: tuple  # sample positions in image rows
    signal: tuple  # summed brightness of the first three channels at each sample
    smooth: tuple  # the signal binarised against its mean (0 or 1)
    max_index: int  # sample index at which the code is read from
    variance: float  # spread of the edge positions; small when edges are regular
    code: str  # 2 * id_bits characters '0' / '1'


def _root(value):
    return math.sqrt(value) if value >= 0 else math.nan


def calc_segment(segment, size, sx, sy, cm0, cm1, cm2):
    """Return a copy of ``segment`` with centre, eigenvalues and eigenvector from pixel moments.

    ``sx`` and ``sy`` are the sums of pixel columns and rows, ``cm0``, ``cm1`` and
    ``cm2`` the sums of x*x, x*y and y*y over the ``size`` pixels.
    """
    if size <= 0:
        raise ValueError("a segment needs at least one pixel")
    mx = float(sx) / size
    my = float(sy) / size
    fm0 = (cm0 - mx * mx * size) / size
    fm1 = (cm1 - mx * my * size) / size
    fm2 = (cm2 - my * my * size) / size
    det = (fm0 + fm2) * (fm0 + fm2) - 4 * (fm0 * fm2 - fm1 * fm1)
    det = math.sqrt(det) if det > 0 else 0.0
    f0 = ((fm0 + fm2) + det) / 2
    f1 = ((fm0 + fm2) - det) / 2
    if fm1 != 0:
        norm = math.sqrt(fm1 * fm1 + (fm0 - f0) * (fm0 - f0))
        v0 = -fm1 / norm
        v1 = (fm0 - f0) / norm
    elif fm0 > fm2:
        v0, v1 = 1.0, 0.0
    else:
        v0, v1 = 0.0, 1.0
    return replace(segment, x=mx, y=my, m0=_root(f0), m1=_root(f1), v0=v0, v1=v1)


def normalize_angle(a):
    """Bring an angle into the range [-pi, pi]."""
    if not math.isfinite(a):
        raise ValueError("angle must be finite")
    while a > math.pi:
        a -= 2 * math.pi
    while a < -math.pi:
        a += 2 * math.pi
    return a


def _bilinear(image, x, y):
    """Brightness summed over the first three bytes of each corner, or None if unreadable."""
    px, py = int(x), int(y)
    gx, gy = x - px, y - py
    pos = px + py * image.width
    step = image.bpp
    corners = (
        (pos, (1 - gx) * (1 - gy)),
        (pos + 1, gx * (1 - gy)),
        (pos + image.width, (1 - gx) * gy),
        (pos + image.width + 1, gx * gy),
    )
    if (pos + image.width + 1) * step + 2 >= image.data.size:
        return None
    data = image.data
    return sum(
        float(data[corner * step + channel]) * weight
        for channel in range(3)
        for corner, weight in corners
    )


def read_ring_code(image, center_x, center_y, m0, m1, v0, v1, id_bits, id_samples):
    """Sample the code ring of an ellipse and read its raw bits.

    ``m0`` and ``m1`` are the semi-axes scaled to the inner circle; the samples lie
    on the ellipse with twice these axes, oriented along ``(v0, v1)``.  Returns
    ``None`` when the ring leaves the image.
    """
    if id_bits <= 0 or id_samples <= 0:
        raise ValueError("id_bits and id_samples must be positive")
    seg_width = id_samples // id_bits // 2
    if seg_width <= 0:
        raise ValueError("id_samples must be at least twice id_bits")

    xs, ys = [], []
    for a in range(id_samples):
        t = float(a) / id_samples * 2 * math.pi
        c, s = math.cos(t), math.sin(t)
        x = center_x + (m0 * c * v0 + m1 * s * v1) * 2.0
        y = center_y + (m0 * c * v1 - m1 * s * v0) * 2.0
        if not (0 <= x < image.width and 0 <= y < image.height):
            return None
        xs.append(x)
        ys.append(y)

    signal = []
    for x, y in zip(xs, ys):
        value = _bilinear(image, x, y)
        if value is None:
            return None
        signal.append(value)

    avg = sum(signal) / id_samples
    smooth = [1 if value > avg else 0 for value in signal]

    edges = [a for a in range(1, id_samples) if smooth[a] != smooth[a - 1]]
    wraps = smooth[-1] != smooth[0]
    directions = [
        (math.cos(2 * math.pi * a / seg_width), math.sin(2 * math.pi * a / seg_width))
        for a in edges
    ]
    sum_x = (1.0 if wraps else 0.0) + sum(c for c, _ in directions)
    sum_y = sum(s for _, s in directions)
    num_points = len(edges) + (1 if wraps else 0)
    max_index = int(math.atan2(sum_y, sum_x) / 2 / math.pi * seg_width + seg_width // 2)

    if num_points:
        mean_x = sum_x / num_points
        mean_y = sum_y / num_points
        spread = sum((c - mean_x) ** 2 + (s - mean_y) ** 2 for c, s in directions)
        variance = spread / num_points
    else:
        variance = math.nan

    code = "".join(
        "1" if smooth[(max_index + a * seg_width) % id_samples] else "0"
        for a in range(id_bits * 2)
    )
    return RingCode(
        xs=tuple(xs),
        ys=tuple(ys),
        signal=tuple(signal),
        smooth=tuple(smooth),
        max_index=max_index,
        variance=variance,
        code=code,
    )


def mark_samples(image, xs, ys):
    """Paint the sample positions into the image with a brightness ramp along the ring."""
    count = len(xs)
    step = image.bpp
    limit = image.width * image.height
    for a, (x, y) in enumerate(zip(xs, ys)):
        pos = int(x) + int(y) * image.width
        if not 0 < pos < limit:
            continue
        shade = int(255.0 * a / count)
        if image.bpp == 3:
            image.data[step * pos] = 0
            image.data[step * pos + 1] = shade
            image.data[step * pos + 2] = 0
        elif image.bpp == 1:
            image.data[step * pos] = shade