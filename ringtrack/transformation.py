"""Camera model and coordinate frames for located ring markers."""

from __future__ import annotations

import itertools
import logging
import math

import numpy as np

from .orientation import calc_orientation as _fill_orientation
from .structs import EllipseCenters, Transform3D, TransformType

_log = logging.getLogger(__name__)

_UNDISTORT_ITERATIONS = 5
_DISTORTION_LENGTHS = (4, 5, 8)
_MAX_SOLUTIONS = 2


class CalibrationError(RuntimeError):
    """A user-defined coordinate system is missing, unreadable or cannot be built."""


def _parse_number(text):
    value = text.strip().lower()
    specials = {".nan": math.nan, ".inf": math.inf, "-.inf": -math.inf, "+.inf": math.inf}
    if value in specials:
        return specials[value]
    return float(value)


def _format_number(value):
    value = float(value)
    if math.isnan(value):
        return ".Nan"
    if math.isinf(value):
        return ".Inf" if value > 0 else "-.Inf"
    return repr(value)


def _matrix_lines(name, rows, cols, values):
    data = ", ".join(_format_number(v) for v in values)
    return [
        f"{name}: !!opencv-matrix",
        f"   rows: {rows}",
        f"   cols: {cols}",
        "   dt: f",
        f"   data: [ {data} ]",
    ]


def _parse_storage(text):
    """Read the scalar and matrix entries of a calibration file."""
    entries = {}
    matrix = None
    data_parts = None
    for raw in text.splitlines():
        stripped = raw.strip()
        if not stripped or stripped.startswith("#") or stripped.startswith("%"):
            continue
        if stripped in ("---", "..."):
            continue
        if data_parts is not None:
            data_parts.append(stripped)
            if "]" in stripped:
                matrix["data"] = " ".join(data_parts)
                data_parts = None
            continue
        key, sep, value = stripped.partition(":")
        if not sep:
            raise CalibrationError(f"malformed calibration line: {raw!r}")
        key, value = key.strip(), value.strip()
        if not raw[0].isspace():
            if value.startswith("!!opencv-matrix"):
                matrix = {}
                entries[key] = matrix
            else:
                matrix = None
                entries[key] = _parse_number(value)
        elif matrix is not None:
            if key == "data":
                if "]" in value:
                    matrix["data"] = value
                else:
                    data_parts = [value]
            else:
                matrix[key] = value
        else:
            raise CalibrationError(f"unexpected indented line: {raw!r}")
    if data_parts is not None:
        raise CalibrationError("unterminated matrix data")

    result = {}
    for key, value in entries.items():
        if isinstance(value, dict):
            try:
                rows, cols = int(value["rows"]), int(value["cols"])
                body = value["data"].strip().lstrip("[").rstrip("]")
            except (KeyError, ValueError) as exc:
                raise CalibrationError(f"malformed matrix {key!r}") from exc
            numbers = [_parse_number(item) for item in body.split(",") if item.strip()]
            if len(numbers) != rows * cols:
                raise CalibrationError(f"matrix {key!r} does not hold {rows}x{cols} values")
            result[key] = (rows, cols, numbers)
        else:
            result[key] = value
    return result


class Transformation:
    """Turns detected ellipses into marker positions in camera or user coordinates."""

    def __init__(self, circle_diameter, debug=False):
        self.circle_diameter = circle_diameter
        self.debug = debug
        self.transform_type = TransformType.NONE
        self.calibrated = False
        self.intrinsic = np.eye(3)
        self.distortion = np.zeros(5)
        self.grid_dim_x = 0.0
        self.grid_dim_y = 0.0
        self.hom = [0.0] * 9
        self.transforms_3d = [Transform3D() for _ in range(4)]

    def set_transform_type(self, trans_type):
        """Select the output frame; user frames need a calibration first."""
        trans_type = TransformType(trans_type)
        if self.calibrated or trans_type == TransformType.NONE:
            self.transform_type = trans_type
        else:
            raise CalibrationError(
                "Calibrated coordinate system is not avaiable. Either load it or create it."
            )

    def get_transform_type(self):
        return self.transform_type

    def set_circle_diameter(self, diameter):
        self.circle_diameter = diameter

    def update_camera_params(self, intrinsic, distortion):
        """Set the 3x3 camera matrix and the distortion coefficients (4, 5 or 8)."""
        intr = np.asarray(intrinsic, dtype=float)
        if intr.size != 9:
            raise ValueError("the intrinsic matrix must hold 9 values")
        dist = np.asarray(distortion, dtype=float).ravel()
        if dist.size not in _DISTORTION_LENGTHS:
            raise ValueError("distortion must hold 4, 5 or 8 coefficients")
        self.intrinsic = intr.reshape(3, 3).copy()
        self.distortion = dist.copy()

    def _coefficients(self):
        k = np.zeros(8)
        k[: self.distortion.size] = self.distortion
        return (float(c) for c in k)

    def transform_xy(self, x, y):
        """Image point to canonical (undistorted, normalised) camera coordinates."""
        k1, k2, p1, p2, k3, k4, k5, k6 = self._coefficients()
        fx, fy = float(self.intrinsic[0, 0]), float(self.intrinsic[1, 1])
        cx, cy = float(self.intrinsic[0, 2]), float(self.intrinsic[1, 2])
        x0 = (x - cx) / fx
        y0 = (y - cy) / fy
        x, y = x0, y0
        for _ in range(_UNDISTORT_ITERATIONS):
            r2 = x * x + y * y
            icdist = (1 + ((k6 * r2 + k5) * r2 + k4) * r2) / (1 + ((k3 * r2 + k2) * r2 + k1) * r2)
            if icdist < 0:
                x, y = x0, y0
                break
            delta_x = 2 * p1 * x * y + p2 * (r2 + 2 * x * x)
            delta_y = p1 * (r2 + 2 * y * y) + 2 * p2 * x * y
            x = (x0 - delta_x) * icdist
            y = (y0 - delta_y) * icdist
        return float(x), float(y)

    def retransform_xyz(self, x, y, z):
        """Camera-frame point back to image coordinates; the third value is always 0."""
        k1, k2, p1, p2, k3, k4, k5, k6 = self._coefficients()
        fx, fy = float(self.intrinsic[0, 0]), float(self.intrinsic[1, 1])
        cx, cy = float(self.intrinsic[0, 2]), float(self.intrinsic[1, 2])
        inv_z = 1.0 / z if z else 1.0
        x *= inv_z
        y *= inv_z
        r2 = x * x + y * y
        r4 = r2 * r2
        r6 = r4 * r2
        radial = (1 + k1 * r2 + k2 * r4 + k3 * r6) / (1 + k4 * r2 + k5 * r4 + k6 * r6)
        xd = x * radial + 2 * p1 * x * y + p2 * (r2 + 2 * x * x)
        yd = y * radial + p1 * (r2 + 2 * y * y) + 2 * p2 * x * y
        return fx * xd + cx, fy * yd + cy, 0.0

    def calc_solutions(self, segment):
        """Both candidate 3D positions and normals of the circle seen as ``segment``."""
        x, y = self.transform_xy(segment.x, segment.y)
        sx, sy = segment.x, segment.y
        v0s, v1s, m0, m1 = segment.v0, segment.v1, segment.m0, segment.m1

        with np.errstate(all="ignore"):
            x1, y1 = self.transform_xy(sx + v0s * m0 * 2.0, sy + v1s * m0 * 2.0)
            x2, y2 = self.transform_xy(sx - v0s * m0 * 2.0, sy - v1s * m0 * 2.0)
            major = np.float64(math.hypot(x1 - x2, y1 - y2) / 2.0)
            v0 = np.float64(x2 - x1) / major / 2.0
            v1 = np.float64(y2 - y1) / major / 2.0

            x1, y1 = self.transform_xy(sx + v1s * m1 * 2.0, sy - v0s * m1 * 2.0)
            x2, y2 = self.transform_xy(sx - v1s * m1 * 2.0, sy + v0s * m1 * 2.0)
            minor = np.float64(math.hypot(x1 - x2, y1 - y2) / 2.0)

            a = v0 * v0 / (major * major) + v1 * v1 / (minor * minor)
            b = v0 * v1 * (1.0 / (major * major) - 1.0 / (minor * minor))
            c = v0 * v0 / (minor * minor) + v1 * v1 / (major * major)
            d = -x * a - b * y
            e = -y * c - b * x
            f = a * x * x + c * y * y + 2.0 * b * x * y - 1.0
        return self._calc_eigen([a, b, d, b, c, e, d, e, f])

    def _calc_eigen(self, data):
        result = EllipseCenters()
        conic = np.array(data, dtype=float).reshape(3, 3)
        if not np.all(np.isfinite(conic)):
            return result
        values, vectors = np.linalg.eigh(conic)
        l0, l1, l2 = values[::-1]
        rows = vectors[:, ::-1].T

        with np.errstate(all="ignore"):
            c0 = np.sqrt((l0 - l1) / (l0 - l2))
            c1 = np.sqrt((l1 - l2) / (l0 - l2))
            c2 = self.circle_diameter / np.sqrt(-l0 * l2) / 2.0
            c0v = c0 * rows[0]
            c1v = c1 * rows[2]

            count = 0
            for s0, s1, s2 in itertools.product((1.0, -1.0), repeat=3):
                n2 = s0 * c0v[2] + s1 * c1v[2]
                t2 = s2 * c2 * (s0 * l2 * c0v[2] + s1 * l0 * c1v[2])
                if not (n2 > 0 and t2 > 0):
                    continue
                n0 = s0 * c0v[0] + s1 * c1v[0]
                n1 = s0 * c0v[1] + s1 * c1v[1]
                t0 = s2 * c2 * (s0 * l2 * c0v[0] + s1 * l0 * c1v[0])
                t1 = s2 * c2 * (s0 * l2 * c0v[1] + s1 * l0 * c1v[1])

                result.n[count] = [float(n0), float(n1), float(n2)]
                # image axes (x, y, z) become camera axes (z, -x, -y)
                result.t[count] = [float(t2), float(-t0), float(-t1)]
                u, v, _ = self.retransform_xyz(float(t0), float(t1), float(t2))
                result.u[count] = u
                result.v[count] = v
                count += 1
                if count == _MAX_SOLUTIONS:
                    break
        return result

    def transform_coordinates(self, obj):
        """Move ``obj`` into the selected coordinate frame, in place; return it."""
        if self.transform_type == TransformType.TWO_D:
            self._transform_2d(obj)
        elif self.transform_type == TransformType.THREE_D:
            self._transform_3d(obj)
        return obj

    def calc_orientation(self, obj):
        """Fill in the quaternion and Euler angles of ``obj``; return it."""
        return _fill_orientation(obj)

    def _transform_2d(self, o):
        if o.x == 0:
            raise ValueError("object lies in the camera plane")
        h = self.hom
        px, py = -o.y / o.x, -o.z / o.x
        x = h[0] * px + h[1] * py + h[2]
        y = h[3] * px + h[4] * py + h[5]
        z = h[6] * px + h[7] * py + h[8]
        o.x = x / z
        o.y = y / z
        o.z = 0.0
        o.n0 = o.n1 = o.n2 = 0.0

    def _apply_3d(self, index, transform, point):
        rel = [p - q for p, q in zip(point, transform.orig)]
        m = transform.simlar
        res = [m[3 * r] * rel[0] + m[3 * r + 1] * rel[1] + m[3 * r + 2] * rel[2] for r in range(3)]
        res[0] = (index % 2) * self.grid_dim_x + (1 - (index % 2) * 2) * res[0]
        res[1] = (index // 2) * self.grid_dim_y + (1 - (index // 2) * 2) * res[1]
        if index in (0, 3):
            res[2] = -res[2]
        strength = 1.0 / (sum(c * c for c in rel) + 0.01)
        return res, strength

    def _weighted_mean(self, point):
        total = [0.0, 0.0, 0.0]
        weight = 0.0
        for index, transform in enumerate(self.transforms_3d):
            res, strength = self._apply_3d(index, transform, point)
            total = [acc + strength * r for acc, r in zip(total, res)]
            weight += strength
        return [t / weight for t in total]

    def _transform_3d(self, o):
        o.x, o.y, o.z = self._weighted_mean((o.x, o.y, o.z))
        o.n0, o.n1, o.n2 = self._weighted_mean((o.n0, o.n1, o.n2))

    def calibrate_2d(self, objects, dim_x, dim_y, robot_radius=0.0, robot_height=0.0,
                     camera_height=1.0):
        """Build the planar homography from four markers at the field corners."""
        objects = list(objects)
        if len(objects) < 4:
            raise CalibrationError("four calibration markers are needed")
        ix = dim_x / camera_height * robot_height / 2
        iy = dim_y / camera_height * robot_height / 2
        targets = [
            (robot_radius + ix, robot_radius + iy),
            (dim_x - robot_radius - ix, robot_radius + iy),
            (robot_radius + ix, dim_y - robot_radius - iy),
            (dim_x - robot_radius - ix, dim_y - robot_radius - iy),
        ]
        est = np.zeros((8, 8))
        vec = np.zeros(8)
        for i, (obj, (rx, ry)) in enumerate(zip(objects[:4], targets)):
            if obj.x == 0:
                raise CalibrationError("calibration marker lies in the camera plane")
            ox, oy = -obj.y / obj.x, -obj.z / obj.x
            est[2 * i] = [-ox, -oy, -1, 0, 0, 0, rx * ox, rx * oy]
            est[2 * i + 1] = [0, 0, 0, -ox, -oy, -1, ry * ox, ry * oy]
            vec[2 * i] = -rx
            vec[2 * i + 1] = -ry
        try:
            res = np.linalg.solve(est, vec)
        except np.linalg.LinAlgError as exc:
            raise CalibrationError("calibration markers do not span a plane") from exc
        self.hom = [float(v) for v in res] + [1.0]
        self.transform_type = TransformType.TWO_D
        self.calibrated = True

    def calibrate_3d(self, objects, dim_x, dim_y):
        """Build the four 3D transforms from markers at the field corners."""
        o = list(objects)
        if len(o) < 4:
            raise CalibrationError("four calibration markers are needed")
        self.transforms_3d = [
            self._partial_3d(o[0], o[1], o[2], dim_x, dim_y),
            self._partial_3d(o[1], o[0], o[3], dim_x, dim_y),
            self._partial_3d(o[2], o[3], o[0], dim_x, dim_y),
            self._partial_3d(o[3], o[2], o[1], dim_x, dim_y),
        ]
        self.grid_dim_x = dim_x
        self.grid_dim_y = dim_y
        self.transform_type = TransformType.THREE_D
        self.calibrated = True

    @staticmethod
    def _partial_3d(o0, o1, o2, dim_x, dim_y):
        origin = np.array([o0.x, o0.y, o0.z], dtype=float)
        v0 = np.array([o1.x, o1.y, o1.z], dtype=float) - origin
        v1 = np.array([o2.x, o2.y, o2.z], dtype=float) - origin
        v2 = np.cross(v0, v1)
        try:
            inv = np.linalg.inv(np.column_stack([v0, v1, v2]))
        except np.linalg.LinAlgError as exc:
            raise CalibrationError("calibration markers are collinear") from exc
        scale = np.array([dim_x, dim_y, dim_x * dim_y])[:, None]
        return Transform3D(
            orig=[float(c) for c in origin],
            simlar=[float(c) for c in (inv * scale).ravel()],
        )

    def save_calibration(self, path):
        """Write the calibration in the matrix-storage YAML format."""
        lines = ["%YAML:1.0", "---", "# Dimensions",
                 f"dim_x: {_format_number(self.grid_dim_x)}",
                 f"dim_y: {_format_number(self.grid_dim_y)}",
                 "# 2D calibration"]
        lines += _matrix_lines("hom", 3, 3, self.hom)
        lines.append("# 3D calibration")
        for k, transform in enumerate(self.transforms_3d):
            lines.append(f"# D3transform {k}")
            lines += _matrix_lines(f"offset_{k}", 3, 1, transform.orig)
            lines += _matrix_lines(f"simlar_{k}", 3, 3, transform.simlar)
        try:
            with open(path, "w", encoding="utf-8") as handle:
                handle.write("\n".join(lines) + "\n")
        except OSError as exc:
            raise CalibrationError(f"Could not open/create calibration file. {path}") from exc

    def load_calibration(self, path):
        """Read a calibration written by :meth:`save_calibration`."""
        if self.debug:
            _log.debug("loading calibration from %s", path)
        try:
            with open(path, encoding="utf-8") as handle:
                text = handle.read()
        except OSError as exc:
            raise CalibrationError(f"Could not open/load calibration file. {path}") from exc
        entries = _parse_storage(text)

        def matrix(key, rows, cols):
            value = entries.get(key)
            if not isinstance(value, tuple) or value[:2] != (rows, cols):
                raise CalibrationError(f"calibration file lacks a {rows}x{cols} matrix {key!r}")
            return value[2]

        def scalar(key):
            value = entries.get(key)
            if not isinstance(value, float):
                raise CalibrationError(f"calibration file lacks the value {key!r}")
            return value

        dim_x, dim_y = scalar("dim_x"), scalar("dim_y")
        hom = matrix("hom", 3, 3)
        transforms = [
            Transform3D(orig=matrix(f"offset_{k}", 3, 1), simlar=matrix(f"simlar_{k}", 3, 3))
            for k in range(4)
        ]
        self.grid_dim_x, self.grid_dim_y = dim_x, dim_y
        self.hom = hom
        self.transforms_3d = transforms
        self.calibrated = True