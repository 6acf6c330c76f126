"""Quaternion arithmetic and marker orientation from its surface normal."""

from __future__ import annotations

import math

_NORM_TOLERANCE = 1e-8


def hamilton_product(q1, q2):
    """Hamilton product of two quaternions given as (x, y, z, w)."""
    x1, y1, z1, w1 = q1
    x2, y2, z2, w2 = q2
    return (
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
    )


def conjugate_quaternion(q):
    """Conjugate of a quaternion (x, y, z, w)."""
    x, y, z, w = q
    return (-x, -y, -z, w)


def quaternion_norm(q):
    """Euclidean norm of a quaternion."""
    return math.sqrt(sum(c * c for c in q))


def normalize_quaternion(q):
    """Scale a quaternion to unit length."""
    norm = quaternion_norm(q)
    if norm == 0.0:
        raise ValueError("cannot normalise a zero quaternion")
    if abs(norm - 1.0) > _NORM_TOLERANCE:
        return tuple(c / norm for c in q)
    return tuple(q)


def _normalize_vector(v):
    norm = math.sqrt(sum(c * c for c in v))
    scale = 1.0 / norm if norm else 0.0
    return tuple(c * scale for c in v)


def _cross(a, b):
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def quaternion_from_normal(n0, n1, n2, angle):
    """Orientation quaternion of a marker with surface normal (n0, n1, n2) rotated by angle."""
    initial = (1.0, 0.0, 0.0)
    final = _normalize_vector((n2, -n0, -n1))
    axis = _normalize_vector(_cross(final, initial))

    dot = sum(f * i for f, i in zip(final, initial))
    rot_angle = -math.acos(max(-1.0, min(1.0, dot)))
    s = math.sin(rot_angle / 2.0)
    q1 = normalize_quaternion((axis[0] * s, axis[1] * s, axis[2] * s, math.cos(rot_angle / 2.0)))

    if angle > math.pi:
        angle -= 2 * math.pi
    s = math.sin(angle / 2.0)
    q2 = normalize_quaternion((final[0] * s, final[1] * s, final[2] * s, math.cos(angle / 2.0)))

    q3 = normalize_quaternion(hamilton_product(q2, q1))
    return normalize_quaternion(hamilton_product(q3, (0.0, 0.0, 1.0, 0.0)))


def euler_from_quaternion(qx, qy, qz, qw):
    """Roll, pitch and yaw of a quaternion; pitch saturates at +-pi/2."""
    roll = math.atan2(2.0 * (qw * qx + qy * qz), 1.0 - 2.0 * (qx * qx + qy * qy))
    sinp = 2.0 * (qw * qy - qz * qx)
    if abs(sinp) >= 1:
        pitch = math.copysign(math.pi / 2, sinp)
    else:
        pitch = math.asin(sinp)
    yaw = math.atan2(2.0 * (qw * qz + qx * qy), 1.0 - 2.0 * (qy * qy + qz * qz))
    return roll, pitch, yaw


def calc_orientation(obj):
    """Fill in the quaternion and Euler angles of a tracked object; return it."""
    obj.qx, obj.qy, obj.qz, obj.qw = quaternion_from_normal(obj.n0, obj.n1, obj.n2, obj.angle)
    obj.roll, obj.pitch, obj.yaw = euler_from_quaternion(obj.qx, obj.qy, obj.qz, obj.qw)
    return obj