"""Plain data records shared by the detector, the decoder and the transformation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

_RULE = "-" * 117


class TransformType(IntEnum):
    """Coordinate frame in which marker positions are reported."""

    NONE = 0  # camera-centric
    TWO_D = 1  # 3D -> 2D homography
    THREE_D = 2  # user-defined 3D, combination of four translation/rotation transforms
    FOUR_D = 3  # user-defined 3D, full 4x3 matrix
    INV = 4  # for testing purposes


@dataclass
class Decoded:
    """Result of decoding the ring code of one marker."""

    angle: float = 0.0  # rotation of the marker around its axis
    id: int = 0  # decoded marker identifier
    edge_index: int = 0  # index of the starting edge
    code: str = ""  # the bits that were read, most significant first


@dataclass
class Segment:
    """Image coordinates and dimensions of a detected pattern."""

    x: float = 0.0
    y: float = 0.0
    angle: float = 0.0
    horizontal: float = 0.0
    size: int = 0
    maxy: int = 0
    maxx: int = 0
    miny: int = 0
    minx: int = 0
    mean: int = 0
    type: int = 0
    roundness: float = 0.0
    bw_ratio: float = 0.0
    round: bool = False
    valid: bool = False
    m0: float = 0.0
    m1: float = 0.0
    v0: float = 0.0
    v1: float = 0.0
    r0: float = 0.0
    r1: float = 0.0
    id: int = 0

    def describe(self, index, msg=""):
        """Return a human-readable multi-line summary of the segment."""
        lines = [
            "=== Segment " + "=" * 105,
            f"{msg}\tID:{self.id}, index={index}, valid={int(self.valid)}",
            f"x={self.x:f}, y={self.y:f}, angle={self.angle:f}, "
            f"horizontal={self.horizontal:f}, size={self.size}",
            f"maxy={self.maxy}, maxx={self.maxx}, miny={self.miny}, minx={self.minx}",
            f"mean={self.mean}, black_white={self.type}",
            f"roundness={self.roundness:f}, bwRatio={self.bw_ratio:f}, round={int(self.round)}",
            f"m0={self.m0:f}, m1={self.m1:f}, v0={self.v0:f}, v1={self.v1:f}, "
            f"r0={self.r0:f}, r1={self.r1:f}",
            _RULE,
        ]
        return "\n".join(lines)


@dataclass
class TrackedObject:
    """Position and orientation of a marker in space."""

    u: float = 0.0
    v: float = 0.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    d: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0
    angle: float = 0.0
    n0: float = 0.0
    n1: float = 0.0
    n2: float = 0.0
    qx: float = 0.0
    qy: float = 0.0
    qz: float = 0.0
    qw: float = 0.0

    def describe(self, index, msg=""):
        """Return a human-readable multi-line summary of the tracked object."""
        lines = [
            "===== TrackedObject " + "=" * 97,
            f"{msg} index={index}",
            f"u={self.u:f}, v={self.v:f} (center in the image coords)",
            f"x={self.x:f}, y={self.y:f}, z={self.z:f}, d={self.d:f} "
            "(position and distance in the camera coords)",
            f"pitch={self.pitch:f}, roll={self.roll:f}, yaw={self.yaw:f} (fixed axis angles)",
            f"angle={self.angle:f} (axis angle around marker's surface normal)",
            f"n0={self.n0:f}, n1={self.n1:f}, n2={self.n2:f} "
            "( marker surface normal pointing from the camera)",
            f"qx={self.qx:f}, qy={self.qy:f}, qz={self.qz:f}, qw={self.qw:f} (quaternion)",
            _RULE,
        ]
        return "\n".join(lines)


def _pair_of_vectors():
    return [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]


@dataclass
class EllipseCenters:
    """Both candidate solutions of a marker's position and surface normal."""

    u: list = field(default_factory=lambda: [0.0, 0.0])
    v: list = field(default_factory=lambda: [0.0, 0.0])
    n: list = field(default_factory=_pair_of_vectors)
    t: list = field(default_factory=_pair_of_vectors)


@dataclass
class Transform3D:
    """Translation and similarity matrix of one 3D calibration transform."""

    orig: list = field(default_factory=lambda: [0.0] * 3)
    simlar: list = field(default_factory=lambda: [0.0] * 9)


@dataclass
class Marker:
    """A detection: the image segment and the object it locates."""

    valid: bool = False
    seg: Segment = field(default_factory=Segment)
    obj: TrackedObject = field(default_factory=TrackedObject)