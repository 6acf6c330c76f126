import copy

from ringtrack.structs import (
    Decoded,
    EllipseCenters,
    Marker,
    Segment,
    TrackedObject,
    Transform3D,
    TransformType,
)


def test_segment_describe_contains_message_index_and_validity():
    seg = Segment(valid=True, id=7)
    text = seg.describe(3, "outer")
    assert "outer\tID:7, index=3, valid=1" in text


def test_segment_describe_formats_floats_like_printf():
    text = Segment(x=1.5, y=2.25).describe(0)
    assert "x=1.500000, y=2.250000" in text


def test_segment_describe_default_message_is_empty():
    first_content_line = Segment().describe(5).splitlines()[1]
    assert first_content_line.startswith("\tID:0, index=5")


def test_tracked_object_describe_lists_quaternion():
    obj = TrackedObject(qx=0.5, qw=1.0)
    text = obj.describe(1, "tracked")
    assert "qx=0.500000" in text
    assert "qw=1.000000" in text
    assert "tracked index=1" in text


def test_ellipse_centers_defaults_are_not_shared():
    a = EllipseCenters()
    b = EllipseCenters()
    a.u[0] = 1.0
    a.n[1][2] = 3.0
    assert b.u == [0.0, 0.0]
    assert b.n == [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]


def test_transform3d_default_sizes():
    t = Transform3D()
    assert len(t.orig) == 3
    assert len(t.simlar) == 9
    assert all(v == 0.0 for v in t.orig + t.simlar)


def test_marker_defaults_are_independent():
    a = Marker()
    b = Marker()
    a.seg.valid = True
    a.obj.x = 4.0
    assert b.seg.valid is False
    assert b.obj.x == 0.0
    assert a.valid is False


def test_marker_deepcopy_is_independent():
    m = Marker(valid=True, seg=Segment(x=10.0), obj=TrackedObject(z=2.0))
    c = copy.deepcopy(m)
    c.seg.x = 0.0
    assert m.seg.x == 10.0
    assert c.obj.z == 2.0
    assert c == Marker(valid=True, seg=Segment(x=0.0), obj=TrackedObject(z=2.0))


def test_decoded_default_code_empty():
    d = Decoded(angle=0.5, id=3, edge_index=1)
    assert d.code == ""
    assert d.id == 3


def test_transform_type_lookup_by_value():
    assert TransformType(int(TransformType.THREE_D)) is TransformType.THREE_D
    assert TransformType.NONE < TransformType.TWO_D < TransformType.THREE_D