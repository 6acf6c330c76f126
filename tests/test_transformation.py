from dataclasses import replace

import pytest

from ringtrack.orientation import quaternion_norm
from ringtrack.structs import Segment, TrackedObject, TransformType
from ringtrack.transformation import CalibrationError, Transformation

DIM_X, DIM_Y = 2.0, 1.5

PLANAR = [
    TrackedObject(x=1.0, y=0.2, z=0.1),
    TrackedObject(x=1.0, y=-0.3, z=0.15),
    TrackedObject(x=1.0, y=0.25, z=-0.2),
    TrackedObject(x=1.0, y=-0.2, z=-0.25),
]

SPATIAL = [
    TrackedObject(x=2.0, y=-0.5, z=-0.4),
    TrackedObject(x=2.0, y=0.5, z=-0.4),
    TrackedObject(x=2.0, y=-0.5, z=0.4),
    TrackedObject(x=2.0, y=0.5, z=0.4),
]

CORNERS = [(0.0, 0.0), (DIM_X, 0.0), (0.0, DIM_Y), (DIM_X, DIM_Y)]


def camera():
    trans = Transformation(0.1)
    trans.update_camera_params([500, 0, 320, 0, 500, 240, 0, 0, 1], [0, 0, 0, 0, 0])
    return trans


def test_default_type_is_camera_frame():
    assert Transformation(0.1).get_transform_type() == TransformType.NONE


def test_uncalibrated_user_frame_is_rejected():
    trans = Transformation(0.1)
    with pytest.raises(CalibrationError):
        trans.set_transform_type(TransformType.TWO_D)
    trans.set_transform_type(TransformType.NONE)
    assert trans.get_transform_type() == TransformType.NONE


def test_bad_distortion_length():
    with pytest.raises(ValueError):
        Transformation(0.1).update_camera_params([1, 0, 0, 0, 1, 0, 0, 0, 1], [0, 0, 0])


def test_identity_camera_keeps_points():
    assert Transformation(0.1).transform_xy(0.3, -0.2) == pytest.approx((0.3, -0.2))


def test_undistort_and_project_round_trip():
    trans = Transformation(0.1)
    trans.update_camera_params([600, 0, 320, 0, 610, 240, 0, 0, 1], [0.01, -0.005, 0.001, 0.001, 0.0])
    for u, v in [(320, 240), (400, 300), (250, 180)]:
        x, y = trans.transform_xy(u, v)
        pu, pv, pz = trans.retransform_xyz(x, y, 1.0)
        assert pu == pytest.approx(u, abs=1e-3)
        assert pv == pytest.approx(v, abs=1e-3)
        assert pz == 0.0


def test_head_on_circle_solutions():
    trans = camera()
    seg = Segment(x=320.0, y=240.0, m0=12.5, m1=12.5, v0=1.0, v1=0.0)
    centers = trans.calc_solutions(seg)
    assert centers.t[0][0] == pytest.approx(1.0, abs=1e-6)
    assert centers.t[0][1] == pytest.approx(0.0, abs=1e-6)
    assert centers.t[0][2] == pytest.approx(0.0, abs=1e-6)
    assert centers.n[0][2] == pytest.approx(1.0, abs=1e-6)
    assert centers.u[0] == pytest.approx(320.0, abs=1e-4)
    assert centers.v[0] == pytest.approx(240.0, abs=1e-4)


def test_degenerate_segment_gives_no_solution():
    centers = camera().calc_solutions(Segment(x=320.0, y=240.0))
    assert centers.t == [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]


def test_camera_frame_leaves_object():
    obj = TrackedObject(x=1.0, y=2.0, z=3.0)
    Transformation(0.1).transform_coordinates(obj)
    assert (obj.x, obj.y, obj.z) == (1.0, 2.0, 3.0)


def test_calibrate_2d_maps_markers_to_corners():
    trans = Transformation(0.1)
    trans.calibrate_2d(PLANAR, DIM_X, DIM_Y)
    assert trans.get_transform_type() == TransformType.TWO_D
    for obj, (cx, cy) in zip(PLANAR, CORNERS):
        out = trans.transform_coordinates(replace(obj, n0=1.0))
        assert out.x == pytest.approx(cx, abs=1e-6)
        assert out.y == pytest.approx(cy, abs=1e-6)
        assert out.z == 0.0
        assert out.n0 == 0.0


def test_calibrate_2d_robot_radius_shifts_corner():
    trans = Transformation(0.1)
    trans.calibrate_2d(PLANAR, DIM_X, DIM_Y, robot_radius=0.1)
    out = trans.transform_coordinates(replace(PLANAR[0]))
    assert out.x == pytest.approx(0.1, abs=1e-6)
    assert out.y == pytest.approx(0.1, abs=1e-6)


def test_calibrate_2d_needs_four_markers():
    with pytest.raises(CalibrationError):
        Transformation(0.1).calibrate_2d(PLANAR[:3], DIM_X, DIM_Y)


def test_calibrate_3d_maps_markers_to_corners():
    trans = Transformation(0.1)
    trans.calibrate_3d(SPATIAL, DIM_X, DIM_Y)
    assert trans.get_transform_type() == TransformType.THREE_D
    for obj, (cx, cy) in zip(SPATIAL, CORNERS):
        out = trans.transform_coordinates(replace(obj))
        assert out.x == pytest.approx(cx, abs=1e-6)
        assert out.y == pytest.approx(cy, abs=1e-6)
        assert out.z == pytest.approx(0.0, abs=1e-6)


def test_calibrate_3d_midpoint():
    trans = Transformation(0.1)
    trans.calibrate_3d(SPATIAL, DIM_X, DIM_Y)
    out = trans.transform_coordinates(TrackedObject(x=2.0, y=0.0, z=0.0))
    assert out.x == pytest.approx(DIM_X / 2, abs=1e-6)
    assert out.y == pytest.approx(DIM_Y / 2, abs=1e-6)


def test_calibrate_3d_collinear_rejected():
    same = [TrackedObject(x=1.0, y=0.0, z=0.0)] * 4
    with pytest.raises(CalibrationError):
        Transformation(0.1).calibrate_3d(same, DIM_X, DIM_Y)


def test_save_load_round_trip(tmp_path):
    path = tmp_path / "calib.yml"
    source = Transformation(0.1)
    source.calibrate_2d(PLANAR, DIM_X, DIM_Y)
    source.calibrate_3d(SPATIAL, DIM_X, DIM_Y)
    source.save_calibration(str(path))
    assert path.read_text().startswith("%YAML:1.0")

    loaded = Transformation(0.1)
    loaded.load_calibration(str(path))
    assert loaded.hom == pytest.approx(source.hom)
    assert (loaded.grid_dim_x, loaded.grid_dim_y) == (DIM_X, DIM_Y)

    loaded.set_transform_type(TransformType.TWO_D)
    out = loaded.transform_coordinates(replace(PLANAR[3]))
    assert out.x == pytest.approx(DIM_X, abs=1e-6)
    assert out.y == pytest.approx(DIM_Y, abs=1e-6)

    loaded.set_transform_type(TransformType.THREE_D)
    out = loaded.transform_coordinates(replace(SPATIAL[1]))
    assert out.x == pytest.approx(DIM_X, abs=1e-6)


def test_load_missing_file(tmp_path):
    with pytest.raises(CalibrationError):
        Transformation(0.1).load_calibration(str(tmp_path / "missing.yml"))


def test_load_incomplete_file(tmp_path):
    path = tmp_path / "partial.yml"
    path.write_text("%YAML:1.0\n---\ndim_x: 1.\ndim_y: 1.\n")
    trans = Transformation(0.1)
    with pytest.raises(CalibrationError):
        trans.load_calibration(str(path))
    assert trans.calibrated is False


def test_calc_orientation_unit_quaternion():
    obj = TrackedObject(n0=0.1, n1=0.2, n2=0.97, angle=0.5)
    Transformation(0.1).calc_orientation(obj)
    assert quaternion_norm((obj.qx, obj.qy, obj.qz, obj.qw)) == pytest.approx(1.0)