import numpy as np
import pytest

from ringtrack.raw_image import RawImage
from ringtrack.structs import Marker, Segment, TrackedObject


def _filled(width, height, value, bpp=3):
    img = RawImage(width, height, bpp)
    img.data[:] = value
    return img


def test_new_image_is_blank_and_sized():
    img = RawImage(4, 3, 3)
    assert img.size == 4 * 3 * 3
    assert img.pixels.shape == (3, 4, 3)
    assert not img.data.any()


def test_given_buffer_is_shared():
    buffer = np.zeros(2 * 2 * 3, dtype=np.uint8)
    img = RawImage(2, 2, 3, data=buffer)
    img.data[0] = 7
    assert buffer[0] == 7


def test_bytearray_is_shared():
    buffer = bytearray(2 * 2)
    img = RawImage(2, 2, 1, data=buffer)
    img.data[3] = 9
    assert buffer[3] == 9


def test_short_buffer_rejected():
    with pytest.raises(ValueError):
        RawImage(4, 4, 3, data=np.zeros(10, dtype=np.uint8))


def test_invalid_dimensions_rejected():
    with pytest.raises(ValueError):
        RawImage(0, 4, 3)


def test_swap_rgb_swaps_first_and_third_channel():
    img = RawImage(2, 1, 3)
    img.data[:] = [1, 2, 3, 4, 5, 6]
    img.swap_rgb()
    assert img.data.tolist() == [3, 2, 1, 6, 5, 4]
    img.swap_rgb()
    assert img.data.tolist() == [1, 2, 3, 4, 5, 6]


def test_update_image_same_format_copies():
    img = RawImage(2, 2, 1)
    source = np.arange(4, dtype=np.uint8)
    img.update_image(source, 2, 2, 1)
    source[0] = 99
    assert img.data.tolist() == [0, 1, 2, 3]


def test_update_image_adopts_new_format():
    img = RawImage(2, 2, 1)
    source = np.arange(3 * 2 * 3, dtype=np.uint8)
    img.update_image(source, 3, 2, 3)
    assert (img.width, img.height, img.bpp) == (3, 2, 3)
    assert img.data.tolist() == source.tolist()


def test_update_image_short_data_keeps_format():
    img = RawImage(2, 2, 1)
    with pytest.raises(ValueError):
        img.update_image(bytes(5), 3, 3, 1)
    assert (img.width, img.height, img.bpp) == (2, 2, 1)


def test_plot_line_draws_cross_hair():
    img = RawImage(10, 8, 3)
    img.plot_line(2, 3)
    px = img.pixels
    for col in range(10):
        if col in (2, 5):
            continue
        assert tuple(px[3, col]) == (255, 0, 255)
    assert not px[3, 5].any()
    for row in range(8):
        if row == 5:
            continue
        assert tuple(px[row, 2]) == (255, 255, 0)
    assert not px[5, 2].any()


def test_plot_line_out_of_range_uses_centre():
    img = RawImage(10, 8, 3)
    img.plot_line(-1, 100)
    px = img.pixels
    assert tuple(px[4, 0]) == (255, 0, 255)
    assert tuple(px[0, 5]) == (255, 255, 0)


def test_plot_center_draws_outline_only():
    img = RawImage(60, 50, 3)
    img.plot_center()
    px = img.pixels
    assert tuple(px[25 - 20, 30 - 20]) == (255, 150, 150)
    assert tuple(px[25, 30 + 20]) == (255, 150, 150)
    assert tuple(px[25 + 20, 30]) == (255, 150, 150)
    assert not px[25, 30].any()


def test_plot_center_too_small():
    with pytest.raises(ValueError):
        RawImage(20, 20, 3).plot_center()


def test_uniform_brightness_equals_value():
    img = _filled(40, 30, 100)
    assert img.overall_brightness(True) == pytest.approx(100.0)
    assert img.overall_brightness(False) == pytest.approx(100.0)


def test_saturated_white_brightness():
    img = _filled(40, 30, 255)
    assert img.overall_brightness(True) == pytest.approx(355.0)


def test_brightness_compares_halves():
    img = _filled(40, 30, 60)
    img.pixels[:15] = 200
    assert img.overall_brightness(True) > img.overall_brightness(False)


def test_brightness_needs_rows():
    with pytest.raises(ValueError):
        RawImage(10, 1, 3).overall_brightness(True)


def test_draw_time_stats_marks_corner():
    img = _filled(300, 100, 255)
    text = img.draw_time_stats(1500, 2)
    assert text == "Found 2 markers in 1.500 ms"
    corner = img.pixels[:8, :40]
    assert (corner != 255).any()
    assert tuple(img.pixels[99, 299]) == (255, 255, 255)


def test_draw_time_stats_grayscale():
    img = _filled(300, 100, 255, bpp=1)
    img.draw_time_stats(1000, 0)
    assert (img.pixels[:8, :40] != 255).any()
    assert img.pixels[99, 299, 0] == 255


def test_drawing_unsupported_depth():
    with pytest.raises(ValueError):
        RawImage(50, 50, 2).draw_time_stats(1, 1)


def test_guide_calibration_texts():
    img = _filled(400, 200, 255)
    assert img.draw_guide_calibration(0, 1.5, 2.0) == "Click the marker at the [0.000, 0.000]."
    assert img.draw_guide_calibration(1, 1.5, 2.0) == "Click the marker at the [1.500, 0.000]."
    assert img.draw_guide_calibration(9, 1.5, 2.0).endswith("[0.000, 0.000].")


def test_guide_calibration_draws_box():
    img = _filled(400, 200, 255)
    img.draw_guide_calibration(3, 1.0, 1.0)
    region = img.pixels[90:100, 70:120]
    assert (region != 255).any()


def test_draw_stats_3d_lines_round_trip():
    img = _filled(300, 200, 255)
    marker = Marker(
        valid=True,
        seg=Segment(minx=100, maxy=50, id=7),
        obj=TrackedObject(x=0.25, y=-1.125, z=2.5, roll=0.5, pitch=-0.25, yaw=1.0),
    )
    first, second = img.draw_stats(marker, False)
    assert [float(tok) for tok in first.split()] == [0.25, -1.125, 2.5]
    tokens = second.split()
    assert int(tokens[0]) == 7
    assert [float(tok) for tok in tokens[1:]] == [0.5, -0.25, 1.0]
    assert (img.pixels[50:90, 70:200] != 255).any()


def test_draw_stats_2d_uses_millimetres():
    img = _filled(300, 200, 255)
    marker = Marker(
        valid=True,
        seg=Segment(minx=100, maxy=50, id=3),
        obj=TrackedObject(x=0.25, y=0.5, yaw=0.0),
    )
    first, second = img.draw_stats(marker, True)
    assert [float(tok) for tok in first.split()] == [250.0, 500.0]
    assert [int(tok) for tok in second.split()] == [3, 0]