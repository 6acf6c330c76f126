# ringtrack

ringtrack finds black rings with white centres in camera images and tracks
them from one frame to the next. For each ring it works out where the ring
sits relative to the camera and which way it faces. It can also read an
optional binary ID code printed around the ring.

The package is plain Python built on numpy and Pillow.

## Installation

```
pip install .
```

To install it with the test dependencies:

```
pip install .[test]
```

## Modules

- `ringtrack.whycon.Whycon` is the tracking session. It holds one
  `CircleDetector` per marker, a shared `Transformation` and a `Necklace`
  decoder, and it runs manual calibration and autocalibration of a
  user-defined coordinate frame.
- `ringtrack.circle_detect.CircleDetector` segments the image by flood fill,
  then tests each candidate ring for its black/white area ratio,
  concentricity and circularity. It adjusts its brightness threshold and
  starts each search where the marker was last seen.
- `ringtrack.code_reader` has `calc_segment`, which computes the centre and
  axes of an ellipse from pixel moments, `read_ring_code`, which samples the
  code ring around a marker, and `mark_samples`, which paints the sample
  positions into the image.
- `ringtrack.transformation.Transformation` models the camera (intrinsic
  matrix plus 4, 5 or 8 distortion coefficients). It turns an ellipse into
  the two candidate 3D poses and maps positions into a calibrated 2D
  (homography) or 3D frame. It also saves and loads calibration files.
  `CalibrationError` is raised when a calibration is missing, unreadable or
  degenerate.
- `ringtrack.orientation` holds the quaternion helpers
  (`hamilton_product`, `normalize_quaternion`, ...), plus
  `quaternion_from_normal`, `euler_from_quaternion` and `calc_orientation`.
- `ringtrack.necklace.Necklace` builds the rotation-invariant ID table and
  decodes the bit strings read from a marker. It can also keep a Bayesian
  estimate of an identity (`get(..., probabilistic=True)`).
- `ringtrack.raw_image.RawImage` is the interleaved 8-bit pixel buffer that
  the detector works on. It can wrap an existing numpy array or bytes
  buffer, and it draws text overlays, a centre mark and a cross-hair.
- `ringtrack.structs` holds the data records: `Segment`, `TrackedObject`,
  `Marker`, `EllipseCenters`, `Transform3D`, `Decoded` and the
  `TransformType` enum.
- `ringtrack.timer.Timer` is a microsecond stopwatch that can be paused.

## Usage

```python
import numpy as np

from ringtrack.raw_image import RawImage
from ringtrack.whycon import Whycon

tracker = Whycon(debug=False)
tracker.initialize(
    circle_diam=0.122,
    use_gui=False,
    id_bits=5,
    id_samples=360,
    hamming_dist=1,
    markers=2,
    identify=False,
    img_w=640,
    img_h=480,
)
tracker.update_camera_info(
    [600.0, 0.0, 320.0, 0.0, 600.0, 240.0, 0.0, 0.0, 1.0],
    [0.0, 0.0, 0.0, 0.0, 0.0],
)

frame = np.zeros((480, 640, 3), dtype=np.uint8)  # an RGB frame from your camera
image = RawImage(640, 480, 3, data=frame)

for marker in tracker.process_image(image):
    obj = marker.obj
    print(marker.seg.id, obj.x, obj.y, obj.z, obj.roll, obj.pitch, obj.yaw)
```

`process_image` returns a list of `Marker` records, one for each marker found
in the frame. Once one marker is missing, the markers after it are not
searched for in that frame. Detection paints into the image: the inner disc
of each valid marker is blacked out. With `set_drawing(..., draw_segments=True)`
the outer ring is marked as well. With `use_gui=True` the detection time,
marker coordinates and calibration prompts are written into the image as
text.

With `identify=True` each marker's code ring is read and decoded, and
`marker.seg.id` holds the decoded identifier plus one.

## Coordinate frames

By default positions are given in the camera frame (`TransformType.NONE`):
x points away from the camera, y and z across the image.

To get positions in a frame of your own, place four markers at the corners
of a `field_length` x `field_width` rectangle (set with
`update_configuration`) and start a calibration:

- `autocalibration()` needs at least four markers found in the last frame.
  Over the next frames it picks the four outermost markers, averages their
  positions and builds the 2D and 3D transforms.
- `manualcalibration()` tracks a single marker. Call `select_marker(x, y)`
  at the image position of each corner in turn, in the order (0, 0),
  (length, 0), (0, width), (length, width). Each corner is averaged over 20
  frames.

Both raise `CalibrationError` if fewer than four markers were found.
Once calibration has finished, `set_coordinates(TransformType.TWO_D)` or
`set_coordinates(TransformType.THREE_D)` switches the output frame. Selecting
a user frame before any calibration exists raises `CalibrationError`.

`save_calibration(path)` writes the calibration as a small YAML-style
matrix file. `load_calibration(path)` reads it back and returns `True`, or
logs a warning and returns `False` if the file cannot be read.

## What the package does not do

ringtrack does not open cameras or video files, and it shows no window. You
hand it frames as numpy arrays or byte buffers, and any drawing goes into
those buffers. It has no command-line program. The `TransformType.FOUR_D` and
`TransformType.INV` values exist, but they leave positions in the camera
frame.

## Tests

```
pytest
```