"""Multi-marker tracking session: detection, identification and coordinate calibration."""

from __future__ import annotations

import logging
from dataclasses import replace

from .circle_detect import CircleDetector
from .necklace import Necklace
from .structs import Marker, TrackedObject, TransformType
from .timer import Timer
from .transformation import CalibrationError, Transformation

_log = logging.getLogger(__name__)

# measurements averaged per calibration pattern (manual calibration)
CALIBRATION_STEPS = 20
# measurements averaged per calibration pattern (automatic calibration)
AUTO_CALIBRATION_STEPS = 30
# measurements discarded before automatic calibration starts averaging
AUTO_CALIBRATION_PRE_STEPS = 10

# calibration pattern number meaning "no calibration in progress"
_CALIBRATION_IDLE = 5

# corner selectors used by automatic calibration: top-left, top-right, bottom-left, bottom-right
_CORNER_SIGNS = ((-1, +1), (+1, +1), (-1, -1), (+1, -1))


def _copy_marker(marker):
    return Marker(valid=marker.valid, seg=replace(marker.seg), obj=replace(marker.obj))


class Whycon:
    """Tracks a set of ring markers across frames and maps them to a chosen frame."""

    def __init__(self, debug=False):
        self.debug = debug
        self.image_width = 640
        self.image_height = 480
        self.circle_diameter = 0.0
        self.field_length = 1.0
        self.field_width = 1.0

        self.identify = False
        self.num_markers = 0
        self.num_found = 0
        self.num_static = 0

        self.id_bits = 0
        self.id_samples = 0
        self.hamming_dist = 0

        self.autocalibrate = False
        self.mancalibrate = False

        self.use_gui = False
        self.draw_coords = True
        self.draw_segments = False
        self.eval_time = 0

        self.transformation = None
        self.decoder = None
        self.current_markers = []
        self.last_markers = []
        self.detectors = []
        self.initialized = False

        self._indices_autocalib = [{} for _ in range(4)]
        self._index_autocalib = [0, 0, 0, 0]
        self._calib_num = _CALIBRATION_IDLE
        self._calib = [TrackedObject() for _ in range(4)]
        self._calib_tmp = []
        self._calib_step = CALIBRATION_STEPS + 2
        self._last_transform_type = TransformType.TWO_D
        self._was_markers = 1

    def _new_detector(self):
        return CircleDetector(
            self.image_width, self.image_height, self.identify, self.id_bits,
            self.id_samples, self.draw_segments, self.transformation, self.decoder,
            self.debug,
        )

    def _require_initialized(self):
        if not self.initialized:
            raise RuntimeError("the tracker has not been initialised")

    def initialize(self, circle_diam, use_gui, id_bits, id_samples, hamming_dist, markers,
                   identify, img_w, img_h):
        """Create the transformation, the ID decoder and one detector per marker."""
        self.identify = identify
        self.circle_diameter = circle_diam
        self.use_gui = use_gui
        self.id_bits = id_bits
        self.id_samples = id_samples
        self.hamming_dist = hamming_dist
        self.num_markers = markers
        self.image_width = img_w
        self.image_height = img_h

        self._calib_tmp = [TrackedObject() for _ in range(CALIBRATION_STEPS)]
        self.current_markers = [Marker() for _ in range(markers)]
        self.last_markers = [Marker() for _ in range(markers)]

        self.transformation = Transformation(circle_diam, self.debug)
        self.decoder = Necklace(id_bits, id_samples, hamming_dist, self.debug)
        self.detectors = [self._new_detector() for _ in range(markers)]
        self.initialized = True

    def set_drawing(self, draw_coords, draw_segments):
        """Choose whether coordinates and segmentation results are drawn."""
        self.draw_coords = draw_coords
        self.draw_segments = draw_segments
        for detector in self.detectors[: self.num_markers]:
            detector.set_draw(draw_segments)

    def set_coordinates(self, trans_type):
        """Select the output coordinate frame; user frames need a calibration."""
        self._require_initialized()
        self.transformation.set_transform_type(trans_type)

    def autocalibration(self):
        """Start calibrating from the four outermost markers in view."""
        self._require_initialized()
        if self.num_found < 4:
            raise CalibrationError(
                "Autocalibration not possible. Cannot locate 4 markers in the scene."
            )
        self._calib_step = 0
        self._was_markers = self.num_markers
        self._last_transform_type = self.transformation.get_transform_type()
        self.transformation.set_transform_type(TransformType.NONE)
        self.mancalibrate = False
        self.autocalibrate = True

    def manualcalibration(self):
        """Start calibrating from four markers selected one after another."""
        self._require_initialized()
        if self.num_found < 4:
            raise CalibrationError(
                "Manual calibration not possible. Cannot locate 4 markers in the scene."
            )
        self._calib_num = 0
        self._was_markers = self.num_markers
        self.num_markers = 1
        self._last_transform_type = self.transformation.get_transform_type()
        self.transformation.set_transform_type(TransformType.NONE)
        self.autocalibrate = False
        self.mancalibrate = True

    def load_calibration(self, path):
        """Load a saved calibration; a failure is logged and reported as False."""
        self._require_initialized()
        try:
            self.transformation.load_calibration(path)
        except (CalibrationError, OSError, ValueError) as exc:
            _log.warning("(file:'%s') %s", path, exc)
            return False
        return True

    def save_calibration(self, path):
        """Write the current calibration to ``path``."""
        self._require_initialized()
        self.transformation.save_calibration(path)

    def select_marker(self, x, y):
        """Point the first detector at the image position (x, y)."""
        if self._calib_num < 4 and self._calib_step > CALIBRATION_STEPS:
            self._calib_step = 0
            if self.transformation is not None:
                self.transformation.set_transform_type(TransformType.NONE)
        if self.num_markers > 0 and self.current_markers:
            seg = self.current_markers[0].seg
            seg.x = x
            seg.y = y
            seg.valid = True
            self.detectors[0].local_search = True

    def update_configuration(self, identify, diameter, markers, size, field_length,
                             field_width, ict, fct, art, cdtr, cdta):
        """Change the field, marker count and detection tolerances."""
        self._require_initialized()
        self.field_length = field_length
        self.field_width = field_width
        self.identify = identify
        self.transformation.set_circle_diameter(diameter)

        if self.num_markers != markers:
            self.current_markers = (self.current_markers + [Marker() for _ in range(markers)])[:markers]
            self.last_markers = (self.last_markers + [Marker() for _ in range(markers)])[:markers]
            while len(self.detectors) < markers:
                self.detectors.append(self._new_detector())
            del self.detectors[markers:]

        self.num_markers = markers
        for detector in self.detectors[:markers]:
            detector.reconfigure(ict, fct, art, cdtr, cdta, identify, size)

    def update_camera_info(self, intrinsic, distortion):
        """Set the camera matrix and distortion coefficients."""
        self._require_initialized()
        self.transformation.update_camera_params(intrinsic, distortion)

    def _manual_calib(self):
        first = self.current_markers[0]
        if not first.valid:
            return
        o = replace(first.obj)
        if self._calib_step < CALIBRATION_STEPS:
            self._calib_tmp[self._calib_step] = o
            self._calib_step += 1
        if self._calib_step != CALIBRATION_STEPS:
            return
        samples = self._calib_tmp[:CALIBRATION_STEPS]
        o = replace(
            o,
            x=sum(s.x for s in samples) / CALIBRATION_STEPS,
            y=sum(s.y for s in samples) / CALIBRATION_STEPS,
            z=sum(s.z for s in samples) / CALIBRATION_STEPS,
        )
        if self._calib_num < 4:
            self._calib[self._calib_num] = o
            self._calib_num += 1
        if self._calib_num == 4:
            self.transformation.calibrate_2d(self._calib, self.field_length, self.field_width)
            self.transformation.calibrate_3d(self._calib, self.field_length, self.field_width)
            self._calib_num += 1
            self.num_markers = self._was_markers
            self.transformation.set_transform_type(self._last_transform_type)
            self.detectors[0].local_search = False
            self.mancalibrate = False
            _log.info("manualCalib done")
        self._calib_step += 1

    def _auto_calib(self):
        _log.info("autocalib start point. step %d", self._calib_step)
        active = self.detectors[: self.num_markers]
        if sum(1 for detector in active if detector.last_track_ok) < 4:
            return

        markers = self.current_markers[: self.num_markers]
        spread = AUTO_CALIBRATION_STEPS - AUTO_CALIBRATION_PRE_STEPS
        if self._calib_step < AUTO_CALIBRATION_PRE_STEPS:
            for counts, (sx, sy) in zip(self._indices_autocalib, _CORNER_SIGNS):
                best_eval = -10000000
                best_index = 0
                for i, marker in enumerate(markers):
                    if marker.valid:
                        value = int(sx * marker.seg.x + sy * marker.seg.y)
                        if value > best_eval:
                            best_eval = value
                            best_index = i
                counts[best_index] = counts.get(best_index, 0) + 1
        elif self._calib_step == AUTO_CALIBRATION_PRE_STEPS:
            for corner, counts in enumerate(self._indices_autocalib):
                ranked = sorted(counts.items())
                self._index_autocalib[corner] = (
                    max(ranked, key=lambda item: item[1])[0] if ranked else 0
                )
                self._calib[corner] = replace(self._calib[corner], x=0.0, y=0.0, z=0.0)
            _log.info("INDEX: %i %i %i %i", *self._index_autocalib)
        else:
            for corner, index in enumerate(self._index_autocalib):
                obj = self.current_markers[index].obj
                target = self._calib[corner]
                target.x += obj.x
                target.y += obj.y
                target.z += obj.z
            if self._calib_step == AUTO_CALIBRATION_STEPS:
                for target in self._calib:
                    target.x /= spread
                    target.y /= spread
                    target.z /= spread
                self.transformation.calibrate_2d(self._calib, self.field_length, self.field_width)
                self.transformation.calibrate_3d(self._calib, self.field_length, self.field_width)
                self._calib_num += 1
                self.transformation.set_transform_type(self._last_transform_type)
                self.autocalibrate = False
                _log.info("autoCalib done")
        self._calib_step += 1

    def process_image(self, image):
        """Detect the markers in ``image`` and return the valid detections."""
        self._require_initialized()
        self.image_height = image.height
        self.image_width = image.width

        timer = Timer()
        self.num_found = self.num_static = 0
        timer.reset()
        timer.start()

        count = self.num_markers
        current, last, detectors = self.current_markers, self.last_markers, self.detectors

        for i in range(count):
            if current[i].valid:
                last[i] = _copy_marker(current[i])
                current[i] = detectors[i].find_segment(image, last[i].seg)

        for i in range(count):
            if not current[i].valid:
                last[i].valid = False
                last[i].seg.valid = False
                current[i] = detectors[i].find_segment(image, last[i].seg)
            if not current[i].seg.valid:
                # later markers are not searched for once one is missing
                break

        for i in range(count):
            marker = current[i]
            if marker.valid:
                if self.identify and marker.seg.id <= -1:
                    marker.seg.angle = last[i].seg.angle
                    marker.seg.id = last[i].seg.id
                self.num_found += 1
                if marker.seg.x == last[i].seg.x:
                    self.num_static += 1

        self.eval_time = int(timer.get_time())
        detections = [_copy_marker(m) for m in current[:count] if m.valid]

        if self.use_gui:
            image.draw_time_stats(self.eval_time, self.num_found)
            if self.mancalibrate:
                image.draw_guide_calibration(self._calib_num, self.field_length, self.field_width)
            if self.draw_coords:
                planar = self.transformation.get_transform_type() == TransformType.TWO_D
                for marker in current[:count]:
                    if marker.valid:
                        image.draw_stats(marker, planar)

        if self.autocalibrate and self.num_found > 3:
            self._auto_calib()
        if self._calib_num < 4:
            self._manual_calib()
        return detections