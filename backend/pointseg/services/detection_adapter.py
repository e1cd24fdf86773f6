"""
Detection-to-prompt adapter: one view-space guide point per detected box.
"""
import logging
from collections.abc import Sequence

import numpy as np

from ..models.errors import ErrorKind, Result
from ..models.types import BoundingBox, CoordinateSpace, GuidePoint, ImageSize, ViewportMetrics
from ..utils.coords import bitmap_to_view, box_center, detector_to_bitmap
from .detectors import BoxConvention, Detector

logger = logging.getLogger(__name__)


def boxes_to_guide_points(
    boxes: Sequence[BoundingBox],
    detector_input_size: ImageSize,
    bitmap_size: ImageSize,
    metrics: ViewportMetrics,
) -> list[GuidePoint]:
    """
    Map each box center detector -> bitmap -> view.

    The object id is the detection index; detections are not tracked
    between calls. For boxes that are already in bitmap space pass
    bitmap_size as detector_input_size.
    """
    guide_points = []
    for index, box in enumerate(boxes):
        center = box_center(box, CoordinateSpace.DETECTOR)
        bitmap_point = detector_to_bitmap(center, detector_input_size, bitmap_size)
        guide_points.append(GuidePoint(object_id=index, point=bitmap_to_view(bitmap_point, metrics)))
    return guide_points


def detect_guide_points(
    detector: Detector,
    image_rgb: np.ndarray,
    metrics: ViewportMetrics,
) -> Result[list[GuidePoint]]:
    """
    Run the detector and convert its boxes to guide points.

    The points are meant to replace the caller's current point set.
    """
    if not detector.is_ready:
        return Result.failure(ErrorKind.DETECTOR_UNAVAILABLE, "Detector is not initialized")

    try:
        boxes = detector.detect(image_rgb)
    except Exception as e:
        logger.exception("Detector failed")
        return Result.failure(ErrorKind.MODEL_EXECUTION_FAILURE, f"Detection failed: {e}")

    height, width = image_rgb.shape[:2]
    bitmap_size = ImageSize(width, height)
    if detector.convention is BoxConvention.DETECTOR_INPUT:
        detector_size = detector.input_size
    else:
        detector_size = bitmap_size

    return Result.success(boxes_to_guide_points(boxes, detector_size, bitmap_size, metrics))
