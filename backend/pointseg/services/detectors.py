"""
Object detector backends that seed guide points.

Both backends run an Ultralytics YOLO model. They differ in the coordinate
convention of the boxes they return, which the detection adapter reads from
`convention` instead of special-casing each backend.
"""
import logging
import threading
from enum import Enum
from typing import Protocol

import cv2
import numpy as np

from ..config import settings
from ..models.types import BoundingBox, ImageSize

logger = logging.getLogger(__name__)


class BoxConvention(str, Enum):
    BITMAP = "bitmap"                  # boxes already in original image pixels
    DETECTOR_INPUT = "detector_input"  # boxes in the resized detector input


class Detector(Protocol):
    """Protocol for detectors feeding the detection adapter."""

    convention: BoxConvention
    input_size: ImageSize | None

    @property
    def is_ready(self) -> bool:
        ...

    def load(self) -> None:
        ...

    def detect(self, image_rgb: np.ndarray) -> list[BoundingBox]:
        ...


class UltralyticsDetector:
    """
    YOLO detector that lets Ultralytics handle resizing internally and
    returns boxes in original image coordinates.
    """

    convention = BoxConvention.BITMAP
    input_size: ImageSize | None = None

    def __init__(
        self,
        weights: str = settings.DETECTOR_WEIGHTS,
        confidence: float = settings.DETECTOR_CONFIDENCE,
        iou: float = settings.DETECTOR_IOU,
        max_detections: int = settings.DETECTOR_MAX_DETECTIONS,
        device: str | None = None,
    ):
        self.weights = weights
        self.confidence = confidence
        self.iou = iou
        self.max_detections = max_detections
        self.device = device
        self._model = None
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        """Load YOLO weights. Ultralytics downloads named models on first use."""
        from ultralytics import YOLO

        logger.info("Loading YOLO detector from %s...", self.weights)
        self._model = YOLO(self.weights)
        logger.info("YOLO detector loaded (%s)", type(self).__name__)

    def _predict(self, image_rgb: np.ndarray) -> list[BoundingBox]:
        # Ultralytics expects BGR numpy input
        image_bgr = cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR)
        with self._lock:
            results = self._model(
                image_bgr,
                conf=self.confidence,
                iou=self.iou,
                max_det=self.max_detections,
                device=self.device,
                verbose=False,
            )

        if not results or results[0].boxes is None or len(results[0].boxes) == 0:
            return []

        boxes = results[0].boxes
        xyxy = boxes.xyxy.cpu().numpy()
        scores = boxes.conf.cpu().numpy()
        class_ids = boxes.cls.cpu().numpy().astype(int)
        return [
            BoundingBox(
                left=float(x1), top=float(y1), right=float(x2), bottom=float(y2),
                score=float(score), class_id=int(cls_id),
            )
            for (x1, y1, x2, y2), score, cls_id in zip(xyxy, scores, class_ids)
        ]

    def detect(self, image_rgb: np.ndarray) -> list[BoundingBox]:
        if not self.is_ready:
            raise RuntimeError("Detector is not loaded")
        boxes = self._predict(image_rgb)
        logger.info("Detected %d objects", len(boxes))
        return boxes


class ResizedInputDetector(UltralyticsDetector):
    """
    YOLO detector fed a fixed square input. The image is stretched to
    input_size x input_size first, so the boxes come back in that space and
    have to be scaled per axis to reach the original image.
    """

    convention = BoxConvention.DETECTOR_INPUT

    def __init__(self, input_size: int = settings.DETECTOR_INPUT_SIZE, **kwargs):
        super().__init__(**kwargs)
        self.input_size = ImageSize(input_size, input_size)

    def detect(self, image_rgb: np.ndarray) -> list[BoundingBox]:
        if not self.is_ready:
            raise RuntimeError("Detector is not loaded")
        width, height = int(self.input_size.width), int(self.input_size.height)
        resized = cv2.resize(image_rgb, (width, height), interpolation=cv2.INTER_LINEAR)
        boxes = self._predict(resized)
        logger.info("Detected %d objects on %dx%d input", len(boxes), width, height)
        return boxes


DETECTOR_BACKENDS: dict[str, type[UltralyticsDetector]] = {
    "ultralytics": UltralyticsDetector,
    "resized": ResizedInputDetector,
}


def create_detector(backend: str = settings.DETECTOR_BACKEND) -> UltralyticsDetector:
    """Instantiate the configured detector backend (not yet loaded)."""
    detector_cls = DETECTOR_BACKENDS.get(backend)
    if detector_cls is None:
        raise ValueError(
            f"Unknown detector backend '{backend}'. Choose from: {list(DETECTOR_BACKENDS)}"
        )
    return detector_cls()


# Singleton
detector = create_detector()
