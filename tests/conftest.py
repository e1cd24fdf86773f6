"""Shared fixtures. Storage is redirected to a temp dir before the app is imported."""
import os
import tempfile

import numpy as np
import pytest

_STORAGE = tempfile.mkdtemp(prefix="pointseg-tests-")
for _name in ("UPLOAD_DIR", "EMBEDDING_DIR", "MASK_DIR"):
    os.environ.setdefault(_name, os.path.join(_STORAGE, _name.lower()))

from backend.pointseg.models.types import ImageSize  # noqa: E402


class FakeDecoder:
    """
    Stands in for the SAM mask decoder. `masks` maps a global object index
    to a boolean (H, W) mask; objects without an entry get an empty mask.
    """

    def __init__(self, masks=None, fail_on_call=None, bad_shape=False):
        self.masks = masks or {}
        self.fail_on_call = fail_on_call
        self.bad_shape = bad_shape
        self.calls = []
        self._next_object = 0

    def decode(self, embedding, coordinates, labels, object_count, max_points, image_size):
        self.calls.append({
            "object_count": object_count,
            "max_points": max_points,
            "coordinates": coordinates.copy(),
            "labels": labels.copy(),
        })
        if self.fail_on_call is not None and len(self.calls) - 1 == self.fail_on_call:
            raise RuntimeError("decoder exploded")

        height, width = int(image_size.height), int(image_size.width)
        if self.bad_shape:
            return np.zeros((object_count + 1, height, width), np.float32), np.zeros(object_count)

        scores = np.full((object_count, height, width), -5.0, dtype=np.float32)
        for offset in range(object_count):
            mask = self.masks.get(self._next_object + offset)
            if mask is not None:
                scores[offset][mask] = 5.0
        self._next_object += object_count
        return scores, np.linspace(0.5, 0.9, object_count)


class FakeDetector:
    def __init__(self, boxes, convention, input_size=None, ready=True, error=None):
        self.boxes = boxes
        self.convention = convention
        self.input_size = input_size
        self.ready = ready
        self.error = error
        self.confidence = 0.25
        self.iou = 0.45
        self.max_detections = 30

    @property
    def is_ready(self):
        return self.ready

    def load(self):
        self.ready = True

    def detect(self, image_rgb):
        if self.error is not None:
            raise self.error
        return list(self.boxes)


class FakeEncoder:
    device = "cpu"

    def __init__(self):
        self.calls = 0

    def compute_embedding(self, image_rgb):
        import torch

        from backend.pointseg.services.sam_service import ImageEmbedding

        self.calls += 1
        height, width = image_rgb.shape[:2]
        return ImageEmbedding(image_embedding=torch.zeros(1, 4, 2, 2), image_size=ImageSize(width, height))


@pytest.fixture
def gray_image():
    """A 100x80 (W x H) mid-gray RGB image."""
    return np.full((80, 100, 3), 100, dtype=np.uint8)
