"""
Core value types shared by the prompt batching and compositing pipeline.
"""
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import NamedTuple

import numpy as np


class CoordinateSpace(str, Enum):
    VIEW = "view"          # on-screen container, subject to letterbox/pillarbox
    BITMAP = "bitmap"      # native image pixels
    DETECTOR = "detector"  # detector input resolution
    MODEL = "model"        # fixed segmentation decoder input


class ImageSize(NamedTuple):
    width: float
    height: float

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


@dataclass(frozen=True)
class Point:
    x: float
    y: float
    space: CoordinateSpace = CoordinateSpace.VIEW


@dataclass(frozen=True)
class GuidePoint:
    """A positive point prompt (view space) tagged with the object it belongs to."""

    object_id: int
    point: Point


@dataclass(frozen=True)
class BoundingBox:
    """Detector output box. Coordinates follow the detector's convention."""

    left: float
    top: float
    right: float
    bottom: float
    score: float = 1.0
    class_id: int = -1


@dataclass(frozen=True)
class ViewportMetrics:
    """
    Fit-contain placement of a bitmap inside a view.

    Exactly one of offset_x / offset_y is non-zero unless the view and the
    bitmap share the same aspect ratio, in which case both are zero.
    """

    view_width: float
    view_height: float
    bitmap_width: float
    bitmap_height: float

    @cached_property
    def letterboxed(self) -> bool:
        """True when padding sits above/below the bitmap."""
        return self.bitmap_size.aspect_ratio > self.view_size.aspect_ratio

    @cached_property
    def scale(self) -> float:
        if self.letterboxed:
            return self.view_width / self.bitmap_width
        return self.view_height / self.bitmap_height

    @cached_property
    def offset_x(self) -> float:
        if self.letterboxed:
            return 0.0
        return (self.view_width - self.bitmap_width * self.scale) / 2

    @cached_property
    def offset_y(self) -> float:
        if not self.letterboxed:
            return 0.0
        return (self.view_height - self.bitmap_height * self.scale) / 2

    @property
    def view_size(self) -> ImageSize:
        return ImageSize(self.view_width, self.view_height)

    @property
    def bitmap_size(self) -> ImageSize:
        return ImageSize(self.bitmap_width, self.bitmap_height)


@dataclass(frozen=True)
class PromptBatch:
    """
    Padded point prompts for every object of one segmentation request.

    coordinates: flat float32, object_count * max_points_per_object * 2
    labels:      flat float32, object_count * max_points_per_object
    Padding slots hold coordinate (0, 0) and label -1.
    """

    object_count: int
    max_points_per_object: int
    coordinates: np.ndarray
    labels: np.ndarray
    object_ids: tuple[int, ...] = ()

    @property
    def is_consistent(self) -> bool:
        expected = self.object_count * self.max_points_per_object
        return (
            self.object_count > 0
            and self.max_points_per_object > 0
            and self.coordinates.size == expected * 2
            and self.labels.size == expected
        )

    def object_slice(self, start: int, stop: int) -> tuple[np.ndarray, np.ndarray]:
        """
        Coordinates (n, P, 2) and labels (n, P) of objects [start, stop).
        Never splits an object's points.
        """
        per_object = self.max_points_per_object
        coords = self.coordinates[start * per_object * 2:stop * per_object * 2]
        labels = self.labels[start * per_object:stop * per_object]
        count = stop - start
        return coords.reshape(count, per_object, 2), labels.reshape(count, per_object)


@dataclass
class SegmentationResult:
    preview_image: np.ndarray  # (H, W, 3) uint8 RGB
    export_mask: np.ndarray    # (H, W) uint8, 255 = foreground
    object_count: int
    decode_calls: int = 0
    inference_seconds: float = 0.0


# yellow, cyan, green, magenta, red, white, blue, black
DEFAULT_COLORS: tuple[tuple[int, int, int], ...] = (
    (255, 255, 0),
    (0, 255, 255),
    (0, 255, 0),
    (255, 0, 255),
    (255, 0, 0),
    (255, 255, 255),
    (0, 0, 255),
    (0, 0, 0),
)


@dataclass(frozen=True)
class ColorPalette:
    colors: tuple[tuple[int, int, int], ...] = field(default=DEFAULT_COLORS)

    def __len__(self) -> int:
        return len(self.colors)

    def color_for(self, object_index: int) -> tuple[int, int, int]:
        return self.colors[object_index % len(self)]
