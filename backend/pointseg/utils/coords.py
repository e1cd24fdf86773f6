"""
Coordinate transforms between view, bitmap, detector and model space.

All functions are pure. The view shows the bitmap with fit-contain scaling,
so a view point maps to the bitmap through one uniform scale plus the
letterbox/pillarbox offset. Model space is a fixed square the segmentation
decoder was exported for; the mapping into it is an independent per-axis
stretch, matching how the encoder resizes the image.
"""
from ..models.types import (
    BoundingBox,
    CoordinateSpace,
    ImageSize,
    Point,
    ViewportMetrics,
)

MODEL_INPUT_SIZE = 1024


def compute_fit_metrics(view_size: ImageSize, bitmap_size: ImageSize) -> ViewportMetrics:
    """
    Fit-contain placement of a bitmap inside a view.

    A bitmap wider (relative to its height) than the view is letterboxed
    (padding top/bottom); otherwise it is pillarboxed (padding left/right).
    """
    view_w, view_h = view_size
    bitmap_w, bitmap_h = bitmap_size
    if min(view_w, view_h, bitmap_w, bitmap_h) <= 0:
        raise ValueError(
            f"Sizes must be positive, got view={tuple(view_size)} bitmap={tuple(bitmap_size)}"
        )
    return ViewportMetrics(
        view_width=float(view_w),
        view_height=float(view_h),
        bitmap_width=float(bitmap_w),
        bitmap_height=float(bitmap_h),
    )


def bitmap_to_view(point: Point, metrics: ViewportMetrics) -> Point:
    return Point(
        point.x * metrics.scale + metrics.offset_x,
        point.y * metrics.scale + metrics.offset_y,
        CoordinateSpace.VIEW,
    )


def view_to_bitmap(point: Point, metrics: ViewportMetrics, clamp: bool = True) -> Point:
    """
    Inverse of bitmap_to_view.

    Taps that land in the padding region are clamped to the nearest bitmap
    edge unless clamp is False.
    """
    x = (point.x - metrics.offset_x) / metrics.scale
    y = (point.y - metrics.offset_y) / metrics.scale
    if clamp:
        x = min(max(x, 0.0), metrics.bitmap_width)
        y = min(max(y, 0.0), metrics.bitmap_height)
    return Point(x, y, CoordinateSpace.BITMAP)


def is_inside_bitmap(point: Point, metrics: ViewportMetrics) -> bool:
    """Whether a view point falls on the displayed image rather than the padding."""
    unclamped = view_to_bitmap(point, metrics, clamp=False)
    return (
        0.0 <= unclamped.x <= metrics.bitmap_width
        and 0.0 <= unclamped.y <= metrics.bitmap_height
    )


def detector_to_bitmap(
    point: Point,
    detector_input_size: ImageSize,
    bitmap_size: ImageSize,
) -> Point:
    # Detectors resize without preserving aspect ratio, so each axis scales on its own.
    scale_x = bitmap_size.width / detector_input_size.width
    scale_y = bitmap_size.height / detector_input_size.height
    return Point(point.x * scale_x, point.y * scale_y, CoordinateSpace.BITMAP)


def bitmap_to_model(
    point: Point,
    bitmap_size: ImageSize,
    model_input_size: int = MODEL_INPUT_SIZE,
) -> Point:
    return Point(
        point.x / bitmap_size.width * model_input_size,
        point.y / bitmap_size.height * model_input_size,
        CoordinateSpace.MODEL,
    )


def view_to_model(
    point: Point,
    metrics: ViewportMetrics,
    model_input_size: int = MODEL_INPUT_SIZE,
) -> Point:
    return bitmap_to_model(view_to_bitmap(point, metrics), metrics.bitmap_size, model_input_size)


def box_center(box: BoundingBox, space: CoordinateSpace) -> Point:
    return Point((box.left + box.right) / 2, (box.top + box.bottom) / 2, space)
