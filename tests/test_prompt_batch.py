"""Tests for the prompt batch builder."""
import numpy as np
import pytest

from backend.pointseg.models.errors import ErrorKind
from backend.pointseg.models.types import GuidePoint, ImageSize, Point
from backend.pointseg.services.prompt_batch import build_prompt_batch
from backend.pointseg.utils.coords import compute_fit_metrics


@pytest.fixture
def metrics():
    # 1000x800 bitmap letterboxed in a 500x500 view: scale 0.5, offset_y 50
    return compute_fit_metrics(ImageSize(500, 500), ImageSize(1000, 800))


def _points(object_id: int, count: int) -> list[GuidePoint]:
    return [GuidePoint(object_id, Point(10.0 * (i + 1), 100.0)) for i in range(count)]


def test_groups_are_padded_to_the_largest_object(metrics) -> None:
    points = _points(0, 3) + _points(1, 1) + _points(2, 5)

    result = build_prompt_batch(points, metrics)

    assert result.ok
    batch = result.value
    assert batch.object_count == 3
    assert batch.max_points_per_object == 5
    assert batch.labels.size == 15
    assert batch.coordinates.size == 30
    assert int((batch.labels == 1).sum()) == 9
    assert int((batch.labels == -1).sum()) == 6
    assert batch.is_consistent


def test_padding_slots_are_zero_with_negative_label(metrics) -> None:
    batch = build_prompt_batch(_points(4, 1) + _points(9, 3), metrics).value

    coords = batch.coordinates.reshape(2, 3, 2)
    labels = batch.labels.reshape(2, 3)
    np.testing.assert_array_equal(labels[0], [1, -1, -1])
    np.testing.assert_array_equal(coords[0, 1:], np.zeros((2, 2)))
    np.testing.assert_array_equal(labels[1], [1, 1, 1])


def test_objects_are_ordered_by_ascending_id(metrics) -> None:
    points = _points(7, 1) + _points(2, 2) + _points(5, 1) + _points(2, 1)

    batch = build_prompt_batch(points, metrics).value

    assert batch.object_ids == (2, 5, 7)
    labels = batch.labels.reshape(3, 3)
    np.testing.assert_array_equal(labels[0], [1, 1, 1])
    np.testing.assert_array_equal(labels[1], [1, -1, -1])


def test_points_are_converted_to_model_space(metrics) -> None:
    points = [GuidePoint(0, Point(250, 300)), GuidePoint(0, Point(0, 50))]

    batch = build_prompt_batch(points, metrics).value

    np.testing.assert_allclose(batch.coordinates, [512, 640, 0, 0], atol=1e-3)
    assert batch.coordinates.dtype == np.float32


def test_points_keep_insertion_order_within_an_object(metrics) -> None:
    points = [GuidePoint(1, Point(400, 100)), GuidePoint(1, Point(100, 100))]

    coords = build_prompt_batch(points, metrics).value.coordinates.reshape(2, 2)

    assert coords[0, 0] > coords[1, 0]


def test_empty_point_set_is_an_error(metrics) -> None:
    result = build_prompt_batch([], metrics)

    assert not result.ok
    assert result.value is None
    assert result.error.kind is ErrorKind.EMPTY_PROMPT_SET


def test_object_slice_never_splits_an_object(metrics) -> None:
    batch = build_prompt_batch(_points(0, 2) + _points(1, 1) + _points(2, 2), metrics).value

    coords, labels = batch.object_slice(1, 3)

    assert coords.shape == (2, 2, 2)
    assert labels.shape == (2, 2)
    np.testing.assert_array_equal(labels[0], [1, -1])
