"""Tests for batched decoding and mask compositing."""
import numpy as np
import pytest
from conftest import FakeDecoder

from backend.pointseg.models.errors import ErrorKind
from backend.pointseg.models.types import ColorPalette, GuidePoint, ImageSize, Point, PromptBatch
from backend.pointseg.services.decoder_orchestrator import SegmentationOrchestrator
from backend.pointseg.services.prompt_batch import build_prompt_batch
from backend.pointseg.utils.coords import compute_fit_metrics

RED = (255, 0, 0)
BLUE = (0, 0, 255)


def _batch(object_count: int, image_size=ImageSize(100, 80)) -> PromptBatch:
    metrics = compute_fit_metrics(image_size, image_size)
    points = [GuidePoint(i, Point(float(i % 100), 10.0)) for i in range(object_count)]
    return build_prompt_batch(points, metrics).value


def _rect(top, bottom, left, right, shape=(80, 100)):
    mask = np.zeros(shape, dtype=bool)
    mask[top:bottom, left:right] = True
    return mask


def test_decode_calls_are_batched_by_ten(gray_image) -> None:
    decoder = FakeDecoder()
    orchestrator = SegmentationOrchestrator(decoder, batch_size=10)

    result = orchestrator.segment(object(), _batch(23), gray_image)

    assert result.ok
    assert [c["object_count"] for c in decoder.calls] == [10, 10, 3]
    assert result.value.decode_calls == 3
    assert result.value.object_count == 23


def test_batches_carry_whole_objects(gray_image) -> None:
    metrics = compute_fit_metrics(ImageSize(100, 80), ImageSize(100, 80))
    points = [GuidePoint(i, Point(1.0, 1.0)) for i in range(3)] + [GuidePoint(1, Point(2.0, 2.0))]
    batch = build_prompt_batch(points, metrics).value
    decoder = FakeDecoder()

    SegmentationOrchestrator(decoder, batch_size=2).segment(object(), batch, gray_image)

    assert [c["coordinates"].shape for c in decoder.calls] == [(2, 2, 2), (1, 2, 2)]
    np.testing.assert_array_equal(decoder.calls[0]["labels"], [[1, -1], [1, 1]])


def test_export_mask_is_union_of_all_batches(gray_image) -> None:
    masks = {0: _rect(0, 10, 0, 10), 1: _rect(5, 15, 5, 15), 2: _rect(70, 80, 90, 100)}
    orchestrator = SegmentationOrchestrator(FakeDecoder(masks), batch_size=2)

    export = orchestrator.segment(object(), _batch(3), gray_image).value.export_mask

    expected = masks[0] | masks[1] | masks[2]
    assert export.dtype == np.uint8
    assert export.shape == (80, 100)
    np.testing.assert_array_equal(export == 255, expected)
    np.testing.assert_array_equal(export[~expected], 0)


def test_preview_blends_palette_color_at_half_alpha(gray_image) -> None:
    masks = {0: _rect(0, 10, 0, 10)}
    orchestrator = SegmentationOrchestrator(FakeDecoder(masks), palette=ColorPalette((RED,)))

    preview = orchestrator.segment(object(), _batch(1), gray_image).value.preview_image

    # (255 * 128 + 100 * 127) // 255 = 177, (0 * 128 + 100 * 127) // 255 = 49
    np.testing.assert_array_equal(preview[5, 5], [177, 49, 49])
    np.testing.assert_array_equal(preview[50, 50], [100, 100, 100])
    assert preview.shape == gray_image.shape


def test_overlap_is_last_object_wins_but_export_is_order_free(gray_image) -> None:
    first, second = _rect(0, 20, 0, 20), _rect(10, 30, 10, 30)
    overlap = (15, 15)

    # Same mask/color pairs (first=RED, second=BLUE), drawn in opposite orders
    forward = SegmentationOrchestrator(
        FakeDecoder({0: first, 1: second}), palette=ColorPalette((RED, BLUE)),
    ).segment(object(), _batch(2), gray_image).value
    backward = SegmentationOrchestrator(
        FakeDecoder({0: second, 1: first}), palette=ColorPalette((BLUE, RED)),
    ).segment(object(), _batch(2), gray_image).value

    # Preview depends on order: the later object replaces the earlier tint, no mixing
    np.testing.assert_array_equal(forward.preview_image[overlap], [49, 49, 177])
    np.testing.assert_array_equal(backward.preview_image[overlap], [177, 49, 49])
    # Outside the overlap both orders agree
    np.testing.assert_array_equal(forward.preview_image[5, 5], backward.preview_image[5, 5])
    np.testing.assert_array_equal(forward.preview_image[25, 25], backward.preview_image[25, 25])
    # Export mask does not depend on order
    np.testing.assert_array_equal(forward.export_mask, backward.export_mask)


def test_palette_cycles_by_object_index(gray_image) -> None:
    masks = {i: _rect(0, 5, i * 5, i * 5 + 5) for i in range(3)}
    palette = ColorPalette((RED, BLUE))

    preview = SegmentationOrchestrator(
        FakeDecoder(masks), palette=palette,
    ).segment(object(), _batch(3), gray_image).value.preview_image

    np.testing.assert_array_equal(preview[2, 2], preview[2, 12])
    assert not np.array_equal(preview[2, 2], preview[2, 7])


def test_input_image_is_not_modified(gray_image) -> None:
    original = gray_image.copy()

    SegmentationOrchestrator(FakeDecoder({0: _rect(0, 80, 0, 100)})).segment(
        object(), _batch(1), gray_image,
    )

    np.testing.assert_array_equal(gray_image, original)


def test_zero_score_is_background(gray_image) -> None:
    class ZeroDecoder(FakeDecoder):
        def decode(self, embedding, coordinates, labels, object_count, max_points, image_size):
            scores = np.zeros((object_count, 80, 100), dtype=np.float32)
            scores[:, 0, 0] = 1e-6
            return scores, np.zeros(object_count)

    export = SegmentationOrchestrator(ZeroDecoder()).segment(
        object(), _batch(1), gray_image,
    ).value.export_mask

    assert export[0, 0] == 255
    assert int((export == 255).sum()) == 1


def test_multi_mask_output_uses_first_mask(gray_image) -> None:
    class MultiMaskDecoder(FakeDecoder):
        def decode(self, embedding, coordinates, labels, object_count, max_points, image_size):
            scores = np.full((object_count, 3, 80, 100), -1.0, dtype=np.float32)
            scores[:, 0, :10, :10] = 1.0
            scores[:, 1] = 1.0
            return scores, np.zeros((object_count, 3))

    export = SegmentationOrchestrator(MultiMaskDecoder()).segment(
        object(), _batch(1), gray_image,
    ).value.export_mask

    assert int((export == 255).sum()) == 100


def test_inconsistent_batch_is_rejected_before_decoding(gray_image) -> None:
    batch = PromptBatch(
        object_count=3,
        max_points_per_object=2,
        coordinates=np.zeros(10, dtype=np.float32),
        labels=np.ones(6, dtype=np.float32),
    )
    decoder = FakeDecoder()

    result = SegmentationOrchestrator(decoder).segment(object(), batch, gray_image)

    assert result.error.kind is ErrorKind.TENSOR_SHAPE_MISMATCH
    assert decoder.calls == []


def test_wrong_output_shape_is_a_shape_mismatch(gray_image) -> None:
    result = SegmentationOrchestrator(FakeDecoder(bad_shape=True)).segment(
        object(), _batch(2), gray_image,
    )

    assert result.error.kind is ErrorKind.TENSOR_SHAPE_MISMATCH
    assert result.value is None


def test_decoder_failure_discards_the_whole_request(gray_image) -> None:
    decoder = FakeDecoder({0: _rect(0, 10, 0, 10)}, fail_on_call=1)

    result = SegmentationOrchestrator(decoder, batch_size=10).segment(
        object(), _batch(15), gray_image,
    )

    assert len(decoder.calls) == 2
    assert result.error.kind is ErrorKind.MODEL_EXECUTION_FAILURE
    assert "decoder exploded" in result.error.message
    assert result.value is None


@pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"overlay_alpha": 300}])
def test_invalid_configuration(kwargs) -> None:
    with pytest.raises(ValueError):
        SegmentationOrchestrator(FakeDecoder(), **kwargs)
