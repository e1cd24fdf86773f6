"""
Segmentation decoder orchestrator: batched decode calls and mask compositing.

Two buffers are produced per request:

* preview: a copy of the input image where every object's mask is tinted
  with its palette color at OVERLAY_ALPHA. The tint is always blended with
  the original pixel, so where masks overlap the last object drawn wins.
* export mask: single channel, 255 wherever any object's mask is set.
"""
import logging
import time
from typing import Any, Protocol

import numpy as np

from ..config import settings
from ..models.errors import ErrorKind, Result
from ..models.types import ColorPalette, ImageSize, PromptBatch, SegmentationResult

logger = logging.getLogger(__name__)

FOREGROUND = 255


class MaskDecoder(Protocol):
    def decode(
        self,
        embedding: Any,
        coordinates: np.ndarray,
        labels: np.ndarray,
        object_count: int,
        max_points: int,
        image_size: ImageSize,
    ) -> tuple[np.ndarray, np.ndarray]:
        ...


class SegmentationOrchestrator:
    """Drives a MaskDecoder over a PromptBatch and composites the results."""

    def __init__(
        self,
        decoder: MaskDecoder,
        palette: ColorPalette | None = None,
        batch_size: int = settings.DECODE_BATCH_SIZE,
        overlay_alpha: int = settings.OVERLAY_ALPHA,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if not 0 <= overlay_alpha <= 255:
            raise ValueError(f"overlay_alpha must be in [0, 255], got {overlay_alpha}")
        self.decoder = decoder
        self.palette = palette or ColorPalette()
        self.batch_size = batch_size
        self.overlay_alpha = overlay_alpha

    def batch_ranges(self, object_count: int) -> list[tuple[int, int]]:
        """[start, stop) object ranges, one per decode call."""
        return [
            (start, min(start + self.batch_size, object_count))
            for start in range(0, object_count, self.batch_size)
        ]

    def _tinted(self, image: np.ndarray, object_index: int, mask: np.ndarray) -> np.ndarray:
        """Original pixels under `mask` blended with the object's color."""
        color = np.asarray(self.palette.color_for(object_index), dtype=np.uint16)
        base = image[mask].astype(np.uint16)
        alpha = self.overlay_alpha
        return ((color * alpha + base * (255 - alpha)) // 255).astype(np.uint8)

    def _masks_for_batch(
        self,
        mask_scores: np.ndarray,
        batch_count: int,
        height: int,
        width: int,
    ) -> np.ndarray | None:
        """Boolean (batch_count, H, W) masks, or None when the shape is off."""
        mask_scores = np.asarray(mask_scores)
        if mask_scores.ndim == 4:
            # Several predicted masks per object: keep the first
            mask_scores = mask_scores[:, 0]
        if mask_scores.shape != (batch_count, height, width):
            return None
        return mask_scores > 0

    def segment(
        self,
        embedding: Any,
        batch: PromptBatch,
        image: np.ndarray,
    ) -> Result[SegmentationResult]:
        """
        Decode every object in `batch` and composite preview + export mask.

        Exactly ceil(object_count / batch_size) decode calls are made. Any
        failure discards the whole request: no partial result is returned.
        """
        if not batch.is_consistent:
            return Result.failure(
                ErrorKind.TENSOR_SHAPE_MISMATCH,
                f"Prompt batch of {batch.object_count} objects x "
                f"{batch.max_points_per_object} points has {batch.coordinates.size} "
                f"coordinates and {batch.labels.size} labels",
            )

        height, width = image.shape[:2]
        image_size = ImageSize(width, height)
        preview = image.copy()
        export_mask = np.zeros((height, width), dtype=np.uint8)

        ranges = self.batch_ranges(batch.object_count)
        start_time = time.perf_counter()

        for start, stop in ranges:
            count = stop - start
            coords, labels = batch.object_slice(start, stop)

            batch_start = time.perf_counter()
            try:
                mask_scores, scores = self.decoder.decode(
                    embedding, coords, labels, count, batch.max_points_per_object, image_size,
                )
            except Exception as e:
                logger.exception("Decoder failed on objects %d-%d", start, stop - 1)
                return Result.failure(
                    ErrorKind.MODEL_EXECUTION_FAILURE,
                    f"Mask decoding failed for objects {start}-{stop - 1}: {e}",
                )

            masks = self._masks_for_batch(mask_scores, count, height, width)
            if masks is None:
                return Result.failure(
                    ErrorKind.TENSOR_SHAPE_MISMATCH,
                    f"Decoder returned masks of shape {np.shape(mask_scores)} for "
                    f"{count} objects on a {width}x{height} image",
                )

            for offset in range(count):
                mask = masks[offset]
                preview[mask] = self._tinted(image, start + offset, mask)
                export_mask[mask] = FOREGROUND

            logger.debug(
                "Decoded objects %d-%d in %.3fs (scores: %s)",
                start, stop - 1, time.perf_counter() - batch_start,
                np.round(np.asarray(scores, dtype=float), 3).tolist(),
            )

        elapsed = time.perf_counter() - start_time
        logger.info(
            "Segmented %d objects in %d decode calls (%.2fs)",
            batch.object_count, len(ranges), elapsed,
        )
        return Result.success(SegmentationResult(
            preview_image=preview,
            export_mask=export_mask,
            object_count=batch.object_count,
            decode_calls=len(ranges),
            inference_seconds=elapsed,
        ))

