"""
Prompt batch builder: turns guide points into padded decoder inputs.
"""
import logging
from collections import defaultdict
from collections.abc import Iterable

import numpy as np

from ..models.errors import ErrorKind, Result
from ..models.types import GuidePoint, PromptBatch, ViewportMetrics
from ..utils.coords import MODEL_INPUT_SIZE, view_to_model

logger = logging.getLogger(__name__)

POSITIVE_LABEL = 1.0
PADDING_LABEL = -1.0


def group_by_object(points: Iterable[GuidePoint]) -> dict[int, list[GuidePoint]]:
    """Group guide points by object id, ordered by ascending id."""
    groups: dict[int, list[GuidePoint]] = defaultdict(list)
    for guide in points:
        groups[guide.object_id].append(guide)
    return {object_id: groups[object_id] for object_id in sorted(groups)}


def build_prompt_batch(
    points: Iterable[GuidePoint],
    metrics: ViewportMetrics,
    model_input_size: int = MODEL_INPUT_SIZE,
) -> Result[PromptBatch]:
    """
    Build the padded coordinate/label arrays for every object.

    Each object contributes max_points_per_object slots: its own points
    (view -> bitmap -> model space, label 1) followed by (0, 0) padding
    with label -1.

    Returns:
        Result holding the PromptBatch, or EMPTY_PROMPT_SET when there are
        no points at all.
    """
    groups = group_by_object(points)
    if not groups:
        return Result.failure(ErrorKind.EMPTY_PROMPT_SET, "No guide points to segment")

    object_count = len(groups)
    max_points = max(len(group) for group in groups.values())

    coordinates = np.zeros((object_count, max_points, 2), dtype=np.float32)
    labels = np.full((object_count, max_points), PADDING_LABEL, dtype=np.float32)

    for row, group in enumerate(groups.values()):
        for slot, guide in enumerate(group):
            model_point = view_to_model(guide.point, metrics, model_input_size)
            coordinates[row, slot] = (model_point.x, model_point.y)
            labels[row, slot] = POSITIVE_LABEL

    logger.debug(
        "Built prompt batch: %d objects, up to %d points each", object_count, max_points,
    )
    return Result.success(PromptBatch(
        object_count=object_count,
        max_points_per_object=max_points,
        coordinates=coordinates.reshape(-1),
        labels=labels.reshape(-1),
        object_ids=tuple(groups),
    ))
