"""
Segmentation endpoint — guide points in, preview overlay and export mask out.
"""
import asyncio
import logging

from fastapi import APIRouter, HTTPException

from ..config import settings
from ..models.errors import ErrorKind, PipelineError, Result
from ..models.schemas import ErrorResponse, SegmentResponse
from ..services.decoder_orchestrator import SegmentationOrchestrator
from ..services.embedding_cache import embedding_cache
from ..services.prompt_batch import build_prompt_batch
from ..services.sam_service import ImageEmbedding, sam_service
from ..services.session_store import AnnotationSession
from ..utils.image_utils import save_mask_png, save_rgb_png
from .sessions import get_session, mask_path, object_models, palette, preview_path

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/segment", tags=["segmentation"])

orchestrator = SegmentationOrchestrator(
    sam_service,
    palette=palette,
    batch_size=settings.DECODE_BATCH_SIZE,
    overlay_alpha=settings.OVERLAY_ALPHA,
)

ERROR_STATUS = {
    ErrorKind.EMPTY_PROMPT_SET: 400,
    ErrorKind.DETECTOR_UNAVAILABLE: 503,
    ErrorKind.TENSOR_SHAPE_MISMATCH: 500,
    ErrorKind.MODEL_EXECUTION_FAILURE: 502,
}


def http_error(error: PipelineError) -> HTTPException:
    """Translate a pipeline error into the HTTP error returned to the client."""
    logger.warning("Pipeline error: %s", error)
    return HTTPException(status_code=ERROR_STATUS[error.kind], detail=str(error))


def begin_request(session: AnnotationSession) -> None:
    """Claim the session's request slot or raise 409."""
    if not session.try_begin_request():
        raise HTTPException(
            status_code=409, detail="A request is already running for this session. Please wait.",
        )


def _load_embedding(session: AnnotationSession) -> Result[ImageEmbedding]:
    try:
        return Result.success(embedding_cache.get_or_compute(session.session_id, session.image))
    except Exception as e:
        logger.exception("Image encoder failed for %s", session.session_id)
        return Result.failure(ErrorKind.MODEL_EXECUTION_FAILURE, f"Image encoding failed: {e}")


@router.post(
    "/{session_id}",
    response_model=SegmentResponse,
    responses={code: {"model": ErrorResponse} for code in (400, 404, 409, 500, 502)},
)
async def segment(session_id: str):
    """Run SAM segmentation on every object that has guide points."""
    session = get_session(session_id)
    if session.metrics is None:
        raise HTTPException(status_code=409, detail="Viewport not set. PUT /viewport first.")
    if not session.embedding_ready:
        raise HTTPException(status_code=409, detail="Embedding not ready. Please wait.")

    begin_request(session)
    try:
        batch = build_prompt_batch(session.points, session.metrics, settings.MODEL_INPUT_SIZE)
        if not batch.ok:
            raise http_error(batch.error)

        embedding = await asyncio.to_thread(_load_embedding, session)
        if not embedding.ok:
            raise http_error(embedding.error)

        # Run inference in thread pool (CPU/GPU-bound)
        outcome = await asyncio.to_thread(
            orchestrator.segment, embedding.value, batch.value, session.image,
        )
        if not outcome.ok:
            raise http_error(outcome.error)

        result = outcome.value
        save_rgb_png(result.preview_image, preview_path(session_id))
        save_mask_png(result.export_mask, mask_path(session_id))
        session.last_result = result
    finally:
        session.end_request()

    return SegmentResponse(
        session_id=session_id,
        object_count=result.object_count,
        decode_calls=result.decode_calls,
        inference_ms=round(result.inference_seconds * 1000),
        preview_url=f"/api/sessions/{session_id}/preview",
        mask_url=f"/api/sessions/{session_id}/mask",
        objects=object_models(session),
    )
