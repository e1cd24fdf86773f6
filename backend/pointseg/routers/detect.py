"""
Detection endpoints: seed guide points from detected boxes, detector settings.
"""
import asyncio

from fastapi import APIRouter, HTTPException

from ..config import settings
from ..models.schemas import DetectorSettingsModel, DetectResponse, ErrorResponse
from ..services.detection_adapter import detect_guide_points
from ..services.detectors import detector
from .segment import begin_request, http_error
from .sessions import get_session, point_models

router = APIRouter(prefix="/api/detect", tags=["detection"])


def _settings_model() -> DetectorSettingsModel:
    return DetectorSettingsModel(
        backend=settings.DETECTOR_BACKEND,
        ready=detector.is_ready,
        confidence=detector.confidence,
        iou=detector.iou,
        max_detections=detector.max_detections,
    )


@router.get("/settings", response_model=DetectorSettingsModel)
async def get_detector_settings():
    return _settings_model()


@router.put("/settings", response_model=DetectorSettingsModel)
async def update_detector_settings(req: DetectorSettingsModel):
    """Adjust detector thresholds at runtime."""
    detector.confidence = req.confidence
    detector.iou = req.iou
    detector.max_detections = req.max_detections
    return _settings_model()


@router.post(
    "/{session_id}",
    response_model=DetectResponse,
    responses={code: {"model": ErrorResponse} for code in (404, 409, 502, 503)},
)
async def detect(session_id: str):
    """Replace the session's guide points with one point per detected object."""
    session = get_session(session_id)
    if session.metrics is None:
        raise HTTPException(status_code=409, detail="Viewport not set. PUT /viewport first.")

    begin_request(session)
    try:
        outcome = await asyncio.to_thread(
            detect_guide_points, detector, session.image, session.metrics,
        )
        if not outcome.ok:
            raise http_error(outcome.error)
        session.replace_points(outcome.value)
    finally:
        session.end_request()

    return DetectResponse(
        session_id=session_id,
        detected=len(outcome.value),
        points=point_models(session),
    )
