"""
Session endpoints: image upload, viewport, guide points and objects.
"""
import asyncio
import logging
import os
import uuid

import numpy as np
from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

from ..config import settings
from ..models.schemas import (
    EmbeddingStatusResponse,
    GuidePointModel,
    ObjectModel,
    PointRequest,
    SessionResponse,
    UploadResponse,
    ViewportMetricsModel,
    ViewportRequest,
)
from ..models.types import ColorPalette, CoordinateSpace, Point
from ..services.embedding_cache import embedding_cache
from ..services.session_store import AnnotationSession, session_store
from ..utils.coords import is_inside_bitmap
from ..utils.image_utils import load_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

palette = ColorPalette()


def image_path(session_id: str) -> str:
    return os.path.join(settings.UPLOAD_DIR, f"{session_id}.png")


def preview_path(session_id: str) -> str:
    return os.path.join(settings.MASK_DIR, f"{session_id}_preview.png")


def mask_path(session_id: str) -> str:
    return os.path.join(settings.MASK_DIR, f"{session_id}_mask.png")


def get_session(session_id: str) -> AnnotationSession:
    """Get a session or raise 404."""
    session = session_store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found. Upload an image first.")
    return session


def object_models(session: AnnotationSession) -> list[ObjectModel]:
    """
    Objects with their point counts and overlay colors. Colors follow the
    object's position among objects that have points, as in the preview.
    """
    counts: dict[int, int] = {}
    for guide in session.points:
        counts[guide.object_id] = counts.get(guide.object_id, 0) + 1
    rank = {object_id: index for index, object_id in enumerate(sorted(counts))}
    return [
        ObjectModel(
            object_id=object_id,
            name=name,
            point_count=counts.get(object_id, 0),
            color=list(palette.color_for(rank[object_id])) if object_id in rank else [],
        )
        for object_id, name in sorted(session.objects.items())
    ]


def point_models(session: AnnotationSession) -> list[GuidePointModel]:
    return [
        GuidePointModel(object_id=g.object_id, x=g.point.x, y=g.point.y)
        for g in session.points
    ]


def session_response(session: AnnotationSession) -> SessionResponse:
    viewport = None
    if session.metrics is not None:
        m = session.metrics
        viewport = ViewportMetricsModel(
            view_width=m.view_width,
            view_height=m.view_height,
            bitmap_width=m.bitmap_width,
            bitmap_height=m.bitmap_height,
            scale=m.scale,
            offset_x=m.offset_x,
            offset_y=m.offset_y,
        )
    width, height = session.image_size
    return SessionResponse(
        session_id=session.session_id,
        width=int(width),
        height=int(height),
        embedding_ready=session.embedding_ready,
        viewport=viewport,
        selected_object=session.selected_object,
        objects=object_models(session),
        points=point_models(session),
    )


async def _save_upload(file: UploadFile, save_path: str):
    """
    Validate and store an uploaded image; returns it as an RGB array.

    The upload is decoded from a side file and only moved over `save_path`
    once it decodes, so a bad upload never replaces an existing image.
    """
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="File must be an image")

    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail="File too large")

    root, ext = os.path.splitext(save_path)
    upload_path = f"{root}.upload{ext}"
    with open(upload_path, "wb") as f:
        f.write(content)

    try:
        image = load_image(upload_path)
    except (OSError, ValueError) as e:
        os.remove(upload_path)
        raise HTTPException(status_code=400, detail=f"Could not decode image: {e}")

    os.replace(upload_path, save_path)
    return image


def _remove_results(session_id: str) -> None:
    for path in (preview_path(session_id), mask_path(session_id)):
        if os.path.exists(path):
            os.remove(path)


def _compute_embedding_sync(session_id: str, image: np.ndarray, generation: int) -> None:
    """
    Synchronous wrapper for background embedding computation.

    The embedding is only published if the session still shows the image
    the job started from; a reset in the meantime makes the result stale.
    """
    session = session_store.get(session_id)
    if session is None:
        return
    try:
        embedding = embedding_cache.encode(image)
    except Exception:
        logger.exception("Error computing embedding for %s", session_id)
        return

    with session.state_lock:
        if session.generation != generation or session_store.get(session_id) is not session:
            logger.info(
                "Dropping stale embedding for %s (image replaced or session deleted)", session_id,
            )
            return
        embedding_cache.store(session_id, embedding)
        session.embedding_ready = True


def _start_embedding(session: AnnotationSession) -> str:
    if embedding_cache.has(session.session_id):
        session.embedding_ready = True
        return "ready"
    asyncio.get_running_loop().run_in_executor(
        None, _compute_embedding_sync, session.session_id, session.image, session.generation,
    )
    return "computing"


@router.post("/upload", response_model=UploadResponse)
async def upload_image(file: UploadFile = File(...)):
    """Upload an image, open a session and start embedding computation in the background."""
    # Generate ID and save file
    session_id = str(uuid.uuid4())
    save_path = image_path(session_id)
    image = await _save_upload(file, save_path)
    session = session_store.create(image, save_path, session_id=session_id)

    embedding_status = _start_embedding(session)
    width, height = session.image_size
    return UploadResponse(
        session_id=session.session_id,
        width=int(width),
        height=int(height),
        embedding_status=embedding_status,
    )


@router.post("/{session_id}/reset", response_model=UploadResponse)
async def reset_session(session_id: str, file: UploadFile = File(...)):
    """Select a new image: drops all points, objects and results of the session."""
    session = get_session(session_id)
    if not session.try_begin_request():
        raise HTTPException(
            status_code=409, detail="A request is already running for this session. Please wait.",
        )
    try:
        image = await _save_upload(file, image_path(session_id))
        with session.state_lock:
            embedding_cache.discard(session_id)
            _remove_results(session_id)
            session.reset(image, image_path(session_id))
        embedding_status = _start_embedding(session)
    finally:
        session.end_request()

    width, height = session.image_size
    return UploadResponse(
        session_id=session_id,
        width=int(width),
        height=int(height),
        embedding_status=embedding_status,
    )


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session_state(session_id: str):
    return session_response(get_session(session_id))


@router.delete("/{session_id}")
async def delete_session(session_id: str):
    session = get_session(session_id)
    with session.state_lock:
        session_store.remove(session_id)
        embedding_cache.discard(session_id)
    _remove_results(session_id)
    if os.path.exists(image_path(session_id)):
        os.remove(image_path(session_id))
    return {"status": "deleted", "session_id": session_id}


@router.get("/{session_id}/status", response_model=EmbeddingStatusResponse)
async def get_embedding_status(session_id: str):
    """Check whether the image embedding is ready."""
    session = get_session(session_id)

    ready = session.embedding_ready
    # Also check disk in case it was computed by another process
    if not ready and embedding_cache.has(session_id):
        session.embedding_ready = True
        ready = True

    return EmbeddingStatusResponse(
        session_id=session_id,
        embedding_ready=ready,
        message="Embedding computed successfully" if ready else "Embedding is being computed...",
    )


@router.get("/{session_id}/image")
async def get_image(session_id: str):
    """Serve the original uploaded image."""
    path = image_path(session_id)
    if not os.path.exists(path):
        raise HTTPException(status_code=404, detail="Image not found")
    return FileResponse(path, media_type="image/png")


@router.get("/{session_id}/preview")
async def get_preview(session_id: str):
    """Serve the colored overlay from the last segmentation."""
    path = preview_path(session_id)
    if not os.path.exists(path):
        raise HTTPException(status_code=404, detail="No preview available for this session")
    return FileResponse(path, media_type="image/png")


@router.get("/{session_id}/mask")
async def get_mask(session_id: str):
    """Serve the binary export mask from the last segmentation."""
    path = mask_path(session_id)
    if not os.path.exists(path):
        raise HTTPException(status_code=404, detail="No mask available for this session")
    return FileResponse(path, media_type="image/png")


@router.put("/{session_id}/viewport", response_model=SessionResponse)
async def set_viewport(session_id: str, req: ViewportRequest):
    """Report the size of the container the image is displayed in."""
    session = get_session(session_id)
    session.set_viewport(req.width, req.height)
    return session_response(session)


@router.get("/{session_id}/points", response_model=list[GuidePointModel])
async def list_points(session_id: str):
    return point_models(get_session(session_id))


@router.post("/{session_id}/points", response_model=SessionResponse)
async def add_point(session_id: str, req: PointRequest):
    """Add a view-space tap as a guide point."""
    session = get_session(session_id)
    if session.metrics is None:
        raise HTTPException(status_code=409, detail="Viewport not set. PUT /viewport first.")

    point = Point(req.x, req.y, CoordinateSpace.VIEW)
    if settings.REJECT_OUT_OF_BOUNDS_TAPS and not is_inside_bitmap(point, session.metrics):
        raise HTTPException(status_code=422, detail="Point lies outside the displayed image")

    try:
        session.add_point(point, req.object_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Object {req.object_id} not found")
    return session_response(session)


@router.delete("/{session_id}/points", response_model=SessionResponse)
async def clear_points(session_id: str, object_id: int | None = None):
    """Remove the points of one object, or all points when no object is given."""
    session = get_session(session_id)
    if object_id is None:
        session.clear_points()
    else:
        removed = session.clear_object_points(object_id)
        logger.info("Removed %d guide points of object %d", removed, object_id)
    return session_response(session)


@router.post("/{session_id}/objects", response_model=SessionResponse)
async def add_object(session_id: str):
    """Add a new object and select it."""
    session = get_session(session_id)
    session.add_object()
    return session_response(session)


@router.put("/{session_id}/objects/{object_id}/select", response_model=SessionResponse)
async def select_object(session_id: str, object_id: int):
    session = get_session(session_id)
    try:
        session.select_object(object_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Object {object_id} not found")
    return session_response(session)


@router.delete("/{session_id}/objects/{object_id}", response_model=SessionResponse)
async def remove_object(session_id: str, object_id: int):
    session = get_session(session_id)
    try:
        session.remove_object(object_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Object {object_id} not found")
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session_response(session)
