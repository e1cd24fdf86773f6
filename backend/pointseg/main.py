"""
FastAPI application entry point.

Run with:
    cd /path/to/pointseg
    python -m uvicorn backend.pointseg.main:app --port 8000 --reload
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .services.detectors import detector
from .services.sam_service import sam_service
from .routers import detect, segment, sessions
from .utils.log_setup import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load SAM and the detector at startup."""
    configure_logging()
    sam_service.load_model()
    try:
        detector.load()
    except Exception:
        # Detection is optional; /api/detect answers 503 until a detector loads
        logger.exception("Detector could not be loaded")
    yield


app = FastAPI(
    title="pointseg API",
    description="Point-prompted multi-object segmentation powered by SAM",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS — allow the frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Lock down in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(sessions.router)
app.include_router(segment.router)
app.include_router(detect.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "pointseg API"}


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "sam_loaded": sam_service.is_loaded,
        "detector_ready": detector.is_ready,
    }
