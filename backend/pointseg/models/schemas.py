"""
Pydantic models for API request/response schemas.
"""
from pydantic import BaseModel, Field


class GuidePointModel(BaseModel):
    object_id: int
    x: float  # view space
    y: float


class ObjectModel(BaseModel):
    object_id: int
    name: str
    point_count: int
    color: list[int]  # [R, G, B]


class ViewportMetricsModel(BaseModel):
    view_width: float
    view_height: float
    bitmap_width: float
    bitmap_height: float
    scale: float
    offset_x: float
    offset_y: float


# --- Responses ---

class UploadResponse(BaseModel):
    session_id: str
    width: int
    height: int
    embedding_status: str  # "computing" | "ready"


class EmbeddingStatusResponse(BaseModel):
    session_id: str
    embedding_ready: bool
    message: str


class SessionResponse(BaseModel):
    session_id: str
    width: int
    height: int
    embedding_ready: bool
    viewport: ViewportMetricsModel | None
    selected_object: int
    objects: list[ObjectModel]
    points: list[GuidePointModel]


class SegmentResponse(BaseModel):
    session_id: str
    object_count: int
    decode_calls: int
    inference_ms: int
    preview_url: str
    mask_url: str
    objects: list[ObjectModel]


class DetectResponse(BaseModel):
    session_id: str
    detected: int
    points: list[GuidePointModel]


class DetectorSettingsModel(BaseModel):
    backend: str = ""
    ready: bool = False
    confidence: float = Field(ge=0.0, le=1.0)
    iou: float = Field(ge=0.0, le=1.0)
    max_detections: int = Field(ge=1)


class ErrorResponse(BaseModel):
    detail: str


# --- Requests ---

class ViewportRequest(BaseModel):
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class PointRequest(BaseModel):
    x: float
    y: float
    object_id: int | None = None  # defaults to the selected object
