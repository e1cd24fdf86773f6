"""
Annotation sessions: per-image state passed explicitly into each pipeline stage.
"""
import threading
import uuid
from dataclasses import dataclass, field

import numpy as np

from ..models.types import GuidePoint, ImageSize, Point, SegmentationResult, ViewportMetrics
from ..utils.coords import compute_fit_metrics


def _object_name(object_id: int) -> str:
    return f"Object {object_id}"


@dataclass
class AnnotationSession:
    """
    Everything one user works on for one image: the image, how it is shown,
    the guide points per object and the last segmentation.
    """

    session_id: str
    image: np.ndarray
    image_path: str
    metrics: ViewportMetrics | None = None
    points: list[GuidePoint] = field(default_factory=list)
    objects: dict[int, str] = field(default_factory=lambda: {0: _object_name(0)})
    selected_object: int = 0
    embedding_ready: bool = False
    last_result: SegmentationResult | None = None
    generation: int = field(default=0, init=False)  # bumped whenever the image changes
    state_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _next_object_id: int = field(default=1, init=False, repr=False)
    _request_gate: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def image_size(self) -> ImageSize:
        height, width = self.image.shape[:2]
        return ImageSize(width, height)

    # --- Viewport ---

    def set_viewport(self, view_width: float, view_height: float) -> ViewportMetrics:
        self.metrics = compute_fit_metrics(ImageSize(view_width, view_height), self.image_size)
        return self.metrics

    # --- Points ---

    def add_point(self, point: Point, object_id: int | None = None) -> GuidePoint:
        """Append a view-space tap to `object_id` (default: the selected object)."""
        if object_id is None:
            object_id = self.selected_object
        if object_id not in self.objects:
            raise KeyError(object_id)
        guide = GuidePoint(object_id=object_id, point=point)
        self.points.append(guide)
        return guide

    def clear_object_points(self, object_id: int) -> int:
        """Remove every point of one object. Returns how many were removed."""
        before = len(self.points)
        self.points = [p for p in self.points if p.object_id != object_id]
        return before - len(self.points)

    def clear_points(self) -> None:
        self.points = []

    def replace_points(self, guide_points: list[GuidePoint]) -> None:
        """Swap the point set for detector output; objects become 0..n-1."""
        self.points = list(guide_points)
        object_ids = sorted({p.object_id for p in guide_points}) or [0]
        self.objects = {object_id: _object_name(object_id) for object_id in object_ids}
        self.selected_object = object_ids[0]
        self._next_object_id = object_ids[-1] + 1

    # --- Objects ---

    def add_object(self) -> int:
        object_id = self._next_object_id
        self._next_object_id += 1
        self.objects[object_id] = _object_name(object_id)
        self.selected_object = object_id
        return object_id

    def remove_object(self, object_id: int) -> None:
        """Remove an object and its points. The last remaining object is kept."""
        if object_id not in self.objects:
            raise KeyError(object_id)
        if len(self.objects) == 1:
            raise ValueError("At least one object must remain")
        del self.objects[object_id]
        self.clear_object_points(object_id)
        if self.selected_object == object_id:
            self.selected_object = min(self.objects)

    def select_object(self, object_id: int) -> None:
        if object_id not in self.objects:
            raise KeyError(object_id)
        self.selected_object = object_id

    # --- Lifecycle ---

    def reset(self, image: np.ndarray, image_path: str) -> None:
        """Start over with a new image."""
        self.generation += 1
        self.image = image
        self.image_path = image_path
        self.metrics = None
        self.points = []
        self.objects = {0: _object_name(0)}
        self.selected_object = 0
        self._next_object_id = 1
        self.embedding_ready = False
        self.last_result = None

    def try_begin_request(self) -> bool:
        """Claim the single request slot; False if a request is already running."""
        return self._request_gate.acquire(blocking=False)

    def end_request(self) -> None:
        self._request_gate.release()


class SessionStore:
    """In-process registry of annotation sessions."""

    def __init__(self):
        self._sessions: dict[str, AnnotationSession] = {}
        self._lock = threading.Lock()

    def create(self, image: np.ndarray, image_path: str, session_id: str | None = None) -> AnnotationSession:
        session = AnnotationSession(
            session_id=session_id or str(uuid.uuid4()),
            image=image,
            image_path=image_path,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> AnnotationSession | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


# Singleton
session_store = SessionStore()
