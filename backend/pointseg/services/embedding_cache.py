"""
Embedding cache — file-backed with in-memory LRU eviction.
"""
import logging
import os
from collections import OrderedDict

import numpy as np
import torch

from ..config import settings
from .sam_service import ImageEmbedding, sam_service

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """
    LRU cache for image embeddings, keyed by session id.
    Stores embeddings in memory and persists them to disk as .pt files.
    """

    def __init__(self, max_size: int = settings.MAX_CACHE_SIZE, encoder=sam_service):
        self._cache: OrderedDict[str, ImageEmbedding] = OrderedDict()
        self._max_size = max_size
        self._encoder = encoder

    def _disk_path(self, session_id: str) -> str:
        return os.path.join(settings.EMBEDDING_DIR, f"{session_id}.pt")

    def has(self, session_id: str) -> bool:
        """Check if embedding exists in memory or on disk."""
        return session_id in self._cache or os.path.exists(self._disk_path(session_id))

    def get(self, session_id: str) -> ImageEmbedding | None:
        """
        Retrieve embedding from memory cache or disk.
        Returns None if not found anywhere.
        """
        # Memory first
        if session_id in self._cache:
            self._cache.move_to_end(session_id)
            return self._cache[session_id]

        # Disk fallback
        disk_path = self._disk_path(session_id)
        if os.path.exists(disk_path):
            try:
                state = torch.load(disk_path, map_location="cpu")
                embedding = ImageEmbedding.from_state(state, self._encoder.device)
            except (OSError, RuntimeError, KeyError) as e:
                logger.warning("Failed to load embedding from disk (%s): %s", disk_path, e)
                return None
            self._put_memory(session_id, embedding)
            return embedding

        return None

    def _put_memory(self, session_id: str, embedding: ImageEmbedding) -> None:
        """Store in memory cache with LRU eviction."""
        if session_id in self._cache:
            self._cache.move_to_end(session_id)
        elif len(self._cache) >= self._max_size:
            self._cache.popitem(last=False)  # evict oldest
        self._cache[session_id] = embedding

    def compute_and_store(self, session_id: str, image_rgb: np.ndarray) -> ImageEmbedding:
        """
        Compute embedding for an image, store in memory + disk.
        """
        return self.store(session_id, self.encode(image_rgb))

    def encode(self, image_rgb: np.ndarray) -> ImageEmbedding:
        """Run the encoder without touching the cache."""
        return self._encoder.compute_embedding(image_rgb)

    def store(self, session_id: str, embedding: ImageEmbedding) -> ImageEmbedding:
        """Store a computed embedding in memory + disk."""
        torch.save(embedding.to_state(), self._disk_path(session_id))
        self._put_memory(session_id, embedding)
        logger.info("Embedding ready for %s", session_id)
        return embedding

    def get_or_compute(self, session_id: str, image_rgb: np.ndarray) -> ImageEmbedding:
        """
        Get from cache or compute fresh. One-stop method.
        """
        cached = self.get(session_id)
        if cached is not None:
            return cached
        return self.compute_and_store(session_id, image_rgb)

    def discard(self, session_id: str) -> None:
        """Forget an embedding (memory and disk), e.g. when a new image replaces it."""
        self._cache.pop(session_id, None)
        disk_path = self._disk_path(session_id)
        if os.path.exists(disk_path):
            os.remove(disk_path)


# Singleton
embedding_cache = EmbeddingCache()
