"""
SAM model service — singleton loader, image encoder and point-prompt mask decoder.
"""
import logging
import threading
from dataclasses import dataclass

import numpy as np
import cv2
import torch
import torch.nn.functional as F
from segment_anything import sam_model_registry

from ..config import settings
from ..models.types import ImageSize

logger = logging.getLogger(__name__)

MODEL_LOCK = threading.Lock()


@dataclass
class ImageEmbedding:
    """Encoder output, consumed unchanged by the mask decoder."""

    image_embedding: torch.Tensor  # (1, 256, 64, 64)
    image_size: ImageSize          # original image width/height

    def to_state(self) -> dict:
        return {
            "image_embedding": self.image_embedding.cpu(),
            "image_size": [int(self.image_size.width), int(self.image_size.height)],
        }

    @classmethod
    def from_state(cls, state: dict, device: torch.device) -> "ImageEmbedding":
        return cls(
            image_embedding=state["image_embedding"].to(device),
            image_size=ImageSize(*state["image_size"]),
        )


class SAMService:
    """Thread-safe wrapper around the SAM model."""

    def __init__(self):
        self._model = None
        self._device = None

    @property
    def device(self) -> torch.device:
        if self._device is None:
            if settings.DEVICE == "auto":
                if torch.backends.mps.is_available():
                    self._device = torch.device("mps")
                elif torch.cuda.is_available():
                    self._device = torch.device("cuda:0")
                else:
                    self._device = torch.device("cpu")
            else:
                self._device = torch.device(settings.DEVICE)
        return self._device

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def model(self):
        if self._model is None:
            self.load_model()
        return self._model

    def load_model(self) -> None:
        """Load SAM model from checkpoint."""
        logger.info(
            "Loading SAM model (%s) from %s...",
            settings.SAM_MODEL_TYPE, settings.SAM_CHECKPOINT_PATH,
        )
        self._model = sam_model_registry[settings.SAM_MODEL_TYPE](
            checkpoint=settings.SAM_CHECKPOINT_PATH,
        ).to(self.device)
        self._model.eval()
        logger.info("SAM model loaded on %s", self.device)

    def compute_embedding(self, image_rgb: np.ndarray) -> ImageEmbedding:
        """
        Compute image embedding from an RGB numpy array.

        The image is stretched to the square model input, which is why point
        prompts are mapped to model space with an independent scale per axis.
        Pixels stay in 0-255 and go through `Sam.preprocess`, which applies
        the checkpoint's pixel_mean / pixel_std.
        """
        height, width = image_rgb.shape[:2]
        size = settings.MODEL_INPUT_SIZE
        img_resized = cv2.resize(image_rgb, (size, size), interpolation=cv2.INTER_CUBIC)

        # To tensor (1, 3, size, size), 0-255
        img_tensor = (
            torch.as_tensor(np.ascontiguousarray(img_resized)).float()
            .permute(2, 0, 1).unsqueeze(0).to(self.device)
        )

        with MODEL_LOCK:
            with torch.no_grad():
                embedding = self.model.image_encoder(self.model.preprocess(img_tensor))

        return ImageEmbedding(image_embedding=embedding, image_size=ImageSize(width, height))

    @torch.no_grad()
    def decode(
        self,
        embedding: ImageEmbedding,
        coordinates: np.ndarray,
        labels: np.ndarray,
        object_count: int,
        max_points: int,
        image_size: ImageSize,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Run the SAM mask decoder for a batch of point-prompted objects.

        Args:
            embedding: precomputed image embedding
            coordinates: (object_count, max_points, 2) points in model space
            labels: (object_count, max_points), 1 = positive, -1 = padding
            object_count: number of objects in this batch
            max_points: points per object including padding
            image_size: original image width/height

        Returns:
            Mask logits (object_count, H, W) at image resolution and
            predicted IoU scores (object_count,).
        """
        image_embedding = embedding.image_embedding.to(self.device)
        coords_tensor = torch.as_tensor(
            coordinates, dtype=torch.float, device=self.device,
        ).reshape(object_count, max_points, 2)
        labels_tensor = torch.as_tensor(
            labels, dtype=torch.int, device=self.device,
        ).reshape(object_count, max_points)

        with MODEL_LOCK:
            sparse_embeddings, dense_embeddings = self.model.prompt_encoder(
                points=(coords_tensor, labels_tensor), boxes=None, masks=None,
            )
            low_res_logits, iou_predictions = self.model.mask_decoder(
                image_embeddings=image_embedding,
                image_pe=self.model.prompt_encoder.get_dense_pe(),
                sparse_prompt_embeddings=sparse_embeddings,
                dense_prompt_embeddings=dense_embeddings,
                multimask_output=False,
            )

        height, width = int(image_size.height), int(image_size.width)
        logits = F.interpolate(
            low_res_logits, size=(height, width), mode="bilinear", align_corners=False,
        )
        mask_scores = logits[:, 0].float().cpu().numpy()
        scores = iou_predictions[:, 0].float().cpu().numpy()
        return mask_scores, scores


# Singleton instance
sam_service = SAMService()
