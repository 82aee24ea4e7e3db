"""Query embeddings for library retrieval."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

import numpy as np
from sentence_transformers import SentenceTransformer

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EncoderConfig:
    model_name: str = DEFAULT_MODEL
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class QueryEncoder:
    """Thin wrapper around `SentenceTransformer` for embedding search queries.

    The model is loaded on first use so that building a retriever costs
    nothing when no library documents are selected. Query vectors must come
    from the same model that embedded the library chunks.
    """

    def __init__(self, config: EncoderConfig | None = None) -> None:
        self.config = config or EncoderConfig()
        self._model: SentenceTransformer | None = None

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info(
                "Loading embedding model %s (backend: %s)",
                self.config.model_name,
                self.config.backend,
            )
            self._model = SentenceTransformer(
                self.config.model_name,
                backend=self.config.backend,
                device=self.config.device,
            )
        return self._model

    def embed_query(self, text: str) -> np.ndarray:
        """Return a float32 embedding for a single query."""
        embeddings = self.model.encode(
            [text],
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings[0].astype("float32", copy=False)
