"""Sentence-transformers embedding adapter.

The model loads lazily on first use. sentence-transformers is an optional
extra: ``pip install 'linkwise[semantic]'``.
"""

from __future__ import annotations

import logging
from typing import Any

from .config import EMBEDDING_MODEL
from .errors import LinkwiseError

log = logging.getLogger(__name__)


class Embedder:
    """Turns note text into embedding vectors."""

    def __init__(self, model_name: str = EMBEDDING_MODEL) -> None:
        self.model_name = model_name
        self._model: Any = None

    def _get_model(self) -> Any:
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise LinkwiseError.embedding_unavailable("sentence-transformers is not installed") from e
            log.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts.

        Returns:
            One normalized vector per input text.
        """
        if not texts:
            return []
        model = self._get_model()
        embeddings = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return [[float(v) for v in row] for row in embeddings]
