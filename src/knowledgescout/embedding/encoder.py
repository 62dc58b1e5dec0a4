"""Embedding providers.

Every provider exposes ``dimension``, ``embed`` and ``embed_many`` and reports
failures as :class:`EmbeddingUnavailable`.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Iterable, Literal, Protocol, Sequence

import numpy as np
from openai import OpenAI, OpenAIError
from sentence_transformers import SentenceTransformer

from knowledgescout.errors import EmbeddingUnavailable

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-ada-002"
DEFAULT_DIMENSION = 1536

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    dimension: int

    def embed(self, text: str) -> np.ndarray: ...

    def embed_many(self, texts: Sequence[str]) -> np.ndarray: ...


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for chunk and query embeddings.

    Loading falls back to the PyTorch backend when another backend fails.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        try:
            self._model = self._load_model()
        except Exception as e:
            if self.config.backend == "torch":
                raise EmbeddingUnavailable(
                    f"Unable to load embedding model {self.config.model_name}: {e}"
                ) from e
            logger.warning(
                f"Failed to load model with backend '{self.config.backend}': {e}. "
                "Falling back to PyTorch."
            )
            self.config.backend = "torch"
            self._model = self._load_model()

        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            f"Loaded {self.config.model_name} | Backend: {self.config.backend} "
            f"| Dimension: {self.dimension}"
        )

    def _load_model(self) -> SentenceTransformer:
        return SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
        )

    def embed_many(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        try:
            embeddings = self._model.encode(
                sentences,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as e:
            raise EmbeddingUnavailable(f"Embedding model failed: {e}") from e
        return embeddings.astype("float32", copy=False)

    def embed(self, text: str) -> np.ndarray:
        return self.embed_many([text])[0]


class OpenAIEmbeddingProvider:
    """Embeddings from the OpenAI API (1536 dimensions for ada-002)."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model_name: str = DEFAULT_OPENAI_MODEL,
        dimension: int = DEFAULT_DIMENSION,
        timeout: float = 30.0,
        client: OpenAI | None = None,
    ) -> None:
        self.model_name = model_name
        self.dimension = dimension
        if client is None and api_key:
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=1)
        self._client = client

    def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        if self._client is None:
            raise EmbeddingUnavailable("No OpenAI API key configured")
        inputs = list(texts)
        try:
            response = self._client.embeddings.create(model=self.model_name, input=inputs)
        except OpenAIError as e:
            raise EmbeddingUnavailable(f"OpenAI embedding request failed: {e}") from e

        vectors = np.asarray([item.embedding for item in response.data], dtype="float32")
        if vectors.shape != (len(inputs), self.dimension):
            raise EmbeddingUnavailable(
                f"Unexpected embedding shape {vectors.shape}, expected dimension {self.dimension}"
            )
        return vectors

    def embed(self, text: str) -> np.ndarray:
        return self.embed_many([text])[0]


class NullEmbeddingProvider:
    """Deterministic pseudo-random embeddings for tests and offline runs.

    Vectors are seeded from the SHA-256 of the text, so identical text always
    maps to the identical vector. They carry no semantic meaning.
    """

    def __init__(self, dimension: int = DEFAULT_DIMENSION) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed(self, text: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = np.random.default_rng(seed)
        return rng.standard_normal(self.dimension).astype("float32")

    def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        items = list(texts)
        if not items:
            return np.empty((0, self.dimension), dtype="float32")
        return np.vstack([self.embed(text) for text in items])
