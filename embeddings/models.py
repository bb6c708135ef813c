"""Embedding model capability and adapters.

The store only depends on the small capability surface of
:class:`EmbeddingModel`: ``model_id``, ``dimensions``, the two input-kind
flags, a preferred ``batch_size`` and the ``embed``/``embed_multi`` calls.
Concrete models implement a single hook, ``embed_batch``, and are otherwise
interchangeable.
"""

from abc import ABC, abstractmethod
from functools import lru_cache
from threading import Lock
from time import perf_counter
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

import numpy as np
from huggingface_hub import InferenceClient
from sentence_transformers import SentenceTransformer

from core.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_EMBED_MODEL,
    EMBED_DEVICE,
    HUGGINGFACE_API_TOKEN,
    SENTENCE_TRANSFORMERS_PREFIX,
)
from core.errors import UnknownModelError, UnsupportedInputKindError
from core.logging_setup import get_logger
from core.state import EmbedInput


def is_binary(item: EmbedInput) -> bool:
    return isinstance(item, (bytes, bytearray, memoryview))


def check_input_kind(model: "EmbeddingModel", item: EmbedInput) -> None:
    """Raise UnsupportedInputKindError if ``model`` cannot embed ``item``."""
    if is_binary(item):
        if not model.supports_binary:
            raise UnsupportedInputKindError(model.model_id, "binary")
    elif not model.supports_text:
        raise UnsupportedInputKindError(model.model_id, "text")


def require_capability(model: "EmbeddingModel", binary: bool) -> None:
    """Fail fast before dispatching a whole job of one input kind."""
    if binary and not model.supports_binary:
        raise UnsupportedInputKindError(model.model_id, "binary")
    if not binary and not model.supports_text:
        raise UnsupportedInputKindError(model.model_id, "text")


class EmbeddingModel(ABC):
    """Abstract capability of anything that turns inputs into vectors."""

    model_id: str
    supports_text: bool = True
    supports_binary: bool = False
    # Preferred number of inputs per call; None means no preference
    batch_size: Optional[int] = None

    @property
    def dimensions(self) -> Optional[int]:
        """Length of the vectors this model produces, if known."""
        return getattr(self, "_dimensions", None)

    @abstractmethod
    def embed_batch(
        self, items: List[EmbedInput]
    ) -> Iterable[Sequence[float]]:  # pragma: no cover - interface
        """Return one vector per input, in input order."""
        raise NotImplementedError

    def embed(self, item: EmbedInput) -> List[float]:
        """Embed a single text or binary input."""
        check_input_kind(self, item)
        return next(self.embed_multi([item]))

    def embed_multi(
        self, items: Iterable[EmbedInput], batch_size: Optional[int] = None
    ) -> Iterator[List[float]]:
        """Lazily embed ``items``, yielding vectors as each batch completes.

        Args:
            items: Inputs to embed; consumed once, in order.
            batch_size: Overrides the model's preferred batch size.

        Yields:
            One vector per input, in the same order as ``items``.
        """
        size = batch_size or self.batch_size or DEFAULT_BATCH_SIZE
        batch: List[EmbedInput] = []
        for item in items:
            check_input_kind(self, item)
            batch.append(item)
            if len(batch) >= size:
                yield from self._run_batch(batch)
                batch = []
        if batch:
            yield from self._run_batch(batch)

    def _run_batch(self, batch: List[EmbedInput]) -> List[List[float]]:
        vectors = [
            np.asarray(v, dtype="float32").reshape(-1).tolist()
            for v in self.embed_batch(batch)
        ]
        if len(vectors) != len(batch):
            raise ValueError(
                f"Model '{self.model_id}' returned {len(vectors)} vectors "
                f"for {len(batch)} inputs"
            )
        expected = self.dimensions
        for vector in vectors:
            if expected is not None and len(vector) != expected:
                raise ValueError(
                    f"Model '{self.model_id}' returned a {len(vector)}-dimensional "
                    f"vector, expected {expected}"
                )
        return vectors

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.model_id}>"


@lru_cache(maxsize=2)
def load_embedding_model(
    model_name: str = DEFAULT_EMBED_MODEL, device: str = EMBED_DEVICE
) -> SentenceTransformer:
    """Load a sentence-transformers embedding model."""
    logger = get_logger(__name__)
    logger.info(
        "load_embedding_model_start", extra={"model_name": model_name, "device": device}
    )
    start = perf_counter()
    model = SentenceTransformer(model_name, device=device)
    duration_ms = (perf_counter() - start) * 1000
    logger.info(
        "load_embedding_model_complete",
        extra={"model_name": model_name, "device": device, "duration_ms": duration_ms},
    )
    return model


class SentenceTransformerEmbeddingModel(EmbeddingModel):
    """Local sentence-transformers model; the weights load on first use."""

    batch_size = 32

    def __init__(
        self,
        model_name: str = DEFAULT_EMBED_MODEL,
        device: str = EMBED_DEVICE,
        batch_size: Optional[int] = None,
    ) -> None:
        self.model_name = model_name
        self.device = device
        self.model_id = f"{SENTENCE_TRANSFORMERS_PREFIX}{model_name}"
        if batch_size:
            self.batch_size = batch_size
        self._encoder: Optional[SentenceTransformer] = None

    @property
    def encoder(self) -> SentenceTransformer:
        if self._encoder is None:
            self._encoder = load_embedding_model(
                model_name=self.model_name, device=self.device
            )
        return self._encoder

    @property
    def dimensions(self) -> Optional[int]:
        return self.encoder.get_sentence_embedding_dimension()

    def embed_batch(self, items: List[EmbedInput]) -> Iterable[Sequence[float]]:
        logger = get_logger(__name__)
        logger.debug(
            "st_embed_batch", extra={"model_id": self.model_id, "batch": len(items)}
        )
        return self.encoder.encode(
            list(items), convert_to_numpy=True, show_progress_bar=False
        )


class HuggingFaceInferenceEmbeddingModel(EmbeddingModel):
    """Network-backed model served by the HuggingFace Inference API."""

    batch_size = 16

    def __init__(
        self,
        model_name: str,
        api_token: str = HUGGINGFACE_API_TOKEN,
        client: Optional[InferenceClient] = None,
        dimensions: Optional[int] = None,
    ) -> None:
        if not api_token and client is None:
            raise ValueError(
                "HUGGINGFACE_API_TOKEN is not set. Please configure it in your environment or .env file."
            )
        self.logger = get_logger(__name__)
        self.model_name = model_name
        self.model_id = f"hf-inference/{model_name}"
        self._dimensions = dimensions
        self._client = client or InferenceClient(model=model_name, token=api_token)
        self.logger.info(
            "hf_inference_embedding_initialized", extra={"model_name": model_name}
        )

    def embed_batch(self, items: List[EmbedInput]) -> Iterable[Sequence[float]]:
        start = perf_counter()
        vectors = []
        for item in items:
            try:
                response = self._client.feature_extraction(item)
            except Exception as exc:  # pragma: no cover - remote dependency
                self.logger.exception(
                    "hf_inference_embed_failed",
                    extra={"model_name": self.model_name},
                )
                raise RuntimeError(
                    f"HuggingFace Inference API call failed: {exc}"
                ) from exc
            array = np.asarray(response, dtype="float32")
            # Token-level output is mean-pooled into one sentence vector
            while array.ndim > 1:
                array = array.mean(axis=0)
            vectors.append(array)
        if vectors and self._dimensions is None:
            self._dimensions = int(vectors[0].shape[0])
        duration_ms = (perf_counter() - start) * 1000
        self.logger.info(
            "hf_inference_embed_complete",
            extra={
                "model_name": self.model_name,
                "batch": len(items),
                "duration_ms": duration_ms,
            },
        )
        return vectors


class ModelRegistry:
    """Resolves model ids to model instances for bound collections."""

    def __init__(self, models: Optional[Iterable[EmbeddingModel]] = None) -> None:
        self._models: Dict[str, EmbeddingModel] = {}
        self._lock = Lock()
        for model in models or []:
            self.register(model)

    def register(self, model: EmbeddingModel) -> EmbeddingModel:
        with self._lock:
            existing = self._models.get(model.model_id)
            if existing is not None:
                return existing
            self._models[model.model_id] = model
        return model

    def get(self, model_id: str) -> EmbeddingModel:
        with self._lock:
            model = self._models.get(model_id)
        if model is not None:
            return model
        if model_id.startswith(SENTENCE_TRANSFORMERS_PREFIX):
            name = model_id[len(SENTENCE_TRANSFORMERS_PREFIX) :]
            return self.register(SentenceTransformerEmbeddingModel(model_name=name))
        raise UnknownModelError(model_id)

    def __contains__(self, model_id: str) -> bool:
        with self._lock:
            return model_id in self._models

    def model_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._models)


def model_id_of(model: Union[EmbeddingModel, str]) -> str:
    """Return the model id for either a model instance or an id string."""
    return model if isinstance(model, str) else model.model_id
