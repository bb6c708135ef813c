"""Exception taxonomy for the embedding store.

Every error raised on purpose by the store, the model adapters and the
ingestion pipeline derives from :class:`EmbeddingStoreError`, so callers can
catch the whole family with one clause. Errors that are also plain lookup or
value failures additionally derive from the matching builtin.
"""

from typing import List, Optional, Sequence


class EmbeddingStoreError(Exception):
    """Base class for all embedding store errors."""


class MalformedVectorError(EmbeddingStoreError, ValueError):
    """Raised when a byte sequence is not a whole number of float32 values."""

    def __init__(self, length: int) -> None:
        super().__init__(
            f"Encoded vector length {length} is not a multiple of 4 bytes"
        )
        self.length = length


class ModelMismatchError(EmbeddingStoreError):
    """Raised when a collection is used with a model other than the one it is bound to."""

    def __init__(self, collection: str, bound_model_id: str, model_id: str) -> None:
        super().__init__(
            f"Collection '{collection}' is bound to model '{bound_model_id}', "
            f"not '{model_id}'"
        )
        self.collection = collection
        self.bound_model_id = bound_model_id
        self.model_id = model_id


class UnsupportedInputKindError(EmbeddingStoreError):
    """Raised when text goes to a binary-only model or bytes to a text-only model."""

    def __init__(self, model_id: str, kind: str) -> None:
        super().__init__(f"Model '{model_id}' does not support {kind} input")
        self.model_id = model_id
        self.kind = kind


class DecodingExhaustedError(EmbeddingStoreError):
    """Raised when none of the configured encodings can decode a file."""

    def __init__(self, path: str, encodings: Sequence[str]) -> None:
        super().__init__(
            f"Could not decode '{path}' with any of: {', '.join(encodings) or '(none)'}"
        )
        self.path = path
        self.encodings = list(encodings)


class BatchEmbedFailure(EmbeddingStoreError):
    """Raised when the model fails while embedding one batch.

    Nothing from the failing batch is persisted; batches committed before it
    are left untouched. The underlying model error is chained as ``__cause__``.
    """

    def __init__(
        self,
        batch_index: int,
        ids: List[str],
        committed: int,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            f"Embedding batch {batch_index} ({len(ids)} items) failed"
            + (f": {cause}" if cause is not None else "")
        )
        self.batch_index = batch_index
        self.ids = ids
        self.committed = committed


class CollectionNotFoundError(EmbeddingStoreError, KeyError):
    """Raised when a named collection does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Collection '{self.name}' does not exist"


class UnboundCollectionError(EmbeddingStoreError):
    """Raised when embedding into a collection that has no model bound yet."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Collection '{name}' is not bound to a model; pass a model to bind it"
        )
        self.name = name


class UnknownModelError(EmbeddingStoreError, KeyError):
    """Raised when a model id cannot be resolved to a model instance."""

    def __init__(self, model_id: str) -> None:
        super().__init__(model_id)
        self.model_id = model_id

    def __str__(self) -> str:
        return f"Unknown embedding model '{self.model_id}'"


class UnknownFormatError(EmbeddingStoreError, ValueError):
    """Raised when a structured source format cannot be detected or is unsupported."""
