"""Abstractions for collection storage backends.

Design Note:
    The CollectionStore abstract base class owns every persisted embedding
    record. The ingestion pipeline and similarity search only ever go through
    these operations, never through the underlying storage. SQLiteCollectionStore
    is the persistent implementation.
"""

from abc import ABC, abstractmethod
from threading import Event
from typing import Iterable, List, Optional, Sequence, Union

from core.config import DEFAULT_TOP_K
from core.state import (
    Collection,
    EmbedInput,
    EmbedReport,
    Entry,
    Metadata,
    ResultEntry,
    StoredEntry,
)
from embeddings.models import EmbeddingModel

ModelRef = Union[EmbeddingModel, str]


class CollectionStore(ABC):
    """Abstract interface for model-bound embedding collections.

    Writes to one collection are serialized; each batch is committed as a
    single unit. Reads may run alongside writes and see whole records only.
    """

    @abstractmethod
    def get_or_create(
        self,
        name: str,
        model: Optional[ModelRef] = None,
        *,
        model_id: Optional[str] = None,
    ) -> Collection:  # pragma: no cover - interface
        """Return the named collection, creating it if absent.

        Args:
            name: Collection name.
            model: Model instance or model id to bind the collection to.
            model_id: Model id, as an alternative to ``model``.

        Raises:
            ModelMismatchError: The collection is bound to a different model.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, name: str) -> Collection:  # pragma: no cover - interface
        """Return an existing collection or raise CollectionNotFoundError."""
        raise NotImplementedError

    @abstractmethod
    def exists(self, name: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def collections(self) -> List[Collection]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def delete(self, collection: Collection) -> None:  # pragma: no cover - interface
        """Delete a collection and all of its records."""
        raise NotImplementedError

    @abstractmethod
    def count(self, collection: Collection) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def embed(
        self,
        collection: Collection,
        item_id: str,
        value: EmbedInput,
        metadata: Optional[Metadata] = None,
        store_content: bool = False,
        *,
        model: Optional[EmbeddingModel] = None,
    ) -> None:  # pragma: no cover - interface
        """Embed one input and upsert it under ``item_id``."""
        raise NotImplementedError

    @abstractmethod
    def embed_multi(
        self,
        collection: Collection,
        entries: Iterable[Entry],
        store_content: bool = False,
        batch_size: Optional[int] = None,
        *,
        model: Optional[EmbeddingModel] = None,
        cancel: Optional[Event] = None,
    ) -> EmbedReport:  # pragma: no cover - interface
        """Embed and upsert many entries in atomic batches."""
        raise NotImplementedError

    @abstractmethod
    def get_entry(
        self, collection: Collection, item_id: str
    ) -> Optional[StoredEntry]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def ids(self, collection: Collection) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def similar_by_vector(
        self,
        collection: Collection,
        vector: Sequence[float],
        number: int = DEFAULT_TOP_K,
        skip_id: Optional[str] = None,
    ) -> List[ResultEntry]:  # pragma: no cover - interface
        """Return the ``number`` records closest to ``vector``."""
        raise NotImplementedError

    def similar(
        self,
        collection: Collection,
        query: EmbedInput,
        number: int = DEFAULT_TOP_K,
    ) -> List[ResultEntry]:
        """Embed ``query`` with the collection's model and rank against it."""
        vector = self.model_for(collection).embed(query)
        return self.similar_by_vector(collection, vector, number=number)

    def similar_by_id(
        self,
        collection: Collection,
        item_id: str,
        number: int = DEFAULT_TOP_K,
    ) -> List[ResultEntry]:
        """Rank against a stored record's vector, leaving that record out."""
        entry = self.get_entry(collection, item_id)
        if entry is None:
            raise KeyError(f"No entry '{item_id}' in collection '{collection.name}'")
        return self.similar_by_vector(
            collection, entry.embedding, number=number, skip_id=item_id
        )

    @abstractmethod
    def model_for(
        self, collection: Collection
    ) -> EmbeddingModel:  # pragma: no cover - interface
        """Return the model instance the collection is bound to."""
        raise NotImplementedError
