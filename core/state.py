"""Shared data structures for the store, search and ingestion layers.

Design Note:
    Collections and search results are frozen dataclasses: a collection's
    model binding is captured once when the row is read and never reassigned
    on the value, so binding an unbound collection hands back a new
    ``Collection`` read from storage. Reports are mutable and filled in as a
    bulk job progresses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

# Text goes through the text path of a model, bytes through the binary path
EmbedInput = Union[str, bytes]
Metadata = Dict[str, Any]
Entry = Union[Tuple[str, EmbedInput], Tuple[str, EmbedInput, Optional[Metadata]]]


@dataclass(frozen=True)
class Collection:
    """A named group of embeddings bound to one model."""

    id: int
    name: str
    model_id: Optional[str] = None

    @property
    def is_bound(self) -> bool:
        return self.model_id is not None


@dataclass(frozen=True)
class ResultEntry:
    """A single similarity search hit."""

    id: str
    score: float
    content: Optional[str] = None
    metadata: Optional[Metadata] = None


@dataclass(frozen=True)
class StoredEntry:
    """A persisted embedding record as read back from the store."""

    id: str
    embedding: List[float]
    content: Optional[str]
    content_blob: Optional[bytes]
    content_hash: bytes
    metadata: Optional[Metadata]
    updated: float


@dataclass
class SkippedItem:
    """An item the ingestion pipeline reported and skipped."""

    id: str
    reason: str


@dataclass
class EmbedReport:
    """Outcome of a bulk embedding run."""

    embedded: int = 0
    reused: int = 0
    batches: int = 0
    cancelled: bool = False

    @property
    def stored(self) -> int:
        """Number of records written (computed plus reused vectors)."""
        return self.embedded + self.reused


@dataclass
class IngestReport:
    """Outcome of an ingestion pipeline run."""

    embed: EmbedReport = field(default_factory=EmbedReport)
    skipped: List[SkippedItem] = field(default_factory=list)

    @property
    def stored(self) -> int:
        return self.embed.stored

    @property
    def cancelled(self) -> bool:
        return self.embed.cancelled

    def add_skip(self, item_id: str, reason: str) -> None:
        """Record an item that was skipped without aborting the run."""
        self.skipped.append(SkippedItem(id=item_id, reason=reason))
