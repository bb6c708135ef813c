"""Bulk ingestion into a collection.

The pipeline turns structured records, query rows and file-tree walks into
``(id, input, metadata)`` entries, prefixes their ids, and hands them to
:meth:`CollectionStore.embed_multi`, which embeds and commits them in atomic
batches. Items that cannot be read are reported and skipped; a batch the model
fails on raises ``BatchEmbedFailure`` after the earlier batches are committed.
"""

from pathlib import Path
from threading import Event
from typing import Any, Iterable, Iterator, Optional, Sequence, Union

from core.config import DEFAULT_FILE_PATTERN, FALLBACK_ENCODING, FILE_ENCODINGS
from core.logging_setup import get_logger
from core.state import Collection, EmbedInput, Entry, IngestReport, Metadata
from embeddings.models import EmbeddingModel, require_capability
from ingest.files import iter_files
from ingest.sources import Source, iter_query_rows, iter_records
from vector_store.base import CollectionStore


class IngestionPipeline:
    """Feeds bulk sources into one collection with shared options.

    Args:
        store: Store that owns the collection.
        collection: Target collection.
        prefix: Prepended to every derived id before storage.
        batch_size: Upper bound on items per committed batch.
        store_content: Keep the original text or bytes next to the vector.
        binary: Route inputs through the model's binary path.
        model: Model to bind an unbound collection to; defaults to the bound one.
        cancel: Event checked between batches to stop a long run.
        run_id: Correlation id attached to log records.
    """

    def __init__(
        self,
        store: CollectionStore,
        collection: Collection,
        *,
        prefix: str = "",
        batch_size: Optional[int] = None,
        store_content: bool = False,
        binary: bool = False,
        model: Optional[EmbeddingModel] = None,
        cancel: Optional[Event] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.store = store
        self.collection = collection
        self.prefix = prefix
        self.batch_size = batch_size
        self.store_content = store_content
        self.binary = binary
        self.model = model
        self.cancel = cancel
        self.logger = get_logger(__name__, run_id=run_id)

    def _coerce(self, value: EmbedInput) -> EmbedInput:
        if self.binary and isinstance(value, str):
            return value.encode("utf-8")
        return value

    def _prefixed(self, entries: Iterable[Entry]) -> Iterator[Entry]:
        for entry in entries:
            item_id, value = entry[0], entry[1]
            metadata: Optional[Metadata] = entry[2] if len(entry) > 2 else None
            yield f"{self.prefix}{item_id}", self._coerce(value), metadata

    def ingest_entries(
        self, entries: Iterable[Entry], report: Optional[IngestReport] = None
    ) -> IngestReport:
        """Embed pre-shaped ``(id, input[, metadata])`` entries."""
        report = report or IngestReport()
        model = self.model or self.store.model_for(self.collection)
        require_capability(model, self.binary)
        self.logger.info(
            "ingest_start",
            extra={
                "collection": self.collection.name,
                "model_id": model.model_id,
                "prefix": self.prefix,
                "binary": self.binary,
            },
        )
        report.embed = self.store.embed_multi(
            self.collection,
            self._prefixed(entries),
            store_content=self.store_content,
            batch_size=self.batch_size,
            model=self.model,
            cancel=self.cancel,
        )
        self.logger.info(
            "ingest_complete",
            extra={
                "collection": self.collection.name,
                "stored": report.stored,
                "skipped": len(report.skipped),
                "cancelled": report.cancelled,
            },
        )
        return report

    def ingest_records(
        self, source: Source, format: Optional[str] = None, **kwargs: Any
    ) -> IngestReport:
        """Ingest a CSV, TSV, JSON array or newline-delimited JSON source.

        Extra keyword arguments are passed to :func:`ingest.sources.iter_records`.
        """
        report = IngestReport()
        records = iter_records(source, format, on_skip=report.add_skip, **kwargs)
        return self.ingest_entries(records, report)

    def ingest_rows(self, rows: Iterable[Sequence[Any]]) -> IngestReport:
        """Ingest rows from any query: first column id, the rest content."""
        report = IngestReport()
        return self.ingest_entries(iter_query_rows(rows, on_skip=report.add_skip), report)

    def ingest_files(
        self,
        root: Union[str, Path],
        pattern: str = DEFAULT_FILE_PATTERN,
        encodings: Sequence[str] = FILE_ENCODINGS,
        fallback_encoding: Optional[str] = FALLBACK_ENCODING,
    ) -> IngestReport:
        """Ingest every file under ``root`` matching ``pattern``."""
        report = IngestReport()
        files = iter_files(
            root,
            pattern,
            encodings=encodings,
            fallback_encoding=fallback_encoding,
            binary=self.binary,
            on_skip=report.add_skip,
        )
        return self.ingest_entries(files, report)
