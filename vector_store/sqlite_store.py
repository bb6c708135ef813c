"""SQLite-backed collection store.

Two tables hold everything: ``collections`` (one row per named, model-bound
collection) and ``embeddings`` (one row per ``(collection_id, id)``). Each
write runs in its own ``BEGIN IMMEDIATE`` transaction, so a batch lands
completely or not at all, and readers on other connections only ever see
committed rows.
"""

from __future__ import annotations

import hashlib
import itertools
import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import (
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

from core.config import DB_PATH, DEFAULT_BATCH_SIZE, DEFAULT_TOP_K
from core.errors import (
    BatchEmbedFailure,
    CollectionNotFoundError,
    EmbeddingStoreError,
    ModelMismatchError,
    UnboundCollectionError,
)
from core.logging_setup import get_logger
from core.state import (
    Collection,
    EmbedInput,
    EmbedReport,
    Entry,
    Metadata,
    ResultEntry,
    StoredEntry,
)
from embeddings.models import (
    EmbeddingModel,
    ModelRegistry,
    check_input_kind,
    is_binary,
    model_id_of,
)
from vector_store import codec
from vector_store.base import CollectionStore, ModelRef
from vector_store.similarity import rank

SCHEMA = """
CREATE TABLE IF NOT EXISTS collections (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    model TEXT
);
CREATE TABLE IF NOT EXISTS embeddings (
    collection_id INTEGER NOT NULL REFERENCES collections(id) ON DELETE CASCADE,
    id TEXT NOT NULL,
    embedding BLOB NOT NULL,
    content TEXT,
    content_blob BLOB,
    content_hash BLOB NOT NULL,
    metadata TEXT,
    updated REAL NOT NULL,
    PRIMARY KEY (collection_id, id)
);
CREATE INDEX IF NOT EXISTS ix_embeddings_content_hash
    ON embeddings (collection_id, content_hash);
"""

_UPSERT = """
REPLACE INTO embeddings (
    collection_id, id, embedding, content, content_blob, content_hash, metadata, updated
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

# SQLite's default limit on host parameters in one statement is 999
_MAX_PARAMS = 900


def content_hash(value: EmbedInput) -> bytes:
    """Digest of the embedded input, used to detect unchanged content."""
    data = bytes(value) if is_binary(value) else str(value).encode("utf-8")
    return hashlib.md5(data).digest()


def _normalize_entry(entry: Entry) -> Tuple[str, EmbedInput, Optional[Metadata]]:
    if len(entry) == 2:
        item_id, value = entry  # type: ignore[misc]
        metadata = None
    elif len(entry) == 3:
        item_id, value, metadata = entry  # type: ignore[misc]
    else:
        raise ValueError(
            f"Entries must be (id, input) or (id, input, metadata), got {len(entry)} fields"
        )
    return str(item_id), value, metadata


def _chunks(items: Iterable, size: int) -> Iterator[list]:
    iterator = iter(items)
    while True:
        chunk = list(itertools.islice(iterator, size))
        if not chunk:
            return
        yield chunk


class SQLiteCollectionStore(CollectionStore):
    """Persistent collection store on a single SQLite database file."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        registry: Optional[ModelRegistry] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Open (and if needed create) the store.

        Args:
            db_path: Path to the SQLite database file.
            registry: Resolves bound model ids to model instances.
            clock: Source of ``updated`` timestamps (epoch seconds).
        """
        self.db_path = Path(db_path or DB_PATH)
        self.registry = registry or ModelRegistry()
        self._clock = clock
        self.logger = get_logger(__name__)
        self._write_locks: Dict[int, threading.Lock] = {}
        self._write_locks_guard = threading.Lock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()
        self.logger.info("sqlite_store_init", extra={"db_path": str(self.db_path)})

    # =========================================================================
    # Connection helpers
    # =========================================================================

    @contextmanager
    def _connect(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection; writes commit on success and roll back on error."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            if write:
                conn.execute("BEGIN IMMEDIATE")
            with conn:
                yield conn
        finally:
            conn.close()

    def _write_lock(self, collection_id: int) -> threading.Lock:
        with self._write_locks_guard:
            lock = self._write_locks.get(collection_id)
            if lock is None:
                lock = self._write_locks[collection_id] = threading.Lock()
            return lock

    @staticmethod
    def _row_to_collection(row: sqlite3.Row) -> Collection:
        return Collection(id=row["id"], name=row["name"], model_id=row["model"])

    # =========================================================================
    # Collection operations
    # =========================================================================

    def get_or_create(
        self,
        name: str,
        model: Optional[ModelRef] = None,
        *,
        model_id: Optional[str] = None,
    ) -> Collection:
        requested = model_id_of(model) if model is not None else model_id
        if model is not None and model_id is not None and model_id != requested:
            raise ValueError(
                f"model ({requested}) and model_id ({model_id}) disagree"
            )
        if isinstance(model, EmbeddingModel):
            self.registry.register(model)

        with self._connect(write=True) as conn:
            row = conn.execute(
                "SELECT id, name, model FROM collections WHERE name = ?", (name,)
            ).fetchone()
            if row is None:
                cursor = conn.execute(
                    "INSERT INTO collections (name, model) VALUES (?, ?)",
                    (name, requested),
                )
                collection = Collection(
                    id=cursor.lastrowid, name=name, model_id=requested
                )
                self.logger.info(
                    "collection_created",
                    extra={"collection": name, "model_id": requested},
                )
                return collection

            collection = self._row_to_collection(row)
            if requested is None or collection.model_id == requested:
                return collection
            if collection.model_id is not None:
                raise ModelMismatchError(name, collection.model_id, requested)
            # First binding of a collection created without a model
            conn.execute(
                "UPDATE collections SET model = ? WHERE id = ? AND model IS NULL",
                (requested, collection.id),
            )
            self.logger.info(
                "collection_bound", extra={"collection": name, "model_id": requested}
            )
            return Collection(id=collection.id, name=name, model_id=requested)

    def get(self, name: str) -> Collection:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, name, model FROM collections WHERE name = ?", (name,)
            ).fetchone()
        if row is None:
            raise CollectionNotFoundError(name)
        return self._row_to_collection(row)

    def exists(self, name: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM collections WHERE name = ? LIMIT 1", (name,)
            ).fetchone()
        return row is not None

    def collections(self) -> List[Collection]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, model FROM collections ORDER BY name"
            ).fetchall()
        return [self._row_to_collection(row) for row in rows]

    def delete(self, collection: Collection) -> None:
        with self._write_lock(collection.id), self._connect(write=True) as conn:
            removed = conn.execute(
                "DELETE FROM embeddings WHERE collection_id = ?", (collection.id,)
            ).rowcount
            deleted = conn.execute(
                "DELETE FROM collections WHERE id = ?", (collection.id,)
            ).rowcount
            if not deleted:
                raise CollectionNotFoundError(collection.name)
        with self._write_locks_guard:
            self._write_locks.pop(collection.id, None)
        self.logger.info(
            "collection_deleted",
            extra={"collection": collection.name, "records": removed},
        )

    def count(self, collection: Collection) -> int:
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM embeddings WHERE collection_id = ?",
                (collection.id,),
            ).fetchone()[0]

    def _refresh(self, collection: Collection) -> Collection:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, name, model FROM collections WHERE id = ?",
                (collection.id,),
            ).fetchone()
        if row is None:
            raise CollectionNotFoundError(collection.name)
        return self._row_to_collection(row)

    def model_for(self, collection: Collection) -> EmbeddingModel:
        current = self._refresh(collection)
        if current.model_id is None:
            raise UnboundCollectionError(current.name)
        return self.registry.get(current.model_id)

    def _resolve(
        self, collection: Collection, model: Optional[EmbeddingModel]
    ) -> Tuple[Collection, EmbeddingModel]:
        if model is None:
            return collection, self.model_for(collection)
        bound = self.get_or_create(collection.name, model)
        return bound, model

    # =========================================================================
    # Writes
    # =========================================================================

    def _existing(
        self, conn: sqlite3.Connection, collection_id: int, ids: Sequence[str]
    ) -> Dict[str, Tuple[bytes, bytes]]:
        found: Dict[str, Tuple[bytes, bytes]] = {}
        unique = list(dict.fromkeys(ids))
        for start in range(0, len(unique), _MAX_PARAMS):
            part = unique[start : start + _MAX_PARAMS]
            placeholders = ", ".join("?" for _ in part)
            rows = conn.execute(
                f"SELECT id, content_hash, embedding FROM embeddings "
                f"WHERE collection_id = ? AND id IN ({placeholders})",
                (collection_id, *part),
            ).fetchall()
            for row in rows:
                found[row["id"]] = (row["content_hash"], row["embedding"])
        return found

    def _store_batch(
        self,
        collection: Collection,
        model: EmbeddingModel,
        batch: List[Tuple[str, EmbedInput, Optional[Metadata]]],
        store_content: bool,
    ) -> Tuple[int, int]:
        """Embed one batch and upsert it in a single transaction.

        Returns:
            ``(embedded, reused)`` counts for the batch.
        """
        for _, value, _ in batch:
            check_input_kind(model, value)
        hashes = [content_hash(value) for _, value, _ in batch]

        with self._connect() as conn:
            existing = self._existing(conn, collection.id, [i for i, _, _ in batch])
            sample = conn.execute(
                "SELECT length(embedding) FROM embeddings WHERE collection_id = ? LIMIT 1",
                (collection.id,),
            ).fetchone()
        expected_bytes = sample[0] if sample else None

        pending = [
            pos
            for pos, ((item_id, _, _), digest) in enumerate(zip(batch, hashes))
            if existing.get(item_id, (None, None))[0] != digest
        ]
        vectors: Dict[int, bytes] = {}
        if pending:
            computed = model.embed_multi(
                [batch[pos][1] for pos in pending], batch_size=len(pending)
            )
            for pos, vector in zip(pending, computed):
                vectors[pos] = codec.encode(vector)

        now = self._clock()
        rows = []
        for pos, ((item_id, value, metadata), digest) in enumerate(zip(batch, hashes)):
            embedding = vectors[pos] if pos in vectors else existing[item_id][1]
            if expected_bytes is not None and len(embedding) != expected_bytes:
                raise ValueError(
                    f"Vector for '{item_id}' has {codec.dimensions_of(embedding)} "
                    f"dimensions, collection '{collection.name}' stores "
                    f"{expected_bytes // codec.FLOAT_SIZE}"
                )
            binary = is_binary(value)
            rows.append(
                (
                    collection.id,
                    item_id,
                    embedding,
                    value if store_content and not binary else None,
                    bytes(value) if store_content and binary else None,
                    digest,
                    json.dumps(metadata) if metadata is not None else None,
                    now,
                )
            )

        with self._connect(write=True) as conn:
            conn.executemany(_UPSERT, rows)
        return len(vectors), len(batch) - len(vectors)

    def embed(
        self,
        collection: Collection,
        item_id: str,
        value: EmbedInput,
        metadata: Optional[Metadata] = None,
        store_content: bool = False,
        *,
        model: Optional[EmbeddingModel] = None,
    ) -> None:
        collection, model = self._resolve(collection, model)
        with self._write_lock(collection.id):
            embedded, _ = self._store_batch(
                collection, model, [(str(item_id), value, metadata)], store_content
            )
        self.logger.debug(
            "embed_complete",
            extra={
                "collection": collection.name,
                "item_id": item_id,
                "reused": not embedded,
            },
        )

    def embed_multi(
        self,
        collection: Collection,
        entries: Iterable[Entry],
        store_content: bool = False,
        batch_size: Optional[int] = None,
        *,
        model: Optional[EmbeddingModel] = None,
        cancel: Optional[threading.Event] = None,
    ) -> EmbedReport:
        collection, model = self._resolve(collection, model)
        size = batch_size or DEFAULT_BATCH_SIZE
        if model.batch_size and model.batch_size < size:
            size = model.batch_size
        report = EmbedReport()
        self.logger.info(
            "embed_multi_start",
            extra={
                "collection": collection.name,
                "model_id": model.model_id,
                "batch_size": size,
            },
        )

        normalized = (_normalize_entry(entry) for entry in entries)
        with self._write_lock(collection.id):
            for index, batch in enumerate(_chunks(normalized, size)):
                if cancel is not None and cancel.is_set():
                    report.cancelled = True
                    self.logger.warning(
                        "embed_multi_cancelled",
                        extra={
                            "collection": collection.name,
                            "batches": report.batches,
                        },
                    )
                    break
                try:
                    embedded, reused = self._store_batch(
                        collection, model, batch, store_content
                    )
                except (EmbeddingStoreError, sqlite3.Error):
                    raise
                except Exception as exc:
                    self.logger.error(
                        "embed_batch_failed",
                        extra={
                            "collection": collection.name,
                            "batch_index": index,
                            "error": str(exc),
                        },
                    )
                    raise BatchEmbedFailure(
                        index, [item_id for item_id, _, _ in batch], report.stored, exc
                    ) from exc
                report.embedded += embedded
                report.reused += reused
                report.batches += 1
                self.logger.debug(
                    "embed_batch_committed",
                    extra={
                        "collection": collection.name,
                        "batch_index": index,
                        "embedded": embedded,
                        "reused": reused,
                    },
                )

        self.logger.info(
            "embed_multi_complete",
            extra={
                "collection": collection.name,
                "embedded": report.embedded,
                "reused": report.reused,
                "batches": report.batches,
                "cancelled": report.cancelled,
            },
        )
        return report

    # =========================================================================
    # Reads
    # =========================================================================

    def get_entry(self, collection: Collection, item_id: str) -> Optional[StoredEntry]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, embedding, content, content_blob, content_hash, metadata, updated "
                "FROM embeddings WHERE collection_id = ? AND id = ?",
                (collection.id, item_id),
            ).fetchone()
        if row is None:
            return None
        return StoredEntry(
            id=row["id"],
            embedding=codec.decode(row["embedding"]),
            content=row["content"],
            content_blob=row["content_blob"],
            content_hash=row["content_hash"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            updated=row["updated"],
        )

    def ids(self, collection: Collection) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id FROM embeddings WHERE collection_id = ? ORDER BY id",
                (collection.id,),
            ).fetchall()
        return [row["id"] for row in rows]

    def similar_by_vector(
        self,
        collection: Collection,
        vector: Sequence[float],
        number: int = DEFAULT_TOP_K,
        skip_id: Optional[str] = None,
    ) -> List[ResultEntry]:
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT id, embedding FROM embeddings WHERE collection_id = ?",
                (collection.id,),
            )
            ranked = rank(
                vector,
                ((row["id"], codec.decode_array(row["embedding"])) for row in cursor),
                number=number,
                skip_id=skip_id,
            )
            details = self._details(conn, collection.id, [i for i, _ in ranked])

        results = []
        for item_id, score in ranked:
            content, metadata = details.get(item_id, (None, None))
            results.append(
                ResultEntry(id=item_id, score=score, content=content, metadata=metadata)
            )
        self.logger.debug(
            "similar_complete",
            extra={
                "collection": collection.name,
                "results": len(results),
                "top_score": results[0].score if results else 0,
            },
        )
        return results

    def _details(
        self, conn: sqlite3.Connection, collection_id: int, ids: List[str]
    ) -> Dict[str, Tuple[Optional[str], Optional[Metadata]]]:
        details: Dict[str, Tuple[Optional[str], Optional[Metadata]]] = {}
        for start in range(0, len(ids), _MAX_PARAMS):
            part = ids[start : start + _MAX_PARAMS]
            placeholders = ", ".join("?" for _ in part)
            rows = conn.execute(
                f"SELECT id, content, metadata FROM embeddings "
                f"WHERE collection_id = ? AND id IN ({placeholders})",
                (collection_id, *part),
            ).fetchall()
            for row in rows:
                details[row["id"]] = (
                    row["content"],
                    json.loads(row["metadata"]) if row["metadata"] else None,
                )
        return details
