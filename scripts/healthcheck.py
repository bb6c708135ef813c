"""Lightweight healthcheck to validate imports and store wiring.

Avoids loading heavy models; uses a lightweight stub model and a throwaway
database instead.
"""

import tempfile
from pathlib import Path

from embeddings.models import EmbeddingModel
from ingest.pipeline import IngestionPipeline
from vector_store.sqlite_store import SQLiteCollectionStore


class _StubModel(EmbeddingModel):
    model_id = "healthcheck-stub"
    _dimensions = 4

    def embed_batch(self, items):
        return [[float(len(item)), 1.0, 0.0, 0.0] for item in items]


def main():
    # Ensure a store can be created, filled and queried end to end
    with tempfile.TemporaryDirectory() as tmp:
        store = SQLiteCollectionStore(Path(tmp) / "healthcheck.db")
        collection = store.get_or_create("healthcheck", _StubModel())
        report = IngestionPipeline(store, collection).ingest_rows(
            [("ping", "ping"), ("pong", "pong!")]
        )
        results = store.similar_by_id(collection, "ping", number=1)
        assert report.stored == 2 and results and results[0].id == "pong"
    print("OK")


if __name__ == "__main__":
    main()
