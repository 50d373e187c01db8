"""FAISS-backed durable collection.

Handles:
- Cosine similarity via inner product over L2-normalized vectors
- Index and document persistence under DATA_DIR/<collection>/
- Dimension validation against the stored index
"""
import json
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import faiss
import numpy as np
import structlog

from docqa import config
from docqa.errors import BackendUnavailable, DimensionMismatchError
from docqa.rag.models import QueryResult, Vector

logger = structlog.get_logger()


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """L2-normalize each row; zero rows stay zero."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    safe = np.where(norms > 0, norms, 1.0)
    return (vectors / safe).astype(np.float32)


class FaissCollection:
    """Persistent FAISS collection with a JSON document sidecar."""

    backend_name = "faiss"

    def __init__(self, root_dir: Path = None):
        """Initialize the FAISS collection.

        Args:
            root_dir: Directory holding one subdirectory per collection
                (default: DATA_DIR)
        """
        self.root_dir = Path(root_dir or config.DATA_DIR)
        self.name: Optional[str] = None

        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = None
        self._ids: List[str] = []
        self._documents: List[str] = []
        self._metadatas: List[Dict[str, Any]] = []

    def _collection_dir(self, name: str) -> Path:
        return self.root_dir / name

    @property
    def index_path(self) -> Path:
        return self._collection_dir(self.name) / "vectors.index"

    @property
    def metadata_path(self) -> Path:
        return self._collection_dir(self.name) / "metadata.json"

    def _clear_state(self) -> None:
        self.index = None
        self.dimension = None
        self._ids = []
        self._documents = []
        self._metadatas = []

    async def ensure_collection(self, name: str) -> None:
        """Load the named collection from disk, or start it empty.

        Raises:
            BackendUnavailable: If stored files are unreadable or inconsistent
        """
        self.name = name
        self._clear_state()

        if not (self.index_path.exists() and self.metadata_path.exists()):
            logger.info("faiss_collection_created", collection=name, path=str(self.root_dir))
            return

        try:
            with open(self.metadata_path, "r", encoding="utf-8") as f:
                sidecar = json.load(f)
            index = faiss.read_index(str(self.index_path))
            ids = list(sidecar["ids"])
            documents = list(sidecar["documents"])
            metadatas = list(sidecar["metadatas"])
            dimension = int(sidecar["embedding_dimension"])
        except (OSError, RuntimeError, ValueError, KeyError, TypeError) as e:
            logger.error("faiss_collection_load_failed", collection=name, error=str(e))
            raise BackendUnavailable(f"Failed to load FAISS collection '{name}': {e}") from e

        if not (index.ntotal == len(ids) == len(documents) == len(metadatas)):
            raise BackendUnavailable(
                f"FAISS collection '{name}' is inconsistent: index has "
                f"{index.ntotal} vectors but sidecar has {len(ids)} rows"
            )
        if index.d != dimension:
            raise BackendUnavailable(
                f"FAISS collection '{name}' dimension {index.d} does not match "
                f"sidecar dimension {dimension}"
            )

        self.index = index
        self.dimension = dimension
        self._ids, self._documents, self._metadatas = ids, documents, metadatas

        logger.info(
            "faiss_collection_loaded",
            collection=name,
            dimension=dimension,
            vector_count=index.ntotal,
        )

    def _require_collection(self) -> None:
        if self.name is None:
            raise BackendUnavailable("FAISS collection used before ensure_collection()")

    def _as_matrix(self, vectors: Sequence[Vector]) -> np.ndarray:
        matrix = np.asarray(vectors, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[1] == 0:
            raise ValueError("Vectors must be a non-empty 2-D array")
        if self.dimension is not None and matrix.shape[1] != self.dimension:
            raise DimensionMismatchError(self.dimension, matrix.shape[1])
        return matrix

    async def add(
        self,
        ids: Sequence[str],
        vectors: Sequence[Vector],
        documents: Sequence[str],
        metadatas: Sequence[Dict[str, Any]],
    ) -> None:
        """Add rows and persist the collection.

        Raises:
            BackendUnavailable: If FAISS or the filesystem fails
            DimensionMismatchError: If vectors don't match the stored dimension
        """
        self._require_collection()

        if not ids:
            return
        if not (len(ids) == len(vectors) == len(documents) == len(metadatas)):
            raise ValueError("ids, vectors, documents and metadatas must align")

        matrix = normalize_rows(self._as_matrix(vectors))

        created = self.index is None
        previous_total = 0 if created else self.index.ntotal
        if created:
            self.dimension = matrix.shape[1]
            self.index = faiss.IndexFlatIP(self.dimension)

        try:
            self.index.add(matrix)
            self._ids.extend(ids)
            self._documents.extend(documents)
            self._metadatas.extend(dict(m) for m in metadatas)
            self._save()
        except (BackendUnavailable, RuntimeError) as e:
            # Memory must keep matching what is on disk
            self._rollback(previous_total, created)
            if isinstance(e, BackendUnavailable):
                raise
            raise BackendUnavailable(f"Failed to add vectors to FAISS: {e}") from e

        logger.info(
            "vectors_added",
            collection=self.name,
            count=len(ids),
            total_vectors=self.index.ntotal,
        )

    def _rollback(self, previous_total: int, created: bool) -> None:
        """Drop rows appended after ``previous_total``."""
        if created:
            self._clear_state()
            return

        if self.index.ntotal > previous_total:
            self.index.remove_ids(np.arange(previous_total, self.index.ntotal, dtype=np.int64))
        del self._ids[previous_total:]
        del self._documents[previous_total:]
        del self._metadatas[previous_total:]
        logger.warning("faiss_add_rolled_back", collection=self.name, vector_count=previous_total)

    def _save(self) -> None:
        """Write index and sidecar atomically (temp file, then rename)."""
        directory = self._collection_dir(self.name)
        sidecar = {
            "collection": self.name,
            "embedding_dimension": self.dimension,
            "index_type": "IndexFlatIP",
            "vector_count": self.index.ntotal,
            "ids": self._ids,
            "documents": self._documents,
            "metadatas": self._metadatas,
        }

        try:
            directory.mkdir(parents=True, exist_ok=True)

            index_tmp = self.index_path.with_suffix(".index.tmp")
            faiss.write_index(self.index, str(index_tmp))

            metadata_tmp = self.metadata_path.with_suffix(".json.tmp")
            with open(metadata_tmp, "w", encoding="utf-8") as f:
                json.dump(sidecar, f)

            os.replace(index_tmp, self.index_path)
            os.replace(metadata_tmp, self.metadata_path)
        except (OSError, RuntimeError, TypeError) as e:
            logger.error("faiss_collection_save_failed", collection=self.name, error=str(e))
            raise BackendUnavailable(f"Failed to save FAISS collection: {e}") from e

    async def query(self, vector: Vector, k: int) -> QueryResult:
        """Return the k nearest rows by cosine distance (1 - similarity).

        Ties keep insertion order.
        """
        self._require_collection()

        if self.index is None or self.index.ntotal == 0 or k <= 0:
            return QueryResult(ids=[], documents=[], metadatas=[], distances=[])

        query_vector = normalize_rows(self._as_matrix([vector]))
        top_k = min(k, self.index.ntotal)

        try:
            scores, labels = self.index.search(query_vector, top_k)
        except RuntimeError as e:
            raise BackendUnavailable(f"FAISS search failed: {e}") from e

        hits = [
            (float(score), int(label))
            for score, label in zip(scores[0], labels[0])
            if label >= 0
        ]
        hits.sort(key=lambda hit: (-hit[0], hit[1]))

        return QueryResult(
            ids=[self._ids[label] for _, label in hits],
            documents=[self._documents[label] for _, label in hits],
            metadatas=[dict(self._metadatas[label]) for _, label in hits],
            distances=[1.0 - score for score, _ in hits],
        )

    async def count(self) -> int:
        self._require_collection()
        return 0 if self.index is None else int(self.index.ntotal)

    async def list_metadatas(self) -> List[Dict[str, Any]]:
        self._require_collection()
        return [dict(m) for m in self._metadatas]

    async def delete(self, name: str) -> None:
        """Delete a collection's files (no-op if it doesn't exist)."""
        directory = self._collection_dir(name)
        try:
            if directory.exists():
                shutil.rmtree(directory)
                logger.info("faiss_collection_deleted", collection=name, path=str(directory))
        except OSError as e:
            raise BackendUnavailable(f"Failed to delete FAISS collection '{name}': {e}") from e

        if name == self.name:
            self._clear_state()
