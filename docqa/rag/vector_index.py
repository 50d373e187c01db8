"""Vector index façade over a durable collection with in-memory fallback.

The index starts in DURABLE mode when given a collection. The first backend
failure (unreachable server, malformed response, I/O error or timeout)
switches it to FALLBACK mode for the rest of the process lifetime, and the
failing operation is retried against the in-memory entries. Entries committed
to the durable collection before the switch are not migrated.

All writes (add, reset, mode transition) are serialized by one lock.
Searches run unlocked against either the durable collection or a snapshot of
the fallback entries. A failed durable read is retried once under the lock
before it counts as a backend failure, so readers overlapping a reset see the
post-reset collection.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import structlog

from docqa import config
from docqa.errors import (
    BackendUnavailable,
    CapabilityError,
    DimensionMismatchError,
    ValidationError,
)
from docqa.rag.capabilities import Embedder
from docqa.rag.collection import Collection
from docqa.rag.models import (
    Chunk,
    DocumentSummary,
    IndexEntry,
    IndexMode,
    IndexStats,
    QueryResult,
    SearchResult,
    Vector,
)

logger = structlog.get_logger()


@dataclass
class DurableBackend:
    collection: Collection


@dataclass
class FallbackBackend:
    entries: List[IndexEntry] = field(default_factory=list)


IndexBackend = Union[DurableBackend, FallbackBackend]


def cosine_similarities(query: Vector, vectors: Sequence[Vector]) -> np.ndarray:
    """Cosine similarity of a query against each row; zero norms score 0."""
    matrix = np.asarray(vectors, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(0)

    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return np.clip(scores, -1.0, 1.0)


# Returned by _read_durable when the read must be served from memory
_NOT_DURABLE = object()


class VectorIndex:
    """Embeds, stores and searches chunks; degrades to memory on backend failure."""

    def __init__(
        self,
        embedder: Embedder,
        collection: Optional[Collection] = None,
        collection_name: str = None,
        batch_size: int = None,
        max_k: int = None,
        embed_timeout: float = None,
        backend_timeout: float = None,
    ):
        """Initialize the vector index.

        Args:
            embedder: Embedding capability shared by add and search
            collection: Durable collection; None starts in FALLBACK mode
            collection_name: Name of the durable collection (default from config)
            batch_size: Chunks per durable write (default from config)
            max_k: Upper bound on results per search (default from config)
            embed_timeout: Seconds allowed per embedding batch
            backend_timeout: Seconds allowed per backend call
        """
        if batch_size is not None and batch_size <= 0:
            raise ValidationError(f"Batch size must be positive, got {batch_size}")

        self.embedder = embedder
        self.collection_name = collection_name or config.COLLECTION_NAME
        self.batch_size = batch_size or config.INDEX_BATCH_SIZE
        self.max_k = max_k or config.MAX_TOP_K
        self.embed_timeout = embed_timeout or config.REQUEST_TIMEOUT
        self.backend_timeout = backend_timeout or config.BACKEND_TIMEOUT

        self._backend: IndexBackend = (
            DurableBackend(collection) if collection is not None else FallbackBackend()
        )
        self._dimension: Optional[int] = getattr(embedder, "dimension", None)
        self._write_lock = asyncio.Lock()
        self._ready = False
        self.degraded_reason: Optional[str] = None

    @property
    def mode(self) -> IndexMode:
        if isinstance(self._backend, DurableBackend):
            return IndexMode.DURABLE
        return IndexMode.FALLBACK

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def backend_name(self) -> str:
        if isinstance(self._backend, DurableBackend):
            return getattr(self._backend.collection, "backend_name", "durable")
        return "memory"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _backend_call(self, operation: str, awaitable):
        """Await a backend operation under the backend timeout."""
        try:
            async with asyncio.timeout(self.backend_timeout):
                return await awaitable
        except asyncio.TimeoutError as e:
            raise BackendUnavailable(
                f"Backend {operation} timed out after {self.backend_timeout}s"
            ) from e

    async def _degrade(self, operation: str, error: Exception) -> None:
        """Switch to FALLBACK mode. Caller must hold the write lock."""
        if isinstance(self._backend, FallbackBackend):
            return

        previous = self.backend_name
        self._backend = FallbackBackend()
        self.degraded_reason = str(error)

        logger.warning(
            "vector_index_degraded",
            operation=operation,
            backend=previous,
            collection=self.collection_name,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def _read_durable(self, operation: str, read):
        """Run ``read(collection)`` against the durable backend.

        A failed read is retried once under the write lock, so a read that
        overlapped a reset sees the post-reset collection instead of
        degrading the index. Only a second failure switches to FALLBACK.

        Returns:
            The read's result, or ``_NOT_DURABLE`` when the caller should
            serve the request from the fallback entries
        """
        backend = self._backend
        if not isinstance(backend, DurableBackend):
            return _NOT_DURABLE

        try:
            return await read(backend.collection)
        except BackendUnavailable as e:
            logger.info("durable_read_retry", operation=operation, error=str(e))

        async with self._write_lock:
            backend = self._backend
            if not isinstance(backend, DurableBackend):
                return _NOT_DURABLE
            try:
                return await read(backend.collection)
            except BackendUnavailable as e:
                await self._degrade(operation, e)
                return _NOT_DURABLE

    async def _ensure_ready(self) -> None:
        if self._ready:
            return
        async with self._write_lock:
            await self._ensure_ready_locked()

    async def _ensure_ready_locked(self) -> None:
        if self._ready:
            return

        backend = self._backend
        if isinstance(backend, DurableBackend):
            try:
                await self._backend_call(
                    "ensure_collection",
                    backend.collection.ensure_collection(self.collection_name),
                )
                stored = getattr(backend.collection, "dimension", None)
                if stored is not None:
                    self._check_dimension(stored)
            except BackendUnavailable as e:
                await self._degrade("ensure_collection", e)

        self._ready = True
        logger.info(
            "vector_index_ready",
            mode=self.mode.value,
            backend=self.backend_name,
            collection=self.collection_name,
            dimension=self._dimension,
        )

    def _check_dimension(self, dimension: int) -> None:
        if self._dimension is None:
            self._dimension = dimension
        elif dimension != self._dimension:
            raise DimensionMismatchError(self._dimension, dimension)

    async def _embed_texts(self, texts: List[str]) -> List[Vector]:
        try:
            async with asyncio.timeout(self.embed_timeout):
                vectors = await self.embedder.embed_batch(texts)
        except asyncio.TimeoutError as e:
            logger.error("embedding_timeout", batch_size=len(texts), timeout=self.embed_timeout)
            raise CapabilityError(
                f"Embedding timed out after {self.embed_timeout}s"
            ) from e

        if len(vectors) != len(texts):
            raise CapabilityError(
                f"Embedder returned {len(vectors)} vectors for {len(texts)} texts"
            )
        for vector in vectors:
            if not vector:
                raise CapabilityError("Embedder returned an empty vector")
            self._check_dimension(len(vector))
        return vectors

    async def _embed_chunks(self, chunks: Sequence[Chunk]) -> List[Vector]:
        vectors: List[Vector] = []
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start : start + self.batch_size]
            vectors.extend(await self._embed_texts([c.text for c in batch]))
        return vectors

    @staticmethod
    def _new_entries(chunks: Sequence[Chunk], vectors: Sequence[Vector]) -> List[IndexEntry]:
        return [
            IndexEntry(id=uuid.uuid4().hex, chunk=chunk, vector=list(vector))
            for chunk, vector in zip(chunks, vectors)
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect to the durable collection (falls back on failure)."""
        await self._ensure_ready()

    async def add(self, chunks: Sequence[Chunk]) -> None:
        """Embed and store chunks.

        With a durable backend, chunks are written in batches; a failing batch
        switches the index to FALLBACK mode and the remaining chunks (the
        failing batch included) are stored in memory. Earlier batches stay
        committed to the durable collection.

        Raises:
            CapabilityError: If the embedder fails or times out
            DimensionMismatchError: If an embedding has the wrong dimension
        """
        if not chunks:
            return

        chunks = list(chunks)

        async with self._write_lock:
            await self._ensure_ready_locked()

            pending = chunks
            backend = self._backend

            if isinstance(backend, DurableBackend):
                batches = 0
                while pending:
                    batch = pending[: self.batch_size]
                    vectors = await self._embed_texts([c.text for c in batch])
                    entries = self._new_entries(batch, vectors)

                    try:
                        await self._backend_call(
                            "add",
                            backend.collection.add(
                                [e.id for e in entries],
                                [e.vector for e in entries],
                                [e.chunk.text for e in entries],
                                [{**e.chunk.metadata, "chunk_id": e.chunk.id} for e in entries],
                            ),
                        )
                    except BackendUnavailable as e:
                        await self._degrade("add", e)
                        # Already embedded; reuse the vectors in memory
                        self._backend.entries.extend(entries)
                        pending = pending[len(batch):]
                        break

                    pending = pending[len(batch):]
                    batches += 1
                    logger.debug(
                        "index_batch_committed",
                        batch=batches,
                        batch_size=len(batch),
                        remaining=len(pending),
                    )

            if pending:
                vectors = await self._embed_chunks(pending)
                self._backend.entries.extend(self._new_entries(pending, vectors))

        logger.info(
            "chunks_indexed",
            count=len(chunks),
            mode=self.mode.value,
            backend=self.backend_name,
        )

    async def search(self, query: str, k: int = None) -> List[SearchResult]:
        """Return up to min(k, corpus size) results by descending similarity.

        Args:
            query: Query text (embedded with the index's embedder)
            k: Number of results, capped at max_k (default from config)

        Returns:
            Ordered SearchResult list; empty when the corpus is empty

        Raises:
            ValidationError: If the query is empty or k < 1
            CapabilityError: If the embedder fails or times out
            DimensionMismatchError: If the query vector has the wrong dimension
        """
        if not query or not query.strip():
            raise ValidationError("Query must be a non-empty string")

        k = config.RETRIEVAL_TOP_K if k is None else k
        if isinstance(k, bool) or not isinstance(k, int) or k < 1:
            raise ValidationError(f"k must be a positive integer, got {k!r}")
        k = min(k, self.max_k)

        await self._ensure_ready()

        async def durable_search(collection: Collection) -> List[SearchResult]:
            count = await self._backend_call("count", collection.count())
            if count == 0:
                logger.info("empty_index_no_results", mode=IndexMode.DURABLE.value)
                return []

            query_vector = (await self._embed_texts([query]))[0]
            result = await self._backend_call(
                "query", collection.query(query_vector, min(k, count))
            )
            return self._from_query_result(result)

        results = await self._read_durable("search", durable_search)
        if results is not _NOT_DURABLE:
            logger.info(
                "vector_search_completed",
                mode=IndexMode.DURABLE.value,
                top_k=k,
                results_found=len(results),
            )
            return results

        entries = list(self._backend.entries)
        if not entries:
            logger.info("empty_index_no_results", mode=self.mode.value)
            return []

        query_vector = (await self._embed_texts([query]))[0]

        scores = cosine_similarities(query_vector, [e.vector for e in entries])
        order = np.argsort(-scores, kind="stable")[:k]

        results = [
            SearchResult(chunk=entries[i].chunk, score=float(scores[i]), rank=rank)
            for rank, i in enumerate(order, 1)
        ]

        logger.info(
            "vector_search_completed",
            mode=self.mode.value,
            top_k=k,
            results_found=len(results),
        )
        return results

    @staticmethod
    def _from_query_result(result: QueryResult) -> List[SearchResult]:
        rows = []
        for position, (document, metadata, distance) in enumerate(
            zip(result.documents, result.metadatas, result.distances)
        ):
            metadata = dict(metadata)
            chunk_id = str(metadata.pop("chunk_id", result.ids[position]))
            chunk = Chunk(id=chunk_id, text=document, metadata=metadata)
            rows.append((1.0 - float(distance), position, chunk))

        rows.sort(key=lambda row: (-row[0], row[1]))
        return [
            SearchResult(chunk=chunk, score=max(-1.0, min(1.0, score)), rank=rank)
            for rank, (score, _, chunk) in enumerate(rows, 1)
        ]

    async def get_stats(self) -> IndexStats:
        """Read-only introspection; never raises for backend failures."""
        await self._ensure_ready()

        count = await self._read_durable(
            "count", lambda collection: self._backend_call("count", collection.count())
        )
        if count is not _NOT_DURABLE:
            return IndexStats(
                count=count,
                mode=IndexMode.DURABLE,
                dimension=self._dimension,
                collection=self.collection_name,
                backend=self.backend_name,
            )

        return IndexStats(
            count=len(self._backend.entries),
            mode=self.mode,
            dimension=self._dimension,
            collection=self.collection_name,
            backend=self.backend_name,
        )

    async def list_documents(self) -> List[DocumentSummary]:
        """Distinct indexed documents in first-indexed order."""
        await self._ensure_ready()

        metadatas = await self._read_durable(
            "list_metadatas",
            lambda collection: self._backend_call("list_metadatas", collection.list_metadatas()),
        )
        if metadatas is _NOT_DURABLE:
            metadatas = [e.chunk.metadata for e in list(self._backend.entries)]

        summaries: Dict[str, DocumentSummary] = {}
        for metadata in metadatas:
            document_id = metadata.get("document_id")
            if document_id is None:
                continue
            document_id = str(document_id)
            if document_id not in summaries:
                summaries[document_id] = DocumentSummary(
                    document_id=document_id, filename=metadata.get("filename")
                )
            summaries[document_id].chunk_count += 1

        return list(summaries.values())

    async def reset(self) -> None:
        """Delete all entries and rebuild an empty collection in the current mode."""
        async with self._write_lock:
            await self._ensure_ready_locked()

            backend = self._backend
            if isinstance(backend, DurableBackend):
                try:
                    await self._backend_call(
                        "delete", backend.collection.delete(self.collection_name)
                    )
                    await self._backend_call(
                        "ensure_collection",
                        backend.collection.ensure_collection(self.collection_name),
                    )
                except BackendUnavailable as e:
                    await self._degrade("reset", e)

            if isinstance(self._backend, FallbackBackend):
                # New list: in-flight searches keep their snapshot
                self._backend = FallbackBackend()

            self._dimension = getattr(self.embedder, "dimension", None)

        logger.info("vector_index_reset", mode=self.mode.value, collection=self.collection_name)
