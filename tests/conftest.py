"""Shared fixtures: in-process fakes for the capabilities and the backend."""
import asyncio
import re
from typing import Any, Dict, List, Optional, Sequence

import pytest

from docqa.errors import BackendUnavailable, CapabilityError
from docqa.rag.chunker import SentenceChunker
from docqa.rag.models import QueryResult
from docqa.rag.pipeline import RetrievalPipeline
from docqa.rag.vector_index import VectorIndex, cosine_similarities

WORD = re.compile(r"[a-z0-9]+")


class FakeEmbedder:
    """Deterministic bag-of-words embedder (letters hashed into buckets)."""

    def __init__(self, dimension: int = 16):
        self._dimension = dimension
        self.calls: List[List[str]] = []
        self.fail = False
        self.delay: float = 0.0

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def vector_for(self, text: str) -> List[float]:
        vector = [0.0] * self._dimension
        for word in WORD.findall(text.lower()):
            bucket = sum(ord(c) for c in word) % self._dimension
            vector[bucket] += 1.0
        return vector

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise CapabilityError("embedder unavailable")
        return [self.vector_for(t) for t in texts]


class FakeGenerator:
    def __init__(self):
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None

    async def generate(self, question: str, context: str) -> str:
        self.calls.append((question, context))
        if self.error is not None:
            raise self.error
        return f"Generated answer for: {question}"


class MemoryCollection:
    """Working durable collection kept in memory; failures can be switched on."""

    backend_name = "fake"

    def __init__(self):
        self.name = None
        self.rows: List[Dict[str, Any]] = []
        self.add_calls = 0
        self.fail_on: set = set()
        self.fail_after_adds: Optional[int] = None
        self.hang_on: set = set()
        # Seconds ensure_collection takes to (re)create the collection
        self.ensure_delay: float = 0.0
        self.add_delay: float = 0.0

    async def _maybe_fail(self, operation: str) -> None:
        if operation in self.hang_on:
            await asyncio.sleep(3600)
        if operation in self.fail_on:
            raise BackendUnavailable(f"{operation}: connection refused")
        if operation not in ("ensure_collection", "delete") and self.name is None:
            raise BackendUnavailable(f"{operation}: collection used before ensure_collection()")

    async def ensure_collection(self, name: str) -> None:
        await self._maybe_fail("ensure_collection")
        if self.ensure_delay:
            await asyncio.sleep(self.ensure_delay)
        self.name = name

    async def add(self, ids, vectors, documents, metadatas) -> None:
        await self._maybe_fail("add")
        if self.fail_after_adds is not None and self.add_calls >= self.fail_after_adds:
            raise BackendUnavailable("add: connection reset")
        self.add_calls += 1
        if self.add_delay:
            await asyncio.sleep(self.add_delay)
        for row in zip(ids, vectors, documents, metadatas):
            self.rows.append(dict(zip(("id", "vector", "document", "metadata"), row)))

    async def query(self, vector, k: int) -> QueryResult:
        await self._maybe_fail("query")
        scores = cosine_similarities(vector, [r["vector"] for r in self.rows])
        order = sorted(range(len(self.rows)), key=lambda i: (-scores[i], i))[:k]
        return QueryResult(
            ids=[self.rows[i]["id"] for i in order],
            documents=[self.rows[i]["document"] for i in order],
            metadatas=[dict(self.rows[i]["metadata"]) for i in order],
            distances=[1.0 - float(scores[i]) for i in order],
        )

    async def count(self) -> int:
        await self._maybe_fail("count")
        return len(self.rows)

    async def list_metadatas(self) -> List[Dict[str, Any]]:
        await self._maybe_fail("list_metadatas")
        return [dict(r["metadata"]) for r in self.rows]

    async def delete(self, name: str) -> None:
        await self._maybe_fail("delete")
        self.rows = []
        self.name = None


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def collection():
    return MemoryCollection()


@pytest.fixture
def durable_index(embedder, collection):
    return VectorIndex(embedder=embedder, collection=collection, batch_size=5, max_k=20)


@pytest.fixture
def memory_index(embedder):
    return VectorIndex(embedder=embedder, collection=None, max_k=20)


@pytest.fixture
def pipeline(embedder, generator, collection):
    index = VectorIndex(embedder=embedder, collection=collection, max_k=20)
    return RetrievalPipeline(
        chunker=SentenceChunker(target_length=500, overlap=50),
        index=index,
        generator=generator,
        max_k=20,
        default_k=5,
    )
