"""Injected capabilities: text embedding and grounded answer generation.

The pipeline depends only on the ``Embedder`` and ``Generator`` protocols;
the Ollama-backed implementations below are what the service wires in.
"""
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import structlog

from docqa import config
from docqa.errors import CapabilityError, DimensionMismatchError
from docqa.llm_client import OllamaClient
from docqa.rag.models import Vector

logger = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions using only the "
    "provided context. Be concise. If the context doesn't contain relevant "
    "information, say \"I don't have enough information to answer this question.\""
)


@runtime_checkable
class Embedder(Protocol):
    """Maps text to fixed-dimension vectors; raises on failure, never returns zeros."""

    @property
    def dimension(self) -> Optional[int]: ...

    async def embed(self, text: str) -> Vector: ...

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]: ...


@runtime_checkable
class Generator(Protocol):
    """Produces an answer to a question grounded on a context block."""

    async def generate(self, question: str, context: str) -> str: ...


class OllamaEmbedder:
    """Embedder backed by an Ollama embedding model."""

    def __init__(self, client: OllamaClient = None, model: str = None):
        self.client = client or OllamaClient()
        self.model = model or config.EMBEDDING_MODEL
        self._dimension: Optional[int] = None

    @property
    def dimension(self) -> Optional[int]:
        """Embedding dimension, known after the first successful call."""
        return self._dimension

    async def embed(self, text: str) -> Vector:
        if not text or not text.strip():
            raise CapabilityError("Cannot embed empty text")

        vector = await self.client.embeddings(prompt=text, model=self.model)

        if self._dimension is None:
            self._dimension = len(vector)
            logger.info("embedding_dimension_detected", model=self.model, dimension=self._dimension)
        elif len(vector) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(vector))

        return vector

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        # Sequential on purpose: the embedding server is rate limited externally
        return [await self.embed(text) for text in texts]


class OllamaGenerator:
    """Generator backed by an Ollama chat model."""

    def __init__(
        self,
        client: OllamaClient = None,
        model: str = None,
        temperature: Optional[float] = 0.2,
    ):
        self.client = client or OllamaClient()
        self.model = model or config.CHAT_MODEL
        self.temperature = temperature

    @staticmethod
    def build_prompt(question: str, context: str) -> str:
        return (
            "Based on the following context, answer the question.\n\n"
            f"Context:\n{context}\n\n"
            f"Question: {question}\n\n"
            "Answer:"
        )

    async def generate(self, question: str, context: str) -> str:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self.build_prompt(question, context)},
        ]
        return await self.client.chat(
            messages, model=self.model, temperature=self.temperature
        )
