"""Application context: the components shared by the HTTP app and scripts.

Built once at process start and passed explicitly; there are no module-level
singletons.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from docqa import config
from docqa.errors import ValidationError
from docqa.llm_client import OllamaClient
from docqa.rag.capabilities import Embedder, Generator, OllamaEmbedder, OllamaGenerator
from docqa.rag.chunker import SentenceChunker
from docqa.rag.collection import Collection
from docqa.rag.pipeline import RetrievalPipeline
from docqa.rag.store_chroma import ChromaHttpCollection
from docqa.rag.store_faiss import FaissCollection
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()


@dataclass
class AppContext:
    embedder: Embedder
    generator: Generator
    index: VectorIndex
    pipeline: RetrievalPipeline


def build_collection(backend: str = None, data_dir: Path = None) -> Optional[Collection]:
    """Create the durable collection for a backend name ("memory" gives None)."""
    backend = (backend or config.VECTOR_BACKEND).lower()

    if backend == "faiss":
        return FaissCollection(root_dir=data_dir)
    if backend == "chroma":
        return ChromaHttpCollection()
    if backend == "memory":
        return None

    raise ValidationError(
        f"Unknown vector backend '{backend}'. Expected one of: faiss, chroma, memory"
    )


async def build_context(
    embedder: Embedder = None,
    generator: Generator = None,
    collection: Optional[Collection] = None,
    backend: str = None,
) -> AppContext:
    """Wire up the pipeline from configuration.

    Args:
        embedder: Embedding capability (default: Ollama)
        generator: Generation capability (default: Ollama)
        collection: Durable collection (default: built from ``backend``)
        backend: Backend name used when ``collection`` is not given

    Returns:
        AppContext with an initialized vector index
    """
    client = OllamaClient()
    embedder = embedder or OllamaEmbedder(client=client)
    generator = generator or OllamaGenerator(client=client)
    if collection is None:
        collection = build_collection(backend)

    index = VectorIndex(embedder=embedder, collection=collection)
    await index.initialize()

    pipeline = RetrievalPipeline(
        chunker=SentenceChunker(),
        index=index,
        generator=generator,
    )

    logger.info(
        "app_context_built",
        backend=index.backend_name,
        mode=index.mode.value,
        collection=index.collection_name,
        chunk_size=pipeline.chunker.target_length,
        chunk_overlap=pipeline.chunker.overlap,
    )

    return AppContext(embedder=embedder, generator=generator, index=index, pipeline=pipeline)
