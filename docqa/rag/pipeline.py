"""Retrieval pipeline: ingest documents and answer questions over them.

Orchestrates:
- Document chunking
- Indexing through the VectorIndex
- Top-k retrieval and context assembly
- Grounded answer generation with a best-effort fallback
"""
import asyncio
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import structlog

from docqa import config
from docqa.errors import DocQAError, EmptyDocumentError, ValidationError
from docqa.rag.capabilities import Generator
from docqa.rag.chunker import SentenceChunker
from docqa.rag.documents import discover_documents, parse_document, read_document
from docqa.rag.models import (
    Answer,
    AnswerStatus,
    DocumentSummary,
    IndexStats,
    IngestReport,
    IngestResult,
    SearchResult,
)
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()

NO_INFORMATION_ANSWER = "No relevant information found in the knowledge base."
CONTEXT_SEPARATOR = "\n\n"


def generation_failed_answer(passage_count: int) -> str:
    noun = "passage" if passage_count == 1 else "passages"
    return (
        f"Found {passage_count} relevant {noun} but could not generate a response. "
        "Please try again later."
    )


class IngestObserver(Protocol):
    """Receives per-file progress during batch ingestion."""

    def on_document(
        self,
        current: int,
        total: int,
        path: Path,
        result: Optional[IngestResult],
        error: Optional[Exception],
    ) -> None: ...


class RetrievalPipeline:
    """Ingests documents into a vector index and answers questions over it."""

    def __init__(
        self,
        chunker: SentenceChunker,
        index: VectorIndex,
        generator: Generator,
        max_k: int = None,
        default_k: int = None,
        generate_timeout: float = None,
    ):
        self.chunker = chunker
        self.index = index
        self.generator = generator
        self.max_k = max_k or config.MAX_TOP_K
        self.default_k = default_k or config.RETRIEVAL_TOP_K
        self.generate_timeout = generate_timeout or config.REQUEST_TIMEOUT

    async def ingest(
        self, text: str, metadata: Optional[Dict[str, Any]] = None
    ) -> IngestResult:
        """Chunk a document and add its chunks to the index.

        Args:
            text: Raw document text
            metadata: Source metadata (filename, document_id, ...)

        Returns:
            IngestResult with the document id and chunk count

        Raises:
            EmptyDocumentError: If the document has no content after normalization
        """
        metadata = dict(metadata or {})
        document_id = str(metadata.get("document_id") or uuid.uuid4().hex)
        metadata["document_id"] = document_id

        chunks = self.chunker.chunk(text or "", metadata)
        if not chunks:
            logger.warning("no_chunks_created", document_id=document_id)
            raise EmptyDocumentError("Document has no content to index")

        await self.index.add(chunks)

        logger.info(
            "document_ingested",
            document_id=document_id,
            filename=metadata.get("filename"),
            chunk_count=len(chunks),
        )
        return IngestResult(document_id=document_id, chunk_count=len(chunks))

    async def ingest_content(self, content: str, filename: str) -> IngestResult:
        """Ingest uploaded file content (frontmatter-aware for markdown)."""
        document = parse_document(content, filename=filename)
        return await self.ingest(document.text, document.metadata)

    async def ingest_file(self, path: Path) -> IngestResult:
        """Read and ingest a single file."""
        document = read_document(path)
        document.metadata.setdefault("source_path", str(path))
        return await self.ingest(document.text, document.metadata)

    async def ingest_paths(
        self,
        paths: Sequence[Path],
        observer: Optional[IngestObserver] = None,
    ) -> IngestReport:
        """Ingest files and directories, continuing past per-file failures.

        Args:
            paths: Files or directories (searched recursively)
            observer: Optional progress observer

        Returns:
            IngestReport with processed/failed counts
        """
        files = discover_documents(list(paths))
        report = IngestReport()

        for current, path in enumerate(files, 1):
            result = None
            error: Optional[Exception] = None
            try:
                result = await self.ingest_file(path)
                report.files_processed += 1
                report.chunks_created += result.chunk_count
            except (DocQAError, OSError) as e:
                error = e
                report.files_failed += 1
                report.failures[str(path)] = str(e)
                logger.error(
                    "file_ingestion_failed",
                    path=str(path),
                    error=str(e),
                    error_type=type(e).__name__,
                )

            if observer is not None:
                observer.on_document(current, len(files), path, result, error)

        logger.info("ingest_paths_completed", **report.to_dict())
        return report

    def clamp_k(self, k: Optional[int]) -> int:
        if k is None:
            return self.default_k
        return max(1, min(int(k), self.max_k))

    async def retrieve(self, question: str, k: Optional[int] = None) -> List[SearchResult]:
        if not question or not question.strip():
            raise ValidationError("Query is required and must be a non-empty string")
        return await self.index.search(question.strip(), self.clamp_k(k))

    async def answer(self, question: str, k: Optional[int] = None) -> Answer:
        """Answer a question from the indexed documents.

        Args:
            question: Natural-language question
            k: Number of passages to retrieve (clamped into [1, max_k])

        Returns:
            Answer with text, distinct source document ids and context passages

        Raises:
            ValidationError: If the question is empty
            CapabilityError: If the query cannot be embedded
        """
        results = await self.retrieve(question, k)

        if not results:
            logger.info("no_relevant_context_found", question_preview=question[:100])
            return Answer(
                answer=NO_INFORMATION_ANSWER,
                sources=[],
                context=[],
                status=AnswerStatus.NO_RESULTS,
            )

        context = [r.chunk.text for r in results]
        sources: List[str] = []
        for r in results:
            document_id = r.chunk.document_id
            if document_id is not None and document_id not in sources:
                sources.append(document_id)
        distances = [r.distance for r in results]

        try:
            async with asyncio.timeout(self.generate_timeout):
                text = await self.generator.generate(
                    question.strip(), CONTEXT_SEPARATOR.join(context)
                )
            status = AnswerStatus.ANSWERED
        except Exception as e:
            # Retrieval succeeded; report it even though generation did not
            logger.error(
                "answer_generation_failed",
                error=str(e),
                error_type=type(e).__name__,
                rate_limited=getattr(e, "rate_limited", False),
                passages=len(results),
            )
            text = generation_failed_answer(len(results))
            status = AnswerStatus.GENERATION_FAILED

        logger.info(
            "question_answered",
            status=status.value,
            passages=len(results),
            sources=len(sources),
        )
        return Answer(
            answer=text,
            sources=sources,
            context=context,
            status=status,
            distances=distances,
        )

    async def stats(self) -> IndexStats:
        return await self.index.get_stats()

    async def documents(self) -> List[DocumentSummary]:
        """Documents currently in the index, with filename and chunk count."""
        return await self.index.list_documents()

    async def reset(self) -> None:
        await self.index.reset()
