"""Sentence-aware text chunking with overlap for the RAG pipeline.

Sizes are measured in characters to avoid tokenizer dependencies. Sentence
detection is a deliberately simple heuristic: a sentence ends at ``.``,
``!`` or ``?`` followed by whitespace or end of text, or at a paragraph
break. Abbreviations ("e.g. this") and some decimals may split early.
"""
import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from docqa import config
from docqa.errors import ValidationError
from docqa.rag.models import Chunk

logger = structlog.get_logger()

PARAGRAPH_BREAK = re.compile(r"\n[ \t\f\v]*\n")
WHITESPACE = re.compile(r"\s+")
SENTENCE_BREAK = re.compile(r"(?<=[.!?]) ")

SCALAR_TYPES = (str, int, float, bool)


def split_paragraphs(text: str) -> List[str]:
    """Normalize line endings and whitespace, keeping paragraph breaks.

    Args:
        text: Raw document text

    Returns:
        Non-empty paragraphs with inner whitespace collapsed to single spaces
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = []
    for block in PARAGRAPH_BREAK.split(text):
        block = WHITESPACE.sub(" ", block).strip()
        if block:
            paragraphs.append(block)
    return paragraphs


def normalize_text(text: str) -> str:
    """Whitespace-normalized form of a document (paragraphs joined by a space)."""
    return " ".join(split_paragraphs(text))


def split_sentences(text: str) -> List[str]:
    """Split text into sentences using terminal punctuation and paragraphs."""
    sentences = []
    for paragraph in split_paragraphs(text):
        sentences.extend(s for s in SENTENCE_BREAK.split(paragraph) if s)
    return sentences


def _joined_length(sentences: List[str]) -> int:
    if not sentences:
        return 0
    return sum(len(s) for s in sentences) + len(sentences) - 1


@dataclass
class _Draft:
    sentences: List[str] = field(default_factory=list)
    # Leading sentences carried over from the previous chunk
    overlap_count: int = 0

    @property
    def length(self) -> int:
        return _joined_length(self.sentences)


class SentenceChunker:
    """Greedy sentence packer with sentence-granular overlap."""

    def __init__(
        self,
        target_length: int = None,
        overlap: int = None,
        min_fraction: float = None,
    ):
        """Initialize the chunker.

        Args:
            target_length: Maximum chunk length in characters (default from config)
            overlap: Maximum overlap between consecutive chunks in characters
                (default from config)
            min_fraction: Chunks shorter than this fraction of target_length
                are merged into their predecessor when possible

        Raises:
            ValidationError: If the size parameters are inconsistent
        """
        self.target_length = config.CHUNK_SIZE if target_length is None else target_length
        self.overlap = config.CHUNK_OVERLAP if overlap is None else overlap
        self.min_fraction = (
            config.MIN_CHUNK_FRACTION if min_fraction is None else min_fraction
        )

        if self.target_length <= 0:
            raise ValidationError(
                f"Chunk size must be positive, got {self.target_length}"
            )
        if self.overlap < 0 or self.overlap >= self.target_length:
            raise ValidationError(
                f"Overlap ({self.overlap}) must be in [0, chunk size "
                f"({self.target_length}))"
            )
        if not 0.0 <= self.min_fraction < 1.0:
            raise ValidationError(
                f"Minimum chunk fraction must be in [0, 1), got {self.min_fraction}"
            )

        self.min_length = max(1, int(self.target_length * self.min_fraction))

        logger.debug(
            "chunker_initialized",
            target_length=self.target_length,
            overlap=self.overlap,
            min_length=self.min_length,
        )

    def chunk(
        self, text: str, metadata: Optional[Dict[str, Any]] = None
    ) -> List[Chunk]:
        """Split a document into overlapping, size-bounded chunks.

        Args:
            text: Raw document text
            metadata: Source metadata (document_id, filename, ...). Non-scalar
                values are dropped.

        Returns:
            Ordered list of Chunk objects; empty for blank input
        """
        if not text or not text.strip():
            return []

        sentences = split_sentences(text)
        if not sentences:
            return []

        drafts = self._merge_small(self._pack(sentences))

        base = {
            key: value
            for key, value in (metadata or {}).items()
            if isinstance(value, SCALAR_TYPES)
        }
        document_id = str(base.get("document_id") or self._content_id(sentences))
        base["document_id"] = document_id
        created_at = datetime.now(timezone.utc).isoformat()

        chunks = []
        for ordinal, draft in enumerate(drafts):
            content = " ".join(draft.sentences)
            chunks.append(
                Chunk(
                    id=f"{document_id}:{ordinal}",
                    text=content,
                    metadata={
                        **base,
                        "chunk_index": ordinal,
                        "char_count": len(content),
                        "sentence_count": len(draft.sentences),
                        "overlap_sentences": draft.overlap_count,
                        "created_at": created_at,
                    },
                )
            )

        logger.info(
            "text_chunked",
            document_id=document_id,
            sentence_count=len(sentences),
            **self.get_chunk_stats(chunks),
        )

        return chunks

    def _pack(self, sentences: List[str]) -> List[_Draft]:
        drafts = []
        current = _Draft()

        for sentence in sentences:
            if (
                current.sentences
                and _joined_length(current.sentences + [sentence]) > self.target_length
            ):
                drafts.append(current)
                seed = self._overlap_seed(current.sentences)
                while seed and _joined_length(seed + [sentence]) > self.target_length:
                    seed = seed[1:]
                current = _Draft(seed + [sentence], overlap_count=len(seed))
            else:
                # An oversized sentence lands here alone and stays whole
                current.sentences.append(sentence)

        if current.sentences:
            drafts.append(current)

        return drafts

    def _overlap_seed(self, sentences: List[str]) -> List[str]:
        """Largest run of trailing sentences whose joined length fits the overlap."""
        seed: List[str] = []
        for sentence in reversed(sentences):
            if _joined_length([sentence] + seed) > self.overlap:
                break
            seed.insert(0, sentence)
        return seed

    def _merge_small(self, drafts: List[_Draft]) -> List[_Draft]:
        merged: List[_Draft] = []

        for draft in drafts:
            if merged and draft.length < self.min_length:
                previous = merged[-1]
                # The overlap prefix already closes the previous chunk
                candidate = previous.sentences + draft.sentences[draft.overlap_count:]
                if _joined_length(candidate) <= self.target_length:
                    merged[-1] = _Draft(candidate, previous.overlap_count)
                    continue
            merged.append(draft)

        return merged

    @staticmethod
    def _content_id(sentences: List[str]) -> str:
        digest = hashlib.sha1(" ".join(sentences).encode("utf-8")).hexdigest()
        return f"doc-{digest[:12]}"

    def get_chunk_stats(self, chunks: List[Chunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of Chunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(c.text) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "target_length": self.target_length,
            "overlap": self.overlap,
        }


def chunk_text(
    text: str,
    target_length: int,
    overlap: int,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Chunk]:
    """Chunk text with explicit size parameters (convenience function).

    Args:
        text: Text to chunk
        target_length: Maximum chunk length in characters
        overlap: Maximum overlap between consecutive chunks in characters
        metadata: Optional source metadata

    Returns:
        List of Chunk objects
    """
    return SentenceChunker(target_length=target_length, overlap=overlap).chunk(
        text, metadata
    )
