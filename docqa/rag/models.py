"""Data model for the retrieval pipeline."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

Scalar = Union[str, int, float, bool]
Vector = List[float]


@dataclass(frozen=True)
class Chunk:
    """A bounded passage of source text, the unit of indexing and retrieval."""

    id: str
    text: str
    metadata: Dict[str, Scalar] = field(default_factory=dict)

    @property
    def document_id(self) -> Optional[str]:
        return self.metadata.get("document_id")

    @property
    def ordinal(self) -> Optional[int]:
        return self.metadata.get("chunk_index")


@dataclass(frozen=True)
class IndexEntry:
    """A chunk and its embedding as held by the vector index."""

    id: str
    chunk: Chunk
    vector: Vector


@dataclass(frozen=True)
class SearchResult:
    """A single retrieved chunk with its similarity score."""

    chunk: Chunk
    score: float
    rank: int

    @property
    def distance(self) -> float:
        """Cosine distance (1 - similarity)."""
        return 1.0 - self.score


class IndexMode(str, Enum):
    """Operating mode of the vector index."""

    DURABLE = "durable"
    FALLBACK = "fallback"


@dataclass
class QueryResult:
    """Raw nearest-neighbour response from a durable collection."""

    ids: List[str]
    documents: List[str]
    metadatas: List[Dict[str, Any]]
    distances: List[float]

    def __len__(self) -> int:
        return len(self.ids)


@dataclass
class IndexStats:
    """Read-only index introspection."""

    count: int
    mode: IndexMode
    dimension: Optional[int]
    collection: str
    backend: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "mode": self.mode.value,
            "dimension": self.dimension,
            "collection": self.collection,
            "backend": self.backend,
        }


@dataclass
class DocumentSummary:
    """An indexed source document."""

    document_id: str
    filename: Optional[str] = None
    chunk_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "filename": self.filename,
            "chunk_count": self.chunk_count,
        }


class AnswerStatus(str, Enum):
    ANSWERED = "answered"
    NO_RESULTS = "no_results"
    GENERATION_FAILED = "generation_failed"


@dataclass
class Answer:
    """Answer to a question with the passages it was grounded on."""

    answer: str
    sources: List[str]
    context: List[str]
    status: AnswerStatus
    distances: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": self.sources,
            "context": self.context,
            "status": self.status.value,
            "distances": self.distances,
        }


@dataclass
class IngestResult:
    document_id: str
    chunk_count: int


@dataclass
class IngestReport:
    """Outcome of a batch ingestion run."""

    files_processed: int = 0
    files_failed: int = 0
    chunks_created: int = 0
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files_processed": self.files_processed,
            "files_failed": self.files_failed,
            "chunks_created": self.chunks_created,
            "failures": dict(self.failures),
        }
