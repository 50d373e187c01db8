"""Durable collection interface implemented by the vector backends."""
from typing import Any, Dict, List, Protocol, Sequence, runtime_checkable

from docqa.rag.models import QueryResult, Vector


@runtime_checkable
class Collection(Protocol):
    """A named, persistent store of (id, vector, document, metadata) rows.

    Implementations raise ``BackendUnavailable`` for any failure to reach or
    read the backend, and ``DimensionMismatchError`` when a vector does not
    match the dimension of the stored data.
    """

    backend_name: str

    async def ensure_collection(self, name: str) -> None: ...

    async def add(
        self,
        ids: Sequence[str],
        vectors: Sequence[Vector],
        documents: Sequence[str],
        metadatas: Sequence[Dict[str, Any]],
    ) -> None: ...

    async def query(self, vector: Vector, k: int) -> QueryResult: ...

    async def count(self) -> int: ...

    async def list_metadatas(self) -> List[Dict[str, Any]]: ...

    async def delete(self, name: str) -> None: ...
