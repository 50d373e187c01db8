"""Chroma server collection accessed over its REST API."""
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog

from docqa import config
from docqa.errors import BackendUnavailable
from docqa.rag.models import QueryResult, Vector

logger = structlog.get_logger()


class ChromaHttpCollection:
    """Durable collection hosted by a remote Chroma server."""

    backend_name = "chroma"

    def __init__(
        self,
        base_url: str = None,
        api_prefix: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Chroma client.

        Args:
            base_url: Chroma server URL (default from config.CHROMA_URL)
            api_prefix: REST API prefix (default from config.CHROMA_API_PREFIX)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        base_url = base_url or config.CHROMA_URL
        if not base_url.startswith("http"):
            base_url = f"http://{base_url}"
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix if api_prefix is not None else config.CHROMA_API_PREFIX
        self.timeout = timeout or config.BACKEND_TIMEOUT
        self._transport = transport

        self.name: Optional[str] = None
        self._collection_id: Optional[str] = None

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        url = f"{self.base_url}{self.api_prefix}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, url, json=payload)
                response.raise_for_status()
                return response.json() if response.content else None
        except httpx.HTTPStatusError as e:
            logger.error(
                "chroma_http_error",
                method=method,
                path=path,
                status_code=e.response.status_code,
            )
            raise BackendUnavailable(
                f"Chroma {method} {path} failed with status {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "chroma_request_failed",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BackendUnavailable(f"Chroma {method} {path} failed: {e}") from e

    def _collection_path(self, suffix: str) -> str:
        if self._collection_id is None:
            raise BackendUnavailable("Chroma collection used before ensure_collection()")
        return f"/collections/{self._collection_id}{suffix}"

    async def ensure_collection(self, name: str) -> None:
        data = await self._request(
            "POST",
            "/collections",
            {
                "name": name,
                "metadata": {"hnsw:space": "cosine", "description": "RAG documents"},
                "get_or_create": True,
            },
        )
        try:
            self._collection_id = str(data["id"])
        except (KeyError, TypeError) as e:
            raise BackendUnavailable("Malformed Chroma collection response") from e

        self.name = name
        logger.info("chroma_collection_ready", collection=name, collection_id=self._collection_id)

    async def add(
        self,
        ids: Sequence[str],
        vectors: Sequence[Vector],
        documents: Sequence[str],
        metadatas: Sequence[Dict[str, Any]],
    ) -> None:
        if not ids:
            return
        await self._request(
            "POST",
            self._collection_path("/add"),
            {
                "ids": list(ids),
                "embeddings": [list(v) for v in vectors],
                "documents": list(documents),
                "metadatas": [dict(m) for m in metadatas],
            },
        )
        logger.info("vectors_added", collection=self.name, count=len(ids))

    async def query(self, vector: Vector, k: int) -> QueryResult:
        data = await self._request(
            "POST",
            self._collection_path("/query"),
            {
                "query_embeddings": [list(vector)],
                "n_results": k,
                "include": ["documents", "metadatas", "distances"],
            },
        )
        try:
            ids = list(data["ids"][0])
            documents = list(data["documents"][0])
            metadatas: List[Dict[str, Any]] = [dict(m or {}) for m in data["metadatas"][0]]
            distances = [float(d) for d in data["distances"][0]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise BackendUnavailable("Malformed Chroma query response") from e

        if not (len(ids) == len(documents) == len(metadatas) == len(distances)):
            raise BackendUnavailable("Malformed Chroma query response: ragged result lists")

        return QueryResult(ids=ids, documents=documents, metadatas=metadatas, distances=distances)

    async def count(self) -> int:
        data = await self._request("GET", self._collection_path("/count"))
        if isinstance(data, bool) or not isinstance(data, int):
            raise BackendUnavailable("Malformed Chroma count response")
        return data

    async def list_metadatas(self) -> List[Dict[str, Any]]:
        data = await self._request(
            "POST", self._collection_path("/get"), {"include": ["metadatas"]}
        )
        try:
            return [dict(m or {}) for m in data["metadatas"]]
        except (KeyError, TypeError, ValueError) as e:
            raise BackendUnavailable("Malformed Chroma get response") from e

    async def delete(self, name: str) -> None:
        await self._request("DELETE", f"/collections/{name}")
        if name == self.name:
            self._collection_id = None
        logger.info("chroma_collection_deleted", collection=name)
