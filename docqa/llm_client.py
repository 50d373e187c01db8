"""Ollama LLM client wrapper with error handling and bounded retries."""
import asyncio
from typing import Dict, List, Optional

import httpx
import structlog

from docqa import config
from docqa.errors import CapabilityError

logger = structlog.get_logger()

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class OllamaClient:
    """Async client for interacting with Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        max_retries: int = None,
        backoff: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.REQUEST_TIMEOUT)
            max_retries: Retries after the first attempt for transient failures
            backoff: Base delay in seconds between retries (grows linearly)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.max_retries = (
            config.CAPABILITY_MAX_RETRIES if max_retries is None else max_retries
        )
        self.backoff = backoff
        self._transport = transport

    async def _post(self, path: str, payload: Dict) -> Dict:
        """POST a JSON payload, retrying transient failures.

        Raises:
            CapabilityError: When the request fails or retries are exhausted
        """
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None
        rate_limited = False

        for attempt in range(self.max_retries + 1):
            if attempt:
                await asyncio.sleep(self.backoff * attempt)

            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.post(url, json=payload)
                    response.raise_for_status()
                    data = response.json()

                if not isinstance(data, dict):
                    raise CapabilityError(f"Malformed response from {path}")
                return data

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                logger.warning(
                    "ollama_request_retryable_error",
                    path=path,
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                last_error = e
                rate_limited = False

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                rate_limited = status_code == 429
                if status_code not in RETRYABLE_STATUS:
                    logger.error("ollama_http_error", path=path, status_code=status_code)
                    raise CapabilityError(
                        f"Ollama request to {path} failed with status {status_code}"
                    ) from e
                logger.warning(
                    "ollama_request_retryable_status",
                    path=path,
                    attempt=attempt + 1,
                    status_code=status_code,
                )
                last_error = e

            except (httpx.HTTPError, ValueError) as e:
                logger.error("ollama_request_failed", path=path, error=str(e))
                raise CapabilityError(f"Ollama request to {path} failed: {e}") from e

        logger.error(
            "ollama_retries_exhausted",
            path=path,
            attempts=self.max_retries + 1,
            rate_limited=rate_limited,
            base_url=self.base_url,
        )
        message = (
            f"Ollama rate limit hit on {path}"
            if rate_limited
            else f"Ollama unavailable at {self.base_url}: {last_error}"
        )
        raise CapabilityError(message, rate_limited=rate_limited) from last_error

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a non-streaming chat completion request to Ollama.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature (0.0-2.0)

        Returns:
            The assistant message content

        Raises:
            CapabilityError: On API errors or an empty/malformed response
        """
        model = model or config.CHAT_MODEL

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }

        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        logger.info("ollama_chat_request", model=model, message_count=len(messages))

        data = await self._post("/api/chat", payload)
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None

        if not isinstance(content, str) or not content.strip():
            raise CapabilityError("Empty response from chat model")

        logger.info("ollama_chat_response", model=model, response_length=len(content))
        return content

    async def embeddings(self, prompt: str, model: str = None) -> List[float]:
        """Generate an embedding for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Embedding vector

        Raises:
            CapabilityError: On API errors or an empty/malformed embedding
        """
        model = model or config.EMBEDDING_MODEL

        logger.debug("ollama_embedding_request", model=model, prompt_length=len(prompt))

        data = await self._post("/api/embeddings", {"model": model, "prompt": prompt})
        embedding = data.get("embedding")

        if not isinstance(embedding, list) or not embedding:
            raise CapabilityError("Empty embedding returned from Ollama")

        try:
            vector = [float(x) for x in embedding]
        except (TypeError, ValueError) as e:
            raise CapabilityError("Malformed embedding returned from Ollama") from e

        logger.debug("ollama_embedding_response", model=model, dimension=len(vector))
        return vector
