"""Tests for the Ollama client and the capabilities built on it."""
import json

import httpx
import pytest

from docqa.errors import CapabilityError, DimensionMismatchError
from docqa.llm_client import OllamaClient
from docqa.rag.capabilities import (
    SYSTEM_PROMPT,
    Embedder,
    Generator,
    OllamaEmbedder,
    OllamaGenerator,
)


class Recorder:
    """MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        # Fresh copy so a queued response can be served more than once
        return httpx.Response(
            response.status_code, content=response.content, headers=response.headers
        )

    def payload(self, i: int = -1) -> dict:
        return json.loads(self.requests[i].content)


def make_client(handler, max_retries=2) -> OllamaClient:
    return OllamaClient(
        base_url="http://ollama.test",
        max_retries=max_retries,
        backoff=0,
        transport=httpx.MockTransport(handler),
    )


def chat_response(content="Blue."):
    return httpx.Response(200, json={"message": {"role": "assistant", "content": content}})


async def test_chat_sends_non_streaming_request():
    handler = Recorder(chat_response("The sky is blue."))
    client = make_client(handler)

    content = await client.chat([{"role": "user", "content": "hi"}], model="m", temperature=0.1)

    assert content == "The sky is blue."
    assert handler.requests[0].url.path == "/api/chat"
    payload = handler.payload()
    assert payload["stream"] is False
    assert payload["model"] == "m"
    assert payload["options"] == {"temperature": 0.1}


async def test_transient_status_is_retried():
    handler = Recorder(httpx.Response(503), httpx.Response(502), chat_response())
    client = make_client(handler)

    assert await client.chat([{"role": "user", "content": "hi"}]) == "Blue."
    assert len(handler.requests) == 3


async def test_connection_errors_are_retried_then_raised():
    handler = Recorder(httpx.ConnectError("connection refused"))
    client = make_client(handler, max_retries=1)

    with pytest.raises(CapabilityError) as exc_info:
        await client.embeddings("text")

    assert len(handler.requests) == 2
    assert exc_info.value.rate_limited is False


async def test_rate_limit_is_flagged():
    handler = Recorder(httpx.Response(429))
    client = make_client(handler)

    with pytest.raises(CapabilityError) as exc_info:
        await client.chat([{"role": "user", "content": "hi"}])

    assert exc_info.value.rate_limited is True
    assert len(handler.requests) == 3


async def test_client_error_is_not_retried():
    handler = Recorder(httpx.Response(400, json={"error": "bad model"}))
    client = make_client(handler)

    with pytest.raises(CapabilityError):
        await client.chat([{"role": "user", "content": "hi"}])

    assert len(handler.requests) == 1


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"message": {"content": "   "}}),
        httpx.Response(200, json={"done": True}),
    ],
)
async def test_malformed_chat_response(response):
    client = make_client(Recorder(response))

    with pytest.raises(CapabilityError):
        await client.chat([{"role": "user", "content": "hi"}])


async def test_embeddings():
    handler = Recorder(httpx.Response(200, json={"embedding": [0.5, 1, -2]}))
    client = make_client(handler)

    assert await client.embeddings("hello", model="e") == [0.5, 1.0, -2.0]
    assert handler.payload() == {"model": "e", "prompt": "hello"}


@pytest.mark.parametrize("embedding", [[], None, ["x", "y"]])
async def test_malformed_embedding(embedding):
    client = make_client(Recorder(httpx.Response(200, json={"embedding": embedding})))

    with pytest.raises(CapabilityError):
        await client.embeddings("hello")


async def test_embedder_detects_dimension():
    handler = Recorder(
        httpx.Response(200, json={"embedding": [1.0, 0.0, 0.0]}),
        httpx.Response(200, json={"embedding": [0.0, 1.0, 0.0]}),
    )
    embedder = OllamaEmbedder(client=make_client(handler), model="e")

    assert embedder.dimension is None
    vectors = await embedder.embed_batch(["one", "two"])

    assert vectors == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
    assert embedder.dimension == 3
    assert isinstance(embedder, Embedder)


async def test_embedder_rejects_changed_dimension():
    handler = Recorder(
        httpx.Response(200, json={"embedding": [1.0, 0.0, 0.0]}),
        httpx.Response(200, json={"embedding": [1.0, 0.0]}),
    )
    embedder = OllamaEmbedder(client=make_client(handler))
    await embedder.embed("one")

    with pytest.raises(DimensionMismatchError):
        await embedder.embed("two")


async def test_embedder_rejects_empty_text():
    handler = Recorder(httpx.Response(200, json={"embedding": [1.0]}))
    embedder = OllamaEmbedder(client=make_client(handler))

    with pytest.raises(CapabilityError):
        await embedder.embed("   ")

    assert handler.requests == []


async def test_generator_grounds_prompt_on_context():
    handler = Recorder(chat_response("Blue."))
    generator = OllamaGenerator(client=make_client(handler), model="g")

    assert await generator.generate("What color is the sky?", "The sky is blue.") == "Blue."

    messages = handler.payload()["messages"]
    assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert "Context:\nThe sky is blue." in messages[1]["content"]
    assert "Question: What color is the sky?" in messages[1]["content"]
    assert isinstance(generator, Generator)
