"""Tests for the Quart HTTP surface."""
import io

import pytest
from quart.datastructures import FileStorage

from docqa.context import AppContext, build_collection
from docqa.errors import CapabilityError, ValidationError
from docqa.main import create_app
from docqa.rag.pipeline import NO_INFORMATION_ANSWER
from docqa.rag.store_faiss import FaissCollection


@pytest.fixture
def client(embedder, generator, pipeline):
    context = AppContext(
        embedder=embedder,
        generator=generator,
        index=pipeline.index,
        pipeline=pipeline,
    )
    return create_app(context).test_client()


def upload(name: str, content: bytes) -> dict:
    return {"file": FileStorage(stream=io.BytesIO(content), filename=name)}


async def test_health(client):
    response = await client.get("/api/health")

    assert response.status_code == 200
    data = await response.get_json()
    assert data["status"] == "healthy"
    assert data["configuration"]["chunk_length"] == 500


async def test_info_includes_stats(client):
    data = await (await client.get("/api/info")).get_json()

    assert data["stats"]["count"] == 0
    assert data["stats"]["mode"] == "durable"
    assert data["endpoints"]["query"] == "/api/query"


async def test_ingest_then_query(client, generator):
    response = await client.post(
        "/api/documents",
        json={"text": "The sky is blue.", "filename": "sky.txt", "metadata": {"topic": "weather"}},
    )
    assert response.status_code == 201
    created = await response.get_json()
    assert created["chunk_count"] == 1

    response = await client.post("/api/query", json={"query": "What color is the sky?", "top_k": 3})

    assert response.status_code == 200
    data = await response.get_json()
    assert data["status"] == "answered"
    assert data["context"] == ["The sky is blue."]
    assert data["sources"] == [created["document_id"]]
    assert data["query"] == "What color is the sky?"
    assert data["top_k"] == 3


async def test_query_on_empty_index(client, generator):
    response = await client.post("/api/query", json={"query": "anything"})

    data = await response.get_json()
    assert response.status_code == 200
    assert data["answer"] == NO_INFORMATION_ANSWER
    assert data["top_k"] == 5
    assert generator.calls == []


async def test_query_top_k_is_clamped(client):
    response = await client.post("/api/query", json={"query": "anything", "top_k": 500})

    assert (await response.get_json())["top_k"] == 20


@pytest.mark.parametrize(
    "body",
    [{}, {"query": "   "}, {"query": "sky", "top_k": "many"}, ["not", "an", "object"]],
)
async def test_invalid_query_is_bad_request(client, body):
    response = await client.post("/api/query", json=body)

    assert response.status_code == 400
    assert "error" in await response.get_json()


async def test_empty_document_is_bad_request(client):
    response = await client.post("/api/documents", json={"text": "  "})

    assert response.status_code == 400


async def test_upload(client):
    response = await client.post(
        "/api/upload",
        files=upload("notes.md", b"---\ntitle: Notes\n---\nThe sky is blue."),
    )

    assert response.status_code == 201
    data = await response.get_json()
    assert data["filename"] == "notes.md"
    assert data["chunk_count"] == 1


@pytest.mark.parametrize(
    "name, content",
    [("image.png", b"\x89PNG"), ("latin.txt", "café".encode("latin-1")), ("empty.txt", b"  ")],
)
async def test_rejected_uploads(client, name, content):
    response = await client.post("/api/upload", files=upload(name, content))

    assert response.status_code == 400


async def test_upload_without_file(client):
    response = await client.post("/api/upload", form={"other": "value"})

    assert response.status_code == 400


async def test_embedder_outage_is_service_unavailable(client, embedder):
    await client.post("/api/documents", json={"text": "The sky is blue."})
    embedder.fail = True

    response = await client.post("/api/query", json={"query": "sky"})

    assert response.status_code == 503


async def test_rate_limited_generator_still_answers(client, generator):
    await client.post("/api/documents", json={"text": "The sky is blue."})
    generator.error = CapabilityError("slow down", rate_limited=True)

    response = await client.post("/api/query", json={"query": "sky"})

    data = await response.get_json()
    assert response.status_code == 200
    assert data["status"] == "generation_failed"
    assert data["context"] == ["The sky is blue."]


async def test_stats_and_reset(client):
    await client.post("/api/documents", json={"text": "One. Two."})
    assert (await (await client.get("/api/stats")).get_json())["count"] == 1

    response = await client.post("/api/reset")

    assert response.status_code == 200
    assert (await (await client.get("/api/stats")).get_json())["count"] == 0


async def test_list_documents(client):
    sky = await (await client.post(
        "/api/documents", json={"text": "The sky is blue. It is clear.", "filename": "sky.txt"}
    )).get_json()
    await client.post("/api/documents", json={"text": "Grass is green."})

    response = await client.get("/api/documents")

    assert response.status_code == 200
    data = await response.get_json()
    assert data["count"] == 2
    assert data["documents"][0] == {
        "document_id": sky["document_id"],
        "filename": "sky.txt",
        "chunk_count": sky["chunk_count"],
    }
    assert data["documents"][1]["filename"] is None


async def test_unknown_route(client):
    response = await client.get("/api/nope")

    assert response.status_code == 404


def test_build_collection(tmp_path):
    assert isinstance(build_collection("faiss", tmp_path), FaissCollection)
    assert build_collection("memory") is None
    with pytest.raises(ValidationError):
        build_collection("redis")
