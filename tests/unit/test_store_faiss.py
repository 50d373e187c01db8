"""Tests for the FAISS-backed collection."""
import json

import faiss
import numpy as np
import pytest

from docqa.errors import BackendUnavailable, DimensionMismatchError
from docqa.rag.models import Chunk, IndexMode
from docqa.rag.store_faiss import FaissCollection, normalize_rows
from docqa.rag.vector_index import VectorIndex

NAME = "test_docs"


async def make_collection(root, rows=None):
    collection = FaissCollection(root_dir=root)
    await collection.ensure_collection(NAME)
    if rows:
        ids, vectors, documents = zip(*rows)
        await collection.add(
            list(ids),
            list(vectors),
            list(documents),
            [{"chunk_id": f"{i}:0"} for i in ids],
        )
    return collection


ROWS = [
    ("a", [1.0, 0.0], "east"),
    ("b", [0.0, 1.0], "north"),
    ("c", [1.0, 1.0], "north-east"),
]


def test_normalize_rows_keeps_zero_rows():
    normalized = normalize_rows(np.array([[3.0, 4.0], [0.0, 0.0]]))

    assert normalized[0] == pytest.approx([0.6, 0.8])
    assert list(normalized[1]) == [0.0, 0.0]


async def test_new_collection_is_empty(tmp_path):
    collection = await make_collection(tmp_path)

    assert await collection.count() == 0
    assert len(await collection.query([1.0, 0.0], 3)) == 0


async def test_query_orders_by_cosine_distance(tmp_path):
    collection = await make_collection(tmp_path, ROWS)

    result = await collection.query([2.0, 0.0], 3)

    assert result.ids == ["a", "c", "b"]
    assert result.documents == ["east", "north-east", "north"]
    assert result.distances == pytest.approx([0.0, 1 - 2 ** -0.5, 1.0], abs=1e-6)
    assert result.metadatas[0] == {"chunk_id": "a:0"}


async def test_query_never_returns_more_than_stored(tmp_path):
    collection = await make_collection(tmp_path, ROWS)

    assert len(await collection.query([1.0, 0.0], 10)) == 3


async def test_collection_persists_across_instances(tmp_path):
    await make_collection(tmp_path, ROWS)

    reloaded = await make_collection(tmp_path)

    assert await reloaded.count() == 3
    assert reloaded.dimension == 2
    assert (await reloaded.query([0.0, 1.0], 1)).ids == ["b"]


async def test_dimension_mismatch_rejected(tmp_path):
    collection = await make_collection(tmp_path, ROWS)

    with pytest.raises(DimensionMismatchError):
        await collection.add(["d"], [[1.0, 0.0, 0.0]], ["up"], [{}])


async def test_misaligned_rows_rejected(tmp_path):
    collection = await make_collection(tmp_path)

    with pytest.raises(ValueError):
        await collection.add(["d", "e"], [[1.0, 0.0]], ["up"], [{}])


async def test_corrupt_files_raise_backend_unavailable(tmp_path):
    directory = tmp_path / NAME
    directory.mkdir()
    (directory / "vectors.index").write_bytes(b"garbage")
    (directory / "metadata.json").write_text("{", encoding="utf-8")

    with pytest.raises(BackendUnavailable):
        await make_collection(tmp_path)


async def test_inconsistent_sidecar_raises_backend_unavailable(tmp_path):
    await make_collection(tmp_path, ROWS)
    metadata_path = tmp_path / NAME / "metadata.json"
    sidecar = json.loads(metadata_path.read_text(encoding="utf-8"))
    sidecar["ids"] = sidecar["ids"][:1]
    metadata_path.write_text(json.dumps(sidecar), encoding="utf-8")

    with pytest.raises(BackendUnavailable):
        await make_collection(tmp_path)


async def test_delete_removes_files(tmp_path):
    collection = await make_collection(tmp_path, ROWS)

    await collection.delete(NAME)
    await collection.delete(NAME)

    assert not (tmp_path / NAME).exists()
    await collection.ensure_collection(NAME)
    assert await collection.count() == 0


async def test_used_before_ensure_raises(tmp_path):
    with pytest.raises(BackendUnavailable):
        await FaissCollection(root_dir=tmp_path).count()


async def test_index_over_faiss_round_trip(tmp_path, embedder):
    chunks = [
        Chunk(id="notes:0", text="apple pie", metadata={"document_id": "notes", "chunk_index": 0}),
        Chunk(id="notes:1", text="cherry tart", metadata={"document_id": "notes", "chunk_index": 1}),
    ]
    index = VectorIndex(
        embedder=embedder,
        collection=FaissCollection(root_dir=tmp_path),
        collection_name=NAME,
    )
    await index.add(chunks)

    reopened = VectorIndex(
        embedder=embedder,
        collection=FaissCollection(root_dir=tmp_path),
        collection_name=NAME,
    )
    results = await reopened.search("apple", 2)

    assert reopened.mode is IndexMode.DURABLE
    assert [r.chunk.id for r in results] == ["notes:0", "notes:1"]
    assert results[0].score == pytest.approx(2 ** -0.5, abs=1e-5)
    assert results[1].score == pytest.approx(0.0, abs=1e-5)


async def test_corrupt_store_degrades_index(tmp_path, embedder):
    directory = tmp_path / NAME
    directory.mkdir()
    (directory / "vectors.index").write_bytes(b"garbage")
    (directory / "metadata.json").write_text("{", encoding="utf-8")

    index = VectorIndex(
        embedder=embedder,
        collection=FaissCollection(root_dir=tmp_path),
        collection_name=NAME,
    )
    await index.initialize()

    assert index.mode is IndexMode.FALLBACK


async def test_failed_save_rolls_back_add(tmp_path, monkeypatch):
    collection = await make_collection(tmp_path, ROWS)

    def fail_write(index, path):
        raise RuntimeError("disk full")

    monkeypatch.setattr(faiss, "write_index", fail_write)
    with pytest.raises(BackendUnavailable):
        await collection.add(["d"], [[-1.0, 0.0]], ["west"], [{"chunk_id": "d:0"}])

    assert await collection.count() == 3
    assert len(await collection.list_metadatas()) == 3
    result = await collection.query([-1.0, 0.0], 3)
    assert "d" not in result.ids
    assert result.ids[-1] == "a"


async def test_failed_first_save_leaves_collection_empty(tmp_path, monkeypatch):
    collection = await make_collection(tmp_path)

    def fail_write(index, path):
        raise RuntimeError("disk full")

    monkeypatch.setattr(faiss, "write_index", fail_write)
    with pytest.raises(BackendUnavailable):
        await collection.add(["a"], [[1.0, 0.0]], ["east"], [{}])

    assert await collection.count() == 0
    assert collection.dimension is None
    assert not (tmp_path / NAME / "vectors.index").exists()


async def test_list_metadatas(tmp_path):
    collection = await make_collection(tmp_path, ROWS)

    assert await collection.list_metadatas() == [
        {"chunk_id": "a:0"},
        {"chunk_id": "b:0"},
        {"chunk_id": "c:0"},
    ]
