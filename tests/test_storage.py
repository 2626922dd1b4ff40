"""Tests for the local and Qdrant vector backends."""

from types import SimpleNamespace

import pytest
from qdrant_client import models as qmodels

from temporal_memory.errors import BackendUnavailableError
from temporal_memory.storage import (
    LocalVectorBackend,
    QdrantVectorBackend,
    VectorPoint,
    cosine_similarity,
    point_id,
)


@pytest.fixture
def local():
    backend = LocalVectorBackend()
    backend.ensure_collection("eps", 3)
    return backend


def test_point_id_is_stable_and_positive():
    assert point_id("ep-abc") == point_id("ep-abc")
    assert point_id("ep-abc") != point_id("ep-abd")
    assert 0 <= point_id("ep-abc") < 2 ** 48


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


def test_local_search_orders_and_thresholds(local):
    local.upsert("eps", [
        VectorPoint(1, [1.0, 0.0, 0.0], {"episode_id": "a"}),
        VectorPoint(2, [0.8, 0.6, 0.0], {"episode_id": "b"}),
        VectorPoint(3, [0.0, 0.0, 1.0], {"episode_id": "c"}),
    ])
    hits = local.search("eps", [1.0, 0.0, 0.0], limit=10, score_threshold=0.5)
    assert [h.id for h in hits] == [1, 2]
    assert hits[1].score == pytest.approx(0.8)
    assert hits[0].payload == {"episode_id": "a"}
    assert len(local.search("eps", [1.0, 0.0, 0.0], limit=1)) == 1


def test_local_upsert_replaces_and_delete_removes(local):
    local.upsert("eps", [VectorPoint(1, [1.0, 0.0, 0.0], {"v": 1})])
    local.upsert("eps", [VectorPoint(1, [0.0, 1.0, 0.0], {"v": 2})])
    assert local.count("eps") == 1
    (point,) = local.retrieve("eps", [1, 99])
    assert point.vector == [0.0, 1.0, 0.0]
    assert point.payload == {"v": 2}
    assert local.retrieve("eps", [1], with_vector=False)[0].vector is None
    local.delete("eps", [1, 99])
    assert local.count("eps") == 0


def test_local_rejects_wrong_dimension_and_metric(local):
    with pytest.raises(ValueError):
        local.upsert("eps", [VectorPoint(1, [1.0, 0.0], {})])
    with pytest.raises(ValueError):
        local.ensure_collection("other", 3, metric="euclid")
    with pytest.raises(KeyError):
        local.search("missing", [1.0, 0.0, 0.0], limit=1)


def test_qdrant_ensure_collection_creates_when_missing(mock_qdrant):
    mock_qdrant.get_collections.return_value = SimpleNamespace(collections=[SimpleNamespace(name="other")])
    backend = QdrantVectorBackend("http://qdrant:6333", client=mock_qdrant)
    backend.ensure_collection("eps", 128)
    kwargs = mock_qdrant.create_collection.call_args[1]
    assert kwargs["collection_name"] == "eps"
    assert kwargs["vectors_config"].size == 128
    assert kwargs["vectors_config"].distance == qmodels.Distance.COSINE


def test_qdrant_ensure_collection_skips_existing(mock_qdrant):
    mock_qdrant.get_collections.return_value = SimpleNamespace(collections=[SimpleNamespace(name="eps")])
    QdrantVectorBackend("http://qdrant:6333", client=mock_qdrant).ensure_collection("eps", 128)
    mock_qdrant.create_collection.assert_not_called()


def test_qdrant_upsert_builds_point_structs(mock_qdrant):
    backend = QdrantVectorBackend("http://qdrant:6333", client=mock_qdrant)
    backend.upsert("eps", [VectorPoint(7, [0.1, 0.2], {"episode_id": "a"})])
    points = mock_qdrant.upsert.call_args[1]["points"]
    assert points[0].id == 7
    assert points[0].payload == {"episode_id": "a"}
    backend.upsert("eps", [])
    assert mock_qdrant.upsert.call_count == 1


def test_qdrant_search_maps_query_points(mock_qdrant):
    mock_qdrant.query_points.return_value = SimpleNamespace(points=[
        SimpleNamespace(id=5, score=0.9, payload={"episode_id": "a"}),
        SimpleNamespace(id=6, score=0.4, payload=None),
    ])
    backend = QdrantVectorBackend("http://qdrant:6333", client=mock_qdrant)
    hits = backend.search("eps", [1.0, 0.0], limit=2, score_threshold=0.3)
    assert [(h.id, h.score) for h in hits] == [(5, 0.9), (6, 0.4)]
    assert hits[1].payload == {}
    kwargs = mock_qdrant.query_points.call_args[1]
    assert kwargs["query"] == [1.0, 0.0]
    assert kwargs["score_threshold"] == 0.3


def test_qdrant_retrieve_handles_named_vectors(mock_qdrant):
    mock_qdrant.retrieve.return_value = [
        SimpleNamespace(id=1, vector={"": [1, 2]}, payload={}),
        SimpleNamespace(id=2, vector=None, payload={"x": 1}),
    ]
    backend = QdrantVectorBackend("http://qdrant:6333", client=mock_qdrant)
    points = backend.retrieve("eps", [1, 2])
    assert points[0].vector == [1.0, 2.0]
    assert points[1].vector is None


def test_qdrant_errors_become_backend_unavailable(mock_qdrant):
    mock_qdrant.query_points.side_effect = ConnectionError("down")
    mock_qdrant.delete.side_effect = RuntimeError("down")
    backend = QdrantVectorBackend("http://qdrant:6333", client=mock_qdrant)
    with pytest.raises(BackendUnavailableError):
        backend.search("eps", [1.0], limit=1)
    with pytest.raises(BackendUnavailableError):
        backend.delete("eps", [1])
