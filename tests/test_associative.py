"""Tests for associative recall and the failover vector index."""

from unittest.mock import MagicMock

import pytest

from temporal_memory.errors import BackendUnavailableError, EmbeddingError
from temporal_memory.event_log import DEGRADED, EventLog
from temporal_memory.memory.associative import (
    AssociativeRecall,
    EmotionalFilter,
    EpisodePayload,
    FailoverIndex,
    hybrid_score,
)
from temporal_memory.storage import VectorHit, VectorPoint, point_id

from conftest import AxisEmbedder, FakeClock


class BrokenEmbedder:
    dim = 4

    def embed(self, text):
        raise EmbeddingError("model offline")


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def recall(store, events):
    index = FailoverIndex("eps", AxisEmbedder.dim, events=events)
    return AssociativeRecall(AxisEmbedder(), index, events=events, exists=store.__contains__)


def _add(store, recall, content, **kwargs):
    episode = store.store(content, **kwargs)
    recall.embed(episode)
    return episode


def test_hybrid_score_weights():
    assert hybrid_score(1.0, {"significance": 1, "resonance": 1, "urgency": 1}) == pytest.approx(1.0)
    assert hybrid_score(0.5, {}) == pytest.approx(0.3)
    assert hybrid_score(0.0, {"urgency": 1.0}) == pytest.approx(0.05)


def test_payload_round_trip(store):
    episode = store.store("x", context=["a"], type="insight", emotional={"resonance": 0.4})
    payload = EpisodePayload.from_payload(EpisodePayload.from_episode(episode).to_payload())
    assert payload.episode_id == episode.id
    assert payload.episode_type == "insight"
    assert payload.context == ["a"]
    assert payload.emotional.resonance == pytest.approx(0.4)


def test_search_ranks_by_hybrid_score(store, recall):
    plain = _add(store, recall, "alpha")
    weighty = _add(store, recall, "alpha beta", emotional={"significance": 0.9})
    _add(store, recall, "gamma")

    results = recall.search("alpha", top_k=5)
    assert [r.episode_id for r in results] == [weighty.id, plain.id]
    assert results[1].vector_score == pytest.approx(1.0)
    assert results[0].vector_score == pytest.approx(2 ** -0.5)
    assert results[0].score == pytest.approx(0.6 * 2 ** -0.5 + 0.25 * 0.9)
    assert len(recall.search("alpha", top_k=1)) == 1


def test_min_score_applies_to_raw_similarity(store, recall):
    _add(store, recall, "alpha", emotional={"significance": 1.0, "resonance": 1.0})
    assert recall.search("gamma") == []


def test_emotional_filter(store, recall):
    _add(store, recall, "alpha")
    weighty = _add(store, recall, "alpha beta", emotional={"significance": 0.9})
    results = recall.search("alpha", emotional_filter=EmotionalFilter(min_significance=0.5))
    assert [r.episode_id for r in results] == [weighty.id]


def test_search_by_episode_excludes_itself(store, recall):
    a = _add(store, recall, "alpha")
    b = _add(store, recall, "alpha beta")
    results = recall.search_by_episode(a.id)
    assert [r.episode_id for r in results] == [b.id]
    assert recall.search_by_episode("ep-unknown") == []


def test_chain_search_walks_hops_without_duplicates(store, recall):
    a = _add(store, recall, "alpha")
    b = _add(store, recall, "alpha beta")
    c = _add(store, recall, "beta gamma")
    d = _add(store, recall, "gamma delta")

    results = recall.chain_search("alpha", depth=3, branch_factor=2)
    hops = {r.episode_id: r.hop_depth for r in results}
    assert hops == {a.id: 1, b.id: 1, c.id: 2, d.id: 3}
    assert len(results) == len(hops)

    shallow = recall.chain_search("alpha", depth=2, branch_factor=2)
    assert {r.episode_id for r in shallow} == {a.id, b.id, c.id}
    assert all(1 <= r.hop_depth <= 2 for r in shallow)
    assert recall.chain_search("alpha", depth=0) == []


def test_chain_search_respects_result_cap(store, recall):
    for _ in range(5):
        _add(store, recall, "alpha")
    assert len(recall.chain_search("alpha", depth=2, branch_factor=5, max_results=3)) == 3


def test_removed_episodes_are_not_returned(store, recall):
    a = _add(store, recall, "alpha")
    b = _add(store, recall, "alpha")
    store._remove(b.id)
    assert [r.episode_id for r in recall.search("alpha")] == [a.id]
    recall.forget([a.id])
    assert recall.has_vector(a.id) is False
    assert recall.search("alpha") == []


def test_embedding_failure_degrades(store, events):
    recall = AssociativeRecall(BrokenEmbedder(), FailoverIndex("eps", 4), events=events)
    episode = store.store("alpha")
    assert recall.embed(episode) is None
    assert recall.search("alpha") == []
    assert [e.payload["component"] for e in events.query(DEGRADED)] == ["embedding", "embedding"]


def _remote():
    remote = MagicMock()
    remote.search.return_value = []
    remote.retrieve.return_value = []
    return remote


def test_failover_serves_local_and_backs_off(events):
    clock = FakeClock(start=1000.0)
    remote = _remote()
    index = FailoverIndex("eps", 2, remote=remote, retry_base_sec=5, retry_max_sec=20,
                          events=events, clock=clock)
    index.upsert([VectorPoint(1, [1.0, 0.0], {"episode_id": "a"})])
    remote.upsert.assert_called_once()

    remote.search.side_effect = BackendUnavailableError("down")
    hits = index.search([1.0, 0.0], 5, 0.1)
    assert [h.id for h in hits] == [1]
    assert index.failures == 1
    assert index.remote_available is False

    index.search([1.0, 0.0], 5, 0.1)
    assert remote.search.call_count == 1

    for delay in (5, 10, 20, 20):
        clock.advance(delay - 1)
        assert index.remote_available is False
        clock.advance(1)
        assert index.remote_available is True
        index.search([1.0, 0.0], 5, 0.1)
    assert index.failures == 5
    assert events.query(DEGRADED)[-1].payload["component"] == "vector_backend"


def test_failover_recovers_and_replays_missed_writes():
    clock = FakeClock(start=1000.0)
    remote = _remote()
    index = FailoverIndex("eps", 2, remote=remote, retry_base_sec=5, clock=clock)

    remote.upsert.side_effect = BackendUnavailableError("down")
    index.upsert([VectorPoint(1, [1.0, 0.0], {"episode_id": "a"})])
    index.upsert([VectorPoint(2, [0.0, 1.0], {"episode_id": "b"})])
    index.delete([2])
    assert index.count() == 1
    assert remote.upsert.call_count == 1

    remote.upsert.side_effect = None
    remote.search.return_value = [VectorHit(1, 0.99, {"episode_id": "a"})]
    clock.advance(5)
    hits = index.search([1.0, 0.0], 5, 0.1)

    assert hits[0].score == 0.99
    assert remote.delete.call_args[0] == ("eps", [2])
    replayed = remote.upsert.call_args[0][1]
    assert [p.id for p in replayed] == [1]
    assert index.failures == 0


def test_vector_for_falls_back_to_remote():
    remote = _remote()
    remote.retrieve.return_value = [VectorPoint(9, [0.5, 0.5], {})]
    index = FailoverIndex("eps", 2, remote=remote)
    assert index.vector_for(9) == [0.5, 0.5]
    assert index.vector_for(point_id("ep-x")) == [0.5, 0.5]


@pytest.mark.parametrize("error", [ConnectionError("refused"), TimeoutError("timed out"), RuntimeError("bad response")])
def test_failover_treats_any_remote_error_as_unavailable(error):
    clock = FakeClock(start=1000.0)
    remote = _remote()
    index = FailoverIndex("eps", 2, remote=remote, clock=clock)
    index.upsert([VectorPoint(1, [1.0, 0.0], {"episode_id": "a"})])

    remote.search.side_effect = error
    hits = index.search([1.0, 0.0], 5, 0.1)
    assert [h.id for h in hits] == [1]
    assert index.failures == 1

    remote.upsert.side_effect = error
    clock.advance(10)
    index.upsert([VectorPoint(2, [0.0, 1.0], {"episode_id": "b"})])
    assert index.count() == 2
    assert index.failures == 2


def test_successful_upsert_clears_failures():
    clock = FakeClock(start=1000.0)
    remote = _remote()
    index = FailoverIndex("eps", 2, remote=remote, retry_base_sec=5, clock=clock)

    remote.search.side_effect = TimeoutError("timed out")
    index.search([1.0, 0.0], 5, 0.1)
    assert index.failures == 1

    clock.advance(5)
    index.upsert([VectorPoint(1, [1.0, 0.0], {"episode_id": "a"})])
    remote.upsert.assert_called_once()
    assert index.failures == 0
    assert index.remote_available is True
