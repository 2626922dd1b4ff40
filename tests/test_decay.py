"""Tests for the forgetting-curve decay model."""

import math

import pytest

from temporal_memory.memory.decay import (
    STAGES,
    DecayModel,
    DecayProfile,
    EmotionalWeight,
    TemporalRecord,
)

from conftest import HOUR, T0


def test_standard_profile_halves_after_one_day(decay):
    record = decay.create_record(DecayProfile.STANDARD, now=T0)
    assert record.stage.name == "SENSORY"
    assert record.strength == 1.0
    assert decay.compute_strength(record, T0 + 24 * HOUR) == pytest.approx(0.5, abs=1e-6)


def test_significance_stretches_half_life(decay):
    record = decay.create_record(DecayProfile.STANDARD, significance=0.5, now=T0)
    assert record.emotional.boost == pytest.approx(1.25)
    assert decay.effective_half_life(record) == pytest.approx(30 * HOUR)
    assert decay.compute_strength(record, T0 + 30 * HOUR) == pytest.approx(0.5, abs=1e-6)


@pytest.mark.parametrize("profile", [DecayProfile.STANDARD, DecayProfile.RESILIENT, DecayProfile.FRAGILE])
def test_strength_never_rises_without_a_touch(decay, profile):
    record = decay.create_record(profile, significance=0.3, urgency=0.8, now=T0)
    previous = 1.0
    for hours in (0.5, 1, 2, 6, 24, 24 * 7, 24 * 60):
        current = decay.compute_strength(record, T0 + hours * HOUR)
        assert current <= previous
        previous = current


def test_compute_strength_does_not_mutate(decay):
    record = decay.create_record(now=T0)
    decay.compute_strength(record, T0 + 48 * HOUR)
    assert record.strength == 1.0
    assert record.last_interaction_at == T0


def test_immortal_never_decays_or_prunes(decay):
    record = decay.create_record(DecayProfile.IMMORTAL, now=T0)
    far = T0 + 10_000 * 24 * HOUR
    assert decay.compute_strength(record, far) == 1.0
    assert decay.should_prune(record, far) is False
    assert math.isinf(decay.diagnose(record, far).time_to_forget_sec)


def test_recall_boost_from_point_three(decay):
    record = decay.create_record(now=T0)
    record.strength = 0.3
    decay.on_recall(record, now=T0)
    assert record.strength == pytest.approx(0.405)
    assert record.recall_count == 1


def test_recall_never_lowers_decayed_strength(decay):
    record = decay.create_record(DecayProfile.FRAGILE, now=T0)
    now = T0
    for step in (0.5, 3, 10, 1, 40):
        now += step * HOUR
        before = decay.compute_strength(record, now)
        decay.on_recall(record, now=now)
        assert record.strength >= before
        assert record.last_interaction_at == now


def test_stage_promotion_thresholds(decay):
    record = decay.create_record(now=T0)
    expected = {1: "SHORT_TERM", 3: "WORKING", 7: "LONG_TERM", 15: "PERMANENT"}
    seen_index = 0
    for n in range(1, 21):
        decay.on_recall(record, now=T0)
        assert record.stage_index >= seen_index
        seen_index = record.stage_index
        if n in expected:
            assert record.stage.name == expected[n]
    assert record.stage.name == "PERMANENT"


def test_acceleration_factor_lowers_thresholds(clock):
    model = DecayModel(acceleration_factor=2.0, clock=clock)
    record = model.create_record()
    model.on_recall(record)
    assert record.stage.name == "SHORT_TERM"
    model.on_recall(record)
    assert record.stage.name == "WORKING"


def test_dream_consolidation_adds_flat_boost_and_three_recalls(decay):
    record = decay.create_record(now=T0)
    decay_at = T0 + 24 * HOUR
    decay.on_dream_consolidation(record, boost=0.3, now=decay_at)
    assert record.strength == pytest.approx(0.8)
    assert record.recall_count == 3
    assert record.stage.name == "WORKING"
    decay.on_dream_consolidation(record, boost=0.3, now=decay_at)
    assert record.strength == 1.0


def test_should_prune_matches_floor(decay):
    record = decay.create_record(DecayProfile.FRAGILE, now=T0)
    for hours in (1, 5, 10, 13, 14, 20, 40):
        now = T0 + hours * HOUR
        assert decay.should_prune(record, now) == (decay.compute_strength(record, now) <= decay.min_strength)
    assert decay.should_prune(record, T0 + 40 * HOUR) is True


def test_categorize_partitions_by_strength(decay):
    fresh = decay.create_record(now=T0)
    weak = decay.create_record(now=T0 - 48 * HOUR)
    gone = decay.create_record(DecayProfile.FRAGILE, now=T0 - 48 * HOUR)
    buckets = decay.categorize([fresh, weak, gone], now=T0)
    assert buckets.active == [fresh]
    assert buckets.weakening == [weak]
    assert buckets.forgotten == [gone]


def test_diagnose_inverts_the_exponential(decay):
    record = decay.create_record(now=T0)
    diag = decay.diagnose(record, T0)
    assert diag.stage == "SENSORY"
    assert diag.effective_half_life_sec == pytest.approx(24 * HOUR)
    expected = 24 * HOUR / math.log(2) * math.log(1.0 / decay.min_strength)
    assert diag.time_to_forget_sec == pytest.approx(expected)
    assert decay.compute_strength(record, T0 + expected) == pytest.approx(decay.min_strength)


def test_emotional_fields_are_clamped():
    weight = EmotionalWeight(significance=2.0, urgency=-1.0, resonance=0.5)
    assert (weight.significance, weight.urgency, weight.resonance) == (1.0, 0.0, 0.5)


def test_unknown_profile_rejected(decay):
    with pytest.raises(ValueError):
        decay.create_record("eternal")


def test_record_restores_immortal_half_life(decay):
    record = decay.create_record(DecayProfile.IMMORTAL, significance=0.4, now=T0)
    data = record.to_dict()
    assert data["half_life_sec"] is None
    restored = TemporalRecord.from_dict(data)
    assert math.isinf(restored.half_life_sec)
    assert restored.emotional == record.emotional
    assert restored.stage_index == 0
    assert len(STAGES) == 5


def test_diagnose_reports_recalls_to_next_stage_and_age(decay):
    record = decay.create_record(now=T0)
    diag = decay.diagnose(record, T0 + 2 * HOUR)
    assert diag.recalls_to_next_stage == 1
    assert diag.age_sec == pytest.approx(2 * HOUR)

    decay.on_recall(record, now=T0 + 3 * HOUR)
    diag = decay.diagnose(record, T0 + 5 * HOUR)
    assert diag.stage == "SHORT_TERM"
    assert diag.recalls_to_next_stage == 2
    assert diag.age_sec == pytest.approx(5 * HOUR)

    for _ in range(20):
        decay.on_recall(record, now=T0 + 5 * HOUR)
    assert decay.diagnose(record, T0 + 5 * HOUR).recalls_to_next_stage == 0


def test_recalls_to_next_stage_honours_acceleration(clock):
    model = DecayModel(acceleration_factor=2.0, clock=clock)
    record = model.create_record()
    model.on_recall(record)
    assert record.stage.name == "SHORT_TERM"
    assert model.recalls_to_next_stage(record) == 1
