from datetime import timedelta

import pytest

from semantic_memory.core.errors import ValidationError
from semantic_memory.domain.models import Memory, RankingWeights, SimilarityCandidate, utc_now
from semantic_memory.services.ranking import RankingEngine

NOW = utc_now()
SIMILARITY_ONLY = RankingWeights(similarity=1, recency=0, frequency=0, importance=0)
RECENCY_ONLY = RankingWeights(similarity=0, recency=1, frequency=0, importance=0)


def candidate(
    memory_id: str = "m1",
    similarity: float = 0.8,
    age_days: float = 0.0,
    access_count: int = 0,
    **fields,
) -> SimilarityCandidate:
    memory = Memory(
        id=memory_id,
        conversation_id="c1",
        content=f"memory {memory_id}",
        embedding=[1.0, 0.0],
        embedding_model="m",
        created_at=NOW - timedelta(days=age_days),
        access_count=access_count,
        **fields,
    )
    return SimilarityCandidate(memory=memory, distance=1 - similarity, similarity=similarity)


def test_recency_half_life():
    ranking = RankingEngine(half_life_days=30)
    assert ranking.recency(NOW, NOW) == 1.0
    assert ranking.recency(NOW - timedelta(days=30), NOW) == pytest.approx(0.5)
    assert ranking.recency(NOW - timedelta(days=60), NOW) == pytest.approx(0.25)
    # Clock skew never pushes recency above 1
    assert ranking.recency(NOW + timedelta(days=1), NOW) == 1.0


def test_frequency_saturates():
    ranking = RankingEngine(frequency_saturation=100)
    assert ranking.frequency(0) == 0.0
    assert ranking.frequency(99) == pytest.approx(1.0)
    assert ranking.frequency(10_000) == 1.0


def test_more_accesses_never_lower_the_score():
    ranking = RankingEngine()
    scores = [ranking.rank([candidate(access_count=count)], now=NOW)[0].score for count in range(0, 300, 7)]
    assert scores == sorted(scores)


def test_older_memories_never_score_higher():
    ranking = RankingEngine()
    scores = [ranking.rank([candidate(age_days=age)], now=NOW)[0].score for age in range(0, 365, 15)]
    assert scores == sorted(scores, reverse=True)


def test_importance_from_metadata_or_tag():
    ranking = RankingEngine()
    assert ranking.importance(candidate(metadata={"important": True}).memory) == 1.0
    assert ranking.importance(candidate(tags=["important"]).memory) == 1.0
    assert ranking.importance(candidate(metadata={"important": 0.4}).memory) == 0.4
    assert ranking.importance(candidate(metadata={"important": False}).memory) == 0.0
    assert ranking.importance(candidate().memory) == 0.0


def test_composite_uses_default_weights():
    ranking = RankingEngine()
    ranked = ranking.rank([candidate(similarity=0.5, metadata={"important": True})], now=NOW)[0]

    assert ranked.breakdown.recency == 1.0
    assert ranked.score == pytest.approx(0.4 * 0.5 + 0.3 * 1.0 + 0.0 + 0.1 * 1.0)


def test_ties_prefer_newer_then_lower_id():
    ranking = RankingEngine(weights=SIMILARITY_ONLY)
    ranked = ranking.rank(
        [
            candidate("b", age_days=1),
            candidate("c", age_days=0),
            candidate("a", age_days=0),
        ],
        now=NOW,
    )
    assert [r.id for r in ranked] == ["a", "c", "b"]


def test_weights_are_normalised():
    weights = RankingWeights(similarity=2, recency=1, frequency=1, importance=0).normalized()
    assert weights.similarity == pytest.approx(0.5)
    assert weights.recency + weights.frequency == pytest.approx(0.5)


@pytest.mark.parametrize(
    "weights",
    [
        RankingWeights(similarity=0, recency=0, frequency=0, importance=0),
        RankingWeights(similarity=-1, recency=1, frequency=1, importance=0),
    ],
)
def test_invalid_weights_are_rejected(weights):
    with pytest.raises(ValidationError):
        RankingEngine().rank([candidate()], now=NOW, weights=weights)


def test_override_weights_change_the_order():
    similar_but_old = candidate("old", similarity=0.9, age_days=300)
    fresh_but_weak = candidate("fresh", similarity=0.4, age_days=0)
    ranking = RankingEngine()

    by_similarity = ranking.rank([similar_but_old, fresh_but_weak], now=NOW, weights=SIMILARITY_ONLY)
    by_recency = ranking.rank([similar_but_old, fresh_but_weak], now=NOW, weights=RECENCY_ONLY)

    assert by_similarity[0].id == "old"
    assert by_recency[0].id == "fresh"


def test_rank_does_not_mutate_candidates():
    item = candidate(access_count=3)
    RankingEngine().rank([item], now=NOW)
    assert item.memory.access_count == 3
    assert item.memory.last_accessed_at is None


def test_relevance_decays_from_last_access():
    ranking = RankingEngine()
    recent = candidate(age_days=200, last_accessed_at=NOW).memory
    stale = candidate(age_days=200).memory
    assert ranking.relevance(recent, NOW) > ranking.relevance(stale, NOW)
