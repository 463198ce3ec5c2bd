"""Composite relevance ranking of similarity candidates."""

import math
from collections.abc import Iterable
from datetime import datetime

from semantic_memory.core.constants import (
    DEFAULT_HALF_LIFE_DAYS,
    IMPORTANCE_METADATA_KEY,
    IMPORTANCE_TAG,
    SECONDS_PER_DAY,
)
from semantic_memory.domain.models import (
    Memory,
    RankedMemory,
    RankingWeights,
    ScoreBreakdown,
    SimilarityCandidate,
    utc_now,
)


class RankingEngine:
    """Orders candidates by a weighted blend of four signals.

    ``score = w_sim * similarity + w_recency * recency + w_frequency * frequency
    + w_importance * importance``

    - recency halves every ``half_life_days`` of age
    - frequency is ``min(1, log(1 + access_count) / log(frequency_saturation))``
    - importance is 1 when the memory is flagged important

    Ties go to the newer memory, then to the lower id. Ranking never writes
    to the store.
    """

    def __init__(
        self,
        weights: RankingWeights | None = None,
        half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
        frequency_saturation: int = 100,
    ) -> None:
        if half_life_days <= 0:
            raise ValueError("half_life_days must be positive")
        if frequency_saturation <= 1:
            raise ValueError("frequency_saturation must be greater than 1")
        self.weights = (weights or RankingWeights()).normalized()
        self.half_life_days = half_life_days
        self.frequency_saturation = frequency_saturation

    def recency(self, created_at: datetime, now: datetime) -> float:
        age_days = (now - created_at).total_seconds() / SECONDS_PER_DAY
        if age_days <= 0:
            return 1.0
        return min(1.0, max(0.0, 0.5 ** (age_days / self.half_life_days)))

    def frequency(self, access_count: int) -> float:
        if access_count <= 0:
            return 0.0
        return min(1.0, math.log1p(access_count) / math.log(self.frequency_saturation))

    @staticmethod
    def importance(memory: Memory) -> float:
        flag = memory.metadata.get(IMPORTANCE_METADATA_KEY)
        if flag is True or IMPORTANCE_TAG in memory.tags:
            return 1.0
        if isinstance(flag, int | float) and not isinstance(flag, bool):
            return min(1.0, max(0.0, float(flag)))
        return 0.0

    def breakdown(self, candidate: SimilarityCandidate, now: datetime, weights: RankingWeights) -> ScoreBreakdown:
        memory = candidate.memory
        similarity = candidate.similarity
        recency = self.recency(memory.created_at, now)
        frequency = self.frequency(memory.access_count)
        importance = self.importance(memory)
        composite = (
            weights.similarity * similarity
            + weights.recency * recency
            + weights.frequency * frequency
            + weights.importance * importance
        )
        return ScoreBreakdown(
            similarity=similarity,
            recency=recency,
            frequency=frequency,
            importance=importance,
            composite=composite,
        )

    def rank(
        self,
        candidates: Iterable[SimilarityCandidate],
        now: datetime | None = None,
        weights: RankingWeights | None = None,
    ) -> list[RankedMemory]:
        """Score and order candidates, best first.

        Raises:
            ValidationError: If override weights are negative or all zero
        """
        now = now or utc_now()
        resolved = weights.normalized() if weights is not None else self.weights

        ranked = []
        for candidate in candidates:
            parts = self.breakdown(candidate, now, resolved)
            ranked.append(
                RankedMemory(
                    memory=candidate.memory,
                    similarity=candidate.similarity,
                    score=parts.composite,
                    breakdown=parts,
                )
            )
        ranked.sort(key=lambda item: (-item.score, -item.memory.created_at.timestamp(), item.memory.id))
        return ranked

    def relevance(self, memory: Memory, now: datetime | None = None) -> float:
        """Decayed relevance used by maintenance: recency of last use blended with frequency."""
        now = now or utc_now()
        last_used = memory.last_accessed_at or memory.created_at
        recency = self.recency(last_used, now)
        frequency = self.frequency(memory.access_count)
        total = self.weights.recency + self.weights.frequency
        if total <= 0:
            return recency
        return (self.weights.recency * recency + self.weights.frequency * frequency) / total
