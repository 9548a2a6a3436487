"""
Heuristic time estimation for issues.

Estimates come from tracked time on semantically similar issues when
embeddings are available, otherwise from a fixed complexity table.
"""

import enum
from dataclasses import dataclass, field

import numpy as np

from toki.core.logging import get_logger
from toki.db.models import Complexity, IssueCandidate
from toki.db.store import Store
from toki.services.embeddings import cosine_similarity

logger = get_logger(__name__)

SIMILARITY_THRESHOLD = 0.5
MAX_SIMILAR_ISSUES = 5
Z_80 = 1.28

# complexity -> (base seconds, low %, high %)
COMPLEXITY_TABLE: dict[Complexity, tuple[int, int, int]] = {
    Complexity.TRIVIAL: (5 * 60, 50, 200),
    Complexity.SIMPLE: (30 * 60, 50, 200),
    Complexity.MODERATE: (2 * 3600, 50, 200),
    Complexity.COMPLEX: (6 * 3600, 50, 200),
    Complexity.EPIC: (20 * 3600, 50, 250),
}


class EstimationMethod(enum.StrEnum):
    SIMILAR_ISSUES = "similar_issues"
    COMPLEXITY_BASED = "complexity_based"
    COMBINED = "combined"


def format_duration(seconds: int) -> str:
    """Human duration: ``2h 5m``, ``2h``, ``45m`` or ``< 1m``."""
    hours, minutes = seconds // 3600, (seconds % 3600) // 60
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    if minutes:
        return f"{minutes}m"
    return "< 1m"


@dataclass(frozen=True)
class TimeBreakdown:
    implementation_seconds: int
    testing_seconds: int
    documentation_seconds: int

    @classmethod
    def from_total(cls, total_seconds: int) -> "TimeBreakdown":
        return cls(
            implementation_seconds=total_seconds * 60 // 100,
            testing_seconds=total_seconds * 30 // 100,
            documentation_seconds=total_seconds * 10 // 100,
        )


@dataclass(frozen=True)
class SimilarIssue:
    issue_id: str
    title: str
    actual_seconds: int
    similarity: float
    complexity: Complexity | None = None


@dataclass
class TimeEstimate:
    estimated_seconds: int
    low_seconds: int
    high_seconds: int
    confidence: float
    method: EstimationMethod
    breakdown: TimeBreakdown
    similar_issues: list[SimilarIssue] = field(default_factory=list)

    def formatted(self) -> str:
        return format_duration(self.estimated_seconds)

    def formatted_range(self) -> str:
        return f"{format_duration(self.low_seconds)} - {format_duration(self.high_seconds)}"


def estimate_from_complexity(complexity: Complexity | None) -> TimeEstimate:
    """Fixed-table estimate; a missing complexity is treated as moderate."""
    base, low_percent, high_percent = COMPLEXITY_TABLE[complexity or Complexity.MODERATE]
    return TimeEstimate(
        estimated_seconds=base,
        low_seconds=base * low_percent // 100,
        high_seconds=base * high_percent // 100,
        confidence=0.5,
        method=EstimationMethod.COMPLEXITY_BASED,
        breakdown=TimeBreakdown.from_total(base),
    )


def estimate_from_similar(similar: list[SimilarIssue], complexity: Complexity | None) -> TimeEstimate:
    """Similarity-weighted mean with an 80% interval from the weighted spread."""
    weights = np.array([s.similarity for s in similar], dtype=np.float64)
    actuals = np.array([s.actual_seconds for s in similar], dtype=np.float64)

    mean = float(np.average(actuals, weights=weights))
    std_dev = float(np.sqrt(np.average((actuals - mean) ** 2, weights=weights)))
    estimated = int(mean)
    low = int(max(mean - Z_80 * std_dev, 0.0))
    high = int(mean + Z_80 * std_dev)

    confidence = float(weights.mean()) * min(len(similar) / MAX_SIMILAR_ISSUES, 1.0)

    method = EstimationMethod.SIMILAR_ISSUES
    if complexity is not None:
        by_complexity = estimate_from_complexity(complexity).estimated_seconds
        estimated = int(0.7 * estimated + 0.3 * by_complexity)
        method = EstimationMethod.COMBINED

    return TimeEstimate(
        estimated_seconds=estimated,
        low_seconds=min(low, estimated),
        high_seconds=max(high, estimated),
        confidence=confidence,
        method=method,
        breakdown=TimeBreakdown.from_total(estimated),
        similar_issues=list(similar),
    )


class TimeEstimator:
    """Estimates issue effort from the store's tracked time."""

    def __init__(self, store: Store):
        self.store = store

    async def find_similar_issues(self, candidate: IssueCandidate) -> list[SimilarIssue]:
        if not candidate.embedding:
            return []
        time_stats = await self.store.get_issue_time_stats()
        own_id = candidate.external_id.upper()

        similar: list[SimilarIssue] = []
        for issue_id, seconds in time_stats.items():
            if issue_id == own_id:
                continue
            known = await self.store.get_issue_candidate_by_external_id(issue_id)
            if known is None or not known.embedding:
                continue
            similarity = cosine_similarity(candidate.embedding, known.embedding)
            if similarity > SIMILARITY_THRESHOLD:
                similar.append(
                    SimilarIssue(
                        issue_id=issue_id,
                        title=known.title,
                        actual_seconds=seconds,
                        similarity=similarity,
                        complexity=known.complexity_level,
                    )
                )

        similar.sort(key=lambda s: s.similarity, reverse=True)
        return similar[:MAX_SIMILAR_ISSUES]

    async def estimate(self, candidate: IssueCandidate) -> TimeEstimate:
        similar = await self.find_similar_issues(candidate)
        if similar:
            return estimate_from_similar(similar, candidate.complexity_level)
        return estimate_from_complexity(candidate.complexity_level)

    async def estimate_and_store(self, candidate: IssueCandidate) -> TimeEstimate:
        """Estimate and persist ``estimated_seconds`` on the candidate."""
        estimate = await self.estimate(candidate)
        await self.store.update_issue_estimate(candidate.id, estimate.estimated_seconds)
        logger.info(
            "Issue estimated",
            extra={
                "external_id": candidate.external_id,
                "estimate": estimate.formatted(),
                "method": estimate.method.value,
                "confidence": round(estimate.confidence, 2),
            },
        )
        return estimate
