"""Tests for heuristic time estimation."""

from datetime import timedelta

import pytest

from toki.db.models import Complexity, IssueCandidate
from toki.services.time_estimator import (
    EstimationMethod,
    SimilarIssue,
    TimeBreakdown,
    TimeEstimator,
    estimate_from_complexity,
    estimate_from_similar,
    format_duration,
)


class TestComplexityEstimates:
    """Test the fixed complexity table."""

    def test_missing_complexity_is_moderate(self):
        estimate = estimate_from_complexity(None)

        assert estimate.estimated_seconds == 2 * 3600
        assert estimate.low_seconds == 3600
        assert estimate.high_seconds == 4 * 3600
        assert estimate.confidence == 0.5
        assert estimate.method is EstimationMethod.COMPLEXITY_BASED

    def test_epic_range_is_wider(self):
        estimate = estimate_from_complexity(Complexity.EPIC)

        assert estimate.estimated_seconds == 20 * 3600
        assert estimate.high_seconds == 50 * 3600

    def test_breakdown(self):
        assert TimeBreakdown.from_total(1000) == TimeBreakdown(600, 300, 100)

    @pytest.mark.parametrize("value,expected", [("5", Complexity.COMPLEX), ("Simple", Complexity.SIMPLE), ("huge", None)])
    def test_complexity_parse(self, value, expected):
        assert Complexity.parse(value) is expected


class TestSimilarEstimates:
    """Test the similarity-weighted estimate."""

    def test_identical_history(self):
        """Test equal actuals give a zero-width interval."""
        similar = [SimilarIssue("A-1", "a", 3600, 0.9), SimilarIssue("A-2", "b", 3600, 0.9)]

        estimate = estimate_from_similar(similar, None)

        assert estimate.estimated_seconds == 3600
        assert estimate.low_seconds == estimate.high_seconds == 3600
        assert estimate.confidence == pytest.approx(0.9 * 2 / 5)
        assert estimate.method is EstimationMethod.SIMILAR_ISSUES

    def test_weighted_mean_and_interval(self):
        similar = [SimilarIssue("A-1", "a", 1000, 1.0), SimilarIssue("A-2", "b", 3000, 1.0)]

        estimate = estimate_from_similar(similar, None)

        assert estimate.estimated_seconds == 2000
        # std dev 1000, so the 80% interval is +-1280
        assert estimate.low_seconds == 720
        assert estimate.high_seconds == 3280

    def test_combined_with_complexity(self):
        """Test 70% history and 30% complexity table."""
        similar = [SimilarIssue("A-1", "a", 3600, 0.9)]

        estimate = estimate_from_similar(similar, Complexity.SIMPLE)

        assert estimate.method is EstimationMethod.COMBINED
        assert estimate.estimated_seconds == pytest.approx(0.7 * 3600 + 0.3 * 1800, abs=1)

    @pytest.mark.parametrize(
        "seconds,expected",
        [(7500, "2h 5m"), (7200, "2h"), (2700, "45m"), (30, "< 1m")],
    )
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestTimeEstimator:
    """Test store-backed estimation."""

    async def track(self, store, project, external_id, seconds, embedding, base_time):
        await store.upsert_issue_candidate(
            IssueCandidate(project_id=project.id, external_id=external_id, external_system="plane",
                           title=f"Issue {external_id}", embedding=embedding)
        )
        item = await store.get_or_create_work_item(external_id, "plane")
        span = await store.create_activity_span("editor", "Coding", base_time, work_item_id=item.id)
        await store.finalize_activity_span(span.id, base_time + timedelta(seconds=seconds))

    async def test_estimate_from_tracked_history(self, store, base_time):
        """Test similar tracked issues drive the estimate and the issue's own time is ignored."""
        project = await store.get_or_create_project("toki", "/work/toki")
        await self.track(store, project, "TOKI-1", 3600, [1.0, 0.0], base_time)
        await self.track(store, project, "TOKI-2", 3600, [0.9, 0.1], base_time)
        await self.track(store, project, "TOKI-3", 600, [0.0, 1.0], base_time)
        await self.track(store, project, "TOKI-4", 99999, [1.0, 0.0], base_time)
        target = await store.get_issue_candidate("TOKI-4", "plane")

        estimator = TimeEstimator(store)
        similar = await estimator.find_similar_issues(target)

        assert [s.issue_id for s in similar] == ["TOKI-1", "TOKI-2"]
        estimate = await estimator.estimate_and_store(target)
        assert abs(estimate.estimated_seconds - 3600) <= 1
        assert estimate.method is EstimationMethod.SIMILAR_ISSUES
        stored = await store.get_issue_candidate("TOKI-4", "plane")
        assert stored.estimated_seconds == estimate.estimated_seconds

    async def test_no_embedding_uses_complexity(self, store):
        project = await store.get_or_create_project("toki", "/work/toki")
        candidate = await store.upsert_issue_candidate(
            IssueCandidate(project_id=project.id, external_id="TOKI-9", external_system="plane",
                           title="No vector", complexity="complex")
        )

        estimate = await TimeEstimator(store).estimate(candidate)

        assert estimate.method is EstimationMethod.COMPLEXITY_BASED
        assert estimate.estimated_seconds == 6 * 3600
        assert estimate.formatted() == "6h"
        assert estimate.formatted_range() == "3h - 12h"
