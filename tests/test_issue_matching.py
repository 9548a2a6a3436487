"""Tests for issue-id extraction, similarity and issue matching."""

from unittest.mock import AsyncMock

import pytest

from toki.db.models import IssueCandidate
from toki.services.embeddings import cosine_similarity
from toki.services.issue_ids import extract_issue_ids, extract_issue_ids_from, first_issue_id, issue_prefix
from toki.services.issue_matcher import (
    ActivitySignals,
    CandidateIssue,
    IssueMatcher,
    MatchReason,
    MatchReasonKind,
    SmartIssueMatcher,
    format_reasons,
    keyword_overlap,
)


class TestIssueIds:
    """Test issue-id canonicalization."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("feature/TOKI-42-foo", ["TOKI-42"]),
            ("fix toki-7 and Toki-7 and ABC-1", ["TOKI-7", "ABC-1"]),
            ("A-1 is too short, ABCDEFGHIJK-3 matches its tail", ["BCDEFGHIJK-3"]),
            ("nothing here", []),
            (None, []),
        ],
    )
    def test_extract_issue_ids(self, text, expected):
        """Test ids are uppercased and deduplicated in first-seen order."""
        assert extract_issue_ids(text) == expected

    def test_extract_from_many(self):
        assert extract_issue_ids_from(["TOKI-1 x", None, "toki-1 TOKI-2"]) == ["TOKI-1", "TOKI-2"]

    def test_first_issue_and_prefix(self):
        assert first_issue_id("feat/eng-12-login") == "ENG-12"
        assert first_issue_id("main") is None
        assert issue_prefix("toki-42") == "TOKI"


class TestCosineSimilarity:
    """Test the similarity bounds."""

    def test_identical_vectors(self):
        assert cosine_similarity([0.3, -1.2, 4.0], [0.3, -1.2, 4.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    @pytest.mark.parametrize(
        "a,b",
        [
            ([0.0, 0.0], [1.0, 2.0]),
            ([1.0, 2.0], [0.0, 0.0]),
            ([1.0, 2.0], [1.0, 2.0, 3.0]),
            ([], []),
        ],
    )
    def test_degenerate_inputs_are_zero(self, a, b):
        """Test zero norms and length mismatches give 0."""
        assert cosine_similarity(a, b) == 0.0

    def test_range(self):
        value = cosine_similarity([1.0, 0.0, 2.0], [0.5, 3.0, -1.0])
        assert -1.0 <= value <= 1.0


class TestIssueMatcher:
    """Test explicit-id and keyword scoring."""

    def test_branch_and_commit_match(self):
        """Test branch and commit evidence combine and cap at 1.0."""
        signals = ActivitySignals(git_branch="feature/TOKI-42-foo", recent_commits=["TOKI-42: wip"])
        candidate = CandidateIssue(external_id="TOKI-42", title="Add foo")

        match = IssueMatcher().find_best_match(signals, [candidate])

        assert match.issue_id == "TOKI-42"
        assert match.confidence == pytest.approx(1.0)
        assert set(match.reasons) == {
            MatchReason.branch_name(),
            MatchReason.commit_message("TOKI-42: wip"),
        }

    def test_no_signal_no_match(self):
        signals = ActivitySignals(git_branch="main")

        assert IssueMatcher().find_best_match(signals, [CandidateIssue("TOKI-1", "Add foo")]) is None

    def test_best_match_prefers_stronger_evidence(self):
        """Test a URL mention beats a window title mention."""
        signals = ActivitySignals(
            browser_urls=["https://app.plane.so/acme/browse/TOKI-2/"],
            window_titles=["TOKI-1 notes"],
        )
        candidates = [CandidateIssue("TOKI-1", "One"), CandidateIssue("TOKI-2", "Two")]

        match = IssueMatcher().find_best_match(signals, candidates)

        assert match.issue_id == "TOKI-2"
        assert match.confidence == pytest.approx(0.8)

    def test_assignment_alone_scores(self):
        candidate = CandidateIssue("TOKI-9", "Quiet", is_assigned_to_user=True)

        match = IssueMatcher().find_best_match(ActivitySignals(), [candidate])

        assert match.confidence == pytest.approx(0.3)
        assert match.reasons == [MatchReason.assigned()]

    def test_keyword_overlap(self):
        """Test keywords over three characters and labels count."""
        signals = ActivitySignals(edited_files=["src/tracker/session.py"], recent_commits=["fix idle session"])
        candidate = CandidateIssue("TOKI-3", "Idle session handling", labels=["tracker"])

        # idle, session match; handling does not; the label counts twice
        assert keyword_overlap(signals, candidate) == pytest.approx(4 / 3)

    def test_suggestions_ordered_and_limited(self):
        """Test suggestions sort by score, keep ties in input order and respect the limit."""
        signals = ActivitySignals(window_titles=["TOKI-1 TOKI-2 TOKI-3"], recent_commits=["TOKI-3 done"])
        candidates = [CandidateIssue(f"TOKI-{n}", "x") for n in (1, 2, 3)]

        suggestions = IssueMatcher().suggest_issues(signals, candidates, max_suggestions=2)

        assert [s.issue_id for s in suggestions] == ["TOKI-3", "TOKI-1"]

    def test_from_issue_candidate_assignment(self):
        candidate = IssueCandidate(external_id="TOKI-5", external_system="plane", title="T",
                                   status="todo", labels=[], assignee="Dana")

        assert CandidateIssue.from_issue_candidate(candidate, user="dana").is_assigned_to_user
        assert not CandidateIssue.from_issue_candidate(candidate).is_assigned_to_user


class TestSignals:
    """Test signal text rendering."""

    def test_context_text(self):
        signals = ActivitySignals(
            git_branch="feature/TOKI-42-foo",
            recent_commits=["a", "b", "c", "d"],
            edited_files=["/work/toki/store.py"],
            browser_urls=["https://x.io/abc", "https://x.io/issues/TOKI-42"],
            window_titles=["Untitled-1", "Review - toki"],
        )

        text = signals.context_text()

        assert text.splitlines() == [
            "Branch: feature/TOKI-42-foo",
            "Commit: a",
            "Commit: b",
            "Commit: c",
            "File: store.py",
            "URL: TOKI-42",
            "Activity: Review - toki",
        ]

    def test_empty_context_text(self):
        assert ActivitySignals().context_text() == "Software development work"

    def test_format_reasons(self):
        reasons = [MatchReason.branch_name(), MatchReason.semantic_similarity(0.82)]

        assert format_reasons(reasons) == "Git branch, Semantic (82%)"
        assert reasons[1].kind is MatchReasonKind.SEMANTIC_SIMILARITY


class TestSmartIssueMatcher:
    """Test the embedding-backed matcher."""

    @pytest.fixture
    async def project(self, store):
        return await store.get_or_create_project("toki", "/work/toki")

    async def add_candidate(self, store, project, external_id, status="backlog", embedding=None):
        return await store.upsert_issue_candidate(
            IssueCandidate(project_id=project.id, external_id=external_id, external_system="plane",
                           title=f"Issue {external_id}", status=status, embedding=embedding)
        )

    async def test_branch_and_status(self, store, project):
        """Test explicit ids and status boosts without calling the embedding service."""
        await self.add_candidate(store, project, "TOKI-1", status="in_progress")
        await self.add_candidate(store, project, "TOKI-2", status="todo")
        embeddings = AsyncMock()

        matches = await SmartIssueMatcher(store, embeddings).find_best_matches(
            ActivitySignals(git_branch="feature/TOKI-1"), project.id
        )

        assert [m.issue_id for m in matches] == ["TOKI-1", "TOKI-2"]
        assert matches[0].confidence == pytest.approx(1.0)
        assert matches[1].confidence == pytest.approx(0.05)
        embeddings.generate_embedding.assert_not_called()

    async def test_semantic_similarity(self, store, project):
        """Test close embeddings add the capped semantic score."""
        await self.add_candidate(store, project, "TOKI-1", status="done", embedding=[1.0, 0.0])
        await self.add_candidate(store, project, "TOKI-2", status="review", embedding=[1.0, 0.0])
        await self.add_candidate(store, project, "TOKI-3", status="review", embedding=[0.0, 1.0])
        embeddings = AsyncMock()
        embeddings.generate_embedding.return_value = [1.0, 0.0]

        matches = await SmartIssueMatcher(store, embeddings).find_best_matches(ActivitySignals(), project.id)

        # TOKI-1 is done and never considered; TOKI-3 is orthogonal
        assert [m.issue_id for m in matches] == ["TOKI-2"]
        assert matches[0].confidence == pytest.approx(0.7)
        assert matches[0].reasons[0].kind is MatchReasonKind.SEMANTIC_SIMILARITY

    async def test_no_candidates(self, store, project):
        embeddings = AsyncMock()

        assert await SmartIssueMatcher(store, embeddings).find_best_matches(ActivitySignals(), project.id) == []
