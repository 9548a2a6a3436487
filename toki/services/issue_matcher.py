"""
Issue matching.

IssueMatcher scores candidate issues from explicit issue-ID mentions in the
activity signals plus a keyword overlap heuristic. SmartIssueMatcher replaces
the heuristic with embedding similarity against the cached issue candidates.
"""

import enum
import uuid
from dataclasses import dataclass, field
from pathlib import PurePath

from toki.core.logging import get_logger
from toki.db.models import IssueCandidate
from toki.db.store import Store
from toki.services.embeddings import EmbeddingService, cosine_similarity
from toki.services.issue_ids import extract_issue_ids

logger = get_logger(__name__)

BRANCH_WEIGHT = 0.9
URL_WEIGHT = 0.8
COMMIT_WEIGHT = 0.7
FILE_PATH_WEIGHT = 0.5
WINDOW_TITLE_WEIGHT = 0.4
ASSIGNED_WEIGHT = 0.3


@dataclass
class ActivitySignals:
    """What the user was doing, as seen by the tracker."""

    recent_commits: list[str] = field(default_factory=list)
    edited_files: list[str] = field(default_factory=list)
    browser_urls: list[str] = field(default_factory=list)
    window_titles: list[str] = field(default_factory=list)
    git_branch: str | None = None

    def keyword_text(self) -> str:
        return " ".join(
            [" ".join(self.edited_files), " ".join(self.recent_commits), " ".join(self.window_titles)]
        ).lower()

    def context_text(self) -> str:
        """Compact description of the activity for embedding."""
        parts: list[str] = []
        if self.git_branch:
            parts.append(f"Branch: {self.git_branch}")
        parts.extend(f"Commit: {commit}" for commit in self.recent_commits[:3])
        for path in self.edited_files[:5]:
            name = PurePath(path).name
            if name:
                parts.append(f"File: {name}")
        for url in self.browser_urls[:3]:
            tail = url.rstrip().rsplit("/", 1)[-1]
            if len(tail) > 3:
                parts.append(f"URL: {tail}")
        for title in self.window_titles[:5]:
            title = title.strip()
            if title and "Untitled" not in title:
                parts.append(f"Activity: {title}")
        return "\n".join(parts) if parts else "Software development work"


@dataclass
class CandidateIssue:
    external_id: str
    title: str
    description: str | None = None
    status: str = "backlog"
    labels: list[str] = field(default_factory=list)
    is_assigned_to_user: bool = False

    @classmethod
    def from_issue_candidate(cls, candidate: IssueCandidate, user: str | None = None) -> "CandidateIssue":
        assigned = bool(user and candidate.assignee and candidate.assignee.lower() == user.lower())
        return cls(
            external_id=candidate.external_id,
            title=candidate.title,
            description=candidate.description,
            status=candidate.status,
            labels=list(candidate.labels or []),
            is_assigned_to_user=assigned,
        )


class MatchReasonKind(enum.StrEnum):
    BRANCH_NAME = "branch_name"
    COMMIT_MESSAGE = "commit_message"
    BROWSER_URL = "browser_url"
    FILE_PATH = "file_path"
    WINDOW_TITLE = "window_title"
    ASSIGNED = "assigned"
    SEMANTIC_SIMILARITY = "semantic_similarity"


@dataclass(frozen=True)
class MatchReason:
    kind: MatchReasonKind
    text: str | None = None
    value: float | None = None

    @classmethod
    def branch_name(cls) -> "MatchReason":
        return cls(MatchReasonKind.BRANCH_NAME)

    @classmethod
    def commit_message(cls, message: str) -> "MatchReason":
        return cls(MatchReasonKind.COMMIT_MESSAGE, text=message)

    @classmethod
    def browser_url(cls, url: str) -> "MatchReason":
        return cls(MatchReasonKind.BROWSER_URL, text=url)

    @classmethod
    def file_path(cls, path: str) -> "MatchReason":
        return cls(MatchReasonKind.FILE_PATH, text=path)

    @classmethod
    def window_title(cls) -> "MatchReason":
        return cls(MatchReasonKind.WINDOW_TITLE)

    @classmethod
    def assigned(cls) -> "MatchReason":
        return cls(MatchReasonKind.ASSIGNED)

    @classmethod
    def semantic_similarity(cls, value: float) -> "MatchReason":
        return cls(MatchReasonKind.SEMANTIC_SIMILARITY, value=value)

    def label(self) -> str:
        if self.kind == MatchReasonKind.SEMANTIC_SIMILARITY:
            return f"Semantic ({(self.value or 0.0):.0%})"
        return {
            MatchReasonKind.BRANCH_NAME: "Git branch",
            MatchReasonKind.COMMIT_MESSAGE: "Commit message",
            MatchReasonKind.BROWSER_URL: "Browser URL",
            MatchReasonKind.FILE_PATH: "File path",
            MatchReasonKind.WINDOW_TITLE: "Window title",
            MatchReasonKind.ASSIGNED: "Assigned",
        }[self.kind]


def format_reasons(reasons: list[MatchReason]) -> str:
    return ", ".join(reason.label() for reason in reasons)


@dataclass
class IssueMatch:
    issue_id: str
    confidence: float
    reasons: list[MatchReason] = field(default_factory=list)


def keyword_overlap(signals: ActivitySignals, candidate: CandidateIssue) -> float:
    """Share of the issue's keywords found in the signal text; labels count double."""
    issue_text = f"{candidate.title} {candidate.description or ''}".lower()
    keywords = [word for word in issue_text.split() if len(word) > 3]
    signal_text = signals.keyword_text()

    matches = sum(1 for keyword in keywords if keyword in signal_text)
    matches += sum(2 for label in candidate.labels if label and label.lower() in signal_text)
    return matches / max(len(keywords), 1)


class IssueMatcher:
    """Explicit-ID and keyword scoring; no external services."""

    def _score(
        self,
        signals: ActivitySignals,
        candidate: CandidateIssue,
        semantic_threshold: float,
        semantic_weight: float,
    ) -> tuple[float, list[MatchReason]]:
        issue_id = candidate.external_id.upper()
        score = 0.0
        reasons: list[MatchReason] = []

        if signals.git_branch and issue_id in extract_issue_ids(signals.git_branch):
            score += BRANCH_WEIGHT
            reasons.append(MatchReason.branch_name())
        for url in signals.browser_urls:
            if issue_id in extract_issue_ids(url):
                score += URL_WEIGHT
                reasons.append(MatchReason.browser_url(url))
        for commit in signals.recent_commits:
            if issue_id in extract_issue_ids(commit):
                score += COMMIT_WEIGHT
                reasons.append(MatchReason.commit_message(commit))
        for path in signals.edited_files:
            if issue_id in extract_issue_ids(path):
                score += FILE_PATH_WEIGHT
                reasons.append(MatchReason.file_path(path))
        for title in signals.window_titles:
            if issue_id in extract_issue_ids(title):
                score += WINDOW_TITLE_WEIGHT
                reasons.append(MatchReason.window_title())
        if candidate.is_assigned_to_user:
            score += ASSIGNED_WEIGHT
            reasons.append(MatchReason.assigned())

        overlap = keyword_overlap(signals, candidate)
        if overlap > semantic_threshold:
            score += overlap * semantic_weight
            reasons.append(MatchReason.semantic_similarity(overlap))

        return score, reasons

    def find_best_match(self, signals: ActivitySignals, candidates: list[CandidateIssue]) -> IssueMatch | None:
        """Highest-scoring candidate, or None when nothing scores above zero."""
        best: IssueMatch | None = None
        best_score = 0.0
        for candidate in candidates:
            score, reasons = self._score(signals, candidate, semantic_threshold=0.3, semantic_weight=0.5)
            if score > best_score:
                best_score = score
                best = IssueMatch(candidate.external_id.upper(), min(score, 1.0), reasons)
        return best

    def suggest_issues(
        self,
        signals: ActivitySignals,
        candidates: list[CandidateIssue],
        max_suggestions: int = 5,
    ) -> list[IssueMatch]:
        """Up to ``max_suggestions`` candidates by score; ties keep input order."""
        scored: list[tuple[float, IssueMatch]] = []
        for candidate in candidates:
            score, reasons = self._score(signals, candidate, semantic_threshold=0.2, semantic_weight=0.4)
            if score > 0:
                scored.append((score, IssueMatch(candidate.external_id.upper(), min(score, 1.0), reasons)))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [match for _, match in scored[:max_suggestions]]


def _status_boost(status: str) -> float:
    status = status.lower()
    if status in ("in_progress", "in progress", "started"):
        return 0.15
    if status in ("todo", "backlog"):
        return 0.05
    return 0.0


def _semantic_score(similarity: float) -> float:
    if similarity > 0.7:
        return 0.70
    if similarity > 0.5:
        return similarity * 0.65
    if similarity > 0.3:
        return similarity * 0.5
    return 0.0


class SmartIssueMatcher:
    """Hybrid matcher over a project's active issue candidates."""

    def __init__(self, store: Store, embedding_service: EmbeddingService):
        self.store = store
        self.embedding_service = embedding_service

    async def find_best_matches(
        self,
        signals: ActivitySignals,
        project_id: uuid.UUID,
        max_results: int = 3,
    ) -> list[IssueMatch]:
        candidates = await self.store.get_active_issue_candidates(project_id)
        if not candidates:
            logger.debug("No issue candidates for project", extra={"project_id": str(project_id)})
            return []

        context_embedding: list[float] | None = None
        if any(c.embedding for c in candidates):
            context_embedding = await self.embedding_service.generate_embedding(signals.context_text())

        branch_ids = extract_issue_ids(signals.git_branch or "")
        scored: list[tuple[float, IssueMatch]] = []

        for candidate in candidates:
            issue_id = candidate.external_id.upper()
            score = 0.0
            reasons: list[MatchReason] = []

            if issue_id in branch_ids:
                score += 0.95
                reasons.append(MatchReason.branch_name())

            commit = next((c for c in signals.recent_commits if issue_id in extract_issue_ids(c)), None)
            if commit is not None:
                score += 0.85
                reasons.append(MatchReason.commit_message(commit))

            url = next((u for u in signals.browser_urls if issue_id in extract_issue_ids(u)), None)
            if url is not None:
                score += 0.80
                reasons.append(MatchReason.browser_url(url))

            if context_embedding is not None and candidate.embedding:
                similarity = cosine_similarity(context_embedding, candidate.embedding)
                semantic = _semantic_score(similarity)
                if semantic > 0:
                    score += semantic
                    reasons.append(MatchReason.semantic_similarity(similarity))

            score += _status_boost(candidate.status)

            if score > 0:
                scored.append((score, IssueMatch(issue_id, min(score, 1.0), reasons)))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [match for _, match in scored[:max_results]]
