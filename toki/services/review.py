"""
Review engine.

Turns a day of finalized activity spans into suggested time blocks that the
user can confirm and later push to a PM system.
"""

import enum
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from toki.core.datetime_utils import day_bounds, seconds_between
from toki.core.logging import get_logger, log_error
from toki.db.models import ActivitySpan, TimeBlock
from toki.db.store import Store
from toki.services.issue_ids import extract_issue_ids
from toki.services.issue_matcher import ActivitySignals, SmartIssueMatcher, format_reasons

logger = get_logger(__name__)

MERGE_GAP = timedelta(minutes=10)
MIN_BLOCK_DURATION = timedelta(minutes=5)
UNKNOWN_PROJECT = "unknown"


class WorkPattern(enum.StrEnum):
    SINGLE_FOCUS = "single_focus"
    MULTI_TASKING = "multi_tasking"
    EXPLORATION = "exploration"
    MAINTENANCE = "maintenance"
    CODE_REVIEW = "code_review"
    DEBUGGING = "debugging"
    MEETING = "meeting"
    DOCUMENTATION = "documentation"
    UNKNOWN = "unknown"


@dataclass
class ActivitySegment:
    """A finalized span with the context review needs."""

    start_time: datetime
    end_time: datetime
    category: str
    project_name: str | None = None
    project_id: uuid.UUID | None = None
    edited_files: list[str] = field(default_factory=list)
    git_commits: list[str] = field(default_factory=list)
    git_branch: str | None = None
    browser_urls: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> int:
        return seconds_between(self.start_time, self.end_time)


@dataclass
class SuggestedIssue:
    issue_id: str
    confidence: float
    reason: str


@dataclass
class SuggestedTimeBlock:
    start_time: datetime
    end_time: datetime
    pattern: WorkPattern
    description: str
    category: str
    project_name: str | None = None
    project_id: uuid.UUID | None = None
    issues: list[SuggestedIssue] = field(default_factory=list)
    confidence: float = 0.0
    reasoning: list[str] = field(default_factory=list)
    signals: ActivitySignals = field(default_factory=ActivitySignals)

    @property
    def duration_seconds(self) -> int:
        return seconds_between(self.start_time, self.end_time)

    @property
    def issue_ids(self) -> list[str]:
        return [issue.issue_id for issue in self.issues]


@dataclass
class DailySummary:
    date: date
    total_active_seconds: int
    classified_seconds: int
    unclassified_seconds: int
    project_breakdown: dict[str, int]
    blocks: list[SuggestedTimeBlock]


def detect_pattern(segment: ActivitySegment) -> WorkPattern:
    """Classify a segment; earlier signals win over later ones."""
    for path in segment.edited_files:
        lower = path.lower()
        if "test" in lower or "spec" in lower:
            return WorkPattern.DEBUGGING
        if "readme" in lower or "doc" in lower or "changelog" in lower:
            return WorkPattern.DOCUMENTATION

    for commit in segment.git_commits:
        lower = commit.lower()
        if "fix" in lower or "bug" in lower:
            return WorkPattern.DEBUGGING
        if "refactor" in lower or "clean" in lower:
            return WorkPattern.MAINTENANCE
        if "docs" in lower or "readme" in lower:
            return WorkPattern.DOCUMENTATION
        if "review" in lower:
            return WorkPattern.CODE_REVIEW

    for url in segment.browser_urls:
        lower = url.lower()
        if "pull" in lower or "merge" in lower:
            return WorkPattern.CODE_REVIEW
        if "issue" in lower or "ticket" in lower:
            return WorkPattern.SINGLE_FOCUS

    if len(segment.edited_files) > 5:
        return WorkPattern.MULTI_TASKING

    if segment.category == "Browser" and any(
        marker in url.lower() for url in segment.browser_urls for marker in ("stackoverflow", "docs", "learn")
    ):
        return WorkPattern.EXPLORATION
    if segment.category == "Communication":
        return WorkPattern.MEETING

    return WorkPattern.SINGLE_FOCUS


def extract_segment_issues(segment: ActivitySegment) -> list[SuggestedIssue]:
    """Issue ids from branch (0.9), commits (0.8) and URLs (0.7), first source wins."""
    issues: dict[str, SuggestedIssue] = {}
    for issue_id in extract_issue_ids(segment.git_branch):
        issues.setdefault(issue_id, SuggestedIssue(issue_id, 0.9, "Detected from Git branch"))
    for commit in segment.git_commits:
        for issue_id in extract_issue_ids(commit):
            issues.setdefault(issue_id, SuggestedIssue(issue_id, 0.8, f"From commit: {commit}"))
    for url in segment.browser_urls:
        for issue_id in extract_issue_ids(url):
            issues.setdefault(issue_id, SuggestedIssue(issue_id, 0.7, "Visited this issue page"))
    return list(issues.values())


def block_confidence(issues: list[SuggestedIssue], pattern: WorkPattern) -> float:
    if issues:
        return max(issue.confidence for issue in issues)
    if pattern in (WorkPattern.EXPLORATION, WorkPattern.MAINTENANCE, WorkPattern.DOCUMENTATION):
        return 0.6
    if pattern in (WorkPattern.MEETING, WorkPattern.CODE_REVIEW):
        return 0.7
    return 0.3


def commit_subject(message: str) -> str:
    """First line of a commit message."""
    lines = message.strip().splitlines()
    return lines[0].strip() if lines else ""


def describe(segment: ActivitySegment, pattern: WorkPattern) -> str:
    project = segment.project_name or UNKNOWN_PROJECT
    match pattern:
        case WorkPattern.SINGLE_FOCUS:
            subject = commit_subject(segment.git_commits[0]) if segment.git_commits else ""
            return subject or f"Development on {project}"
        case WorkPattern.MULTI_TASKING:
            return f"Multi-tasking - {project}"
        case WorkPattern.EXPLORATION:
            return "Exploration/Learning"
        case WorkPattern.MAINTENANCE:
            return f"{project} maintenance/refactoring"
        case WorkPattern.CODE_REVIEW:
            return "Code Review"
        case WorkPattern.DEBUGGING:
            return f"{project} debugging"
        case WorkPattern.MEETING:
            return "Meeting/Communication"
        case WorkPattern.DOCUMENTATION:
            return "Documentation"
        case _:
            return f"Working on {project}"


def _reasoning(block: SuggestedTimeBlock) -> list[str]:
    reasons = [f"Work pattern: {block.pattern.value}"]
    if block.signals.edited_files:
        reasons.append(f"Edited {len(block.signals.edited_files)} files")
    if block.signals.recent_commits:
        reasons.append(f"Made {len(block.signals.recent_commits)} commits")
    reasons.extend(f"{issue.issue_id}: {issue.reason}" for issue in block.issues)
    if not block.issues:
        reasons.append("No related issue ID detected")
    return reasons


def _absorb(block: SuggestedTimeBlock, segment: ActivitySegment) -> None:
    signals = block.signals
    signals.edited_files.extend(f for f in segment.edited_files if f not in signals.edited_files)
    signals.recent_commits.extend(c for c in segment.git_commits if c not in signals.recent_commits)
    signals.browser_urls.extend(u for u in segment.browser_urls if u not in signals.browser_urls)
    if segment.git_branch:
        signals.git_branch = signals.git_branch or segment.git_branch

    known = set(block.issue_ids)
    for issue in extract_segment_issues(segment):
        if issue.issue_id not in known:
            known.add(issue.issue_id)
            block.issues.append(issue)
    block.confidence = block_confidence(block.issues, block.pattern)


class ReviewEngine:
    """Groups segments into suggested time blocks."""

    def __init__(self, merge_gap: timedelta = MERGE_GAP, min_block_duration: timedelta = MIN_BLOCK_DURATION):
        self.merge_gap = merge_gap
        self.min_block_duration = min_block_duration

    def _new_block(self, segment: ActivitySegment, pattern: WorkPattern) -> SuggestedTimeBlock:
        block = SuggestedTimeBlock(
            start_time=segment.start_time,
            end_time=segment.end_time,
            pattern=pattern,
            description=describe(segment, pattern),
            category=segment.category,
            project_name=segment.project_name,
            project_id=segment.project_id,
        )
        _absorb(block, segment)
        return block

    def _keep(self, block: SuggestedTimeBlock) -> bool:
        return block.duration_seconds >= self.min_block_duration.total_seconds()

    def analyze(self, segments: Sequence[ActivitySegment]) -> list[SuggestedTimeBlock]:
        """Merge same-pattern segments separated by less than the merge gap."""
        blocks: list[SuggestedTimeBlock] = []
        current: SuggestedTimeBlock | None = None

        for segment in sorted(segments, key=lambda s: s.start_time):
            pattern = detect_pattern(segment)
            if (
                current is not None
                and current.pattern == pattern
                and segment.start_time - current.end_time < self.merge_gap
            ):
                current.end_time = max(current.end_time, segment.end_time)
                _absorb(current, segment)
                continue
            if current is not None:
                blocks.append(current)
            current = self._new_block(segment, pattern)

        if current is not None:
            blocks.append(current)

        kept = [block for block in blocks if self._keep(block)]
        for block in kept:
            block.reasoning = _reasoning(block)
        return kept

    def generate_daily_summary(self, day: date, segments: Sequence[ActivitySegment]) -> DailySummary:
        blocks = self.analyze(segments)
        total = sum(segment.duration_seconds for segment in segments)
        classified = sum(block.duration_seconds for block in blocks if block.issues)

        breakdown: dict[str, int] = {}
        for segment in segments:
            project = segment.project_name or UNKNOWN_PROJECT
            breakdown[project] = breakdown.get(project, 0) + segment.duration_seconds

        return DailySummary(
            date=day,
            total_active_seconds=total,
            classified_seconds=classified,
            unclassified_seconds=max(total - classified, 0),
            project_breakdown=dict(sorted(breakdown.items(), key=lambda item: item[1], reverse=True)),
            blocks=blocks,
        )


def segments_from_spans(
    spans: Sequence[ActivitySpan],
    project_names: dict[uuid.UUID, str],
) -> list[ActivitySegment]:
    """Finalized spans as review segments; open spans are skipped."""
    segments: list[ActivitySegment] = []
    for span in spans:
        if span.end_time is None:
            continue
        segments.append(
            ActivitySegment(
                start_time=span.start_time,
                end_time=span.end_time,
                category=span.category,
                project_name=project_names.get(span.project_id) if span.project_id else None,
                project_id=span.project_id,
                edited_files=span.edited_files,
                git_commits=span.git_commits,
                git_branch=span.git_branch,
                browser_urls=span.browser_urls,
            )
        )
    return segments


class ReviewService:
    """Store-backed review: load a day, suggest blocks, confirm them."""

    def __init__(
        self,
        store: Store,
        engine: ReviewEngine | None = None,
        matcher: SmartIssueMatcher | None = None,
    ):
        self.store = store
        self.engine = engine or ReviewEngine()
        self.matcher = matcher

    async def load_segments(self, day: date) -> list[ActivitySegment]:
        start, end = day_bounds(day)
        spans = await self.store.get_activity_spans(start, end)
        names = {project.id: project.name for project in await self.store.list_projects()}
        return segments_from_spans(spans, names)

    async def _enrich(self, block: SuggestedTimeBlock) -> None:
        if self.matcher is None or block.issues or block.project_id is None:
            return
        try:
            matches = await self.matcher.find_best_matches(block.signals, block.project_id, max_results=1)
        except Exception as e:
            log_error(logger, "Issue matching failed for block", error=e, extra={"block_start": str(block.start_time)})
            return
        if not matches:
            return
        best = matches[0]
        block.issues.append(SuggestedIssue(best.issue_id, best.confidence, format_reasons(best.reasons)))
        block.confidence = block_confidence(block.issues, block.pattern)
        block.reasoning = _reasoning(block)

    async def review_day(self, day: date) -> DailySummary:
        summary = self.engine.generate_daily_summary(day, await self.load_segments(day))
        for block in summary.blocks:
            await self._enrich(block)
        summary.classified_seconds = sum(b.duration_seconds for b in summary.blocks if b.issues)
        summary.unclassified_seconds = max(summary.total_active_seconds - summary.classified_seconds, 0)
        logger.info(
            "Reviewed day",
            extra={"date": day.isoformat(), "blocks": len(summary.blocks)},
        )
        return summary

    async def _resolve_work_items(self, issue_ids: list[str]) -> list[uuid.UUID]:
        resolved: list[uuid.UUID] = []
        for issue_id in issue_ids:
            candidate = await self.store.get_issue_candidate_by_external_id(issue_id)
            if candidate is not None:
                item = await self.store.get_or_create_work_item(
                    candidate.external_id, candidate.external_system, title=candidate.title
                )
            else:
                item = await self.store.get_work_item_by_external_id(issue_id)
                if item is None:
                    item = await self.store.get_or_create_work_item(issue_id, "git")
            if item.id not in resolved:
                resolved.append(item.id)
        return resolved

    async def confirm_blocks(self, blocks: date | Sequence[SuggestedTimeBlock]) -> list[TimeBlock]:
        """Persist suggestions as confirmed ``TimeBlock``s."""
        if isinstance(blocks, date):
            blocks = (await self.review_day(blocks)).blocks

        saved: list[TimeBlock] = []
        for suggestion in blocks:
            if suggestion.end_time <= suggestion.start_time:
                continue
            block = TimeBlock.ai_suggested(
                start_time=suggestion.start_time,
                end_time=suggestion.end_time,
                description=suggestion.description,
                work_item_ids=await self._resolve_work_items(suggestion.issue_ids),
                confidence=suggestion.confidence,
                project_id=suggestion.project_id,
            )
            block.category = suggestion.category
            block.tags = [suggestion.pattern.value]
            block.confirmed = True
            saved.append(await self.store.save_time_block(block))

        logger.info("Confirmed time blocks", extra={"count": len(saved)})
        return saved
