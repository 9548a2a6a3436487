"""Suggest and apply links between local projects and PM projects.

Three signals feed suggestions: browser URLs pointing at PM pages, project
name similarity, and the repository's git remote.
"""

import enum
import re
import uuid
from dataclasses import dataclass
from pathlib import Path

from toki.core.logging import get_logger, log_error
from toki.db.models import Project
from toki.db.store import Store, StoreError
from toki.integrations.base import PMProject, ProjectManagementSystem
from toki.services.git_detector import GitDetector, repo_name_from_remote

logger = get_logger(__name__)

PLANE_PROJECT_URL = re.compile(r"plane\.so/[^/]+/projects?/([a-zA-Z0-9-]+)")
URL_ISSUE_ID = re.compile(r"([A-Za-z]{2,10})-(\d+)")


class LinkReason(enum.StrEnum):
    ISSUE_PAGE_VISIT = "issue_page_visit"
    BROWSER_URL = "browser_url"
    EXACT_NAME_MATCH = "exact_name_match"
    FUZZY_NAME_MATCH = "fuzzy_name_match"
    GIT_REMOTE = "git_remote"


@dataclass(frozen=True)
class LinkSuggestion:
    local_project_id: uuid.UUID
    local_project_name: str
    pm_project_id: str
    pm_project_identifier: str
    pm_project_name: str
    confidence: float
    reason: LinkReason
    detail: str | None = None

    def describe(self) -> str:
        if self.reason == LinkReason.FUZZY_NAME_MATCH and self.detail:
            return f"Name similarity: {self.detail}"
        labels = {
            LinkReason.ISSUE_PAGE_VISIT: "Visited issue",
            LinkReason.BROWSER_URL: "Browser URL",
            LinkReason.EXACT_NAME_MATCH: "Exact name match",
            LinkReason.FUZZY_NAME_MATCH: "Name similarity",
            LinkReason.GIT_REMOTE: "Git remote",
        }
        label = labels[self.reason]
        return f"{label}: {_truncate(self.detail, 40)}" if self.detail else label


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def name_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the character sets of two names."""
    if a == b:
        return 1.0
    chars_a, chars_b = set(a), set(b)
    union = chars_a | chars_b
    if not union:
        return 0.0
    return len(chars_a & chars_b) / len(union)


def _names_match(name: str, pm: PMProject) -> bool:
    pm_name = pm.name.lower()
    pm_identifier = pm.identifier.lower()
    return (
        name == pm_name
        or name == pm_identifier
        or (bool(pm_name) and pm_name in name)
        or (bool(name) and name in pm_name)
    )


class AutoLinker:
    """Produces ranked ``LinkSuggestion``s and applies them to the store."""

    def __init__(self, store: Store, git_detector: GitDetector | None = None) -> None:
        self.store = store
        self.git_detector = git_detector or GitDetector()

    @staticmethod
    def _suggest(project: Project, pm: PMProject, confidence: float, reason: LinkReason, detail: str | None = None) -> LinkSuggestion:
        return LinkSuggestion(
            local_project_id=project.id,
            local_project_name=project.name,
            pm_project_id=pm.id,
            pm_project_identifier=pm.identifier,
            pm_project_name=pm.name,
            confidence=confidence,
            reason=reason,
            detail=detail,
        )

    async def suggest_from_browser_urls(
        self,
        urls: list[str],
        project_id: uuid.UUID,
        pm_projects: list[PMProject],
    ) -> list[LinkSuggestion]:
        project = await self.store.get_project(project_id)
        if project is None or project.is_linked:
            return []

        suggestions: list[LinkSuggestion] = []
        for url in urls:
            issue = URL_ISSUE_ID.search(url)
            if issue:
                prefix, number = issue.group(1), issue.group(2)
                pm = next((p for p in pm_projects if p.identifier.lower() == prefix.lower()), None)
                if pm is not None:
                    suggestions.append(
                        self._suggest(project, pm, 0.9, LinkReason.ISSUE_PAGE_VISIT, f"{prefix.upper()}-{number}")
                    )
                    break

            page = PLANE_PROJECT_URL.search(url)
            if page:
                ref = page.group(1)
                pm = next(
                    (p for p in pm_projects if p.id == ref or p.identifier.lower() == ref.lower()),
                    None,
                )
                if pm is not None:
                    suggestions.append(self._suggest(project, pm, 0.85, LinkReason.BROWSER_URL, url))
                    break
        return suggestions

    async def suggest_from_name_matching(self, pm_projects: list[PMProject]) -> list[LinkSuggestion]:
        """Best suggestion per unlinked local project, highest confidence first."""
        unlinked = [p for p in await self.store.list_projects() if not p.is_linked]
        suggestions: list[LinkSuggestion] = []

        for local in unlinked:
            local_name = local.name.lower()
            exact = next(
                (p for p in pm_projects if p.name.lower() == local_name or p.identifier.lower() == local_name),
                None,
            )
            if exact is not None:
                suggestions.append(self._suggest(local, exact, 0.95, LinkReason.EXACT_NAME_MATCH))
                continue

            for pm in pm_projects:
                pm_identifier = pm.identifier.lower()
                similarity = name_similarity(local_name, pm.name.lower())
                if similarity > 0.6:
                    suggestions.append(
                        self._suggest(local, pm, similarity * 0.8, LinkReason.FUZZY_NAME_MATCH, f"{similarity:.0%}")
                    )
                elif pm_identifier and (pm_identifier in local_name or local_name in pm_identifier):
                    suggestions.append(self._suggest(local, pm, 0.7, LinkReason.FUZZY_NAME_MATCH, "70%"))

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        seen: set[uuid.UUID] = set()
        deduplicated: list[LinkSuggestion] = []
        for suggestion in suggestions:
            if suggestion.local_project_id not in seen:
                seen.add(suggestion.local_project_id)
                deduplicated.append(suggestion)
        return deduplicated

    async def suggest_from_git_remote(
        self,
        project_path: str,
        pm_projects: list[PMProject],
    ) -> LinkSuggestion | None:
        remote = self.git_detector.read_remote_url(Path(project_path))
        if remote is None:
            return None
        repo_name = repo_name_from_remote(remote)
        if repo_name is None:
            return None
        repo_name = repo_name.lower()

        for pm in pm_projects:
            if _names_match(repo_name, pm):
                local = await self.store.get_project_by_path(project_path)
                if local is None:
                    return None
                return self._suggest(local, pm, 0.75, LinkReason.GIT_REMOTE, remote)
        return None

    async def apply_suggestion(self, suggestion: LinkSuggestion, system: str, workspace: str | None = None) -> None:
        await self.store.link_project_to_pm(suggestion.local_project_id, system, suggestion.pm_project_id, workspace)
        logger.info(
            "Auto-linked project",
            extra={
                "project": suggestion.local_project_name,
                "pm_project": suggestion.pm_project_identifier,
                "confidence": round(suggestion.confidence, 2),
                "reason": suggestion.describe(),
            },
        )

    async def auto_link_all(
        self,
        client: ProjectManagementSystem,
        system: str,
        workspace: str | None = None,
        min_confidence: float = 0.8,
    ) -> list[LinkSuggestion]:
        """Apply every name-based suggestion at or above ``min_confidence``."""
        pm_projects = await client.list_projects()
        applied: list[LinkSuggestion] = []
        for suggestion in await self.suggest_from_name_matching(pm_projects):
            if suggestion.confidence < min_confidence:
                continue
            try:
                await self.apply_suggestion(suggestion, system, workspace)
            except StoreError as e:
                log_error(
                    logger,
                    "Failed to auto-link project",
                    error=e,
                    extra={"project": suggestion.local_project_name},
                )
                continue
            applied.append(suggestion)
        return applied
