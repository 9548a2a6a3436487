"""
Issue sync service.
Pulls issues from a PM system into the local issue candidate cache and
computes missing embeddings for them.
"""

from dataclasses import dataclass, field

from toki.core.logging import get_logger, log_error
from toki.db.models import IssueCandidate, Project
from toki.db.store import Store
from toki.integrations.base import PMIssue, ProjectManagementSystem
from toki.services.embeddings import EmbeddingService

logger = get_logger(__name__)


@dataclass
class IssueSyncStats:
    """Counts for one sync run."""

    issues_synced: int = 0
    issues_updated: int = 0
    embeddings_computed: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "IssueSyncStats") -> None:
        self.issues_synced += other.issues_synced
        self.issues_updated += other.issues_updated
        self.embeddings_computed += other.embeddings_computed
        self.errors.extend(other.errors)

    def __str__(self) -> str:
        text = (
            f"Synced: {self.issues_synced}, Updated: {self.issues_updated}, "
            f"Embeddings: {self.embeddings_computed}"
        )
        if self.errors:
            text += f", Errors: {len(self.errors)}"
        return text


class IssueSyncService:
    """Mirrors PM issues into ``IssueCandidate`` rows for linked projects."""

    def __init__(self, store: Store, embedding_service: EmbeddingService | None = None):
        self.store = store
        self.embedding_service = embedding_service

    async def _fetch_all_issues(self, client: ProjectManagementSystem, pm_project_id: str) -> list[PMIssue]:
        issues: list[PMIssue] = []
        cursor: str | None = None
        while True:
            page = await client.list_issues_paginated(pm_project_id, cursor)
            issues.extend(page.results)
            if not page.next_page_results or not page.next_cursor:
                break
            cursor = page.next_cursor
        return issues

    async def sync_project_issues(self, client: ProjectManagementSystem, project: Project) -> IssueSyncStats:
        """Sync one linked project's issues.

        PM and store errors propagate; embedding failures are recorded in
        ``errors`` and the run continues.
        """
        stats = IssueSyncStats()
        if not project.pm_project_id:
            stats.errors.append(f"Project '{project.name}' has no PM project ID linked")
            return stats

        system = client.system_name()
        logger.info(
            "Syncing issues",
            extra={"project": project.name, "pm_project_id": project.pm_project_id, "system": system},
        )
        issues = await self._fetch_all_issues(client, project.pm_project_id)
        logger.debug("Fetched issues", extra={"count": len(issues), "project": project.name})

        for issue in issues:
            existing = await self.store.get_issue_candidate(issue.external_id, system)
            candidate = IssueCandidate(
                id=existing.id if existing else None,
                project_id=project.id,
                external_id=issue.external_id,
                external_system=system,
                pm_project_id=project.pm_project_id,
                source_external_ref=issue.source_external_ref,
                title=issue.title,
                description=issue.description,
                status=issue.status,
                labels=list(issue.labels),
                assignee=issue.assignee,
            )
            if existing:
                stats.issues_updated += 1
            else:
                stats.issues_synced += 1

            saved = await self.store.upsert_issue_candidate(candidate)

            if saved.embedding is None and self.embedding_service is not None:
                try:
                    embedding = await self.embedding_service.generate_embedding(saved.embedding_text())
                    await self.store.update_issue_embedding(saved.id, embedding)
                    stats.embeddings_computed += 1
                except Exception as e:
                    log_error(
                        logger,
                        "Failed to compute issue embedding",
                        error=e,
                        extra={"external_id": saved.external_id},
                    )
                    stats.errors.append(f"Failed to compute embedding for {saved.external_id}: {e}")

        logger.info("Issue sync complete", extra={"project": project.name, "stats": str(stats)})
        return stats

    async def sync_all(self, client: ProjectManagementSystem) -> IssueSyncStats:
        """Sync every linked project; a failing project is recorded and skipped."""
        total = IssueSyncStats()
        system = client.system_name()
        for project in await self.store.list_linked_projects():
            if project.pm_system and project.pm_system != system:
                continue
            try:
                total.merge(await self.sync_project_issues(client, project))
            except Exception as e:
                log_error(logger, "Issue sync failed for project", error=e, extra={"project": project.name})
                total.errors.append(f"{project.name}: {e}")
        return total
