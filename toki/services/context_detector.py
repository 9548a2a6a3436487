"""Resolve the foreground window to a project and, optionally, a work item."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from toki.core.logging import get_logger
from toki.db.store import Store
from toki.services.git_detector import GitDetector
from toki.services.ide_resolver import IdeWorkspaceResolver
from toki.services.issue_ids import first_issue_id

logger = get_logger(__name__)

GIT_SYSTEM = "git"


@dataclass(frozen=True)
class DetectedContext:
    project_id: uuid.UUID | None = None
    project_name: str | None = None
    project_path: Path | None = None
    work_item_id: uuid.UUID | None = None
    issue_id: str | None = None
    git_branch: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.project_id is None


class ContextDetector:
    """Combines the IDE resolver and git detector and persists what they find."""

    def __init__(
        self,
        store: Store,
        resolver: IdeWorkspaceResolver | None = None,
        git_detector: GitDetector | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver or IdeWorkspaceResolver()
        self.git_detector = git_detector or GitDetector()

    async def detect(
        self,
        window_title: str | None,
        now: datetime,
        enable_work_item_tracking: bool = True,
    ) -> DetectedContext:
        if not enable_work_item_tracking or not window_title:
            return DetectedContext()

        workspace = await self.resolver.resolve(window_title)
        if workspace is None:
            return DetectedContext()

        project = await self.store.get_or_create_project(workspace.name, str(workspace), now=now)

        git_info = await self.git_detector.detect(workspace)
        branch = git_info.branch if git_info else None
        issue_id = first_issue_id(branch)

        work_item_id = None
        if issue_id is not None:
            work_item = await self.store.get_or_create_work_item(
                issue_id,
                GIT_SYSTEM,
                project=project.name,
            )
            work_item_id = work_item.id

        logger.debug(
            "Context detected",
            extra={
                "project": project.name,
                "issue_id": issue_id,
                "git_branch": branch,
            },
        )
        return DetectedContext(
            project_id=project.id,
            project_name=project.name,
            project_path=workspace,
            work_item_id=work_item_id,
            issue_id=issue_id,
            git_branch=branch,
        )
