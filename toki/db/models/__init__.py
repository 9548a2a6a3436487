"""Database models."""

from toki.db.models.activity_span import ActivitySpan
from toki.db.models.classification import Category, ClassificationRule, PatternType
from toki.db.models.integration import IntegrationConfig
from toki.db.models.project import Project, ProjectTime
from toki.db.models.session import Session
from toki.db.models.time_block import SyncedIssue, TimeBlock, TimeBlockSource
from toki.db.models.user_settings import UserSettings
from toki.db.models.work_item import Complexity, IssueCandidate, WorkItem

__all__ = [
    "ActivitySpan",
    "Category",
    "ClassificationRule",
    "Complexity",
    "IntegrationConfig",
    "IssueCandidate",
    "PatternType",
    "Project",
    "ProjectTime",
    "Session",
    "SyncedIssue",
    "TimeBlock",
    "TimeBlockSource",
    "UserSettings",
    "WorkItem",
]
