"""Read branch and remote information straight from a repository's .git files.

No git process is ever spawned; every read failure yields None.
"""

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path

from toki.core.logging import get_logger
from toki.services.issue_ids import first_issue_id

logger = get_logger(__name__)

_HEAD_REF_PREFIX = "ref: refs/heads/"
_REMOTE_URL = re.compile(r"url\s*=\s*(.+)")


@dataclass(frozen=True)
class GitInfo:
    repo_root: Path
    git_dir: Path
    branch: str | None


@dataclass(frozen=True)
class IssueReference:
    external_id: str
    source: str = "git_branch"


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def parse_remote_url(config_text: str) -> str | None:
    """First ``url = ...`` value in a git config file."""
    for line in config_text.splitlines():
        match = _REMOTE_URL.match(line.strip())
        if match:
            return match.group(1).strip()
    return None


def repo_name_from_remote(url: str) -> str | None:
    """Last path segment of a remote without ``.git``.

    Handles ``git@host:org/repo.git`` as well as URL forms.
    """
    url = url.strip()
    if "@" in url and ":" in url and "://" not in url:
        path = url.split(":", 1)[1]
    else:
        path = url
    name = path.rstrip("/").removesuffix(".git").rsplit("/", 1)[-1]
    return name or None


class GitDetector:
    """Branch, issue and remote detection for a workspace path."""

    def find_repo(self, start: Path) -> tuple[Path, Path] | None:
        """``(repo_root, git_dir)`` for the nearest enclosing repository."""
        current = start
        while True:
            dot_git = current / ".git"
            if dot_git.is_dir():
                return current, dot_git
            if dot_git.is_file():
                # Worktree: .git is a file holding "gitdir: <path>"
                content = _read_text(dot_git)
                if content and content.startswith("gitdir:"):
                    git_dir = Path(content[len("gitdir:"):].strip())
                    if not git_dir.is_absolute():
                        git_dir = (current / git_dir).resolve()
                    return current, git_dir
                return None
            if current.parent == current:
                return None
            current = current.parent

    def detect_sync(self, path: Path) -> GitInfo | None:
        found = self.find_repo(path)
        if found is None:
            return None
        repo_root, git_dir = found
        head = _read_text(git_dir / "HEAD")
        branch = None
        if head is not None:
            head = head.strip()
            if head.startswith(_HEAD_REF_PREFIX):
                branch = head[len(_HEAD_REF_PREFIX):] or None
        return GitInfo(repo_root=repo_root, git_dir=git_dir, branch=branch)

    async def detect(self, path: Path) -> GitInfo | None:
        return await asyncio.to_thread(self.detect_sync, path)

    async def detect_issue(self, path: Path) -> IssueReference | None:
        """Issue id embedded in the current branch name, if any."""
        info = await self.detect(path)
        if info is None or info.branch is None:
            return None
        issue_id = first_issue_id(info.branch)
        if issue_id is None:
            return None
        logger.debug("Detected issue from git branch", extra={"issue_id": issue_id, "branch": info.branch})
        return IssueReference(external_id=issue_id)

    def read_remote_url(self, path: Path) -> str | None:
        found = self.find_repo(path)
        if found is None:
            return None
        _, git_dir = found
        config = _read_text(git_dir / "config")
        if config is None:
            # Linked worktrees keep their config in the common dir
            common = _read_text(git_dir / "commondir")
            if common:
                common_dir = Path(common.strip())
                if not common_dir.is_absolute():
                    common_dir = (git_dir / common_dir).resolve()
                config = _read_text(common_dir / "config")
        if config is None:
            return None
        return parse_remote_url(config)
