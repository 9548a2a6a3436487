"""Tests for IDE workspace resolution, git detection and context detection."""

import json
from pathlib import Path

import pytest

from toki.services.context_detector import ContextDetector
from toki.services.git_detector import GitDetector, parse_remote_url, repo_name_from_remote
from toki.services.ide_resolver import IdeWorkspaceResolver, folder_uri_to_path


def make_repo(root: Path, branch: str | None = "main", remote: str | None = None) -> Path:
    git_dir = root / ".git"
    git_dir.mkdir(parents=True)
    head = f"ref: refs/heads/{branch}\n" if branch else "3f2c1a9e0b7d4c6a8e1f2b3c4d5e6f708192a3b4\n"
    (git_dir / "HEAD").write_text(head)
    if remote:
        (git_dir / "config").write_text(f'[remote "origin"]\n\turl = {remote}\n\tfetch = +refs/heads/*\n')
    return root


def write_storage(path: Path, last_active: str | None, opened: tuple[str, ...] = ()) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "windowsState": {
            "lastActiveWindow": {"folder": last_active} if last_active else {},
            "openedWindows": [{"folder": uri} for uri in opened],
        }
    }
    path.write_text(json.dumps(data))
    return path


class TestIdeWorkspaceResolver:
    """Test window title parsing and storage file lookup."""

    @pytest.mark.parametrize(
        "title,expected",
        [
            ("main.py - toki - Visual Studio Code", "toki"),
            ("store.rs – toki – Cursor", "toki"),
            ("toki", "toki"),
            ("README.md - Cursor", None),
            (None, None),
        ],
    )
    def test_extract_project_name(self, title, expected):
        """Test app names and file names are stripped from titles."""
        assert IdeWorkspaceResolver.extract_project_name(title) == expected

    def test_folder_uri_to_path(self):
        assert folder_uri_to_path("file:///home/dev/my%20app") == Path("/home/dev/my app")
        assert folder_uri_to_path("/srv/toki") == Path("/srv/toki")
        assert folder_uri_to_path("vscode-remote://ssh/x") is None

    async def test_resolves_by_title_name(self, tmp_path):
        """Test a title naming a non-active window still finds its folder."""
        storage = write_storage(
            tmp_path / "storage.json",
            "file:///work/other",
            opened=["file:///work/other", "file:///work/toki"],
        )
        resolver = IdeWorkspaceResolver(storage_files=[storage])

        assert await resolver.resolve("main.py - toki - Cursor") == Path("/work/toki")

    async def test_falls_back_to_last_active(self, tmp_path):
        storage = write_storage(tmp_path / "storage.json", "file:///work/alpha")
        resolver = IdeWorkspaceResolver(storage_files=[storage])

        assert await resolver.resolve("Welcome") == Path("/work/alpha")

    async def test_missing_or_corrupt_files(self, tmp_path):
        """Test unreadable state files resolve to None."""
        corrupt = tmp_path / "storage.json"
        corrupt.write_text("{not json")
        resolver = IdeWorkspaceResolver(storage_files=[corrupt, tmp_path / "absent.json"])

        assert await resolver.resolve("main.py - toki - Cursor") is None


class TestGitDetector:
    """Test .git file parsing."""

    async def test_branch_from_nested_path(self, tmp_path):
        """Test the repo is found from a subdirectory."""
        repo = make_repo(tmp_path / "toki", branch="feature/TOKI-42-foo")
        nested = repo / "src" / "deep"
        nested.mkdir(parents=True)

        info = await GitDetector().detect(nested)

        assert info.repo_root == repo
        assert info.branch == "feature/TOKI-42-foo"

    async def test_detached_head_has_no_branch(self, tmp_path):
        repo = make_repo(tmp_path / "toki", branch=None)

        info = await GitDetector().detect(repo)

        assert info is not None
        assert info.branch is None

    async def test_detect_issue(self, tmp_path):
        """Test the first issue id in the branch is uppercased."""
        repo = make_repo(tmp_path / "toki", branch="fix/toki-7-crash")

        reference = await GitDetector().detect_issue(repo)

        assert reference.external_id == "TOKI-7"

    async def test_not_a_repository(self, tmp_path):
        assert await GitDetector().detect(tmp_path) is None

    def test_worktree_git_file(self, tmp_path):
        """Test a .git file pointing at a separate git dir."""
        real_git = tmp_path / "main.git" / "worktrees" / "wt"
        real_git.mkdir(parents=True)
        (real_git / "HEAD").write_text("ref: refs/heads/wt-branch\n")
        worktree = tmp_path / "wt"
        worktree.mkdir()
        (worktree / ".git").write_text(f"gitdir: {real_git}\n")

        info = GitDetector().detect_sync(worktree)

        assert info.git_dir == real_git
        assert info.branch == "wt-branch"

    def test_read_remote_url(self, tmp_path):
        repo = make_repo(tmp_path / "toki", remote="git@github.com:acme/toki.git")

        assert GitDetector().read_remote_url(repo) == "git@github.com:acme/toki.git"

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("git@github.com:acme/toki.git", "toki"),
            ("https://gitlab.com/acme/platform/api.git", "api"),
            ("https://github.com/acme/toki/", "toki"),
        ],
    )
    def test_repo_name_from_remote(self, url, expected):
        assert repo_name_from_remote(url) == expected

    def test_parse_remote_url_without_url(self):
        assert parse_remote_url("[core]\n\tbare = false\n") is None


class TestContextDetector:
    """Test project and work item detection end to end."""

    async def test_detects_project_and_issue(self, store, tmp_path, base_time):
        """Test a resolved workspace becomes a project and its branch a work item."""
        repo = make_repo(tmp_path / "toki", branch="feature/TOKI-42-foo")
        storage = write_storage(tmp_path / "ide" / "storage.json", repo.as_uri())
        detector = ContextDetector(store, resolver=IdeWorkspaceResolver(storage_files=[storage]))

        context = await detector.detect("main.py - toki - Cursor", base_time)

        assert context.project_name == "toki"
        assert context.project_path == repo
        assert context.issue_id == "TOKI-42"
        assert context.git_branch == "feature/TOKI-42-foo"
        item = await store.get_work_item(context.work_item_id)
        assert item.external_id == "TOKI-42"
        assert item.external_system == "git"
        project = await store.get_project_by_path(str(repo))
        assert project.id == context.project_id

    async def test_tracking_disabled_or_no_title(self, store, base_time):
        """Test detection is skipped without a title or when disabled."""
        detector = ContextDetector(store, resolver=IdeWorkspaceResolver(storage_files=[]))

        assert (await detector.detect(None, base_time)).is_empty
        assert (await detector.detect("main.py - toki", base_time, enable_work_item_tracking=False)).is_empty
        assert await store.list_projects() == []

    async def test_workspace_without_repository(self, store, tmp_path, base_time):
        """Test a plain folder yields a project but no work item."""
        folder = tmp_path / "notes"
        folder.mkdir()
        storage = write_storage(tmp_path / "storage.json", folder.as_uri())
        detector = ContextDetector(store, resolver=IdeWorkspaceResolver(storage_files=[storage]))

        context = await detector.detect("notes", base_time)

        assert context.project_name == "notes"
        assert context.work_item_id is None
        assert context.git_branch is None
