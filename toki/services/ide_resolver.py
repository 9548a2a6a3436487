"""Resolve the workspace folder behind an editor window from IDE state files."""

import asyncio
import json
import re
import sys
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from toki.core.logging import get_logger

logger = get_logger(__name__)

_TITLE_SEPARATORS = re.compile(r"\s+-\s+|\s*[–—]\s*")


def _default_storage_files(home: Path, platform: str) -> list[Path]:
    if platform == "darwin":
        support = home / "Library" / "Application Support"
    else:
        support = home / ".config"
    return [
        support / "Cursor" / "User" / "globalStorage" / "storage.json",
        support / "Code" / "User" / "globalStorage" / "storage.json",
        support / "Code" / "storage.json",
    ]


def folder_uri_to_path(uri: str) -> Path | None:
    """Convert a ``file://`` URI (or a bare absolute path) to a Path."""
    if uri.startswith("file://"):
        parsed = urlparse(uri)
        path = unquote(parsed.path)
        return Path(path) if path else None
    if uri.startswith("/"):
        return Path(uri)
    return None


class IdeWorkspaceResolver:
    """Maps a Cursor / VS Code window title to the folder open in that window."""

    APP_NAMES = frozenset({"cursor", "visual studio code", "code", "vscode"})
    FILE_EXTENSIONS = frozenset({
        "rs", "ts", "js", "py", "go", "java", "cpp", "c", "h",
        "md", "json", "toml", "yaml", "yml",
    })

    def __init__(self, storage_files: list[Path] | None = None, home: Path | None = None) -> None:
        if storage_files is None:
            storage_files = _default_storage_files(home or Path.home(), sys.platform)
        self.storage_files = storage_files

    @classmethod
    def extract_project_name(cls, window_title: str | None) -> str | None:
        """Workspace name from titles like ``main.py - toki - Visual Studio Code``."""
        if not window_title:
            return None
        tokens = [t.strip() for t in _TITLE_SEPARATORS.split(window_title) if t.strip()]
        remaining = [t for t in tokens if t.lower() not in cls.APP_NAMES and not cls._looks_like_file(t)]
        return remaining[-1] if remaining else None

    @classmethod
    def _looks_like_file(cls, token: str) -> bool:
        if "." not in token:
            return False
        return token.rsplit(".", 1)[1].lower() in cls.FILE_EXTENSIONS

    def _existing_files_newest_first(self) -> list[Path]:
        found: list[tuple[Path, float]] = []
        for path in self.storage_files:
            try:
                found.append((path, path.stat().st_mtime))
            except OSError:
                continue
        found.sort(key=lambda item: item[1], reverse=True)
        return [path for path, _ in found]

    @staticmethod
    def _load(path: Path) -> dict[str, Any] | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug("Skipping unreadable IDE state file", extra={"path": str(path), "error": str(e)})
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _last_active_folder(data: dict[str, Any]) -> str | None:
        windows_state = data.get("windowsState") or {}
        last_active = windows_state.get("lastActiveWindow") or {}
        folder = last_active.get("folder")
        return folder if isinstance(folder, str) else None

    @classmethod
    def _folder_uris(cls, data: dict[str, Any]) -> list[str]:
        uris: list[str] = []
        last = cls._last_active_folder(data)
        if last:
            uris.append(last)
        windows_state = data.get("windowsState") or {}
        for window in windows_state.get("openedWindows") or []:
            if isinstance(window, dict) and isinstance(window.get("folder"), str):
                uris.append(window["folder"])
        opened = data.get("openedPathsList") or {}
        for entry in opened.get("entries") or []:
            if isinstance(entry, dict) and isinstance(entry.get("folderUri"), str):
                uris.append(entry["folderUri"])
        return uris

    def resolve_sync(self, window_title: str | None) -> Path | None:
        files = self._existing_files_newest_first()
        if not files:
            return None

        loaded = [(path, self._load(path)) for path in files]
        project_name = self.extract_project_name(window_title)

        if project_name:
            wanted = project_name.lower()
            for _, data in loaded:
                if data is None:
                    continue
                paths = [p for p in (folder_uri_to_path(u) for u in self._folder_uris(data)) if p is not None]
                for path in paths:
                    if path.name.lower() == wanted:
                        return path
                for path in paths:
                    name = path.name.lower()
                    if name and (wanted in name or name in wanted):
                        return path

        newest = loaded[0][1]
        if newest is not None:
            folder = self._last_active_folder(newest)
            if folder:
                return folder_uri_to_path(folder)
        return None

    async def resolve(self, window_title: str | None) -> Path | None:
        """Workspace folder for the window; file reads run off the event loop."""
        return await asyncio.to_thread(self.resolve_sync, window_title)
