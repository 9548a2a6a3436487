"""Issue-ID extraction shared by the git detector, matcher, review and auto-linker."""

import re
from collections.abc import Iterable

ISSUE_ID_PATTERN = re.compile(r"[A-Za-z]{2,10}-[0-9]+")


def extract_issue_ids(text: str | None) -> list[str]:
    """All issue ids in ``text``, uppercased and deduplicated in first-seen order."""
    if not text:
        return []
    seen: dict[str, None] = {}
    for match in ISSUE_ID_PATTERN.findall(text):
        seen.setdefault(match.upper(), None)
    return list(seen)


def extract_issue_ids_from(texts: Iterable[str | None]) -> list[str]:
    """``extract_issue_ids`` over several texts, deduplicated across all of them."""
    seen: dict[str, None] = {}
    for text in texts:
        for issue_id in extract_issue_ids(text):
            seen.setdefault(issue_id, None)
    return list(seen)


def first_issue_id(text: str | None) -> str | None:
    ids = extract_issue_ids(text)
    return ids[0] if ids else None


def issue_prefix(issue_id: str) -> str:
    """Project key of an issue id (``TOKI-42`` -> ``TOKI``)."""
    return issue_id.split("-", 1)[0].upper()
