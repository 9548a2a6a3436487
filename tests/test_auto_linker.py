"""Tests for project auto-linking."""

import pytest

from toki.integrations.base import PMProject
from toki.services.auto_linker import AutoLinker, LinkReason, LinkSuggestion, name_similarity

PM_PROJECTS = [
    PMProject(id="pm-1", identifier="TOKI", name="Toki App"),
    PMProject(id="pm-2", identifier="WEB", name="Website"),
    PMProject(id="pm-3", identifier="API", name="Platform"),
]


class TestNameSimilarity:
    def test_identical(self):
        assert name_similarity("toki", "toki") == 1.0

    def test_character_jaccard(self):
        # {b,a,c,k,e,n,d} against the same set plus "s"
        assert name_similarity("backend", "backends") == pytest.approx(7 / 8)

    def test_empty(self):
        assert name_similarity("", "x") == 0.0


class TestNameMatching:
    """Test name-based suggestions."""

    async def test_exact_identifier_match(self, store):
        """Test a local name equal to a PM identifier scores 0.95."""
        await store.get_or_create_project("toki", "/work/toki")

        suggestions = await AutoLinker(store).suggest_from_name_matching(PM_PROJECTS)

        assert len(suggestions) == 1
        assert suggestions[0].pm_project_id == "pm-1"
        assert suggestions[0].confidence == 0.95
        assert suggestions[0].reason is LinkReason.EXACT_NAME_MATCH

    async def test_fuzzy_and_identifier_containment(self, store):
        """Test fuzzy names score by similarity and identifiers by containment."""
        await store.get_or_create_project("websites", "/work/websites")
        await store.get_or_create_project("api-gateway", "/work/api-gateway")

        suggestions = await AutoLinker(store).suggest_from_name_matching(PM_PROJECTS)

        by_name = {s.local_project_name: s for s in suggestions}
        assert by_name["websites"].pm_project_id == "pm-2"
        assert by_name["websites"].confidence == pytest.approx(name_similarity("websites", "website") * 0.8)
        assert by_name["api-gateway"].pm_project_id == "pm-3"
        assert by_name["api-gateway"].confidence == 0.7
        assert [s.confidence for s in suggestions] == sorted((s.confidence for s in suggestions), reverse=True)

    async def test_linked_projects_are_ignored(self, store):
        project = await store.get_or_create_project("toki", "/work/toki")
        await store.link_project_to_pm(project.id, "plane", "pm-1")

        assert await AutoLinker(store).suggest_from_name_matching(PM_PROJECTS) == []


class TestBrowserAndGitSuggestions:
    """Test URL and git remote signals."""

    async def test_issue_page_visit(self, store):
        project = await store.get_or_create_project("tray", "/work/tray")

        suggestions = await AutoLinker(store).suggest_from_browser_urls(
            ["https://example.com/docs", "https://app.plane.so/acme/browse/TOKI-42/"], project.id, PM_PROJECTS
        )

        assert len(suggestions) == 1
        assert suggestions[0].reason is LinkReason.ISSUE_PAGE_VISIT
        assert suggestions[0].confidence == 0.9
        assert suggestions[0].describe() == "Visited issue: TOKI-42"

    async def test_plane_project_url(self, store):
        """Test a project page URL matches on the PM project id."""
        project = await store.get_or_create_project("site", "/work/site")

        suggestions = await AutoLinker(store).suggest_from_browser_urls(
            ["https://app.plane.so/acme/projects/pm-2/issues"], project.id, PM_PROJECTS
        )

        assert suggestions[0].pm_project_id == "pm-2"
        assert suggestions[0].confidence == 0.85
        assert suggestions[0].reason is LinkReason.BROWSER_URL

    async def test_git_remote(self, store, tmp_path):
        repo = tmp_path / "toki"
        (repo / ".git").mkdir(parents=True)
        (repo / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        (repo / ".git" / "config").write_text('[remote "origin"]\n\turl = git@github.com:acme/toki.git\n')
        await store.get_or_create_project("toki", str(repo))

        suggestion = await AutoLinker(store).suggest_from_git_remote(str(repo), PM_PROJECTS)

        assert suggestion.pm_project_id == "pm-1"
        assert suggestion.confidence == 0.75
        assert suggestion.reason is LinkReason.GIT_REMOTE

    async def test_git_remote_without_repo(self, store, tmp_path):
        assert await AutoLinker(store).suggest_from_git_remote(str(tmp_path), PM_PROJECTS) is None

    def test_describe_truncates_detail(self):
        suggestion = LinkSuggestion(
            local_project_id=None, local_project_name="x", pm_project_id="p", pm_project_identifier="P",
            pm_project_name="P", confidence=0.85, reason=LinkReason.BROWSER_URL, detail="u" * 50,
        )

        assert suggestion.describe() == "Browser URL: " + "u" * 40 + "..."


class TestAutoLinkAll:
    """Test applying suggestions above the confidence floor."""

    async def test_applies_only_confident_suggestions(self, store, pm_client_factory):
        toki = await store.get_or_create_project("toki", "/work/toki")
        gateway = await store.get_or_create_project("api-gateway", "/work/api-gateway")
        client = pm_client_factory(name="plane", projects=PM_PROJECTS)

        applied = await AutoLinker(store).auto_link_all(client, "plane", workspace="acme")

        assert [s.local_project_id for s in applied] == [toki.id]
        linked = await store.get_project(toki.id)
        assert (linked.pm_system, linked.pm_project_id, linked.pm_workspace) == ("plane", "pm-1", "acme")
        assert not (await store.get_project(gateway.id)).is_linked
