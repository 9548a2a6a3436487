"""Tests for the activity classifier."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from toki.db.models import PatternType
from toki.db.store import StoreError
from toki.services.classifier import DEFAULT_CATEGORY, ClassificationSource, Classifier


@pytest.fixture
async def classifier(store):
    classifier = Classifier(store)
    await classifier.load()
    return classifier


class TestBuiltInCategories:
    """Test the seeded category regexes."""

    @pytest.mark.parametrize(
        "app,title,expected",
        [
            ("com.microsoft.VSCode", "main.py - toki", "Coding"),
            ("com.googlecode.iterm2", None, "Coding"),
            ("com.apple.Terminal", None, "Terminal"),
            ("Slack", None, "Communication"),
            ("Figma", None, "Design"),
            ("com.google.Chrome", "Inbox", "Browser"),
            ("com.google.Chrome", "Watch later - YouTube", "Break"),
        ],
    )
    async def test_built_in_match(self, classifier, app, title, expected):
        """Test app id and title are matched case-insensitively in order."""
        assert await classifier.classify(app, title) == expected

    async def test_unknown_app_gets_default(self, classifier):
        """Test nothing matching falls back to Other."""
        result = await classifier.classify_detailed("net.example.tally", "Q3 numbers")

        assert result.category == DEFAULT_CATEGORY
        assert result.source is ClassificationSource.DEFAULT

    async def test_classification_is_deterministic(self, classifier):
        """Test the same input always yields the same category."""
        results = {await classifier.classify("com.google.Chrome", "Pull requests") for _ in range(5)}

        assert len(results) == 1


class TestUserRules:
    """Test user rules take precedence over built-ins."""

    async def test_learned_rule_overrides_built_in(self, classifier, store):
        """Test a learned title rule wins and records a hit."""
        rule = await classifier.learn("quarterly report", PatternType.WINDOW_TITLE, "Documentation")

        result = await classifier.classify_detailed("com.google.Chrome", "Quarterly Report draft")

        assert result.category == "Documentation"
        assert result.source is ClassificationSource.USER_RULE
        assert result.rule_id == rule.id
        stored = {r.id: r for r in await store.list_classification_rules()}
        assert stored[rule.id].hit_count == 1

    async def test_bundle_rule_matches_app_id(self, classifier):
        await classifier.learn("chrome", "bundle_id", "Research")

        assert await classifier.classify("com.google.Chrome", None) == "Research"

    async def test_title_rule_needs_title(self, classifier):
        """Test title rules never match a sample without a title."""
        await classifier.learn("standup", PatternType.WINDOW_TITLE, "Communication")

        assert await classifier.classify("Figma", None) == "Design"

    async def test_rules_survive_reload(self, classifier, store):
        """Test rules are read back from the store on reload."""
        await classifier.learn("ledger", PatternType.BUNDLE_ID, "Finance")

        fresh = Classifier(store)
        await fresh.load()

        assert await fresh.classify("net.example.ledger") == "Finance"

    async def test_rule_hit_failure_does_not_block_classification(self, store):
        """Test a failing hit counter still returns the rule's category."""
        rule = MagicMock()
        rule.matches.return_value = True
        rule.category = "Meetings"
        failing_store = MagicMock()
        failing_store.record_rule_hit = AsyncMock(side_effect=StoreError("locked"))
        classifier = Classifier(failing_store)
        classifier.user_rules = [rule]

        assert await classifier.classify("zoom.us") == "Meetings"
