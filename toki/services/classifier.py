"""Activity classifier: user rules first, then built-in category regexes."""

import enum
import re
import uuid
from dataclasses import dataclass

from toki.core.logging import get_logger
from toki.db.models import ClassificationRule, PatternType
from toki.db.store import Store, StoreError

logger = get_logger(__name__)

DEFAULT_CATEGORY = "Other"


class ClassificationSource(enum.StrEnum):
    USER_RULE = "user_rule"
    BUILT_IN = "built_in"
    DEFAULT = "default"


@dataclass(frozen=True)
class ClassificationResult:
    category: str
    source: ClassificationSource
    rule_id: uuid.UUID | None = None


@dataclass(frozen=True)
class CompiledCategory:
    name: str
    regex: re.Pattern[str]


class Classifier:
    """Priority-ordered rule cascade producing a work category.

    Call ``load()`` once before classifying; ``reload()`` picks up rule edits
    made by other processes.
    """

    def __init__(self, store: Store) -> None:
        self.store = store
        self.user_rules: list[ClassificationRule] = []
        self.categories: list[CompiledCategory] = []

    async def load(self) -> None:
        self.user_rules = await self.store.list_classification_rules()
        compiled: list[CompiledCategory] = []
        for category in await self.store.list_categories():
            try:
                compiled.append(CompiledCategory(category.name, re.compile(category.pattern, re.IGNORECASE)))
            except re.error as e:
                logger.warning(
                    "Skipping category with invalid pattern",
                    extra={"category": category.name, "error": str(e)},
                )
        self.categories = compiled
        logger.info(
            "Classifier loaded",
            extra={"user_rules": len(self.user_rules), "categories": len(self.categories)},
        )

    async def reload(self) -> None:
        await self.load()

    async def classify(self, app_bundle_id: str, window_title: str | None = None) -> str:
        result = await self.classify_detailed(app_bundle_id, window_title)
        return result.category

    async def classify_detailed(self, app_bundle_id: str, window_title: str | None = None) -> ClassificationResult:
        for rule in self.user_rules:
            if rule.matches(app_bundle_id, window_title):
                try:
                    await self.store.record_rule_hit(rule.id)
                except StoreError as e:
                    logger.warning("Failed to record rule hit", extra={"rule_id": str(rule.id), "error": str(e)})
                logger.debug(
                    "Matched user rule",
                    extra={"pattern": rule.pattern, "category": rule.category},
                )
                return ClassificationResult(rule.category, ClassificationSource.USER_RULE, rule.id)

        subject = f"{app_bundle_id} {window_title or ''}"
        for category in self.categories:
            if category.regex.search(subject):
                return ClassificationResult(category.name, ClassificationSource.BUILT_IN)

        return ClassificationResult(DEFAULT_CATEGORY, ClassificationSource.DEFAULT)

    async def learn(
        self,
        pattern: str,
        pattern_type: PatternType | str,
        category: str,
        priority: int = 100,
    ) -> ClassificationRule:
        """Store a correction rule and evaluate it ahead of every other rule."""
        pattern_type = PatternType(pattern_type)
        rule = await self.store.upsert_classification_rule(pattern, pattern_type.value, category, priority)
        self.user_rules = [r for r in self.user_rules if r.id != rule.id]
        self.user_rules.insert(0, rule)
        logger.info(
            "Learned classification rule",
            extra={"pattern": pattern, "pattern_type": pattern_type.value, "category": category},
        )
        return rule
