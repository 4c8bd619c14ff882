"""Rule matching against trigger events."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from ..core.logger import get_logger
from .conditions import evaluate
from .models import Rule, TriggerType
from .repository import AutomationRepository

logger = get_logger("automation.matcher")


class RuleMatcher:
    """Selects active rules for a trigger type whose conditions hold.

    Active rules are cached and ordered by ``(created_at, id)``; callers must
    invalidate the cache after every rule write.
    """

    def __init__(self, repository: AutomationRepository):
        self.repository = repository
        self._lock = threading.Lock()
        self._cache: list[Rule] | None = None

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None

    def active_rules(self) -> list[Rule]:
        with self._lock:
            if self._cache is None:
                rules = self.repository.list_rules(active_only=True)
                self._cache = sorted(rules, key=lambda rule: (rule.created_at, rule.id))
            return list(self._cache)

    def candidates(self, trigger_type: TriggerType) -> list[Rule]:
        """Active rules listening to ``trigger_type``, in creation order."""
        return [rule for rule in self.active_rules() if rule.trigger.type is trigger_type]

    def check(self, rule: Rule, context: Mapping[str, Any]) -> bool:
        """Evaluate a rule's conditions; evaluation errors propagate to the caller."""
        return evaluate(rule.conditions, context)

    def match(self, trigger_type: TriggerType, context: Mapping[str, Any]) -> list[Rule]:
        """Rules whose conditions hold. Rules whose evaluation raises are left out."""
        matched: list[Rule] = []
        for rule in self.candidates(trigger_type):
            try:
                if self.check(rule, context):
                    matched.append(rule)
            except Exception as exc:
                logger.error("Condition evaluation failed for rule %s: %s", rule.id, exc)
        return matched
