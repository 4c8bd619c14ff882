"""Tests for condition evaluation."""

from __future__ import annotations

import pytest

from bizops_automation.automation.conditions import MISSING, check_condition, evaluate, extract
from bizops_automation.automation.models import Condition


def cond(field: str, operator: str, value=None, join: str = "AND") -> Condition:
    return Condition(field=field, operator=operator, value=value, join=join)


CONTEXT = {
    "status": "completed",
    "amount": 1200,
    "amount_text": "99.5",
    "tags": ["urgent", "client"],
    "notes": "",
    "client": {"name": "Acme", "tier": "gold"},
    "nothing": None,
}


class TestExtract:
    """Tests for extract()."""

    def test_nested_path(self):
        """Test dotted paths resolve through mappings."""
        assert extract(CONTEXT, "client.tier") == "gold"

    def test_missing_path(self):
        """Test unresolvable paths return MISSING."""
        assert extract(CONTEXT, "client.address.city") is MISSING
        assert not MISSING


class TestCheckCondition:
    """Tests for individual operators."""

    @pytest.mark.parametrize(
        ("condition", "expected"),
        [
            (cond("status", "equals", "completed"), True),
            (cond("status", "equals", "active"), False),
            (cond("missing", "equals", None), False),
            (cond("status", "not_equals", "active"), True),
            (cond("missing", "not_equals", "x"), True),
            (cond("amount", "greater_than", 1000), True),
            (cond("amount", "greater_than", "1200"), False),
            (cond("amount_text", "less_than", 100), True),
            (cond("amount", "greater_than_or_equal", 1200), True),
            (cond("amount", "less_than_or_equal", 1199.99), False),
            (cond("status", "greater_than", 1), False),
            (cond("missing", "less_than", 1), False),
            (cond("nothing", "greater_than", 0), False),
            (cond("status", "contains", "plete"), True),
            (cond("tags", "contains", "urgent"), True),
            (cond("tags", "contains", "vip"), False),
            (cond("amount", "contains", 1), False),
            (cond("tags", "not_contains", "vip"), True),
            (cond("notes", "is_empty"), True),
            (cond("nothing", "is_empty"), True),
            (cond("missing", "is_empty"), True),
            (cond("tags", "is_not_empty"), True),
            (cond("amount", "is_not_empty"), True),
            (cond("client.tier", "in", ["gold", "platinum"]), True),
            (cond("client.tier", "in", ["silver"]), False),
            (cond("client.tier", "in", "gold"), False),
            (cond("missing", "in", [None]), False),
        ],
    )
    def test_operator(self, condition, expected):
        """Test each operator against the shared context."""
        assert check_condition(condition, CONTEXT) is expected

    def test_contains_unhashable_in_list(self):
        """Test membership with an unhashable needle does not raise."""
        assert check_condition(cond("tags", "contains", {"a": 1}), CONTEXT) is False

    def test_unknown_operator_rejected_at_authoring(self):
        """Test operators outside the closed set fail validation."""
        with pytest.raises(ValueError):
            Condition(field="status", operator="matches", value=".*")


class TestEvaluate:
    """Tests for evaluate()."""

    def test_empty_list_is_true(self):
        """Test an empty condition list is vacuously true."""
        assert evaluate([], {}) is True
        assert evaluate([], CONTEXT) is True

    def test_and_chain(self):
        """Test AND joins require every condition."""
        conditions = [cond("status", "equals", "completed"), cond("amount", "greater_than", 5000)]
        assert evaluate(conditions, CONTEXT) is False

    def test_or_join(self):
        """Test an OR join accepts either side."""
        conditions = [
            cond("status", "equals", "active", join="OR"),
            cond("amount", "greater_than", 1000),
        ]
        assert evaluate(conditions, CONTEXT) is True

    def test_left_to_right_fold(self):
        """Test joins fold left to right without AND precedence.

        ``True OR False AND False`` is ``(True OR False) AND False`` here.
        """
        conditions = [
            cond("status", "equals", "completed", join="or"),
            cond("status", "equals", "active", join="and"),
            cond("amount", "less_than", 0),
        ]
        assert evaluate(conditions, CONTEXT) is False

    def test_last_join_ignored(self):
        """Test the join of the final condition has no effect."""
        assert evaluate([cond("status", "equals", "completed", join="OR")], CONTEXT) is True
