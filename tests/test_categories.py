"""Tests for budget_newsletter.categories -- the bucket priority cascade."""

from __future__ import annotations

from budget_newsletter.categories import (
    bucket_for_group,
    bucket_for_keywords,
    classify_category,
    is_true_expense,
)
from budget_newsletter.models import CspSettings


class TestClassifyCategory:
    """Tests for the five-step cascade."""

    def test_mapping_by_id_wins(self):
        """An explicit id mapping beats the group."""
        settings = CspSettings(category_mappings={"cat-1": "savings"})
        assert classify_category("cat-1", "Rent", "Fixed Costs", settings) == "savings"

    def test_mapping_by_name(self):
        """A name mapping applies when the id is not mapped."""
        settings = CspSettings(category_mappings={"Rent": "guiltFree"})
        assert classify_category("cat-1", "Rent", "Fixed Costs", settings) == "guiltFree"

    def test_unknown_bucket_in_mapping_ignored(self):
        """Mappings to unknown buckets fall through to the group."""
        settings = CspSettings(category_mappings={"cat-1": "luxuries"})
        assert classify_category("cat-1", "Rent", "Fixed Costs", settings) == "fixedCosts"

    def test_group_name(self):
        """Group names are case-folded and trimmed."""
        settings = CspSettings()
        assert classify_category(None, "Index", "  INVESTMENTS ", settings) == "investments"

    def test_keywords_off_by_default(self):
        """Without the keyword fallback an unknown group is guilt-free."""
        settings = CspSettings()
        assert classify_category(None, "Electric Bill", "Everyday", settings) == "guiltFree"

    def test_keywords_when_enabled(self):
        """The keyword scan resolves unknown groups when switched on."""
        settings = CspSettings(use_keyword_fallback=True)
        assert classify_category(None, "Electric Bill", "Everyday", settings) == "fixedCosts"

    def test_default_guilt_free(self):
        """Nothing matched means discretionary."""
        settings = CspSettings(use_keyword_fallback=True)
        assert classify_category(None, "Hobbies", None, settings) == "guiltFree"


class TestKeywords:
    """Tests for keyword ordering."""

    def test_investments_before_savings(self):
        """'Retirement Fund' matches investments before the savings 'fund'."""
        assert bucket_for_keywords("Retirement Fund") == "investments"

    def test_savings_before_fixed(self):
        """'Car Payment Fund' is a savings goal, not a fixed cost."""
        assert bucket_for_keywords("Car Payment Fund") == "savings"

    def test_no_match(self):
        assert bucket_for_keywords("Hobbies") is None
        assert bucket_for_keywords(None) is None


class TestHelpers:
    def test_bucket_for_group_unknown(self):
        assert bucket_for_group("Everyday") is None
        assert bucket_for_group("") is None

    def test_true_expense_buckets(self):
        """Only fixed costs and guilt-free are consumption."""
        assert is_true_expense("fixedCosts")
        assert is_true_expense("guiltFree")
        assert not is_true_expense("investments")
        assert not is_true_expense("savings")
        assert not is_true_expense(None)
