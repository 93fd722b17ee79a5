"""Tests for field-level scheme change detection.

Covers top-level edits, eligibility edits, normalisation of empty and
reordered values, and the criteria-only filter used by the re-evaluation
trigger.
"""

from __future__ import annotations

from datetime import date

import pytest

from src.models.enums import CasteCategory, Gender
from src.models.scheme import Benefit, EligibilityCriteria, SchemeCategory, SchemeDocument
from src.services.changelog import detect_changes, detect_criteria_changes


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scheme() -> SchemeDocument:
    return SchemeDocument(
        scheme_id="post-matric-sc",
        name="Post Matric Scholarship for SC Students",
        description="Financial assistance for SC students studying at post-matriculation level",
        category=SchemeCategory.EDUCATION,
        ministry="Ministry of Social Justice and Empowerment",
        benefit=Benefit(amount=18000),
        deadline=date(2026, 12, 31),
        eligibility=EligibilityCriteria(
            max_income=250000,
            caste_categories=[CasteCategory.SC],
            occupations=["student"],
        ),
    )


# ---------------------------------------------------------------------------
# detect_changes
# ---------------------------------------------------------------------------


class TestDetectChanges:
    def test_identical_versions_have_no_changes(self, scheme: SchemeDocument) -> None:
        assert detect_changes(scheme, scheme.revised()) == []

    def test_description_change_is_cosmetic(self, scheme: SchemeDocument) -> None:
        changes = detect_changes(scheme, scheme.revised(description="Scholarship for SC students"))
        assert [c.field for c in changes] == ["description"]
        assert changes[0].affects_eligibility is False

    def test_benefit_change_is_detected(self, scheme: SchemeDocument) -> None:
        changes = detect_changes(scheme, scheme.revised(benefit=Benefit(amount=20000)))
        assert [c.field for c in changes] == ["benefit"]
        assert '"amount":20000.0' in changes[0].new_value

    def test_deadline_change_is_detected(self, scheme: SchemeDocument) -> None:
        changes = detect_changes(scheme, scheme.revised(deadline=date(2027, 1, 31)))
        (change,) = changes
        assert (change.field, change.old_value, change.new_value) == ("deadline", "2026-12-31", "2027-01-31")

    def test_eligibility_change_affects_eligibility(self, scheme: SchemeDocument) -> None:
        new_criteria = scheme.eligibility.model_copy(update={"max_income": 300000.0})
        changes = detect_changes(scheme, scheme.revised(eligibility=new_criteria))
        (change,) = changes
        assert change.field == "eligibility.max_income"
        assert change.affects_eligibility is True
        assert (change.old_value, change.new_value) == ("250000.0", "300000.0")

    def test_custom_rules_change_is_detected(self, scheme: SchemeDocument) -> None:
        new_criteria = scheme.eligibility.model_copy(update={"custom_rules": "Day scholars only"})
        changes = detect_changes(scheme, scheme.revised(eligibility=new_criteria))
        assert [c.field for c in changes] == ["eligibility.custom_rules"]
        assert changes[0].old_value == ""

    def test_multiple_fields(self, scheme: SchemeDocument) -> None:
        new_criteria = scheme.eligibility.model_copy(update={"gender": Gender.FEMALE})
        changes = detect_changes(scheme, scheme.revised(name="Renamed", eligibility=new_criteria))
        assert [c.field for c in changes] == ["name", "eligibility.gender"]


class TestNormalisation:
    def test_reordered_allow_list_is_not_a_change(self, scheme: SchemeDocument) -> None:
        before = scheme.model_copy(update={"eligibility": EligibilityCriteria(locations=["Bihar", "Assam"])})
        after = before.revised(eligibility=EligibilityCriteria(locations=["assam", "Bihar "]))
        assert detect_changes(before, after) == []

    def test_none_and_empty_string_are_equivalent(self, scheme: SchemeDocument) -> None:
        before = scheme.model_copy(update={"eligibility": EligibilityCriteria(custom_rules=None)})
        after = before.revised(eligibility=EligibilityCriteria(custom_rules="   "))
        assert detect_changes(before, after) == []

    def test_whitespace_only_edit_is_not_a_change(self, scheme: SchemeDocument) -> None:
        assert detect_changes(scheme, scheme.revised(name=f"  {scheme.name} ")) == []


# ---------------------------------------------------------------------------
# detect_criteria_changes
# ---------------------------------------------------------------------------


class TestDetectCriteriaChanges:
    def test_filters_out_cosmetic_fields(self, scheme: SchemeDocument) -> None:
        new_criteria = scheme.eligibility.model_copy(update={"min_age": 16})
        changes = detect_criteria_changes(
            scheme, scheme.revised(description="Updated text", eligibility=new_criteria)
        )
        assert [c.field for c in changes] == ["eligibility.min_age"]

    def test_cosmetic_only_edit_yields_nothing(self, scheme: SchemeDocument) -> None:
        assert detect_criteria_changes(scheme, scheme.revised(ministry="MoSJE")) == []

    def test_removed_restriction_is_a_change(self, scheme: SchemeDocument) -> None:
        new_criteria = scheme.eligibility.model_copy(update={"caste_categories": []})
        (change,) = detect_criteria_changes(scheme, scheme.revised(eligibility=new_criteria))
        assert change.field == "eligibility.caste_categories"
        assert change.old_value == '["sc"]'
        assert change.new_value == "[]"
