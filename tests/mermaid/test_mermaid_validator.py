"""
Tests for structural diagram validation.
"""

import pytest

from formats.mermaid import MermaidValidator
from formats.mermaid.mermaid_validator import expected_foreign_key, relationship_sides
from shared.models import Cardinality, Relationship
from shared.utilities.validation import IssueCategory, Severity, make_issue_id
from fixtures import (
    SIMPLE_ERD,
    EVENT_ERD,
    STATUS_ERD,
    BROKEN_ERD,
    MANY_TO_MANY_ERD,
    DUPLICATE_RELATIONSHIP_ERD,
    MISSING_ENTITY_ERD,
    LOOKUP_ERD,
    CDM_ERD,
)


@pytest.fixture
def validator():
    return MermaidValidator()


def _ids(result):
    return {issue.issue_id for issue in result.issues}


@pytest.mark.unit
class TestEntityValidation:
    """Primary keys, duplicates and reserved column names."""

    def test_simple_diagram_is_valid(self, validator):
        result = validator.validate(SIMPLE_ERD)

        assert result.is_valid
        assert result.error_count == 0

    def test_missing_primary_key(self, validator):
        result = validator.validate(BROKEN_ERD)

        issue = result.get_issue("missing-primary-key:Invoice")
        assert issue is not None
        assert issue.severity == Severity.ERROR
        assert issue.auto_fixable
        assert not result.is_valid

    def test_multiple_primary_keys(self, validator):
        issue = validator.validate(BROKEN_ERD).get_issue("multiple-primary-keys:Shipment")

        assert issue.columns == ["id", "tracking"]
        assert "'id'" in issue.recommendation

    def test_duplicate_columns(self, validator):
        issue = validator.validate(BROKEN_ERD).get_issue("duplicate-columns:Shipment")

        assert issue.columns == ["carrier"]

    def test_name_column_conflict_is_warning(self, validator):
        issue = validator.validate(EVENT_ERD).get_issue("naming-conflict:Event")

        assert issue.severity == Severity.WARNING
        assert "event_name" in issue.recommendation

    def test_choice_and_status_columns_are_informational(self, validator):
        event = validator.validate(EVENT_ERD)
        ticket = validator.validate(STATUS_ERD)

        assert event.get_issue("choice-column:Event").severity == Severity.INFO
        assert ticket.get_issue("status-column-ignored:Ticket").severity == Severity.INFO

    def test_system_attribute_conflict(self, validator):
        issue = validator.validate(STATUS_ERD).get_issue("system-attribute-conflict:Ticket")

        assert issue.columns == ["statuscode"]
        assert "ticket_statuscode" in issue.recommendation

    def test_empty_entity_warns_and_needs_key(self, validator):
        result = validator.validate("erDiagram\nEmpty {\n}")

        assert result.has_issue("empty-entity:Empty")
        assert result.has_issue("missing-primary-key:Empty")

    def test_no_entities(self, validator):
        result = validator.validate("erDiagram\n")

        assert not result.is_valid
        assert result.errors[0].category == IssueCategory.MISSING_REQUIRED

    def test_parse_warnings_surface_as_syntax_warnings(self, validator):
        result = validator.validate("erDiagram\nA {\n string id PK\n}\ngarbage here")

        assert result.by_category(IssueCategory.SYNTAX_ERROR)
        assert result.is_valid


@pytest.mark.unit
class TestRelationshipValidation:
    """Endpoints, cardinality and foreign key conventions."""

    def test_missing_entity(self, validator):
        result = validator.validate(MISSING_ENTITY_ERD)

        issue = result.get_issue("missing-entity:Warehouse:Warehouse->Order")
        assert issue.severity == Severity.ERROR
        assert not issue.auto_fixable

    def test_many_to_many_requires_junction(self, validator):
        issue = validator.validate(MANY_TO_MANY_ERD).get_issue(
            "many-to-many-relationship:Student->Course"
        )

        assert issue.severity == Severity.ERROR
        assert issue.auto_fixable
        assert "StudentCourse" in issue.recommendation

    def test_missing_foreign_key(self, validator):
        issue = validator.validate(BROKEN_ERD).get_issue("missing-foreign-key:Shipment:Invoice->Shipment")

        assert issue.severity == Severity.WARNING
        assert "invoice_id" in issue.recommendation

    def test_unconventional_foreign_key(self, validator):
        text = SIMPLE_ERD.replace("customer_id FK", "buyer FK")

        result = validator.validate(text)

        issue = result.get_issue("foreign-key-naming:Order:Customer->Order")
        assert issue.severity == Severity.INFO
        assert issue not in result.warnings
        assert result.is_valid

    def test_lookup_counts_as_foreign_key(self, validator):
        text = LOOKUP_ERD + "    Project ||--o{ Task : contains\n"

        result = validator.validate(text)

        assert not result.by_category(IssueCategory.MISSING_FOREIGN_KEY)
        assert not result.by_category(IssueCategory.FOREIGN_KEY_NAMING)

    def test_self_reference_warns(self, validator):
        text = "erDiagram\nEmployee {\n string id PK\n string employee_id FK\n}\nEmployee ||--o{ Employee : manages"

        result = validator.validate(text)

        assert result.has_issue("self-referencing-relationship:Employee:Employee->Employee")

    def test_duplicate_relationship(self, validator):
        result = validator.validate(DUPLICATE_RELATIONSHIP_ERD)

        issues = result.by_category(IssueCategory.DUPLICATE_RELATIONSHIP)
        assert len(issues) == 1
        issue = issues[0]
        assert issue.issue_id == "duplicate-relationship:Customer->Order"
        assert issue.severity == Severity.WARNING
        assert issue.auto_fixable
        assert "3 times" in issue.message
        assert issue.location == "line 10"
        assert issue.details == "Repeated on line(s) 11, 12"
        assert result.is_valid

    def test_repeated_lines_are_checked_once(self, validator):
        text = DUPLICATE_RELATIONSHIP_ERD.replace("string customer_id FK", "string buyer FK")

        result = validator.validate(text)

        ids = [issue.issue_id for issue in result.issues]
        assert len(ids) == len(set(ids))
        assert len(result.by_category(IssueCategory.FOREIGN_KEY_NAMING)) == 1

    def test_standard_tables_skip_entity_checks(self, validator):
        result = validator.validate(CDM_ERD, cdm_entities=["Account", "Contact"])

        assert result.has_issue("cdm-entity-detected:Account")
        assert not result.has_issue("missing-foreign-key:Contact:Account->Contact")
        assert result.is_valid


@pytest.mark.unit
class TestValidationHelpers:

    def test_relationship_sides_flip_for_many_to_one(self):
        rel = Relationship("Order", "Customer", Cardinality.MANY_TO_ONE)

        assert relationship_sides(rel) == ("Customer", "Order")

    def test_expected_foreign_key(self):
        assert expected_foreign_key("Customer") == "customer_id"

    def test_issue_id_format(self):
        assert make_issue_id(IssueCategory.MISSING_PRIMARY_KEY, "A") == "missing-primary-key:A"
        assert make_issue_id(
            IssueCategory.MISSING_ENTITY, "B", "A->B"
        ) == "missing-entity:B:A->B"

    def test_summary_and_dict(self, validator):
        result = validator.validate(BROKEN_ERD, source_path="broken.mmd")

        summary = result.get_summary()
        data = result.to_dict()
        assert "FAILED" in summary
        assert "[auto-fixable]" in summary
        assert data["source"] == "broken.mmd"
        assert data["errorCount"] == result.error_count
