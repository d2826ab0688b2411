"""
Tests for rolling back a deployment from its ledger.
"""

import pytest

from core.platform import DataverseAPIError, DeleteOutcome, TransientAPIError
from core.schema import GlobalChoice, SchemaGenerator
from core.services import (
    DeploymentOptions,
    DeploymentOrchestrator,
    RecordingObserver,
    RollbackCause,
    RollbackExecutor,
    RollbackLedger,
    RollbackOptions,
)
from core.validators.input import ConfigurationError
from formats.cdm import CDMMatcher
from formats.mermaid import MermaidParser
from fixtures import FakeMetadataClient, SIMPLE_ERD


def _deploy(client, detect=False, **overrides):
    parsed = MermaidParser().parse(SIMPLE_ERD)
    detection = CDMMatcher().detect(parsed.entities) if detect else None
    document = SchemaGenerator("cr123").generate_from(parsed, detection)
    values = {"solution_name": "CrmModel", "publisher_prefix": "cr123", "max_concurrency": 1}
    values.update(overrides)
    return DeploymentOrchestrator(client).deploy(document, DeploymentOptions(**values))


@pytest.fixture
def client():
    return FakeMetadataClient()


@pytest.fixture
def deployed(client):
    """Ledger of a finished deployment against ``client``."""
    return _deploy(client).ledger


# =============================================================================
# Full rollback
# =============================================================================

@pytest.mark.unit
class TestRollback:

    def test_removes_everything(self, client, deployed):
        result = RollbackExecutor(client).rollback(deployed)

        assert result.success
        assert result.complete
        assert result.entities_deleted == 2
        assert result.relationships_deleted == 1
        assert result.solution_deleted
        assert result.publisher_deleted
        assert client.entities == {}
        assert client.solutions == {}
        assert client.publishers == {}

    def test_reverse_dependency_order(self, client, deployed):
        client.calls.clear()
        RollbackExecutor(client).rollback(deployed)

        methods = [method for method, _ in client.calls]
        assert methods == [
            "delete_relationship",
            "delete_entity",
            "delete_entity",
            "delete_solution",
            "delete_publisher",
        ]
        assert client.calls_to("delete_entity") == list(reversed(deployed.entities))

    def test_global_choices_removed(self, client):
        choice = GlobalChoice.from_dict({"name": "Priority", "options": ["Low", "High"]})
        ledger = _deploy(client, global_choices=[choice]).ledger

        result = RollbackExecutor(client).rollback(ledger)

        assert result.global_choices_deleted == 1
        assert client.option_sets == {}

    def test_choice_without_metadata_id_is_kept(self, client):
        ledger = RollbackLedger(global_choices=[{"name": "cr123_priority"}])

        result = RollbackExecutor(client).rollback(ledger)

        assert result.global_choices_deleted == 0
        assert result.remaining.global_choices == [{"name": "cr123_priority"}]
        assert result.warnings[0].cause == RollbackCause.NOT_FOUND

    def test_standard_table_only_removed_from_solution(self):
        client = FakeMetadataClient(existing_entities=("account",))
        ledger = _deploy(client, detect=True).ledger
        assert ledger.solution_components

        RollbackExecutor(client).rollback(ledger)

        assert "account" in client.entities
        assert client.solution_components == []
        assert "account" not in client.calls_to("delete_entity")

    def test_empty_ledger_is_noop(self, client):
        result = RollbackExecutor(client).rollback(RollbackLedger())

        assert result.success
        assert result.complete
        assert client.calls == []

    def test_observer_receives_progress(self, client, deployed):
        recorder = RecordingObserver()
        RollbackExecutor(client, observers=[recorder]).rollback(deployed)

        assert "rollback_entities" in recorder.stages()
        assert any("Deleted entity" in log["message"] for log in recorder.logs)


# =============================================================================
# Failures
# =============================================================================

@pytest.mark.resilience
class TestRollbackFailures:

    def test_referenced_entity_is_skipped(self, client, deployed):
        client.delete_outcomes["cr123_customer"] = DeleteOutcome.REFERENCED

        result = RollbackExecutor(client).rollback(deployed)

        assert result.entities_processed == 2
        assert result.entities_deleted == 1
        assert result.entities_skipped == 1
        assert result.remaining.entities == ["cr123_customer"]
        assert result.warnings[0].cause == RollbackCause.DEPENDENCY_CONFLICT
        assert result.success
        assert not result.complete

    def test_dependency_error_is_warning(self, client, deployed):
        client.fail("delete_entity", "cr123_order",
                    DataverseAPIError(400, "0x8004f01f", "The entity is referenced by 1 other components"))

        result = RollbackExecutor(client).rollback(deployed)

        assert result.entities_skipped == 1
        assert result.errors == []
        assert result.remaining.entities == ["cr123_order"]

    def test_not_found_counts_as_deleted(self, client, deployed):
        del client.entities["cr123_order"]

        result = RollbackExecutor(client).rollback(deployed)

        assert result.entities_deleted == 2
        assert any(w.cause == RollbackCause.NOT_FOUND and w.name == "cr123_order" for w in result.warnings)
        assert result.complete

    def test_api_error_recorded_and_continues(self, client, deployed):
        client.fail("delete_relationship", "cr123_Customer_Order", TransientAPIError(503, message="busy"))

        result = RollbackExecutor(client).rollback(deployed)

        assert not result.success
        assert result.errors[0].cause == RollbackCause.TRANSIENT
        assert result.remaining.relationships == ["cr123_Customer_Order"]
        assert client.calls_to("delete_entity")

    def test_publisher_kept_when_solution_remains(self, client, deployed):
        client.fail("delete_solution", deployed.solution["id"], DataverseAPIError(500, "0x0", "Internal error"))

        result = RollbackExecutor(client).rollback(deployed)

        assert not result.solution_deleted
        assert not result.publisher_deleted
        assert client.calls_to("delete_publisher") == []
        assert result.remaining.publisher == deployed.publisher
        assert any(w.component == "publisher" for w in result.warnings)

    def test_result_to_dict(self, client, deployed):
        client.delete_outcomes["cr123_customer"] = DeleteOutcome.REFERENCED

        data = RollbackExecutor(client).rollback(deployed).to_dict()

        assert data["entitiesSkipped"] == 1
        assert data["complete"] is False
        assert data["remaining"]["entities"] == ["cr123_customer"]
        assert data["warnings"][0]["cause"] == "dependency_conflict"


# =============================================================================
# Options
# =============================================================================

@pytest.mark.unit
class TestRollbackOptions:

    def test_only_relationships(self, client, deployed):
        result = RollbackExecutor(client).rollback(deployed, RollbackOptions.only(["relationships"]))

        assert result.relationships_deleted == 1
        assert result.entities_processed == 0
        assert sorted(result.remaining.entities) == ["cr123_customer", "cr123_order"]
        assert result.remaining.solution == deployed.solution
        assert result.remaining.publisher == deployed.publisher

    def test_only_accepts_dashes_and_case(self):
        options = RollbackOptions.only(["Global-Choices", " solution "])

        assert options.global_choices
        assert options.solution
        assert not options.entities

    def test_only_rejects_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown rollback component"):
            RollbackOptions.only(["tables"])

    def test_entities_without_relationships_rejected(self, client, deployed):
        with pytest.raises(ConfigurationError, match="relationships"):
            RollbackExecutor(client).rollback(deployed, RollbackOptions.only(["entities"]))

    def test_entities_alone_allowed_without_relationships_in_ledger(self):
        RollbackOptions.only(["entities"]).validate(RollbackLedger(entities=["cr123_order"]))

    def test_publisher_requires_solution(self):
        with pytest.raises(ConfigurationError, match="solution"):
            RollbackOptions(solution=False).validate()


# =============================================================================
# Ledger
# =============================================================================

@pytest.mark.unit
class TestRollbackLedger:

    def test_dict_round_trip(self, deployed):
        assert RollbackLedger.from_dict(deployed.to_dict()) == deployed

    def test_from_none(self):
        assert RollbackLedger.from_dict(None).is_empty
