"""
Tests for the deployment orchestrator.

Runs the orchestrator against the in-memory metadata client so the stage
order, idempotency, partial failure and cancellation can be checked without
a Dataverse environment.
"""

import pytest

from core.platform import DataverseAPIError, TransientAPIError
from core.schema import GlobalChoice, SchemaGenerator
from core.services import (
    ComponentKind,
    DeploymentOptions,
    DeploymentOrchestrator,
    DeploymentState,
    OutcomeStatus,
    RecordingObserver,
    SimpleCancellationToken,
)
from core.validators.input import ConfigurationError
from formats.cdm import CDMMatcher
from formats.mermaid import MermaidParser
from shared.models.metadata_types import ComponentType
from fixtures import (
    FakeMetadataClient,
    SIMPLE_ERD,
    TYPED_ERD,
    LOOKUP_ERD,
    MANY_TO_MANY_ERD,
)


def _document(text, detect=False, prefix="cr123"):
    parsed = MermaidParser().parse(text)
    detection = CDMMatcher().detect(parsed.entities) if detect else None
    return SchemaGenerator(prefix).generate_from(parsed, detection, generated_at="2024-01-01T00:00:00+00:00")


def _options(**overrides):
    values = {"solution_name": "CrmModel", "publisher_prefix": "cr123", "max_concurrency": 2}
    values.update(overrides)
    return DeploymentOptions(**values)


def _statuses(result, kind):
    return {o.name: o.status for o in result.outcomes_for(kind)}


@pytest.fixture
def client():
    return FakeMetadataClient()


# =============================================================================
# Happy path
# =============================================================================

@pytest.mark.unit
class TestDeploy:

    def test_creates_everything_in_order(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        assert result.success
        assert result.state == DeploymentState.COMPLETE
        assert set(client.calls_to("create_entity")) == {"cr123_customer", "cr123_order"}
        assert client.calls_to("create_relationship") == ["cr123_Customer_Order"]

        methods = [method for method, _ in client.calls]
        assert methods.index("ensure_publisher") < methods.index("ensure_solution")
        assert methods.index("ensure_solution") < methods.index("create_entity")
        last_entity = max(i for i, m in enumerate(methods) if m == "create_entity")
        assert last_entity < methods.index("create_relationship")

    def test_publisher_and_solution_are_bound(self, client):
        DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        publisher = client.publishers["cr123publisher"]
        assert publisher.prefix == "cr123"
        assert client.solutions["crmmodel"].publisher_id == publisher.publisher_id

    def test_typed_columns_created_after_entity(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(TYPED_ERD), _options())

        created = client.calls_to("create_attribute")
        assert "cr123_quantity" in created
        assert "cr123_is_active" in created
        assert result.count(ComponentKind.ATTRIBUTE, OutcomeStatus.CREATED) == len(created)
        for outcome in result.outcomes_for(ComponentKind.ATTRIBUTE):
            assert outcome.parent == "cr123_product"

    def test_ledger_lists_created_components(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        ledger = result.ledger
        assert ledger.publisher["uniqueName"] == "cr123publisher"
        assert ledger.solution["uniqueName"] == "CrmModel"
        assert sorted(ledger.entities) == ["cr123_customer", "cr123_order"]
        assert ledger.relationships == ["cr123_Customer_Order"]

    def test_summary_counts(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        summary = result.summary()
        assert summary["state"] == "complete"
        assert summary["entity"] == {"created": 2}
        assert summary["relationship"] == {"created": 1}
        assert result.to_dict()["rollbackLedger"]["entities"]

    def test_deployment_id_is_kept(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options(), deployment_id="deploy-1")
        assert result.deployment_id == "deploy-1"


# =============================================================================
# Idempotency
# =============================================================================

@pytest.mark.unit
class TestIdempotency:

    def test_second_run_reuses_everything(self, client):
        orchestrator = DeploymentOrchestrator(client)
        orchestrator.deploy(_document(SIMPLE_ERD), _options())
        client.calls.clear()

        result = orchestrator.deploy(_document(SIMPLE_ERD), _options())

        assert result.success
        assert client.calls_to("create_entity") == []
        assert client.calls_to("create_relationship") == []
        assert result.count(ComponentKind.ENTITY, OutcomeStatus.ALREADY_PRESENT) == 2
        assert result.ledger.is_empty

    def test_existing_entity_is_matched_case_insensitively(self):
        client = FakeMetadataClient(existing_entities=("CR123_Customer",))
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        assert client.calls_to("create_entity") == ["cr123_order"]
        statuses = _statuses(result, ComponentKind.ENTITY)
        assert statuses["cr123_customer"] == OutcomeStatus.ALREADY_PRESENT

    def test_existing_entity_is_added_to_solution(self):
        client = FakeMetadataClient(existing_entities=("cr123_customer",))
        DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        entity_id = client.entities["cr123_customer"].metadata_id
        assert (int(ComponentType.ENTITY), entity_id, "CrmModel") in client.solution_components

    def test_duplicate_entity_in_document_created_once(self, client):
        document = _document(SIMPLE_ERD)
        document.entities.append(document.entities[0])

        result = DeploymentOrchestrator(client).deploy(document, _options())

        assert client.calls_to("create_entity").count("cr123_customer") == 1
        statuses = [o.status for o in result.outcomes_for(ComponentKind.ENTITY) if o.name == "cr123_customer"]
        assert sorted(statuses) == [OutcomeStatus.ALREADY_PRESENT, OutcomeStatus.CREATED]

    def test_duplicate_error_counts_as_present(self, client):
        client.fail("create_entity", "cr123_order",
                    DataverseAPIError(400, "0x80044363", "An entity with the same name already exists"))

        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        assert _statuses(result, ComponentKind.ENTITY)["cr123_order"] == OutcomeStatus.ALREADY_PRESENT
        assert any("already exists" in w for w in result.warnings)
        assert client.calls_to("create_relationship") == ["cr123_Customer_Order"]


# =============================================================================
# Partial failure
# =============================================================================

@pytest.mark.resilience
class TestPartialFailure:

    def test_permanent_entity_failure_skips_dependents(self, client):
        client.fail("create_entity", "cr123_order", DataverseAPIError(400, "0x80040203", "Invalid SchemaName"))

        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        statuses = _statuses(result, ComponentKind.ENTITY)
        assert statuses["cr123_customer"] == OutcomeStatus.CREATED
        assert statuses["cr123_order"] == OutcomeStatus.SKIPPED
        assert _statuses(result, ComponentKind.RELATIONSHIP)["cr123_Customer_Order"] == OutcomeStatus.SKIPPED
        assert client.calls_to("create_relationship") == []
        assert result.state == DeploymentState.COMPLETE
        assert result.errors == []
        assert any("cr123_order" in w and "rejected" in w for w in result.warnings)
        assert result.success

    def test_transient_failure_is_failed(self, client):
        client.fail("create_entity", "cr123_order", TransientAPIError(503, message="unavailable"))

        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        assert _statuses(result, ComponentKind.ENTITY)["cr123_order"] == OutcomeStatus.FAILED
        assert any("after retries" in e for e in result.errors)

    def test_attribute_failure_does_not_stop_siblings(self, client):
        client.fail("create_attribute", "cr123_quantity", DataverseAPIError(400, "0x0", "Bad attribute"))

        result = DeploymentOrchestrator(client).deploy(_document(TYPED_ERD), _options())

        statuses = _statuses(result, ComponentKind.ATTRIBUTE)
        assert statuses["cr123_quantity"] == OutcomeStatus.SKIPPED
        assert statuses["cr123_price"] == OutcomeStatus.CREATED

    def test_rejected_attribute_is_warning_not_error(self, client):
        client.fail("create_attribute", "cr123_quantity",
                    DataverseAPIError(400, "0x80044331", "A validation error occurred"))

        result = DeploymentOrchestrator(client).deploy(_document(TYPED_ERD), _options())

        outcome = next(o for o in result.outcomes_for(ComponentKind.ATTRIBUTE) if o.name == "cr123_quantity")
        assert outcome.status == OutcomeStatus.SKIPPED
        assert outcome.parent == "cr123_product"
        assert result.errors == []
        assert any("cr123_quantity" in w for w in result.warnings)
        assert result.success

    def test_dependency_conflict_is_warning(self, client):
        client.fail("create_relationship", "cr123_Customer_Order",
                    DataverseAPIError(400, "0x8004f01f", "The component is referenced by 2 other components"))

        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        assert _statuses(result, ComponentKind.RELATIONSHIP)["cr123_Customer_Order"] == OutcomeStatus.SKIPPED
        assert result.errors == []
        assert any("referenced by" in w for w in result.warnings)

    def test_publisher_failure_stops_run(self, client):
        client.fail("ensure_publisher", "cr123publisher", DataverseAPIError(403, "0x80040220", "Forbidden"))

        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        assert result.state == DeploymentState.FAILED
        assert client.calls_to("ensure_solution") == []
        assert client.calls_to("create_entity") == []

    def test_solution_add_failure_is_warning(self):
        client = FakeMetadataClient(existing_entities=("cr123_customer",))
        client.fail("add_component_to_solution", client.entities["cr123_customer"].metadata_id,
                    DataverseAPIError(400, "0x0", "Cannot add"))

        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options())

        assert result.success
        assert any("Could not add 'cr123_customer'" in w for w in result.warnings)


# =============================================================================
# Cancellation
# =============================================================================

@pytest.mark.resilience
class TestCancellation:

    def test_cancel_before_start(self, client):
        token = SimpleCancellationToken()
        token.cancel()

        result = DeploymentOrchestrator(client, cancellation_token=token).deploy(_document(SIMPLE_ERD), _options())

        assert result.state == DeploymentState.CANCELLED
        assert result.cancelled
        assert client.calls == []

    def test_cancel_mid_run_keeps_partial_results(self, client):
        token = SimpleCancellationToken()

        def cancel_after_solution(method, name):
            if method == "ensure_solution":
                token.cancel()

        client.after_call = cancel_after_solution
        result = DeploymentOrchestrator(client, cancellation_token=token).deploy(_document(SIMPLE_ERD), _options())

        assert result.state == DeploymentState.CANCELLED
        assert result.ledger.solution["uniqueName"] == "CrmModel"
        assert client.calls_to("create_entity") == []
        assert any("cancelled" in w for w in result.warnings)
        assert not result.success


# =============================================================================
# Dry run
# =============================================================================

@pytest.mark.unit
class TestDryRun:

    def test_no_remote_calls(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options(dry_run=True))

        assert client.calls == []
        assert result.dry_run
        assert result.success
        statuses = {o.status for o in result.outcomes}
        assert statuses == {OutcomeStatus.PLANNED}

    def test_plan_lists_components(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options(dry_run=True))

        assert set(_statuses(result, ComponentKind.ENTITY)) == {"cr123_customer", "cr123_order"}
        assert "cr123_Customer_Order" in _statuses(result, ComponentKind.RELATIONSHIP)

    def test_generation_errors_fail_plan(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(MANY_TO_MANY_ERD), _options(dry_run=True))

        assert not result.success
        assert any("junction" in e for e in result.errors)


# =============================================================================
# Standard tables and lookups
# =============================================================================

@pytest.mark.unit
class TestStandardTables:

    def test_standard_table_added_to_solution(self):
        client = FakeMetadataClient(existing_entities=("account",))
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD, detect=True), _options())

        assert client.calls_to("create_entity") == ["cr123_order"]
        assert "account" not in client.calls_to("create_entity")
        assert result.ledger.solution_components[0]["name"] == "account"
        assert client.calls_to("create_relationship")

    def test_missing_standard_table_fails(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD, detect=True), _options())

        assert _statuses(result, ComponentKind.SOLUTION_COMPONENT)["account"] == OutcomeStatus.FAILED
        assert any("does not exist" in e for e in result.errors)
        assert client.calls_to("create_relationship") == []

    def test_lookup_binds_first_existing_target(self):
        client = FakeMetadataClient(existing_entities=("msdyn_resource",))
        result = DeploymentOrchestrator(client).deploy(_document(LOOKUP_ERD), _options())

        created = client.calls_to("create_relationship")
        assert "cr123_Task_Project" in created
        assert len(created) == 2
        assert result.errors == []

    def test_missing_lookup_targets_are_reported(self, client):
        result = DeploymentOrchestrator(client).deploy(_document(LOOKUP_ERD), _options())

        assert "msdyn_resource" in client.calls_to("get_entity")
        assert client.calls_to("create_relationship") == ["cr123_Task_Project"]
        assert any("none of the targets" in e for e in result.errors)


# =============================================================================
# Global choices
# =============================================================================

@pytest.mark.unit
class TestGlobalChoices:

    def _choice(self):
        return GlobalChoice.from_dict({"name": "Priority", "options": ["Low", "Normal", "High"]})

    def test_created_before_entities(self, client):
        result = DeploymentOrchestrator(client).deploy(
            _document(SIMPLE_ERD), _options(global_choices=[self._choice()])
        )

        assert client.option_sets["cr123_priority"].options == [100000000, 100000001, 100000002]
        methods = [method for method, _ in client.calls]
        assert methods.index("create_global_option_set") < methods.index("create_entity")
        assert result.ledger.global_choices[0]["name"] == "cr123_priority"

    def test_existing_choice_reused(self, client):
        orchestrator = DeploymentOrchestrator(client)
        orchestrator.deploy(_document(SIMPLE_ERD), _options(global_choices=[self._choice()]))
        client.calls.clear()

        result = orchestrator.deploy(_document(SIMPLE_ERD), _options(global_choices=[self._choice()]))

        assert client.calls_to("create_global_option_set") == []
        assert _statuses(result, ComponentKind.GLOBAL_CHOICE)["cr123_priority"] == OutcomeStatus.ALREADY_PRESENT


# =============================================================================
# Options and preconditions
# =============================================================================

@pytest.mark.unit
class TestOptions:

    def test_from_dict(self, sample_config):
        options = DeploymentOptions.from_dict(sample_config)

        assert options.solution_name == "CrmModel"
        assert options.publisher_prefix == "cr123"
        assert options.max_concurrency == 4
        assert options.global_choices[0].name == "Priority"
        assert options.effective_publisher_name == "cr123publisher"

    @pytest.mark.parametrize("overrides", [
        {"solution_name": ""},
        {"publisher_prefix": "mscrm"},
        {"max_concurrency": 0},
        {"global_choices": [GlobalChoice(name="Empty")]},
    ])
    def test_invalid_options_rejected_before_calls(self, client, overrides):
        with pytest.raises(ConfigurationError):
            DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD), _options(**overrides))
        assert client.calls == []

    def test_empty_document_rejected(self, client):
        with pytest.raises(ConfigurationError, match="empty"):
            DeploymentOrchestrator(client).deploy(_document(""), _options())

    def test_prefix_mismatch_rejected(self, client):
        with pytest.raises(ConfigurationError, match="prefix"):
            DeploymentOrchestrator(client).deploy(_document(SIMPLE_ERD, prefix="abc"), _options())


# =============================================================================
# Observers
# =============================================================================

@pytest.mark.unit
class TestObservers:

    def test_stages_reported(self, client):
        recorder = RecordingObserver()
        DeploymentOrchestrator(client, observers=[recorder]).deploy(_document(SIMPLE_ERD), _options())

        stages = recorder.stages()
        assert stages[0] == "start"
        assert stages[-1] == "finished"
        for stage in ("publisher_ready", "solution_ready", "entities", "relationships_created", "complete"):
            assert stage in stages

    def test_failing_observer_is_isolated(self, client):
        class Broken:
            def on_progress(self, stage, message, details=None):
                raise RuntimeError("observer down")

            def on_log(self, level, message):
                raise RuntimeError("observer down")

        recorder = RecordingObserver()
        result = DeploymentOrchestrator(client, observers=[Broken(), recorder]).deploy(
            _document(SIMPLE_ERD), _options()
        )

        assert result.success
        assert "finished" in recorder.stages()
