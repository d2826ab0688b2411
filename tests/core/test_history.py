"""
Tests for the JSON deployment history store.
"""

import json

import pytest

from core.services import (
    DeploymentHistory,
    DeploymentResult,
    DeploymentState,
    HistoryNotFoundError,
    RollbackLedger,
    RollbackResult,
)
from core.services.history import STATUS_DEPLOYED, STATUS_FAILED, STATUS_MODIFIED, STATUS_ROLLED_BACK


def _result(deployment_id="deploy-1", started_at="2024-01-01T00:00:00+00:00", errors=None):
    result = DeploymentResult(
        deployment_id=deployment_id,
        solution_name="CrmModel",
        state=DeploymentState.COMPLETE,
        started_at=started_at,
        errors=list(errors or []),
    )
    result.ledger = RollbackLedger(
        publisher={"id": "p-1", "uniqueName": "cr123publisher"},
        solution={"id": "s-1", "uniqueName": "CrmModel"},
        entities=["cr123_customer", "cr123_order"],
        relationships=["cr123_Customer_Order"],
    )
    return result


@pytest.fixture
def history(tmp_path):
    return DeploymentHistory(tmp_path / "history")


@pytest.mark.unit
class TestDeploymentHistory:

    def test_save_and_load(self, history):
        path = history.save(_result(), environment_url="https://contoso.crm.dynamics.com")

        assert path.name == "deploy-1.json"
        record = history.load("deploy-1")
        assert record["status"] == STATUS_DEPLOYED
        assert record["environmentUrl"] == "https://contoso.crm.dynamics.com"
        assert record["rollbacks"] == []

    def test_failed_run_status(self, history):
        history.save(_result(errors=["boom"]))
        assert history.load("deploy-1")["status"] == STATUS_FAILED

    def test_ledger_round_trip(self, history):
        history.save(_result())

        ledger = history.get_ledger("deploy-1")

        assert ledger.entities == ["cr123_customer", "cr123_order"]
        assert ledger.solution["id"] == "s-1"

    def test_no_temp_file_left(self, history):
        history.save(_result())
        assert [p.name for p in history.directory.iterdir()] == ["deploy-1.json"]

    def test_missing_deployment(self, history):
        with pytest.raises(HistoryNotFoundError):
            history.load("deploy-404")

    @pytest.mark.parametrize("deployment_id", ["", "../escape", "a/b", ".hidden"])
    def test_invalid_id_rejected(self, history, deployment_id):
        with pytest.raises(ValueError):
            history.load(deployment_id)

    def test_corrupt_record(self, history):
        history.directory.mkdir(parents=True)
        (history.directory / "deploy-1.json").write_text("{not json")

        with pytest.raises(ValueError, match="Corrupt"):
            history.load("deploy-1")

    def test_list_newest_first(self, history):
        history.save(_result("deploy-old", started_at="2024-01-01T00:00:00+00:00"))
        history.save(_result("deploy-new", started_at="2024-02-01T00:00:00+00:00"))
        (history.directory / "broken.json").write_text("nope")

        summaries = history.list()

        assert [s["deploymentId"] for s in summaries] == ["deploy-new", "deploy-old"]
        assert summaries[0]["rollbacks"] == 0

    def test_list_without_directory(self, history):
        assert history.list() == []


@pytest.mark.unit
class TestRecordRollback:

    def test_complete_rollback(self, history):
        history.save(_result())

        record = history.record_rollback("deploy-1", RollbackResult(entities_deleted=2))

        assert record["status"] == STATUS_ROLLED_BACK
        assert history.get_ledger("deploy-1").is_empty
        assert len(history.load("deploy-1")["rollbacks"]) == 1

    def test_partial_rollback_keeps_remaining(self, history):
        history.save(_result())
        rollback = RollbackResult(entities_deleted=1, entities_skipped=1)
        rollback.remaining.entities = ["cr123_customer"]

        record = history.record_rollback("deploy-1", rollback)

        assert record["status"] == STATUS_MODIFIED
        assert history.get_ledger("deploy-1").entities == ["cr123_customer"]
        stored = json.loads((history.directory / "deploy-1.json").read_text())
        assert stored["rollbacks"][0]["entitiesSkipped"] == 1
        assert "rolledBackAt" in stored["rollbacks"][0]

    def test_rollback_of_unknown_deployment(self, history):
        with pytest.raises(HistoryNotFoundError):
            history.record_rollback("deploy-404", RollbackResult())
