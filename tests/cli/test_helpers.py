"""
Tests for CLI helpers.

Tests cover:
- Deployment log context (run id, solution, stage) on log records
- Text and JSON logging setup, log file fallback
- Configuration loading
"""

import json
import logging
import os
import tempfile

import pytest

from app.cli import helpers
from app.cli.helpers import (
    DeploymentContextFilter,
    DeploymentJSONFormatter,
    LogContextObserver,
    bind_log_context,
    format_status_counts,
    load_config,
    log_context,
    setup_logging,
)


def _record(message="Created entity cr123_order", **extra):
    record = logging.LogRecord("core.services.deployment", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _stamped(**extra):
    record = _record(**extra)
    DeploymentContextFilter().filter(record)
    return record


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    level = root.level
    yield
    helpers.clear_log_context()
    for handler in list(helpers._MANAGED_HANDLERS):
        root.removeHandler(handler)
        handler.close()
    helpers._MANAGED_HANDLERS.clear()
    root.setLevel(level)


# =============================================================================
# Log context
# =============================================================================

@pytest.mark.unit
class TestLogContext:

    def test_records_carry_bound_context(self):
        bind_log_context(deployment_id="deploy-1", solution="CrmModel")

        record = _stamped()

        assert record.deployment_id == "deploy-1"
        assert record.solution == "CrmModel"
        assert record.stage is None
        assert record.context == "[deploy-1 CrmModel] "

    def test_no_context_outside_a_deployment(self):
        record = _stamped()

        assert record.deployment_id is None
        assert record.context == ""

    def test_explicit_extra_wins(self):
        bind_log_context(stage="entities_created")

        record = _stamped(stage="relationships_created")

        assert record.stage == "relationships_created"

    def test_none_clears_a_field(self):
        bind_log_context(solution="CrmModel", stage="rollback")
        bind_log_context(stage=None)

        assert _stamped().context == "[CrmModel] "

    def test_context_cleared_after_block(self):
        with pytest.raises(RuntimeError):
            with log_context(deployment_id="deploy-1"):
                assert _stamped().deployment_id == "deploy-1"
                raise RuntimeError("stage failed")

        assert _stamped().deployment_id is None

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="Unknown log context field"):
            bind_log_context(tenant="contoso")

    def test_observer_tracks_run_and_stage(self):
        observer = LogContextObserver()

        observer.on_progress("start", "Deploying 2 entities", {"deploymentId": "deploy-7", "dryRun": False})
        observer.on_progress("entities_created", "2/2 entities available")

        record = _stamped()
        assert record.deployment_id == "deploy-7"
        assert record.stage == "entities_created"


# =============================================================================
# Formatting and setup
# =============================================================================

@pytest.mark.unit
class TestDeploymentJSONFormatter:

    def test_includes_context(self):
        record = _record(deployment_id="deploy-1", solution="CrmModel", stage="entities_created")

        payload = json.loads(DeploymentJSONFormatter().format(record))

        assert payload["message"] == "Created entity cr123_order"
        assert payload["level"] == "INFO"
        assert payload["deploymentId"] == "deploy-1"
        assert payload["solution"] == "CrmModel"
        assert payload["stage"] == "entities_created"

    def test_omits_missing_context(self):
        payload = json.loads(DeploymentJSONFormatter().format(_stamped()))

        assert "deploymentId" not in payload
        assert "stage" not in payload


@pytest.mark.unit
class TestSetupLogging:

    def test_text_output_shows_context(self, capsys):
        setup_logging(level="INFO")

        with log_context(deployment_id="deploy-1", solution="CrmModel"):
            logging.getLogger("core.services.deployment").info("Created entity cr123_order")

        assert "INFO - [deploy-1 CrmModel] Created entity cr123_order" in capsys.readouterr().out

    def test_json_output(self, capsys):
        setup_logging(level="INFO", fmt="json")

        with log_context(solution="CrmModel"):
            logging.getLogger("core.services.rollback").warning("Entity cr123_order is referenced")

        payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert payload["solution"] == "CrmModel"
        assert payload["level"] == "WARNING"

    def test_repeated_setup_replaces_handlers(self, capsys):
        setup_logging(level="INFO")
        setup_logging(level="INFO")

        logging.getLogger("app.cli").info("written once")

        assert capsys.readouterr().out.count("written once") == 1

    def test_level_filters_output(self, capsys):
        setup_logging(level="ERROR")

        logging.getLogger("app.cli").info("hidden")

        assert "hidden" not in capsys.readouterr().out

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "deploy.log"

        used = setup_logging(level="INFO", log_file=str(log_file))
        logging.getLogger("app.cli").info("Deployment finished")

        assert used == str(log_file)
        assert "Deployment finished" in log_file.read_text(encoding='utf-8')

    def test_log_file_falls_back_to_temp_dir(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")

        used = setup_logging(log_file=str(blocker / "deploy.log"))

        assert used == os.path.join(tempfile.gettempdir(), "deploy.log")


# =============================================================================
# Configuration and console helpers
# =============================================================================

@pytest.mark.unit
class TestLoadConfig:

    def test_valid_config(self, temp_config_file):
        config = load_config(temp_config_file)
        assert config["deployment"]["publisher_prefix"] == "cr123"

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.sample.json"):
            load_config(str(tmp_path / "config.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken")

        with pytest.raises(ValueError, match="Invalid JSON"):
            load_config(str(path))

    def test_must_be_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[]")

        with pytest.raises(ValueError, match="JSON object"):
            load_config(str(path))

    def test_client_secret_warns(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"dataverse": {"client_secret": "s3cret"}}))

        with caplog.at_level(logging.WARNING):
            load_config(str(path))

        assert "client_secret" in caplog.text
        assert "s3cret" not in caplog.text


def test_status_counts_largest_first():
    text = format_status_counts({"created": 2, "skipped": 3, "already_present": 2})

    assert text.splitlines() == ["    skipped: 3", "    already_present: 2", "    created: 2"]
