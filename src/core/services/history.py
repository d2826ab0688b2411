"""
Deployment history.

Each deployment is stored as one JSON file (``{deployment_id}.json``) under
a history directory, together with its rollback ledger, so a later
``rollback`` can replay it. Rollbacks are appended to the record and the
ledger is replaced with whatever could not be removed.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from constants import DeploymentConfig

from .deployment import DeploymentResult, RollbackLedger
from .rollback import RollbackResult

logger = logging.getLogger(__name__)

DEPLOYMENT_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$')

STATUS_DEPLOYED = "deployed"
STATUS_FAILED = "failed"
STATUS_ROLLED_BACK = "rolled-back"
STATUS_MODIFIED = "modified"


class HistoryNotFoundError(LookupError):
    """No deployment with that id is recorded."""


class DeploymentHistory:
    """JSON file store of deployment records."""

    def __init__(self, directory: Union[str, Path] = DeploymentConfig.DEFAULT_HISTORY_DIR):
        self.directory = Path(directory)

    def _path(self, deployment_id: str) -> Path:
        if not deployment_id or not DEPLOYMENT_ID_PATTERN.match(deployment_id):
            raise ValueError(f"Invalid deployment id: {deployment_id!r}")
        return self.directory / f"{deployment_id}.json"

    def _write(self, record: Dict[str, Any]) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(record["deploymentId"])
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(record, f, indent=2)
        tmp.replace(path)
        return path

    def save(self, result: DeploymentResult, environment_url: Optional[str] = None) -> Path:
        """Record a deployment result."""
        record = result.to_dict()
        record["status"] = STATUS_DEPLOYED if result.success else STATUS_FAILED
        record["environmentUrl"] = environment_url
        record["rollbacks"] = []
        path = self._write(record)
        logger.info(f"Deployment {result.deployment_id} recorded in {path}")
        return path

    def load(self, deployment_id: str) -> Dict[str, Any]:
        path = self._path(deployment_id)
        if not path.exists():
            raise HistoryNotFoundError(f"Deployment not found: {deployment_id}")
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupt history record {path}: {e}")

    def get_ledger(self, deployment_id: str) -> RollbackLedger:
        return RollbackLedger.from_dict(self.load(deployment_id).get("rollbackLedger"))

    def list(self) -> List[Dict[str, Any]]:
        """Summaries of recorded deployments, newest first."""
        if not self.directory.exists():
            return []
        summaries = []
        for path in self.directory.glob("*.json"):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    record = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Skipping unreadable history record {path}: {e}")
                continue
            summaries.append({
                "deploymentId": record.get("deploymentId", path.stem),
                "solutionName": record.get("solutionName"),
                "status": record.get("status"),
                "startedAt": record.get("startedAt"),
                "dryRun": record.get("dryRun", False),
                "rollbacks": len(record.get("rollbacks", [])),
            })
        return sorted(summaries, key=lambda s: s.get("startedAt") or "", reverse=True)

    def record_rollback(self, deployment_id: str, rollback: RollbackResult) -> Dict[str, Any]:
        """
        Store a rollback against its deployment.

        Removed components are dropped from the ledger so a second rollback
        only retries what is left.
        """
        record = self.load(deployment_id)
        record.setdefault("rollbacks", []).append({
            "rolledBackAt": datetime.now(timezone.utc).isoformat(),
            **rollback.to_dict(),
        })
        record["rollbackLedger"] = rollback.remaining.to_dict()
        record["status"] = STATUS_ROLLED_BACK if rollback.complete else STATUS_MODIFIED
        self._write(record)
        logger.info(f"Deployment {deployment_id} is now {record['status']}")
        return record


__all__ = [
    'DeploymentHistory',
    'HistoryNotFoundError',
    'STATUS_DEPLOYED',
    'STATUS_FAILED',
    'STATUS_MODIFIED',
    'STATUS_ROLLED_BACK',
]
