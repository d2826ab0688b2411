"""
Rollback command: remove what a recorded deployment created.
"""

import argparse
import logging

from constants import ExitCode
from core.services import DeploymentHistory, LoggingObserver, RollbackExecutor, RollbackOptions
from ..helpers import LogContextObserver, confirm_action, log_context, print_header, print_footer
from .base import BaseCommand


logger = logging.getLogger(__name__)


class RollbackCommand(BaseCommand):
    """Roll back a deployment from its history record."""

    def execute(self, args: argparse.Namespace) -> int:
        self.config_path = args.config or self.config_path
        self._history_dir = args.history_dir or self._history_dir
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))

        history = DeploymentHistory(self.history_dir)
        ledger = history.get_ledger(args.deployment_id)
        if ledger.is_empty:
            print(f"Nothing to roll back for {args.deployment_id}")
            return ExitCode.SUCCESS

        options = RollbackOptions.only(args.only.split(',')) if args.only else RollbackOptions()
        options.validate(ledger)

        print_header(f"Rollback: {args.deployment_id}")
        print(f"Relationships: {len(ledger.relationships)}")
        print(f"Entities:      {len(ledger.entities)}")
        print(f"Global choices: {len(ledger.global_choices)}")
        print(f"Solution:      {(ledger.solution or {}).get('uniqueName', '-')}")
        print(f"Publisher:     {(ledger.publisher or {}).get('uniqueName', '-')}")
        print_footer()

        if not args.force and not confirm_action("Delete these components?"):
            print("Rollback cancelled")
            return ExitCode.CANCELLED

        solution = (ledger.solution or {}).get('uniqueName')
        executor = RollbackExecutor(self.get_client(), observers=[LogContextObserver(), LoggingObserver()])
        with log_context(deployment_id=args.deployment_id, solution=solution):
            result = executor.rollback(ledger, options)
        record = history.record_rollback(args.deployment_id, result)

        print(f"Entities deleted:      {result.entities_deleted}/{result.entities_processed}")
        print(f"Entities skipped:      {result.entities_skipped}")
        print(f"Relationships deleted: {result.relationships_deleted}")
        print(f"Solution deleted:      {result.solution_deleted}")
        print(f"Publisher deleted:     {result.publisher_deleted}")
        for warning in result.warnings:
            print(f"  ⚠ {warning}")
        for error in result.errors:
            print(f"  ✗ {error}")
        print(f"Status: {record['status']}")

        return ExitCode.SUCCESS if result.success else ExitCode.API_ERROR
