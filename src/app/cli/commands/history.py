"""
History command: list recorded deployments or show one.
"""

import argparse
import json

from constants import ExitCode
from core.services import DeploymentHistory
from ..helpers import print_header, print_footer
from .base import BaseCommand


class HistoryCommand(BaseCommand):
    """Show deployment history."""

    def execute(self, args: argparse.Namespace) -> int:
        self._history_dir = args.history_dir or self._history_dir
        history = DeploymentHistory(self.history_dir)

        if args.deployment_id:
            print(json.dumps(history.load(args.deployment_id), indent=2))
            return ExitCode.SUCCESS

        records = history.list()
        print_header(f"Deployments in {history.directory}")
        if not records:
            print("No deployments recorded")
        for record in records:
            rollbacks = f" ({record['rollbacks']} rollback(s))" if record['rollbacks'] else ""
            print(f"{record['deploymentId']:<36} {record.get('solutionName') or '-':<24} "
                  f"{record.get('status') or '-':<12} {record.get('startedAt') or ''}{rollbacks}")
        print_footer()
        return ExitCode.SUCCESS
