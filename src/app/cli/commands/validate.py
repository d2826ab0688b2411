"""
Validate command: structural checks on a diagram, with optional auto-fix.
"""

import argparse
import json
import logging

from constants import ExitCode
from ..helpers import read_diagram, write_output, print_header, print_footer
from .base import BaseCommand, prepare_diagram, print_validation_summary


logger = logging.getLogger(__name__)


class ValidateCommand(BaseCommand):
    """Validate a Mermaid ER diagram."""

    def execute(self, args: argparse.Namespace) -> int:
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))

        path, content = read_diagram(args.diagram)
        logger.info(f"Validating {path}")
        prepared = prepare_diagram(content, fix=args.fix, detect_cdm=args.cdm)
        validation = prepared.validation
        validation.source_path = str(path)

        if args.json:
            report = validation.to_dict()
            if prepared.fixes is not None:
                report["autofix"] = prepared.fixes.to_dict()
            print(json.dumps(report, indent=2))
        else:
            print_validation_summary(validation, heading=f"Validation: {path.name}")
            if prepared.fixes is not None:
                self._print_fixes(prepared.fixes)

        if prepared.fixes is not None and prepared.fixes.changed:
            if args.output:
                written = write_output(args.output, prepared.content)
                print(f"✓ Corrected diagram written to {written}")
            elif not args.json:
                print("Corrected diagram:\n")
                print(prepared.content)

        if not validation.is_valid:
            return ExitCode.VALIDATION_ERROR
        return ExitCode.SUCCESS

    @staticmethod
    def _print_fixes(fixes) -> None:
        print_header("Auto-fix")
        if not fixes.changed:
            print("No corrections applied")
        for issue_id in fixes.applied:
            print(f"  ✓ fixed {issue_id}")
        for correction in fixes.corrections:
            print(f"  ✓ {correction}")
        for issue in fixes.remaining:
            print(f"  ✗ {issue.message}")
        print_footer()
