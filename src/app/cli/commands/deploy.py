"""
Deploy command: diagram to a Dataverse solution.

Ctrl+C requests cancellation; the orchestrator stops between stages and the
partial result (with its rollback ledger) is still recorded.
"""

import argparse
import json
import logging
import signal
from contextlib import contextmanager
from typing import Iterator

from constants import ExitCode
from core.services import (
    DeploymentHistory,
    DeploymentOptions,
    DeploymentOrchestrator,
    DeploymentResult,
    LoggingObserver,
    SimpleCancellationToken,
)
from shared.models.metadata_types import CDMPolicy
from ..helpers import (
    LogContextObserver,
    format_status_counts,
    log_context,
    print_footer,
    print_header,
    read_diagram,
    write_output,
)
from ..progress import TqdmObserver
from .base import BaseCommand, print_validation_summary
from .generate import build_document, print_document_summary, resolve_policy


logger = logging.getLogger(__name__)


@contextmanager
def cancel_on_interrupt(token: SimpleCancellationToken) -> Iterator[None]:
    """Route SIGINT to ``token`` for the duration of the block."""
    def _handler(signum, frame):
        if token.is_cancelled():
            raise KeyboardInterrupt
        print("\nCancellation requested; finishing the current stage (Ctrl+C again to abort)")
        token.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


class DeployCommand(BaseCommand):
    """Deploy a diagram's metadata to an environment."""

    def _options(self, args: argparse.Namespace) -> DeploymentOptions:
        options = DeploymentOptions.from_dict(self.optional_config)
        if args.solution:
            options.solution_name = args.solution
        if args.prefix:
            options.publisher_prefix = args.prefix
        if args.publisher:
            options.publisher_name = args.publisher
        if args.max_concurrency is not None:
            options.max_concurrency = args.max_concurrency
        options.cdm_policy = resolve_policy(args, default=options.cdm_policy)
        if args.no_cdm:
            options.cdm_policy = CDMPolicy.CREATE_CUSTOM
        options.dry_run = args.dry_run or options.dry_run
        options.validate()
        return options

    def execute(self, args: argparse.Namespace) -> int:
        self.config_path = args.config or self.config_path
        self._history_dir = args.history_dir or self._history_dir
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))

        options = self._options(args)
        path, content = read_diagram(args.diagram)

        built = build_document(
            content,
            prefix=options.publisher_prefix,
            cdm_policy=options.cdm_policy,
            detect_cdm=not args.no_cdm,
            fix=args.fix,
            force=args.force,
        )
        if built.blocked:
            print_validation_summary(built.prepared.validation, heading=f"Validation: {path.name}")
            print("Fix the errors (try --fix) or use --force to deploy anyway.")
            return ExitCode.VALIDATION_ERROR

        document = built.document
        if document.errors and not args.force:
            print_document_summary(document)
            print("Metadata generation reported errors; use --force to deploy the rest.")
            return ExitCode.VALIDATION_ERROR

        client = None if options.dry_run else self.get_client()
        token = SimpleCancellationToken()
        progress = TqdmObserver(disable=args.no_progress or options.dry_run)
        orchestrator = DeploymentOrchestrator(
            client,
            observers=[LogContextObserver(), LoggingObserver(), progress],
            cancellation_token=token,
        )

        with cancel_on_interrupt(token), log_context(solution=options.solution_name):
            try:
                result = orchestrator.deploy(document, options)
            finally:
                progress.close()

        if not options.dry_run:
            environment_url = getattr(getattr(client, 'config', None), 'environment_url', None)
            DeploymentHistory(self.history_dir).save(result, environment_url)

        if args.output:
            written = write_output(args.output, json.dumps(result.to_dict(), indent=2))
            print(f"✓ Deployment report written to {written}")

        self._print_result(result)
        return self._exit_code(result)

    @staticmethod
    def _exit_code(result: DeploymentResult) -> int:
        if result.cancelled:
            return ExitCode.CANCELLED
        if result.success:
            return ExitCode.SUCCESS
        return ExitCode.API_ERROR

    @staticmethod
    def _print_result(result: DeploymentResult) -> None:
        title = "Deployment plan" if result.dry_run else "Deployment"
        print_header(f"{title}: {result.deployment_id}")
        summary = result.summary()
        print(f"Solution: {result.solution_name}")
        print(f"State:    {summary['state']}")
        for kind in ("global_choice", "entity", "attribute", "relationship"):
            counts = summary.get(kind)
            if counts:
                print(f"{kind}:")
                print(format_status_counts(counts))
        for warning in result.warnings:
            print(f"  ⚠ {warning}")
        for error in result.errors:
            print(f"  ✗ {error}")
        if not result.dry_run:
            print(f"\nUndo with: mermaid-deploy rollback {result.deployment_id}")
        print_footer()
