"""
CLI argument parser configuration.

This module defines the argument parser structure for all CLI commands.

Command Structure:
    - validate   <diagram> [--fix] [--output PATH] [--cdm]
    - detect-cdm <diagram>
    - generate   <diagram> --prefix P [--cdm-policy] [--output PATH]
    - deploy     <diagram> --solution NAME --prefix P [--dry-run]
    - rollback   <deployment-id> [--only COMPONENTS]
    - history
"""

import argparse

from constants import DeploymentConfig
from shared.models.metadata_types import CDMPolicy


# ============================================================================
# Shared Flag Group Builders
# ============================================================================

def add_output_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--output', '-o',
        help='Output file path'
    )


def add_config_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--config', '-c',
        help='Path to configuration file'
    )


def add_history_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--history-dir',
        default=None,
        help=f'Deployment history directory (default: {DeploymentConfig.DEFAULT_HISTORY_DIR})'
    )


def add_schema_flags(parser: argparse.ArgumentParser, prefix_required: bool = True) -> None:
    """Flags shared by generate and deploy."""
    parser.add_argument(
        '--prefix', '-p',
        required=prefix_required,
        help='Publisher customization prefix (2-8 lowercase letters/digits)'
    )
    parser.add_argument(
        '--cdm-policy',
        choices=[p.value for p in CDMPolicy],
        default=None,
        help="'use_cdm' maps recognized entities to standard tables, 'create_custom' creates all"
    )
    parser.add_argument(
        '--no-cdm',
        action='store_true',
        help='Skip standard table detection'
    )
    parser.add_argument(
        '--fix',
        action='store_true',
        help='Apply auto-fixes to the diagram before generating'
    )


# ============================================================================
# Main Parser Factory
# ============================================================================

def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the main argument parser.

    Returns:
        Configured ArgumentParser with all subcommands.
    """
    parser = argparse.ArgumentParser(
        prog='mermaid-deploy',
        description="Mermaid ERD to Dataverse solution deployer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Validate a diagram and write the corrected version
    %(prog)s validate samples/crm.mmd --fix --output crm.fixed.mmd

    # Detect standard tables
    %(prog)s detect-cdm samples/crm.mmd

    # Generate the metadata document
    %(prog)s generate samples/crm.mmd --prefix cr123 --output crm.metadata.json

    # Deploy, then undo
    %(prog)s deploy samples/crm.mmd --solution CrmModel --prefix cr123
    %(prog)s rollback deploy-20240101-120000-abcd1234
    %(prog)s history
        """,
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help='Override the configured log level'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    _add_validate_parser(subparsers)
    _add_detect_parser(subparsers)
    _add_generate_parser(subparsers)
    _add_deploy_parser(subparsers)
    _add_rollback_parser(subparsers)
    _add_history_parser(subparsers)

    return parser


# ============================================================================
# Command Parsers
# ============================================================================

def _add_validate_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        'validate',
        help='Validate a Mermaid ER diagram'
    )
    parser.add_argument('diagram', help='Path to the diagram file')
    add_output_flags(parser)
    parser.add_argument(
        '--fix',
        action='store_true',
        help='Apply all auto-fixes and write the corrected diagram'
    )
    parser.add_argument(
        '--cdm',
        action='store_true',
        help='Detect standard tables and skip their naming checks'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the report as JSON'
    )


def _add_detect_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        'detect-cdm',
        help='Match diagram entities against standard tables'
    )
    parser.add_argument('diagram', help='Path to the diagram file')
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the detection result as JSON'
    )


def _add_generate_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        'generate',
        help='Generate the platform metadata document'
    )
    parser.add_argument('diagram', help='Path to the diagram file')
    add_schema_flags(parser)
    add_output_flags(parser)


def _add_deploy_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        'deploy',
        help='Deploy a diagram to a Dataverse solution'
    )
    parser.add_argument('diagram', help='Path to the diagram file')
    parser.add_argument(
        '--solution', '-s',
        help='Solution unique name'
    )
    add_schema_flags(parser, prefix_required=False)
    parser.add_argument(
        '--publisher',
        help='Publisher unique name (default: <prefix>publisher)'
    )
    parser.add_argument(
        '--max-concurrency',
        type=int,
        default=None,
        help=f'Entities created in parallel (default: {DeploymentConfig.DEFAULT_MAX_CONCURRENCY})'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Plan the deployment without calling the environment'
    )
    parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Deploy even if validation reports errors'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Do not show the progress bar'
    )
    add_config_flags(parser)
    add_history_flags(parser)
    add_output_flags(parser)


def _add_rollback_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        'rollback',
        help='Remove what a recorded deployment created'
    )
    parser.add_argument('deployment_id', help='Deployment id (see history)')
    parser.add_argument(
        '--only',
        help='Comma-separated components: relationships,entities,global_choices,solution,publisher'
    )
    parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Skip confirmation prompt'
    )
    add_config_flags(parser)
    add_history_flags(parser)


def _add_history_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        'history',
        help='List recorded deployments'
    )
    parser.add_argument(
        'deployment_id',
        nargs='?',
        help='Show one deployment in detail'
    )
    add_history_flags(parser)
