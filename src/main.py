#!/usr/bin/env python3
"""
Mermaid ERD to Dataverse Deployer

This is the main entry point for validating Mermaid ER diagrams, generating
their platform metadata and deploying them to a Dataverse solution.

Usage:
    python main.py validate <diagram> [--fix] [--output <fixed.mmd>]
    python main.py detect-cdm <diagram>
    python main.py generate <diagram> --prefix <prefix> [--output <metadata.json>]
    python main.py deploy <diagram> --solution <name> --prefix <prefix> [--dry-run]
    python main.py rollback <deployment_id> [--only relationships,entities]
    python main.py history [<deployment_id>]
"""

import logging
import sys
from typing import Dict, Optional, Sequence, Type

from app.cli.commands import (
    BaseCommand,
    DeployCommand,
    DetectCommand,
    GenerateCommand,
    HistoryCommand,
    RollbackCommand,
    ValidateCommand,
)
from app.cli.parsers import create_argument_parser
from constants import ExitCode
from core.platform import AuthenticationError, DataverseAPIError, TransientAPIError
from core.services import HistoryNotFoundError
from core.validators.input import ConfigurationError


logger = logging.getLogger(__name__)


COMMANDS: Dict[str, Type[BaseCommand]] = {
    'validate': ValidateCommand,
    'detect-cdm': DetectCommand,
    'generate': GenerateCommand,
    'deploy': DeployCommand,
    'rollback': RollbackCommand,
    'history': HistoryCommand,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return ExitCode.ERROR

    command = COMMANDS[args.command](config_path=getattr(args, 'config', None))

    try:
        return int(command.execute(args))
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return ExitCode.CONFIG_ERROR
    except HistoryNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return ExitCode.FILE_NOT_FOUND
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return ExitCode.FILE_NOT_FOUND
    except PermissionError as e:
        print(f"Error: Permission denied: {e}", file=sys.stderr)
        return ExitCode.PERMISSION_DENIED
    except AuthenticationError as e:
        print(f"Authentication failed: {e}", file=sys.stderr)
        return ExitCode.CONFIG_ERROR
    except TransientAPIError as e:
        print(f"Error: Service unavailable after retries: {e}", file=sys.stderr)
        return ExitCode.TIMEOUT
    except DataverseAPIError as e:
        print(f"API Error: {e}", file=sys.stderr)
        return ExitCode.API_ERROR
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return ExitCode.VALIDATION_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return ExitCode.CANCELLED


if __name__ == '__main__':
    sys.exit(main())
