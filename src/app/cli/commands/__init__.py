"""
CLI command implementations.

This package contains one module per command:
- base.py: Base command class, client protocol and diagram preparation
- validate.py: ValidateCommand
- detect.py: DetectCommand
- generate.py: GenerateCommand (and the document builder deploy reuses)
- deploy.py: DeployCommand
- rollback.py: RollbackCommand
- history.py: HistoryCommand
"""

from .base import (
    BaseCommand,
    IMetadataClient,
    PreparedDiagram,
    prepare_diagram,
    print_validation_summary,
)
from .validate import ValidateCommand
from .detect import DetectCommand
from .generate import GenerateCommand, BuiltDocument, build_document
from .deploy import DeployCommand
from .rollback import RollbackCommand
from .history import HistoryCommand


__all__ = [
    # Base
    'BaseCommand',
    'IMetadataClient',
    'PreparedDiagram',
    'prepare_diagram',
    'print_validation_summary',
    # Commands
    'ValidateCommand',
    'DetectCommand',
    'GenerateCommand',
    'BuiltDocument',
    'build_document',
    'DeployCommand',
    'RollbackCommand',
    'HistoryCommand',
]
