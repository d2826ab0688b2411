"""
Base command class and protocols.

This module contains the base command class that all CLI commands inherit from,
the protocol of the metadata client (for dependency injection), and the
diagram preparation shared by the validate, generate and deploy commands.
"""

import argparse
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from ..helpers import (
    load_config,
    get_default_config_path,
    setup_logging,
    print_header,
    print_footer,
)
from constants import DeploymentConfig, LoggingConfig
from formats.cdm import CDMDetectionResult, CDMMatcher
from formats.mermaid import AutoFixResult, MermaidParser, MermaidValidator, autofix_all
from shared.models import ParseResult
from shared.utilities.validation import ValidationResult


logger = logging.getLogger(__name__)


# ============================================================================
# Diagram Preparation
# ============================================================================

@dataclass
class PreparedDiagram:
    """A diagram parsed, matched against standard tables and validated."""
    content: str
    parse_result: ParseResult
    validation: ValidationResult
    detection: Optional[CDMDetectionResult] = None
    fixes: Optional[AutoFixResult] = None


def prepare_diagram(content: str, *, fix: bool = False, detect_cdm: bool = True) -> PreparedDiagram:
    """Parse, detect standard tables, optionally auto-fix, then validate."""
    parser = MermaidParser()
    parse_result = parser.parse(content)
    detection = CDMMatcher().detect(parse_result.entities) if detect_cdm else None
    cdm_names = [m.original_entity for m in detection.matches] if detection else []

    fixes = None
    if fix:
        fixes = autofix_all(content, cdm_entities=cdm_names)
        if fixes.changed:
            content = fixes.content
            parse_result = parser.parse(content)
            if detect_cdm:
                detection = CDMMatcher().detect(parse_result.entities)
                cdm_names = [m.original_entity for m in detection.matches]

    validation = MermaidValidator(parser).validate(parse_result, cdm_entities=cdm_names)
    return PreparedDiagram(content, parse_result, validation, detection, fixes)


def print_validation_summary(validation: ValidationResult, heading: Optional[str] = None) -> None:
    """Print a consistent summary for a validation result."""
    if heading:
        print_header(heading)
    print(validation.get_summary())
    if heading:
        print_footer()


# ============================================================================
# Protocols for Dependency Injection
# ============================================================================

class IMetadataClient(Protocol):
    """Protocol for the Dataverse metadata operations the commands use."""

    def get_entity(self, logical_name: str) -> Any:
        ...

    def create_entity(self, payload: Dict[str, Any], solution_name: Optional[str] = None) -> Any:
        ...

    def delete_entity(self, logical_name: str) -> Any:
        ...

    def ensure_publisher(self, unique_name: str, friendly_name: str, prefix: str, description: str = "") -> Any:
        ...

    def ensure_solution(self, unique_name: str, friendly_name: str, publisher: Any) -> Any:
        ...


# ============================================================================
# Base Command Class
# ============================================================================

class BaseCommand(ABC):
    """
    Base class for CLI commands.

    Provides common functionality like configuration loading and logging setup.
    Subclasses should implement the execute() method.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        client: Optional[IMetadataClient] = None,
        history_dir: Optional[str] = None,
    ):
        """
        Initialize the command.

        Args:
            config_path: Path to configuration file.
            client: Optional metadata client instance (for dependency injection).
            history_dir: Deployment history directory.
        """
        self.config_path = config_path or get_default_config_path()
        self._client = client
        self._history_dir = history_dir
        self._config: Optional[Dict[str, Any]] = None

    @property
    def config(self) -> Dict[str, Any]:
        """Lazy-load configuration."""
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config

    @property
    def optional_config(self) -> Dict[str, Any]:
        """Configuration if the file exists, otherwise empty (environment variables apply)."""
        if self._config is None and not Path(self.config_path).exists():
            logger.debug(f"No configuration file at {self.config_path}; using environment")
            self._config = {}
        return self.config

    @property
    def history_dir(self) -> str:
        if self._history_dir:
            return self._history_dir
        if self._config is not None:
            return self._config.get('history_dir', DeploymentConfig.DEFAULT_HISTORY_DIR)
        return DeploymentConfig.DEFAULT_HISTORY_DIR

    def get_client(self) -> IMetadataClient:
        """Get or create the metadata client."""
        if self._client is None:
            from core.platform import DataverseConfig, DataverseMetadataClient
            self._client = DataverseMetadataClient(DataverseConfig.from_dict(self.optional_config))
        return self._client

    def setup_logging_from_config(self, allow_missing: bool = True, level: Optional[str] = None) -> None:
        """Setup logging configuration, falling back gracefully if config is absent."""
        log_config: Dict[str, Any] = {}

        if self._config is not None:
            log_config = dict(self._config.get('logging', {}))
        elif Path(self.config_path).exists() or not allow_missing:
            try:
                self._config = load_config(self.config_path)
                log_config = dict(self._config.get('logging', {}))
            except (ValueError, OSError) as exc:
                if not allow_missing:
                    raise
                print(f"Warning: Could not load logging configuration: {exc}")

        fmt = str(log_config.get('format', LoggingConfig.DEFAULT_FORMAT_STYLE)).lower()
        if fmt not in LoggingConfig.SUPPORTED_FORMATS:
            print(f"Warning: Unknown log format '{fmt}'; using text")
            fmt = LoggingConfig.DEFAULT_FORMAT_STYLE
        setup_logging(
            level=level or log_config.get('level', LoggingConfig.DEFAULT_LOG_LEVEL),
            log_file=log_config.get('file'),
            fmt=fmt,
        )

    @abstractmethod
    def execute(self, args: argparse.Namespace) -> int:
        """
        Execute the command.

        Args:
            args: Parsed command-line arguments.

        Returns:
            Exit code (0 for success, non-zero for error).
        """
        pass
