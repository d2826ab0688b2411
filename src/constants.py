"""
Centralized configuration constants for the Mermaid to Dataverse deployer.

This module provides a single source of truth for all configuration constants,
default values, and limits used throughout the application.
"""

from enum import IntEnum
from typing import Final

# ============================================================================
# Exit Codes
# ============================================================================

class ExitCode(IntEnum):
    """Standard exit codes for CLI commands.

    Following Unix conventions:
    - 0: Success
    - 1: General error
    - 2: Validation/syntax error
    - 3+: Specific error categories
    """
    SUCCESS = 0
    ERROR = 1
    VALIDATION_ERROR = 2
    CONFIG_ERROR = 3
    API_ERROR = 4
    FILE_NOT_FOUND = 5
    PERMISSION_DENIED = 6
    CANCELLED = 7
    TIMEOUT = 8


# ============================================================================
# API Configuration
# ============================================================================

class APIConfig:
    """Dataverse Web API settings."""

    DEFAULT_API_VERSION: Final[str] = "v9.2"
    """Web API version used in ``/api/data/{version}``."""

    DEFAULT_TIMEOUT_SECONDS: Final[int] = 30
    """Default timeout for API requests."""

    MAX_RETRY_ATTEMPTS: Final[int] = 5
    """Attempts per call for transient failures (first call included)."""

    RETRY_MULTIPLIER: Final[int] = 2
    """Exponential backoff multiplier."""

    RETRY_MIN_WAIT_SECONDS: Final[int] = 2
    """Lower bound of the backoff wait."""

    RETRY_MAX_WAIT_SECONDS: Final[int] = 60
    """Upper bound of the backoff wait."""

    TOKEN_BUFFER_SECONDS: Final[int] = 300
    """Refresh access tokens this long before they expire."""

    TRANSIENT_STATUS_CODES: Final[tuple[int, ...]] = (408, 429, 500, 502, 503, 504)
    """HTTP statuses retried with backoff."""


# ============================================================================
# Deployment Configuration
# ============================================================================

class DeploymentConfig:
    """Orchestrator defaults."""

    DEFAULT_MAX_CONCURRENCY: Final[int] = 4
    """Entities created in parallel."""

    MAX_CONCURRENCY_LIMIT: Final[int] = 16
    """Upper bound accepted for ``max_concurrency``."""

    OPTION_VALUE_BASE: Final[int] = 100000000
    """First option value of generated global choices."""

    CUSTOMIZATION_OPTION_VALUE_PREFIX: Final[int] = 10000
    """Option value prefix of created publishers."""

    DEFAULT_SOLUTION_VERSION: Final[str] = "1.0.0.0"
    """Version of created solutions."""

    DEFAULT_HISTORY_DIR: Final[str] = ".deployments"
    """Directory of the JSON deployment history."""


# ============================================================================
# File Extensions
# ============================================================================

class FileExtensions:
    """Supported file extensions."""

    DIAGRAM_EXTENSIONS: Final[tuple] = ('.mmd', '.mermaid', '.md', '.txt')
    """Mermaid diagram file extensions."""

    OUTPUT_EXTENSIONS: Final[tuple] = ('.json', '.mmd')
    """Output file extensions."""


# ============================================================================
# Logging Configuration
# ============================================================================

class LoggingConfig:
    """Logging configuration constants."""

    DEFAULT_LOG_LEVEL: Final[str] = "INFO"
    """Default logging level."""

    LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(context)s%(message)s"
    """Log message format; ``context`` is the bound deployment context."""

    DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"
    """Date format for log messages."""

    DEFAULT_FORMAT_STYLE: Final[str] = "text"
    """Default log format style (text or json)."""

    JSON_DATE_FORMAT: Final[str] = "%Y-%m-%dT%H:%M:%S.%fZ"
    """ISO 8601 date format for JSON logs."""

    SUPPORTED_FORMATS: Final[tuple[str, ...]] = ("text", "json")
    """Supported log format styles."""

    DEFAULT_LOG_FILE: Final[str] = "mermaid_deploy.log"
    """File name used when a log path names only a directory."""


__all__ = [
    'ExitCode',
    'APIConfig',
    'DeploymentConfig',
    'FileExtensions',
    'LoggingConfig',
]
