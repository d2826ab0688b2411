"""
Input validation utilities for the Mermaid to Dataverse deployer.

This module provides centralized input validation with consistent error messages for:
- Diagram content validation
- Publisher prefix and solution name validation
- File path validation with security checks

Security features:
- Path traversal detection (../ sequences)
- Symlink detection and warning
- Extension validation
- Directory boundary awareness

Every rejected input raises ``ConfigurationError`` (a ``ValueError``) before
any remote call is made.

Usage:
    from core.validators.input import InputValidator

    diagram_path = InputValidator.validate_input_diagram_path(path)
    prefix = InputValidator.validate_publisher_prefix("cr123")
"""

import os
import re
import logging
from pathlib import Path
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

PUBLISHER_PREFIX_PATTERN = re.compile(r'^[a-z][a-z0-9]{1,7}$')
SOLUTION_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
RESERVED_PREFIX = "mscrm"


class ConfigurationError(ValueError):
    """Missing or invalid required input; raised before any remote call."""


class InputValidator:
    """
    Centralized input validation for the command-line and orchestration layer.

    Provides consistent validation with clear error messages for:
    - Diagram content validation
    - Naming rules of publisher prefixes and solutions
    - File path validation with security checks
    """

    DIAGRAM_EXTENSIONS = ['.mmd', '.mermaid', '.md', '.txt']
    JSON_EXTENSIONS = ['.json']

    @staticmethod
    def validate_diagram_content(content: Any) -> str:
        """
        Validate diagram text.

        Raises:
            ConfigurationError: If content is None, not a string or empty
        """
        if content is None:
            raise ConfigurationError("Diagram content cannot be None")

        if not isinstance(content, str):
            raise ConfigurationError(f"Diagram content must be string, got {type(content).__name__}")

        if not content.strip():
            raise ConfigurationError("Diagram content cannot be empty or whitespace-only")

        return content

    @staticmethod
    def validate_publisher_prefix(prefix: Any) -> str:
        """
        Validate a publisher customization prefix.

        The prefix is mandatory: 2-8 lowercase alphanumerics starting with a
        letter and not starting with ``mscrm``.

        Returns:
            The prefix

        Raises:
            ConfigurationError: If the prefix is missing or malformed
        """
        if not prefix or not isinstance(prefix, str):
            raise ConfigurationError("Publisher prefix is required")

        if not PUBLISHER_PREFIX_PATTERN.match(prefix):
            raise ConfigurationError(
                f"Invalid publisher prefix '{prefix}': use 2-8 lowercase letters or digits, "
                "starting with a letter"
            )

        if prefix.startswith(RESERVED_PREFIX):
            raise ConfigurationError(f"Publisher prefix cannot start with '{RESERVED_PREFIX}'")

        return prefix

    @staticmethod
    def validate_solution_name(name: Any) -> str:
        """Solution unique names: letters, digits and underscores, no leading digit."""
        if not name or not isinstance(name, str):
            raise ConfigurationError("Solution name is required")

        if not SOLUTION_NAME_PATTERN.match(name):
            raise ConfigurationError(
                f"Invalid solution name '{name}': use letters, digits and underscores only"
            )

        return name

    @staticmethod
    def _check_path_traversal(path_str: str) -> None:
        """
        Check for path traversal attempts.

        Raises:
            ConfigurationError: If path traversal detected
        """
        normalized = path_str.replace('\\', '/')
        if '..' in Path(normalized).parts or '/../' in f"/{normalized}/":
            raise ConfigurationError(
                f"Path traversal detected in path: {path_str}. "
                f"Paths containing '..' are not allowed for security reasons."
            )

    @staticmethod
    def _check_symlink(path_obj: Path, strict: bool = False) -> None:
        """
        Check if path is a symlink.

        Args:
            path_obj: Path object to check
            strict: If True, raise exception on symlink; if False, log warning
        """
        try:
            is_symlink = path_obj.is_symlink()
        except OSError:
            if strict:
                raise ConfigurationError(f"Cannot verify symlink status for: {path_obj}")
            return

        if is_symlink:
            msg = (
                f"Symlink detected: {path_obj}. "
                f"Please use the actual file path instead."
            )
            if strict:
                raise ConfigurationError(msg)
            logger.warning(msg)

    @staticmethod
    def _check_extension(path_obj: Path, allowed_extensions: Optional[List[str]]) -> None:
        if not allowed_extensions:
            return
        normalized_extensions = [
            ext.lower() if ext.startswith('.') else f'.{ext.lower()}'
            for ext in allowed_extensions
        ]
        if path_obj.suffix.lower() not in normalized_extensions:
            raise ConfigurationError(
                f"Invalid file extension: '{path_obj.suffix}'. "
                f"Expected one of: {', '.join(normalized_extensions)}"
            )

    @classmethod
    def validate_file_path(
        cls,
        path: Any,
        allowed_extensions: Optional[List[str]] = None,
        check_exists: bool = True,
        reject_symlinks: bool = True,
    ) -> Path:
        """
        Validate file path for security and correctness.

        Args:
            path: Path to validate (should be non-empty string)
            allowed_extensions: List of allowed extensions (e.g., ['.mmd'])
            check_exists: Whether to verify file exists and is readable
            reject_symlinks: If True, raise on symlinks; if False, warn only

        Returns:
            Validated Path object (resolved to absolute path)

        Raises:
            ConfigurationError: If path is empty, has invalid extension,
                traversal detected, or symlink found
            FileNotFoundError: If file doesn't exist (when check_exists=True)
            PermissionError: If file is not readable (when check_exists=True)
        """
        if not isinstance(path, (str, os.PathLike)):
            raise ConfigurationError(f"File path must be string, got {type(path).__name__}")

        path_str = str(path).strip()
        if not path_str:
            raise ConfigurationError("File path cannot be empty")

        cls._check_path_traversal(path_str)
        path_obj = Path(path_str).resolve()
        cls._check_symlink(Path(path_str), strict=reject_symlinks)

        if check_exists:
            if not path_obj.exists():
                raise FileNotFoundError(f"File not found: {path_obj}")
            if not path_obj.is_file():
                raise ConfigurationError(f"Path is not a file: {path_obj}")

        cls._check_extension(path_obj, allowed_extensions)

        if check_exists and not os.access(path_obj, os.R_OK):
            raise PermissionError(f"File is not readable: {path_obj}")

        return path_obj

    @classmethod
    def validate_input_diagram_path(cls, path: Any) -> Path:
        """Validate a diagram file path (``.mmd``, ``.mermaid``, ``.md``, ``.txt``)."""
        return cls.validate_file_path(path, allowed_extensions=cls.DIAGRAM_EXTENSIONS)

    @classmethod
    def validate_output_file_path(
        cls,
        path: Any,
        allowed_extensions: Optional[List[str]] = None,
    ) -> Path:
        """
        Validate output file path for writing.

        Does not require the file to exist; the parent directory must exist
        and be writable.
        """
        path_obj = cls.validate_file_path(
            path,
            allowed_extensions=allowed_extensions,
            check_exists=False,
        )

        parent_dir = path_obj.parent
        if not parent_dir.exists():
            raise ConfigurationError(f"Parent directory does not exist: {parent_dir}")

        if not os.access(parent_dir, os.W_OK):
            raise PermissionError(f"Cannot write to directory: {parent_dir}")

        if path_obj.exists() and not os.access(path_obj, os.W_OK):
            raise PermissionError(f"File exists but is not writable: {path_obj}")

        return path_obj

    @classmethod
    def validate_config_file_path(cls, path: Any) -> Path:
        """Configuration files must be existing, readable JSON files."""
        return cls.validate_file_path(path, allowed_extensions=cls.JSON_EXTENSIONS)
