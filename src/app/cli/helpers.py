"""
CLI helper utilities.

This module provides shared utilities for CLI commands including:
- Logging setup with deployment context (run id, solution, stage)
- Configuration loading
- Diagram file input/output and console formatting
"""

import json
import logging
import os
import sys
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from constants import LoggingConfig
from core.validators.input import InputValidator

logger = logging.getLogger(__name__)

# Record attribute -> key in JSON output
CONTEXT_FIELDS = {
    "deployment_id": "deploymentId",
    "solution": "solution",
    "stage": "stage",
}

_log_context: Dict[str, str] = {}
_context_lock = threading.Lock()
_MANAGED_HANDLERS: List[logging.Handler] = []


# ============================================================================
# Deployment log context
# ============================================================================

def bind_log_context(**fields: Optional[str]) -> None:
    """Set context fields for every following record; ``None`` clears one."""
    with _context_lock:
        for key, value in fields.items():
            if key not in CONTEXT_FIELDS:
                raise ValueError(f"Unknown log context field: {key}")
            if value is None:
                _log_context.pop(key, None)
            else:
                _log_context[key] = str(value)


def clear_log_context() -> None:
    with _context_lock:
        _log_context.clear()


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
    """Bind ``fields`` for the duration of one deployment or rollback."""
    bind_log_context(**fields)
    try:
        yield
    finally:
        clear_log_context()


class DeploymentContextFilter(logging.Filter):
    """
    Stamps records with the bound deployment context.

    Values passed explicitly through ``extra=`` take precedence. The
    ``context`` attribute is the text form used by the console format,
    empty outside a deployment.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        with _context_lock:
            bound = dict(_log_context)
        values = []
        for key in CONTEXT_FIELDS:
            if getattr(record, key, None) is None:
                setattr(record, key, bound.get(key))
            value = getattr(record, key)
            if value is not None:
                values.append(str(value))
        record.context = f"[{' '.join(values)}] " if values else ""
        return True


class LogContextObserver:
    """Deployment observer that keeps the log context on the current stage."""

    def on_progress(self, stage: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        if details and details.get("deploymentId"):
            bind_log_context(deployment_id=details["deploymentId"])
        bind_log_context(stage=stage)

    def on_log(self, level: int, message: str) -> None:
        pass


class DeploymentJSONFormatter(logging.Formatter):
    """One JSON object per line, including the deployment context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LoggingConfig.JSON_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attribute, key in CONTEXT_FIELDS.items():
            value = getattr(record, attribute, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


# ============================================================================
# Logging setup
# ============================================================================

def _open_log_file(path: str) -> Tuple[Optional[logging.Handler], Optional[str]]:
    """File handler at ``path``, falling back to the temp directory."""
    name = os.path.basename(path) or LoggingConfig.DEFAULT_LOG_FILE
    for candidate in (path, os.path.join(tempfile.gettempdir(), name)):
        try:
            directory = os.path.dirname(candidate)
            if directory:
                os.makedirs(directory, exist_ok=True)
            handler = logging.FileHandler(candidate, encoding='utf-8')
        except OSError as e:
            print(f"  Could not create log at {candidate}: {e}")
            continue
        if candidate != path:
            print(f"Note: Using fallback log file: {candidate}")
        return handler, candidate
    print("Warning: Could not write a log file; logging to console only")
    return None, None


def setup_logging(
    level: str = LoggingConfig.DEFAULT_LOG_LEVEL,
    log_file: Optional[str] = None,
    fmt: str = LoggingConfig.DEFAULT_FORMAT_STYLE,
) -> Optional[str]:
    """
    Configure the root logger for one command.

    Console output goes to stdout; ``fmt`` is ``text`` or ``json``. Handlers
    installed by an earlier call are replaced, so repeated commands in one
    process do not duplicate output.

    Returns:
        The log file actually used, or None when logging to console only.
    """
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    if str(fmt).lower() == "json":
        formatter: logging.Formatter = DeploymentJSONFormatter()
    else:
        formatter = logging.Formatter(LoggingConfig.LOG_FORMAT, datefmt=LoggingConfig.DATE_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    actual_log_file = None
    if log_file:
        file_handler, actual_log_file = _open_log_file(log_file)
        if file_handler:
            handlers.append(file_handler)

    root_logger = logging.getLogger()
    for handler in _MANAGED_HANDLERS:
        root_logger.removeHandler(handler)
        handler.close()
    _MANAGED_HANDLERS.clear()

    root_logger.setLevel(log_level)
    context_filter = DeploymentContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)
        _MANAGED_HANDLERS.append(handler)

    if actual_log_file:
        logger.info(f"Logging to: {actual_log_file}")
    return actual_log_file


# ============================================================================
# Configuration and files
# ============================================================================

def get_default_config_path() -> str:
    """``config.json`` in the project root (next to ``config.sample.json``)."""
    return str(Path(__file__).resolve().parents[3] / "config.json")


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load the JSON configuration file.

    Raises:
        ConfigurationError: Unsafe path (traversal, symlink, not ``.json``)
        FileNotFoundError: The file does not exist
        ValueError: Invalid JSON or not a JSON object
    """
    if not config_path:
        raise ValueError("config_path cannot be empty")

    try:
        validated_path = InputValidator.validate_config_file_path(config_path)
    except FileNotFoundError:
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"Copy config.sample.json to config.json or pass --config"
        )

    try:
        with open(validated_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {validated_path} at line {e.lineno}, column {e.colno}: {e.msg}")
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error in {validated_path}: {e}")

    if not isinstance(config, dict):
        raise ValueError(f"Configuration file must contain a JSON object, got {type(config).__name__}")

    if config.get('dataverse', {}).get('client_secret'):
        logger.warning(
            "client_secret found in the configuration file; prefer AZURE_CLIENT_SECRET "
            "or a managed identity"
        )
    return config


def read_diagram(path: str) -> Tuple[Path, str]:
    """
    Validate a diagram path and read its content.

    Raises:
        ConfigurationError: Invalid path or empty diagram
        FileNotFoundError / PermissionError: Unreadable file
    """
    validated_path = InputValidator.validate_input_diagram_path(path)
    with open(validated_path, 'r', encoding='utf-8') as f:
        content = f.read()
    return validated_path, InputValidator.validate_diagram_content(content)


def write_output(path: str, content: str) -> Path:
    """Write ``content`` to a validated output path."""
    validated_path = InputValidator.validate_output_file_path(path)
    with open(validated_path, 'w', encoding='utf-8') as f:
        f.write(content)
    return validated_path


# ============================================================================
# Console output
# ============================================================================

def print_header(title: str, width: int = 60) -> None:
    print("\n" + "=" * width)
    print(title)
    print("=" * width)


def print_footer(width: int = 60) -> None:
    print("=" * width + "\n")


def format_status_counts(counts: Dict[str, int], indent: str = "    ") -> str:
    """One ``status: count`` line per outcome status, largest first."""
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return "\n".join(f"{indent}{status}: {count}" for status, count in ordered)


def confirm_action(prompt: str, default: bool = False) -> bool:
    """Ask a yes/no question on stdin."""
    suffix = "[Y/n]" if default else "[y/N]"
    response = input(f"{prompt} {suffix}: ").strip().lower()
    if not response:
        return default
    return response in ('y', 'yes')
