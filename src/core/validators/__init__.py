"""
Centralized input validation for the Mermaid to Dataverse deployer.

Usage:
    from core.validators import InputValidator, ConfigurationError
"""

from .input import ConfigurationError, InputValidator

__all__ = [
    'ConfigurationError',
    'InputValidator',
]
