"""Shared utilities used across formats and services."""

from .validation import (
    IssueCategory,
    Severity,
    ValidationIssue,
    ValidationResult,
    make_issue_id,
)

__all__ = [
    "IssueCategory",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
    "make_issue_id",
]
