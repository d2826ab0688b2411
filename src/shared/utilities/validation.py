"""
Validation result types shared by the diagram validator and the auto-fixer.

Every structural problem found in a parsed diagram is a ``ValidationIssue``.
Issues that can be corrected automatically carry a stable ``issue_id`` built
from ``(category, entity[, relationship_key])`` so a later validation run on
the corrected text can tell whether the issue is gone.

Usage:
    result = ValidationResult(format_name="mermaid")
    result.add_issue(
        severity=Severity.ERROR,
        category=IssueCategory.MISSING_PRIMARY_KEY,
        message="Entity 'Order' has no primary key",
        entity="Order",
        auto_fixable=True,
    )
    if not result.is_valid:
        for issue in result.errors:
            print(issue.message)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Severity(Enum):
    """Severity levels for validation issues."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(Enum):
    """Kinds of issues the diagram validator reports."""
    SYNTAX_ERROR = "syntax-error"
    MISSING_REQUIRED = "missing-required"
    MISSING_PRIMARY_KEY = "missing-primary-key"
    MULTIPLE_PRIMARY_KEYS = "multiple-primary-keys"
    DUPLICATE_COLUMNS = "duplicate-columns"
    NAMING_CONFLICT = "naming-conflict"
    SYSTEM_ATTRIBUTE_CONFLICT = "system-attribute-conflict"
    STATUS_COLUMN_IGNORED = "status-column-ignored"
    CHOICE_COLUMN = "choice-column"
    EMPTY_ENTITY = "empty-entity"
    MISSING_ENTITY = "missing-entity"
    MANY_TO_MANY_RELATIONSHIP = "many-to-many-relationship"
    DUPLICATE_RELATIONSHIP = "duplicate-relationship"
    SELF_REFERENCING_RELATIONSHIP = "self-referencing-relationship"
    MISSING_FOREIGN_KEY = "missing-foreign-key"
    FOREIGN_KEY_NAMING = "foreign-key-naming"
    CDM_ENTITY_DETECTED = "cdm-entity-detected"


def make_issue_id(
    category: IssueCategory,
    entity: Optional[str] = None,
    relationship_key: Optional[str] = None,
) -> str:
    """Build the stable identifier of an issue."""
    parts = [category.value]
    if entity:
        parts.append(entity)
    if relationship_key:
        parts.append(relationship_key)
    return ":".join(parts)


@dataclass
class ValidationIssue:
    """A single validation finding."""
    severity: Severity
    category: IssueCategory
    message: str
    entity: Optional[str] = None
    relationship_key: Optional[str] = None
    location: Optional[str] = None
    details: Optional[str] = None
    recommendation: Optional[str] = None
    columns: List[str] = field(default_factory=list)
    auto_fixable: bool = False

    @property
    def issue_id(self) -> str:
        return make_issue_id(self.category, self.entity, self.relationship_key)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.issue_id,
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "autoFixable": self.auto_fixable,
        }
        if self.entity:
            result["entity"] = self.entity
        if self.relationship_key:
            result["relationship"] = self.relationship_key
        if self.location:
            result["location"] = self.location
        if self.details:
            result["details"] = self.details
        if self.recommendation:
            result["recommendation"] = self.recommendation
        if self.columns:
            result["columns"] = list(self.columns)
        return result


@dataclass
class ValidationResult:
    """Collected issues for one validation run."""
    format_name: str = "mermaid"
    source_path: Optional[str] = None
    issues: List[ValidationIssue] = field(default_factory=list)

    def add_issue(
        self,
        severity: Severity,
        category: IssueCategory,
        message: str,
        **kwargs: Any,
    ) -> ValidationIssue:
        """Create an issue, append it and return it."""
        issue = ValidationIssue(severity=severity, category=category, message=message, **kwargs)
        self.issues.append(issue)
        return issue

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def infos(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.INFO]

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @property
    def is_valid(self) -> bool:
        """True when no error-level issue was found."""
        return self.error_count == 0

    @property
    def auto_fixable(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.auto_fixable]

    def get_issue(self, issue_id: str) -> Optional[ValidationIssue]:
        for issue in self.issues:
            if issue.issue_id == issue_id:
                return issue
        return None

    def has_issue(self, issue_id: str) -> bool:
        return self.get_issue(issue_id) is not None

    def by_category(self, category: IssueCategory) -> List[ValidationIssue]:
        return [i for i in self.issues if i.category == category]

    def get_summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            f"Validation ({self.format_name}): {'PASSED' if self.is_valid else 'FAILED'}",
            f"  Errors:   {self.error_count}",
            f"  Warnings: {self.warning_count}",
            f"  Info:     {len(self.infos)}",
        ]
        for issue in self.issues:
            marker = " [auto-fixable]" if issue.auto_fixable else ""
            lines.append(f"  - {issue.severity.value.upper()}: {issue.message}{marker}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": self.format_name,
            "source": self.source_path,
            "isValid": self.is_valid,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
            "issues": [i.to_dict() for i in self.issues],
        }
