"""
Mermaid Auto-fix.

Applies corrections for auto-fixable validation issues directly to the diagram
text. Fixes are anchored rewrites of a single entity block or relationship
line; the rest of the text (comments, spacing, ordering) is left untouched, so
the corrected diagram stays the source of truth and is simply validated again.

Fix policies:
- missing-primary-key: promote an existing ``name`` column to PK, otherwise
  add ``string name PK "Primary name column"``
- multiple-primary-keys: keep PK on the first key column only
- duplicate-columns: keep the instance with constraints, then the one with a
  description, then the first one
- system-attribute-conflict: rename to ``{entity}_{column}``
- naming-conflict: rename the non-key ``name`` column to ``{entity}_name``
- missing-foreign-key: add ``string {referenced}_id FK``
- many-to-many-relationship: replace the line with a junction entity
  ``{From}{To}`` and two one-to-many relationships (reported as a correction)
- duplicate-relationship: keep the first line relating the two entities and
  drop the others

Usage:
    from formats.mermaid.mermaid_autofix import autofix_all

    fixed = autofix_all(diagram_text)
    print(fixed.applied, fixed.corrections)
    Path("fixed.mmd").write_text(fixed.content)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from shared.utilities.validation import (
    IssueCategory,
    Severity,
    ValidationIssue,
    ValidationResult,
)

from .mermaid_parser import ATTRIBUTE_PATTERN, CARDINALITY_TOKENS, RELATIONSHIP_PATTERN, find_block_end
from .mermaid_validator import PRIMARY_NAME_COLUMN, MermaidValidator, expected_foreign_key

logger = logging.getLogger(__name__)

DEFAULT_INDENT = "        "
JUNCTION_LABEL = "has"
MAX_FIX_PASSES = 100

# Order in which autofix_all resolves issues
FIX_ORDER: Tuple[IssueCategory, ...] = (
    IssueCategory.DUPLICATE_RELATIONSHIP,
    IssueCategory.MANY_TO_MANY_RELATIONSHIP,
    IssueCategory.DUPLICATE_COLUMNS,
    IssueCategory.MULTIPLE_PRIMARY_KEYS,
    IssueCategory.MISSING_PRIMARY_KEY,
    IssueCategory.SYSTEM_ATTRIBUTE_CONFLICT,
    IssueCategory.NAMING_CONFLICT,
    IssueCategory.MISSING_FOREIGN_KEY,
)

_CONSTRAINT_TOKEN = re.compile(r'NOT\s+NULL|\w+', re.IGNORECASE)


class AutoFixError(ValueError):
    """Raised when an issue has no automatic fix."""


@dataclass
class AutoFixResult:
    """
    Outcome of ``autofix_all``.

    Attributes:
        content: Corrected diagram text.
        applied: Ids of issues resolved by a fix and confirmed by re-validation.
        remaining: Error and warning issues still present in ``content``.
        corrections: Structural conversions performed (junction entities).
        validation: Validation result of the corrected text.
    """
    content: str
    applied: List[str] = field(default_factory=list)
    remaining: List[ValidationIssue] = field(default_factory=list)
    corrections: List[str] = field(default_factory=list)
    validation: Optional[ValidationResult] = None

    @property
    def changed(self) -> bool:
        return bool(self.applied or self.corrections)

    def to_dict(self) -> Dict[str, object]:
        return {
            "applied": list(self.applied),
            "remaining": [i.to_dict() for i in self.remaining],
            "corrections": list(self.corrections),
        }


@dataclass
class _AttributeLine:
    """One attribute line split into its parts, keeping the indentation."""
    indent: str
    type_text: str
    name: str
    constraints: List[str]
    description: Optional[str]

    @classmethod
    def parse(cls, line: str) -> Optional["_AttributeLine"]:
        match = ATTRIBUTE_PATTERN.match(line.strip())
        if not match:
            return None
        type_text, name, constraint_text, description = match.groups()
        constraints = [
            re.sub(r'\s+', ' ', token.upper())
            for token in _CONSTRAINT_TOKEN.findall(constraint_text or "")
        ]
        return cls(
            indent=line[:len(line) - len(line.lstrip())],
            type_text=type_text,
            name=name,
            constraints=constraints,
            description=description,
        )

    def render(self) -> str:
        text = f"{self.indent}{self.type_text} {self.name}"
        if self.constraints:
            text += " " + ", ".join(self.constraints)
        if self.description is not None:
            text += f' "{self.description}"'
        return text


# =============================================================================
# Text helpers
# =============================================================================

def _locate_block(text: str, entity: str) -> Optional[Tuple[int, int]]:
    """Return the (start, end) span of an entity block body, braces excluded."""
    pattern = re.compile(rf'(?<!\w){re.escape(entity)}\s*\{{')
    for match in pattern.finditer(text):
        end = find_block_end(text[match.end():])
        if end >= 0:
            return match.end(), match.end() + end
    return None


def _rewrite_block(text: str, entity: str, transform: Callable[[List[str]], List[str]]) -> str:
    span = _locate_block(text, entity)
    if span is None:
        logger.warning(f"Entity block '{entity}' not found; fix skipped")
        return text
    start, end = span
    lines = transform(text[start:end].split("\n"))
    return text[:start] + "\n".join(lines) + text[end:]


def _body_indent(lines: List[str]) -> str:
    for line in lines:
        if line.strip() and line != line.lstrip():
            return line[:len(line) - len(line.lstrip())]
    return DEFAULT_INDENT


def _insert_first(lines: List[str], new_line: str) -> List[str]:
    if lines and not lines[0].strip():
        return [lines[0], new_line] + lines[1:]
    return ["", new_line] + lines


def _insert_last(lines: List[str], new_line: str) -> List[str]:
    if len(lines) > 1 and not lines[-1].strip():
        return lines[:-1] + [new_line, lines[-1]]
    return lines + [new_line]


def _rename_columns(text: str, entity: str, renames: Dict[str, str]) -> str:
    """Rename columns (case-insensitive keys) inside one entity block."""
    def transform(lines: List[str]) -> List[str]:
        for index, line in enumerate(lines):
            attr = _AttributeLine.parse(line)
            if attr and attr.name.lower() in renames:
                attr.name = renames[attr.name.lower()]
                lines[index] = attr.render()
        return lines
    return _rewrite_block(text, entity, transform)


def _relationship_sides_from_key(issue: ValidationIssue) -> Tuple[str, str]:
    if not issue.relationship_key or "->" not in issue.relationship_key:
        raise AutoFixError(f"Issue '{issue.issue_id}' has no relationship key")
    from_entity, to_entity = issue.relationship_key.split("->", 1)
    return from_entity, to_entity


# =============================================================================
# Fixes
# =============================================================================

def _fix_missing_primary_key(text: str, issue: ValidationIssue) -> str:
    def transform(lines: List[str]) -> List[str]:
        for index, line in enumerate(lines):
            attr = _AttributeLine.parse(line)
            if attr and attr.name.lower() == PRIMARY_NAME_COLUMN:
                attr.constraints.insert(0, "PK")
                lines[index] = attr.render()
                return lines
        new_line = f'{_body_indent(lines)}string name PK "Primary name column"'
        return _insert_first(lines, new_line)
    return _rewrite_block(text, issue.entity, transform)


def _fix_multiple_primary_keys(text: str, issue: ValidationIssue) -> str:
    def transform(lines: List[str]) -> List[str]:
        seen_key = False
        for index, line in enumerate(lines):
            attr = _AttributeLine.parse(line)
            if not attr or "PK" not in attr.constraints:
                continue
            if seen_key:
                attr.constraints = [c for c in attr.constraints if c != "PK"]
                lines[index] = attr.render()
            seen_key = True
        return lines
    return _rewrite_block(text, issue.entity, transform)


def _fix_duplicate_columns(text: str, issue: ValidationIssue) -> str:
    duplicates = {c.lower() for c in issue.columns}

    def transform(lines: List[str]) -> List[str]:
        instances: Dict[str, List[Tuple[int, _AttributeLine]]] = {}
        for index, line in enumerate(lines):
            attr = _AttributeLine.parse(line)
            if attr and attr.name.lower() in duplicates:
                instances.setdefault(attr.name.lower(), []).append((index, attr))

        dropped = set()
        for found in instances.values():
            keep = next((i for i, a in found if a.constraints), None)
            if keep is None:
                keep = next((i for i, a in found if a.description), found[0][0])
            dropped.update(i for i, _ in found if i != keep)
        return [line for index, line in enumerate(lines) if index not in dropped]
    return _rewrite_block(text, issue.entity, transform)


def _fix_system_attribute_conflict(text: str, issue: ValidationIssue) -> str:
    prefix = issue.entity.lower()
    renames = {c.lower(): f"{prefix}_{c.lower()}" for c in issue.columns}
    return _rename_columns(text, issue.entity, renames)


def _fix_naming_conflict(text: str, issue: ValidationIssue) -> str:
    def transform(lines: List[str]) -> List[str]:
        for index, line in enumerate(lines):
            attr = _AttributeLine.parse(line)
            if attr and attr.name.lower() == PRIMARY_NAME_COLUMN and "PK" not in attr.constraints:
                attr.name = f"{issue.entity.lower()}_name"
                lines[index] = attr.render()
        return lines
    return _rewrite_block(text, issue.entity, transform)


def _fix_missing_foreign_key(text: str, issue: ValidationIssue) -> str:
    from_entity, to_entity = _relationship_sides_from_key(issue)
    referenced = to_entity if issue.entity == from_entity else from_entity

    def transform(lines: List[str]) -> List[str]:
        new_line = (
            f'{_body_indent(lines)}string {expected_foreign_key(referenced)} FK '
            f'"Foreign key to {referenced}"'
        )
        return _insert_last(lines, new_line)
    return _rewrite_block(text, issue.entity, transform)


def junction_name(from_entity: str, to_entity: str) -> str:
    return f"{from_entity}{to_entity}"


def _fix_many_to_many(text: str, issue: ValidationIssue) -> str:
    from_entity, to_entity = _relationship_sides_from_key(issue)
    pattern = re.compile(
        rf'(?<!\w){re.escape(from_entity)}\s*\}}o--o\{{\s*{re.escape(to_entity)}(?!\w)'
        r'(?:[ \t]*:[^\n]*)?'
    )
    match = pattern.search(text)
    if not match:
        logger.warning(f"Many-to-many line '{issue.relationship_key}' not found; fix skipped")
        return text

    line_start = text.rfind("\n", 0, match.start()) + 1
    leading = text[line_start:match.start()]
    indent = leading if not leading.strip() else "    "
    junction = junction_name(from_entity, to_entity)

    from_fk = expected_foreign_key(from_entity)
    to_fk = expected_foreign_key(to_entity)
    if from_fk == to_fk:
        to_fk = f"related_{to_fk}"

    parts = []
    if _locate_block(text, junction) is None:
        parts.extend([
            f"{junction} {{",
            f"{indent}    string id PK",
            f'{indent}    string {from_fk} FK "Foreign key to {from_entity}"',
            f'{indent}    string {to_fk} FK "Foreign key to {to_entity}"',
            f"{indent}}}",
        ])
    parts.append(f'{from_entity} ||--o{{ {junction} : "{JUNCTION_LABEL}"')
    if to_entity != from_entity:
        parts.append(f'{to_entity} ||--o{{ {junction} : "{JUNCTION_LABEL}"')

    replacement = ("\n" + indent).join(parts)
    return text[:match.start()] + replacement + text[match.end():]


def _fix_duplicate_relationship(text: str, issue: ValidationIssue) -> str:
    pair = set(_relationship_sides_from_key(issue))
    kept: List[str] = []
    seen = False
    for line in text.split("\n"):
        match = RELATIONSHIP_PATTERN.match(line.strip())
        if match and match.group(2) in CARDINALITY_TOKENS and {match.group(1), match.group(3)} == pair:
            if seen:
                continue
            seen = True
        kept.append(line)
    return "\n".join(kept)


FIXERS: Dict[IssueCategory, Callable[[str, ValidationIssue], str]] = {
    IssueCategory.MISSING_PRIMARY_KEY: _fix_missing_primary_key,
    IssueCategory.MULTIPLE_PRIMARY_KEYS: _fix_multiple_primary_keys,
    IssueCategory.DUPLICATE_COLUMNS: _fix_duplicate_columns,
    IssueCategory.SYSTEM_ATTRIBUTE_CONFLICT: _fix_system_attribute_conflict,
    IssueCategory.NAMING_CONFLICT: _fix_naming_conflict,
    IssueCategory.MISSING_FOREIGN_KEY: _fix_missing_foreign_key,
    IssueCategory.MANY_TO_MANY_RELATIONSHIP: _fix_many_to_many,
    IssueCategory.DUPLICATE_RELATIONSHIP: _fix_duplicate_relationship,
}


# =============================================================================
# Public API
# =============================================================================

def autofix(text: str, issue: ValidationIssue) -> str:
    """
    Apply the fix for one issue to diagram text.

    Args:
        text: Diagram source.
        issue: An auto-fixable issue reported for this text.

    Returns:
        The corrected text (unchanged when the fix target is not found).

    Raises:
        AutoFixError: If the issue kind has no automatic fix.
    """
    fixer = FIXERS.get(issue.category)
    if fixer is None or not issue.auto_fixable:
        raise AutoFixError(f"Issue '{issue.issue_id}' cannot be fixed automatically")
    return fixer(text, issue)


def describe_correction(issue: ValidationIssue) -> str:
    from_entity, to_entity = _relationship_sides_from_key(issue)
    return (
        f"Converted many-to-many relationship {from_entity} }}o--o{{ {to_entity} into junction "
        f"entity '{junction_name(from_entity, to_entity)}' with two one-to-many relationships"
    )


def _fix_priority(issue: ValidationIssue) -> int:
    return FIX_ORDER.index(issue.category) if issue.category in FIX_ORDER else len(FIX_ORDER)


def autofix_all(
    text: str,
    validator: Optional[MermaidValidator] = None,
    cdm_entities: Optional[Iterable[str]] = None,
) -> AutoFixResult:
    """
    Apply every auto-fixable issue, re-validating after each fix.

    Issues are resolved in ``FIX_ORDER``; each issue id is attempted at
    most once so a fix that does not resolve its issue cannot loop.

    Args:
        text: Diagram source.
        validator: Validator to use (default settings otherwise).
        cdm_entities: Entity names matched to standard tables.

    Returns:
        AutoFixResult with the corrected text and what was done.
    """
    validator = validator or MermaidValidator()
    cdm_names = list(cdm_entities or ())
    content = text
    applied: List[str] = []
    corrections: List[str] = []
    attempted = set()

    result = validator.validate(content, cdm_entities=cdm_names)
    for _ in range(MAX_FIX_PASSES):
        candidates = sorted(
            (i for i in result.auto_fixable if i.issue_id not in attempted),
            key=_fix_priority,
        )
        if not candidates:
            break

        issue = candidates[0]
        attempted.add(issue.issue_id)
        fixed = autofix(content, issue)
        if fixed == content:
            logger.warning(f"Fix for '{issue.issue_id}' made no change")
            continue

        content = fixed
        result = validator.validate(content, cdm_entities=cdm_names)
        if result.has_issue(issue.issue_id):
            logger.warning(f"Issue '{issue.issue_id}' still present after fix")
            continue

        applied.append(issue.issue_id)
        if issue.category == IssueCategory.MANY_TO_MANY_RELATIONSHIP:
            corrections.append(describe_correction(issue))
        logger.info(f"Applied fix for '{issue.issue_id}'")

    return AutoFixResult(
        content=content,
        applied=applied,
        remaining=[i for i in result.issues if i.severity != Severity.INFO],
        corrections=corrections,
        validation=result,
    )
