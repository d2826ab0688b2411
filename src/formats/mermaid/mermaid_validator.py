"""
Mermaid ERD Validator.

Analyzes a parsed diagram for structural problems before schema generation:
- Missing or multiple primary keys
- Duplicate column names
- Columns colliding with platform columns (``name``, ``statuscode`` ...)
- Choice columns and ``status`` columns the pipeline does not create
- Relationships to undeclared entities, many-to-many without a junction
  entity, missing or unconventional foreign keys, the same pair of
  entities related more than once

Every auto-fixable issue carries a stable id built from its category, entity
and relationship key, so a run on the corrected text can confirm that the
issue is gone (see ``mermaid_autofix``).

Usage:
    from formats.mermaid.mermaid_validator import MermaidValidator

    result = MermaidValidator().validate(diagram_text)
    print(result.get_summary())
"""

import logging
from collections import Counter
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from shared.models.erd_models import Cardinality, Entity, ParseResult, Relationship
from shared.utilities.validation import IssueCategory, Severity, ValidationResult

from .mermaid_parser import MermaidParser

logger = logging.getLogger(__name__)

# Columns every platform table already has
SYSTEM_ATTRIBUTES = frozenset({"statuscode", "statecode", "ownerid", "owninguser", "owningteam"})

# Column name colliding with the auto-generated primary name column
PRIMARY_NAME_COLUMN = "name"

STATUS_COLUMN = "status"


def relationship_sides(relationship: Relationship) -> Tuple[str, str]:
    """
    Return ``(referenced, referencing)`` entity names.

    The referencing side is the one expected to hold the foreign key.
    """
    if relationship.cardinality == Cardinality.MANY_TO_ONE:
        return relationship.to_entity, relationship.from_entity
    return relationship.from_entity, relationship.to_entity


def relationship_pair(relationship: Relationship) -> FrozenSet[str]:
    """Entities a relationship connects, regardless of direction."""
    return frozenset((relationship.from_entity, relationship.to_entity))


def expected_foreign_key(referenced: str) -> str:
    """Conventional foreign key column name: ``{referenced}_id``."""
    return f"{referenced.lower()}_id"


class MermaidValidator:
    """
    Validates parsed diagrams.

    Example:
        >>> result = MermaidValidator().validate("erDiagram\\nA {\\n string name\\n}")
        >>> [i.category.value for i in result.errors]
        ['missing-primary-key']
    """

    def __init__(self, parser: Optional[MermaidParser] = None):
        self.parser = parser or MermaidParser()

    def validate(
        self,
        source: Union[str, ParseResult],
        cdm_entities: Optional[Iterable[str]] = None,
        source_path: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate diagram text or an already parsed model.

        Args:
            source: Diagram text or a ParseResult.
            cdm_entities: Names of diagram entities matched to standard
                tables; they skip the entity-level checks.
            source_path: File the text came from, for reporting.

        Returns:
            ValidationResult with every issue found.
        """
        result = ValidationResult(format_name="mermaid", source_path=source_path)
        parsed = self.parser.parse(source) if isinstance(source, str) else source
        cdm_names: Set[str] = set(cdm_entities or ())

        for warning in parsed.warnings:
            result.add_issue(
                severity=Severity.WARNING,
                category=IssueCategory.SYNTAX_ERROR,
                message=warning.message,
                location=f"line {warning.line_number}",
                details=warning.line,
            )

        if not parsed.entities:
            result.add_issue(
                severity=Severity.ERROR,
                category=IssueCategory.MISSING_REQUIRED,
                message="Diagram declares no entities",
                recommendation="Add at least one entity block: Name { string id PK }",
            )
            return result

        for entity in parsed.entities:
            if entity.name in cdm_names:
                result.add_issue(
                    severity=Severity.INFO,
                    category=IssueCategory.CDM_ENTITY_DETECTED,
                    message=f"Entity '{entity.name}' matches a standard table and will reuse it",
                    entity=entity.name,
                )
                continue
            self._validate_entity(entity, result)

        declared = set(parsed.entity_names)
        first_by_pair: Dict[FrozenSet[str], Relationship] = {}
        repeats: Dict[FrozenSet[str], List[Relationship]] = {}
        for relationship in parsed.relationships:
            pair = relationship_pair(relationship)
            if pair in first_by_pair:
                repeats.setdefault(pair, []).append(relationship)
                continue
            first_by_pair[pair] = relationship
            self._validate_relationship(relationship, parsed, declared, cdm_names, result)

        for pair, extra in repeats.items():
            self._report_duplicates(first_by_pair[pair], extra, result)

        logger.debug(
            f"Validation found {result.error_count} errors, {result.warning_count} warnings"
        )
        return result

    # ------------------------------------------------------------------
    # Entity checks
    # ------------------------------------------------------------------

    def _validate_entity(self, entity: Entity, result: ValidationResult) -> None:
        location = f"line {entity.line_number}" if entity.line_number else None

        if not entity.attributes:
            result.add_issue(
                severity=Severity.WARNING,
                category=IssueCategory.EMPTY_ENTITY,
                message=f"Entity '{entity.name}' has no attributes defined",
                entity=entity.name,
                location=location,
                recommendation="Add at least one attribute with a primary key (PK)",
            )

        primary_keys = entity.primary_keys
        if not primary_keys:
            result.add_issue(
                severity=Severity.ERROR,
                category=IssueCategory.MISSING_PRIMARY_KEY,
                message=f"Entity '{entity.name}' must have exactly one primary key (PK) attribute",
                entity=entity.name,
                location=location,
                recommendation="Add a PK constraint to one of the columns",
                auto_fixable=True,
            )
        elif len(primary_keys) > 1:
            result.add_issue(
                severity=Severity.ERROR,
                category=IssueCategory.MULTIPLE_PRIMARY_KEYS,
                message=(
                    f"Entity '{entity.name}' has {len(primary_keys)} primary keys; "
                    "only one is allowed"
                ),
                entity=entity.name,
                location=location,
                columns=[a.name for a in primary_keys],
                recommendation=f"Keep PK on '{primary_keys[0].name}' only",
                auto_fixable=True,
            )

        counts = Counter(a.name.lower() for a in entity.attributes)
        duplicates = [name for name, count in counts.items() if count > 1]
        if duplicates:
            result.add_issue(
                severity=Severity.ERROR,
                category=IssueCategory.DUPLICATE_COLUMNS,
                message=f"Entity '{entity.name}' has duplicate column names: {', '.join(duplicates)}",
                entity=entity.name,
                location=location,
                columns=duplicates,
                recommendation="Each column name must be unique within an entity",
                auto_fixable=True,
            )

        conflicting = [a.name for a in entity.attributes if a.name.lower() in SYSTEM_ATTRIBUTES]
        if conflicting:
            prefix = entity.name.lower()
            result.add_issue(
                severity=Severity.ERROR,
                category=IssueCategory.SYSTEM_ATTRIBUTE_CONFLICT,
                message=(
                    f"Entity '{entity.name}' has columns that conflict with system columns: "
                    f"{', '.join(conflicting)}"
                ),
                entity=entity.name,
                location=location,
                columns=conflicting,
                recommendation="Rename to " + ", ".join(f"'{prefix}_{c.lower()}'" for c in conflicting),
                auto_fixable=True,
            )

        name_columns = [
            a.name for a in entity.attributes
            if a.name.lower() == PRIMARY_NAME_COLUMN and not a.is_primary_key
        ]
        if name_columns:
            result.add_issue(
                severity=Severity.WARNING,
                category=IssueCategory.NAMING_CONFLICT,
                message=(
                    f"Entity '{entity.name}' has a non-primary column called 'name' which "
                    "conflicts with the auto-generated primary name column"
                ),
                entity=entity.name,
                location=location,
                columns=name_columns,
                recommendation=f"Rename the column to '{entity.name.lower()}_name'",
                auto_fixable=True,
            )

        status_columns = [a.name for a in entity.attributes if a.name.lower() == STATUS_COLUMN]
        if status_columns:
            result.add_issue(
                severity=Severity.INFO,
                category=IssueCategory.STATUS_COLUMN_IGNORED,
                message=(
                    f"Entity '{entity.name}' contains 'status' columns which will be ignored; "
                    "the platform provides statecode/statuscode"
                ),
                entity=entity.name,
                columns=status_columns,
            )

        choice_columns = [a.name for a in entity.attributes if a.is_choice]
        if choice_columns:
            result.add_issue(
                severity=Severity.INFO,
                category=IssueCategory.CHOICE_COLUMN,
                message=(
                    f"Entity '{entity.name}' has choice columns that will not be created: "
                    f"{', '.join(choice_columns)}"
                ),
                entity=entity.name,
                columns=choice_columns,
                recommendation="Create choice columns after deployment and bind them to global choices",
            )

    # ------------------------------------------------------------------
    # Relationship checks
    # ------------------------------------------------------------------

    def _validate_relationship(
        self,
        relationship: Relationship,
        parsed: ParseResult,
        declared: Set[str],
        cdm_names: Set[str],
        result: ValidationResult,
    ) -> None:
        key = relationship.key
        location = f"line {relationship.line_number}" if relationship.line_number else None

        missing = [n for n in (relationship.from_entity, relationship.to_entity) if n not in declared]
        for name in dict.fromkeys(missing):
            result.add_issue(
                severity=Severity.ERROR,
                category=IssueCategory.MISSING_ENTITY,
                message=f"Relationship '{key}' references non-existent entity '{name}'",
                entity=name,
                relationship_key=key,
                location=location,
                recommendation="Declare every entity referenced by a relationship",
            )
        if missing:
            return

        if relationship.cardinality == Cardinality.MANY_TO_MANY:
            result.add_issue(
                severity=Severity.ERROR,
                category=IssueCategory.MANY_TO_MANY_RELATIONSHIP,
                message=(
                    f"Many-to-many relationship '{key}' must be expressed through an explicit "
                    "junction entity"
                ),
                relationship_key=key,
                location=location,
                recommendation=(
                    f"Add a junction entity '{relationship.from_entity}{relationship.to_entity}' "
                    "with two one-to-many relationships"
                ),
                auto_fixable=True,
            )
            return

        if relationship.is_self_referencing:
            result.add_issue(
                severity=Severity.WARNING,
                category=IssueCategory.SELF_REFERENCING_RELATIONSHIP,
                message=f"Entity '{relationship.from_entity}' references itself through '{relationship.name}'",
                entity=relationship.from_entity,
                relationship_key=key,
                location=location,
            )

        referenced, referencing = relationship_sides(relationship)
        if referencing in cdm_names:
            return

        entity = parsed.get_entity(referencing)
        foreign_keys = entity.foreign_keys if entity else []
        expected = expected_foreign_key(referenced)

        if not foreign_keys:
            result.add_issue(
                severity=Severity.WARNING,
                category=IssueCategory.MISSING_FOREIGN_KEY,
                message=(
                    f"Relationship '{key}' has no foreign key on '{referencing}'; "
                    f"expected '{expected}'"
                ),
                entity=referencing,
                relationship_key=key,
                location=location,
                recommendation=f'Add: string {expected} FK "Foreign key to {referenced}"',
                auto_fixable=True,
            )
            return

        if not any(self._references(attr_name, target, referenced, expected)
                   for attr_name, target in ((a.name, a.target_entity) for a in foreign_keys)):
            result.add_issue(
                severity=Severity.INFO,
                category=IssueCategory.FOREIGN_KEY_NAMING,
                message=(
                    f"Foreign keys on '{referencing}' ({', '.join(a.name for a in foreign_keys)}) "
                    f"do not follow the '{expected}' convention for relationship '{key}'"
                ),
                entity=referencing,
                relationship_key=key,
                location=location,
                columns=[a.name for a in foreign_keys],
                recommendation=f"Rename the foreign key to '{expected}'",
            )

    @staticmethod
    def _report_duplicates(first: Relationship, extra: List[Relationship], result: ValidationResult) -> None:
        lines = [str(r.line_number) for r in extra if r.line_number]
        result.add_issue(
            severity=Severity.WARNING,
            category=IssueCategory.DUPLICATE_RELATIONSHIP,
            message=(
                f"Relationship between '{first.from_entity}' and '{first.to_entity}' is declared "
                f"{len(extra) + 1} times"
            ),
            relationship_key=first.key,
            location=f"line {first.line_number}" if first.line_number else None,
            details=f"Repeated on line(s) {', '.join(lines)}" if lines else None,
            recommendation="Keep one relationship line per pair of entities",
            auto_fixable=True,
        )

    @staticmethod
    def _references(attr_name: str, target: Optional[str], referenced: str, expected: str) -> bool:
        if target and target.lower() == referenced.lower():
            return True
        return attr_name.lower() == expected


def validate(text: str, cdm_entities: Optional[Iterable[str]] = None) -> ValidationResult:
    """Validate diagram text with default settings."""
    return MermaidValidator().validate(text, cdm_entities=cdm_entities)
