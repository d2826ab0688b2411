"""
Mermaid ERD Parser.

This module turns Mermaid ``erDiagram`` text into the in-memory
entity/relationship model.

Supported syntax:
- ``erDiagram`` header and ``%%`` comments (skipped)
- Entity blocks ``Name { <type> <name> [PK|FK|UK|NOT NULL] ["description"] ... }``
- Attribute types ``string``, ``int``, ``decimal`` ..., ``choice(a,b)`` and
  ``lookup(Target)`` / ``lookup(prefix:Target)``
- Relationship lines ``A <card> B : label`` with ``<card>`` one of
  ``||--||``, ``||--o{``, ``}o--||``, ``}o--o{``

The parser never raises on recoverable input. Lines it cannot understand are
skipped and reported as ``ParseWarning`` entries on the result.

Usage:
    from formats.mermaid.mermaid_parser import MermaidParser

    parser = MermaidParser()
    result = parser.parse(diagram_text)
    for entity in result.entities:
        print(entity.name, [a.name for a in entity.attributes])
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from shared.models.erd_models import (
    Attribute,
    Cardinality,
    Entity,
    ParseResult,
    ParseWarning,
    Relationship,
)

logger = logging.getLogger(__name__)


CARDINALITY_TOKENS: Dict[str, Cardinality] = {
    "||--||": Cardinality.ONE_TO_ONE,
    "||--o{": Cardinality.ONE_TO_MANY,
    "}o--||": Cardinality.MANY_TO_ONE,
    "}o--o{": Cardinality.MANY_TO_MANY,
}

TOKENS_BY_CARDINALITY: Dict[Cardinality, str] = {v: k for k, v in CARDINALITY_TOKENS.items()}

# Audit columns the platform creates on every table
SYSTEM_AUDIT_FIELDS = frozenset({"createdon", "createdby", "modifiedon", "modifiedby"})

RELATIONSHIP_PATTERN = re.compile(
    r'^(\w+)\s*([|}{o]{2}--[|}{o]{2})\s*(\w+)(?:\s*:\s*(.*))?$'
)
ENTITY_START_PATTERN = re.compile(r'^(\w+)\s*\{(.*)$')
ATTRIBUTE_PATTERN = re.compile(
    r'^((?:choice\([^)]*\)|lookup\([^)]*\)|\w+))\s+(\w+)'
    r'(?:\s+([^"]+?))?(?:\s+"([^"]*)")?\s*$'
)
LOOKUP_TYPE_PATTERN = re.compile(r'^lookup\(\s*(?:(\w+)\s*:\s*)?(\w+)\s*\)$', re.IGNORECASE)
CHOICE_TYPE_PATTERN = re.compile(r'^choice(?:\(([^)]*)\))?$', re.IGNORECASE)
_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')


def to_display_name(name: str) -> str:
    """Derive a label: ``customer_id`` -> ``Customer Id``, ``OrderLine`` -> ``Order Line``."""
    spaced = _CAMEL_BOUNDARY.sub(" ", name)
    words = re.split(r'[_\-\s]+', spaced.lower())
    return " ".join(word.capitalize() for word in words if word)


def find_block_end(text: str) -> int:
    """Index of the first ``}`` outside double quotes, or -1."""
    in_quotes = False
    for index, char in enumerate(text):
        if char == '"':
            in_quotes = not in_quotes
        elif char == '}' and not in_quotes:
            return index
    return -1


class MermaidParser:
    """
    Parse Mermaid ERD text into entities and relationships.

    The parser is stateless between calls; parsing the same text twice
    yields structurally equal results in source order.

    Example:
        >>> result = MermaidParser().parse('erDiagram\\nA {\\n string id PK\\n}')
        >>> result.entities[0].primary_keys[0].name
        'id'
    """

    def __init__(self, ignore_system_fields: bool = True):
        """
        Initialize the parser.

        Args:
            ignore_system_fields: Drop audit columns (createdon, createdby,
                modifiedon, modifiedby) the platform provides itself.
        """
        self.ignore_system_fields = ignore_system_fields

    def parse(self, content: str) -> ParseResult:
        """
        Parse diagram text.

        Args:
            content: Mermaid erDiagram source.

        Returns:
            ParseResult with entities, relationships and warnings.
        """
        result = ParseResult()
        entities_by_name: Dict[str, Entity] = {}
        current: Optional[Entity] = None

        for line_number, segment in self._segments(content or ""):
            if current is not None:
                end = find_block_end(segment)
                body = segment if end < 0 else segment[:end]
                body = body.strip()
                if body:
                    self._parse_attribute_line(body, line_number, current, result)
                if end >= 0:
                    current = None
                    rest = segment[end + 1:].strip()
                    if rest:
                        current = self._parse_outside_block(
                            rest, line_number, result, entities_by_name
                        )
                continue

            current = self._parse_outside_block(segment, line_number, result, entities_by_name)

        if current is not None:
            result.warnings.append(ParseWarning(
                line_number=current.line_number or 0,
                line=current.name,
                message=f"Entity block '{current.name}' is not closed",
            ))

        logger.debug(
            f"Parsed {len(result.entities)} entities, {len(result.relationships)} relationships, "
            f"{len(result.warnings)} warnings"
        )
        return result

    def parse_file(self, file_path: str) -> ParseResult:
        """Parse a diagram file (UTF-8)."""
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Diagram file not found: {file_path}")
        return self.parse(path.read_text(encoding="utf-8"))

    # ------------------------------------------------------------------
    # Line handling
    # ------------------------------------------------------------------

    @staticmethod
    def _segments(content: str) -> Iterator[Tuple[int, str]]:
        for line_number, raw in enumerate(content.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith("%%"):
                continue
            if line == "erDiagram" or line.startswith("erDiagram "):
                line = line[len("erDiagram"):].strip()
                if not line:
                    continue
            yield line_number, line

    def _parse_outside_block(
        self,
        line: str,
        line_number: int,
        result: ParseResult,
        entities_by_name: Dict[str, Entity],
    ) -> Optional[Entity]:
        """Handle a line outside any entity block; returns the opened entity, if any."""
        rel_match = RELATIONSHIP_PATTERN.match(line)
        if rel_match:
            self._parse_relationship(rel_match, line, line_number, result)
            return None

        entity_match = ENTITY_START_PATTERN.match(line)
        if entity_match:
            name, rest = entity_match.group(1), entity_match.group(2)
            entity = entities_by_name.get(name)
            if entity is None:
                entity = Entity(name=name, display_name=to_display_name(name), line_number=line_number)
                entities_by_name[name] = entity
                result.entities.append(entity)
            else:
                result.warnings.append(ParseWarning(
                    line_number=line_number,
                    line=line,
                    message=f"Entity '{name}' declared more than once; attributes merged",
                ))

            end = find_block_end(rest)
            body = (rest if end < 0 else rest[:end]).strip()
            if body:
                self._parse_attribute_line(body, line_number, entity, result)
            if end < 0:
                return entity
            trailing = rest[end + 1:].strip()
            if trailing:
                return self._parse_outside_block(trailing, line_number, result, entities_by_name)
            return None

        result.warnings.append(ParseWarning(
            line_number=line_number, line=line, message="Unrecognized line skipped"
        ))
        return None

    def _parse_relationship(
        self,
        match: "re.Match[str]",
        line: str,
        line_number: int,
        result: ParseResult,
    ) -> None:
        from_entity, token, to_entity, label = match.groups()
        cardinality = CARDINALITY_TOKENS.get(token)
        if cardinality is None:
            result.warnings.append(ParseWarning(
                line_number=line_number,
                line=line,
                message=f"Unsupported cardinality '{token}'; relationship skipped",
            ))
            return

        name = (label or "").strip().strip('"').strip("'").strip()
        result.relationships.append(Relationship(
            from_entity=from_entity,
            to_entity=to_entity,
            cardinality=cardinality,
            name=name or f"{from_entity}_{to_entity}",
            token=token,
            line_number=line_number,
        ))

    def _parse_attribute_line(
        self,
        line: str,
        line_number: int,
        entity: Entity,
        result: ParseResult,
    ) -> None:
        match = ATTRIBUTE_PATTERN.match(line)
        if not match:
            result.warnings.append(ParseWarning(
                line_number=line_number,
                line=line,
                message=f"Unrecognized attribute in entity '{entity.name}' skipped",
            ))
            return

        raw_type, name, constraint_text, description = match.groups()

        if self.ignore_system_fields and name.lower() in SYSTEM_AUDIT_FIELDS:
            result.warnings.append(ParseWarning(
                line_number=line_number,
                line=line,
                message=f"System field '{name}' in entity '{entity.name}' ignored; the platform provides it",
            ))
            return

        constraints = self._parse_constraints(constraint_text)
        attr_type = raw_type.lower()
        is_lookup = False
        target_entity = None
        target_prefix = None
        choice_options: Tuple[str, ...] = ()

        lookup_match = LOOKUP_TYPE_PATTERN.match(raw_type)
        choice_match = CHOICE_TYPE_PATTERN.match(raw_type)
        if lookup_match:
            attr_type = "lookup"
            is_lookup = True
            target_prefix = lookup_match.group(1).lower() if lookup_match.group(1) else None
            target_entity = lookup_match.group(2)
        elif raw_type.lower().startswith("lookup("):
            result.warnings.append(ParseWarning(
                line_number=line_number,
                line=line,
                message=f"Malformed lookup type '{raw_type}' in entity '{entity.name}' skipped",
            ))
            return
        elif choice_match:
            attr_type = "choice"
            if choice_match.group(1):
                choice_options = tuple(
                    option.strip() for option in choice_match.group(1).split(",") if option.strip()
                )

        is_primary_key = "PK" in constraints
        entity.attributes.append(Attribute(
            name=name,
            type=attr_type,
            is_primary_key=is_primary_key,
            is_foreign_key="FK" in constraints or is_lookup,
            is_unique="UK" in constraints,
            is_required="NOT NULL" in constraints or is_primary_key,
            is_lookup=is_lookup,
            target_entity=target_entity,
            target_prefix=target_prefix,
            choice_options=choice_options,
            description=description,
            display_name=to_display_name(name),
        ))

    @staticmethod
    def _parse_constraints(text: Optional[str]) -> List[str]:
        if not text:
            return []
        upper = text.upper()
        found = []
        if re.search(r'\bNOT\s+NULL\b', upper):
            found.append("NOT NULL")
            upper = re.sub(r'\bNOT\s+NULL\b', " ", upper)
        for token in re.split(r'[\s,]+', upper):
            if token in ("PK", "FK", "UK"):
                found.append(token)
        return found


def serialize(result: ParseResult) -> str:
    """
    Render a parsed model back to diagram text.

    The output is canonical rather than a copy of the source: one attribute
    per line, constraints in ``PK, FK, UK, NOT NULL`` order, then the
    relationships.
    """
    lines = ["erDiagram"]
    for entity in result.entities:
        lines.append(f"    {entity.name} {{")
        for attr in entity.attributes:
            lines.append(f"        {_serialize_attribute(attr)}")
        lines.append("    }")
    for rel in result.relationships:
        token = TOKENS_BY_CARDINALITY[rel.cardinality]
        lines.append(f'    {rel.from_entity} {token} {rel.to_entity} : "{rel.name}"')
    return "\n".join(lines) + "\n"


def _serialize_attribute(attr: Attribute) -> str:
    if attr.is_lookup:
        target = f"{attr.target_prefix}:{attr.target_entity}" if attr.target_prefix else attr.target_entity
        type_text = f"lookup({target})"
    elif attr.is_choice and attr.choice_options:
        type_text = f"choice({','.join(attr.choice_options)})"
    else:
        type_text = attr.type

    constraints = []
    if attr.is_primary_key:
        constraints.append("PK")
    if attr.is_foreign_key and not attr.is_lookup:
        constraints.append("FK")
    if attr.is_unique:
        constraints.append("UK")
    if attr.is_required and not attr.is_primary_key:
        constraints.append("NOT NULL")

    text = f"{type_text} {attr.name}"
    if constraints:
        text += " " + ", ".join(constraints)
    if attr.description:
        text += f' "{attr.description}"'
    return text
