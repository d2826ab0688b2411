"""
ERD data models.

In-memory representation of a parsed Mermaid ``erDiagram``. The parser is the
only producer of these objects; validators, the CDM matcher and the schema
generator consume them read-only.

Models:
- Cardinality: the four relationship kinds a diagram can declare
- Attribute: a typed column inside an entity block (immutable)
- Entity: an entity block with its attributes
- Relationship: a relationship line between two entities
- ParseWarning: an unrecognized or ignored line
- ParseResult: everything a parse run produced
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Cardinality(str, Enum):
    """Relationship cardinality as declared in the diagram."""
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"

    @property
    def from_multiplicity(self) -> str:
        return "many" if self in (Cardinality.MANY_TO_ONE, Cardinality.MANY_TO_MANY) else "one"

    @property
    def to_multiplicity(self) -> str:
        return "many" if self in (Cardinality.ONE_TO_MANY, Cardinality.MANY_TO_MANY) else "one"


@dataclass(frozen=True)
class Attribute:
    """
    A column declared inside an entity block.

    Attributes are value objects: corrections never mutate them, they rewrite
    the diagram text which is then parsed again.

    Attributes:
        name: Column name as written in the diagram.
        type: Lower-cased diagram type (``string``, ``int``, ``choice``, ``lookup`` ...).
        is_primary_key: Declared with ``PK``.
        is_foreign_key: Declared with ``FK``.
        is_unique: Declared with ``UK``.
        is_required: ``NOT NULL`` or primary key.
        is_lookup: Declared as ``lookup(Target)``.
        target_entity: Referenced entity name for lookups.
        target_prefix: Foreign publisher prefix from ``lookup(prefix:Target)``.
        choice_options: Inline values from ``choice(a,b)``.
        description: Quoted trailing description.
        display_name: Derived human readable label.
    """
    name: str
    type: str = "string"
    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_unique: bool = False
    is_required: bool = False
    is_lookup: bool = False
    target_entity: Optional[str] = None
    target_prefix: Optional[str] = None
    choice_options: Tuple[str, ...] = ()
    description: Optional[str] = None
    display_name: str = ""

    @property
    def is_choice(self) -> bool:
        return self.type == "choice"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "displayName": self.display_name,
            "isPrimaryKey": self.is_primary_key,
            "isForeignKey": self.is_foreign_key,
            "isUnique": self.is_unique,
            "isRequired": self.is_required,
        }
        if self.is_lookup:
            result["isLookup"] = True
            result["targetEntity"] = self.target_entity
            if self.target_prefix:
                result["targetPrefix"] = self.target_prefix
        if self.choice_options:
            result["choiceOptions"] = list(self.choice_options)
        if self.description:
            result["description"] = self.description
        return result


@dataclass
class Entity:
    """An entity block ``Name { ... }``."""
    name: str
    display_name: str = ""
    attributes: List[Attribute] = field(default_factory=list)
    line_number: Optional[int] = None

    @property
    def primary_keys(self) -> List[Attribute]:
        return [a for a in self.attributes if a.is_primary_key]

    @property
    def foreign_keys(self) -> List[Attribute]:
        return [a for a in self.attributes if a.is_foreign_key]

    @property
    def lookups(self) -> List[Attribute]:
        return [a for a in self.attributes if a.is_lookup]

    def get_attribute(self, name: str) -> Optional[Attribute]:
        """Find an attribute by case-insensitive name."""
        lowered = name.lower()
        for attr in self.attributes:
            if attr.name.lower() == lowered:
                return attr
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "name": self.name,
            "displayName": self.display_name,
            "attributes": [a.to_dict() for a in self.attributes],
        }


@dataclass(frozen=True)
class Relationship:
    """A relationship line ``A <card> B : label``."""
    from_entity: str
    to_entity: str
    cardinality: Cardinality
    name: str = ""
    token: str = ""
    line_number: Optional[int] = None

    @property
    def key(self) -> str:
        """Identity used for issue ids and duplicate detection."""
        return f"{self.from_entity}->{self.to_entity}"

    @property
    def is_self_referencing(self) -> bool:
        return self.from_entity == self.to_entity

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "fromEntity": self.from_entity,
            "toEntity": self.to_entity,
            "cardinality": {
                "type": self.cardinality.value,
                "from": self.cardinality.from_multiplicity,
                "to": self.cardinality.to_multiplicity,
            },
            "name": self.name,
        }


@dataclass(frozen=True)
class ParseWarning:
    """A line the parser skipped or partially ignored."""
    line_number: int
    line: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"lineNumber": self.line_number, "line": self.line, "message": self.message}


@dataclass
class ParseResult:
    """Result of parsing one diagram."""
    entities: List[Entity] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    warnings: List[ParseWarning] = field(default_factory=list)

    @property
    def entity_names(self) -> List[str]:
        return [e.name for e in self.entities]

    def get_entity(self, name: str) -> Optional[Entity]:
        """Find an entity by exact name."""
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
            "warnings": [w.to_dict() for w in self.warnings],
        }
