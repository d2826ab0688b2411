"""
Schema Generator.

Turns parsed entities and relationships into a platform metadata document:

- one entity definition per custom entity, carrying the primary name column
  that replaces the diagram's primary key (the platform generates the GUID
  identity column itself)
- one column payload per remaining attribute, typed through the type mapper
- ``additionalColumns`` for explicit ``lookup(...)`` attributes
- one-to-many relationship descriptors, each carrying its lookup column

Naming: every logical name is ``{prefix}_{lowercased name}``. Entities matched
to standard tables (with the ``use_cdm`` policy) are not generated; they stay
valid relationship endpoints under the standard table's logical name.

Errors on a single entity or relationship are recorded on the document and
generation continues with the rest.

Usage:
    from core.schema import SchemaGenerator

    generator = SchemaGenerator(prefix="cr123")
    document = generator.generate_from(parse_result, detection)
    print(document.to_json())
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from core.validators.input import InputValidator
from formats.cdm.cdm_matcher import CDMDetectionResult, CDMMatch
from formats.mermaid.mermaid_parser import to_display_name
from formats.mermaid.mermaid_type_mapper import MermaidTypeMapper
from formats.mermaid.mermaid_validator import (
    PRIMARY_NAME_COLUMN,
    STATUS_COLUMN,
    SYSTEM_ATTRIBUTES,
    expected_foreign_key,
    relationship_sides,
)
from shared.models.erd_models import Attribute, Cardinality, Entity, ParseResult, Relationship
from shared.models.metadata_types import ODATA_ENTITY, ODATA_ONE_TO_MANY, CDMPolicy, PlatformType

from .attribute_metadata import (
    build_attribute,
    label,
    lookup_attribute,
    primary_name_attribute,
    to_schema_name,
)

logger = logging.getLogger(__name__)

SOURCE_MARKER = "mermaid-erd"

CASCADE_CONFIGURATION = {
    "Assign": "NoCascade",
    "Delete": "RemoveLink",
    "Merge": "NoCascade",
    "Reparent": "NoCascade",
    "Share": "NoCascade",
    "Unshare": "NoCascade",
}


class GenerationError(Exception):
    """An entity, column or relationship could not be generated."""

    def __init__(self, message: str, entity: Optional[str] = None, relationship: Optional[str] = None):
        self.entity = entity
        self.relationship = relationship
        super().__init__(message)


@dataclass
class EntityDefinition:
    """A custom table to create."""
    name: str
    logical_name: str
    schema_name: str
    display_name: str
    primary_name_attribute: Dict[str, Any]
    attributes: List[Dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """Body of ``POST EntityDefinitions``; regular columns are created afterwards."""
        return {
            "@odata.type": ODATA_ENTITY,
            "LogicalName": self.logical_name,
            "SchemaName": self.schema_name,
            "DisplayName": label(self.display_name),
            "DisplayCollectionName": label(f"{self.display_name}s"),
            "Description": label(f"Entity generated from Mermaid ERD: {self.name}"),
            "OwnershipType": "UserOwned",
            "IsActivity": False,
            "HasNotes": False,
            "HasActivities": False,
            "Attributes": [self.primary_name_attribute],
        }

    def to_dict(self) -> Dict[str, Any]:
        payload = self.to_payload()
        payload["Attributes"] = [self.primary_name_attribute] + list(self.attributes)
        return payload


@dataclass
class RelationshipDefinition:
    """A one-to-many relationship (and its lookup column) to create."""
    schema_name: str
    referenced_entity: str
    referencing_entity: str
    referencing_attribute: str
    payload: Dict[str, Any]
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.payload)


@dataclass
class LookupColumn:
    """
    An explicit ``lookup(...)`` attribute.

    ``targets`` lists candidate referenced logical names in preference order;
    the deployment binds the lookup to the first one that exists.
    """
    entity_logical_name: str
    logical_name: str
    targets: List[str]
    column_metadata: Dict[str, Any]
    source_entity: str
    source_attribute: str

    def relationship_payload(self, target: str) -> Dict[str, Any]:
        """One-to-many payload binding this lookup to ``target``."""
        prefix = self.logical_name.split("_", 1)[0]
        attr_key = self.source_attribute.lower()
        return _one_to_many_payload(
            schema_name=(
                f"{prefix}_{to_schema_name(self.source_entity)}_{to_schema_name(self.source_attribute)}"
            ),
            referenced=target,
            referencing=self.entity_logical_name,
            lookup=self.column_metadata,
            referenced_navigation=f"{prefix}_{self.source_entity.lower()}_{attr_key}",
            referencing_navigation=f"{prefix}_{attr_key}",
        )

    def to_dict(self) -> Dict[str, Any]:
        metadata = dict(self.column_metadata)
        metadata["LogicalName"] = self.logical_name
        metadata["Targets"] = list(self.targets)
        return {"entityLogicalName": self.entity_logical_name, "columnMetadata": metadata}


@dataclass
class MetadataDocument:
    """Schema generator output."""
    entities: List[EntityDefinition] = field(default_factory=list)
    relationships: List[RelationshipDefinition] = field(default_factory=list)
    additional_columns: List[LookupColumn] = field(default_factory=list)
    cdm_entities: Dict[str, str] = field(default_factory=dict)
    excluded_columns: List[Dict[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def publisher_prefix(self) -> str:
        return self.metadata.get("publisherPrefix", "")

    @property
    def success(self) -> bool:
        return not self.errors

    def get_entity(self, logical_name: str) -> Optional[EntityDefinition]:
        for entity in self.entities:
            if entity.logical_name == logical_name:
                return entity
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
            "additionalColumns": [c.to_dict() for c in self.additional_columns],
            "cdmEntities": dict(self.cdm_entities),
            "excludedColumns": list(self.excluded_columns),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "metadata": dict(self.metadata),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


def _one_to_many_payload(
    schema_name: str,
    referenced: str,
    referencing: str,
    lookup: Dict[str, Any],
    referenced_navigation: str,
    referencing_navigation: str,
) -> Dict[str, Any]:
    return {
        "@odata.type": ODATA_ONE_TO_MANY,
        "SchemaName": schema_name,
        "ReferencedEntity": referenced,
        "ReferencedAttribute": f"{referenced}id",
        "ReferencingEntity": referencing,
        "RelationshipType": "OneToManyRelationship",
        "SecurityTypes": "Append",
        "IsHierarchical": False,
        "ReferencedEntityNavigationPropertyName": referenced_navigation,
        "ReferencingEntityNavigationPropertyName": referencing_navigation,
        "CascadeConfiguration": dict(CASCADE_CONFIGURATION),
        "Lookup": lookup,
    }


def _role_name(text: str) -> str:
    return re.sub(r'[^a-z0-9]+', '_', text.lower()).strip('_')


class SchemaGenerator:
    """
    Generates a metadata document from a parsed diagram.

    Generation is deterministic: the same model and options give the same
    logical names and type mappings (only ``generatedAt`` differs unless
    it is passed in).

    Example:
        >>> generator = SchemaGenerator(prefix="cr123")
        >>> doc = generator.generate([Entity(name="Customer")], [])
        >>> doc.entities[0].logical_name
        'cr123_customer'
    """

    def __init__(
        self,
        prefix: str,
        cdm_policy: CDMPolicy = CDMPolicy.USE_CDM,
        type_mapper: Optional[MermaidTypeMapper] = None,
    ):
        """
        Initialize the generator.

        Args:
            prefix: Publisher prefix used for every logical name (required).
            cdm_policy: ``use_cdm`` reuses matched standard tables,
                ``create_custom`` generates every entity.
            type_mapper: Type mapper to use (default table otherwise).

        Raises:
            ConfigurationError: If the prefix is missing or invalid.
        """
        self.prefix = InputValidator.validate_publisher_prefix(prefix)
        self.cdm_policy = CDMPolicy(cdm_policy)
        self.type_mapper = type_mapper or MermaidTypeMapper()

    def generate_from(
        self,
        parse_result: ParseResult,
        detection: Optional[CDMDetectionResult] = None,
        generated_at: Optional[str] = None,
    ) -> MetadataDocument:
        """Generate from a ParseResult and an optional CDM detection run."""
        matches = detection.matches if detection else None
        return self.generate(parse_result.entities, parse_result.relationships, matches, generated_at)

    def generate(
        self,
        entities: Sequence[Entity],
        relationships: Sequence[Relationship],
        cdm_matches: Optional[Iterable[CDMMatch]] = None,
        generated_at: Optional[str] = None,
    ) -> MetadataDocument:
        """
        Generate the metadata document.

        Args:
            entities: Parsed entities.
            relationships: Parsed relationships.
            cdm_matches: CDM match decisions (honored with the ``use_cdm`` policy).
            generated_at: ISO timestamp for the metadata block.

        Returns:
            MetadataDocument; per-item failures are listed in ``errors``.
        """
        document = MetadataDocument(metadata={
            "publisherPrefix": self.prefix,
            "generatedAt": generated_at or datetime.now(timezone.utc).isoformat(),
            "source": SOURCE_MARKER,
        })

        if self.cdm_policy == CDMPolicy.USE_CDM:
            for match in cdm_matches or ():
                document.cdm_entities[match.original_entity] = match.cdm_entity.logical_name

        resolver = {e.name: self.logical_name(e.name) for e in entities}
        resolver.update(document.cdm_entities)
        implied_keys = self._implied_foreign_keys(relationships)
        realized_by_lookup: Set[Tuple[str, str]] = set()

        for entity in entities:
            if entity.name in document.cdm_entities:
                logger.info(
                    f"Entity '{entity.name}' maps to standard table "
                    f"'{document.cdm_entities[entity.name]}'; not generated"
                )
                continue
            try:
                definition = self._generate_entity(
                    entity, document, resolver, implied_keys.get(entity.name, set()), realized_by_lookup
                )
            except GenerationError as e:
                document.errors.append(str(e))
                continue
            document.entities.append(definition)

        used_attributes: Set[Tuple[str, str]] = set()
        for relationship in relationships:
            try:
                definition = self._generate_relationship(
                    relationship, entities, resolver, realized_by_lookup, used_attributes, document
                )
            except GenerationError as e:
                document.errors.append(str(e))
                continue
            if definition is not None:
                document.relationships.append(definition)

        logger.info(
            f"Generated {len(document.entities)} entities, {len(document.relationships)} relationships, "
            f"{len(document.additional_columns)} lookup columns ({len(document.errors)} errors)"
        )
        return document

    def logical_name(self, name: str) -> str:
        return f"{self.prefix}_{name.lower()}"

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def _generate_entity(
        self,
        entity: Entity,
        document: MetadataDocument,
        resolver: Dict[str, str],
        implied_keys: Set[str],
        realized_by_lookup: Set[Tuple[str, str]],
    ) -> EntityDefinition:
        logical_name = self.logical_name(entity.name)
        primary_keys = entity.primary_keys
        if not primary_keys:
            document.warnings.append(
                f"Entity '{entity.name}' has no primary key; a primary name column was synthesized"
            )
        elif len(primary_keys) > 1:
            document.warnings.append(
                f"Entity '{entity.name}' has several primary keys; '{primary_keys[0].name}' "
                "becomes the primary name column"
            )
        primary = primary_keys[0] if primary_keys else None

        definition = EntityDefinition(
            name=entity.name,
            logical_name=logical_name,
            schema_name=f"{self.prefix}_{to_schema_name(entity.name)}",
            display_name=entity.display_name or to_display_name(entity.name),
            primary_name_attribute=primary_name_attribute(
                self.prefix, primary.display_name if primary and primary.display_name else "Name"
            ),
        )

        seen = {f"{self.prefix}_{PRIMARY_NAME_COLUMN}"}
        for attr in entity.attributes:
            if attr is primary:
                continue

            reason = self._exclusion_reason(attr, implied_keys)
            if reason:
                document.excluded_columns.append(
                    {"entity": entity.name, "column": attr.name, "reason": reason}
                )
                continue

            if attr.is_lookup:
                if f"{self.prefix}_{attr.name.lower()}" in seen:
                    self._skip_duplicate_column(document, entity, attr)
                    continue
                try:
                    column = self._generate_lookup(entity, attr, resolver)
                except GenerationError as e:
                    document.errors.append(str(e))
                    continue
                seen.add(column.logical_name)
                document.additional_columns.append(column)
                realized_by_lookup.add((entity.name, attr.target_entity.lower()))
                continue

            column_name = attr.name
            if attr.name.lower() == PRIMARY_NAME_COLUMN:
                column_name = f"{entity.name.lower()}_name"
                document.warnings.append(
                    f"Column '{entity.name}.{attr.name}' renamed to '{column_name}' to avoid the "
                    "primary name column"
                )

            column_logical = f"{self.prefix}_{column_name.lower()}"
            if column_logical in seen:
                self._skip_duplicate_column(document, entity, attr)
                continue
            seen.add(column_logical)

            mapping = self.type_mapper.map_type(attr.type)
            if mapping.warning:
                document.warnings.append(f"{entity.name}.{attr.name}: {mapping.warning}")
            if mapping.platform_type in (PlatformType.LOOKUP, PlatformType.CHOICE):
                mapping_type = PlatformType.STRING
            else:
                mapping_type = mapping.platform_type
            definition.attributes.append(
                build_attribute(self.prefix, attr, mapping_type, column_name=column_name)
            )

        return definition

    @staticmethod
    def _exclusion_reason(attr: Attribute, implied_keys: Set[str]) -> Optional[str]:
        lowered = attr.name.lower()
        if attr.is_choice:
            return "choice columns are not created"
        if lowered == STATUS_COLUMN:
            return "the platform provides status columns"
        if lowered in SYSTEM_ATTRIBUTES:
            return "conflicts with a system column"
        if attr.is_foreign_key and not attr.is_lookup and lowered in implied_keys:
            return "realized as relationship lookup"
        return None

    @staticmethod
    def _skip_duplicate_column(document: MetadataDocument, entity: Entity, attr: Attribute) -> None:
        document.excluded_columns.append(
            {"entity": entity.name, "column": attr.name, "reason": "duplicate column"}
        )
        document.warnings.append(f"Duplicate column '{entity.name}.{attr.name}' skipped")

    def _generate_lookup(self, entity: Entity, attr: Attribute, resolver: Dict[str, str]) -> LookupColumn:
        target = attr.target_entity
        own_target = resolver.get(target) or self._resolve_case_insensitive(target, resolver)

        if attr.target_prefix:
            targets = [f"{attr.target_prefix}_{target.lower()}"]
            candidate = own_target or self.logical_name(target)
            if candidate not in targets:
                targets.append(candidate)
        elif own_target:
            targets = [own_target]
        else:
            raise GenerationError(
                f"Lookup '{entity.name}.{attr.name}' references unknown entity '{target}'",
                entity=entity.name,
            )

        column_metadata = lookup_attribute(
            self.prefix,
            column_name=attr.name,
            display_name=attr.display_name or attr.name,
            referenced=target,
            description=attr.description,
            required=attr.is_required,
        )
        return LookupColumn(
            entity_logical_name=self.logical_name(entity.name),
            logical_name=f"{self.prefix}_{attr.name.lower()}",
            targets=targets,
            column_metadata=column_metadata,
            source_entity=entity.name,
            source_attribute=attr.name,
        )

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    @staticmethod
    def _implied_foreign_keys(relationships: Sequence[Relationship]) -> Dict[str, Set[str]]:
        """Foreign key column names each referencing entity gets through a relationship."""
        implied: Dict[str, Set[str]] = {}
        for relationship in relationships:
            if relationship.cardinality == Cardinality.MANY_TO_MANY:
                continue
            referenced, referencing = relationship_sides(relationship)
            implied.setdefault(referencing, set()).add(expected_foreign_key(referenced))
        return implied

    @staticmethod
    def _resolve_case_insensitive(name: str, resolver: Dict[str, str]) -> Optional[str]:
        lowered = name.lower()
        for key, value in resolver.items():
            if key.lower() == lowered:
                return value
        return None

    def _generate_relationship(
        self,
        relationship: Relationship,
        entities: Sequence[Entity],
        resolver: Dict[str, str],
        realized_by_lookup: Set[Tuple[str, str]],
        used_attributes: Set[Tuple[str, str]],
        document: MetadataDocument,
    ) -> Optional[RelationshipDefinition]:
        key = relationship.key
        if relationship.cardinality == Cardinality.MANY_TO_MANY:
            raise GenerationError(
                f"Many-to-many relationship '{key}' must be resolved to a junction entity first",
                relationship=key,
            )

        referenced_name, referencing_name = relationship_sides(relationship)
        referenced = resolver.get(referenced_name)
        referencing = resolver.get(referencing_name)
        for name, logical in ((referenced_name, referenced), (referencing_name, referencing)):
            if logical is None:
                raise GenerationError(
                    f"Relationship '{key}' references unknown entity '{name}'", relationship=key
                )

        if (referencing_name, referenced_name.lower()) in realized_by_lookup:
            document.warnings.append(f"Relationship '{key}' is realized by an explicit lookup column")
            return None

        if relationship.cardinality == Cardinality.ONE_TO_ONE:
            document.warnings.append(f"One-to-one relationship '{key}' is created as one-to-many")

        ref_key = referenced_name.lower()
        attribute = f"{self.prefix}_{ref_key}id"
        suffix = ""
        if (referencing, attribute) in used_attributes:
            role = _role_name(relationship.name) or str(len(used_attributes))
            attribute = f"{self.prefix}_{role}_{ref_key}id"
            suffix = f"_{to_schema_name(role)}"
        used_attributes.add((referencing, attribute))

        display = next((e.display_name for e in entities if e.name == referenced_name), "") \
            or to_display_name(referenced_name)
        lookup = lookup_attribute(
            self.prefix,
            column_name=attribute[len(self.prefix) + 1:],
            display_name=f"{display} Reference",
            referenced=referenced_name,
        )
        lookup["SchemaName"] = attribute
        nav_role = attribute[len(self.prefix) + 1:-2]
        payload = _one_to_many_payload(
            schema_name=(
                f"{self.prefix}_{to_schema_name(referenced_name)}_{to_schema_name(referencing_name)}{suffix}"
            ),
            referenced=referenced,
            referencing=referencing,
            lookup=lookup,
            referenced_navigation=f"{self.prefix}_{referencing_name.lower()}_{nav_role}",
            referencing_navigation=f"{self.prefix}_{nav_role}",
        )
        return RelationshipDefinition(
            schema_name=payload["SchemaName"],
            referenced_entity=referenced,
            referencing_entity=referencing,
            referencing_attribute=attribute,
            payload=payload,
            source=key,
        )
