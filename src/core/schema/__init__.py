"""
Schema generation: diagram model to platform metadata document.

Usage:
    from core.schema import SchemaGenerator, MetadataDocument
"""

from .global_choice import ChoiceOption, GlobalChoice
from .schema_generator import (
    EntityDefinition,
    GenerationError,
    LookupColumn,
    MetadataDocument,
    RelationshipDefinition,
    SchemaGenerator,
)

__all__ = [
    "ChoiceOption",
    "EntityDefinition",
    "GenerationError",
    "GlobalChoice",
    "LookupColumn",
    "MetadataDocument",
    "RelationshipDefinition",
    "SchemaGenerator",
]
