"""
Shared data models for the diagram compiler.

Usage:
    from shared.models import Entity, Relationship, ParseResult
    from shared.models.metadata_types import PlatformType
"""

from .erd_models import (
    Attribute,
    Cardinality,
    Entity,
    ParseResult,
    ParseWarning,
    Relationship,
)
from .metadata_types import (
    CDMPolicy,
    ComponentType,
    PlatformType,
)

__all__ = [
    # Diagram model
    "Attribute",
    "Cardinality",
    "Entity",
    "ParseResult",
    "ParseWarning",
    "Relationship",
    # Platform types
    "CDMPolicy",
    "ComponentType",
    "PlatformType",
]
