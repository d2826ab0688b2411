"""
Mermaid ERD Format Module

Parses Mermaid ``erDiagram`` text into the entity/relationship model,
validates it and applies textual auto-fixes.

Key Components:
- mermaid_parser: Diagram text to ParseResult (and back via serialize)
- mermaid_type_mapper: Diagram types to platform attribute types
- mermaid_validator: Structural validation with stable issue ids
- mermaid_autofix: Textual corrections for auto-fixable issues

Usage:
    from formats.mermaid import MermaidParser, MermaidValidator, autofix_all

    result = MermaidParser().parse(text)
    validation = MermaidValidator().validate(result)
    if not validation.is_valid:
        fixed = autofix_all(text)
"""

from .mermaid_parser import (
    CARDINALITY_TOKENS,
    MermaidParser,
    serialize,
    to_display_name,
)

from .mermaid_type_mapper import (
    MERMAID_TYPE_MAPPINGS,
    MermaidTypeMapper,
    TypeMappingResult,
    map_type,
)

from .mermaid_validator import MermaidValidator

from .mermaid_autofix import (
    AutoFixError,
    AutoFixResult,
    autofix,
    autofix_all,
)

__all__ = [
    # Parser
    "CARDINALITY_TOKENS",
    "MermaidParser",
    "serialize",
    "to_display_name",
    # Types
    "MERMAID_TYPE_MAPPINGS",
    "MermaidTypeMapper",
    "TypeMappingResult",
    "map_type",
    # Validation
    "MermaidValidator",
    "AutoFixError",
    "AutoFixResult",
    "autofix",
    "autofix_all",
]
