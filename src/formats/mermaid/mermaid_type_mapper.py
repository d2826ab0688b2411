"""
Mermaid Type Mapper.

Maps diagram-level attribute types to platform attribute types.

The core table is fixed:
- string -> Edm.String
- int / integer -> Edm.Int32
- decimal -> Edm.Decimal
- boolean -> Edm.Boolean
- datetime -> Edm.DateTimeOffset
- guid -> Edm.Guid

Common spellings (``text``, ``bool``, ``date``, ``uuid`` ...) are accepted as
aliases. Unknown types fail closed: they map to String and carry a warning
instead of aborting generation.

Usage:
    from formats.mermaid.mermaid_type_mapper import MermaidTypeMapper

    mapper = MermaidTypeMapper()
    result = mapper.map_type("int")
    print(result.platform_type)  # PlatformType.INT32
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from shared.models.metadata_types import PlatformType

logger = logging.getLogger(__name__)


# =============================================================================
# Type Mappings
# =============================================================================

MERMAID_TYPE_MAPPINGS: Dict[str, PlatformType] = {
    # String types
    "string": PlatformType.STRING,
    "text": PlatformType.STRING,
    "varchar": PlatformType.STRING,
    "char": PlatformType.STRING,
    "nvarchar": PlatformType.STRING,

    # Integer types
    "int": PlatformType.INT32,
    "integer": PlatformType.INT32,
    "int32": PlatformType.INT32,
    "smallint": PlatformType.INT32,

    # Decimal types
    "decimal": PlatformType.DECIMAL,
    "numeric": PlatformType.DECIMAL,
    "money": PlatformType.DECIMAL,
    "currency": PlatformType.DECIMAL,

    # Floating point types
    "float": PlatformType.DOUBLE,
    "double": PlatformType.DOUBLE,

    # Boolean types
    "boolean": PlatformType.BOOLEAN,
    "bool": PlatformType.BOOLEAN,
    "bit": PlatformType.BOOLEAN,

    # Date/time types
    "datetime": PlatformType.DATETIME,
    "date": PlatformType.DATETIME,
    "timestamp": PlatformType.DATETIME,
    "datetimeoffset": PlatformType.DATETIME,

    # GUID types
    "guid": PlatformType.GUID,
    "uuid": PlatformType.GUID,
    "uniqueidentifier": PlatformType.GUID,

    # Relationship and option set types
    "lookup": PlatformType.LOOKUP,
    "choice": PlatformType.CHOICE,
}

DEFAULT_PLATFORM_TYPE = PlatformType.STRING


@dataclass
class TypeMappingResult:
    """
    Result of mapping a diagram type.

    Attributes:
        platform_type: The mapped platform type.
        original_type: The diagram type as written.
        is_exact_match: False when the fallback was used.
        warning: Why the mapping was approximate, if it was.
    """
    platform_type: PlatformType
    original_type: str
    is_exact_match: bool = True
    warning: Optional[str] = None


class MermaidTypeMapper:
    """
    Maps diagram types to platform attribute types.

    Example:
        >>> MermaidTypeMapper().map_type("datetime").platform_type
        <PlatformType.DATETIME: 'Edm.DateTimeOffset'>
        >>> MermaidTypeMapper().map_type("blob").warning is not None
        True
    """

    def __init__(self, strict_mode: bool = False):
        """
        Initialize the type mapper.

        Args:
            strict_mode: If True, raise ValueError for unknown types
                instead of defaulting to String.
        """
        self.strict_mode = strict_mode
        self._mappings = MERMAID_TYPE_MAPPINGS.copy()

    def map_type(self, diagram_type: str) -> TypeMappingResult:
        """
        Map a diagram type to a platform type.

        Args:
            diagram_type: Type as written in the diagram (case-insensitive).

        Returns:
            TypeMappingResult with the mapped type and any warning.

        Raises:
            ValueError: In strict mode when the type is unknown.
        """
        key = (diagram_type or "").strip().lower()
        if "(" in key:
            key = key.split("(", 1)[0]

        platform_type = self._mappings.get(key)
        if platform_type is not None:
            return TypeMappingResult(platform_type=platform_type, original_type=diagram_type)

        if self.strict_mode:
            raise ValueError(f"Unknown diagram type: '{diagram_type}'")

        warning = f"Unknown type '{diagram_type}' mapped to {DEFAULT_PLATFORM_TYPE.short_name}"
        logger.warning(warning)
        return TypeMappingResult(
            platform_type=DEFAULT_PLATFORM_TYPE,
            original_type=diagram_type,
            is_exact_match=False,
            warning=warning,
        )

    def register_type(self, diagram_type: str, platform_type: PlatformType) -> None:
        """Add or override a mapping."""
        self._mappings[diagram_type.lower()] = platform_type

    def is_supported_type(self, diagram_type: str) -> bool:
        return (diagram_type or "").strip().lower().split("(", 1)[0] in self._mappings

    def get_supported_types(self) -> List[str]:
        return sorted(self._mappings)


def map_type(diagram_type: str) -> PlatformType:
    """Map a diagram type using the default table."""
    return MermaidTypeMapper().map_type(diagram_type).platform_type
