"""
Platform metadata types.

Attribute types and component codes understood by the Dataverse metadata
Web API. These values go straight into generated payloads.

Reference:
    https://learn.microsoft.com/en-us/power-apps/developer/data-platform/webapi/reference/attributetypecode
"""

from enum import Enum, IntEnum
from typing import Final


class PlatformType(Enum):
    """
    Platform attribute types.

    Values use the Edm names the schema generator switches on.
    """
    STRING = "Edm.String"
    INT32 = "Edm.Int32"
    DECIMAL = "Edm.Decimal"
    DOUBLE = "Edm.Double"
    BOOLEAN = "Edm.Boolean"
    DATETIME = "Edm.DateTimeOffset"
    GUID = "Edm.Guid"
    LOOKUP = "Lookup"
    CHOICE = "Picklist"

    @property
    def short_name(self) -> str:
        """Name without the ``Edm.`` namespace."""
        return self.value.split(".", 1)[-1]


class ComponentType(IntEnum):
    """Solution component type codes used by AddSolutionComponent."""
    ENTITY = 1
    ATTRIBUTE = 2
    OPTION_SET = 9
    RELATIONSHIP = 10


LANGUAGE_CODE: Final[int] = 1033
"""Label language (English) for all generated localized labels."""

ODATA_ENTITY: Final[str] = "Microsoft.Dynamics.CRM.EntityMetadata"
ODATA_ONE_TO_MANY: Final[str] = "Microsoft.Dynamics.CRM.OneToManyRelationshipMetadata"
ODATA_LOOKUP: Final[str] = "Microsoft.Dynamics.CRM.LookupAttributeMetadata"
ODATA_OPTION_SET: Final[str] = "Microsoft.Dynamics.CRM.OptionSetMetadata"


class CDMPolicy(str, Enum):
    """How entities matched to standard tables are deployed."""
    USE_CDM = "use_cdm"
    CREATE_CUSTOM = "create_custom"
