"""
Attribute metadata builders.

Turns one diagram attribute plus its mapped platform type into the attribute
payload accepted by ``POST EntityDefinitions(...)/Attributes``. Column formats
and ranges are inferred from the column name (``email`` -> Email format,
``price`` -> Money, ``birth_date`` -> DateOnly ...).
"""

import re
from typing import Any, Dict, Optional

from shared.models.erd_models import Attribute
from shared.models.metadata_types import LANGUAGE_CODE, ODATA_LOOKUP, PlatformType

INT32_MIN = -2147483648
INT32_MAX = 2147483647
MONEY_LIMIT = 922337203685477
DECIMAL_LIMIT = 100000000000

_EMAIL = re.compile(r'email|e_mail|emailaddress', re.IGNORECASE)
_PHONE = re.compile(r'phone|telephone|mobile|cell', re.IGNORECASE)
_URL = re.compile(r'url|website|link|uri', re.IGNORECASE)
_TICKER = re.compile(r'ticker|symbol', re.IGNORECASE)
_TEXT_AREA = re.compile(r'text_area|textarea|description|notes|comments', re.IGNORECASE)
_LANGUAGE = re.compile(r'language_code|languagecode|locale', re.IGNORECASE)
_DURATION = re.compile(r'duration|elapsed|time_span', re.IGNORECASE)
_TIME_ZONE = re.compile(r'time_zone|timezone|utc_offset', re.IGNORECASE)
_CURRENCY = re.compile(r'currency|price|amount|cost|fee|salary|wage|money', re.IGNORECASE)
_DATE_ONLY = re.compile(r'date_only|dateonly|birth_date|start_date|end_date', re.IGNORECASE)

# (pattern, format name, max length), first match wins
STRING_FORMATS = (
    (_EMAIL, "Email", 100),
    (_PHONE, "Phone", 50),
    (_URL, "Url", 200),
    (_TICKER, "TickerSymbol", 10),
    (_TEXT_AREA, "TextArea", 2000),
)


def label(text: str) -> Dict[str, Any]:
    """Localized label in the generation language."""
    return {"LocalizedLabels": [{"Label": text, "LanguageCode": LANGUAGE_CODE}]}


def to_schema_name(name: str) -> str:
    """``order_line`` -> ``OrderLine``, ``customer`` -> ``Customer``."""
    camel = re.sub(r'_([a-z0-9])', lambda m: m.group(1).upper(), name)
    return camel[:1].upper() + camel[1:]


def primary_name_attribute(prefix: str, display_name: str = "Name") -> Dict[str, Any]:
    """The string primary name column every generated table carries."""
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
        "LogicalName": f"{prefix}_name",
        "SchemaName": f"{prefix}_Name",
        "AttributeType": "String",
        "AttributeTypeName": {"Value": "StringType"},
        "DisplayName": label(display_name),
        "Description": label("Primary name field"),
        "RequiredLevel": {
            "Value": "None",
            "CanBeChanged": True,
            "ManagedPropertyLogicalName": "canmodifyrequirementlevelsettings",
        },
        "MaxLength": 100,
        "IsPrimaryName": True,
        "FormatName": {"Value": "Text"},
    }


def build_attribute(
    prefix: str,
    attr: Attribute,
    platform_type: PlatformType,
    column_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the payload of a regular (non-key, non-lookup) column.

    Args:
        prefix: Publisher prefix.
        attr: Diagram attribute.
        platform_type: Mapped platform type.
        column_name: Overrides ``attr.name`` (used when a column is renamed).
    """
    name = column_name or attr.name
    display = attr.display_name or name
    metadata: Dict[str, Any] = {
        "LogicalName": f"{prefix}_{name.lower()}",
        "SchemaName": f"{prefix}_{to_schema_name(name)}",
        "DisplayName": label(display),
        "Description": label(attr.description or f"{display} field"),
        "RequiredLevel": {"Value": "ApplicationRequired" if attr.is_required else "None"},
    }

    if platform_type == PlatformType.STRING:
        metadata.update(_string_metadata(name))
    elif platform_type == PlatformType.INT32:
        metadata.update(_integer_metadata(name))
    elif platform_type == PlatformType.DECIMAL:
        metadata.update(_decimal_metadata(name))
    elif platform_type == PlatformType.DOUBLE:
        metadata.update({
            "@odata.type": "Microsoft.Dynamics.CRM.DoubleAttributeMetadata",
            "AttributeType": "Double",
            "AttributeTypeName": {"Value": "DoubleType"},
            "Precision": 5,
        })
    elif platform_type == PlatformType.BOOLEAN:
        metadata.update({
            "@odata.type": "Microsoft.Dynamics.CRM.BooleanAttributeMetadata",
            "AttributeType": "Boolean",
            "AttributeTypeName": {"Value": "BooleanType"},
            "OptionSet": {
                "TrueOption": {"Value": 1, "Label": label("Yes")},
                "FalseOption": {"Value": 0, "Label": label("No")},
            },
        })
    elif platform_type == PlatformType.DATETIME:
        metadata.update({
            "@odata.type": "Microsoft.Dynamics.CRM.DateTimeAttributeMetadata",
            "AttributeType": "DateTime",
            "AttributeTypeName": {"Value": "DateTimeType"},
            "Format": "DateOnly" if _DATE_ONLY.search(name) else "DateAndTime",
            "DateTimeBehavior": {"Value": "UserLocal"},
        })
    elif platform_type == PlatformType.GUID:
        metadata.update({
            "@odata.type": "Microsoft.Dynamics.CRM.UniqueIdentifierAttributeMetadata",
            "AttributeType": "Uniqueidentifier",
            "AttributeTypeName": {"Value": "UniqueidentifierType"},
        })
    else:
        raise ValueError(f"No column payload for platform type {platform_type.value}")

    return metadata


def lookup_attribute(
    prefix: str,
    column_name: str,
    display_name: str,
    referenced: str,
    description: Optional[str] = None,
    required: bool = False,
) -> Dict[str, Any]:
    """Lookup column carried inside a one-to-many relationship payload."""
    return {
        "@odata.type": ODATA_LOOKUP,
        "AttributeType": "Lookup",
        "AttributeTypeName": {"Value": "LookupType"},
        "SchemaName": f"{prefix}_{to_schema_name(column_name)}",
        "DisplayName": label(display_name),
        "Description": label(description or f"Reference to {referenced}"),
        "RequiredLevel": {"Value": "ApplicationRequired" if required else "None"},
    }


def _string_metadata(name: str) -> Dict[str, Any]:
    format_name, max_length = "Text", 100
    for pattern, fmt, length in STRING_FORMATS:
        if pattern.search(name):
            format_name, max_length = fmt, length
            break
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
        "AttributeType": "String",
        "AttributeTypeName": {"Value": "StringType"},
        "FormatName": {"Value": format_name},
        "MaxLength": max_length,
    }


def _integer_metadata(name: str) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "@odata.type": "Microsoft.Dynamics.CRM.IntegerAttributeMetadata",
        "AttributeType": "Integer",
        "AttributeTypeName": {"Value": "IntegerType"},
        "MinValue": INT32_MIN,
        "MaxValue": INT32_MAX,
    }
    if _LANGUAGE.search(name):
        metadata.update({"MinValue": 1025, "MaxValue": 1164, "Format": "Language"})
    elif _DURATION.search(name):
        metadata.update({"MinValue": 0, "MaxValue": INT32_MAX})
    elif _TIME_ZONE.search(name):
        metadata.update({
            "AttributeTypeName": {"Value": "TimeZoneType"},
            "Format": "TimeZone",
            "MinValue": -1500,
            "MaxValue": 1500,
        })
    return metadata


def _decimal_metadata(name: str) -> Dict[str, Any]:
    if _CURRENCY.search(name):
        return {
            "@odata.type": "Microsoft.Dynamics.CRM.MoneyAttributeMetadata",
            "AttributeType": "Money",
            "AttributeTypeName": {"Value": "MoneyType"},
            "MinValue": -MONEY_LIMIT,
            "MaxValue": MONEY_LIMIT,
            "Precision": 4,
            "PrecisionSource": 2,
        }
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.DecimalAttributeMetadata",
        "AttributeType": "Decimal",
        "AttributeTypeName": {"Value": "DecimalType"},
        "MinValue": -DECIMAL_LIMIT,
        "MaxValue": DECIMAL_LIMIT,
        "Precision": 2,
    }
