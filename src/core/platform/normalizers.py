"""
Response normalization for the Dataverse Web API.

Metadata responses come back with inconsistent casing depending on the
endpoint and the API version (``value`` vs ``Value``, ``solutionid`` vs
``SolutionId``, ``MetadataId`` vs ``metadataid``). Each function here adapts
one response type into a single canonical dataclass right after the client
receives it, so the rest of the code never inspects raw payloads.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

ENTITY_ID_PATTERN = re.compile(r'\(([0-9a-fA-F-]{36})\)')


@dataclass(frozen=True)
class EntityRef:
    logical_name: str
    metadata_id: Optional[str] = None
    schema_name: Optional[str] = None
    is_custom: bool = False


@dataclass(frozen=True)
class AttributeRef:
    logical_name: str
    metadata_id: Optional[str] = None
    attribute_type: Optional[str] = None


@dataclass(frozen=True)
class RelationshipRef:
    schema_name: str
    metadata_id: Optional[str] = None


@dataclass(frozen=True)
class PublisherRef:
    publisher_id: str
    unique_name: str
    friendly_name: Optional[str] = None
    prefix: Optional[str] = None


@dataclass(frozen=True)
class SolutionRef:
    solution_id: str
    unique_name: str
    friendly_name: Optional[str] = None
    publisher_id: Optional[str] = None


@dataclass(frozen=True)
class OptionSetRef:
    name: str
    metadata_id: Optional[str] = None
    options: List[int] = field(default_factory=list)


def _pick(payload: Dict[str, Any], *keys: str) -> Any:
    """First present key, compared case-insensitively."""
    if not payload:
        return None
    lowered = {k.lower(): v for k, v in payload.items()}
    for key in keys:
        if key in payload:
            return payload[key]
        value = lowered.get(key.lower())
        if value is not None:
            return value
    return None


def collection(payload: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rows of an OData collection response (``value``/``Value``)."""
    if not payload:
        return []
    rows = _pick(payload, 'value')
    if rows is None:
        return []
    return list(rows)


def _first_row(payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    rows = collection(payload)
    return rows[0] if rows else None


def normalize_entity(payload: Optional[Dict[str, Any]]) -> Optional[EntityRef]:
    """``EntityDefinitions(...)`` response."""
    if not payload:
        return None
    logical_name = _pick(payload, 'LogicalName')
    if not logical_name:
        return None
    return EntityRef(
        logical_name=logical_name,
        metadata_id=_pick(payload, 'MetadataId'),
        schema_name=_pick(payload, 'SchemaName'),
        is_custom=bool(_pick(payload, 'IsCustomEntity')),
    )


def normalize_attribute(payload: Optional[Dict[str, Any]]) -> Optional[AttributeRef]:
    if not payload:
        return None
    logical_name = _pick(payload, 'LogicalName')
    if not logical_name:
        return None
    return AttributeRef(
        logical_name=logical_name,
        metadata_id=_pick(payload, 'MetadataId'),
        attribute_type=_pick(payload, 'AttributeType'),
    )


def normalize_relationship(payload: Optional[Dict[str, Any]]) -> Optional[RelationshipRef]:
    """Either a single relationship or a filtered ``RelationshipDefinitions`` collection."""
    if not payload:
        return None
    row = _first_row(payload) if _pick(payload, 'value') is not None else payload
    if not row:
        return None
    schema_name = _pick(row, 'SchemaName')
    if not schema_name:
        return None
    return RelationshipRef(schema_name=schema_name, metadata_id=_pick(row, 'MetadataId'))


def normalize_publisher(payload: Optional[Dict[str, Any]]) -> Optional[PublisherRef]:
    """A publisher row, or the first row of a ``publishers`` query."""
    if not payload:
        return None
    row = _first_row(payload) if _pick(payload, 'value') is not None else payload
    if not row:
        return None
    publisher_id = _pick(row, 'publisherid', 'PublisherId')
    if not publisher_id:
        return None
    return PublisherRef(
        publisher_id=publisher_id,
        unique_name=_pick(row, 'uniquename', 'UniqueName'),
        friendly_name=_pick(row, 'friendlyname', 'FriendlyName'),
        prefix=_pick(row, 'customizationprefix', 'CustomizationPrefix'),
    )


def normalize_solution(payload: Optional[Dict[str, Any]]) -> Optional[SolutionRef]:
    """A solution row, or the first row of a ``solutions`` query."""
    if not payload:
        return None
    row = _first_row(payload) if _pick(payload, 'value') is not None else payload
    if not row:
        return None
    solution_id = _pick(row, 'solutionid', 'SolutionId')
    if not solution_id:
        return None
    publisher_id = _pick(row, '_publisherid_value')
    if not publisher_id:
        expanded = _pick(row, 'publisherid')
        if isinstance(expanded, dict):
            publisher_id = _pick(expanded, 'publisherid')
    return SolutionRef(
        solution_id=solution_id,
        unique_name=_pick(row, 'uniquename', 'UniqueName'),
        friendly_name=_pick(row, 'friendlyname', 'FriendlyName'),
        publisher_id=publisher_id,
    )


def normalize_option_set(payload: Optional[Dict[str, Any]]) -> Optional[OptionSetRef]:
    """``GlobalOptionSetDefinitions(...)`` response."""
    if not payload:
        return None
    name = _pick(payload, 'Name')
    if not name:
        return None
    options: Iterable[Dict[str, Any]] = _pick(payload, 'Options') or []
    return OptionSetRef(
        name=name,
        metadata_id=_pick(payload, 'MetadataId'),
        options=[_pick(o, 'Value') for o in options if _pick(o, 'Value') is not None],
    )


def parse_entity_id_header(headers: Optional[Dict[str, str]]) -> Optional[str]:
    """GUID from the ``OData-EntityId`` header of a 204 create response."""
    if not headers:
        return None
    value = None
    for key, header_value in headers.items():
        if key.lower() == 'odata-entityid':
            value = header_value
            break
    if not value:
        return None
    match = ENTITY_ID_PATTERN.search(value)
    return match.group(1) if match else None


__all__ = [
    'AttributeRef',
    'EntityRef',
    'OptionSetRef',
    'PublisherRef',
    'RelationshipRef',
    'SolutionRef',
    'collection',
    'normalize_attribute',
    'normalize_entity',
    'normalize_option_set',
    'normalize_publisher',
    'normalize_relationship',
    'normalize_solution',
    'parse_entity_id_header',
]
