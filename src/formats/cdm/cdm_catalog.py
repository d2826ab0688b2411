"""
CDM Catalog.

Static snapshot of the standard (Common Data Model) tables the platform ships
with. The matcher compares parsed diagram entities against this catalog; the
schema generator resolves relationship endpoints of matched entities to the
catalog's logical names.

The default snapshot lives next to this module in ``cdm_catalog.json``.

Usage:
    from formats.cdm.cdm_catalog import CDMCatalog

    catalog = CDMCatalog.load()
    account = catalog.get("account")
    print(account.key_attributes)
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("cdm_catalog.json")


@dataclass(frozen=True)
class CDMCatalogEntity:
    """
    A standard table in the catalog.

    Attributes:
        logical_name: Platform logical name (``account``).
        display_name: Label shown to users (``Account``).
        description: Short description.
        category: ``sales``, ``service``, ``marketing`` or ``activity``.
        primary_key: Identity attribute logical name.
        primary_name_attribute: Primary name column logical name.
        key_attributes: Attributes used for fuzzy matching.
        aliases: Alternative names users commonly give this table.
    """
    logical_name: str
    display_name: str
    description: str = ""
    category: str = "general"
    primary_key: Optional[str] = None
    primary_name_attribute: Optional[str] = None
    key_attributes: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CDMCatalogEntity":
        logical_name = data.get("logicalName")
        if not logical_name:
            raise ValueError(f"CDM catalog entry without logicalName: {data}")
        return cls(
            logical_name=logical_name,
            display_name=data.get("displayName", logical_name),
            description=data.get("description", ""),
            category=data.get("category", "general"),
            primary_key=data.get("primaryKey") or f"{logical_name}id",
            primary_name_attribute=data.get("primaryNameAttribute"),
            key_attributes=tuple(data.get("keyAttributes", [])),
            aliases=tuple(data.get("commonAliases", data.get("aliases", []))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logicalName": self.logical_name,
            "displayName": self.display_name,
            "description": self.description,
            "category": self.category,
            "primaryKey": self.primary_key,
            "primaryNameAttribute": self.primary_name_attribute,
            "keyAttributes": list(self.key_attributes),
            "commonAliases": list(self.aliases),
        }


@dataclass
class CDMCatalog:
    """Ordered collection of catalog entities."""
    entities: List[CDMCatalogEntity] = field(default_factory=list)
    version: str = "unversioned"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CDMCatalog":
        """
        Build a catalog from its JSON shape.

        Accepts either ``{"cdmEntities": {key: entry}}`` or a plain list of entries.
        """
        raw = data.get("cdmEntities", data) if isinstance(data, dict) else data
        entries = raw.values() if isinstance(raw, dict) else raw
        version = data.get("metadata", {}).get("version", "unversioned") if isinstance(data, dict) else "unversioned"
        return cls(entities=[CDMCatalogEntity.from_dict(e) for e in entries], version=version)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "CDMCatalog":
        """Load a catalog snapshot (the packaged one by default)."""
        catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
        try:
            with open(catalog_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise FileNotFoundError(f"CDM catalog not found: {catalog_path}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in CDM catalog {catalog_path}: {e}")

        catalog = cls.from_dict(data)
        logger.debug(f"Loaded {len(catalog.entities)} CDM entities from {catalog_path}")
        return catalog

    def __iter__(self) -> Iterator[CDMCatalogEntity]:
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)

    def get(self, logical_name: str) -> Optional[CDMCatalogEntity]:
        lowered = logical_name.lower()
        for entity in self.entities:
            if entity.logical_name == lowered:
                return entity
        return None

    def by_category(self, category: str) -> List[CDMCatalogEntity]:
        return [e for e in self.entities if e.category == category]

    def search(self, term: str, category: Optional[str] = None) -> List[CDMCatalogEntity]:
        """Case-insensitive search over names, description and aliases."""
        needle = term.lower()
        found = []
        for entity in self.entities:
            if category and entity.category != category:
                continue
            haystack = [entity.logical_name, entity.display_name, entity.description, *entity.aliases]
            if any(needle in value.lower() for value in haystack):
                found.append(entity)
        return found
