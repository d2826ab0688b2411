"""
CDM (Common Data Model) Detection Module

Detects which diagram entities correspond to standard platform tables so the
deployment can reuse them instead of creating custom copies.

Key Components:
- cdm_catalog: Static snapshot of standard tables (names, aliases, key attributes)
- cdm_matcher: Exact / alias / fuzzy matching with confidence scores

Usage:
    from formats.cdm import CDMMatcher

    detection = CDMMatcher().detect(parse_result.entities)
    print(detection.summary)
"""

from .cdm_catalog import (
    CDMCatalog,
    CDMCatalogEntity,
    DEFAULT_CATALOG_PATH,
)

from .cdm_matcher import (
    CDMDetectionResult,
    CDMMatch,
    CDMMatcher,
    MatchType,
    STANDARD_RELATIONSHIPS,
    levenshtein,
    normalize_name,
)

__all__ = [
    # Catalog
    "CDMCatalog",
    "CDMCatalogEntity",
    "DEFAULT_CATALOG_PATH",
    # Matching
    "CDMDetectionResult",
    "CDMMatch",
    "CDMMatcher",
    "MatchType",
    "STANDARD_RELATIONSHIPS",
    "levenshtein",
    "normalize_name",
]
