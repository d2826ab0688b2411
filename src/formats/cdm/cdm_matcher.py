"""
CDM Matcher.

Decides, for each parsed diagram entity, whether it corresponds to a standard
table in the CDM catalog.

Matching policy, first hit wins per entity:
1. exact - normalized name equals a normalized logical or display name (0.95)
2. alias - normalized name equals a normalized alias (0.85)
3. fuzzy - 0.4 * name similarity + 0.6 * attribute overlap, accepted above 0.7;
   the best-scoring catalog entry wins

Matching is stateless: the same entities and catalog snapshot always give
the same result.

Usage:
    from formats.cdm.cdm_matcher import CDMMatcher

    detection = CDMMatcher().detect(parse_result.entities)
    for match in detection.matches:
        print(match.original_entity, "->", match.cdm_entity.logical_name, match.confidence)
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from shared.models.erd_models import Entity

from .cdm_catalog import CDMCatalog, CDMCatalogEntity

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 0.95
ALIAS_CONFIDENCE = 0.85
FUZZY_THRESHOLD = 0.7
NAME_WEIGHT = 0.4
ATTRIBUTE_WEIGHT = 0.6
ATTRIBUTE_MAX_DISTANCE = 2

# Standard relationships between catalog tables (referenced -> referencing)
STANDARD_RELATIONSHIPS = (
    ("account", "contact", "Account has many Contacts"),
    ("account", "opportunity", "Account has many Opportunities"),
    ("contact", "opportunity", "Contact has many Opportunities"),
    ("opportunity", "quote", "Opportunity has many Quotes"),
    ("quote", "salesorder", "Quote becomes Orders"),
    ("salesorder", "invoice", "Order has many Invoices"),
)


class MatchType(str, Enum):
    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"


def normalize_name(name: str) -> str:
    """Lower-case, trim, drop one trailing ``s`` and every non-alphanumeric."""
    lowered = (name or "").lower().strip()
    if lowered.endswith("s"):
        lowered = lowered[:-1]
    return re.sub(r'[^a-z0-9]', '', lowered)


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


@dataclass(frozen=True)
class CDMMatch:
    """
    A decision that a diagram entity is a standard table.

    ``original_entity`` holds the diagram entity name only, never the
    entity object.
    """
    original_entity: str
    cdm_entity: CDMCatalogEntity
    match_type: MatchType
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalEntity": self.original_entity,
            "cdmEntity": self.cdm_entity.logical_name,
            "cdmDisplayName": self.cdm_entity.display_name,
            "matchType": self.match_type.value,
            "confidence": round(self.confidence, 4),
        }


@dataclass
class CDMDetectionResult:
    """Output of one detection run."""
    matches: List[CDMMatch] = field(default_factory=list)
    unmatched: List[Entity] = field(default_factory=list)
    recommendations: List[Dict[str, str]] = field(default_factory=list)
    suggested_relationships: List[Dict[str, str]] = field(default_factory=list)

    @property
    def confidence_level(self) -> str:
        """``high``, ``medium``, ``low`` or ``none`` from the average confidence."""
        if not self.matches:
            return "none"
        average = sum(m.confidence for m in self.matches) / len(self.matches)
        if average >= 0.9:
            return "high"
        if average >= 0.7:
            return "medium"
        return "low"

    def get_match(self, entity_name: str) -> Optional[CDMMatch]:
        for match in self.matches:
            if match.original_entity == entity_name:
                return match
        return None

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            "totalEntities": len(self.matches) + len(self.unmatched),
            "cdmMatches": len(self.matches),
            "customEntities": len(self.unmatched),
            "confidenceLevel": self.confidence_level,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches": [m.to_dict() for m in self.matches],
            "unmatched": [e.name for e in self.unmatched],
            "summary": self.summary,
            "recommendations": list(self.recommendations),
            "suggestedRelationships": list(self.suggested_relationships),
        }


class CDMMatcher:
    """
    Match diagram entities against a CDM catalog.

    Example:
        >>> matcher = CDMMatcher()
        >>> result = matcher.detect([Entity(name="Contacts")])
        >>> result.matches[0].match_type
        <MatchType.EXACT: 'exact'>
    """

    def __init__(self, catalog: Optional[CDMCatalog] = None):
        self.catalog = catalog if catalog is not None else CDMCatalog.load()

    def detect(self, entities: Sequence[Entity]) -> CDMDetectionResult:
        """
        Run matching for every entity.

        Args:
            entities: Parsed entities.

        Returns:
            CDMDetectionResult with matches, unmatched entities and hints.
        """
        result = CDMDetectionResult()
        for entity in entities:
            match = self.match_entity(entity)
            if match:
                logger.info(
                    f"Entity '{entity.name}' matches CDM '{match.cdm_entity.logical_name}' "
                    f"({match.match_type.value}, {match.confidence:.2f})"
                )
                result.matches.append(match)
            else:
                result.unmatched.append(entity)

        result.recommendations = self._recommendations(result.matches)
        result.suggested_relationships = self._suggested_relationships(result.matches)
        return result

    def match_entity(self, entity: Entity) -> Optional[CDMMatch]:
        """Return the winning match for one entity, or None."""
        normalized = normalize_name(entity.name)
        if not normalized:
            return None

        for cdm in self.catalog:
            if normalized in (normalize_name(cdm.logical_name), normalize_name(cdm.display_name)):
                return CDMMatch(entity.name, cdm, MatchType.EXACT, EXACT_CONFIDENCE)

        for cdm in self.catalog:
            if any(normalize_name(alias) == normalized for alias in cdm.aliases):
                return CDMMatch(entity.name, cdm, MatchType.ALIAS, ALIAS_CONFIDENCE)

        best: Optional[CDMCatalogEntity] = None
        best_score = 0.0
        for cdm in self.catalog:
            score = self.fuzzy_score(entity, cdm)
            if score > best_score:
                best, best_score = cdm, score

        if best is not None and best_score > FUZZY_THRESHOLD:
            return CDMMatch(entity.name, best, MatchType.FUZZY, best_score)
        return None

    @staticmethod
    def fuzzy_score(entity: Entity, cdm: CDMCatalogEntity) -> float:
        """Weighted name similarity plus attribute overlap, capped at 1.0."""
        normalized = normalize_name(entity.name)
        cdm_name = normalize_name(cdm.logical_name)
        max_length = max(len(normalized), len(cdm_name)) or 1
        name_similarity = 1 - levenshtein(normalized, cdm_name) / max_length
        score = name_similarity * NAME_WEIGHT

        if entity.attributes and cdm.key_attributes:
            matches = count_attribute_matches([a.name for a in entity.attributes], cdm.key_attributes)
            overlap = matches / max(len(entity.attributes), len(cdm.key_attributes))
            score += overlap * ATTRIBUTE_WEIGHT

        return min(score, 1.0)

    @staticmethod
    def _recommendations(matches: List[CDMMatch]) -> List[Dict[str, str]]:
        names = {m.cdm_entity.logical_name for m in matches}
        recommendations = []
        if len(matches) > 1 and {"account", "contact"} <= names:
            recommendations.append({
                "type": "relationship",
                "title": "Leverage Account-Contact Relationship",
                "description": "Standard Account and Contact tables already have built-in relationships",
            })
        if len(matches) > 1 and "opportunity" in names and names & {"account", "contact"}:
            recommendations.append({
                "type": "workflow",
                "title": "Sales Process Integration",
                "description": "Consider adding Quote and Order tables to complete the sales process",
            })
        return recommendations

    @staticmethod
    def _suggested_relationships(matches: List[CDMMatch]) -> List[Dict[str, str]]:
        names = {m.cdm_entity.logical_name for m in matches}
        return [
            {"from": referenced, "to": referencing, "description": description}
            for referenced, referencing, description in STANDARD_RELATIONSHIPS
            if referenced in names and referencing in names
        ]


def count_attribute_matches(attribute_names: Sequence[str], key_attributes: Sequence[str]) -> int:
    """Count attributes equal to, or within edit distance 2 of, some key attribute."""
    normalized_keys = [normalize_name(k) for k in key_attributes]
    matches = 0
    for name in attribute_names:
        normalized = normalize_name(name)
        if not normalized:
            continue
        for key in normalized_keys:
            if normalized == key or levenshtein(normalized, key) <= ATTRIBUTE_MAX_DISTANCE:
                matches += 1
                break
    return matches
