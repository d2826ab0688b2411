"""
Centralized test fixtures for the Mermaid ERD deployer test suite.

This package provides reusable fixtures for testing, including:
- Mermaid ER diagram content
- Configuration fixtures
- An in-memory metadata client

Usage:
    from fixtures import SIMPLE_ERD, SAMPLE_DATAVERSE_CONFIG

Or use the pytest fixtures in conftest.py which import from here.
"""

from .mermaid_fixtures import (
    SIMPLE_ERD,
    COMPACT_ERD,
    TYPED_ERD,
    EVENT_ERD,
    STATUS_ERD,
    BROKEN_ERD,
    MANY_TO_MANY_ERD,
    DUPLICATE_RELATIONSHIP_ERD,
    MISSING_ENTITY_ERD,
    LOOKUP_ERD,
    CDM_ERD,
    NOISY_ERD,
)

from .fake_client import FakeMetadataClient

from .config_fixtures import (
    SAMPLE_ENVIRONMENT_URL,
    SAMPLE_DATAVERSE_CONFIG,
    MINIMAL_DATAVERSE_CONFIG,
)

__all__ = [
    # Diagrams
    'SIMPLE_ERD',
    'COMPACT_ERD',
    'TYPED_ERD',
    'EVENT_ERD',
    'STATUS_ERD',
    'BROKEN_ERD',
    'MANY_TO_MANY_ERD',
    'DUPLICATE_RELATIONSHIP_ERD',
    'MISSING_ENTITY_ERD',
    'LOOKUP_ERD',
    'CDM_ERD',
    'NOISY_ERD',
    # Fakes
    'FakeMetadataClient',
    # Config
    'SAMPLE_ENVIRONMENT_URL',
    'SAMPLE_DATAVERSE_CONFIG',
    'MINIMAL_DATAVERSE_CONFIG',
]
