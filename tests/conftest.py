"""
Pytest configuration and fixtures for the test suite.

Defines markers for selective test execution:
    pytest -m unit          # Fast unit tests
    pytest -m integration   # Integration tests
    pytest -m resilience    # Retries, partial failure, cancellation

Fixtures are centralized in tests/fixtures/ for reuse across all test modules.
"""

import pytest
import json
import sys
import os
import time
from unittest.mock import Mock

# IMPORTANT: Patch tenacity's sleep function BEFORE any other imports
# This must happen before tenacity.Retrying class is defined (which captures defaults)
import tenacity.nap
tenacity.nap.sleep = lambda seconds: None

# Add src to path for imports
src_dir = os.path.join(os.path.dirname(__file__), '..', 'src')
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)

# Add tests directory to path for fixtures import
tests_dir = os.path.dirname(__file__)
if tests_dir not in sys.path:
    # Ensure src directory stays ahead of tests for module resolution
    sys.path.insert(1, tests_dir)

# Import centralized fixtures
from fixtures import (
    # Diagrams
    SIMPLE_ERD,
    EVENT_ERD,
    BROKEN_ERD,
    MANY_TO_MANY_ERD,

    # Config fixtures
    SAMPLE_DATAVERSE_CONFIG,
    MINIMAL_DATAVERSE_CONFIG,
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Integration tests across several components")
    config.addinivalue_line("markers", "resilience: Retry, partial failure and cancellation tests")


# =============================================================================
# Diagram Fixtures
# =============================================================================

@pytest.fixture
def simple_erd():
    """Customer/Order diagram with one one-to-many relationship."""
    return SIMPLE_ERD


@pytest.fixture
def event_erd():
    """Diagram with a choice column and a non-key 'name' column."""
    return EVENT_ERD


@pytest.fixture
def broken_erd():
    """Diagram with missing and duplicate primary keys."""
    return BROKEN_ERD


@pytest.fixture
def many_to_many_erd():
    """Diagram with a many-to-many relationship."""
    return MANY_TO_MANY_ERD


@pytest.fixture
def temp_erd_file(tmp_path, simple_erd):
    """Create a temporary diagram file for testing."""
    erd_file = tmp_path / "model.mmd"
    erd_file.write_text(simple_erd, encoding='utf-8')
    return str(erd_file)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def sample_config():
    """Sample Dataverse configuration dictionary."""
    return json.loads(json.dumps(SAMPLE_DATAVERSE_CONFIG))


@pytest.fixture
def minimal_config():
    """Minimal Dataverse configuration dictionary."""
    return json.loads(json.dumps(MINIMAL_DATAVERSE_CONFIG))


@pytest.fixture
def temp_config_file(tmp_path, sample_config):
    """Create a temporary configuration file for testing."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(sample_config, indent=2))
    return str(config_file)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture
def mock_credential():
    """Mock Azure credential."""
    cred = Mock()
    mock_token = Mock()
    mock_token.token = "mock-token-12345"
    mock_token.expires_on = time.time() + 3600
    cred.get_token.return_value = mock_token
    return cred

