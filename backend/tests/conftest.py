"""
Pytest configuration for the test suite.

Adds the backend directory to sys.path so that imports like
``from bizform.services.detection_pipeline import ...`` and
``from page_builders import ...`` work without per-file sys.path hacks.
"""

import sys
from pathlib import Path

# Add backend/ so ``from bizform.*`` imports work
_backend_dir = str(Path(__file__).resolve().parent.parent)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

# Add tests/ so ``from page_builders import ...`` works
_tests_dir = str(Path(__file__).resolve().parent)
if _tests_dir not in sys.path:
    sys.path.insert(0, _tests_dir)

import pytest

from bizform.services.detection_pipeline.knowledge import (
    InMemoryPatternSource,
    PackagedPatternSource,
    PatternStore
)


@pytest.fixture
def store():
    """Store over the JSON documents shipped with the package."""
    return PatternStore(PackagedPatternSource())


@pytest.fixture
def common_table(store):
    return store.get_effective_patterns(None)


@pytest.fixture
def memory_store():
    """Small in-memory store with one region override."""
    common = {
        'business_name': {
            'patterns': [r'business\s*name'],
            'keywords': ['business name'],
            'attributes': ['business'],
            'priority': 90
        },
        'phone': {
            'patterns': ['phone'],
            'keywords': ['phone'],
            'priority': 85
        },
    }
    regions = {
        'zz': {
            'business_name': {'patterns': ['dba\\s*name'], 'keywords': ['dba name']},
            'permit_number': {'patterns': [r'permit\s*(number|no)'], 'keywords': ['permit number'], 'priority': 80},
        }
    }
    return PatternStore(InMemoryPatternSource(common, regions))


@pytest.fixture
def client():
    """TestClient with fresh route singletons."""
    from fastapi.testclient import TestClient

    from bizform.main import app
    from bizform.routes import detection

    detection._pipeline_instance = None
    detection._coordinator_instance = None
    with TestClient(app) as test_client:
        yield test_client
    detection._pipeline_instance = None
    detection._coordinator_instance = None
