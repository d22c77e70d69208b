"""
Shared fixtures for pipeline test suite.

Fakes live in services.research.tests.helpers.fakes so test modules can
import them directly.
"""

import json

import pytest

from services.research.tests.helpers.fakes import DETROIT_PAYLOAD, FakePool


@pytest.fixture
def fake_pool():
    """Provide a fresh FakePool for each test."""
    return FakePool()


@pytest.fixture
def detroit_payload():
    return json.loads(json.dumps(DETROIT_PAYLOAD))
