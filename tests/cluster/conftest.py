"""Cluster fixtures.

Design Decisions:
    - Real DatabaseBootstrap with an injected dial: the once-only contract is exercised as-is
"""

import pytest

from vidhub.infrastructure.database import DatabaseBootstrap

from tests.cluster.fakes import FakeDial, FakeSpawner


@pytest.fixture
def dial():
    return FakeDial()


@pytest.fixture
def bootstrap(dial):
    return DatabaseBootstrap("postgresql+asyncpg://vidhub@db:5432/vidhub", dial=dial)


@pytest.fixture
def spawner():
    return FakeSpawner()
