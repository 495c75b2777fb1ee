"""
Shared pytest fixtures for the schedule tracker test suite.

Provides:
    - today: pinned calendar date used by progress and window checks
    - storage: empty in-memory snapshot storage
    - store: RecordStore over that storage (sample procurement rows seeded)
    - two_projects: store holding records for two projects of both kinds
"""

from datetime import date

import pytest

from sitecontrol.access import ADMIN
from sitecontrol.models import OPERATIONS, PROCUREMENT
from sitecontrol.store import MemoryStorage, RecordStore


@pytest.fixture
def today():
    return date(2024, 1, 21)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return RecordStore(storage)


@pytest.fixture
def two_projects(store):
    """Store with projects A and B, each holding procurement and operations items."""
    a = store.create_project("Tower A", ADMIN)
    b = store.create_project("Podium B", ADMIN)
    for project, prefix in ((a, "A"), (b, "B")):
        store.create(PROCUREMENT, project["id"], ADMIN,
                     engineering_item=f"{prefix} steel",
                     scheduled_request_date="2023-10-01",
                     actual_request_date="2023-10-10")
        store.create(PROCUREMENT, project["id"], ADMIN,
                     engineering_item=f"{prefix} concrete",
                     scheduled_request_date="2023-10-15")
        store.create(OPERATIONS, project["id"], ADMIN,
                     category="Structural", item=f"{prefix} frame",
                     scheduled_start_date="2024-01-01", scheduled_end_date="2024-01-31",
                     actual_start_date="2024-01-01")
    return store, a, b
