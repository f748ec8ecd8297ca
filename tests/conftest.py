"""Shared fixtures for renovation tracker tests."""

import asyncio

import pytest

from src.core.collaborators import JsonPersistence, MemoryKeyValueStore, StaticIdentity
from src.core.controller import ProjectController
from src.core.store import Area, Corner, SubArea
from tests.factories import TODAY


@pytest.fixture
def kitchen_entities():
    """Area Kitchen -> SubArea Counter -> Corner Sink, plus a second Area."""
    areas = [
        Area(id="a1", project_id="p1", name="Kitchen", kind="kitchen"),
        Area(id="a2", project_id="p1", name="Bathroom", kind="bathroom"),
    ]
    sub_areas = [SubArea(id="s1", area_id="a1", name="Counter")]
    corners = [Corner(id="c1", sub_area_id="s1", name="Sink")]
    return areas, sub_areas, corners


@pytest.fixture
def persistence(tmp_path):
    """JSON-file persistence seeded with one project and its hierarchy."""
    store = JsonPersistence(tmp_path / "data")
    store.data["projects"]["p1"] = {
        "id": "p1",
        "name": "Apartment 42",
        "mode": "macro",
        "end_date": "2025-12-31",
        "created_at": "2025-01-10T10:00:00Z",
    }
    store.data["areas"]["a1"] = {"id": "a1", "project_id": "p1", "name": "Kitchen", "kind": "kitchen"}
    store.data["areas"]["a2"] = {"id": "a2", "project_id": "p1", "name": "Bathroom", "kind": "bathroom"}
    store.data["sub_areas"]["s1"] = {"id": "s1", "area_id": "a1", "name": "Counter"}
    store.data["corners"]["c1"] = {"id": "c1", "sub_area_id": "s1", "name": "Sink"}
    store.flush()
    return store


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def controller(persistence, kv_store):
    """Controller with project p1 already opened by user u1."""
    ctrl = ProjectController(
        persistence, StaticIdentity("u1"), kv_store, timeout=1.0, today=lambda: TODAY
    )
    asyncio.run(ctrl.open_project("p1"))
    return ctrl
