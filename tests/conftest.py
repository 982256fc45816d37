"""
Shared pytest fixtures for the Floortrack test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - workflow: cut → weld → pack workflow; weld requires a weight reading
    - location / second_location: capacity-limited racks
    - item: an active item at the first stage of ``workflow``
    - linear_stages: mutable copy of the workflow stage list
"""

import copy

import pytest

from floortrack import create_app
from floortrack.models import db as _db
from floortrack.services import location_service, stage_transition, workflow_service


# Weld requires a measurement between 10 and 20 kg; pack is terminal.
LINEAR_STAGES = [
    {
        "id": "cut",
        "name": "Cutting",
        "order": 0,
        "estimated_duration": 120,
        "allowed_next_stage_ids": ["weld"],
    },
    {
        "id": "weld",
        "name": "Welding",
        "order": 1,
        "allowed_next_stage_ids": ["pack"],
        "actions": [
            {
                "id": "weigh",
                "type": "measurement",
                "label": "Weigh",
                "required": True,
                "config": {"unit": "kg", "min_value": 10, "max_value": 20},
            },
            {"id": "remark", "type": "note", "label": "Remark"},
        ],
    },
    {
        "id": "pack",
        "name": "Packing",
        "order": 2,
        "allowed_next_stage_ids": [],
    },
]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def workflow():
    """Three-stage linear workflow."""
    return workflow_service.create("Cabinet", copy.deepcopy(LINEAR_STAGES), created_by="admin")


@pytest.fixture()
def location():
    return location_service.create("Rack A1", "rack", "LOC-A1", capacity=2, created_by="admin")


@pytest.fixture()
def second_location():
    return location_service.create("Rack B1", "rack", "LOC-B1", capacity=2, created_by="admin")


@pytest.fixture()
def item(workflow):
    return stage_transition.create_item("CAB-0001", workflow.id, created_by="op-1")


@pytest.fixture()
def linear_stages():
    """A fresh, mutable copy of the cut → weld → pack stage list."""
    return copy.deepcopy(LINEAR_STAGES)
