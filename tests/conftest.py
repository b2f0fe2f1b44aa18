"""
Shared pytest fixtures for the REACH Content Board test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - auth_headers: factory for Bearer headers carrying a board role
    - team: Pre-created Team with its five stages
    - stages: {canonical stage name: Stage} for that team
    - permissions: the app's PermissionMatrix
"""

import pytest

from reach import create_app
from reach.models import db as _db
from reach.services import card_service
from reach.services.jwt_service import generate_access_token
from reach.services.permission import PERMISSIONS_EXTENSION


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


@pytest.fixture()
def auth_headers():
    """Return a function building Authorization headers for a role."""

    def _headers(role, user_id="user-1"):
        return {"Authorization": f"Bearer {generate_access_token(user_id, role)}"}

    return _headers


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def permissions(app):
    return app.extensions[PERMISSIONS_EXTENSION]


@pytest.fixture()
def team():
    """Create and return a Team with the five default stages."""
    return card_service.create_team("Content Team", "Short-form video")


@pytest.fixture()
def stages(team):
    """Map canonical stage name → Stage row for the test team."""
    return {stage.canonical_name.value: stage for stage in team.stages}


@pytest.fixture()
def make_card(permissions, team, stages):
    """Create a card as admin in the given stage (appended at the end)."""

    def _make(title, stage="research", **fields):
        data = {"title": title, "stage_id": stages[stage].id, **fields}
        return card_service.create_card(permissions, "admin", team.id, data, actor_id="seed")

    return _make
