"""
Pytest configuration and fixtures for writedesk API tests.
"""
import asyncio
import os
import threading

# Keep the application engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from writedesk.auth import create_access_token
from writedesk.config import get_settings
from writedesk.database import Base, get_db
from writedesk.deps import get_artifact_store, get_event_manager, get_outbox, get_renderer
from writedesk.limiter import limiter
from writedesk.main import app
from writedesk.models.organization import OrganizationMember
from writedesk.realtime import EventManager
from writedesk.schemas.content import ContentCreate
from writedesk.schemas.review import ReviewScores
from writedesk.workflow.actor import Actor
from writedesk.workflow.broadcaster import EventBroadcaster, EventOutbox
from writedesk.workflow.content import ContentWorkflow
from writedesk.workflow.locks import ContentLockRegistry
from writedesk.workflow.magazines import MagazineAssembler
from writedesk.workflow.renderer import LocalArtifactStore

# Disable rate limiting for tests
limiter.enabled = False

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Global session for sharing across requests
_test_session = None

BODY = "Once upon a time a small river learned to sing to the stones."

ADMIN = Actor(id=1, role="admin", organization_id=10)
TEACHER = Actor(id=2, role="teacher", organization_id=10)
AUTHOR = Actor(id=3, role="student", organization_id=10)
REVIEWER_ONE = Actor(id=4, role="reviewer", organization_id=10)
REVIEWER_TWO = Actor(id=5, role="reviewer", organization_id=10)
OUTSIDER = Actor(id=6, role="student", organization_id=20)


def get_test_db():
    """Get the shared test database session."""
    global _test_session
    try:
        yield _test_session
    finally:
        pass


def auth_headers_for(actor: Actor) -> dict:
    token = create_access_token(actor.id, actor.role, actor.organization_id)
    return {"Authorization": f"Bearer {token}"}


class RecordingTransport:
    """Real-time transport double that remembers everything published."""

    def __init__(self):
        self.published = []

    def publish(self, scope, event_name, payload):
        self.published.append((scope, event_name, payload))
        return 1

    def names(self, scope=None):
        return [name for s, name, _ in self.published if scope is None or s == scope]

    def clear(self):
        self.published.clear()


class FakeRenderer:
    """Renderer double; set ``fail`` to make it raise."""

    extension = "html"

    def __init__(self):
        self.fail = False
        self.calls = []

    def render_magazine(self, magazine, ordered_content):
        self.calls.append((magazine.id, [entry.content_id for entry in ordered_content]))
        if self.fail:
            raise RuntimeError("renderer crashed")
        return f"<html>{magazine.title}</html>".encode("utf-8")


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create a session
    _test_session = TestingSessionLocal()

    # Override the get_db dependency
    app.dependency_overrides[get_db] = get_test_db

    yield _test_session

    # Cleanup
    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None

    # Drop all tables
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def transport():
    return RecordingTransport()


@pytest.fixture(scope="function")
def outbox(transport):
    return EventOutbox(transport)


@pytest.fixture(scope="function")
def broadcaster(outbox):
    return EventBroadcaster(outbox)


@pytest.fixture(scope="function")
def workflow(db, broadcaster):
    return ContentWorkflow(db, broadcaster, locks=ContentLockRegistry(), settings=get_settings())


@pytest.fixture(scope="function")
def renderer():
    return FakeRenderer()


@pytest.fixture(scope="function")
def artifacts(tmp_path):
    return LocalArtifactStore(str(tmp_path / "artifacts"), "/api/files/pdf")


@pytest.fixture(scope="function")
def assembler(db, broadcaster, renderer, artifacts):
    return MagazineAssembler(
        db,
        broadcaster,
        renderer=renderer,
        artifacts=artifacts,
        locks=ContentLockRegistry(),
        settings=get_settings(),
    )


@pytest.fixture(scope="function")
def client(db, outbox, renderer, artifacts):
    """Create a test client wired to the recording transport and fake renderer."""
    app.dependency_overrides[get_outbox] = lambda: outbox
    app.dependency_overrides[get_renderer] = lambda: renderer
    app.dependency_overrides[get_artifact_store] = lambda: artifacts
    with TestClient(app) as c:
        yield c


@pytest.fixture(scope="function")
def members(db):
    """Active members of organization 10 plus one inactive member."""
    rows = [
        OrganizationMember(organization_id=10, user_id=user_id, role=role)
        for user_id, role in ((1, "admin"), (2, "teacher"), (3, "student"), (4, "reviewer"))
    ]
    rows.append(OrganizationMember(organization_id=10, user_id=7, role="student", is_active=False))
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture(scope="function")
def draft(workflow):
    """A draft written by AUTHOR."""
    return workflow.create(AUTHOR, ContentCreate(title="The Singing River", body=BODY))


@pytest.fixture(scope="function")
def under_review(workflow, draft):
    """The draft submitted and assigned to two reviewers."""
    workflow.submit(draft.id, AUTHOR)
    first = workflow.assign_review(draft.id, REVIEWER_ONE.id, ADMIN)
    second = workflow.assign_review(draft.id, REVIEWER_TWO.id, ADMIN)
    return draft, first, second


@pytest.fixture(scope="function")
def approved(workflow, under_review):
    """Content approved by both reviewers."""
    content, first, second = under_review
    workflow.complete_review(first.id, REVIEWER_ONE, ReviewScores(rating=4))
    workflow.complete_review(second.id, REVIEWER_TWO, ReviewScores(rating=5))
    return content


class LiveEvents:
    """An EventManager whose connections live on a loop in a background thread."""

    def __init__(self):
        self.manager = EventManager()
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, daemon=True)
        self.thread.start()

    def _run(self, coroutine, timeout=2):
        return asyncio.run_coroutine_threadsafe(coroutine, self.loop).result(timeout)

    def connect(self, connection_id, scopes, owner_id):
        """Open a connection and consume its ``connected`` greeting."""
        queue = self._run(self.manager.connect(connection_id, scopes, owner_id=owner_id))
        self.next_event(queue)
        return queue

    def next_event(self, queue, timeout=1):
        return self._run(asyncio.wait_for(queue.get(), timeout), timeout + 1)

    def pending(self, queue):
        async def size():
            return queue.qsize()
        return self._run(size())

    def close(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=2)
        self.loop.close()


@pytest.fixture(scope="function")
def live_events(client):
    """Live connections wired into the app in place of the global event manager."""
    events = LiveEvents()
    app.dependency_overrides[get_event_manager] = lambda: events.manager
    yield events
    events.close()
