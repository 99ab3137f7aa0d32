"""
Tests for store outages: timeouts and lost connections surface as retryable failures.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from writedesk.errors import TransientStoreFailure
from writedesk.main import app
from writedesk.models.content import Content
from writedesk.schemas.magazine import MagazineContentAdd, MagazineCreate
from writedesk.schemas.review import ReviewScores

from conftest import AUTHOR, REVIEWER_ONE, TEACHER, auth_headers_for


def store_down(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


class TestWorkflowReads:
    """Reads outside a transaction report the typed failure too."""

    def test_review_lookup_before_lock(self, workflow, under_review, monkeypatch):
        content, first, second = under_review
        monkeypatch.setattr(workflow.db, "query", store_down)
        with pytest.raises(TransientStoreFailure):
            workflow.complete_review(first.id, REVIEWER_ONE, ReviewScores(rating=4))

    def test_start_review_lookup(self, workflow, under_review, monkeypatch):
        content, first, second = under_review
        monkeypatch.setattr(workflow.db, "query", store_down)
        with pytest.raises(TransientStoreFailure):
            workflow.start_review(first.id, REVIEWER_ONE)

    @pytest.mark.parametrize("read", [
        lambda wf, content_id: wf.get(content_id, AUTHOR),
        lambda wf, content_id: wf.list(AUTHOR),
        lambda wf, content_id: wf.list_versions(content_id, AUTHOR),
        lambda wf, content_id: wf.reviews_for(content_id, AUTHOR),
        lambda wf, content_id: wf.my_reviews(REVIEWER_ONE),
        lambda wf, content_id: wf.reviewer_stats(REVIEWER_ONE.id, REVIEWER_ONE),
    ])
    def test_read_side(self, workflow, draft, monkeypatch, read):
        monkeypatch.setattr(workflow.db, "query", store_down)
        with pytest.raises(TransientStoreFailure):
            read(workflow, draft.id)

    def test_magazine_publish_checks_before_render(self, assembler, approved, renderer, monkeypatch):
        magazine = assembler.create(TEACHER, MagazineCreate(title="Spring Issue", issue_number=1, volume_number=1))
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))
        monkeypatch.setattr(assembler.db, "query", store_down)
        with pytest.raises(TransientStoreFailure):
            assembler.publish(magazine.id, TEACHER)
        assert renderer.calls == []


class TestCommitFailure:
    """A failed commit rolls back and releases no events."""

    def test_submit_commit_fails(self, workflow, draft, db, outbox, transport, monkeypatch):
        outbox.drain()
        transport.clear()
        monkeypatch.setattr(db, "commit", store_down)

        with pytest.raises(TransientStoreFailure):
            workflow.submit(draft.id, AUTHOR)

        monkeypatch.undo()
        assert outbox.drain() == 0
        assert transport.published == []
        assert "writedesk.outbound" not in db.info
        assert db.query(Content).filter(Content.id == draft.id).one().status == "draft"

    def test_operation_can_be_retried(self, workflow, draft, db, monkeypatch):
        monkeypatch.setattr(db, "commit", store_down)
        with pytest.raises(TransientStoreFailure):
            workflow.submit(draft.id, AUTHOR)
        monkeypatch.undo()

        assert workflow.submit(draft.id, AUTHOR).status == "submitted"


class TestHttpEnvelope:
    """Store and unexpected failures share the error envelope."""

    def test_workflow_read_returns_503(self, client, draft, db, monkeypatch):
        monkeypatch.setattr(db, "query", store_down)
        response = client.get(f"/api/content/{draft.id}", headers=auth_headers_for(AUTHOR))
        assert response.status_code == 503
        body = response.json()
        assert body["ok"] is False
        assert body["error_code"] == "STORE_UNAVAILABLE"

    def test_inline_route_query_returns_503(self, client, db, monkeypatch):
        monkeypatch.setattr(db, "query", store_down)
        response = client.get("/api/notifications", headers=auth_headers_for(AUTHOR))
        assert response.status_code == 503
        assert response.json()["error_code"] == "STORE_UNAVAILABLE"

    def test_commit_failure_returns_503(self, client, draft, db, monkeypatch):
        monkeypatch.setattr(db, "commit", store_down)
        response = client.post(f"/api/content/{draft.id}/submit", headers=auth_headers_for(AUTHOR))
        assert response.status_code == 503
        assert response.json()["error_code"] == "STORE_UNAVAILABLE"

    def test_unexpected_error_returns_500_envelope(self, db, draft, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(db, "query", broken)
        raw_client = TestClient(app, raise_server_exceptions=False)
        response = raw_client.get(f"/api/content/{draft.id}", headers=auth_headers_for(AUTHOR))
        assert response.status_code == 500
        body = response.json()
        assert body["ok"] is False
        assert body["error_code"] == "INTERNAL_ERROR"
        assert "boom" not in body["error"]
