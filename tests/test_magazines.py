"""
Tests for magazine assembly and publication.
"""
import os

import pytest

from writedesk.errors import Conflict, Forbidden, InvalidState, NotFound, RenderFailure
from writedesk.models.magazine import Magazine, MagazineContent
from writedesk.models.notification import Notification
from writedesk.schemas.content import ContentCreate, ContentUpdate
from writedesk.schemas.magazine import MagazineContentAdd, MagazineCreate, MagazineUpdate
from writedesk.schemas.review import ReviewScores
from writedesk.workflow.actor import Actor
from writedesk.workflow.locks import ContentLockRegistry
from writedesk.workflow.magazines import MagazineAssembler
from writedesk.workflow.renderer import HtmlMagazineRenderer, LocalArtifactStore

from conftest import ADMIN, AUTHOR, BODY, REVIEWER_ONE, REVIEWER_TWO, TEACHER


def new_issue(assembler, actor=TEACHER, issue=1, volume=1, **extra):
    return assembler.create(actor, MagazineCreate(title="Spring Issue", issue_number=issue, volume_number=volume, **extra))


class RecordingLocks(ContentLockRegistry):
    """Lock registry that remembers every key it was asked for."""

    def __init__(self):
        super().__init__()
        self.keys = []

    def hold(self, key):
        self.keys.append(key)
        return super().hold(key)


class TestMagazineCrud:
    """Test magazine creation and editing."""

    def test_create_in_actor_organization(self, assembler):
        magazine = new_issue(assembler)
        assert magazine.status == "draft"
        assert magazine.organization_id == TEACHER.organization_id
        assert magazine.created_by == TEACHER.id

    def test_duplicate_issue_conflicts(self, assembler, db):
        """Test that the first magazine survives a duplicate attempt."""
        first = new_issue(assembler)
        with pytest.raises(Conflict):
            new_issue(assembler, actor=ADMIN)
        assert db.query(Magazine).count() == 1
        assert assembler.get(first.id).title == "Spring Issue"

    def test_same_issue_in_other_organization_allowed(self, assembler):
        new_issue(assembler)
        other = new_issue(assembler, actor=ADMIN, organization_id=20)
        assert other.organization_id == 20

    def test_duplicate_without_organization_conflicts(self, assembler):
        """Test that issues without an organization are unique too."""
        admin_without_org = Actor(id=1, role="admin", organization_id=None)
        new_issue(assembler, actor=admin_without_org)
        with pytest.raises(Conflict):
            new_issue(assembler, actor=admin_without_org)

    def test_student_cannot_create(self, assembler):
        with pytest.raises(Forbidden):
            new_issue(assembler, actor=AUTHOR)

    def test_update_to_taken_issue_conflicts(self, assembler):
        new_issue(assembler, issue=1)
        second = new_issue(assembler, issue=2)
        with pytest.raises(Conflict):
            assembler.update(second.id, TEACHER, MagazineUpdate(issue_number=1))

    def test_update_title(self, assembler):
        magazine = new_issue(assembler)
        assert assembler.update(magazine.id, TEACHER, MagazineUpdate(title="Summer Issue")).title == "Summer Issue"

    def test_renumbering_holds_target_issue_key(self, db, broadcaster, renderer, artifacts):
        """Test that moving an issue number serializes with creating that issue."""
        locks = RecordingLocks()
        assembler = MagazineAssembler(db, broadcaster, renderer=renderer, artifacts=artifacts, locks=locks)
        magazine = new_issue(assembler)
        locks.keys.clear()

        assembler.update(magazine.id, TEACHER, MagazineUpdate(issue_number=2))

        assert locks.keys == [("magazine", magazine.id), ("issue", TEACHER.organization_id, 2, 1)]

    def test_title_update_takes_no_issue_key(self, db, broadcaster, renderer, artifacts):
        locks = RecordingLocks()
        assembler = MagazineAssembler(db, broadcaster, renderer=renderer, artifacts=artifacts, locks=locks)
        magazine = new_issue(assembler)
        locks.keys.clear()

        assembler.update(magazine.id, TEACHER, MagazineUpdate(title="Summer Issue"))

        assert locks.keys == [("magazine", magazine.id)]

    def test_only_admin_deletes(self, assembler, db):
        magazine = new_issue(assembler)
        with pytest.raises(Forbidden):
            assembler.delete(magazine.id, TEACHER)
        assembler.delete(magazine.id, ADMIN)
        assert db.query(Magazine).count() == 0


class TestAddContent:
    """Only approved content enters a magazine."""

    def test_add_approved_content(self, assembler, approved):
        magazine = new_issue(assembler)
        entry = assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id, page_number=3))
        assert entry.content_id == approved.id
        assert entry.page_number == 3

    @pytest.mark.parametrize("status", ["draft", "submitted", "under_review", "rejected"])
    def test_unapproved_content_rejected(self, assembler, workflow, status):
        content = workflow.create(AUTHOR, ContentCreate(title="Draft piece", body=BODY))
        if status != "draft":
            workflow.submit(content.id, AUTHOR)
        if status in ("under_review", "rejected"):
            first = workflow.assign_review(content.id, REVIEWER_ONE.id, ADMIN)
        if status == "rejected":
            workflow.complete_review(first.id, REVIEWER_ONE, ReviewScores(rating=1))
        assert workflow.get(content.id, AUTHOR).status == status

        magazine = new_issue(assembler)
        with pytest.raises(InvalidState) as exc:
            assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=content.id))
        assert exc.value.current_state == status

    def test_duplicate_entry_conflicts(self, assembler, approved):
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))
        with pytest.raises(Conflict):
            assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))

    def test_missing_magazine_or_content(self, assembler, approved):
        with pytest.raises(NotFound):
            assembler.add_content(999, TEACHER, MagazineContentAdd(content_id=approved.id))
        magazine = new_issue(assembler)
        with pytest.raises(NotFound):
            assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=999))

    def test_status_not_rechecked_after_insertion(self, assembler, workflow, approved):
        """Test that publishing the content later leaves the entry in place."""
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))
        workflow.publish(approved.id, TEACHER)
        assert [e.content_id for e in assembler.ordered_content(magazine.id)] == [approved.id]

    def test_remove_content(self, assembler, approved, db):
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))
        assembler.remove_content(magazine.id, approved.id, TEACHER)
        assert db.query(MagazineContent).count() == 0
        with pytest.raises(NotFound):
            assembler.remove_content(magazine.id, approved.id, TEACHER)

    def test_ordered_by_order_index(self, assembler, workflow, approved):
        second = workflow.create(AUTHOR, ContentCreate(title="Second Piece", body=BODY))
        workflow.submit(second.id, AUTHOR)
        review = workflow.assign_review(second.id, REVIEWER_TWO.id, ADMIN)
        workflow.complete_review(review.id, REVIEWER_TWO, ReviewScores(rating=5))

        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id, order_index=2))
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=second.id, order_index=1))
        assert [e.content_id for e in assembler.ordered_content(magazine.id)] == [second.id, approved.id]


class TestPublish:
    """Test rendering and publication."""

    def test_publish_sets_url_and_status(self, assembler, approved, renderer, artifacts, members, db):
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))

        published = assembler.publish(magazine.id, TEACHER)

        assert published.status == "published"
        assert published.published_at is not None
        assert published.pdf_url.startswith("/api/files/pdf/magazine-1-1-")
        assert published.pdf_url.endswith(".html")
        filename = published.pdf_url.rsplit("/", 1)[1]
        assert (artifacts.directory / filename).read_bytes() == b"<html>Spring Issue</html>"
        assert renderer.calls == [(magazine.id, [approved.id])]

    def test_publish_notifies_active_members(self, assembler, approved, members, db, outbox, transport):
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))
        assembler.publish(magazine.id, TEACHER)

        recipients = sorted(
            n.user_id for n in db.query(Notification).filter(Notification.type == "magazine_published")
        )
        assert recipients == [1, 2, 3, 4]

        outbox.drain()
        assert "magazine:published" in transport.names("organization:10")

    def test_render_failure_leaves_magazine_unchanged(self, assembler, approved, renderer, artifacts, db):
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))
        renderer.fail = True

        with pytest.raises(RenderFailure):
            assembler.publish(magazine.id, TEACHER)

        db.expire_all()
        magazine = assembler.get(magazine.id)
        assert magazine.status == "draft"
        assert magazine.pdf_url is None
        assert not artifacts.directory.exists() or os.listdir(artifacts.directory) == []
        assert db.query(Notification).filter(Notification.type == "magazine_published").count() == 0

    def test_failed_commit_discards_artifact(self, assembler, approved, artifacts, db, monkeypatch):
        """Test that the stored artifact is removed when the state change fails."""
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))

        def broken_notify(*args, **kwargs):
            raise RuntimeError("notification store down")

        monkeypatch.setattr(assembler.broadcaster, "magazine_published", broken_notify)
        with pytest.raises(RuntimeError):
            assembler.publish(magazine.id, TEACHER)

        assert os.listdir(artifacts.directory) == []
        db.expire_all()
        assert assembler.get(magazine.id).status == "draft"

    def test_unwritable_artifact_dir_is_render_failure(self, db, broadcaster, renderer, approved, tmp_path):
        """Test that an artifact store pointing at a regular file fails typed."""
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("occupied")
        assembler = MagazineAssembler(
            db,
            broadcaster,
            renderer=renderer,
            artifacts=LocalArtifactStore(str(blocker), "/api/files/pdf"),
            locks=ContentLockRegistry(),
        )
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))

        with pytest.raises(RenderFailure):
            assembler.publish(magazine.id, TEACHER)

        db.expire_all()
        magazine = assembler.get(magazine.id)
        assert magazine.status == "draft"
        assert magazine.pdf_url is None

    def test_publish_twice_fails(self, assembler, approved):
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))
        assembler.publish(magazine.id, TEACHER)
        with pytest.raises(InvalidState):
            assembler.publish(magazine.id, TEACHER)

    def test_empty_magazine_cannot_publish(self, assembler):
        magazine = new_issue(assembler)
        with pytest.raises(InvalidState):
            assembler.publish(magazine.id, TEACHER)

    def test_published_magazine_is_frozen(self, assembler, approved):
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id))
        assembler.publish(magazine.id, TEACHER)
        with pytest.raises(InvalidState):
            assembler.update(magazine.id, TEACHER, MagazineUpdate(title="Changed"))


class TestHtmlRenderer:
    """Test the default issue renderer."""

    def test_renders_escaped_articles_in_order(self, assembler, workflow, approved):
        workflow.update(approved.id, ADMIN, ContentUpdate(title="Rivers & <Stones>"))
        magazine = new_issue(assembler)
        assembler.add_content(magazine.id, TEACHER, MagazineContentAdd(content_id=approved.id, page_number=4))

        html = HtmlMagazineRenderer().render_magazine(magazine, assembler.ordered_content(magazine.id)).decode("utf-8")

        assert "Issue 1, Volume 1" in html
        assert "Rivers &amp; &lt;Stones&gt;" in html
        assert "page 4" in html
        assert "<Stones>" not in html
