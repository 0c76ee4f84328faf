"""
Unit tests for respondent sessions and the session store.

Tests cover:
- set_value drives the visibility engine
- snapshot() exposes only visible answers
- submit() commits the live visible set and discards working state
- A submitted session refuses further events
- Concurrent submits of one session commit once
- SessionStore create/get/delete/count
- Expiry on access and via cleanup_expired
"""

import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from campaignforms.core.errors import SessionSubmittedError
from campaignforms.core.publishing import publish_form
from campaignforms.core.session import RespondentSession, SessionStore
from campaignforms.core.submission import SubmissionCoordinator, SubmissionOutcome
from campaignforms.storage.memory import InMemoryRepository


# --- Helpers ---


def fill_signup(session: RespondentSession) -> None:
    session.set_value("store_name", "Corner Shop")
    session.set_value("phone", "5551234567")
    session.set_value("participation", "online")
    session.set_value("promo_code", "ABC-123")


class SlowRepository(InMemoryRepository):
    """Memory repository whose inserts take long enough to overlap."""

    def create_submission(self, form_id, answers):
        time.sleep(0.05)
        return super().create_submission(form_id, answers)


@pytest.fixture
def coordinator(signup_schema) -> SubmissionCoordinator:
    repository = InMemoryRepository()
    publish_form(repository, signup_schema)
    return SubmissionCoordinator(repository)


# =============================================================
# Test: RespondentSession
# =============================================================


class TestRespondentSession:
    def test_set_value_returns_update(self, signup_schema):
        session = RespondentSession(signup_schema)
        update = session.set_value("participation", "online")
        assert update.hidden == ["display_plan"]
        assert update.navigation[0].target_id == "promo_code"

    def test_snapshot(self, signup_schema):
        session = RespondentSession(signup_schema)
        session.set_value("display_plan", [{"location": "Window"}])
        session.set_value("participation", "none")

        snapshot = session.snapshot()

        assert snapshot["form_id"] == "campaign_signup"
        assert snapshot["visibility"]["display_plan"] is False
        assert snapshot["visibility"]["promo_code"] is False
        assert snapshot["answers"] == {"participation": "none"}
        assert snapshot["submitted"] is False

    def test_submit_commits(self, signup_schema, coordinator):
        session = RespondentSession(signup_schema)
        fill_signup(session)

        result = session.submit(coordinator, validation_code="SPRING-2026")

        assert result.outcome == SubmissionOutcome.COMMITTED
        assert session.is_submitted
        assert session.submission_id == result.submission_id
        assert session.snapshot()["answers"] == {}

        record = coordinator.repository.get_submission(result.submission_id)
        assert "display_plan" not in record.answers
        assert record.answers["promo_code"] == "ABC-123"

    def test_rejected_submit_keeps_state(self, signup_schema, coordinator):
        session = RespondentSession(signup_schema)
        fill_signup(session)

        result = session.submit(coordinator, validation_code="wrong")

        assert result.reason == "invalid_code"
        assert not session.is_submitted
        assert session.snapshot()["answers"]["store_name"] == "Corner Shop"

    def test_submitted_session_refuses_events(self, signup_schema, coordinator):
        session = RespondentSession(signup_schema)
        fill_signup(session)
        session.submit(coordinator, validation_code="SPRING-2026")

        with pytest.raises(RuntimeError):
            session.set_value("store_name", "Other")
        with pytest.raises(RuntimeError):
            session.submit(coordinator, validation_code="SPRING-2026")

    def test_concurrent_submits_commit_once(self, signup_schema):
        repository = SlowRepository()
        publish_form(repository, signup_schema)
        coordinator = SubmissionCoordinator(repository)
        session = RespondentSession(signup_schema)
        fill_signup(session)

        def submit():
            try:
                return session.submit(coordinator, validation_code="SPRING-2026")
            except SessionSubmittedError:
                return None

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda _: submit(), range(2)))

        committed = [r for r in results if r is not None]
        assert len(committed) == 1
        assert committed[0].outcome == SubmissionOutcome.COMMITTED
        assert results.count(None) == 1
        assert len(repository.list_submissions("campaign_signup")) == 1
        assert repository.get_form_summary("campaign_signup").submission_count == 1

    def test_submitted_session_raises_session_error(self, signup_schema, coordinator):
        session = RespondentSession(signup_schema)
        fill_signup(session)
        session.submit(coordinator, validation_code="SPRING-2026")

        with pytest.raises(SessionSubmittedError) as exc_info:
            session.submit(coordinator, validation_code="SPRING-2026")
        assert exc_info.value.form_id == "campaign_signup"

    def test_unknown_field(self, signup_schema):
        with pytest.raises(KeyError):
            RespondentSession(signup_schema).set_value("ghost", 1)


# =============================================================
# Test: SessionStore
# =============================================================


class TestSessionStore:
    def test_create_and_get(self, signup_schema):
        store = SessionStore()
        session_id, session = store.create_session(signup_schema)
        assert store.get_session(session_id) is session
        assert store.count() == 1

    def test_custom_id(self, signup_schema):
        store = SessionStore()
        session_id, _ = store.create_session(signup_schema, session_id="abc")
        assert session_id == "abc"
        assert store.get_session("abc") is not None

    def test_get_missing(self):
        assert SessionStore().get_session("ghost") is None

    def test_delete(self, signup_schema):
        store = SessionStore()
        session_id, _ = store.create_session(signup_schema)
        assert store.delete_session(session_id) is True
        assert store.delete_session(session_id) is False
        assert store.count() == 0

    def test_expired_session_removed_on_access(self, signup_schema):
        store = SessionStore(timeout_seconds=60)
        session_id, session = store.create_session(signup_schema)
        session.last_accessed_at = time.time() - 120

        assert store.get_session(session_id) is None
        assert store.count() == 0

    def test_cleanup_expired(self, signup_schema):
        store = SessionStore(timeout_seconds=60)
        _, stale = store.create_session(signup_schema)
        store.create_session(signup_schema)
        stale.last_accessed_at = time.time() - 120

        assert store.cleanup_expired() == 1
        assert store.count() == 1

    def test_access_refreshes_timestamp(self, signup_schema):
        store = SessionStore(timeout_seconds=60)
        session_id, session = store.create_session(signup_schema)
        session.last_accessed_at = time.time() - 30

        store.get_session(session_id)

        assert not session.is_expired(60)
        assert time.time() - session.last_accessed_at < 5
