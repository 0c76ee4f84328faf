"""
Unit tests for the submission coordinator and publishing helpers.

Tests cover:
- Committed submissions create one record and bump the counter
- Unknown and disabled forms are gated with no side effects
- Validation code checks (missing, wrong, correct)
- Validation failures return the error map and write nothing
- Visibility replayed from answers when not supplied
- Only visible answers of known fields are persisted
- Gate errors raised at insert time
- Storage failures surface as failed
- Concurrent submissions each commit
- publish_form and republish_form refuse invalid schemas; set_form_status
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from campaignforms.core.errors import FormDisabledError, PersistenceError, SchemaPublishError
from campaignforms.core.publishing import publish_form, republish_form, set_form_status
from campaignforms.core.schema import FormSchema, FormStatus, parse_schema
from campaignforms.core.submission import SubmissionCoordinator, SubmissionOutcome
from campaignforms.core.visibility import VisibilityEngine
from campaignforms.storage.memory import InMemoryRepository

SIGNUP_CODE = "SPRING-2026"

VALID_FEEDBACK = {
    "name": "Jane Doe",
    "email": "jane@example.com",
    "rating": "5",
    "feedback": "Great service",
}

VALID_SIGNUP = {
    "store_name": "Corner Shop",
    "phone": "5551234567",
    "participation": "in_store",
    "display_plan": [{"location": "Window", "size": "large"}],
    "promo_code": "ABC-123",
}


# --- Helpers ---


class BrokenSubmissionRepository(InMemoryRepository):
    """Memory repository whose submission writes always fail."""

    name = "broken"

    def create_submission(self, form_id, answers):
        raise PersistenceError(self.name, "disk on fire")


class DisableOnInsertRepository(InMemoryRepository):
    """Simulates a form being disabled between the gate and the insert."""

    def create_submission(self, form_id, answers):
        self.update_form_status(form_id, FormStatus.DISABLED)
        return super().create_submission(form_id, answers)


@pytest.fixture
def store(feedback_schema, signup_schema) -> InMemoryRepository:
    repository = InMemoryRepository()
    publish_form(repository, feedback_schema)
    publish_form(repository, signup_schema)
    return repository


@pytest.fixture
def coordinator(store) -> SubmissionCoordinator:
    return SubmissionCoordinator(store)


def submission_count(repository, form_id: str) -> int:
    return repository.get_form_summary(form_id).submission_count


# =============================================================
# Test: Committed submissions
# =============================================================


class TestCommitted:
    def test_commit_creates_record_and_bumps_counter(self, coordinator, store):
        result = coordinator.submit("customer_feedback", dict(VALID_FEEDBACK))

        assert result.outcome == SubmissionOutcome.COMMITTED
        assert result.committed
        assert result.submission_id
        assert submission_count(store, "customer_feedback") == 1

        record = store.get_submission(result.submission_id)
        assert record.form_id == "customer_feedback"
        assert record.answers == VALID_FEEDBACK

    def test_commit_with_validation_code(self, coordinator, store):
        result = coordinator.submit("campaign_signup", dict(VALID_SIGNUP), validation_code=SIGNUP_CODE)
        assert result.committed
        assert submission_count(store, "campaign_signup") == 1

    def test_code_is_never_persisted(self, coordinator, store):
        answers = {**VALID_SIGNUP, "validation_code": SIGNUP_CODE}
        result = coordinator.submit("campaign_signup", answers, validation_code=SIGNUP_CODE)
        record = store.get_submission(result.submission_id)
        assert "validation_code" not in record.answers
        assert SIGNUP_CODE not in record.answers.values()

    def test_hidden_answers_are_not_persisted(self, coordinator, store, signup_schema):
        engine = VisibilityEngine(signup_schema)
        for field_id, value in VALID_SIGNUP.items():
            engine.apply_change(field_id, value)
        engine.apply_change("participation", "none")

        answers = {**VALID_SIGNUP, "participation": "none"}
        result = coordinator.submit(
            "campaign_signup", answers, visibility=engine.state, validation_code=SIGNUP_CODE
        )

        assert result.committed
        record = store.get_submission(result.submission_id)
        assert set(record.answers) == {"store_name", "phone", "participation"}

    def test_visibility_replayed_when_omitted(self, coordinator):
        answers = {"store_name": "Corner Shop", "phone": "5551234567", "participation": "none"}
        result = coordinator.submit("campaign_signup", answers, validation_code=SIGNUP_CODE)
        assert result.committed


# =============================================================
# Test: Gate
# =============================================================


class TestGate:
    def test_unknown_form(self, coordinator):
        result = coordinator.submit("ghost", {})
        assert result.outcome == SubmissionOutcome.GATED
        assert result.reason == "not_found"

    def test_disabled_form(self, coordinator, store):
        set_form_status(store, "customer_feedback", FormStatus.DISABLED)

        result = coordinator.submit("customer_feedback", dict(VALID_FEEDBACK))

        assert result.outcome == SubmissionOutcome.GATED
        assert result.reason == "disabled"
        assert store.list_submissions("customer_feedback") == []
        assert submission_count(store, "customer_feedback") == 0

    def test_re_enabled_form_accepts_again(self, coordinator, store):
        set_form_status(store, "customer_feedback", FormStatus.DISABLED)
        set_form_status(store, "customer_feedback", FormStatus.ACTIVE)
        assert coordinator.submit("customer_feedback", dict(VALID_FEEDBACK)).committed

    def test_disabled_at_insert_time(self, feedback_schema):
        repository = DisableOnInsertRepository()
        publish_form(repository, feedback_schema)

        result = SubmissionCoordinator(repository).submit("customer_feedback", dict(VALID_FEEDBACK))

        assert result.outcome == SubmissionOutcome.GATED
        assert result.reason == FormDisabledError.reason
        assert repository.list_submissions("customer_feedback") == []


# =============================================================
# Test: Validation code
# =============================================================


class TestValidationCode:
    @pytest.mark.parametrize("code", [None, "", "spring-2026", "SPRING-2027"])
    def test_wrong_or_missing_code(self, coordinator, store, code):
        result = coordinator.submit("campaign_signup", dict(VALID_SIGNUP), validation_code=code)
        assert result.outcome == SubmissionOutcome.REJECTED
        assert result.reason == "invalid_code"
        assert submission_count(store, "campaign_signup") == 0

    def test_code_ignored_when_form_has_none(self, coordinator):
        result = coordinator.submit("customer_feedback", dict(VALID_FEEDBACK), validation_code="anything")
        assert result.committed


# =============================================================
# Test: Validation failures
# =============================================================


class TestRejected:
    def test_error_map_returned_verbatim(self, coordinator, store):
        answers = {**VALID_FEEDBACK, "email": "nope", "rating": "9"}

        result = coordinator.submit("customer_feedback", answers)

        assert result.outcome == SubmissionOutcome.REJECTED
        assert result.reason == "validation"
        assert result.errors == {
            "email": "Please enter a valid email address",
            "rating": "'9' is not a valid option",
        }
        assert store.list_submissions("customer_feedback") == []
        assert submission_count(store, "customer_feedback") == 0

    def test_uncompilable_regex_rejects_every_value(self):
        schema = parse_schema({
            "id": "broken_regex",
            "title": "Broken",
            "fields": [
                {"id": "code", "type": "text", "validation": {"pattern": "custom", "customRule": "(["}},
            ],
        })
        repository = InMemoryRepository()
        publish_form(repository, schema)
        coordinator = SubmissionCoordinator(repository)

        for value in ("", "anything"):
            result = coordinator.submit("broken_regex", {"code": value})
            assert result.outcome == SubmissionOutcome.REJECTED
            assert result.errors == {"code": "Invalid format"}
        assert repository.list_submissions("broken_regex") == []


# =============================================================
# Test: Persistence failures
# =============================================================


class TestFailed:
    def test_storage_failure(self, feedback_schema):
        repository = BrokenSubmissionRepository()
        publish_form(repository, feedback_schema)

        result = SubmissionCoordinator(repository).submit("customer_feedback", dict(VALID_FEEDBACK))

        assert result.outcome == SubmissionOutcome.FAILED
        assert result.reason == "persistence"
        assert "disk on fire" in result.message


# =============================================================
# Test: Concurrency
# =============================================================


class TestConcurrentSubmissions:
    def test_parallel_submits_all_commit(self, coordinator, store):
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(
                lambda _: coordinator.submit("customer_feedback", dict(VALID_FEEDBACK)),
                range(20),
            ))

        assert all(r.committed for r in results)
        assert len({r.submission_id for r in results}) == 20
        assert submission_count(store, "customer_feedback") == 20


# =============================================================
# Test: Publishing
# =============================================================


class TestPublishing:
    def test_invalid_schema_not_written(self):
        repository = InMemoryRepository()
        schema = FormSchema.model_validate({
            "id": "dup",
            "title": "Dup",
            "fields": [{"id": "a", "type": "text"}, {"id": "a", "type": "text"}],
        })

        with pytest.raises(SchemaPublishError) as exc_info:
            publish_form(repository, schema)

        assert len(exc_info.value.errors) == 1
        assert repository.get_form("dup") is None

    def test_publish_returns_id(self, feedback_schema):
        repository = InMemoryRepository()
        assert publish_form(repository, feedback_schema) == "customer_feedback"
        assert repository.get_form("customer_feedback") == feedback_schema

    def test_duplicate_id_refused(self, feedback_schema):
        repository = InMemoryRepository()
        publish_form(repository, feedback_schema)
        with pytest.raises(ValueError):
            publish_form(repository, feedback_schema)

    def test_set_status_unknown_form(self):
        assert set_form_status(InMemoryRepository(), "ghost", FormStatus.DISABLED) is False

    def test_republish_replaces_definition(self, feedback_schema):
        repository = InMemoryRepository()
        publish_form(repository, feedback_schema)
        revised = parse_schema({
            "id": "ignored",
            "title": "Feedback (short)",
            "fields": [{"id": "name", "type": "text", "isRequired": True}],
        })

        assert republish_form(repository, "customer_feedback", revised) is True

        stored = repository.get_form("customer_feedback")
        assert stored.title == "Feedback (short)"
        assert stored.field_ids() == ["name"]
        assert repository.get_form("ignored") is None

    def test_republish_refuses_invalid_schema(self, feedback_schema):
        repository = InMemoryRepository()
        publish_form(repository, feedback_schema)
        broken = parse_schema({
            "title": "Broken",
            "fields": [
                {
                    "id": "choice",
                    "type": "dropdown",
                    "options": ["a"],
                    "conditions": [{"optionValue": "a", "action": "show", "targetId": "ghost"}],
                },
            ],
        })

        with pytest.raises(SchemaPublishError):
            republish_form(repository, "customer_feedback", broken)

        assert repository.get_form("customer_feedback") == feedback_schema

    def test_republish_unknown_form(self, feedback_schema):
        assert republish_form(InMemoryRepository(), "customer_feedback", feedback_schema) is False
