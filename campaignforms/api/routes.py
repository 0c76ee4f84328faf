"""
FastAPI routes for the campaign forms backend.

Every response is an envelope: ``{"success": true, ...}`` on success or
``{"success": false, "error": message}`` on failure.

Endpoints:
- GET    /health                        health check and storage mode
- GET    /forms                         list forms with counters and share URLs
- POST   /forms                         publish a form schema
- GET    /forms/{form_id}               get a form (validation code withheld)
- PUT    /forms/{form_id}               republish a form's definition
- PATCH  /forms/{form_id}/status        enable or disable a form
- POST   /forms/{form_id}/submit        stateless submit (visibility replayed)
- GET    /forms/{form_id}/submissions   list submissions, newest first
- POST   /forms/{form_id}/sessions      start a respondent session
- GET    /sessions/{session_id}         session visibility and answers
- POST   /sessions/{session_id}/answers apply one value change
- POST   /sessions/{session_id}/submit  submit a session
- GET    /admin/submissions             every submission, with its form title
- GET    /admin/submissions/{id}        get one submission
- DELETE /admin/submissions/{id}        delete one submission
- GET    /admin/forms/{form_id}         full form with code and summary
- DELETE /admin/forms/{form_id}         delete a form and its submissions
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from campaignforms.core.errors import (
    PersistenceError,
    SchemaPublishError,
    SessionSubmittedError,
)
from campaignforms.core.publishing import publish_form, republish_form, set_form_status
from campaignforms.core.schema import FormSchema, FormStatus, parse_schema
from campaignforms.core.session import SessionStore
from campaignforms.core.submission import (
    SubmissionCoordinator,
    SubmissionOutcome,
    SubmissionResult,
)
from campaignforms.storage.base import Repository
from campaignforms.storage.factory import describe_storage

logger = logging.getLogger(__name__)

router = APIRouter()


def configure_routes(
    application: FastAPI,
    repository: Repository,
    session_store: SessionStore,
) -> None:
    """Attach the repository, coordinator and session store to the app.

    Called by the app factory during startup.
    """
    application.state.repository = repository
    application.state.coordinator = SubmissionCoordinator(repository)
    application.state.session_store = session_store


def get_repository(request: Request) -> Repository:
    return request.app.state.repository


def get_coordinator(request: Request) -> SubmissionCoordinator:
    return request.app.state.coordinator


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


# --- Request Models ---


class StatusRequest(BaseModel):
    status: FormStatus


class SubmitRequest(BaseModel):
    answers: dict[str, Any]
    validation_code: str | None = None


class AnswerRequest(BaseModel):
    field_id: str
    value: Any = None


class SessionSubmitRequest(BaseModel):
    validation_code: str | None = None


# --- Envelopes ---


def _ok(status_code: int = 200, **payload: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, **payload})


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def _storage_error(e: PersistenceError) -> JSONResponse:
    logger.error("Storage failure: %s", e)
    return _error(503, "Storage is unavailable")


def _invalid_definition(e: ValidationError | SchemaPublishError) -> JSONResponse:
    if isinstance(e, SchemaPublishError):
        messages = [str(err) for err in e.errors]
    else:
        messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
    return _error(400, "Invalid form definition", errors=messages)


def _public_form(schema: FormSchema) -> dict[str, Any]:
    data = schema.model_dump(mode="json", by_alias=True, exclude={"validation_code"})
    data["requiresValidationCode"] = bool(schema.validation_code)
    return data


_OUTCOME_STATUS = {
    ("gated", "not_found"): 404,
    ("gated", "disabled"): 403,
    ("rejected", "invalid_code"): 403,
    ("rejected", "validation"): 400,
    ("failed", "persistence"): 503,
}


def _submission_response(result: SubmissionResult) -> JSONResponse:
    if result.outcome == SubmissionOutcome.COMMITTED:
        return _ok(201, message=result.message, submissionId=result.submission_id)

    status_code = _OUTCOME_STATUS.get((result.outcome.value, result.reason), 400)
    extra: dict[str, Any] = {"outcome": result.outcome.value, "reason": result.reason}
    if result.errors:
        extra["errors"] = result.errors
    return _error(status_code, result.message or "Submission failed", **extra)


# --- Endpoints ---


@router.get("/health")
def health_check(
    repository: Repository = Depends(get_repository),
    session_store: SessionStore = Depends(get_session_store),
):
    """Health check endpoint."""
    return {
        "status": "ok",
        "storage": describe_storage(repository),
        "active_sessions": session_store.count(),
    }


@router.get("/forms")
def list_forms(repository: Repository = Depends(get_repository)):
    try:
        forms = repository.list_forms()
    except PersistenceError as e:
        return _storage_error(e)
    return _ok(forms=[f.model_dump(mode="json") for f in forms])


@router.post("/forms")
def create_form(
    payload: dict[str, Any] = Body(...),
    repository: Repository = Depends(get_repository),
):
    """Publish a form. The schema is refused if any integrity check fails."""
    try:
        schema = parse_schema(payload)
    except ValidationError as e:
        return _invalid_definition(e)

    try:
        form_id = publish_form(repository, schema)
    except SchemaPublishError as e:
        return _invalid_definition(e)
    except ValueError as e:
        return _error(409, str(e))
    except PersistenceError as e:
        return _storage_error(e)

    return _ok(
        201,
        message="Form created successfully",
        formId=form_id,
        shareUrl=repository.share_url_for(form_id),
    )


@router.get("/forms/{form_id}")
def get_form(form_id: str, repository: Repository = Depends(get_repository)):
    try:
        schema = repository.get_form(form_id)
    except PersistenceError as e:
        return _storage_error(e)
    if schema is None:
        return _error(404, "Form not found")
    return _ok(form=_public_form(schema))


@router.put("/forms/{form_id}")
def republish(
    form_id: str,
    payload: dict[str, Any] = Body(...),
    repository: Repository = Depends(get_repository),
):
    """Replace a form's definition. Status, counter and share URL are kept."""
    try:
        schema = parse_schema({**payload, "id": form_id})
    except ValidationError as e:
        return _invalid_definition(e)

    try:
        updated = republish_form(repository, form_id, schema)
    except SchemaPublishError as e:
        return _invalid_definition(e)
    except PersistenceError as e:
        return _storage_error(e)

    if not updated:
        return _error(404, "Form not found")
    return _ok(message="Form updated successfully", formId=form_id)


@router.patch("/forms/{form_id}/status")
def update_status(
    form_id: str,
    request: StatusRequest,
    repository: Repository = Depends(get_repository),
):
    try:
        updated = set_form_status(repository, form_id, request.status)
    except PersistenceError as e:
        return _storage_error(e)
    if not updated:
        return _error(404, "Form not found")
    return _ok(formId=form_id, status=request.status.value)


@router.post("/forms/{form_id}/submit")
def submit_form(
    form_id: str,
    request: SubmitRequest,
    coordinator: SubmissionCoordinator = Depends(get_coordinator),
):
    """Stateless submit: visibility is rebuilt from the posted answers."""
    result = coordinator.submit(
        form_id,
        request.answers,
        validation_code=request.validation_code,
    )
    return _submission_response(result)


@router.get("/forms/{form_id}/submissions")
def list_submissions(form_id: str, repository: Repository = Depends(get_repository)):
    try:
        if repository.get_form(form_id) is None:
            return _error(404, "Form not found")
        submissions = repository.list_submissions(form_id)
    except PersistenceError as e:
        return _storage_error(e)
    return _ok(submissions=[s.model_dump(mode="json") for s in submissions])


@router.post("/forms/{form_id}/sessions")
def start_session(
    form_id: str,
    repository: Repository = Depends(get_repository),
    session_store: SessionStore = Depends(get_session_store),
):
    try:
        schema = repository.get_form(form_id)
    except PersistenceError as e:
        return _storage_error(e)
    if schema is None:
        return _error(404, "Form not found")
    if not schema.is_active():
        return _error(403, "Form is disabled")

    session_id, session = session_store.create_session(schema)
    return _ok(201, sessionId=session_id, form=_public_form(schema), **session.snapshot())


@router.get("/sessions/{session_id}")
def get_session(session_id: str, session_store: SessionStore = Depends(get_session_store)):
    session = session_store.get_session(session_id)
    if session is None:
        return _error(404, "Session not found")
    return _ok(sessionId=session_id, **session.snapshot())


@router.post("/sessions/{session_id}/answers")
def set_answer(
    session_id: str,
    request: AnswerRequest,
    session_store: SessionStore = Depends(get_session_store),
):
    """Apply one value-change event and return the resulting visibility."""
    session = session_store.get_session(session_id)
    if session is None:
        return _error(404, "Session not found")

    try:
        update = session.set_value(request.field_id, request.value)
    except KeyError:
        return _error(400, f"Field '{request.field_id}' does not exist in the form")
    except SessionSubmittedError as e:
        return _error(409, str(e))

    return _ok(
        sessionId=session_id,
        update=update.model_dump(mode="json"),
        **session.snapshot(),
    )


@router.post("/sessions/{session_id}/submit")
def submit_session(
    session_id: str,
    request: SessionSubmitRequest,
    coordinator: SubmissionCoordinator = Depends(get_coordinator),
    session_store: SessionStore = Depends(get_session_store),
):
    session = session_store.get_session(session_id)
    if session is None:
        return _error(404, "Session not found")

    try:
        result = session.submit(coordinator, validation_code=request.validation_code)
    except SessionSubmittedError as e:
        return _error(409, str(e))
    if result.committed:
        # Visibility state is working state only; drop it once committed
        session_store.delete_session(session_id)
    return _submission_response(result)


@router.get("/admin/submissions")
def list_all_submissions(repository: Repository = Depends(get_repository)):
    """Every submission across forms, newest first, tagged with its form title."""
    try:
        titles = {f.id: f.title for f in repository.list_forms()}
        submissions = repository.list_all_submissions()
    except PersistenceError as e:
        return _storage_error(e)
    return _ok(
        submissions=[
            {**s.model_dump(mode="json"), "form_title": titles.get(s.form_id, "Unknown Form")}
            for s in submissions
        ]
    )


@router.get("/admin/submissions/{submission_id}")
def get_submission(submission_id: str, repository: Repository = Depends(get_repository)):
    try:
        submission = repository.get_submission(submission_id)
    except PersistenceError as e:
        return _storage_error(e)
    if submission is None:
        return _error(404, "Submission not found")
    return _ok(submission=submission.model_dump(mode="json"))


@router.delete("/admin/submissions/{submission_id}")
def delete_submission(submission_id: str, repository: Repository = Depends(get_repository)):
    try:
        deleted = repository.delete_submission(submission_id)
    except PersistenceError as e:
        return _storage_error(e)
    if not deleted:
        return _error(404, "Submission not found")
    return _ok(message="Submission deleted successfully")


@router.get("/admin/forms/{form_id}")
def get_admin_form(form_id: str, repository: Repository = Depends(get_repository)):
    """Full form definition, validation code included, with its summary."""
    try:
        schema = repository.get_form(form_id)
        summary = repository.get_form_summary(form_id) if schema is not None else None
    except PersistenceError as e:
        return _storage_error(e)
    if schema is None:
        return _error(404, "Form not found")
    return _ok(
        form=schema.model_dump(mode="json", by_alias=True),
        summary=summary.model_dump(mode="json") if summary is not None else None,
    )


@router.delete("/admin/forms/{form_id}")
def delete_form(form_id: str, repository: Repository = Depends(get_repository)):
    try:
        deleted = repository.delete_form(form_id)
    except PersistenceError as e:
        return _storage_error(e)
    if not deleted:
        return _error(404, "Form not found")
    return _ok(message="Form deleted successfully")
