"""
Respondent sessions.

A session holds one respondent's VisibilityEngine between value-change
events. The visibility state is working state only: it is never persisted
and is discarded once the submission commits or the session expires.
"""

import logging
import threading
import time
import uuid
from typing import Any

from campaignforms.core.errors import SessionSubmittedError
from campaignforms.core.schema import FormSchema
from campaignforms.core.submission import SubmissionCoordinator, SubmissionResult
from campaignforms.core.visibility import VisibilityEngine, VisibilityUpdate

logger = logging.getLogger(__name__)

# Default session timeout: 30 minutes
DEFAULT_SESSION_TIMEOUT_SECONDS = 30 * 60


class RespondentSession:
    """One respondent filling in one form.

    Events and the submit are serialized by a per-session lock, so two
    concurrent submits of the same session commit at most once.

    Args:
        schema: The published form being filled in.
    """

    def __init__(self, schema: FormSchema):
        self.schema = schema
        self.engine = VisibilityEngine(schema)
        self.submission_id: str | None = None
        self.created_at: float = time.time()
        self.last_accessed_at: float = time.time()
        self._lock = threading.Lock()

    @property
    def form_id(self) -> str:
        return self.schema.id

    @property
    def is_submitted(self) -> bool:
        return self.submission_id is not None

    def touch(self) -> None:
        """Update the last accessed timestamp."""
        self.last_accessed_at = time.time()

    def is_expired(self, timeout_seconds: int = DEFAULT_SESSION_TIMEOUT_SECONDS) -> bool:
        return (time.time() - self.last_accessed_at) > timeout_seconds

    def set_value(self, field_id: str, value: Any) -> VisibilityUpdate:
        """Feed one value-change event to the visibility engine.

        Raises:
            KeyError: If the field does not exist in the schema.
            SessionSubmittedError: If the session has already been submitted.
        """
        with self._lock:
            if self.is_submitted:
                raise SessionSubmittedError(self.form_id)
            return self.engine.apply_change(field_id, value)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "form_id": self.form_id,
                "visibility": self.engine.state,
                "answers": self.engine.visible_answers(),
                "submitted": self.is_submitted,
            }

    def submit(
        self,
        coordinator: SubmissionCoordinator,
        validation_code: str | None = None,
    ) -> SubmissionResult:
        """Submit the session's visible answers with its live visibility state.

        On commit the working state is dropped; later events are refused.

        Raises:
            SessionSubmittedError: If the session has already been submitted.
        """
        with self._lock:
            if self.is_submitted:
                raise SessionSubmittedError(self.form_id)

            result = coordinator.submit(
                self.form_id,
                self.engine.visible_answers(),
                visibility=self.engine.state,
                validation_code=validation_code,
            )
            if result.committed:
                self.submission_id = result.submission_id
                self.engine = VisibilityEngine(self.schema)
            return result


class SessionStore:
    """In-memory store for respondent sessions.

    Thread-safe for basic use.
    """

    def __init__(self, timeout_seconds: int = DEFAULT_SESSION_TIMEOUT_SECONDS):
        self._sessions: dict[str, RespondentSession] = {}
        self._timeout_seconds = timeout_seconds
        self._lock = threading.RLock()

    def create_session(
        self,
        schema: FormSchema,
        session_id: str | None = None,
    ) -> tuple[str, RespondentSession]:
        """Start a new respondent session for a form.

        Args:
            schema: The published form.
            session_id: Optional custom ID. Auto-generated if not provided.

        Returns:
            Tuple of (session_id, RespondentSession).
        """
        if session_id is None:
            session_id = str(uuid.uuid4())

        session = RespondentSession(schema)
        with self._lock:
            self._sessions[session_id] = session
        logger.debug("Created session %s for form %s", session_id, schema.id)
        return session_id, session

    def get_session(self, session_id: str) -> RespondentSession | None:
        """Retrieve a session by ID.

        Returns None if the session doesn't exist or has expired.
        Automatically cleans up expired sessions.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.is_expired(self._timeout_seconds):
                del self._sessions[session_id]
                return None

        session.touch()
        return session

    def delete_session(self, session_id: str) -> bool:
        """Delete a session. Returns True if it existed."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def cleanup_expired(self) -> int:
        """Remove all expired sessions. Returns the count of removed sessions."""
        with self._lock:
            expired = [
                sid for sid, session in self._sessions.items()
                if session.is_expired(self._timeout_seconds)
            ]
            for sid in expired:
                del self._sessions[sid]
        return len(expired)

    def count(self) -> int:
        """Return the number of active sessions."""
        with self._lock:
            return len(self._sessions)
