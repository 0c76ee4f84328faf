"""
Tier-fallback repository.

Chains backends from most to least durable (typically SQLite, JSON files,
memory). A PersistenceError from one tier is logged and the operation is
retried against the next; gate errors (form missing or disabled) are
answers, not failures, and propagate immediately. Callers only see a
PersistenceError once every tier has failed.

A form published while the primary tier was down lives in a lower tier.
Reads therefore consult tiers in order. A lookup that finds nothing while
some tier failed raises PersistenceError rather than reporting absence.
A submission that falls back to a tier without the form copies the form
definition there first.
"""

import logging
from typing import Any, Callable, TypeVar

from campaignforms.core.errors import FormNotFoundError, PersistenceError
from campaignforms.core.schema import FormSchema, FormStatus
from campaignforms.storage.base import FormSummary, Repository, SubmissionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TieredRepository(Repository):
    """Repository that falls back through ``tiers`` in order.

    Args:
        tiers: Backends ordered from most to least durable. At least one.
    """

    name = "tiered"

    def __init__(self, tiers: list[Repository]):
        if not tiers:
            raise ValueError("TieredRepository needs at least one tier")
        super().__init__(tiers[0].share_base_url)
        self.tiers = list(tiers)

    # -----------------------------------------------------------------
    # Fallback helpers
    # -----------------------------------------------------------------

    def _first(self, operation: str, call: Callable[[Repository], T]) -> T:
        """Return the result of the first tier that does not fail."""
        failures: list[str] = []
        for tier in self.tiers:
            try:
                return call(tier)
            except PersistenceError as e:
                logger.warning("%s failed on %s tier, falling back: %s", operation, tier.name, e)
                failures.append(str(e))
        raise PersistenceError(self.name, f"{operation} failed on every tier: {'; '.join(failures)}")

    def _all(self, operation: str, call: Callable[[Repository], T]) -> list[tuple[Repository, T]]:
        """Run ``call`` on every tier, skipping failed ones unless all fail."""
        results: list[tuple[Repository, T]] = []
        failures: list[str] = []
        for tier in self.tiers:
            try:
                results.append((tier, call(tier)))
            except PersistenceError as e:
                logger.warning("%s failed on %s tier: %s", operation, tier.name, e)
                failures.append(str(e))
        if not results:
            raise PersistenceError(self.name, f"{operation} failed on every tier: {'; '.join(failures)}")
        return results

    def _lookup(self, operation: str, call: Callable[[Repository], T | None]) -> T | None:
        """Return the first tier's non-None answer.

        None means "absent" only when every tier answered. If some tier
        failed and none of the others found anything, the absence cannot be
        trusted and PersistenceError is raised instead.
        """
        failures: list[str] = []
        for tier in self.tiers:
            try:
                found = call(tier)
            except PersistenceError as e:
                logger.warning("%s failed on %s tier: %s", operation, tier.name, e)
                failures.append(str(e))
                continue
            if found is not None:
                return found
        if failures:
            raise PersistenceError(
                self.name,
                f"{operation} found nothing and some tiers failed: {'; '.join(failures)}",
            )
        return None

    # --- Forms ---

    def create_form(self, schema: FormSchema) -> str:
        return self._first("create_form", lambda tier: tier.create_form(schema))

    def get_form(self, form_id: str) -> FormSchema | None:
        return self._lookup("get_form", lambda tier: tier.get_form(form_id))

    def update_form(self, schema: FormSchema) -> bool:
        results = self._all("update_form", lambda tier: tier.update_form(schema))
        return any(updated for _, updated in results)

    def update_form_status(self, form_id: str, status: FormStatus) -> bool:
        results = self._all(
            "update_form_status",
            lambda tier: tier.update_form_status(form_id, status),
        )
        return any(updated for _, updated in results)

    def list_forms(self) -> list[FormSummary]:
        merged: dict[str, FormSummary] = {}
        for _, summaries in self._all("list_forms", lambda tier: tier.list_forms()):
            for summary in summaries:
                if summary.id in merged:
                    existing = merged[summary.id]
                    merged[summary.id] = existing.model_copy(
                        update={"submission_count": existing.submission_count + summary.submission_count}
                    )
                else:
                    merged[summary.id] = summary
        return sorted(merged.values(), key=lambda s: s.created_at, reverse=True)

    def get_form_summary(self, form_id: str) -> FormSummary | None:
        found = [
            summary
            for _, summary in self._all("get_form_summary", lambda tier: tier.get_form_summary(form_id))
            if summary is not None
        ]
        if not found:
            return None
        total = sum(s.submission_count for s in found)
        return found[0].model_copy(update={"submission_count": total})

    def delete_form(self, form_id: str) -> bool:
        results = self._all("delete_form", lambda tier: tier.delete_form(form_id))
        return any(deleted for _, deleted in results)

    # --- Submissions ---

    def create_submission(self, form_id: str, answers: dict[str, Any]) -> str:
        failures: list[str] = []
        for tier in self.tiers:
            try:
                try:
                    return tier.create_submission(form_id, answers)
                except FormNotFoundError:
                    if not failures:
                        continue
                    # A more durable tier failed; carry the form down with us
                    schema = self.get_form(form_id)
                    if schema is None:
                        continue
                    logger.info("Copying form %s into %s tier for fallback", form_id, tier.name)
                    tier.create_form(schema)
                    return tier.create_submission(form_id, answers)
            except PersistenceError as e:
                logger.warning(
                    "create_submission failed on %s tier, falling back: %s", tier.name, e
                )
                failures.append(str(e))

        if failures:
            raise PersistenceError(
                self.name,
                f"create_submission failed on every tier: {'; '.join(failures)}",
            )
        raise FormNotFoundError(form_id)

    def list_submissions(self, form_id: str) -> list[SubmissionRecord]:
        merged: dict[str, SubmissionRecord] = {}
        for _, records in self._all("list_submissions", lambda tier: tier.list_submissions(form_id)):
            for record in records:
                merged.setdefault(record.id, record)
        return sorted(merged.values(), key=lambda s: s.submitted_at, reverse=True)

    def list_all_submissions(self) -> list[SubmissionRecord]:
        merged: dict[str, SubmissionRecord] = {}
        for _, records in self._all("list_all_submissions", lambda tier: tier.list_all_submissions()):
            for record in records:
                merged.setdefault(record.id, record)
        return sorted(merged.values(), key=lambda s: s.submitted_at, reverse=True)

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        return self._lookup("get_submission", lambda tier: tier.get_submission(submission_id))

    def delete_submission(self, submission_id: str) -> bool:
        results = self._all("delete_submission", lambda tier: tier.delete_submission(submission_id))
        return any(deleted for _, deleted in results)
