"""Firestore-backed store for generation jobs.

Layout::

    generation_jobs/{subject_id}                  latest job for the subject
    generation_jobs/{subject_id}/history/{job_id} every job ever started

All writes that depend on the current status run inside a Firestore
transaction, so concurrent API instances cannot both start a job for the
same subject and a late engine result cannot overwrite a terminal state.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol

from firebase_admin import firestore

from common.firebase_init import firestore_client
from common.job_models import (
    IN_FLIGHT_STATUSES,
    GenerationJob,
    JobStatus,
    ResultRef,
    SubjectKey,
)

logger = logging.getLogger(__name__)

COLLECTION = "generation_jobs"
HISTORY = "history"

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class JobStore(Protocol):
    """Operations the orchestrator needs from a job store."""

    def get_latest(self, subject: SubjectKey) -> Optional[GenerationJob]: ...

    def create_if_idle(self, job: GenerationJob) -> tuple[GenerationJob, bool]: ...

    def transition(
        self,
        subject: SubjectKey,
        job_id: str,
        status: JobStatus,
        *,
        expected: Iterable[JobStatus] = IN_FLIGHT_STATUSES,
        result_ref: Optional[ResultRef] = None,
        error_message: Optional[str] = None,
    ) -> bool: ...

    def get_latest_completed(
        self, subject: SubjectKey, exclude_job_id: Optional[str] = None
    ) -> Optional[GenerationJob]: ...

    def list_history(self, subject: SubjectKey, limit: int = 20) -> list[GenerationJob]: ...

    def delete_for_repository(self, organization_id: str, repository_id: str) -> int: ...


def transition_fields(
    status: JobStatus,
    result_ref: Optional[ResultRef] = None,
    error_message: Optional[str] = None,
) -> dict:
    """Build the partial document written by a status transition."""
    now = datetime.now(timezone.utc).isoformat()
    data: dict = {"status": status.value, "updated_at": now}
    if status in TERMINAL_STATUSES:
        data["completed_at"] = now
    if result_ref is not None:
        data["result_ref"] = result_ref.model_dump(mode="json")
    if error_message is not None:
        data["error_message"] = error_message
    return data


class FirestoreJobStore:
    """Generation jobs in Firestore, keyed by subject."""

    def __init__(self, db=None):
        self._db = db or firestore_client()

    def _latest_ref(self, subject: SubjectKey):
        return self._db.collection(COLLECTION).document(subject.document_id)

    def _history_ref(self, subject: SubjectKey, job_id: str):
        return self._latest_ref(subject).collection(HISTORY).document(job_id)

    def get_latest(self, subject: SubjectKey) -> Optional[GenerationJob]:
        """Fetch the most recent job for a subject. Returns ``None`` if never started."""
        doc = self._latest_ref(subject).get()
        if not doc.exists:
            return None
        return GenerationJob(**doc.to_dict())

    def create_if_idle(self, job: GenerationJob) -> tuple[GenerationJob, bool]:
        """Insert ``job`` as the subject's latest unless one is already in flight.

        Returns ``(job, True)`` when created, or ``(in_flight_job, False)``.
        """
        latest_ref = self._latest_ref(job.subject)
        history_ref = self._history_ref(job.subject, job.job_id)
        data = job.model_dump(mode="json")

        @firestore.transactional
        def _create(transaction):
            snapshot = latest_ref.get(transaction=transaction)
            if snapshot.exists:
                current = GenerationJob(**snapshot.to_dict())
                if current.is_in_flight:
                    return current, False
            transaction.set(latest_ref, data)
            transaction.set(history_ref, data)
            return job, True

        result, created = _create(self._db.transaction())
        if created:
            logger.info("Created %s job %s", job.subject, job.job_id)
        return result, created

    def transition(
        self,
        subject: SubjectKey,
        job_id: str,
        status: JobStatus,
        *,
        expected: Iterable[JobStatus] = IN_FLIGHT_STATUSES,
        result_ref: Optional[ResultRef] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move ``job_id`` to ``status`` only if it is still the latest job and
        its current status is one of ``expected``.

        Returns ``True`` if the write was applied.
        """
        expected_values = {s.value for s in expected}
        latest_ref = self._latest_ref(subject)
        history_ref = self._history_ref(subject, job_id)
        updates = transition_fields(status, result_ref, error_message)

        @firestore.transactional
        def _transition(transaction):
            snapshot = latest_ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            current = snapshot.to_dict()
            if current.get("job_id") != job_id or current.get("status") not in expected_values:
                return False
            transaction.update(latest_ref, updates)
            transaction.update(history_ref, updates)
            return True

        applied = _transition(self._db.transaction())
        if applied:
            logger.info("Job %s (%s) → %s", job_id, subject, status.value)
        return applied

    def get_latest_completed(
        self, subject: SubjectKey, exclude_job_id: Optional[str] = None
    ) -> Optional[GenerationJob]:
        """Most recent completed job for the subject, skipping ``exclude_job_id``."""
        docs = (
            self._latest_ref(subject)
            .collection(HISTORY)
            .where("status", "==", JobStatus.COMPLETED.value)
            .order_by("created_at", direction="DESCENDING")
            .limit(2)
            .stream()
        )
        for doc in docs:
            job = GenerationJob(**doc.to_dict())
            if job.job_id != exclude_job_id:
                return job
        return None

    def list_history(self, subject: SubjectKey, limit: int = 20) -> list[GenerationJob]:
        """Return past jobs for the subject, newest first."""
        docs = (
            self._latest_ref(subject)
            .collection(HISTORY)
            .order_by("created_at", direction="DESCENDING")
            .limit(limit)
            .stream()
        )
        return [GenerationJob(**doc.to_dict()) for doc in docs]

    def delete_for_repository(self, organization_id: str, repository_id: str) -> int:
        """Delete every job (latest and history) of a repository. Returns jobs removed."""
        docs = (
            self._db.collection(COLLECTION)
            .where("subject.organization_id", "==", organization_id)
            .where("subject.repository_id", "==", repository_id)
            .stream()
        )
        removed = 0
        for doc in docs:
            for entry in doc.reference.collection(HISTORY).stream():
                entry.reference.delete()
                removed += 1
            doc.reference.delete()
        logger.info("Deleted %d jobs for %s/%s", removed, organization_id, repository_id)
        return removed
