"""In-memory job store for local development and deterministic tests."""

from __future__ import annotations

import threading
from typing import Iterable, Optional

from common.job_models import (
    IN_FLIGHT_STATUSES,
    GenerationJob,
    JobStatus,
    ResultRef,
    SubjectKey,
)
from common.job_store import transition_fields


class InMemoryJobStore:
    """Same contract as FirestoreJobStore; a process-wide lock stands in for transactions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: dict[str, GenerationJob] = {}
        self._history: dict[str, list[GenerationJob]] = {}

    def get_latest(self, subject: SubjectKey) -> Optional[GenerationJob]:
        with self._lock:
            job = self._latest.get(subject.document_id)
            return job.model_copy(deep=True) if job else None

    def create_if_idle(self, job: GenerationJob) -> tuple[GenerationJob, bool]:
        key = job.subject.document_id
        with self._lock:
            current = self._latest.get(key)
            if current is not None and current.is_in_flight:
                return current.model_copy(deep=True), False
            self._latest[key] = job.model_copy(deep=True)
            self._history.setdefault(key, []).append(job.model_copy(deep=True))
            return job, True

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
        key = subject.document_id
        expected = set(expected)
        with self._lock:
            current = self._latest.get(key)
            if current is None or current.job_id != job_id or current.status not in expected:
                return False
            updates = transition_fields(status, result_ref, error_message)
            updated = GenerationJob(**{**current.model_dump(mode="json"), **updates})
            self._latest[key] = updated
            entries = self._history.get(key, [])
            for i, entry in enumerate(entries):
                if entry.job_id == job_id:
                    entries[i] = updated.model_copy(deep=True)
            return True

    def get_latest_completed(
        self, subject: SubjectKey, exclude_job_id: Optional[str] = None
    ) -> Optional[GenerationJob]:
        for job in self.list_history(subject, limit=0):
            if job.status == JobStatus.COMPLETED and job.job_id != exclude_job_id:
                return job
        return None

    def list_history(self, subject: SubjectKey, limit: int = 20) -> list[GenerationJob]:
        """Newest first; ``limit=0`` returns everything."""
        with self._lock:
            entries = sorted(
                self._history.get(subject.document_id, []),
                key=lambda j: j.created_at,
                reverse=True,
            )
            if limit:
                entries = entries[:limit]
            return [j.model_copy(deep=True) for j in entries]

    def delete_for_repository(self, organization_id: str, repository_id: str) -> int:
        with self._lock:
            keys = [
                key
                for key, job in self._latest.items()
                if job.subject.organization_id == organization_id
                and job.subject.repository_id == repository_id
            ]
            removed = 0
            for key in keys:
                removed += len(self._history.pop(key, []))
                del self._latest[key]
            return removed
