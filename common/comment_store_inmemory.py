"""In-memory comment store for local development and deterministic tests."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from common.comment_models import CommentBatchKey, ReviewComment, ReviewCommentRecord
from common.comment_store import apply_attempt


class InMemoryCommentStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.records: dict[tuple[str, str], ReviewCommentRecord] = {}
        self._leases: dict[str, tuple[str, datetime]] = {}

    def get(self, batch: CommentBatchKey, content_hash: str) -> Optional[ReviewCommentRecord]:
        with self._lock:
            record = self.records.get((batch.document_id, content_hash))
            return record.model_copy(deep=True) if record else None

    def _upsert_attempt(self, batch: CommentBatchKey, comment: ReviewComment, **attempt) -> ReviewCommentRecord:
        key = (batch.document_id, comment.content_hash)
        with self._lock:
            record = apply_attempt(self.records.get(key), batch, comment, **attempt)
            self.records[key] = record
            return record.model_copy(deep=True)

    def record_success(
        self,
        batch: CommentBatchKey,
        comment: ReviewComment,
        provider_comment_id: int,
        provider_comment_url: str,
        posted_by: Optional[str] = None,
    ) -> ReviewCommentRecord:
        return self._upsert_attempt(
            batch,
            comment,
            posted=True,
            provider_comment_id=provider_comment_id,
            provider_comment_url=provider_comment_url,
            posted_by=posted_by,
        )

    def record_failure(
        self, batch: CommentBatchKey, comment: ReviewComment, error: str
    ) -> ReviewCommentRecord:
        return self._upsert_attempt(batch, comment, posted=False, error=error)

    def posted_hashes(self, batch: CommentBatchKey, hashes: Iterable[str]) -> set[str]:
        with self._lock:
            return {
                h for h in hashes
                if (record := self.records.get((batch.document_id, h))) is not None and record.posted
            }

    def acquire_batch_lease(self, batch: CommentBatchKey, holder: str, ttl_seconds: int) -> bool:
        now = datetime.now(timezone.utc)
        with self._lock:
            current = self._leases.get(batch.document_id)
            if current and current[0] != holder and current[1] > now:
                return False
            self._leases[batch.document_id] = (holder, now + timedelta(seconds=ttl_seconds))
            return True

    def release_batch_lease(self, batch: CommentBatchKey, holder: str) -> None:
        with self._lock:
            current = self._leases.get(batch.document_id)
            if current and current[0] == holder:
                del self._leases[batch.document_id]

    def delete_for_repository(self, organization_id: str, repository_id: str) -> int:
        with self._lock:
            keys = [
                key for key, record in self.records.items()
                if record.organization_id == organization_id and record.repository_id == repository_id
            ]
            for key in keys:
                del self.records[key]
            return len(keys)
