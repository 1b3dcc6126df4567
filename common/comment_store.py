"""Firestore-backed record of review comments posted to pull requests.

One document per (organization, repository, PR, content hash), so posting
identical content for the same location twice updates a single record.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Protocol

from firebase_admin import firestore

from common.comment_models import CommentBatchKey, ReviewComment, ReviewCommentRecord
from common.firebase_init import firestore_client

logger = logging.getLogger(__name__)

COMMENTS = "pr_comments"
BATCH_LEASES = "pr_comment_batches"


class CommentStore(Protocol):
    def get(self, batch: CommentBatchKey, content_hash: str) -> Optional[ReviewCommentRecord]: ...

    def record_success(
        self,
        batch: CommentBatchKey,
        comment: ReviewComment,
        provider_comment_id: int,
        provider_comment_url: str,
        posted_by: Optional[str] = None,
    ) -> ReviewCommentRecord: ...

    def record_failure(
        self, batch: CommentBatchKey, comment: ReviewComment, error: str
    ) -> ReviewCommentRecord: ...

    def posted_hashes(self, batch: CommentBatchKey, hashes: Iterable[str]) -> set[str]: ...

    def acquire_batch_lease(self, batch: CommentBatchKey, holder: str, ttl_seconds: int) -> bool: ...

    def release_batch_lease(self, batch: CommentBatchKey, holder: str) -> None: ...

    def delete_for_repository(self, organization_id: str, repository_id: str) -> int: ...


def apply_attempt(
    existing: Optional[ReviewCommentRecord],
    batch: CommentBatchKey,
    comment: ReviewComment,
    *,
    posted: bool,
    provider_comment_id: Optional[int] = None,
    provider_comment_url: Optional[str] = None,
    error: Optional[str] = None,
    posted_by: Optional[str] = None,
) -> ReviewCommentRecord:
    """Fold one post attempt into the (possibly missing) record.

    A record that was posted once stays posted; a later failure only sets
    ``post_error``.
    """
    now = datetime.now(timezone.utc)
    record = existing or ReviewCommentRecord(
        organization_id=batch.organization_id,
        repository_id=batch.repository_id,
        pr_number=batch.pr_number,
        comment_hash=comment.content_hash,
        path=comment.path or "",
        line=comment.line,
        side=comment.side,
        body=comment.body or "",
        severity=comment.severity,
        issue_type=comment.issue_type,
        created_at=now,
        updated_at=now,
    )
    record = record.model_copy(deep=True)
    record.post_attempts += 1
    record.updated_at = now
    if posted:
        record.posted = True
        record.posted_at = now
        record.provider_comment_id = provider_comment_id
        record.provider_comment_url = provider_comment_url
        record.post_error = None
        if posted_by:
            record.posted_by = posted_by
    else:
        record.post_error = error
    return record


def _to_doc(record: ReviewCommentRecord) -> dict:
    return record.model_dump(mode="json", by_alias=True)


class FirestoreCommentStore:
    """Review comment records and per-PR batch leases in Firestore."""

    def __init__(self, db=None):
        self._db = db or firestore_client()

    def _ref(self, batch: CommentBatchKey, content_hash: str):
        return self._db.collection(COMMENTS).document(f"{batch.document_id}__{content_hash}")

    def get(self, batch: CommentBatchKey, content_hash: str) -> Optional[ReviewCommentRecord]:
        doc = self._ref(batch, content_hash).get()
        if not doc.exists:
            return None
        return ReviewCommentRecord.model_validate(doc.to_dict())

    def _upsert_attempt(self, batch: CommentBatchKey, comment: ReviewComment, **attempt) -> ReviewCommentRecord:
        ref = self._ref(batch, comment.content_hash)

        @firestore.transactional
        def _apply(transaction):
            snapshot = ref.get(transaction=transaction)
            existing = (
                ReviewCommentRecord.model_validate(snapshot.to_dict()) if snapshot.exists else None
            )
            record = apply_attempt(existing, batch, comment, **attempt)
            transaction.set(ref, _to_doc(record))
            return record

        return _apply(self._db.transaction())

    def record_success(
        self,
        batch: CommentBatchKey,
        comment: ReviewComment,
        provider_comment_id: int,
        provider_comment_url: str,
        posted_by: Optional[str] = None,
    ) -> ReviewCommentRecord:
        record = self._upsert_attempt(
            batch,
            comment,
            posted=True,
            provider_comment_id=provider_comment_id,
            provider_comment_url=provider_comment_url,
            posted_by=posted_by,
        )
        logger.info("Recorded posted comment %s on %s", record.comment_hash, batch)
        return record

    def record_failure(
        self, batch: CommentBatchKey, comment: ReviewComment, error: str
    ) -> ReviewCommentRecord:
        record = self._upsert_attempt(batch, comment, posted=False, error=error)
        logger.info(
            "Recorded failed comment %s on %s (attempt %d)",
            record.comment_hash, batch, record.post_attempts,
        )
        return record

    def posted_hashes(self, batch: CommentBatchKey, hashes: Iterable[str]) -> set[str]:
        refs = [self._ref(batch, h) for h in set(hashes)]
        if not refs:
            return set()
        posted: set[str] = set()
        for doc in self._db.get_all(refs):
            if doc.exists and doc.to_dict().get("posted"):
                posted.add(doc.to_dict().get("commentHash"))
        return posted

    def acquire_batch_lease(self, batch: CommentBatchKey, holder: str, ttl_seconds: int) -> bool:
        """Take the per-PR batch lease unless another holder has an unexpired one."""
        ref = self._db.collection(BATCH_LEASES).document(batch.document_id)
        now = datetime.now(timezone.utc)

        @firestore.transactional
        def _acquire(transaction):
            snapshot = ref.get(transaction=transaction)
            if snapshot.exists:
                data = snapshot.to_dict()
                expires_at = datetime.fromisoformat(data["expiresAt"])
                if data.get("holder") != holder and expires_at > now:
                    return False
            transaction.set(ref, {
                "holder": holder,
                "expiresAt": (now + timedelta(seconds=ttl_seconds)).isoformat(),
            })
            return True

        return _acquire(self._db.transaction())

    def release_batch_lease(self, batch: CommentBatchKey, holder: str) -> None:
        ref = self._db.collection(BATCH_LEASES).document(batch.document_id)

        @firestore.transactional
        def _release(transaction):
            snapshot = ref.get(transaction=transaction)
            if snapshot.exists and snapshot.to_dict().get("holder") == holder:
                transaction.delete(ref)

        _release(self._db.transaction())

    def delete_for_repository(self, organization_id: str, repository_id: str) -> int:
        """Delete every comment record of a repository. Returns records removed."""
        docs = (
            self._db.collection(COMMENTS)
            .where("organizationId", "==", organization_id)
            .where("repositoryId", "==", repository_id)
            .stream()
        )
        removed = 0
        for doc in docs:
            doc.reference.delete()
            removed += 1
        logger.info("Deleted %d comment records for %s/%s", removed, organization_id, repository_id)
        return removed
