from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CommentSide = Literal["LEFT", "RIGHT"]


def comment_hash(path: str, line: Optional[int], body: str) -> str:
    """Content identity of a review comment (16 hex chars of SHA-256 over path:line:body)."""
    raw = f"{path}:{'null' if line is None else line}:{body}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


class ReviewComment(BaseModel):
    """A generated review comment offered for posting.

    ``path`` and ``body`` are optional here so that one malformed item is
    reported per-item instead of rejecting the whole batch.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    path: Optional[str] = None
    line: Optional[int] = None
    side: Optional[CommentSide] = None
    body: Optional[str] = None
    severity: Optional[str] = None
    issue_type: Optional[str] = None
    code_snippet: Optional[str] = None

    @property
    def content_hash(self) -> str:
        return comment_hash(self.path or "", self.line, self.body or "")


class CommentBatchKey(BaseModel):
    """Identifies the pull request a comment batch belongs to."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    repository_id: str
    pr_number: int

    @property
    def document_id(self) -> str:
        parts = [self.organization_id, self.repository_id, str(self.pr_number)]
        return "__".join(p.replace("/", "_") for p in parts)

    def __str__(self) -> str:
        return f"{self.organization_id}/{self.repository_id}#{self.pr_number}"


class ReviewCommentRecord(BaseModel):
    """
    Posting outcome of one review comment.

    Stored at: pr_comments/{org}__{repo}__{pr}__{commentHash}
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    organization_id: str
    repository_id: str
    pr_number: int
    comment_hash: str

    path: str
    line: Optional[int] = None
    side: Optional[CommentSide] = None
    body: str
    severity: Optional[str] = None
    issue_type: Optional[str] = None

    posted: bool = False
    posted_at: Optional[datetime] = None
    provider_comment_id: Optional[int] = None
    provider_comment_url: Optional[str] = None
    post_error: Optional[str] = None
    post_attempts: int = 0
    posted_by: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class PostedComment(BaseModel):
    """What the provider returned for a created comment."""

    id: int
    url: str = ""
    anchored: bool = Field(default=False, description="True for a line-anchored review comment")
