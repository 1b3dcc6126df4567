from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_in_flight(self) -> bool:
        return self in IN_FLIGHT_STATUSES


IN_FLIGHT_STATUSES = frozenset({JobStatus.PENDING, JobStatus.GENERATING})


class JobKind(str, Enum):
    DOCUMENTATION = "documentation"
    VISUAL_TREE = "visual_tree"
    PR_ANALYSIS = "pr_analysis"


def short_digest(value: str, length: int = 12) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


class SubjectKey(BaseModel):
    """What a job is about: organization + repository + job kind (+ secondary id)."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    repository_id: str
    kind: JobKind
    secondary: Optional[str] = None

    @property
    def document_id(self) -> str:
        """Stable Firestore document id for the subject's latest-job record."""
        parts = [self.organization_id, self.repository_id, self.kind.value]
        if self.secondary:
            parts.append(self.secondary)
        return "__".join(p.replace("/", "_") for p in parts)

    def __str__(self) -> str:
        base = f"{self.organization_id}/{self.repository_id}:{self.kind.value}"
        return f"{base}#{self.secondary}" if self.secondary else base

    @classmethod
    def for_documentation(
        cls,
        organization_id: str,
        repository_id: str,
        scope: str = "repository",
        target: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> "SubjectKey":
        if scope == "custom" and prompt:
            secondary = f"custom-{short_digest(prompt)}"
        elif target:
            secondary = f"{scope}-{short_digest(target)}"
        else:
            secondary = scope
        return cls(
            organization_id=organization_id,
            repository_id=repository_id,
            kind=JobKind.DOCUMENTATION,
            secondary=secondary,
        )

    @classmethod
    def for_visual_tree(cls, organization_id: str, repository_id: str) -> "SubjectKey":
        return cls(
            organization_id=organization_id,
            repository_id=repository_id,
            kind=JobKind.VISUAL_TREE,
        )

    @classmethod
    def for_pull_request(
        cls, organization_id: str, repository_id: str, pr_number: int
    ) -> "SubjectKey":
        return cls(
            organization_id=organization_id,
            repository_id=repository_id,
            kind=JobKind.PR_ANALYSIS,
            secondary=str(pr_number),
        )


class ResultRef(BaseModel):
    """Pointer to a finished artifact.

    Externally stored artifacts carry the object key/bucket; inline results
    (and any metadata the engine returned alongside) live in ``content``.
    """

    s3_key: Optional[str] = None
    s3_bucket: Optional[str] = None
    content_size: Optional[int] = None
    content: Optional[dict[str, Any]] = None

    @property
    def is_external(self) -> bool:
        return bool(self.s3_key)


class GenerationJob(BaseModel):
    job_id: str
    subject: SubjectKey
    status: JobStatus = JobStatus.GENERATING
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    result_ref: Optional[ResultRef] = None
    error_message: Optional[str] = None
    branch: Optional[str] = None
    requested_by: Optional[str] = None
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_in_flight(self) -> bool:
        return self.status.is_in_flight

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()


class GenerationTaskPayload(BaseModel):
    """JSON body sent to the analysis engine."""

    github_token: str
    repo_full_name: str
    branch: Optional[str] = None
    organization_id: str
    organization_short_id: Optional[str] = None
    organization_name: Optional[str] = None
    repository_id: str
    repository_name: Optional[str] = None
    scope: Optional[str] = None
    target: Optional[str] = None
    prompt: Optional[str] = None
    pr_number: Optional[int] = None


def truncate_error(message: str, limit: int = 500) -> str:
    """Clip an error message to ``limit`` characters."""
    if len(message) <= limit:
        return message
    return message[: limit - 3] + "..."
