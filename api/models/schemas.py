from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from common.comment_models import ReviewComment
from common.job_models import GenerationJob

DocumentationScope = Literal["file", "module", "repository", "custom"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class DocumentationGenerateRequest(_CamelModel):
    """Request schema for documentation generation."""
    organization_id: str = Field(..., description="Organization id")
    repo_key: str = Field(..., description="Repository URL name or id")
    branch: Optional[str] = Field(None, description="Branch; defaults to the repository's default branch")
    scope: DocumentationScope = "repository"
    target: Optional[str] = Field(None, description="File or module path for file/module scope")
    prompt: Optional[str] = Field(None, description="Free-form request for custom scope")


class VisualTreeGenerateRequest(_CamelModel):
    organization_id: str
    repo_key: str
    branch: Optional[str] = None


class PullRequestAnalyzeRequest(_CamelModel):
    force: bool = Field(False, description="Re-run even if a completed analysis exists")


class JobStartResponse(_CamelModel):
    """Returned immediately when a generation job is requested."""

    status: str
    job_id: str
    message: str


class CancelResponse(_CamelModel):
    success: bool
    cancelled: bool


class ReviewCommentsRequest(_CamelModel):
    comments: List[ReviewComment] = Field(..., min_length=1)


class CommentStatusRequest(_CamelModel):
    comments: List[ReviewComment] = Field(default_factory=list)


class CommentStatusResponse(_CamelModel):
    posted_hashes: List[str]


class JobHistoryEntry(_CamelModel):
    job_id: str
    status: str
    branch: Optional[str] = None
    requested_by: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @classmethod
    def from_job(cls, job: GenerationJob) -> "JobHistoryEntry":
        return cls(
            job_id=job.job_id,
            status=job.status.value,
            branch=job.branch,
            requested_by=job.requested_by,
            created_at=job.created_at,
            completed_at=job.completed_at,
            error_message=job.error_message,
        )


class JobHistoryResponse(_CamelModel):
    jobs: List[JobHistoryEntry]
    total: int


class RepositoryTeardownResponse(_CamelModel):
    jobs_deleted: int
    comments_deleted: int
    repository_deleted: bool
