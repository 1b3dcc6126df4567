"""
Pull request analysis and review comment endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path

from api.dependencies import (
    RepositoryContext,
    get_comment_submitter,
    get_orchestrator,
    get_repository_context,
)
from api.models.schemas import (
    CommentStatusRequest,
    CommentStatusResponse,
    JobStartResponse,
    PullRequestAnalyzeRequest,
    ReviewCommentsRequest,
)
from api.routers.helpers import start_job
from api.services.comment_submitter import CommentSubmitter, SubmissionReport
from api.services.job_orchestrator import GenerationRequest, JobOrchestrator, JobStatusView
from common.errors import AuthorizationError, CommentBatchInProgressError
from common.job_models import JobKind, SubjectKey

logger = logging.getLogger(__name__)

router = APIRouter()

PR_PATH = "/{organization_id}/{repo_key}/{pr_number}"


@router.post(f"{PR_PATH}/analyze", response_model=JobStartResponse)
async def analyze_pull_request(
    pr_number: int = Path(..., ge=1),
    request: Optional[PullRequestAnalyzeRequest] = Body(None),
    ctx: RepositoryContext = Depends(get_repository_context),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Start a risk analysis of the pull request.

    A completed analysis is returned as-is unless ``force`` is set.
    """
    return await start_job(
        orchestrator,
        GenerationRequest(
            kind=JobKind.PR_ANALYSIS,
            organization=ctx.organization,
            repository=ctx.repository,
            requested_by=ctx.uid,
            branch=ctx.repository.default_branch,
            pr_number=pr_number,
            force=request.force if request else False,
        ),
    )


@router.get(f"{PR_PATH}/analysis", response_model=JobStatusView, response_model_exclude_none=True)
async def get_pull_request_analysis(
    pr_number: int = Path(..., ge=1),
    ctx: RepositoryContext = Depends(get_repository_context),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    subject = SubjectKey.for_pull_request(ctx.organization.id, ctx.repository.id, pr_number)
    return await orchestrator.get_status(subject)


@router.post(f"{PR_PATH}/comments", response_model=SubmissionReport)
async def post_review_comments(
    request: ReviewCommentsRequest,
    pr_number: int = Path(..., ge=1),
    ctx: RepositoryContext = Depends(get_repository_context),
    submitter: CommentSubmitter = Depends(get_comment_submitter),
):
    """
    Post review comments to the pull request.

    Individual failures are reported per item; the batch itself only fails
    for missing access or a concurrent batch on the same pull request.
    """
    try:
        return await submitter.submit(
            ctx.organization, ctx.repository, pr_number, ctx.uid, request.comments
        )
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except CommentBatchInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as e:
        logger.exception("Posting comments on PR #%d failed", pr_number)
        raise HTTPException(status_code=500, detail=f"Failed to post review comments: {str(e)}")


@router.post(f"{PR_PATH}/comments/status", response_model=CommentStatusResponse)
async def get_review_comments_status(
    request: CommentStatusRequest,
    pr_number: int = Path(..., ge=1),
    ctx: RepositoryContext = Depends(get_repository_context),
    submitter: CommentSubmitter = Depends(get_comment_submitter),
):
    """Which of the offered comments are already posted, by content hash."""
    if not request.comments:
        return CommentStatusResponse(posted_hashes=[])
    hashes = submitter.posted_hashes(
        ctx.organization.id, ctx.repository.id, pr_number, request.comments
    )
    return CommentStatusResponse(posted_hashes=sorted(hashes))
