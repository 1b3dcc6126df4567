"""
Repository structure visualization endpoints.
"""

import logging

from fastapi import APIRouter, Depends

from api.dependencies import (
    RepositoryContext,
    get_current_user,
    get_directory,
    get_orchestrator,
    get_repository_context,
    load_repository_context,
)
from api.models.schemas import CancelResponse, JobStartResponse, VisualTreeGenerateRequest
from api.routers.helpers import start_job
from api.services.firebase_service import Directory
from api.services.job_orchestrator import GenerationRequest, JobOrchestrator, JobStatusView
from common.job_models import JobKind, SubjectKey

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate", response_model=JobStartResponse)
async def generate_visual_tree(
    request: VisualTreeGenerateRequest,
    user: dict = Depends(get_current_user),
    directory: Directory = Depends(get_directory),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    ctx = load_repository_context(directory, user["uid"], request.organization_id, request.repo_key)
    return await start_job(
        orchestrator,
        GenerationRequest(
            kind=JobKind.VISUAL_TREE,
            organization=ctx.organization,
            repository=ctx.repository,
            requested_by=ctx.uid,
            branch=request.branch or ctx.repository.default_branch,
        ),
    )


@router.get(
    "/{organization_id}/{repo_key}",
    response_model=JobStatusView,
    response_model_exclude_none=True,
)
async def get_visual_tree(
    ctx: RepositoryContext = Depends(get_repository_context),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Latest visualization: the tree itself, progress, or the failure with the last good tree."""
    subject = SubjectKey.for_visual_tree(ctx.organization.id, ctx.repository.id)
    return await orchestrator.get_status(subject)


@router.post("/{organization_id}/{repo_key}/cancel", response_model=CancelResponse)
async def cancel_visual_tree(
    ctx: RepositoryContext = Depends(get_repository_context),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    subject = SubjectKey.for_visual_tree(ctx.organization.id, ctx.repository.id)
    cancelled = orchestrator.cancel(subject)
    logger.info("Cancel requested for %s by %s (cancelled=%s)", subject, ctx.uid, cancelled)
    return CancelResponse(success=True, cancelled=cancelled)
