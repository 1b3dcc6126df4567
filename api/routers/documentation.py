"""
Documentation generation endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    RepositoryContext,
    get_current_user,
    get_directory,
    get_orchestrator,
    get_repository_context,
    load_repository_context,
)
from api.models.schemas import DocumentationGenerateRequest, DocumentationScope, JobStartResponse
from api.routers.helpers import start_job
from api.services.firebase_service import Directory
from api.services.job_orchestrator import GenerationRequest, JobOrchestrator, JobStatusView
from common.job_models import JobKind, SubjectKey

router = APIRouter()


@router.post("/generate", response_model=JobStartResponse)
async def generate_documentation(
    request: DocumentationGenerateRequest,
    user: dict = Depends(get_current_user),
    directory: Directory = Depends(get_directory),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Start documentation generation for a repository scope.

    ``custom`` scope with a prompt is answered by the engine's retrieval
    endpoint; every other scope uses the regular documentation endpoint.
    """
    ctx = load_repository_context(directory, user["uid"], request.organization_id, request.repo_key)
    return await start_job(
        orchestrator,
        GenerationRequest(
            kind=JobKind.DOCUMENTATION,
            organization=ctx.organization,
            repository=ctx.repository,
            requested_by=ctx.uid,
            branch=request.branch or ctx.repository.default_branch,
            scope=request.scope,
            target=request.target,
            prompt=request.prompt,
        ),
    )


@router.get(
    "/{organization_id}/{repo_key}/status",
    response_model=JobStatusView,
    response_model_exclude_none=True,
)
async def get_documentation_status(
    scope: DocumentationScope = Query("repository"),
    target: Optional[str] = Query(None),
    prompt: Optional[str] = Query(None),
    ctx: RepositoryContext = Depends(get_repository_context),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    subject = SubjectKey.for_documentation(
        ctx.organization.id, ctx.repository.id, scope, target, prompt
    )
    return await orchestrator.get_status(subject)
