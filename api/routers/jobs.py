"""
Job history endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import RepositoryContext, get_orchestrator, get_repository_context
from api.models.schemas import DocumentationScope, JobHistoryEntry, JobHistoryResponse
from api.services.job_orchestrator import JobOrchestrator
from common.job_models import JobKind, SubjectKey

router = APIRouter()


@router.get("/{organization_id}/{repo_key}/{kind}/history", response_model=JobHistoryResponse)
async def get_job_history(
    kind: JobKind,
    scope: DocumentationScope = Query("repository"),
    target: Optional[str] = Query(None),
    prompt: Optional[str] = Query(None),
    pr_number: Optional[int] = Query(None, ge=1),
    limit: int = Query(20, ge=1, le=100),
    ctx: RepositoryContext = Depends(get_repository_context),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Past jobs for one subject, newest first."""
    org_id, repo_id = ctx.organization.id, ctx.repository.id
    if kind == JobKind.DOCUMENTATION:
        subject = SubjectKey.for_documentation(org_id, repo_id, scope, target, prompt)
    elif kind == JobKind.VISUAL_TREE:
        subject = SubjectKey.for_visual_tree(org_id, repo_id)
    else:
        if pr_number is None:
            raise HTTPException(status_code=400, detail="pr_number is required for pr_analysis history")
        subject = SubjectKey.for_pull_request(org_id, repo_id, pr_number)

    jobs = orchestrator.history(subject, limit=limit)
    return JobHistoryResponse(jobs=[JobHistoryEntry.from_job(j) for j in jobs], total=len(jobs))
