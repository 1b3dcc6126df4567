"""
Repository teardown endpoint.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import (
    RepositoryContext,
    get_comment_store,
    get_directory,
    get_job_store,
    get_repository_context,
)
from api.models.schemas import RepositoryTeardownResponse
from api.services.firebase_service import Directory
from common.comment_store import CommentStore
from common.job_store import JobStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.delete("/{organization_id}/{repo_key}", response_model=RepositoryTeardownResponse)
async def delete_repository(
    ctx: RepositoryContext = Depends(get_repository_context),
    job_store: JobStore = Depends(get_job_store),
    comment_store: CommentStore = Depends(get_comment_store),
    directory: Directory = Depends(get_directory),
):
    """
    Detach a repository from its organization.

    Removes every generation job, history entry and review comment record of
    the repository, then the repository document itself. Only the
    organization owner or the user who attached the repository may do this.
    """
    org, repo = ctx.organization, ctx.repository
    if ctx.uid not in (org.owner_id, repo.added_by):
        raise HTTPException(status_code=403, detail="Only the organization owner or the repository's owner can remove it")

    try:
        jobs_deleted = job_store.delete_for_repository(org.id, repo.id)
        comments_deleted = comment_store.delete_for_repository(org.id, repo.id)
        repository_deleted = directory.delete_repository(org.id, repo.url_name)
    except Exception as e:
        logger.exception("Teardown of %s/%s failed", org.id, repo.url_name)
        raise HTTPException(status_code=500, detail=f"Failed to delete repository: {str(e)}")
    logger.info(
        "Removed repository %s/%s: %d jobs, %d comment records",
        org.id, repo.url_name, jobs_deleted, comments_deleted,
    )
    return RepositoryTeardownResponse(
        jobs_deleted=jobs_deleted,
        comments_deleted=comments_deleted,
        repository_deleted=repository_deleted,
    )
