import logging
from functools import lru_cache

import firebase_admin.auth
from fastapi import Depends, HTTPException, Path, Request
from pydantic import BaseModel

from api.services.comment_submitter import CommentSubmitter
from api.services.credential_resolver import CredentialResolver
from api.services.engine_client import EngineClient
from api.services.firebase_service import Directory, FirestoreDirectory, InMemoryDirectory
from api.services.github_service import GitHubService
from api.services.job_orchestrator import JobOrchestrator, JobRunner
from common.comment_store import CommentStore, FirestoreCommentStore
from common.comment_store_inmemory import InMemoryCommentStore
from common.config import Settings, get_settings
from common.firebase_init import get_firebase_app
from common.firebase_models import OrganizationRecord, RepositoryRecord
from common.job_store import FirestoreJobStore, JobStore
from common.job_store_inmemory import InMemoryJobStore

logger = logging.getLogger(__name__)


async def get_current_user(
    request: Request, settings: Settings = Depends(get_settings)
) -> dict:
    """Extract and verify Firebase ID token from Authorization header."""
    if not settings.auth_enabled:
        return {"uid": settings.dev_user_id}

    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    token = auth_header.split("Bearer ", 1)[1]
    try:
        decoded = firebase_admin.auth.verify_id_token(token, app=get_firebase_app())
        return decoded
    except Exception as e:
        logger.warning("Firebase token verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


# ── Singletons ────────────────────────────────────────────────────────────────


@lru_cache
def get_job_store() -> JobStore:
    if get_settings().store_backend == "memory":
        return InMemoryJobStore()
    return FirestoreJobStore()


@lru_cache
def get_comment_store() -> CommentStore:
    if get_settings().store_backend == "memory":
        return InMemoryCommentStore()
    return FirestoreCommentStore()


@lru_cache
def get_directory() -> Directory:
    if get_settings().store_backend == "memory":
        return InMemoryDirectory()
    return FirestoreDirectory()


@lru_cache
def get_github_service() -> GitHubService:
    return GitHubService(base_url=get_settings().github_base_url)


@lru_cache
def get_engine_client() -> EngineClient:
    settings = get_settings()
    return EngineClient(settings.analysis_engine_url, settings.engine_call_timeout_seconds)


@lru_cache
def get_job_runner() -> JobRunner:
    return JobRunner()


# ── Per-request services ──────────────────────────────────────────────────────


def get_credential_resolver(directory: Directory = Depends(get_directory)) -> CredentialResolver:
    return CredentialResolver(directory)


def get_orchestrator(
    store: JobStore = Depends(get_job_store),
    resolver: CredentialResolver = Depends(get_credential_resolver),
    engine: EngineClient = Depends(get_engine_client),
    github: GitHubService = Depends(get_github_service),
    runner: JobRunner = Depends(get_job_runner),
    settings: Settings = Depends(get_settings),
) -> JobOrchestrator:
    return JobOrchestrator(
        store,
        resolver,
        engine,
        github,
        runner,
        stale_after_seconds=settings.job_stale_after_seconds,
        error_max_chars=settings.error_message_max_chars,
    )


def get_comment_submitter(
    store: CommentStore = Depends(get_comment_store),
    resolver: CredentialResolver = Depends(get_credential_resolver),
    github: GitHubService = Depends(get_github_service),
    settings: Settings = Depends(get_settings),
) -> CommentSubmitter:
    return CommentSubmitter(store, resolver, github, lease_seconds=settings.comment_batch_lease_seconds)


# ── Organization / repository access ──────────────────────────────────────────


class RepositoryContext(BaseModel):
    uid: str
    organization: OrganizationRecord
    repository: RepositoryRecord


def load_repository_context(
    directory: Directory, uid: str, organization_id: str, repo_key: str
) -> RepositoryContext:
    """Look up the organization and repository, requiring ``uid`` to be a member."""
    organization = directory.get_organization(organization_id)
    if organization is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    if not organization.is_member(uid):
        raise HTTPException(status_code=403, detail="Not a member of this organization")
    repository = directory.get_repository(organization.id, repo_key)
    if repository is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    return RepositoryContext(uid=uid, organization=organization, repository=repository)


def get_repository_context(
    organization_id: str = Path(..., description="Organization id"),
    repo_key: str = Path(..., description="Repository URL name or id"),
    user: dict = Depends(get_current_user),
    directory: Directory = Depends(get_directory),
) -> RepositoryContext:
    return load_repository_context(directory, user["uid"], organization_id, repo_key)
