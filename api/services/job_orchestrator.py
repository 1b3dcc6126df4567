"""Generation job lifecycle: start, detached engine call, status polling, cancel.

A request never waits on the analysis engine. ``start`` creates the job
record, hands the engine call to the :class:`JobRunner` and returns; the
runner's task writes the outcome back to the job store whenever the engine
answers. ``get_status`` is the only read path and also heals jobs whose
worker died without writing an outcome.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from api.services.credential_resolver import CredentialResolver, repo_full_name
from api.services.engine_client import EngineClient, to_result_ref
from api.services.github_service import GitHubService
from common.errors import AuthorizationError, StaleJobError, UpstreamCallError
from common.firebase_models import OrganizationRecord, RepositoryRecord
from common.job_models import (
    GenerationJob,
    GenerationTaskPayload,
    JobKind,
    JobStatus,
    SubjectKey,
    truncate_error,
)
from common.job_store import JobStore

logger = logging.getLogger(__name__)

GENERATION_TIMED_OUT = "Generation timed out"
GENERATION_CANCELLED = "Generation cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Background runner ─────────────────────────────────────────────────────────


class JobRunner:
    """Owns the detached engine-call tasks.

    Tasks are referenced here until they finish so they are never garbage
    collected mid-flight; nothing ties them to the request that spawned them.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, None], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s crashed", task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait until every task spawned so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks; their jobs are healed later by the staleness check."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d background generation task(s)", len(tasks))


# ── Request / response models ─────────────────────────────────────────────────


class GenerationRequest(BaseModel):
    """Everything needed to start one generation job."""

    kind: JobKind
    organization: OrganizationRecord
    repository: RepositoryRecord
    requested_by: str
    branch: Optional[str] = None
    scope: str = "repository"
    target: Optional[str] = None
    prompt: Optional[str] = None
    pr_number: Optional[int] = None
    force: bool = False

    @property
    def subject(self) -> SubjectKey:
        org_id, repo_id = self.organization.id, self.repository.id
        if self.kind == JobKind.DOCUMENTATION:
            return SubjectKey.for_documentation(org_id, repo_id, self.scope, self.target, self.prompt)
        if self.kind == JobKind.VISUAL_TREE:
            return SubjectKey.for_visual_tree(org_id, repo_id)
        return SubjectKey.for_pull_request(org_id, repo_id, self.pr_number)

    @property
    def is_custom_prompt(self) -> bool:
        return self.kind == JobKind.DOCUMENTATION and self.scope == "custom" and bool(self.prompt)


def engine_path(request: GenerationRequest) -> str:
    if request.kind == JobKind.DOCUMENTATION:
        return "/api/generate-docs-rag" if request.is_custom_prompt else "/api/generate-documentation"
    if request.kind == JobKind.VISUAL_TREE:
        return "/api/generate-visual-tree"
    return "/api/analyze-pull-request"


class FallbackResult(BaseModel):
    """Last good artifact, offered alongside a failure. Not authoritative."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    job_id: str
    result: Any = None
    metadata: dict[str, Any] = {}


class JobStatusView(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    status: Literal["none", "generating", "completed", "failed"]
    job_id: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    elapsed_ms: Optional[int] = None
    metadata: Optional[dict[str, Any]] = None
    fallback: Optional[FallbackResult] = None


# ── Orchestrator ──────────────────────────────────────────────────────────────


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        resolver: CredentialResolver,
        engine: EngineClient,
        github: GitHubService,
        runner: JobRunner,
        *,
        stale_after_seconds: float,
        error_max_chars: int = 500,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.resolver = resolver
        self.engine = engine
        self.github = github
        self.runner = runner
        self.stale_after_seconds = stale_after_seconds
        self.error_max_chars = error_max_chars
        self.clock = clock

    # ── Start ─────────────────────────────────────────────────────────────

    async def start(self, request: GenerationRequest) -> tuple[GenerationJob, bool]:
        """
        Start a job for the request's subject unless one is already in flight.

        Returns:
            ``(job, True)`` for a freshly started job, or ``(existing_job, False)``
            when an in-flight job (or, for PR analysis without ``force``, a
            completed one) already answers the request. No engine call is made
            in the second case.

        Raises:
            AuthorizationError: no credential candidate qualifies; no job is created
            ProviderCallError: PR metadata could not be fetched; no job is created
        """
        subject = request.subject
        latest = self.store.get_latest(subject)
        if latest is not None:
            latest = self._heal_if_stale(latest)
            if latest.is_in_flight:
                logger.info("Job %s already in flight for %s", latest.job_id, subject)
                return latest, False
            if (
                request.kind == JobKind.PR_ANALYSIS
                and latest.status == JobStatus.COMPLETED
                and not request.force
            ):
                return latest, False

        full_name = repo_full_name(request.repository)
        resolved = await self.resolver.resolve_token(
            request.requested_by,
            request.organization.id,
            request.repository.url_name,
            live_test=self.github.test_repository_access,
        )
        if resolved is None:
            raise AuthorizationError(f"No GitHub access available for {full_name}")

        params: dict[str, Any] = {}
        if request.kind == JobKind.DOCUMENTATION:
            params = {"scope": request.scope, "target": request.target, "prompt": request.prompt}
        elif request.kind == JobKind.PR_ANALYSIS:
            params = {
                "pr_number": request.pr_number,
                "pull_request": await self.github.get_pull_request(
                    resolved.token, full_name, request.pr_number
                ),
            }

        now = self.clock()
        job = GenerationJob(
            job_id=uuid.uuid4().hex,
            subject=subject,
            status=JobStatus.GENERATING,
            created_at=now,
            updated_at=now,
            branch=request.branch,
            requested_by=request.requested_by,
            params={k: v for k, v in params.items() if v is not None},
        )
        job, created = self.store.create_if_idle(job)
        if not created:
            logger.info("Lost start race for %s; returning job %s", subject, job.job_id)
            return job, False

        payload = self._payload(request, resolved.token, full_name)
        self.runner.spawn(
            self._run(job, engine_path(request), payload),
            name=f"generate-{job.job_id}",
        )
        logger.info("Started %s job %s (token tier: %s)", subject, job.job_id, resolved.tier)
        return job, True

    def _payload(self, request: GenerationRequest, token: str, full_name: str) -> dict[str, Any]:
        payload = GenerationTaskPayload(
            github_token=token,
            repo_full_name=full_name,
            branch=request.branch,
            organization_id=request.organization.id,
            organization_short_id=request.organization.short_id,
            organization_name=request.organization.name,
            repository_id=request.repository.id,
            repository_name=request.repository.name,
        )
        if request.kind == JobKind.DOCUMENTATION:
            payload.scope = request.scope
            if request.is_custom_prompt:
                payload.prompt = request.prompt
            else:
                payload.target = request.target
        elif request.kind == JobKind.PR_ANALYSIS:
            payload.pr_number = request.pr_number
        return payload.model_dump(exclude_none=True)

    async def _run(self, job: GenerationJob, path: str, payload: dict[str, Any]) -> None:
        """Detached continuation: call the engine and record the outcome."""
        try:
            response = await self.engine.run(path, payload)
        except UpstreamCallError as exc:
            self._record_failure(job, str(exc))
            return
        except Exception as exc:
            logger.exception("Unexpected error while generating job %s", job.job_id)
            self._record_failure(job, str(exc) or exc.__class__.__name__)
            return

        applied = self.store.transition(
            job.subject, job.job_id, JobStatus.COMPLETED, result_ref=to_result_ref(response)
        )
        if applied:
            logger.info("Job %s completed", job.job_id)
        else:
            logger.info("Discarded result of job %s: no longer in flight", job.job_id)

    def _record_failure(self, job: GenerationJob, message: str) -> None:
        logger.warning("Job %s failed: %s", job.job_id, message)
        self.store.transition(
            job.subject,
            job.job_id,
            JobStatus.FAILED,
            error_message=truncate_error(message, self.error_max_chars),
        )

    # ── Status ────────────────────────────────────────────────────────────

    def _check_fresh(self, job: GenerationJob) -> None:
        if job.is_in_flight:
            age = job.age_seconds(self.clock())
            if age > self.stale_after_seconds:
                raise StaleJobError(job.job_id, age)

    def _heal_if_stale(self, job: GenerationJob) -> GenerationJob:
        """Fail a job whose worker evidently died; return the current latest job."""
        try:
            self._check_fresh(job)
            return job
        except StaleJobError as exc:
            logger.warning("%s; marking as failed", exc)
            self.store.transition(
                job.subject, job.job_id, JobStatus.FAILED, error_message=GENERATION_TIMED_OUT
            )
        # A completion may have won the race; the store holds the answer.
        return self.store.get_latest(job.subject) or job

    async def get_status(self, subject: SubjectKey) -> JobStatusView:
        job = self.store.get_latest(subject)
        if job is None:
            return JobStatusView(status="none")

        job = self._heal_if_stale(job)

        if job.is_in_flight:
            elapsed = job.age_seconds(self.clock())
            return JobStatusView(
                status="generating",
                job_id=job.job_id,
                started_at=job.created_at,
                elapsed_ms=max(0, int(elapsed * 1000)),
                metadata=self._metadata(job),
            )

        if job.status == JobStatus.COMPLETED:
            return JobStatusView(
                status="completed",
                job_id=job.job_id,
                result=await self._load_result(job),
                metadata=self._metadata(job),
            )

        view = JobStatusView(
            status="failed",
            job_id=job.job_id,
            error=job.error_message or "Generation failed",
            metadata=self._metadata(job),
        )
        previous = self.store.get_latest_completed(subject, exclude_job_id=job.job_id)
        if previous is not None:
            view.fallback = FallbackResult(
                job_id=previous.job_id,
                result=await self._load_result(previous),
                metadata=self._metadata(previous),
            )
        return view

    async def _load_result(self, job: GenerationJob) -> Any:
        ref = job.result_ref
        if ref is None:
            return None
        if not ref.is_external:
            return ref.content
        content = await self.engine.fetch_artifact(ref)
        if content is not None and job.subject.kind == JobKind.VISUAL_TREE:
            try:
                return json.loads(content)
            except ValueError:
                logger.warning("Visual tree artifact %s is not valid JSON", ref.s3_key)
                return None
        return content

    @staticmethod
    def _metadata(job: GenerationJob) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "branch": job.branch,
            "createdAt": job.created_at.isoformat(),
            "updatedAt": job.updated_at.isoformat(),
            "completedAt": job.completed_at.isoformat() if job.completed_at else None,
            **job.params,
        }
        ref = job.result_ref
        if ref is not None and ref.is_external:
            meta["contentSize"] = ref.content_size
            meta.update(ref.content or {})
        return meta

    # ── Cancel / history ──────────────────────────────────────────────────

    def cancel(self, subject: SubjectKey) -> bool:
        """Fail the in-flight job for ``subject``. The remote call keeps running;
        its result is discarded when it arrives.
        """
        job = self.store.get_latest(subject)
        if job is None or not job.is_in_flight:
            return False
        cancelled = self.store.transition(
            subject, job.job_id, JobStatus.FAILED, error_message=GENERATION_CANCELLED
        )
        if cancelled:
            logger.info("Cancelled job %s for %s", job.job_id, subject)
        return cancelled

    def history(self, subject: SubjectKey, limit: int = 20) -> list[GenerationJob]:
        return self.store.list_history(subject, limit=limit)
