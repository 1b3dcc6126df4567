"""Tests for the job lifecycle: dedup, detached completion, staleness, fallback, cancel."""

import asyncio
import json

import pytest

from api.services.job_orchestrator import (
    GENERATION_CANCELLED,
    GENERATION_TIMED_OUT,
    GenerationRequest,
    JobRunner,
)
from common.errors import AuthorizationError, ProviderCallError
from common.job_models import JobKind, JobStatus, SubjectKey

from conftest import ORG_ID, REPO_ID


def _request(organization, repository, kind=JobKind.VISUAL_TREE, **kwargs) -> GenerationRequest:
    return GenerationRequest(
        kind=kind,
        organization=organization,
        repository=repository,
        requested_by=kwargs.pop("requested_by", "alice"),
        branch="main",
        **kwargs,
    )


async def _wait_for_engine(engine_stub, count=1):
    for _ in range(200):
        if len(engine_stub.requests) >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("engine was never called")


VISUAL_TREE = SubjectKey.for_visual_tree(ORG_ID, REPO_ID)


class TestStart:
    @pytest.mark.asyncio
    async def test_returns_generating_without_waiting_for_engine(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        engine_stub.gate.clear()
        job, created = await orchestrator.start(_request(organization, repository))
        assert created
        assert job.status == JobStatus.GENERATING

        await _wait_for_engine(engine_stub)
        status = await orchestrator.get_status(VISUAL_TREE)
        assert status.status == "generating"
        assert status.job_id == job.job_id

        engine_stub.gate.set()
        await runner.drain()

    @pytest.mark.asyncio
    async def test_in_flight_job_is_returned_without_new_engine_call(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        engine_stub.gate.clear()
        first, _ = await orchestrator.start(_request(organization, repository))
        await _wait_for_engine(engine_stub)
        second, created = await orchestrator.start(_request(organization, repository))

        assert not created
        assert second.job_id == first.job_id
        engine_stub.gate.set()
        await runner.drain()
        assert len(engine_stub.requests) == 1

    @pytest.mark.asyncio
    async def test_concurrent_starts_create_one_job(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        engine_stub.gate.clear()
        results = await asyncio.gather(
            *[orchestrator.start(_request(organization, repository)) for _ in range(5)]
        )
        assert sum(1 for _, created in results if created) == 1
        assert len({job.job_id for job, _ in results}) == 1
        engine_stub.gate.set()
        await runner.drain()
        assert len(engine_stub.requests) == 1

    @pytest.mark.asyncio
    async def test_no_credential_creates_no_job(
        self, orchestrator, organization, repository, directory, job_store, engine_stub
    ):
        for uid in ("alice", "bob", "olivia"):
            directory.users[uid].github = None
        with pytest.raises(AuthorizationError):
            await orchestrator.start(_request(organization, repository))
        assert job_store.get_latest(VISUAL_TREE) is None
        assert engine_stub.requests == []

    @pytest.mark.asyncio
    async def test_engine_payload(self, orchestrator, organization, repository, engine_stub, runner):
        await orchestrator.start(_request(organization, repository))
        await runner.drain()
        path, payload = engine_stub.requests[0]
        assert path == "/api/generate-visual-tree"
        assert payload == {
            "github_token": "tok-alice",
            "repo_full_name": "acme/widgets",
            "branch": "main",
            "organization_id": ORG_ID,
            "organization_short_id": "acme",
            "organization_name": "Acme",
            "repository_id": REPO_ID,
            "repository_name": "widgets",
        }

    @pytest.mark.asyncio
    async def test_documentation_routes_custom_prompt_to_rag_endpoint(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        await orchestrator.start(
            _request(organization, repository, kind=JobKind.DOCUMENTATION, scope="custom", prompt="How does auth work?")
        )
        await orchestrator.start(
            _request(organization, repository, kind=JobKind.DOCUMENTATION, scope="file", target="src/app.py")
        )
        await runner.drain()
        by_path = dict(engine_stub.requests)
        assert by_path["/api/generate-docs-rag"]["prompt"] == "How does auth work?"
        assert "target" not in by_path["/api/generate-docs-rag"]
        assert by_path["/api/generate-documentation"]["target"] == "src/app.py"
        assert by_path["/api/generate-documentation"]["scope"] == "file"


class TestCompletion:
    @pytest.mark.asyncio
    async def test_success_dereferences_external_artifact(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        tree = {"name": "root", "children": [{"name": "src"}]}
        engine_stub.artifacts["docs/acme/widgets.md"] = json.dumps(tree)
        await orchestrator.start(_request(organization, repository))
        await runner.drain()

        status = await orchestrator.get_status(VISUAL_TREE)
        assert status.status == "completed"
        assert status.result == tree
        assert status.metadata["contentSize"] == 42
        assert status.metadata["title"] == "Widgets"

    @pytest.mark.asyncio
    async def test_documentation_artifact_is_returned_as_text(
        self, orchestrator, organization, repository, runner
    ):
        await orchestrator.start(_request(organization, repository, kind=JobKind.DOCUMENTATION))
        await runner.drain()
        status = await orchestrator.get_status(SubjectKey.for_documentation(ORG_ID, REPO_ID))
        assert status.result == "# Widgets"

    @pytest.mark.asyncio
    async def test_engine_failure_is_recorded_truncated(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        engine_stub.response = {"success": False, "error": "E" * 900}
        job, _ = await orchestrator.start(_request(organization, repository))
        await runner.drain()

        status = await orchestrator.get_status(VISUAL_TREE)
        assert status.status == "failed"
        assert len(status.error) == 500
        assert status.fallback is None

    @pytest.mark.asyncio
    async def test_engine_timeout_lands_in_failed(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        engine_stub.raise_timeout = True
        await orchestrator.start(_request(organization, repository))
        await runner.drain()
        status = await orchestrator.get_status(VISUAL_TREE)
        assert status.status == "failed"
        assert "did not respond" in status.error

    @pytest.mark.asyncio
    async def test_failure_offers_previous_result_as_fallback(
        self, orchestrator, organization, repository, engine_stub, runner, clock
    ):
        engine_stub.artifacts["docs/acme/widgets.md"] = json.dumps({"name": "v1"})
        good, _ = await orchestrator.start(_request(organization, repository))
        await runner.drain()

        clock.advance(minutes=5)
        engine_stub.status_code = 500
        bad, created = await orchestrator.start(_request(organization, repository))
        assert created
        await runner.drain()

        status = await orchestrator.get_status(VISUAL_TREE)
        assert status.status == "failed"
        assert status.job_id == bad.job_id
        assert status.error == "engine exploded"
        assert status.fallback.job_id == good.job_id
        assert status.fallback.result == {"name": "v1"}

    @pytest.mark.asyncio
    async def test_pr_analysis_keeps_inline_result(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        engine_stub.response = {"success": True, "description": {"summary": "Adds widgets"}, "issues": []}
        await orchestrator.start(_request(organization, repository, kind=JobKind.PR_ANALYSIS, pr_number=7))
        await runner.drain()

        status = await orchestrator.get_status(SubjectKey.for_pull_request(ORG_ID, REPO_ID, 7))
        assert status.result == {"description": {"summary": "Adds widgets"}, "issues": []}
        assert status.metadata["pull_request"]["head_sha"] == "abc123"
        assert engine_stub.requests[0][1]["pr_number"] == 7


class TestPullRequestStart:
    @pytest.mark.asyncio
    async def test_completed_analysis_is_reused_unless_forced(
        self, orchestrator, organization, repository, engine_stub, runner, clock
    ):
        first, _ = await orchestrator.start(_request(organization, repository, kind=JobKind.PR_ANALYSIS, pr_number=7))
        await runner.drain()

        again, created = await orchestrator.start(_request(organization, repository, kind=JobKind.PR_ANALYSIS, pr_number=7))
        assert not created and again.job_id == first.job_id
        assert again.status == JobStatus.COMPLETED

        clock.advance(minutes=1)
        forced, created = await orchestrator.start(
            _request(organization, repository, kind=JobKind.PR_ANALYSIS, pr_number=7, force=True)
        )
        assert created and forced.job_id != first.job_id
        await runner.drain()
        assert len(engine_stub.requests) == 2

    @pytest.mark.asyncio
    async def test_provider_failure_creates_no_job(
        self, orchestrator, organization, repository, github, job_store
    ):
        github.pr_error = ProviderCallError("GitHub API error 404: Not Found", status_code=404)
        with pytest.raises(ProviderCallError):
            await orchestrator.start(_request(organization, repository, kind=JobKind.PR_ANALYSIS, pr_number=7))
        assert job_store.get_latest(SubjectKey.for_pull_request(ORG_ID, REPO_ID, 7)) is None


class TestStaleness:
    @pytest.mark.asyncio
    async def test_stale_job_is_failed_on_poll(
        self, orchestrator, organization, repository, engine_stub, runner, clock
    ):
        engine_stub.gate.clear()
        await orchestrator.start(_request(organization, repository))
        await _wait_for_engine(engine_stub)

        clock.advance(minutes=59)
        assert (await orchestrator.get_status(VISUAL_TREE)).status == "generating"

        clock.advance(minutes=2)
        status = await orchestrator.get_status(VISUAL_TREE)
        assert status.status == "failed"
        assert status.error == GENERATION_TIMED_OUT

        # The late engine answer must not revive the job.
        engine_stub.gate.set()
        await runner.drain()
        assert (await orchestrator.get_status(VISUAL_TREE)).status == "failed"

    @pytest.mark.asyncio
    async def test_stale_job_does_not_block_a_new_start(
        self, orchestrator, organization, repository, engine_stub, runner, clock
    ):
        engine_stub.gate.clear()
        stuck, _ = await orchestrator.start(_request(organization, repository))
        await _wait_for_engine(engine_stub)
        clock.advance(hours=2)

        fresh, created = await orchestrator.start(_request(organization, repository))
        assert created and fresh.job_id != stuck.job_id
        engine_stub.gate.set()
        await runner.drain()
        assert (await orchestrator.get_status(VISUAL_TREE)).job_id == fresh.job_id

    @pytest.mark.asyncio
    async def test_elapsed_time_is_reported(
        self, orchestrator, organization, repository, engine_stub, runner, clock
    ):
        engine_stub.gate.clear()
        await orchestrator.start(_request(organization, repository))
        clock.advance(seconds=90)
        status = await orchestrator.get_status(VISUAL_TREE)
        assert status.elapsed_ms == 90_000
        engine_stub.gate.set()
        await runner.drain()


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_discards_late_result(
        self, orchestrator, organization, repository, engine_stub, runner
    ):
        engine_stub.gate.clear()
        await orchestrator.start(_request(organization, repository))
        await _wait_for_engine(engine_stub)

        assert orchestrator.cancel(VISUAL_TREE)
        engine_stub.gate.set()
        await runner.drain()

        status = await orchestrator.get_status(VISUAL_TREE)
        assert status.status == "failed"
        assert status.error == GENERATION_CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_without_in_flight_job(self, orchestrator, organization, repository, runner):
        assert not orchestrator.cancel(VISUAL_TREE)
        await orchestrator.start(_request(organization, repository))
        await runner.drain()
        assert not orchestrator.cancel(VISUAL_TREE)


class TestStatusAndHistory:
    @pytest.mark.asyncio
    async def test_never_started(self, orchestrator):
        assert (await orchestrator.get_status(VISUAL_TREE)).status == "none"

    @pytest.mark.asyncio
    async def test_history_newest_first(self, orchestrator, organization, repository, runner, clock):
        ids = []
        for _ in range(3):
            job, _ = await orchestrator.start(_request(organization, repository))
            await runner.drain()
            ids.append(job.job_id)
            clock.advance(minutes=1)
        assert [j.job_id for j in orchestrator.history(VISUAL_TREE)] == list(reversed(ids))


class TestRunner:
    @pytest.mark.asyncio
    async def test_shutdown_cancels_outstanding_tasks(self):
        runner = JobRunner()
        started = asyncio.Event()

        async def forever():
            started.set()
            await asyncio.sleep(3600)

        task = runner.spawn(forever())
        await started.wait()
        assert runner.pending == 1
        await runner.shutdown()
        assert task.cancelled()
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_crashed_task_is_released(self):
        runner = JobRunner()

        async def crash():
            raise RuntimeError("boom")

        runner.spawn(crash())
        await runner.drain()
        assert runner.pending == 0
