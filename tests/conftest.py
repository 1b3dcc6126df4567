"""Shared fixtures: in-memory stores and directory, a fake GitHub, a scripted engine.

Nothing here touches Firestore, GitHub or a real analysis engine.
"""

import os

# In-memory backends and no token verification before any app imports.
os.environ["STORE_BACKEND"] = "memory"
os.environ["AUTH_ENABLED"] = "false"

import asyncio
import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pytest

from api.services.credential_resolver import CredentialResolver
from api.services.engine_client import EngineClient
from api.services.firebase_service import InMemoryDirectory
from api.services.job_orchestrator import JobOrchestrator, JobRunner
from common.comment_models import PostedComment
from common.comment_store_inmemory import InMemoryCommentStore
from common.errors import ProviderCallError
from common.firebase_models import (
    GitHubConnection,
    OrganizationRecord,
    RepositoryRecord,
    UserRecord,
)
from common.job_store_inmemory import InMemoryJobStore

ORG_ID = "org-1"
REPO_ID = "repo-1"
REPO_URL_NAME = "widgets"
REPO_FULL_NAME = "acme/widgets"

PATCH = (
    "@@ -10,5 +10,6 @@ def handler():\n"
    " context line 10\n"
    "-removed line 11\n"
    "+added line 11\n"
    "+added line 12\n"
    " context line 12/13\n"
    " context line 13/14\n"
)


def _user(uid: str, token: Optional[str], status: str = "active") -> UserRecord:
    github = GitHubConnection(access_token=token, status=status) if token else None
    return UserRecord(uid=uid, github=github)


@pytest.fixture()
def organization() -> OrganizationRecord:
    return OrganizationRecord(
        id=ORG_ID, short_id="acme", name="Acme", owner_id="olivia", members=["alice", "bob"]
    )


@pytest.fixture()
def repository() -> RepositoryRecord:
    return RepositoryRecord(
        id=REPO_ID,
        organization_id=ORG_ID,
        url_name=REPO_URL_NAME,
        name="widgets",
        full_name=REPO_FULL_NAME,
        url=f"https://github.com/{REPO_FULL_NAME}",
        added_by="bob",
        default_branch="main",
    )


@pytest.fixture()
def directory(organization, repository) -> InMemoryDirectory:
    return InMemoryDirectory(
        users=[
            _user("alice", "tok-alice"),
            _user("bob", "tok-bob"),
            _user("olivia", "tok-owner"),
            _user("mallory", "tok-mallory"),
        ],
        organizations=[organization],
        repositories=[repository],
    )


class FakeGitHub:
    """Async stand-in for GitHubService with scripted outcomes."""

    def __init__(self) -> None:
        self.readable: dict[str, bool] = {}
        self.head_sha: Optional[str] = "abc123"
        self.files: list[dict[str, Any]] = [
            {"filename": "src/app.py", "status": "modified", "patch": PATCH},
        ]
        self.pr_error: Optional[ProviderCallError] = None
        self.reject_review_comments = False
        self.reject_issue_comments = False
        self.review_comments: list[dict[str, Any]] = []
        self.issue_comments: list[dict[str, Any]] = []
        self.probes: list[tuple[str, str]] = []
        self._next_id = 1000

    async def test_repository_access(self, token: str, full_name: str) -> bool:
        self.probes.append((token, full_name))
        return self.readable.get(token, True)

    async def get_pull_request(self, token: str, full_name: str, pr_number: int) -> dict:
        if self.pr_error is not None:
            raise self.pr_error
        return {
            "number": pr_number,
            "title": "Add widgets",
            "author": "bob",
            "state": "open",
            "base_branch": "main",
            "head_branch": "feature/widgets",
            "head_sha": self.head_sha,
            "html_url": f"https://github.com/{full_name}/pull/{pr_number}",
        }

    async def get_pull_request_files(self, token: str, full_name: str, pr_number: int) -> list[dict]:
        if self.pr_error is not None:
            raise self.pr_error
        return self.files

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def create_review_comment(
        self, token, full_name, pr_number, body, commit_sha, path, line, side="RIGHT"
    ) -> PostedComment:
        if self.reject_review_comments:
            raise ProviderCallError("GitHub API error 422: line must be part of the diff", status_code=422)
        comment_id = self._id()
        self.review_comments.append(
            {"body": body, "commit_sha": commit_sha, "path": path, "line": line, "side": side}
        )
        return PostedComment(id=comment_id, url=f"https://github.com/c/{comment_id}", anchored=True)

    async def create_issue_comment(self, token, full_name, pr_number, body) -> PostedComment:
        if self.reject_issue_comments:
            raise ProviderCallError("GitHub API error 403: Resource not accessible", status_code=403)
        comment_id = self._id()
        self.issue_comments.append({"body": body})
        return PostedComment(id=comment_id, url=f"https://github.com/c/{comment_id}")


@pytest.fixture()
def github() -> FakeGitHub:
    return FakeGitHub()


class EngineStub:
    """Scripted analysis engine behind an ``httpx.MockTransport``.

    ``gate`` holds generation calls until set, so a test can observe the
    ``generating`` state before the engine answers.
    """

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.gate.set()
        self.status_code = 200
        self.response: dict[str, Any] = {
            "success": True,
            "s3": {"s3_key": "docs/acme/widgets.md", "s3_bucket": "artifacts", "content_size": 42},
            "title": "Widgets",
        }
        self.raise_timeout = False
        self.artifacts: dict[str, str] = {"docs/acme/widgets.md": "# Widgets"}
        self.requests: list[tuple[str, dict]] = []

    async def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        if request.url.path == "/api/get-documentation":
            content = self.artifacts.get(body.get("s3_key"))
            if content is None:
                return httpx.Response(200, json={"success": False})
            return httpx.Response(200, json={"success": True, "content": content})

        self.requests.append((request.url.path, body))
        while not self.gate.is_set():
            await asyncio.sleep(0.01)
        if self.raise_timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, text="engine exploded")
        return httpx.Response(self.status_code, json=self.response)


@pytest.fixture()
def engine_stub() -> EngineStub:
    return EngineStub()


@pytest.fixture()
def engine_client(engine_stub) -> EngineClient:
    return EngineClient("http://engine.test", 30.0, transport=httpx.MockTransport(engine_stub.handle))


class FrozenClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture()
def comment_store() -> InMemoryCommentStore:
    return InMemoryCommentStore()


@pytest.fixture()
def runner() -> JobRunner:
    return JobRunner()


@pytest.fixture()
def orchestrator(job_store, directory, engine_client, github, runner, clock) -> JobOrchestrator:
    return JobOrchestrator(
        job_store,
        CredentialResolver(directory),
        engine_client,
        github,
        runner,
        stale_after_seconds=3600,
        clock=clock,
    )
