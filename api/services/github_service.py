"""GitHubService - token-authenticated GitHub API calls using PyGithub."""

import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

import requests
from github import Auth, Github, GithubException

from common.comment_models import CommentSide, PostedComment
from common.errors import ProviderCallError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _describe(exc: GithubException) -> str:
    data = exc.data if isinstance(exc.data, dict) else {}
    message = data.get("message") or str(exc)
    errors = data.get("errors")
    if errors:
        message = f"{message}: {errors}"
    return f"GitHub API error {exc.status}: {message}"


async def _run(call: Callable[[], T]) -> T:
    """Run a blocking PyGithub call in a worker thread, mapping its failures."""
    try:
        return await asyncio.to_thread(call)
    except GithubException as exc:
        raise ProviderCallError(_describe(exc), status_code=exc.status) from exc
    except requests.exceptions.RequestException as exc:
        # Transport failures (reset, timeout) surface from requests unwrapped.
        raise ProviderCallError(f"GitHub request failed: {exc}") from exc


class GitHubService:
    """Handles GitHub API calls authenticated with a caller-supplied access token.

    PyGithub is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url

    def _client(self, token: str) -> Github:
        if self.base_url:
            return Github(base_url=self.base_url, auth=Auth.Token(token))
        return Github(auth=Auth.Token(token))

    async def test_repository_access(self, token: str, full_name: str) -> bool:
        """
        Probe whether ``token`` can read ``full_name``.

        Any provider failure counts as no access.
        """
        def _probe():
            self._client(token).get_repo(full_name)

        try:
            await _run(_probe)
            return True
        except ProviderCallError as exc:
            logger.info("Repository probe for %s failed: %s", full_name, exc)
            return False

    async def get_pull_request(self, token: str, full_name: str, pr_number: int) -> dict[str, Any]:
        """Return title, author, state, branches and head SHA of a pull request."""
        def _get():
            pr = self._client(token).get_repo(full_name).get_pull(pr_number)
            return {
                "number": pr.number,
                "title": pr.title,
                "author": pr.user.login if pr.user else None,
                "state": pr.state,
                "base_branch": pr.base.ref,
                "head_branch": pr.head.ref,
                "head_sha": pr.head.sha,
                "html_url": pr.html_url,
            }

        return await _run(_get)

    async def get_pull_request_files(
        self, token: str, full_name: str, pr_number: int
    ) -> list[dict[str, Any]]:
        """
        Get the changed files of a pull request.

        Returns:
            List of dicts with filename, status and patch (``None`` for binary files)
        """
        def _get_files():
            pr = self._client(token).get_repo(full_name).get_pull(pr_number)
            return [
                {"filename": f.filename, "status": f.status, "patch": f.patch}
                for f in pr.get_files()
            ]

        return await _run(_get_files)

    async def create_review_comment(
        self,
        token: str,
        full_name: str,
        pr_number: int,
        body: str,
        commit_sha: str,
        path: str,
        line: int,
        side: CommentSide = "RIGHT",
    ) -> PostedComment:
        """Post a comment anchored to ``line`` of ``path`` at ``commit_sha``."""
        def _post():
            repository = self._client(token).get_repo(full_name)
            pr = repository.get_pull(pr_number)
            commit = repository.get_commit(commit_sha)
            comment = pr.create_review_comment(body, commit, path, line=line, side=side)
            return PostedComment(id=comment.id, url=comment.html_url or "", anchored=True)

        return await _run(_post)

    async def create_issue_comment(
        self, token: str, full_name: str, pr_number: int, body: str
    ) -> PostedComment:
        """Post a general (non-anchored) comment on the pull request conversation."""
        def _post():
            issue = self._client(token).get_repo(full_name).get_issue(pr_number)
            comment = issue.create_comment(body)
            return PostedComment(id=comment.id, url=comment.html_url or "")

        return await _run(_post)
