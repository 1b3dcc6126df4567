"""Posts generated review comments onto a pull request.

Each comment is anchored to its diff line when the PR head commit and the
line are known, and falls back to a general PR comment otherwise. Every
attempt is recorded by content hash so a retried batch does not post the
same comment twice.
"""

import logging
import uuid
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api.services.credential_resolver import CredentialResolver, repo_full_name
from api.services.github_service import GitHubService
from common.comment_models import CommentBatchKey, PostedComment, ReviewComment
from common.comment_store import CommentStore
from common.diff_parser import resolve_comment_position
from common.errors import AuthorizationError, CommentBatchInProgressError, ProviderCallError
from common.firebase_models import OrganizationRecord, RepositoryRecord

logger = logging.getLogger(__name__)


class PostedCommentReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    index: int
    path: str
    line: Optional[int] = None
    comment_hash: str
    provider_comment_id: Optional[int] = None
    provider_comment_url: Optional[str] = None
    anchored: bool = False
    already_posted: bool = False


class CommentError(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    index: int
    path: Optional[str] = None
    line: Optional[int] = None
    error: str


class SubmissionReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    # Comments newly posted by this batch; already-posted items are listed
    # in posted_comments but not counted here.
    posted: int = 0
    total: int = 0
    posted_comments: list[PostedCommentReport] = Field(default_factory=list)
    errors: list[CommentError] = Field(default_factory=list)


def general_comment_body(comment: ReviewComment) -> str:
    """Body of the non-anchored fallback, restating where the comment belongs."""
    if comment.line is not None:
        return f"**File:** `{comment.path}`\n**Line:** {comment.line}\n\n{comment.body}"
    return f"**File:** `{comment.path}`\n\n{comment.body}"


class CommentSubmitter:
    def __init__(
        self,
        store: CommentStore,
        resolver: CredentialResolver,
        github: GitHubService,
        *,
        lease_seconds: int = 900,
    ):
        self.store = store
        self.resolver = resolver
        self.github = github
        self.lease_seconds = lease_seconds

    def posted_hashes(
        self,
        organization_id: str,
        repository_id: str,
        pr_number: int,
        comments: Iterable[ReviewComment],
    ) -> set[str]:
        """Content hashes among ``comments`` that are already posted."""
        batch = CommentBatchKey(
            organization_id=organization_id, repository_id=repository_id, pr_number=pr_number
        )
        return self.store.posted_hashes(batch, [c.content_hash for c in comments])

    async def submit(
        self,
        organization: OrganizationRecord,
        repository: RepositoryRecord,
        pr_number: int,
        requested_by: str,
        comments: list[ReviewComment],
    ) -> SubmissionReport:
        """
        Post ``comments`` one at a time.

        Raises:
            CommentBatchInProgressError: another batch for this PR is running
            AuthorizationError: no credential candidate qualifies
        """
        batch = CommentBatchKey(
            organization_id=organization.id, repository_id=repository.id, pr_number=pr_number
        )
        holder = uuid.uuid4().hex
        if not self.store.acquire_batch_lease(batch, holder, self.lease_seconds):
            raise CommentBatchInProgressError(f"Comments for {batch} are already being posted")

        try:
            resolved = await self.resolver.resolve_token(
                requested_by,
                organization.id,
                repository.url_name,
                live_test=self.github.test_repository_access,
            )
            if resolved is None:
                raise AuthorizationError(f"No GitHub access available for {batch}")

            full_name = repo_full_name(repository)
            head_sha, files = await self._load_diff(resolved.token, full_name, pr_number)

            report = SubmissionReport(total=len(comments))
            for index, comment in enumerate(comments):
                await self._submit_one(
                    report, index, comment, batch, resolved.token, full_name, head_sha, files,
                    requested_by,
                )
        finally:
            self.store.release_batch_lease(batch, holder)

        report.posted = sum(1 for item in report.posted_comments if not item.already_posted)
        logger.info(
            "Posted %d/%d comments on %s (%d errors)",
            report.posted, report.total, batch, len(report.errors),
        )
        return report

    async def _load_diff(
        self, token: str, full_name: str, pr_number: int
    ) -> tuple[Optional[str], list[dict]]:
        """PR head SHA and changed files. Either may be missing; comments then go unanchored."""
        head_sha: Optional[str] = None
        files: list[dict] = []
        try:
            pr = await self.github.get_pull_request(token, full_name, pr_number)
            head_sha = pr.get("head_sha")
        except ProviderCallError as exc:
            logger.warning("Could not load PR %s#%d: %s", full_name, pr_number, exc)
        try:
            files = await self.github.get_pull_request_files(token, full_name, pr_number)
        except ProviderCallError as exc:
            logger.warning("Could not load files of PR %s#%d: %s", full_name, pr_number, exc)
        return head_sha, files

    def _record_success(
        self, batch: CommentBatchKey, comment: ReviewComment, posted: PostedComment, requested_by: str
    ) -> None:
        try:
            self.store.record_success(batch, comment, posted.id, posted.url, posted_by=requested_by)
        except Exception:
            # The comment is live on GitHub; report it even if the record is lost.
            logger.exception("Failed to record posted comment %s on %s", comment.content_hash, batch)

    def _record_failure(self, batch: CommentBatchKey, comment: ReviewComment, error: str) -> None:
        try:
            self.store.record_failure(batch, comment, error)
        except Exception:
            logger.exception("Failed to record comment failure %s on %s", comment.content_hash, batch)

    async def _submit_one(
        self,
        report: SubmissionReport,
        index: int,
        comment: ReviewComment,
        batch: CommentBatchKey,
        token: str,
        full_name: str,
        head_sha: Optional[str],
        files: list[dict],
        requested_by: str,
    ) -> None:
        if not comment.path or not comment.path.strip():
            report.errors.append(CommentError(index=index, line=comment.line, error="Missing or invalid path field"))
            return
        if not comment.body or not comment.body.strip():
            report.errors.append(
                CommentError(index=index, path=comment.path, line=comment.line, error="Missing or invalid body field")
            )
            return

        existing = self.store.get(batch, comment.content_hash)
        if existing is not None and existing.posted:
            report.posted_comments.append(
                PostedCommentReport(
                    index=index,
                    path=comment.path,
                    line=comment.line,
                    comment_hash=comment.content_hash,
                    provider_comment_id=existing.provider_comment_id,
                    provider_comment_url=existing.provider_comment_url,
                    already_posted=True,
                )
            )
            return

        posted: Optional[PostedComment] = None
        side = comment.side or "RIGHT"

        if comment.line is not None and head_sha:
            anchor = resolve_comment_position(files, comment.path, comment.line, side)
            if anchor is not None:
                try:
                    posted = await self.github.create_review_comment(
                        token, full_name, batch.pr_number, comment.body, head_sha,
                        comment.path, anchor.actual_line, side,
                    )
                except ProviderCallError as exc:
                    logger.warning("Review comment on %s rejected, falling back: %s", comment.path, exc)
                    self._record_failure(batch, comment, str(exc))

        if posted is None:
            try:
                posted = await self.github.create_issue_comment(
                    token, full_name, batch.pr_number, general_comment_body(comment)
                )
            except ProviderCallError as exc:
                self._record_failure(batch, comment, str(exc))
                report.errors.append(
                    CommentError(index=index, path=comment.path, line=comment.line, error=str(exc))
                )
                return

        self._record_success(batch, comment, posted, requested_by)
        report.posted_comments.append(
            PostedCommentReport(
                index=index,
                path=comment.path,
                line=comment.line,
                comment_hash=comment.content_hash,
                provider_comment_id=posted.id,
                provider_comment_url=posted.url,
                anchored=posted.anchored,
            )
        )
