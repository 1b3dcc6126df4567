"""Tiered resolution of a GitHub access token for a repository operation.

Candidates, in order:

1. the requesting user
2. the user who attached the repository to the organization
3. the organization owner

The first two must hold an active connection and, when a live test is
supplied, pass it against the target repository. The owner's token is
accepted on an active connection alone.
"""

import logging
from typing import Awaitable, Callable, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from api.services.firebase_service import Directory
from common.firebase_models import RepositoryRecord, UserRecord

logger = logging.getLogger(__name__)

TokenTier = Literal["user", "addedBy", "owner"]
LiveTest = Callable[[str, str], Awaitable[bool]]


class ResolvedToken(BaseModel):
    token: str = Field(repr=False)
    tier: TokenTier


def repo_full_name(repository: RepositoryRecord) -> str:
    """``owner/name`` of the repository, from its GitHub URL when it has one."""
    if repository.url and repository.source == "github":
        parts = [p for p in urlparse(repository.url).path.split("/") if p]
        if len(parts) >= 2:
            return f"{parts[0]}/{parts[1].removesuffix('.git')}"
    return repository.full_name


def _active_token(user: Optional[UserRecord]) -> Optional[str]:
    if user is None or user.github is None or not user.github.is_active:
        return None
    return user.github.access_token


class CredentialResolver:
    def __init__(self, directory: Directory):
        self.directory = directory

    async def _usable(
        self, token: Optional[str], full_name: str, live_test: Optional[LiveTest]
    ) -> bool:
        if not token:
            return False
        if live_test is None:
            return True
        return await live_test(token, full_name)

    async def resolve_token(
        self,
        requesting_user_id: str,
        organization_id: str,
        repo_key: str,
        live_test: Optional[LiveTest] = None,
    ) -> Optional[ResolvedToken]:
        """Return the first usable token with its tier, or ``None`` for no access.

        ``None`` is final for the current connection state; retrying with the
        same identities cannot succeed.
        """
        requester = self.directory.get_user(requesting_user_id)
        if requester is None:
            return None
        repository = self.directory.get_repository(organization_id, repo_key)
        if repository is None:
            return None
        organization = self.directory.get_organization(organization_id)
        if organization is None:
            return None

        full_name = repo_full_name(repository)

        token = _active_token(requester)
        if await self._usable(token, full_name, live_test):
            return ResolvedToken(token=token, tier="user")

        if repository.added_by and repository.added_by != requesting_user_id:
            token = _active_token(self.directory.get_user(repository.added_by))
            if await self._usable(token, full_name, live_test):
                logger.info("Using attaching user's token for %s", full_name)
                return ResolvedToken(token=token, tier="addedBy")

        token = _active_token(self.directory.get_user(organization.owner_id))
        if token:
            logger.info("Using organization owner's token for %s", full_name)
            return ResolvedToken(token=token, tier="owner")

        logger.info("No usable GitHub token for %s (requested by %s)", full_name, requesting_user_id)
        return None
