from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ConnectionStatus = Literal["active", "expired", "revoked"]


def _fb(alias: str, default=None, **kwargs):
    """Field with a camelCase alias matching the Firestore document key."""
    return Field(default, alias=alias, **kwargs)


class GitHubConnection(BaseModel):
    """Provider connection stored on a user document under ``github``."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: Optional[str] = _fb("accessToken")
    status: ConnectionStatus = "active"
    username: Optional[str] = None
    connected_at: Optional[str] = _fb("connectedAt")

    @property
    def is_active(self) -> bool:
        return self.status == "active" and bool(self.access_token)


class UserRecord(BaseModel):
    """User document read from users/{uid}."""

    model_config = ConfigDict(populate_by_name=True)

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = _fb("displayName")
    github_username: Optional[str] = _fb("githubUsername")
    github: Optional[GitHubConnection] = None


class OrganizationRecord(BaseModel):
    """
    Organization document.

    Stored at: organizations/{id}
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    short_id: Optional[str] = _fb("shortId")
    name: Optional[str] = None
    owner_id: str = Field(alias="ownerId")
    members: list[str] = Field(default_factory=list)

    def is_member(self, uid: str) -> bool:
        return uid == self.owner_id or uid in self.members


class RepositoryRecord(BaseModel):
    """
    Repository attached to an organization.

    Stored at: organizations/{organization_id}/repositories/{url_name}
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    organization_id: str = Field(alias="organizationId")
    url_name: str = Field(alias="urlName")
    name: Optional[str] = None
    full_name: str = Field(alias="fullName")
    url: Optional[str] = None
    source: str = "github"
    added_by: Optional[str] = _fb("addedBy")
    default_branch: str = _fb("defaultBranch", "main")
