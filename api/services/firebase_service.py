"""FirestoreDirectory - read access to users, organizations and attached repositories."""

import logging
from typing import Optional, Protocol

from common.firebase_init import firestore_client
from common.firebase_models import OrganizationRecord, RepositoryRecord, UserRecord

logger = logging.getLogger(__name__)


class Directory(Protocol):
    def get_user(self, uid: str) -> Optional[UserRecord]: ...

    def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]: ...

    def get_repository(self, organization_id: str, repo_key: str) -> Optional[RepositoryRecord]: ...

    def delete_repository(self, organization_id: str, repo_key: str) -> bool: ...


# ── Service Class ─────────────────────────────────────────────────────────────


class FirestoreDirectory:
    """Singleton reader over the users / organizations collections."""

    _instance: Optional["FirestoreDirectory"] = None
    _initialized: bool = False

    def __new__(cls, db=None):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, db=None):
        if not FirestoreDirectory._initialized:
            self._db = db or firestore_client()
            FirestoreDirectory._initialized = True

    @property
    def db(self):
        return self._db

    # ── Users ─────────────────────────────────────────────────────────────

    def get_user(self, uid: str) -> Optional[UserRecord]:
        """Return the user document (with its GitHub connection), or ``None``."""
        doc = self._db.collection("users").document(uid).get()
        if not doc.exists:
            return None
        return UserRecord(**{**doc.to_dict(), "uid": uid})

    # ── Organizations ─────────────────────────────────────────────────────

    def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        doc = self._db.collection("organizations").document(organization_id).get()
        if not doc.exists:
            return None
        return OrganizationRecord(**{**doc.to_dict(), "id": organization_id})

    # ── Repositories ──────────────────────────────────────────────────────

    def _repositories(self, organization_id: str):
        return (
            self._db.collection("organizations")
            .document(organization_id)
            .collection("repositories")
        )

    def _repository_ref(self, organization_id: str, repo_key: str):
        """Resolve ``repo_key`` as a URL name first, then as a repository id."""
        ref = self._repositories(organization_id).document(repo_key)
        if ref.get().exists:
            return ref
        docs = self._repositories(organization_id).where("id", "==", repo_key).limit(1).stream()
        for doc in docs:
            return doc.reference
        return None

    def get_repository(self, organization_id: str, repo_key: str) -> Optional[RepositoryRecord]:
        ref = self._repository_ref(organization_id, repo_key)
        if ref is None:
            return None
        data = ref.get().to_dict()
        return RepositoryRecord(
            **{"id": ref.id, "urlName": ref.id, **data, "organizationId": organization_id}
        )

    def delete_repository(self, organization_id: str, repo_key: str) -> bool:
        ref = self._repository_ref(organization_id, repo_key)
        if ref is None:
            return False
        ref.delete()
        logger.info(f"Deleted repository {organization_id}/{repo_key}")
        return True


class InMemoryDirectory:
    """Dict-backed directory for local development and tests."""

    def __init__(
        self,
        users: Optional[list[UserRecord]] = None,
        organizations: Optional[list[OrganizationRecord]] = None,
        repositories: Optional[list[RepositoryRecord]] = None,
    ) -> None:
        self.users = {u.uid: u for u in users or []}
        self.organizations = {o.id: o for o in organizations or []}
        self.repositories = {(r.organization_id, r.url_name): r for r in repositories or []}

    def get_user(self, uid: str) -> Optional[UserRecord]:
        return self.users.get(uid)

    def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        return self.organizations.get(organization_id)

    def _find(self, organization_id: str, repo_key: str) -> Optional[tuple[str, str]]:
        if (organization_id, repo_key) in self.repositories:
            return organization_id, repo_key
        for key, repo in self.repositories.items():
            if repo.organization_id == organization_id and repo.id == repo_key:
                return key
        return None

    def get_repository(self, organization_id: str, repo_key: str) -> Optional[RepositoryRecord]:
        key = self._find(organization_id, repo_key)
        return self.repositories[key] if key else None

    def delete_repository(self, organization_id: str, repo_key: str) -> bool:
        key = self._find(organization_id, repo_key)
        if key is None:
            return False
        del self.repositories[key]
        return True
