"""Folder permission store and its client."""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from threading import Lock

from localwork.backend import Backend
from localwork.errors import NotFoundError, PermissionDeniedError
from localwork.schemas import FolderPermission

logger = logging.getLogger(__name__)


def canonicalize(path: str | Path) -> Path:
    """Absolute, symlink-resolved form of a path (the path need not exist).

    Raises:
        ValueError: If the path contains a NUL byte
    """
    if "\x00" in str(path):
        raise ValueError("embedded null byte")
    return Path(path).expanduser().resolve()


def is_within(path: Path, root: Path) -> bool:
    """True if ``path`` equals ``root`` or is a descendant of it."""
    return path == root or root in path.parents


class PermissionStore:
    """In-process store of folder grants.

    Grants are keyed by id. Revocation removes the grant immediately, so any
    later check of a path covered only by it is denied.
    """

    def __init__(self, allow_duplicates: bool = False):
        """Initialize the store.

        Args:
            allow_duplicates: If True, granting an already granted path adds
                another entry; otherwise the existing grant is returned
        """
        self.allow_duplicates = allow_duplicates
        self._folders: dict[str, FolderPermission] = {}
        self._lock = Lock()

    def grant(self, path: str | Path) -> FolderPermission:
        """Grant access to a directory subtree.

        Raises:
            ValueError: If the path is not an existing directory
        """
        canonical = canonicalize(path)
        if not canonical.is_dir():
            raise ValueError(f"Not a directory: {canonical}")

        with self._lock:
            if not self.allow_duplicates:
                for existing in self._folders.values():
                    if existing.path == str(canonical):
                        logger.debug(f"Folder already granted: {canonical}")
                        return existing

            permission = FolderPermission(
                id=str(uuid.uuid4()),
                path=str(canonical),
                granted_at=int(time.time()),
            )
            self._folders[permission.id] = permission

        logger.info(f"Granted folder {canonical} ({permission.id})")
        return permission

    def revoke(self, permission_id: str) -> FolderPermission:
        """Remove a grant.

        Raises:
            NotFoundError: If no grant has this id
        """
        with self._lock:
            permission = self._folders.pop(permission_id, None)

        if permission is None:
            raise NotFoundError(f"No folder permission with id {permission_id}")
        logger.info(f"Revoked folder {permission.path} ({permission_id})")
        return permission

    def list(self) -> list[FolderPermission]:
        """Current grants, oldest first."""
        with self._lock:
            return list(self._folders.values())

    def is_path_allowed(self, path: str | Path) -> bool:
        try:
            canonical = canonicalize(path)
        except (ValueError, OSError, RuntimeError):
            return False
        with self._lock:
            return any(is_within(canonical, Path(f.path)) for f in self._folders.values())

    def check(self, path: str | Path) -> Path:
        """Canonicalize a path and ensure a grant covers it.

        Raises:
            PermissionDeniedError: If no current grant covers the path, or the
                path cannot be canonicalized (e.g. embedded NUL, symlink loop)
        """
        try:
            canonical = canonicalize(path)
        except (ValueError, OSError, RuntimeError) as e:
            logger.warning(f"Denied access to invalid path {path!r}: {e}")
            raise PermissionDeniedError(f"Access denied: invalid path {path!r}") from e
        if not self.is_path_allowed(canonical):
            logger.warning(f"Denied access outside granted folders: {canonical}")
            raise PermissionDeniedError(f"Access denied: {canonical} is not in a granted folder")
        return canonical


class PermissionStoreClient:
    """Grants, revokes and lists folders through the backend.

    The backend owns the grants; this client only keeps the latest listing as
    a snapshot for rendering.
    """

    def __init__(self, backend: Backend):
        self._backend = backend
        self._snapshot: list[FolderPermission] = []

    @property
    def snapshot(self) -> list[FolderPermission]:
        return list(self._snapshot)

    async def grant(self, path: str) -> FolderPermission:
        permission = await self._backend.grant_folder(path)
        if all(p.id != permission.id for p in self._snapshot):
            self._snapshot.append(permission)
        return permission

    async def revoke(self, permission_id: str) -> None:
        """Revoke a grant; it is no longer effective once this returns.

        Raises:
            NotFoundError: If the backend has no grant with this id
        """
        await self._backend.revoke_folder(permission_id)
        self._snapshot = [p for p in self._snapshot if p.id != permission_id]

    async def list(self) -> list[FolderPermission]:
        self._snapshot = await self._backend.list_folders()
        return list(self._snapshot)
