"""Storage abstraction for vault file bytes.

Primary blob storage for the vault. Default is the local filesystem.
Existence and access are decided by the vault metadata documents, never by
what a backend happens to hold: a blob without metadata is unreachable.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote


class StorageBackend(ABC):
    """Abstract storage backend for vault files."""

    @abstractmethod
    async def save(self, key: str, data: bytes, content_type: str) -> str:
        """Save file data. Returns the storage key."""
        ...

    @abstractmethod
    async def load(self, key: str) -> bytes:
        """Load file data by key. Raises FileNotFoundError if missing."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete file by key. No-op if not found."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if file exists."""
        ...


class LocalStorageBackend(StorageBackend):
    """Local filesystem storage. Files stored in a private directory.

    Single-server only; pair it with the inline database copy for redundancy.
    """

    def __init__(self, base_dir: str | None = None):
        if base_dir is None:
            base_dir = os.environ.get("VAULT_STORAGE_DIR", "./data/vault")
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        # Percent-encode to one flat, collision-free file name; dots too, so
        # "." and ".." never name a directory.
        safe_key = quote(key, safe="").replace(".", "%2E")
        return self._base_dir / safe_key

    async def save(self, key: str, data: bytes, content_type: str) -> str:
        self._path(key).write_bytes(data)
        return key

    async def load(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {key}")
        return path.read_bytes()

    async def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    async def exists(self, key: str) -> bool:
        return self._path(key).exists()


class InMemoryStorageBackend(StorageBackend):
    """In-memory storage for testing. No disk I/O."""

    def __init__(self):
        self._store: dict[str, bytes] = {}

    async def save(self, key: str, data: bytes, content_type: str) -> str:
        self._store[key] = data
        return key

    async def load(self, key: str) -> bytes:
        if key not in self._store:
            raise FileNotFoundError(f"File not found: {key}")
        return self._store[key]

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._store


def vault_storage_key(filename: str, prefix: str | None = None) -> str:
    """Deterministic primary-storage key for a vault file: prefix + filename."""
    if prefix is None:
        from codeprism.config import settings

        prefix = settings.vault_key_prefix
    return f"{prefix}{filename}"


# Module-level singleton, replaceable in tests
_storage: StorageBackend | None = None


def get_storage() -> StorageBackend:
    """Get the current storage backend."""
    global _storage
    if _storage is None:
        from codeprism.config import settings

        _storage = LocalStorageBackend(settings.vault_storage_dir)
    return _storage


def set_storage(backend: StorageBackend | None) -> None:
    """Set the storage backend (used for testing)."""
    global _storage
    _storage = backend
