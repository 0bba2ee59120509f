"""API key storage.

The key is the only shared mutable state of the client. Stores keep an
in-memory copy for the session; ``FileCredentialStore`` also persists it so
it survives restarts.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from testpad_rounds.config import TestpadConfig

logger = logging.getLogger(__name__)

ENV_API_KEY = "TESTPAD_API_KEY"


@runtime_checkable
class CredentialStore(Protocol):
    """Protocol for API key storage backends."""

    def get(self) -> Optional[str]:
        """Return the stored key or None."""
        ...

    def set(self, key: str) -> None:
        """Store a key, replacing any previous one."""
        ...

    def clear(self) -> None:
        """Forget the stored key."""
        ...


class MemoryCredentialStore:
    """Session-only store. Used in tests and when no path is configured."""

    def __init__(self, key: Optional[str] = None):
        self._key = key or None

    def get(self) -> Optional[str]:
        return self._key

    def set(self, key: str) -> None:
        self._key = key

    def clear(self) -> None:
        self._key = None


class FileCredentialStore:
    """JSON file store with an in-memory cache.

    The file is read lazily on the first ``get`` and rewritten on every
    ``set``. A corrupted file is treated as empty.
    """

    def __init__(self, path: str, fallback: Optional[str] = None):
        self.path = Path(path).expanduser()
        self.fallback = fallback or None  # session-only, never written to disk
        self._key: Optional[str] = None
        self._loaded = False

    def _load(self) -> Optional[str]:
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text())
                return data.get("api_key") or None
            except (ValueError, OSError, AttributeError):
                logger.warning(f"Corrupted credential file {self.path}, ignoring")
        return None

    def get(self) -> Optional[str]:
        if not self._loaded:
            self._key = self._load() or self.fallback
            self._loaded = True
        return self._key

    def set(self, key: str) -> None:
        self._key = key
        self._loaded = True
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"api_key": key}))
        try:
            self.path.chmod(0o600)
        except OSError:
            logger.debug(f"Could not restrict permissions on {self.path}")

    def clear(self) -> None:
        self._key = None
        self._loaded = True
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Removed stored API key at {self.path}")


def create_credential_store(config: TestpadConfig) -> CredentialStore:
    """Pick the store for the configured path, seeded from TESTPAD_API_KEY."""
    env_key = os.getenv(ENV_API_KEY)
    if config.credential_path:
        return FileCredentialStore(config.credential_path, fallback=env_key)
    return MemoryCredentialStore(env_key)
