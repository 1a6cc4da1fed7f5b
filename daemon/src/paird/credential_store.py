"""Credential stores for session authentication state.

This module provides:
- MemoryCredentialStore: In-process store, for tests and embedding
- JsonCredentialStore: One JSON file per session on disk

The state itself is opaque to paird; JsonCredentialStore only requires
it to be JSON-serializable.

Security features of JsonCredentialStore:
- File permissions (600 for files, 700 for directories)
- Session ID validation (prevent path traversal)
- Atomic replace on save
"""

import asyncio
import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from paird.errors import CredentialStoreError, InvalidSessionIdError
from paird.session import validate_session_id

__all__ = [
    "CREDENTIALS_FILE",
    "CredentialStoreError",
    "JsonCredentialStore",
    "MemoryCredentialStore",
]

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = "creds.json"


class MemoryCredentialStore:
    """Dict-backed credential store."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._states: dict[str, Any] = dict(initial or {})

    async def load(self, session_id: str) -> Optional[Any]:
        return self._states.get(session_id)

    async def save(self, session_id: str, state: Any) -> None:
        self._states[session_id] = state

    async def delete(self, session_id: str) -> None:
        self._states.pop(session_id, None)

    async def list_ids(self) -> list[str]:
        return sorted(self._states)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._states

    def __len__(self) -> int:
        return len(self._states)


class JsonCredentialStore:
    """File-based credential store.

    Layout:
        <directory>/<session_id>/creds.json

    Each file holds {"state": <opaque>, "updated_at": <ISO timestamp>}.

    Attributes:
        directory: Root directory holding one subdirectory per session.
    """

    def __init__(self, directory: Path):
        """Initialize store.

        Args:
            directory: Root directory. Created on first save.
        """
        self.directory = Path(directory).expanduser()

    def _session_dir(self, session_id: str) -> Path:
        validate_session_id(session_id)
        return self.directory / session_id

    def _ensure_directory(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, 0o700)

    async def load(self, session_id: str) -> Optional[Any]:
        """Load stored state.

        Returns:
            The stored state, or None if the session has none.

        Raises:
            CredentialStoreError: If the file exists but cannot be read.
        """
        # Run blocking I/O in thread pool
        return await asyncio.to_thread(self._load_sync, session_id)

    def _load_sync(self, session_id: str) -> Optional[Any]:
        path = self._session_dir(session_id) / CREDENTIALS_FILE
        if not path.exists():
            return None

        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CredentialStoreError(
                f"Failed to load credentials for {session_id}: {e}"
            ) from e

        if not isinstance(data, dict) or "state" not in data:
            raise CredentialStoreError(f"Malformed credentials file for {session_id}")
        return data["state"]

    async def save(self, session_id: str, state: Any) -> None:
        """Replace stored state.

        Raises:
            CredentialStoreError: If the state is not JSON-serializable or
                the file cannot be written.
        """
        await asyncio.to_thread(self._save_sync, session_id, state)

    def _save_sync(self, session_id: str, state: Any) -> None:
        session_dir = self._session_dir(session_id)
        path = session_dir / CREDENTIALS_FILE
        tmp_path = session_dir / f"{CREDENTIALS_FILE}.tmp"

        record = {
            "state": state,
            "updated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

        try:
            content = json.dumps(record, indent=2)
        except (TypeError, ValueError) as e:
            raise CredentialStoreError(
                f"Credentials for {session_id} are not JSON-serializable: {e}"
            ) from e

        try:
            self._ensure_directory(self.directory)
            self._ensure_directory(session_dir)

            fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(tmp_path, path)
            os.chmod(path, 0o600)
        except OSError as e:
            raise CredentialStoreError(
                f"Failed to save credentials for {session_id}: {e}"
            ) from e

        logger.debug(f"Saved credentials for {session_id}")

    async def delete(self, session_id: str) -> None:
        """Erase a session's directory. No-op if absent.

        Raises:
            CredentialStoreError: If the directory cannot be removed.
        """
        await asyncio.to_thread(self._delete_sync, session_id)

    def _delete_sync(self, session_id: str) -> None:
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return

        try:
            shutil.rmtree(session_dir)
        except OSError as e:
            raise CredentialStoreError(
                f"Failed to delete credentials for {session_id}: {e}"
            ) from e

        logger.debug(f"Deleted credentials for {session_id}")

    async def list_ids(self) -> list[str]:
        """Session IDs with a credentials file, sorted."""
        return await asyncio.to_thread(self._list_sync)

    def _list_sync(self) -> list[str]:
        if not self.directory.exists():
            return []

        ids = []
        for entry in self.directory.iterdir():
            if not (entry / CREDENTIALS_FILE).is_file():
                continue
            try:
                validate_session_id(entry.name)
            except InvalidSessionIdError:
                logger.warning(f"Skipping unexpected entry in sessions dir: {entry.name}")
                continue
            ids.append(entry.name)
        return sorted(ids)

    def updated_at(self, session_id: str) -> Optional[str]:
        """ISO timestamp of the last save, or None."""
        path = self._session_dir(session_id) / CREDENTIALS_FILE
        try:
            with open(path) as f:
                return json.load(f).get("updated_at")
        except (OSError, json.JSONDecodeError, AttributeError):
            return None
