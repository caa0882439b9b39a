# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential storage.

Persists one credential per storage key inside a single JSON document in the
user's data directory. The store is pure data access: it never validates a
credential against a provider.

Features:
- Async file I/O with aiofiles
- Atomic writes (write to temp in the same directory, then rename)
- Owner-only permissions (0600) on the credential file
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles

from .errors import (
    CredentialNotFoundError,
    StorageError,
    StorageIOError,
    StorageParseError,
)
from .types import Credential

lib_logger = logging.getLogger("scry_auth")

APP_DIR_NAME = "scry-cli"
AUTH_FILE_NAME = "auth.json"


def default_auth_path() -> Path:
    """
    Get the default credential file path.

    Honors SCRY_AUTH_FILE, then XDG_DATA_HOME, falling back to
    ~/.local/share/scry-cli/auth.json.
    """
    override = os.getenv("SCRY_AUTH_FILE")
    if override:
        return Path(override).expanduser()
    data_home = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(data_home).expanduser() / APP_DIR_NAME / AUTH_FILE_NAME


class CredentialStore:
    """
    Durable credential storage keyed by storage_key.

    Saving a credential for a key replaces the previous one in a single
    atomic rename, so a reader sees either the old or the new document.
    """

    def __init__(self, file_path: Optional[Union[str, Path]] = None):
        self.file_path = Path(file_path) if file_path else default_auth_path()
        self._lock = asyncio.Lock()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def load(self, storage_key: str) -> Credential:
        """
        Load the credential stored under storage_key.

        Raises:
            CredentialNotFoundError: nothing is stored under the key
            StorageIOError: the file could not be read
            StorageParseError: the file or the record is malformed
        """
        async with self._lock:
            document = await self._read_document()

        record = document.get(storage_key)
        if record is None:
            raise CredentialNotFoundError(storage_key)

        try:
            return Credential.from_record(storage_key, record)
        except (KeyError, ValueError, TypeError) as e:
            raise StorageParseError(
                f"Malformed credential record '{storage_key}' in {self.file_path}: {e}"
            ) from e

    async def load_usable(self, storage_key: str) -> Optional[Credential]:
        """
        Load a credential, treating every storage problem as "no credential".

        Expired credentials are also reported as absent; the caller routes
        the user to the connect flow.
        """
        try:
            credential = await self.load(storage_key)
        except CredentialNotFoundError:
            return None
        except StorageError as e:
            lib_logger.warning(f"Ignoring unreadable credential '{storage_key}': {e}")
            return None

        if credential.is_expired():
            lib_logger.info(f"Stored credential '{storage_key}' has expired")
            return None
        return credential

    async def save(self, storage_key: str, credential: Credential) -> None:
        """
        Persist a credential, superseding any previous one for the key.

        Raises:
            StorageIOError: the file could not be written
        """
        async with self._lock:
            document = await self._read_document_for_update()
            document[storage_key] = credential.to_record()
            await self._write_document(document)
        lib_logger.info(f"Saved {credential.kind.value} credential for '{storage_key}'")

    async def clear(self, storage_key: str) -> None:
        """Remove a credential. Clearing a missing key is a no-op."""
        async with self._lock:
            if not self.file_path.exists():
                return
            document = await self._read_document_for_update()
            if storage_key not in document:
                return
            del document[storage_key]
            await self._write_document(document)
        lib_logger.info(f"Cleared stored credential for '{storage_key}'")

    async def list_keys(self) -> List[str]:
        async with self._lock:
            document = await self._read_document()
        return sorted(document)

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    async def _read_document(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            return {}

        try:
            async with aiofiles.open(self.file_path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise StorageIOError(f"Failed to read {self.file_path}: {e}") from e

        if not content.strip():
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageParseError(f"Failed to parse {self.file_path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageParseError(f"{self.file_path} does not contain a JSON object")

        # Older files nest records under "credentials"
        credentials = data.get("credentials", data)
        if not isinstance(credentials, dict):
            raise StorageParseError(f"{self.file_path} has a malformed 'credentials' map")
        return credentials

    async def _read_document_for_update(self) -> Dict[str, Any]:
        """A corrupt document is replaced rather than blocking every save."""
        try:
            return await self._read_document()
        except StorageParseError as e:
            lib_logger.warning(f"Replacing unreadable credential file: {e}")
            return {}

    async def _write_document(self, document: Dict[str, Any]) -> None:
        """Write the document atomically with owner-only permissions."""
        parent_dir = self.file_path.parent
        tmp_path = None
        try:
            parent_dir.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=parent_dir, prefix=".tmp_", suffix=".json", text=True
            )
            os.close(tmp_fd)

            try:
                os.chmod(tmp_path, 0o600)
            except (OSError, AttributeError):
                pass

            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps({"credentials": document}, indent=2))

            os.replace(tmp_path, self.file_path)
            tmp_path = None
        except OSError as e:
            raise StorageIOError(f"Failed to write {self.file_path}: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError as e:
                    lib_logger.warning(f"Could not remove temp file {tmp_path}: {e}")
