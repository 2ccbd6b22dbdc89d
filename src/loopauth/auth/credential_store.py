"""Persistent credential store for the local operator.

Stores one :class:`~loopauth.models.Credential` as a JSON file at the
configured ``storage_path`` (by default
``~/.local/share/loopauth/credentials.json``). Files are written atomically
via :func:`~loopauth.config.atomic_write` with ``0o600`` permissions set
before any content is written, so a concurrent reader sees either the old
file or the new one and secrets are never world-readable, even momentarily.
Concurrent writers from two logins resolve as last-write-wins.

The file carries a ``version`` field. Files written by a newer release with
an unknown version are refused rather than misread.

See Also:
    :class:`~loopauth.auth.session.SessionOrchestrator` -- the only writer
    after a successful login.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from loopauth.config import atomic_write
from loopauth.exceptions import StorageError
from loopauth.models import Credential

logger = logging.getLogger(__name__)

CREDENTIAL_FORMAT_VERSION = 1
_FILE_MODE = 0o600
_DIR_MODE = 0o700


class CredentialStore:
    """Read/write the credential file at *path*.

    Args:
        path: Credential file location. The parent directory is created
            with ``0o700`` permissions on first save.

    Example::

        store = CredentialStore(config.storage_path)
        store.save(credential)
        assert store.load() == credential
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        """The filesystem path to the credential file."""
        return self._path

    def save(self, credential: Credential) -> None:
        """Persist *credential* atomically, replacing any stored one.

        Raises:
            StorageError: If the directory or file cannot be written. No
                temporary file is left behind.
        """
        data = {"version": CREDENTIAL_FORMAT_VERSION, **credential.model_dump(mode="json")}
        text = json.dumps(data, indent=2) + "\n"

        try:
            self._ensure_parent()
            atomic_write(self._path, text, mode=_FILE_MODE)
        except OSError as exc:
            raise StorageError(
                f"Cannot write credential file {self._path}: {exc.strerror or exc}"
            ) from exc
        logger.debug("Saved credential to %s", self._path)

    def load(self) -> Optional[Credential]:
        """Load the stored credential.

        Returns:
            The stored :class:`~loopauth.models.Credential`, or ``None`` if
            the file does not exist.

        Raises:
            StorageError: If the file exists but cannot be read, is not
                valid JSON, has an unsupported version, or fails validation.
        """
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(
                f"Cannot read credential file {self._path}: {exc.strerror or exc}"
            ) from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Credential file {self._path} is corrupt") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Credential file {self._path} is corrupt")

        version = data.pop("version", None)
        if version != CREDENTIAL_FORMAT_VERSION:
            raise StorageError(
                f"Credential file {self._path} has unsupported format version {version!r}"
            )

        try:
            return Credential.model_validate(data)
        except ValidationError as exc:
            # Only field locations are reported; values may be secrets.
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise StorageError(
                f"Credential file {self._path} is invalid (fields: {fields})"
            ) from exc

    def clear(self) -> bool:
        """Delete the stored credential.

        Returns:
            ``True`` if a file was removed, ``False`` if there was none.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(
                f"Cannot remove credential file {self._path}: {exc.strerror or exc}"
            ) from exc
        logger.debug("Removed credential file %s", self._path)
        return True

    def _ensure_parent(self) -> None:
        parent = self._path.parent
        if not parent.exists():
            parent.mkdir(parents=True, exist_ok=True)
            os.chmod(parent, _DIR_MODE)
