"""File-backed credential store for the messaging session.

The store is a directory keyed by the session path. Credential material lives
in ``creds.json``; the gateway may also hand over auxiliary key material which
is written as one JSON file per key. A ``.gitkeep`` sentinel marks the
directory and survives clearing.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from ..errors import CredentialStoreError

_LOGGER = logging.getLogger(__name__)

SENTINEL = ".gitkeep"
CREDS_FILE = "creds.json"


class CredentialStore:
    """Persisted session material allowing reconnection without re-pairing."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def ensure_writable(self) -> None:
        """Create the store directory and verify it accepts writes.

        Raises:
            CredentialStoreError: If the directory cannot be created or written.
        """
        marker = self.path / ".write-marker"
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            marker.write_text("ok", encoding="utf-8")
            marker.unlink()
        except OSError as err:
            raise CredentialStoreError(
                f"Credential store {self.path} is not writable: {err}"
            ) from err

    def load(self) -> dict[str, Any] | None:
        """Return stored credentials, or None when the session was never paired."""
        creds_path = self.path / CREDS_FILE
        if not creds_path.exists():
            return None
        try:
            with open(creds_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as err:
            raise CredentialStoreError(f"Failed to read {creds_path}: {err}") from err
        if not isinstance(data, dict):
            raise CredentialStoreError(f"{creds_path} does not hold a JSON object")
        return data

    def save(self, credentials: dict[str, Any]) -> None:
        """Persist credentials, replacing the previous file atomically."""
        self._write_json(CREDS_FILE, credentials)

    def save_key(self, name: str, data: dict[str, Any]) -> None:
        """Persist one piece of auxiliary key material."""
        if not name or "/" in name or name.startswith(".") or name == CREDS_FILE:
            raise CredentialStoreError(f"Invalid key name: {name!r}")
        self._write_json(f"{name}.json", data)

    def _write_json(self, filename: str, data: dict[str, Any]) -> None:
        target = self.path / filename
        tmp = target.with_suffix(target.suffix + ".tmp")
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, target)
        except (OSError, TypeError, ValueError) as err:
            raise CredentialStoreError(f"Failed to write {target}: {err}") from err
        _LOGGER.debug("Persisted %s", target)

    def entries(self) -> list[str]:
        """List stored artifact names, excluding the sentinel."""
        if not self.path.exists():
            return []
        return sorted(p.name for p in self.path.iterdir() if p.name != SENTINEL)

    def clear(self) -> list[str]:
        """Delete every stored artifact except the sentinel.

        Returns:
            Names of the removed artifacts.

        Raises:
            CredentialStoreError: If any artifact could not be removed.
        """
        removed: list[str] = []
        for name in self.entries():
            target = self.path / name
            try:
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                else:
                    target.unlink()
            except OSError as err:
                raise CredentialStoreError(
                    f"Failed to delete session file {name}: {err}"
                ) from err
            removed.append(name)
            _LOGGER.info("Deleted session file: %s", name)
        return removed
