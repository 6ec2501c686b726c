"""Storage collaborators for the skill registry.

The registry persists one row per installed (name, version). A store hands
out the current rows and a transaction that commits a replacement list of
rows only when the block exits cleanly.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from skillbox.skills.errors import SkillStorageError

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1


@dataclass
class SkillRow:
    """Storage shape of one installed skill."""

    name: str
    version: str
    manifest_json: str
    installed_at: str
    verification_status: str = "unverified"
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SkillRow":
        return cls(
            name=data["name"],
            version=data["version"],
            manifest_json=data["manifest_json"],
            installed_at=data["installed_at"],
            verification_status=data.get("verification_status", "unverified"),
            enabled=bool(data.get("enabled", True)),
        )


class SkillStore(ABC):
    """Abstract storage for registry rows.

    Implementations serialize writers: only one transaction is open at a time.
    """

    @abstractmethod
    def rows(self) -> list[SkillRow]:
        """Return a snapshot of all rows in insertion order."""
        pass

    @abstractmethod
    def transaction(self) -> Any:
        """Context manager yielding a mutable copy of the rows.

        The list is committed when the block exits without an exception and
        discarded otherwise.

        Raises:
            SkillStorageError: If the rows cannot be read or committed
        """
        pass


class InMemorySkillStore(SkillStore):
    """Process-local store, used by tests and ephemeral registries."""

    def __init__(self) -> None:
        self._rows: list[SkillRow] = []
        self._lock = threading.RLock()

    def rows(self) -> list[SkillRow]:
        with self._lock:
            return [SkillRow(**row.to_dict()) for row in self._rows]

    @contextmanager
    def transaction(self) -> Iterator[list[SkillRow]]:
        with self._lock:
            working = self.rows()
            yield working
            self._rows = working


class JsonSkillStore(SkillStore):
    """Store rows in a JSON file with atomic replace on commit.

    File layout::

        {"version": 1, "skills": [{"name": ..., "version": ..., ...}]}

    Example:
        >>> store = JsonSkillStore(Path("~/.skillbox/registry.json").expanduser())
        >>> with store.transaction() as rows:
        ...     rows.append(row)
    """

    def __init__(self, path: Path):
        """Initialize JSON store.

        Args:
            path: Path to registry JSON file (created on first commit)
        """
        self.path = Path(path)
        self._lock = threading.RLock()

    def rows(self) -> list[SkillRow]:
        with self._lock:
            return self._load()

    @contextmanager
    def transaction(self) -> Iterator[list[SkillRow]]:
        with self._lock:
            working = self._load()
            yield working
            self._save(working)

    def _load(self) -> list[SkillRow]:
        if not self.path.exists():
            return []

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SkillStorageError(f"Failed to read skill registry {self.path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("skills"), list):
            raise SkillStorageError(f"Malformed skill registry {self.path}")

        try:
            return [SkillRow.from_dict(entry) for entry in data["skills"]]
        except (KeyError, TypeError) as e:
            raise SkillStorageError(f"Malformed row in skill registry {self.path}: {e}") from e

    def _save(self, rows: list[SkillRow]) -> None:
        """Save rows atomically via temp file + os.replace()."""
        payload = {
            "version": STORE_FORMAT_VERSION,
            "skills": [row.to_dict() for row in rows],
        }

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".registry-", suffix=".tmp"
            )
        except OSError as e:
            raise SkillStorageError(f"Failed to write skill registry {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(temp_path, self.path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass
            raise SkillStorageError(f"Failed to write skill registry {self.path}: {e}") from e

        logger.debug(f"Committed {len(rows)} skill rows to {self.path}")
