"""Storage for the persisted hunt document.

``HuntRegistry`` talks to a ``HuntStore``: something that can load and save
the full list of hunt entries as plain JSON-compatible dictionaries.
``FileHuntStore`` keeps them in ``<project>/.packhunt/hunts.json``;
``InMemoryHuntStore`` is used by tests and embedded callers.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConcurrentModificationError, StorageError
from .packhunt_logging import log_error_with_context, log_performance

logger = logging.getLogger("packhunt.storage")

STORAGE_DIR_ENV = "PACKHUNT_STORAGE_DIR"
DEFAULT_STORAGE_DIR = ".packhunt"
HUNTS_FILENAME = "hunts.json"
TEAM_FILENAME = "team.json"
ANALYTICS_FILENAME = "analytics.json"

HuntDocument = List[Dict[str, Any]]


def resolve_storage_dir(root: Path | str) -> Path:
    """Storage directory for a project root, honouring ``PACKHUNT_STORAGE_DIR``."""
    name = os.getenv(STORAGE_DIR_ENV) or DEFAULT_STORAGE_DIR
    return Path(root).expanduser().resolve() / name


class HuntStore(ABC):
    """Load/save contract for the hunt document."""

    @abstractmethod
    def load(self) -> HuntDocument:
        """Return the stored hunt entries; an empty list if nothing is stored yet."""

    @abstractmethod
    def save(self, hunts: HuntDocument) -> None:
        """Replace the stored hunt entries."""


class InMemoryHuntStore(HuntStore):
    """Keeps the document in memory, round-tripped through JSON."""

    def __init__(self, hunts: Optional[HuntDocument] = None):
        self._payload: Optional[str] = json.dumps(hunts) if hunts is not None else None
        self.save_count = 0

    def load(self) -> HuntDocument:
        if self._payload is None:
            return []
        return json.loads(self._payload)

    def save(self, hunts: HuntDocument) -> None:
        self._payload = json.dumps(copy.deepcopy(hunts))
        self.save_count += 1


def _fingerprint(raw: Optional[bytes]) -> Optional[str]:
    if raw is None:
        return None
    return hashlib.sha256(raw).hexdigest()


class FileHuntStore(HuntStore):
    """JSON file store with atomic writes and an optimistic change check.

    The store remembers a fingerprint of the document it last read or wrote.
    Saving over a file that another process changed in the meantime raises
    ``ConcurrentModificationError`` instead of silently discarding that
    process's work; call ``load()`` again to pick the changes up. A store that
    has not read anything yet only writes where no file exists.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._known_fingerprint: Optional[str] = None

    @classmethod
    def for_project(cls, root: Path | str) -> "FileHuntStore":
        return cls(resolve_storage_dir(root) / HUNTS_FILENAME)

    def _read_raw(self) -> Optional[bytes]:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Could not read hunts from {self.path}: {e}") from e

    @log_performance("load_hunts")
    def load(self) -> HuntDocument:
        raw = self._read_raw()
        self._known_fingerprint = _fingerprint(raw)
        if raw is None:
            logger.info(f"No hunts file at {self.path}, starting fresh")
            return []

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            log_error_with_context(e, {"operation": "load_hunts", "path": str(self.path)})
            raise StorageError(f"Hunts file {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise StorageError(f"Hunts file {self.path} must contain a JSON array")
        return data

    @log_performance("save_hunts")
    def save(self, hunts: HuntDocument) -> None:
        current = _fingerprint(self._read_raw())
        if current != self._known_fingerprint:
            raise ConcurrentModificationError(
                f"Hunts file {self.path} was modified by another writer; reload before saving"
            )

        payload = json.dumps(hunts, indent=2, ensure_ascii=False).encode("utf-8")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".hunts-", suffix=".tmp", dir=self.path.parent)
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            log_error_with_context(e, {"operation": "save_hunts", "path": str(self.path)})
            raise StorageError(f"Could not write hunts to {self.path}: {e}") from e

        self._known_fingerprint = _fingerprint(payload)
        logger.debug(f"Saved {len(hunts)} hunts to {self.path}")
