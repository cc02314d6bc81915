"""Persistence layer for mappings and repository links.

``PersistenceStore`` is the interface the engine reads and writes.
``JsonStateStore`` implements it over a single JSON document in a state
directory (typically ``.gitlab_sync/``):

* **Atomic writes** -- every mutation writes a temp file in the same
  directory then calls ``os.replace()`` so readers never see partial data.
* **Upsert by key** -- project mappings are keyed by Redmine project id,
  identity mappings by Redmine user id, repository links by Redmine project
  id.  Same key means last writer wins.
* **One lock per store** -- read-modify-write cycles are serialised with a
  ``threading.Lock`` because the worker pool shares one instance.

Every I/O or decode failure is raised as :class:`StorageError`.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ..errors import StorageError
from .models import IdentityMapping, ProjectMapping

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"
STATE_VERSION = 1


class PersistenceStore(Protocol):
    """CRUD surface the engine needs from persistence."""

    def get_project_mapping(self, tracker_project_id: int) -> ProjectMapping | None: ...

    def list_project_mappings(self) -> list[ProjectMapping]: ...

    def save_project_mapping(self, mapping: ProjectMapping) -> None: ...

    def get_identity(self, tracker_user_id: int) -> IdentityMapping | None: ...

    def list_identities(self) -> list[IdentityMapping]: ...

    def save_identity(self, mapping: IdentityMapping) -> None: ...

    def delete_identity(self, tracker_user_id: int) -> bool: ...

    def delete_all_identities(self) -> int: ...

    def get_repository_url(self, tracker_project_id: int) -> str | None: ...

    def list_repository_urls(self) -> dict[int, str]: ...

    def save_repository_url(self, tracker_project_id: int, url: str) -> None: ...


def _empty_state() -> dict:
    return {
        "version": STATE_VERSION,
        "project_mappings": {},
        "identity_mappings": {},
        "repositories": {},
    }


class JsonStateStore:
    """JSON-file backed :class:`PersistenceStore`.

    Args:
        state_dir: Directory holding ``state.json``.  Created on first write.
    """

    def __init__(self, state_dir: Path | str) -> None:
        self._state_dir = Path(state_dir)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._state_dir / STATE_FILENAME

    # ------------------------------------------------------------------
    # Project mappings
    # ------------------------------------------------------------------

    def get_project_mapping(self, tracker_project_id: int) -> ProjectMapping | None:
        with self._lock:
            raw = self._load()["project_mappings"].get(str(tracker_project_id))
        return self._parse(ProjectMapping, raw) if raw else None

    def list_project_mappings(self) -> list[ProjectMapping]:
        with self._lock:
            rows = list(self._load()["project_mappings"].values())
        return [self._parse(ProjectMapping, row) for row in rows]

    def save_project_mapping(self, mapping: ProjectMapping) -> None:
        with self._lock:
            state = self._load()
            state["project_mappings"][str(mapping.tracker_project_id)] = (
                mapping.model_dump(mode="json")
            )
            self._save(state)

    # ------------------------------------------------------------------
    # Identity mappings
    # ------------------------------------------------------------------

    def get_identity(self, tracker_user_id: int) -> IdentityMapping | None:
        with self._lock:
            raw = self._load()["identity_mappings"].get(str(tracker_user_id))
        return self._parse(IdentityMapping, raw) if raw else None

    def list_identities(self) -> list[IdentityMapping]:
        with self._lock:
            rows = list(self._load()["identity_mappings"].values())
        return [self._parse(IdentityMapping, row) for row in rows]

    def save_identity(self, mapping: IdentityMapping) -> None:
        with self._lock:
            state = self._load()
            state["identity_mappings"][str(mapping.tracker_user_id)] = (
                mapping.model_dump(mode="json")
            )
            self._save(state)

    def delete_identity(self, tracker_user_id: int) -> bool:
        """Remove one cached identity.  Returns ``True`` if it existed."""
        with self._lock:
            state = self._load()
            removed = state["identity_mappings"].pop(str(tracker_user_id), None)
            if removed is not None:
                self._save(state)
        return removed is not None

    def delete_all_identities(self) -> int:
        """Remove every cached identity and return how many were dropped."""
        with self._lock:
            state = self._load()
            count = len(state["identity_mappings"])
            if count:
                state["identity_mappings"] = {}
                self._save(state)
        return count

    # ------------------------------------------------------------------
    # Repository links
    # ------------------------------------------------------------------

    def get_repository_url(self, tracker_project_id: int) -> str | None:
        with self._lock:
            return self._load()["repositories"].get(str(tracker_project_id))

    def list_repository_urls(self) -> dict[int, str]:
        with self._lock:
            repos = self._load()["repositories"]
        return {int(key): url for key, url in repos.items()}

    def save_repository_url(self, tracker_project_id: int, url: str) -> None:
        with self._lock:
            state = self._load()
            state["repositories"][str(tracker_project_id)] = url
            self._save(state)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self) -> dict:
        path = self.path
        if not path.exists():
            return _empty_state()
        try:
            with open(path, encoding="utf-8") as fh:
                state = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read state file {path}: {e}") from e
        if not isinstance(state, dict):
            raise StorageError(f"State file {path} is not a JSON object")
        for key, value in _empty_state().items():
            state.setdefault(key, value)
        return state

    def _save(self, state: dict) -> None:
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._state_dir), suffix=".tmp"
            )
        except OSError as e:
            raise StorageError(
                f"Cannot prepare state directory {self._state_dir}: {e}"
            ) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException as e:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(e, OSError):
                raise StorageError(f"Cannot write state file {self.path}: {e}") from e
            raise

    @staticmethod
    def _parse(model, raw: dict):
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            raise StorageError(f"Corrupt {model.__name__} record: {e}") from e
