from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from studio.errors import PersistenceFailure
from studio.models import Session

log = logging.getLogger(__name__)

SESSIONS_DIR = os.getenv("SESSIONS_DIR", "data/sessions")

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

SORTABLE_FIELDS = {"lastAccessed", "createdAt", "updatedAt", "title"}


def _matches(doc: Session, filter: Dict[str, Any]) -> bool:
    for field, expected in filter.items():
        if getattr(doc, field, None) != expected:
            return False
    return True


def _matches_search(doc: Session, search: Optional[str]) -> bool:
    if not search:
        return True
    needle = search.lower()
    if needle in doc.title.lower() or needle in doc.description.lower():
        return True
    return any(needle in t.lower() for t in doc.tags)


class SessionStore:
    """Record store for sessions keyed by id.

    Every read hands out an independent copy; nothing changes until save().
    Writes replace the whole document (last write wins).
    """

    def _all(self) -> Iterable[Session]:
        raise NotImplementedError

    def find_by_id(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    def save(self, session: Session) -> Session:
        raise NotImplementedError

    def find_one(self, filter: Dict[str, Any]) -> Optional[Session]:
        session_id = filter.get("id")
        if session_id is not None:
            doc = self.find_by_id(session_id)
            return doc if doc is not None and _matches(doc, filter) else None
        for doc in self._all():
            if _matches(doc, filter):
                return doc
        return None

    def find(
        self,
        filter: Dict[str, Any],
        search: Optional[str] = None,
        sort_by: str = "lastAccessed",
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Session]:
        if sort_by not in SORTABLE_FIELDS:
            sort_by = "lastAccessed"
        docs = [d for d in self._all() if _matches(d, filter) and _matches_search(d, search)]
        docs.sort(key=lambda d: getattr(d, sort_by), reverse=True)
        end = None if limit is None else skip + limit
        return docs[skip:end]

    def count_documents(self, filter: Dict[str, Any], search: Optional[str] = None) -> int:
        return sum(1 for d in self._all() if _matches(d, filter) and _matches_search(d, search))


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._docs: Dict[str, Dict[str, Any]] = {}

    def _all(self) -> Iterable[Session]:
        with self._lock:
            raw = list(self._docs.values())
        return [Session.model_validate(d) for d in raw]

    def find_by_id(self, session_id: str) -> Optional[Session]:
        with self._lock:
            raw = self._docs.get(session_id)
        return Session.model_validate(raw) if raw is not None else None

    def save(self, session: Session) -> Session:
        with self._lock:
            self._docs[session.id] = session.model_dump(mode="json")
        return session

    def clear(self) -> None:
        with self._lock:
            self._docs.clear()


class FileSessionStore(SessionStore):
    """One JSON document per session under a directory."""

    def __init__(self, directory: str | Path = SESSIONS_DIR) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _ensure_dir(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceFailure(f"cannot create sessions dir {self.directory}: {exc!r}") from exc

    def _path(self, session_id: str) -> Optional[Path]:
        if not _SAFE_ID_RE.match(session_id or ""):
            return None
        return self.directory / f"{session_id}.json"

    def _read(self, path: Path) -> Optional[Session]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise PersistenceFailure(f"failed to read {path.name}: {exc!r}") from exc
        try:
            return Session.model_validate(data)
        except PydanticValidationError as exc:
            raise PersistenceFailure(f"corrupt session document {path.name}") from exc

    def _all(self) -> Iterable[Session]:
        self._ensure_dir()
        docs: List[Session] = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                doc = self._read(path)
            except PersistenceFailure:
                log.warning("store: skipping unreadable session file=%s", path.name, exc_info=True)
                continue
            if doc is not None:
                docs.append(doc)
        return docs

    def find_by_id(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if path is None:
            return None
        self._ensure_dir()
        return self._read(path)

    def save(self, session: Session) -> Session:
        path = self._path(session.id)
        if path is None:
            raise PersistenceFailure(f"invalid session id {session.id!r}")
        self._ensure_dir()
        tmp = path.with_suffix(".tmp")
        raw = session.model_dump_json()
        with self._lock:
            try:
                tmp.write_text(raw, encoding="utf-8")
                tmp.replace(path)
            except OSError as exc:
                raise PersistenceFailure(f"failed to write {path.name}: {exc!r}") from exc
        return session


def default_store() -> SessionStore:
    # Keep test runs off the developer's data directory
    if os.getenv("PYTEST_CURRENT_TEST"):
        return InMemorySessionStore()
    return FileSessionStore(SESSIONS_DIR)
