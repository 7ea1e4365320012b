"""
Key/value persistence for engine state.

Managers depend only on the ``KeyValueStore`` protocol. Two adapters are
provided: ``MemoryStore`` for tests and throwaway sessions, and ``SqlStore``
which keeps JSON values in the application's SQLite database.
"""

import copy
import json
import logging
from typing import Any, Optional, Protocol

from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import SQLAlchemyError

from config import STORAGE_SETTINGS
from engine.errors import StorageError
from models.base import get_engine, get_session, init_db, make_session_factory
from models.stored_value import StoredValue


logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Persistence contract used by the managers."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """In-process store. Values are deep-copied in and out."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class SqlStore:
    """
    SQLite-backed store using the ``stored_values`` table.

    Keys are prefixed with a namespace so several sessions can share one
    database file. Any database or encoding failure is raised as
    ``StorageError``.

    Usage:
        store = SqlStore()                       # default user database
        store = SqlStore(create_db_engine("sqlite:///:memory:"))
        store.set("scoring/scores", {"red": 10})
    """

    def __init__(self, engine: Engine = None, namespace: str = None):
        self._engine = engine or get_engine()
        self._namespace = namespace or STORAGE_SETTINGS.namespace
        self._session_factory = make_session_factory(self._engine)
        try:
            init_db(self._engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not initialize storage: {e}") from e

    @property
    def namespace(self) -> str:
        return self._namespace

    def _full_key(self, key: str) -> str:
        return f"{self._namespace}/{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            with get_session(self._session_factory) as session:
                row = session.get(StoredValue, self._full_key(key))
                raw = row.value if row is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read '{key}': {e}") from e

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored value for '{key}' is not valid JSON") from e

    def set(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for '{key}' is not JSON serializable") from e

        try:
            with get_session(self._session_factory) as session:
                row = session.get(StoredValue, self._full_key(key))
                if row is None:
                    session.add(StoredValue(key=self._full_key(key), value=raw))
                else:
                    row.value = raw
        except SQLAlchemyError as e:
            raise StorageError(f"Could not write '{key}': {e}") from e

    def remove(self, key: str) -> None:
        try:
            with get_session(self._session_factory) as session:
                session.execute(delete(StoredValue).where(StoredValue.key == self._full_key(key)))
        except SQLAlchemyError as e:
            raise StorageError(f"Could not remove '{key}': {e}") from e

    def keys(self) -> list[str]:
        """Keys in this namespace, without the prefix."""
        prefix = f"{self._namespace}/"
        try:
            with get_session(self._session_factory) as session:
                rows = session.scalars(
                    select(StoredValue.key).where(StoredValue.key.startswith(prefix, autoescape=True))
                ).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not list keys: {e}") from e
        return [row[len(prefix):] for row in rows]

    def clear(self) -> None:
        """Remove every key in this namespace."""
        prefix = f"{self._namespace}/"
        try:
            with get_session(self._session_factory) as session:
                session.execute(
                    delete(StoredValue).where(StoredValue.key.startswith(prefix, autoescape=True))
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Could not clear namespace '{self._namespace}': {e}") from e
        logger.info("Cleared storage namespace '%s'", self._namespace)
