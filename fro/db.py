from __future__ import annotations

import copy
import json
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Iterator

from .ownership import controller_of
from .settings import settings


Obj = dict[str, Any]
WatchCallback = Callable[[str, Obj], None]


class StoreError(Exception):
    pass


class NotFound(StoreError):
    pass


class AlreadyExists(StoreError):
    pass


class Conflict(StoreError):
    """The object was modified since it was read (stale resourceVersion)."""


class Forbidden(StoreError):
    pass


class StoreUnavailable(StoreError):
    pass


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path(path: str) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (docker creates one for a missing
    bind-mounted file), the DB file is placed inside it.
    """

    p = os.path.abspath(path)

    if os.path.isdir(p):
        p = os.path.join(p, "fro.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def _describe(kind: str, namespace: str, name: str) -> str:
    return f"{kind} {namespace}/{name}"


class Store:
    """SQLite-backed object store.

    Objects are manifest dicts keyed by (kind, namespace, name). Every write
    is a single-row transaction guarded by ``metadata.resourceVersion``;
    owned objects reference their controller's uid and are removed by
    ``ON DELETE CASCADE`` when the owner is deleted.
    """

    def __init__(self, db_path: str | None = None, read_only: bool | None = None) -> None:
        self.db_path = db_path or settings.db_path
        self.read_only = settings.store_read_only if read_only is None else read_only
        self._watch_lock = Lock()
        self._watchers: list[WatchCallback] = []

    # --- connection ---

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(_resolve_db_path(self.db_path), check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self.connect()
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"Cannot open store at '{self.db_path}': {e}") from e
        try:
            with conn:
                yield conn
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(str(e)) from e
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        with self._tx() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS objects (
                  uid TEXT PRIMARY KEY,
                  kind TEXT NOT NULL,
                  namespace TEXT NOT NULL,
                  name TEXT NOT NULL,
                  resource_version INTEGER NOT NULL,
                  owner_uid TEXT,
                  body TEXT NOT NULL,
                  created_at TEXT NOT NULL,
                  UNIQUE(kind, namespace, name),
                  FOREIGN KEY(owner_uid) REFERENCES objects(uid) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  namespace TEXT,
                  name TEXT,
                  message TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
                CREATE INDEX IF NOT EXISTS idx_objects_owner_uid ON objects(owner_uid);
                """
            )

    # --- events ---

    def log_event(self, level: str, message: str, namespace: str | None = None, name: str | None = None) -> None:
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, namespace, name, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level.upper(), namespace, name, message),
            )

    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]:
        with self._tx() as conn:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]

    # --- watch ---

    def watch(self, callback: WatchCallback) -> None:
        """Register ``callback(event_type, obj)``; called after every committed write."""
        with self._watch_lock:
            self._watchers.append(callback)

    def _notify(self, event_type: str, obj: Obj) -> None:
        with self._watch_lock:
            watchers = list(self._watchers)
        for cb in watchers:
            cb(event_type, copy.deepcopy(obj))

    # --- reads ---

    @staticmethod
    def _decode(row: sqlite3.Row) -> Obj:
        obj = json.loads(row["body"])
        meta = obj.setdefault("metadata", {})
        meta["uid"] = row["uid"]
        meta["resourceVersion"] = str(row["resource_version"])
        return obj

    def get(self, kind: str, namespace: str, name: str) -> Obj:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM objects WHERE kind=? AND namespace=? AND name=?",
                (kind, namespace, name),
            ).fetchone()
        if row is None:
            raise NotFound(f"{_describe(kind, namespace, name)} not found")
        return self._decode(row)

    def list(self, kind: str, namespace: str | None = None) -> list[Obj]:
        with self._tx() as conn:
            if namespace:
                cur = conn.execute(
                    "SELECT * FROM objects WHERE kind=? AND namespace=? ORDER BY namespace, name",
                    (kind, namespace),
                )
            else:
                cur = conn.execute("SELECT * FROM objects WHERE kind=? ORDER BY namespace, name", (kind,))
            return [self._decode(r) for r in cur.fetchall()]

    # --- writes ---

    def _check_writable(self) -> None:
        if self.read_only:
            raise Forbidden("Store is read-only")

    def create(self, obj: Obj) -> Obj:
        self._check_writable()
        obj = copy.deepcopy(obj)
        kind = obj.get("kind") or ""
        meta = obj.setdefault("metadata", {})
        namespace, name = meta.get("namespace") or "", meta.get("name") or ""
        if not kind or not namespace or not name:
            raise StoreError("kind, metadata.namespace and metadata.name are required")

        meta["uid"] = str(uuid.uuid4())
        meta["resourceVersion"] = "1"
        meta["creationTimestamp"] = utc_now()
        owner = controller_of(obj)
        owner_uid = owner.get("uid") if owner else None

        with self._tx() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO objects (uid, kind, namespace, name, resource_version, owner_uid, body, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (meta["uid"], kind, namespace, name, 1, owner_uid, json.dumps(obj), meta["creationTimestamp"]),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e):
                    raise AlreadyExists(f"{_describe(kind, namespace, name)} already exists") from e
                raise NotFound(f"Owner {owner_uid} of {_describe(kind, namespace, name)} does not exist") from e

        self._notify("ADDED", obj)
        return copy.deepcopy(obj)

    def _replace(self, obj: Obj, build: Callable[[Obj, Obj], Obj]) -> Obj:
        """Compare-and-swap ``obj`` against the stored row.

        ``build(stored, incoming)`` returns the new body; resourceVersion is
        bumped and the write fails with Conflict if the row moved on.
        """
        self._check_writable()
        kind = obj.get("kind") or ""
        meta = obj.get("metadata") or {}
        namespace, name = meta.get("namespace") or "", meta.get("name") or ""
        expected = str(meta.get("resourceVersion") or "")

        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM objects WHERE kind=? AND namespace=? AND name=?",
                (kind, namespace, name),
            ).fetchone()
            if row is None:
                raise NotFound(f"{_describe(kind, namespace, name)} not found")
            if expected != str(row["resource_version"]):
                raise Conflict(
                    f"{_describe(kind, namespace, name)} was modified concurrently "
                    f"(have resourceVersion {expected or '<none>'}, store has {row['resource_version']})"
                )

            new = build(self._decode(row), copy.deepcopy(obj))
            version = row["resource_version"] + 1
            new_meta = new.setdefault("metadata", {})
            new_meta["uid"] = row["uid"]
            new_meta["resourceVersion"] = str(version)
            owner = controller_of(new)

            try:
                cur = conn.execute(
                    """
                    UPDATE objects SET body=?, resource_version=?, owner_uid=?
                    WHERE uid=? AND resource_version=?
                    """,
                    (json.dumps(new), version, owner.get("uid") if owner else None, row["uid"], row["resource_version"]),
                )
            except sqlite3.IntegrityError as e:
                raise NotFound(f"Owner of {_describe(kind, namespace, name)} does not exist") from e
            if cur.rowcount != 1:
                raise Conflict(f"{_describe(kind, namespace, name)} was modified concurrently")

        self._notify("MODIFIED", new)
        return copy.deepcopy(new)

    def update(self, obj: Obj) -> Obj:
        """Update everything except ``status`` (which has its own path)."""

        def build(stored: Obj, incoming: Obj) -> Obj:
            incoming.pop("status", None)
            if "status" in stored:
                incoming["status"] = stored["status"]
            incoming.setdefault("metadata", {})["creationTimestamp"] = stored["metadata"].get("creationTimestamp")
            return incoming

        return self._replace(obj, build)

    def update_status(self, obj: Obj) -> Obj:
        """Update only ``status``; everything else is kept as stored."""

        def build(stored: Obj, incoming: Obj) -> Obj:
            stored["status"] = incoming.get("status") or {}
            return stored

        return self._replace(obj, build)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        self._check_writable()
        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM objects WHERE kind=? AND namespace=? AND name=?",
                (kind, namespace, name),
            ).fetchone()
            if row is None:
                raise NotFound(f"{_describe(kind, namespace, name)} not found")
            conn.execute("DELETE FROM objects WHERE uid=?", (row["uid"],))
        self._notify("DELETED", self._decode(row))
