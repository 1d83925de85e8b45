"""Persistent store contract and two local implementations.

The tracker only needs a handful of document-store operations (upsert, insert,
update, query, subscribe) plus a server-resolved timestamp. `MemoryStore`
implements them in-process; `JsonFileStore` adds a JSON snapshot with an
append-only journal so several processes (rider CLI, dashboard) can share one
file.
"""

from __future__ import annotations

import copy
import itertools
import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Final, Mapping, Protocol

from trip_tracker.timeutils import now_ms

logger = logging.getLogger(__name__)

Record = dict[str, Any]
OnChange = Callable[[list[Record]], None]
Unsubscribe = Callable[[], None]


class _ServerTimestamp:
    """Field value replaced by the store's clock at write time."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Final = _ServerTimestamp()


class Store(Protocol):
    """What the tracker core needs from a persistent store."""

    async def upsert(
        self, collection: str, key: str, fields: Mapping[str, Any], merge: bool = True
    ) -> None: ...

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> str: ...

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None: ...

    async def query(
        self, collection: str, filters: Mapping[str, Any] | None = None, limit: int | None = None
    ) -> list[Record]: ...

    def subscribe(
        self, collection: str, filters: Mapping[str, Any] | None, on_change: OnChange
    ) -> Unsubscribe: ...


@dataclass(slots=True)
class _Listener:
    collection: str
    filters: dict[str, Any]
    on_change: OnChange


def _matches(doc: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    return all(doc.get(k) == v for k, v in filters.items())


class MemoryStore:
    """In-process document store.

    Documents keep insertion order, which is the order queries and change
    feeds return them in.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._last_ts = 0
        self._collections: dict[str, dict[str, Record]] = {}
        self._listeners: dict[int, _Listener] = {}
        self._listener_ids = itertools.count(1)

    # -- timestamps ---------------------------------------------------------

    def _server_now(self) -> int:
        # never goes backwards, so end_time >= start_time for any later write
        self._last_ts = max(self._last_ts, int(self._clock()))
        return self._last_ts

    def _resolve(self, value: Any, ts: int) -> Any:
        if value is SERVER_TIMESTAMP:
            return ts
        if isinstance(value, Mapping):
            return {k: self._resolve(v, ts) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._resolve(v, ts) for v in value]
        return value

    # -- writes -------------------------------------------------------------

    async def upsert(
        self, collection: str, key: str, fields: Mapping[str, Any], merge: bool = True
    ) -> None:
        resolved = self._resolve(fields, self._server_now())
        docs = self._collections.setdefault(collection, {})
        old = docs.get(key)
        new = {**old, **resolved} if (merge and old is not None) else dict(resolved)
        self._put(collection, key, new, old)

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        resolved = self._resolve(fields, self._server_now())
        self._put(collection, doc_id, dict(resolved), None)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        old = self._collections.get(collection, {}).get(doc_id)
        if old is None:
            raise KeyError(f"no document {doc_id!r} in {collection!r}")
        resolved = self._resolve(fields, self._server_now())
        self._put(collection, doc_id, {**old, **resolved}, old)

    def _put(self, collection: str, doc_id: str, new: Record, old: Record | None) -> None:
        new.pop("id", None)
        self._collections.setdefault(collection, {})[doc_id] = new
        self._commit(collection, doc_id, new)
        self._notify(collection, [d for d in (old, new) if d is not None])

    def _commit(self, collection: str, doc_id: str, doc: Record) -> None:
        """Persistence hook; the in-memory store keeps nothing else."""

    # -- reads --------------------------------------------------------------

    def _snapshot(self, collection: str, filters: Mapping[str, Any], limit: int | None = None) -> list[Record]:
        out: list[Record] = []
        for doc_id, doc in self._collections.get(collection, {}).items():
            if not _matches(doc, filters):
                continue
            out.append({**copy.deepcopy(doc), "id": doc_id})
            if limit is not None and len(out) >= limit:
                break
        return out

    async def query(
        self, collection: str, filters: Mapping[str, Any] | None = None, limit: int | None = None
    ) -> list[Record]:
        return self._snapshot(collection, filters or {}, limit)

    async def get(self, collection: str, doc_id: str) -> Record | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return None if doc is None else {**copy.deepcopy(doc), "id": doc_id}

    # -- change feed --------------------------------------------------------

    def subscribe(
        self, collection: str, filters: Mapping[str, Any] | None, on_change: OnChange
    ) -> Unsubscribe:
        """Deliver the current matching set now and after every change to it."""

        listener_id = next(self._listener_ids)
        listener = _Listener(collection=collection, filters=dict(filters or {}), on_change=on_change)
        self._listeners[listener_id] = listener
        self._deliver(listener)

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, collection: str, touched: list[Record]) -> None:
        for listener in list(self._listeners.values()):
            if listener.collection != collection:
                continue
            if any(_matches(doc, listener.filters) for doc in touched):
                self._deliver(listener)

    def _notify_collection(self, collection: str) -> None:
        for listener in list(self._listeners.values()):
            if listener.collection == collection:
                self._deliver(listener)

    def _deliver(self, listener: _Listener) -> None:
        snapshot = self._snapshot(listener.collection, listener.filters)
        try:
            listener.on_change(snapshot)
        except Exception:
            logger.exception("change listener on %s failed", listener.collection)


class JsonFileStore(MemoryStore):
    """MemoryStore persisted to a JSON snapshot plus a write-ahead journal.

    Example: tracker_store.json -> tracker_store.journal.jsonl
    Every write is appended to the journal immediately; `flush()` rewrites the
    snapshot and clears the journal. `refresh()` picks up writes made by other
    processes.
    """

    def __init__(self, path: str | Path, clock: Callable[[], int] = now_ms) -> None:
        super().__init__(clock=clock)
        self._path = Path(path)
        self._journal_path = self._path.with_name(f"{self._path.stem}.journal.jsonl")
        self._collections = self._read_disk()
        self._last_ts = self._max_timestamp()

    @property
    def path(self) -> Path:
        return self._path

    def _read_disk(self) -> dict[str, dict[str, Record]]:
        data: dict[str, dict[str, Record]] = {}
        if self._path.exists():
            text = self._path.read_text(encoding="utf-8").strip()
            if text:
                try:
                    raw = json.loads(text)
                except json.JSONDecodeError:
                    backup = self._path.with_suffix(self._path.suffix + ".broken")
                    backup.write_text(text, encoding="utf-8")
                    logger.warning("store snapshot %s was corrupted, kept a copy at %s", self._path, backup)
                    raw = {}
                if not isinstance(raw, dict):
                    backup = self._path.with_suffix(self._path.suffix + ".broken")
                    backup.write_text(text, encoding="utf-8")
                    logger.warning("store snapshot %s is not an object, kept a copy at %s", self._path, backup)
                    raw = {}
                for name, docs in (raw.get("collections") or {}).items():
                    if isinstance(docs, dict):
                        data[name] = {str(k): v for k, v in docs.items() if isinstance(v, dict)}
        self._replay_journal(data)
        return data

    def _replay_journal(self, data: dict[str, dict[str, Record]]) -> None:
        if not self._journal_path.exists():
            return
        try:
            with self._journal_path.open("r", encoding="utf-8") as f:
                for line in f:
                    s = line.strip()
                    if not s:
                        continue
                    try:
                        rec = json.loads(s)
                    except json.JSONDecodeError:
                        # a torn tail line from a crashed writer
                        continue
                    c, doc_id, doc = rec.get("c"), rec.get("id"), rec.get("doc")
                    if isinstance(c, str) and isinstance(doc_id, str) and isinstance(doc, dict):
                        data.setdefault(c, {})[doc_id] = doc
        except OSError as exc:
            logger.warning("could not read journal %s: %s", self._journal_path, exc)

    def _max_timestamp(self) -> int:
        latest = 0
        for docs in self._collections.values():
            for doc in docs.values():
                for key in ("timestamp", "start_time", "end_time", "last_active"):
                    value = doc.get(key)
                    if isinstance(value, int) and value > latest:
                        latest = value
        return latest

    def _commit(self, collection: str, doc_id: str, doc: Record) -> None:
        self._journal_path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps({"c": collection, "id": doc_id, "doc": doc}, ensure_ascii=False)
        with self._journal_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(line + "\n")

    def flush(self) -> None:
        """Persist the full snapshot (atomic-ish) and clear the journal."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        payload = {"collections": self._collections}
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)
        try:
            if self._journal_path.exists():
                self._journal_path.unlink()
        except OSError as exc:
            logger.warning("could not clear journal %s: %s", self._journal_path, exc)

    def refresh(self) -> set[str]:
        """Reload from disk and notify listeners of collections that changed.

        Returns:
            Names of the collections whose content changed.
        """

        fresh = self._read_disk()
        changed = {
            name
            for name in set(fresh) | set(self._collections)
            if fresh.get(name, {}) != self._collections.get(name, {})
        }
        self._collections = fresh
        self._last_ts = max(self._last_ts, self._max_timestamp())
        for name in sorted(changed):
            self._notify_collection(name)
        return changed
