import json
import logging
import os
import tempfile
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional

from weeklytunes.domain.errors import PersistenceError


logger = logging.getLogger(__name__)


class CallbackSubscription:
    """Subscription handle that detaches a callback from its registry."""

    def __init__(self, registry: List, entry: Any):
        self._registry = registry
        self._entry = entry
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        try:
            self._registry.remove(self._entry)
        except ValueError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()


class _Listener:
    def __init__(self, collection: str, order_by: str, descending: bool,
                 callback: Callable[[List[Dict[str, Any]]], None]):
        self.collection = collection
        self.order_by = order_by
        self.descending = descending
        self.callback = callback


class InMemoryDocumentStore:
    """Document store kept in process memory.

    Listeners receive a full ordered snapshot on subscribe and after every
    successful write to their collection. Documents missing the ordering
    field sort last. A write whose commit fails leaves the store unchanged.
    """

    def __init__(self, collections: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = collections or {}
        self._listeners: List[_Listener] = []
        self._lock = threading.RLock()

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def snapshot(self, collection: str, order_by: Optional[str] = None,
                 descending: bool = True) -> List[Dict[str, Any]]:
        with self._lock:
            docs = [{'id': doc_id, **data} for doc_id, data in self._collection(collection).items()]
        if order_by:
            present = [d for d in docs if d.get(order_by) is not None]
            missing = [d for d in docs if d.get(order_by) is None]
            present.sort(key=lambda d: d[order_by], reverse=descending)
            docs = present + missing
        return docs

    def _notify(self, collection: str) -> None:
        with self._lock:
            listeners = [entry for entry in self._listeners if entry.collection == collection]
        for listener in listeners:
            snapshot = self.snapshot(collection, listener.order_by, listener.descending)
            try:
                listener.callback(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener for '{collection}' failed: {e}")

    def _commit(self) -> None:
        """Hook for persistent subclasses, called after every write."""

    def _write(self, collection: str, doc_id: str, data: Optional[Dict[str, Any]]) -> None:
        """Replace one document (``None`` removes it) and commit, restoring it if the commit fails."""
        with self._lock:
            docs = self._collection(collection)
            previous = docs.get(doc_id)
            if data is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = data
            try:
                self._commit()
            except PersistenceError:
                if previous is None:
                    docs.pop(doc_id, None)
                else:
                    docs[doc_id] = previous
                raise

    def subscribe(self, collection: str, order_by: str,
                  callback: Callable[[List[Dict[str, Any]]], None],
                  descending: bool = True) -> CallbackSubscription:
        listener = _Listener(collection, order_by, descending, callback)
        with self._lock:
            self._listeners.append(listener)
        callback(self.snapshot(collection, order_by, descending))
        return CallbackSubscription(self._listeners, listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def create(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self._write(collection, doc_id, dict(data))
        self._notify(collection)
        logger.debug(f"Created {collection}/{doc_id}")
        return doc_id

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._write(collection, doc_id, dict(data))
        self._notify(collection)

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            existing = self._collection(collection).get(doc_id)
            if existing is None:
                raise PersistenceError(f"No document to update: {collection}/{doc_id}")
            self._write(collection, doc_id, {**existing, **fields})
        self._notify(collection)
        logger.debug(f"Updated {collection}/{doc_id}")

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            if doc_id not in self._collection(collection):
                raise PersistenceError(f"No document to delete: {collection}/{doc_id}")
            self._write(collection, doc_id, None)
        self._notify(collection)
        logger.debug(f"Deleted {collection}/{doc_id}")

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            data = self._collection(collection).get(doc_id)
            return dict(data) if data is not None else None


class JsonFileDocumentStore(InMemoryDocumentStore):
    """Document store persisted to a single JSON file, one object per collection."""

    def __init__(self, path: str):
        self.path = str(path)
        super().__init__(self._load())

    def _load(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise PersistenceError(f"Failed to load store from {self.path}: {e}")

    def _commit(self) -> None:
        directory = os.path.dirname(self.path) or '.'
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            with tempfile.NamedTemporaryFile('w', dir=directory, prefix='.songs-', suffix='.tmp',
                                             delete=False) as f:
                tmp_path = f.name
                json.dump(self._collections, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except (IOError, OSError) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistenceError(f"Failed to save store to {self.path}: {e}")
