"""
Realtime keyed store backed by SQLAlchemy.

Records are JSON documents addressed by slash paths ("vehicles/{id}",
"users/{uid}", "vehicleLocations/{id}"). Reading a collection path returns a
dict of its children. Every record carries a version stamp so multi-record
updates can be applied as one compare-and-swap batch.
"""
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from models.store_node import StoreNode
from utils.errors import StoreError
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import random
import threading
import time
import logging

logger = logging.getLogger(__name__)

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

Listener = Callable[[Any], None]


def normalize_path(path: str) -> str:
    parts = [p for p in str(path).split("/") if p]
    if not parts:
        raise ValueError("Store path must not be empty")
    return "/".join(parts)


def parent_of(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def ancestors_of(path: str) -> List[str]:
    """The path itself followed by each enclosing collection"""
    result = [path]
    while "/" in path:
        path = parent_of(path)
        result.append(path)
    return result


class PushIdGenerator:
    """Time-ordered 20 character keys: 8 timestamp chars + 12 random chars"""

    def __init__(self):
        self._last_ms = 0
        self._last_random = [0] * 12
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            now = int(time.time() * 1000)
            duplicate = now == self._last_ms
            self._last_ms = now

            ts_chars = []
            for _ in range(8):
                ts_chars.append(PUSH_CHARS[now % 64])
                now //= 64
            key = "".join(reversed(ts_chars))

            if not duplicate:
                self._last_random = [random.randrange(64) for _ in range(12)]
            else:
                # Same millisecond: increment the random part so keys stay ordered
                i = 11
                while i >= 0 and self._last_random[i] == 63:
                    self._last_random[i] = 0
                    i -= 1
                if i >= 0:
                    self._last_random[i] += 1

            return key + "".join(PUSH_CHARS[n] for n in self._last_random)


@dataclass
class VersionedWrite:
    """One write of a compare-and-swap batch. expected_version 0 means "must not exist"."""
    path: str
    value: Optional[Dict[str, Any]]
    expected_version: int


class RealtimeStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._listeners_lock = threading.Lock()
        self._push_id = PushIdGenerator()

    @contextmanager
    def _session(self):
        if self._session_factory is None:
            raise StoreError("Store not configured. Set DATABASE_URL environment variable.")
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Store error: {e}")
            raise StoreError(f"Store operation failed: {e.__class__.__name__}") from e
        finally:
            db.close()

    # Reads

    def get(self, path: str) -> Any:
        """Value at path, a dict of children for a collection path, or None"""
        path = normalize_path(path)
        with self._session() as db:
            return self._read(db, path)

    def get_versioned(self, path: str) -> Tuple[Any, int]:
        """Record value and its version stamp (0 when the record does not exist)"""
        path = normalize_path(path)
        with self._session() as db:
            node = db.get(StoreNode, path)
            if node is None:
                return None, 0
            return json.loads(node.value), node.version

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def _read(self, db, path: str) -> Any:
        node = db.get(StoreNode, path)
        if node is not None:
            return json.loads(node.value)

        children = db.query(StoreNode).filter(
            StoreNode.path.startswith(path + "/", autoescape=True)
        ).all()
        if not children:
            return None

        tree: Dict[str, Any] = {}
        for child in children:
            keys = child.path[len(path) + 1:].split("/")
            branch = tree
            for key in keys[:-1]:
                branch = branch.setdefault(key, {})
            branch[keys[-1]] = json.loads(child.value)
        return tree

    # Writes

    def set(self, path: str, value: Any) -> None:
        """Overwrite the record at path. Setting None removes it."""
        path = normalize_path(path)
        if value is None:
            self.remove(path)
            return
        with self._session() as db:
            node = db.get(StoreNode, path)
            if node is None:
                db.add(StoreNode(path=path, parent=parent_of(path), value=json.dumps(value), version=1))
            else:
                node.value = json.dumps(value)
                node.version += 1
                node.updated_at = datetime.utcnow()
            db.commit()
        self._notify([path])

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        """Merge fields into the record at path. A None field removes that key."""
        path = normalize_path(path)
        with self._session() as db:
            node = db.get(StoreNode, path)
            current = json.loads(node.value) if node is not None else {}
            if not isinstance(current, dict):
                current = {}
            for key, value in fields.items():
                if value is None:
                    current.pop(key, None)
                else:
                    current[key] = value

            if node is None:
                if current:
                    db.add(StoreNode(path=path, parent=parent_of(path), value=json.dumps(current), version=1))
            elif current:
                node.value = json.dumps(current)
                node.version += 1
                node.updated_at = datetime.utcnow()
            else:
                db.delete(node)
            db.commit()
        self._notify([path])

    def remove(self, path: str) -> None:
        """Remove the record at path and everything beneath it"""
        path = normalize_path(path)
        with self._session() as db:
            db.query(StoreNode).filter(StoreNode.path == path).delete(synchronize_session=False)
            db.query(StoreNode).filter(
                StoreNode.path.startswith(path + "/", autoescape=True)
            ).delete(synchronize_session=False)
            db.commit()
        self._notify([path])

    def push(self, path: str) -> str:
        """Reserve a new time-ordered child key under path. Nothing is written."""
        normalize_path(path)
        return self._push_id()

    def compare_and_set_many(self, writes: List[VersionedWrite]) -> bool:
        """
        Apply every write in one transaction, each only if its record is still
        at the expected version. Returns False (and writes nothing) on any
        version mismatch.
        """
        writes = [VersionedWrite(normalize_path(w.path), w.value, w.expected_version) for w in writes]
        with self._session() as db:
            for write in writes:
                if not self._apply_versioned(db, write):
                    db.rollback()
                    logger.info(f"Version conflict on {write.path} (expected v{write.expected_version})")
                    return False
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info("Version conflict: record created concurrently")
                return False
        self._notify([w.path for w in writes])
        return True

    def _apply_versioned(self, db, write: VersionedWrite) -> bool:
        if write.expected_version == 0:
            if db.get(StoreNode, write.path) is not None:
                return False
            if write.value is not None:
                db.add(StoreNode(path=write.path, parent=parent_of(write.path), value=json.dumps(write.value), version=1))
                db.flush()
            return True

        query = db.query(StoreNode).filter(
            StoreNode.path == write.path,
            StoreNode.version == write.expected_version
        )
        if write.value is None:
            return query.delete(synchronize_session=False) == 1
        return query.update({
            StoreNode.value: json.dumps(write.value),
            StoreNode.version: write.expected_version + 1,
            StoreNode.updated_at: datetime.utcnow(),
        }, synchronize_session=False) == 1

    # Subscriptions

    def subscribe(self, path: str, on_change: Listener) -> Callable[[], None]:
        """
        Call on_change with the current value now and after every committed
        change at or beneath path. Returns the unsubscribe function.
        """
        path = normalize_path(path)
        with self._listeners_lock:
            self._listeners[path].append(on_change)

        try:
            self._deliver(on_change, self.get(path))
        except StoreError as e:
            logger.warning(f"Initial value for {path} unavailable: {e}")

        def unsubscribe():
            with self._listeners_lock:
                listeners = self._listeners.get(path, [])
                if on_change in listeners:
                    listeners.remove(on_change)
                if not listeners:
                    self._listeners.pop(path, None)

        return unsubscribe

    def listener_count(self, path: str) -> int:
        with self._listeners_lock:
            return len(self._listeners.get(normalize_path(path), []))

    def _notify(self, changed_paths: List[str]):
        watched = set()
        for changed in changed_paths:
            watched.update(ancestors_of(changed))
            # Removing a collection also affects subscribers beneath it
            with self._listeners_lock:
                watched.update(p for p in self._listeners if p.startswith(changed + "/"))

        for path in sorted(watched):
            with self._listeners_lock:
                listeners = list(self._listeners.get(path, []))
            if not listeners:
                continue
            try:
                value = self.get(path)
            except StoreError as e:
                logger.warning(f"Could not read {path} for subscribers: {e}")
                continue
            for listener in listeners:
                self._deliver(listener, value)

    @staticmethod
    def _deliver(listener: Listener, value: Any):
        try:
            listener(value)
        except Exception as e:
            logger.error(f"Store listener failed: {e}", exc_info=True)


_default_store: Optional[RealtimeStore] = None

def get_store() -> RealtimeStore:
    """FastAPI dependency returning the process-wide store"""
    global _default_store
    if _default_store is None:
        from database import SessionLocal
        _default_store = RealtimeStore(SessionLocal)
    return _default_store
