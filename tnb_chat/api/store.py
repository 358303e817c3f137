# tnb_chat/api/store.py
"""
Remote store abstraction.

The store is a JSON-like tree addressed by ``/``-separated paths. Readers
subscribe to a path and get the *whole* value under it again on every change;
writers overwrite whatever is at an address (last writer wins). A client can
pre-register a write that the store applies on its own if the client's
connection drops without an explicit teardown.

``MemoryStore`` implements the full contract in-process. Several
``MemoryStore`` connections can share one ``MemoryDatabase`` to stand in for
several clients of the same backend.
"""
import abc
import copy
import itertools
from typing import Any, Callable, Dict, List, Optional, Tuple

from tnb_chat.api.errors import StoreError
from tnb_chat.api.push_keys import PushKeyGenerator
from tnb_chat.utils.logger import log_event

SnapshotCallback = Callable[[Any], None]


def split_path(path: str) -> List[str]:
    parts = [p for p in path.split("/") if p]
    if not parts:
        raise StoreError(f"Invalid store path: '{path}'")
    return parts


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def paths_overlap(a: str, b: str) -> bool:
    """True if one path is the other or an ancestor of it."""
    pa, pb = split_path(a), split_path(b)
    n = min(len(pa), len(pb))
    return pa[:n] == pb[:n]


class Subscription:
    """
    Handle returned by RemoteStore.subscribe(). cancel() stops deliveries
    immediately and may be called any number of times.
    """

    def __init__(self, path: str, callback: SnapshotCallback, on_cancel: Optional[Callable[["Subscription"], None]] = None):
        self.path = path
        self._callback = callback
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, snapshot: Any):
        if self._active:
            self._callback(snapshot)

    def cancel(self):
        if not self._active:
            return
        self._active = False
        if self._on_cancel:
            self._on_cancel(self)


class RemoteStore(abc.ABC):
    """Interface every store backend implements. Writes are coroutines; snapshots arrive via callbacks."""

    def __init__(self):
        self._keys = PushKeyGenerator()

    def new_key(self) -> str:
        """A fresh write-order key, usable as a child name before writing."""
        return self._keys.next_key()

    @abc.abstractmethod
    async def get(self, path: str) -> Any:
        ...

    @abc.abstractmethod
    async def set(self, path: str, value: Any):
        ...

    @abc.abstractmethod
    async def update(self, path: str, values: Dict[str, Any]):
        """Overwrite each child of `path` named in `values` (keys may be relative paths)."""

    @abc.abstractmethod
    async def remove(self, path: str):
        ...

    async def push(self, path: str, value: Any) -> str:
        key = self.new_key()
        await self.set(join_path(path, key), value)
        return key

    @abc.abstractmethod
    async def subscribe(self, path: str, callback: SnapshotCallback) -> Subscription:
        """Register interest in `path`; the current snapshot is delivered right away, then on every change."""

    @abc.abstractmethod
    async def on_disconnect_set(self, path: str, value: Any):
        """Register a write the store applies by itself if this connection is lost."""

    @abc.abstractmethod
    async def cancel_on_disconnect(self, path: str):
        ...

    @abc.abstractmethod
    async def close(self):
        """Explicit teardown: drop subscriptions. Registered disconnect writes are not applied."""


class MemoryDatabase:
    """The shared tree and subscriber registry behind one or more MemoryStore connections."""

    def __init__(self):
        self.root: Dict[str, Any] = {}
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    # --- tree access ---
    def read(self, path: str) -> Any:
        node: Any = self.root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def _write(self, path: str, value: Any):
        parts = split_path(path)
        if value is None or value == {}:
            self._delete(parts)
            return
        node = self.root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = copy.deepcopy(value)

    def _delete(self, parts: List[str]):
        trail: List[Tuple[Dict[str, Any], str]] = []
        node: Any = self.root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return
            trail.append((node, part))
            node = node[part]
        parent, key = trail[-1]
        del parent[key]
        # Prune parents left empty, as the tree never stores empty maps
        for parent, key in reversed(trail[:-1]):
            if parent[key] == {}:
                del parent[key]
            else:
                break

    def apply(self, writes: List[Tuple[str, Any]]):
        """Apply a batch of (path, value) writes, then notify every affected subscriber once."""
        affected = [
            (sub, self.read(sub.path))
            for sub in list(self._subscriptions.values())
            if any(paths_overlap(sub.path, p) for p, _ in writes)
        ]
        for path, value in writes:
            self._write(path, value)
        for sub, before in affected:
            after = self.read(sub.path)
            if after != before:
                sub.deliver(after)

    # --- subscriptions ---
    def add_subscription(self, path: str, callback: SnapshotCallback) -> Subscription:
        sub_id = next(self._ids)
        sub = Subscription(path, callback, on_cancel=lambda s: self._subscriptions.pop(sub_id, None))
        self._subscriptions[sub_id] = sub
        return sub

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)


class MemoryStore(RemoteStore):
    """One client connection to a MemoryDatabase."""

    def __init__(self, database: Optional[MemoryDatabase] = None):
        super().__init__()
        self.database = database or MemoryDatabase()
        self._subscriptions: List[Subscription] = []
        self._disconnect_writes: Dict[str, Any] = {}
        self.connected = True

    def _check_connected(self):
        if not self.connected:
            raise StoreError("Connection to the store is closed")

    async def get(self, path: str) -> Any:
        self._check_connected()
        return self.database.read(path)

    async def set(self, path: str, value: Any):
        self._check_connected()
        self.database.apply([(path, value)])

    async def update(self, path: str, values: Dict[str, Any]):
        self._check_connected()
        self.database.apply([(join_path(path, key), value) for key, value in values.items()])

    async def remove(self, path: str):
        self._check_connected()
        self.database.apply([(path, None)])

    async def subscribe(self, path: str, callback: SnapshotCallback) -> Subscription:
        self._check_connected()
        split_path(path)
        sub = self.database.add_subscription(path, callback)
        self._subscriptions.append(sub)
        sub.deliver(self.database.read(path))
        return sub

    async def on_disconnect_set(self, path: str, value: Any):
        self._check_connected()
        self._disconnect_writes[path] = copy.deepcopy(value)

    async def cancel_on_disconnect(self, path: str):
        self._disconnect_writes.pop(path, None)

    @property
    def pending_disconnect_writes(self) -> Dict[str, Any]:
        return dict(self._disconnect_writes)

    def _drop_subscriptions(self):
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions = []

    async def close(self):
        self._drop_subscriptions()
        self._disconnect_writes.clear()
        self.connected = False

    def simulate_connection_loss(self):
        """The client vanished: the database applies every registered disconnect write."""
        log_event(f"[MEM_STORE] Connection lost, applying {len(self._disconnect_writes)} disconnect write(s).")
        self._drop_subscriptions()
        writes = list(self._disconnect_writes.items())
        self._disconnect_writes.clear()
        self.connected = False
        if writes:
            self.database.apply(writes)
