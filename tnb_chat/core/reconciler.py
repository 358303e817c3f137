# tnb_chat/core/reconciler.py
"""
Snapshot-to-local-state convergence.

Every registration pairs a store path with a translate function (raw
snapshot -> typed container) and an apply function (hands the container to
its owner). Each delivery builds a brand-new container and hands it over in
one assignment, so consumers never observe a half-applied snapshot, and
delivering the same snapshot twice yields equal state.
"""
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from tnb_chat.api.errors import SnapshotSchemaError
from tnb_chat.api.store import RemoteStore, Subscription
from tnb_chat.models.call import CallSession, CallSignal
from tnb_chat.models.friend_request import FriendRequest
from tnb_chat.models.group import Group
from tnb_chat.models.message import Message
from tnb_chat.models.schemas import (
    CallSessionSchema,
    CallSignalSchema,
    FriendRequestSchema,
    GroupSchema,
    MessageSchema,
    UserRecordSchema,
    parse_entry,
)
from tnb_chat.models.user import UserRecord
from tnb_chat.utils.logger import log_event

Translate = Callable[[Any], Any]
Apply = Callable[[Any], None]


def _entries(snapshot: Any, what: str) -> List[Tuple[str, Any]]:
    if snapshot is None:
        return []
    if isinstance(snapshot, list):
        # Stores that keep integer-keyed maps may hand them back as lists with holes
        return [(str(i), v) for i, v in enumerate(snapshot) if v is not None]
    if not isinstance(snapshot, dict):
        log_event(f"[WARN][RECONCILER] Ignoring non-mapping {what} snapshot: {type(snapshot).__name__}")
        return []
    return list(snapshot.items())


def _skip(what: str, e: SnapshotSchemaError):
    log_event(f"[WARN][RECONCILER] Skipping {what} entry: {e}")


def translate_directory(snapshot: Any) -> List[UserRecord]:
    users = []
    for key, value in _entries(snapshot, "directory"):
        if isinstance(value, dict) and "uid" not in value:
            # Entries are keyed by uid; a status-only entry still belongs to that account
            value = {**value, "uid": key}
        try:
            users.append(parse_entry(UserRecordSchema, key, value).to_model())
        except SnapshotSchemaError as e:
            _skip("directory", e)
    return users


def translate_thread(snapshot: Any) -> List[Message]:
    """Messages of one thread, ordered by write-order key."""
    messages = []
    for key, value in sorted(_entries(snapshot, "thread"), key=lambda kv: kv[0]):
        try:
            messages.append(parse_entry(MessageSchema, key, value).to_model(key))
        except SnapshotSchemaError as e:
            _skip("message", e)
    return messages


def translate_threads(snapshot: Any) -> Dict[str, List[Message]]:
    return {thread_id: translate_thread(value) for thread_id, value in _entries(snapshot, "threads")}


def translate_groups(snapshot: Any) -> List[Group]:
    groups = []
    for key, value in _entries(snapshot, "groups"):
        try:
            groups.append(parse_entry(GroupSchema, key, value).to_model())
        except SnapshotSchemaError as e:
            _skip("group", e)
    return groups


def translate_requests(snapshot: Any) -> List[FriendRequest]:
    requests = []
    for key, value in _entries(snapshot, "requests"):
        try:
            requests.append(parse_entry(FriendRequestSchema, key, value).to_model())
        except SnapshotSchemaError as e:
            _skip("request", e)
    return requests


def translate_typing(snapshot: Any) -> Dict[str, FrozenSet[str]]:
    typing: Dict[str, FrozenSet[str]] = {}
    for chat_id, members in _entries(snapshot, "typing"):
        if isinstance(members, dict):
            uids = frozenset(uid for uid, marker in members.items() if marker)
            if uids:
                typing[chat_id] = uids
    return typing


def translate_call_slot(snapshot: Any) -> Optional[CallSignal]:
    if not snapshot:
        return None
    try:
        return parse_entry(CallSignalSchema, "call", snapshot).to_model()
    except SnapshotSchemaError as e:
        _skip("call signal", e)
        return None


def translate_call_session(snapshot: Any) -> Optional[CallSession]:
    if not snapshot:
        return None
    try:
        return parse_entry(CallSessionSchema, "call session", snapshot).to_model()
    except SnapshotSchemaError as e:
        _skip("call session", e)
        return None


class SubscriptionReconciler:

    def __init__(self, store: RemoteStore):
        self._store = store
        self._subscriptions: Dict[str, Subscription] = {}
        self._containers: Dict[str, Any] = {}

    async def register(self, name: str, path: str, translate: Translate, apply: Apply) -> Subscription:
        """
        Start mirroring `path` under `name`. Registering a name again replaces the
        previous registration. The first snapshot is applied before this returns.
        """
        self.unregister(name)

        def _deliver(snapshot: Any):
            try:
                container = translate(snapshot)
            except Exception as e:
                log_event(f"[ERROR][RECONCILER] Failed to translate '{name}' snapshot: {e}", exc_info=True)
                return
            self._containers[name] = container
            try:
                apply(container)
            except Exception as e:
                log_event(f"[ERROR][RECONCILER] Consumer of '{name}' failed: {e}", exc_info=True)

        sub = await self._store.subscribe(path, _deliver)
        self._subscriptions[name] = sub
        log_event(f"[RECONCILER] Registered '{name}' on '{path}'.")
        return sub

    def unregister(self, name: str):
        sub = self._subscriptions.pop(name, None)
        if sub is not None:
            sub.cancel()
            log_event(f"[RECONCILER] Unregistered '{name}'.")
        self._containers.pop(name, None)

    def teardown(self):
        """Revoke every registration and forget every container. Safe to call repeatedly."""
        if self._subscriptions:
            log_event(f"[RECONCILER] Tearing down {len(self._subscriptions)} subscription(s).")
        for name in list(self._subscriptions):
            self.unregister(name)
        self._containers.clear()

    def container(self, name: str, default: Any = None) -> Any:
        return self._containers.get(name, default)

    def is_registered(self, name: str) -> bool:
        return name in self._subscriptions

    @property
    def registered_names(self) -> List[str]:
        return list(self._subscriptions)
