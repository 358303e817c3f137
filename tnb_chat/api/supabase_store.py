# tnb_chat/api/supabase_store.py
"""
RemoteStore backed by Supabase.

The tree is kept flat in one table (config.STORE_TABLE)::

    path  text primary key   -- "threads/u1_u2/-NxA..."
    value jsonb              -- a leaf: anything that is not a non-empty object

A snapshot of a path is rebuilt from the row at the path plus every row below
it. Every set/update/remove goes through one call of the database function
config.STORE_APPLY_FUNCTION, so the rows of one write commit together and a
refetch never sees half of it. Change notifications come from Supabase
realtime (postgres_changes on the table); each relevant change triggers a
fresh read of the whole subscribed path, so consumers always receive a full
snapshot. Table and function definitions live in supabase/migrations.

Disconnect writes are rows in config.INTENTS_TABLE keyed by this connection's
client id. Every connection tracks itself on the realtime presence channel
"connections"; when a connection leaves that channel without having deleted
its rows, the connections still present apply them and delete them. On its
first presence sync a connection also applies the rows of every client id not
present, which covers connections that dropped while nobody was around.
"""
import asyncio
import itertools
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
from postgrest.exceptions import APIError
from supabase.client import AsyncClient

from tnb_chat import config
from tnb_chat.api.errors import StoreError, TransientStoreError
from tnb_chat.api.store import RemoteStore, Subscription, SnapshotCallback, join_path, paths_overlap, split_path
from tnb_chat.utils.logger import log_event

PRESENCE_CHANNEL = "connections"

# PostgREST answered with an error, or the request never got an answer
_REQUEST_ERRORS = (APIError, httpx.HTTPError)


def _describe(e: Exception) -> str:
    return getattr(e, "message", None) or str(e) or type(e).__name__


def _like_prefix(path: str) -> str:
    escaped = path.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "/%"


def flatten(path: str, value: Any) -> List[Tuple[str, Any]]:
    if isinstance(value, dict):
        rows: List[Tuple[str, Any]] = []
        for key, child in value.items():
            rows.extend(flatten(join_path(path, str(key)), child))
        return rows
    if value is None:
        return []
    return [(path, value)]


def unflatten(path: str, rows: List[Dict[str, Any]]) -> Any:
    base = split_path(path)
    tree: Dict[str, Any] = {}
    for row in rows:
        parts = split_path(row["path"])[len(base):]
        if not parts:
            # The subscribed path itself is a leaf
            return row["value"]
        node = tree
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = row["value"]
    return tree or None


def apply_payload(writes: List[Tuple[str, Any]]) -> List[Dict[str, Any]]:
    """Argument of the apply function: one entry per written path with its flattened rows."""
    return [
        {"path": path, "rows": [{"path": p, "value": v} for p, v in flatten(path, value)]}
        for path, value in writes
    ]


class SupabaseStore(RemoteStore):

    def __init__(self, client: AsyncClient, table: str = config.STORE_TABLE,
                 intents_table: str = config.INTENTS_TABLE, apply_function: str = config.STORE_APPLY_FUNCTION):
        super().__init__()
        self._client = client
        self._table = table
        self._intents_table = intents_table
        self._apply_function = apply_function
        self.client_id = str(uuid.uuid4())
        self._channels: Dict[int, Any] = {}
        self._subscriptions: Dict[int, Subscription] = {}
        self._fetch_seq: Dict[int, int] = {}
        self._ids = itertools.count(1)
        self._tasks: Set[asyncio.Task] = set()
        self._presence_channel = None
        self._swept = False

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            e = task.exception()
            log_event(f"[ERROR][SB_STORE] Background task {task.get_name()} failed: {e!r}")

    async def connect(self):
        """Announce this connection on the presence channel and watch for connections that drop."""
        try:
            self._presence_channel = self._client.channel(PRESENCE_CHANNEL)
            self._presence_channel.on_presence_leave(self._on_presence_leave)
            self._presence_channel.on_presence_sync(self._on_presence_sync)
            await self._presence_channel.subscribe()
            await self._presence_channel.track({"client_id": self.client_id})
            log_event(f"[SB_STORE] Connection {self.client_id} tracked on presence channel.")
        except Exception as e:
            log_event(f"[ERROR][SB_STORE] Failed to track connection {self.client_id}: {e}", exc_info=True)
            raise TransientStoreError(f"presence tracking failed: {e}") from e

    # --- reads ---
    async def _fetch_rows(self, path: str) -> List[Dict[str, Any]]:
        exact, below = await asyncio.gather(
            self._client.table(self._table).select("path, value").eq("path", path).execute(),
            self._client.table(self._table).select("path, value").like("path", _like_prefix(path)).execute(),
        )
        return list(exact.data or []) + list(below.data or [])

    async def get(self, path: str) -> Any:
        split_path(path)
        try:
            return unflatten(path, await self._fetch_rows(path))
        except _REQUEST_ERRORS as e:
            log_event(f"[ERROR][SB_STORE] Failed reading '{path}': {_describe(e)}")
            raise TransientStoreError(f"read of '{path}' failed: {_describe(e)}") from e

    # --- writes ---
    async def _apply(self, writes: List[Tuple[str, Any]]):
        await self._client.rpc(self._apply_function, {"writes": apply_payload(writes)}).execute()

    async def _apply_or_raise(self, what: str, path: str, writes: List[Tuple[str, Any]]):
        for target, _ in writes:
            split_path(target)
        try:
            await self._apply(writes)
        except _REQUEST_ERRORS as e:
            log_event(f"[ERROR][SB_STORE] Failed {what} '{path}': {_describe(e)}")
            raise TransientStoreError(f"{what} '{path}' failed: {_describe(e)}") from e

    async def set(self, path: str, value: Any):
        await self._apply_or_raise("writing", path, [(path, value)])

    async def update(self, path: str, values: Dict[str, Any]):
        if not values:
            return
        await self._apply_or_raise("updating", path, [(join_path(path, key), value) for key, value in values.items()])

    async def remove(self, path: str):
        await self._apply_or_raise("removing", path, [(path, None)])

    async def push(self, path: str, value: Any) -> str:
        key = self.new_key()
        target = join_path(path, key)
        rows = [{"path": p, "value": v} for p, v in flatten(target, value)]
        try:
            # Fresh key: nothing to clear, one insert makes the whole entry visible at once
            await self._client.table(self._table).insert(rows).execute()
        except _REQUEST_ERRORS as e:
            log_event(f"[ERROR][SB_STORE] Failed pushing under '{path}': {_describe(e)}")
            raise TransientStoreError(f"push under '{path}' failed: {_describe(e)}") from e
        return key

    # --- subscriptions ---
    async def subscribe(self, path: str, callback: SnapshotCallback) -> Subscription:
        split_path(path)
        sub_id = next(self._ids)
        sub = Subscription(path, callback, on_cancel=lambda s: self._release(sub_id))

        def _on_change(payload: Dict[str, Any]):
            changed = self._changed_path(payload)
            if changed is None or paths_overlap(changed, path):
                self._spawn(self._refresh(sub_id, sub), name=f"RefreshTask_{sub_id}")

        try:
            channel = self._client.channel(f"store:{self.client_id}:{sub_id}")
            channel.on_postgres_changes("*", schema="public", table=self._table, callback=_on_change)
            await channel.subscribe()
        except Exception as e:
            log_event(f"[ERROR][SB_STORE] Failed to subscribe to '{path}': {e}", exc_info=True)
            raise TransientStoreError(f"subscribe to '{path}' failed: {e}") from e
        self._channels[sub_id] = channel
        self._subscriptions[sub_id] = sub
        await self._refresh(sub_id, sub)
        return sub

    @staticmethod
    def _changed_path(payload: Dict[str, Any]) -> Optional[str]:
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        for key in ("record", "old_record"):
            record = data.get(key) or {}
            if record.get("path"):
                return record["path"]
        return None

    async def _refresh(self, sub_id: int, sub: Subscription):
        seq = self._fetch_seq.get(sub_id, 0) + 1
        self._fetch_seq[sub_id] = seq
        try:
            snapshot = unflatten(sub.path, await self._fetch_rows(sub.path))
        except _REQUEST_ERRORS as e:
            log_event(f"[WARN][SB_STORE] Snapshot fetch for '{sub.path}' failed: {_describe(e)}")
            return
        # A later fetch was started meanwhile; its result supersedes this one
        if self._fetch_seq.get(sub_id) == seq:
            sub.deliver(snapshot)

    def _release(self, sub_id: int):
        channel = self._channels.pop(sub_id, None)
        self._subscriptions.pop(sub_id, None)
        self._fetch_seq.pop(sub_id, None)
        if channel is not None:
            self._spawn(self._remove_channel(channel), name=f"RemoveChannelTask_{sub_id}")

    async def _remove_channel(self, channel):
        try:
            await self._client.remove_channel(channel)
        except Exception as e:
            log_event(f"[WARN][SB_STORE] Failed to remove realtime channel: {e}")

    # --- disconnect writes ---
    async def on_disconnect_set(self, path: str, value: Any):
        try:
            await self._client.table(self._intents_table).upsert(
                {"client_id": self.client_id, "path": path, "value": value},
                on_conflict="client_id,path",
            ).execute()
        except _REQUEST_ERRORS as e:
            log_event(f"[ERROR][SB_STORE] Failed registering disconnect write for '{path}': {_describe(e)}")
            raise TransientStoreError(f"disconnect write for '{path}' failed: {_describe(e)}") from e

    async def cancel_on_disconnect(self, path: str):
        try:
            await self._client.table(self._intents_table).delete()\
                .match({"client_id": self.client_id, "path": path})\
                .execute()
        except _REQUEST_ERRORS as e:
            log_event(f"[ERROR][SB_STORE] Failed cancelling disconnect write for '{path}': {_describe(e)}")
            raise TransientStoreError(f"cancel of disconnect write for '{path}' failed: {_describe(e)}") from e

    def _on_presence_leave(self, key: str, current_presences: List[Any], left_presences: List[Any]):
        gone = sorted({
            p.get("client_id") for p in left_presences
            if isinstance(p, dict) and p.get("client_id") and p.get("client_id") != self.client_id
        })
        if gone:
            log_event(f"[SB_STORE] Connection(s) left: {', '.join(gone)}.")
            self._spawn(self.apply_disconnect_intents(gone), name="DisconnectIntentsTask")

    def _on_presence_sync(self):
        # Connections that dropped while nobody was present left their intents behind
        if self._swept:
            return
        self._swept = True
        self._spawn(self.sweep_orphaned_intents(self._live_client_ids()), name="OrphanedIntentsTask")

    def _live_client_ids(self) -> List[str]:
        live = {self.client_id}
        state = self._presence_channel.presence_state() if self._presence_channel is not None else {}
        for presences in state.values():
            for p in presences:
                if isinstance(p, dict) and p.get("client_id"):
                    live.add(p["client_id"])
        return sorted(live)

    async def sweep_orphaned_intents(self, live_client_ids: List[str]) -> int:
        """Apply the disconnect writes of every connection not in live_client_ids."""
        try:
            result = await self._client.table(self._intents_table)\
                .select("client_id")\
                .not_.in_("client_id", live_client_ids)\
                .execute()
        except _REQUEST_ERRORS as e:
            log_event(f"[WARN][SB_STORE] Failed listing orphaned disconnect writes: {_describe(e)}")
            return 0
        orphaned = sorted({row["client_id"] for row in (result.data or [])})
        if not orphaned:
            return 0
        return await self.apply_disconnect_intents(orphaned)

    async def apply_disconnect_intents(self, client_ids: List[str]) -> int:
        """Apply and delete the disconnect writes of connections that are gone. Returns the number applied."""
        try:
            result = await self._client.table(self._intents_table)\
                .select("client_id, path, value")\
                .in_("client_id", client_ids)\
                .execute()
            writes = [(row["path"], row.get("value")) for row in (result.data or [])]
            if writes:
                await self._apply(writes)
            await self._client.table(self._intents_table).delete().in_("client_id", client_ids).execute()
        except _REQUEST_ERRORS as e:
            log_event(f"[WARN][SB_STORE] Failed applying disconnect writes of {client_ids}: {_describe(e)}")
            return 0
        if writes:
            log_event(f"[SB_STORE] Applied {len(writes)} disconnect write(s) of {client_ids}.")
        return len(writes)

    async def close(self):
        for sub in list(self._subscriptions.values()):
            sub.cancel()
        try:
            # Disconnect writes are not applied on explicit teardown
            await self._client.table(self._intents_table).delete().eq("client_id", self.client_id).execute()
        except _REQUEST_ERRORS as e:
            log_event(f"[WARN][SB_STORE] Failed dropping disconnect writes on close: {_describe(e)}")
        if self._presence_channel is not None:
            try:
                await self._presence_channel.untrack()
                await self._client.remove_channel(self._presence_channel)
            except Exception as e:
                log_event(f"[WARN][SB_STORE] Error leaving presence channel: {e}")
            self._presence_channel = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        log_event(f"[SB_STORE] Connection {self.client_id} closed.")


def create_store(client: AsyncClient) -> SupabaseStore:
    if client is None:
        raise StoreError("Supabase client is not initialized")
    return SupabaseStore(client)
