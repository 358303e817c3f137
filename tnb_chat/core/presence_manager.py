# tnb_chat/core/presence_manager.py
from typing import FrozenSet, Iterable

from tnb_chat.api import paths
from tnb_chat.api.errors import StoreError
from tnb_chat.api.store import RemoteStore
from tnb_chat.models.user import STATUS_OFFLINE, STATUS_ONLINE, UserRecord
from tnb_chat.utils.helpers import now_ms
from tnb_chat.utils.logger import log_event


class PresenceManager:
    """Online/offline status of the local account, safe against the client vanishing."""

    def __init__(self, store: RemoteStore):
        self._store = store
        self.online_uids: FrozenSet[str] = frozenset()
        log_event("[PRESENCE] Initialized.")

    async def start(self, uid: str) -> bool:
        """Mark `uid` online and leave the store an offline write to apply if this client disappears."""
        ok = True
        try:
            await self._store.update(paths.user_path(uid), {"status": STATUS_ONLINE, "lastChanged": now_ms()})
            log_event(f"[PRESENCE] User {uid} status set to 'online'.")
        except StoreError as e:
            log_event(f"[WARN][PRESENCE] Failed to set {uid} online: {e}", exc_info=True)
            ok = False
        try:
            await self._store.on_disconnect_set(paths.status_path(uid), STATUS_OFFLINE)
            log_event(f"[PRESENCE] Disconnect intent registered for {uid}.")
        except StoreError as e:
            log_event(f"[WARN][PRESENCE] Failed to register disconnect intent for {uid}: {e}", exc_info=True)
            ok = False
        return ok

    async def stop(self, uid: str):
        """Explicit logout: best-effort offline write, then withdraw the disconnect intent."""
        try:
            await self._store.update(paths.user_path(uid), {"status": STATUS_OFFLINE, "lastChanged": now_ms()})
            log_event(f"[PRESENCE] User {uid} status set to 'offline'.")
        except StoreError as e:
            log_event(f"[WARN][PRESENCE] Failed to set {uid} offline: {e}", exc_info=True)
        try:
            await self._store.cancel_on_disconnect(paths.status_path(uid))
        except StoreError as e:
            log_event(f"[WARN][PRESENCE] Failed to cancel disconnect intent for {uid}: {e}", exc_info=True)
        self.online_uids = frozenset()

    def apply_directory(self, users: Iterable[UserRecord]) -> FrozenSet[str]:
        self.online_uids = frozenset(u.uid for u in users if u.is_online)
        return self.online_uids

    def is_online(self, uid: str) -> bool:
        return uid in self.online_uids

    async def record_login(self, uid: str, ip: str) -> bool:
        """Update lastLoginIp and append one {ip, timestamp} entry to the login history."""
        record = {"ip": ip, "timestamp": now_ms()}
        try:
            await self._store.update(paths.user_path(uid), {"lastLoginIp": ip})
            await self._store.push(paths.login_history_path(uid), record)
            log_event(f"[PRESENCE] Login from {ip} recorded for {uid}.")
            return True
        except StoreError as e:
            log_event(f"[WARN][PRESENCE] Failed to record login for {uid}: {e}", exc_info=True)
            return False
