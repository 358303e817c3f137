# tnb_chat/core/typing_coordinator.py
import asyncio
from typing import Callable, Dict, FrozenSet, Optional

from tnb_chat import config
from tnb_chat.api import paths
from tnb_chat.api.errors import StoreError
from tnb_chat.api.store import RemoteStore
from tnb_chat.utils.logger import log_event


class TypingCoordinator:
    """
    Debounced typing markers. Each keystroke rewrites the local marker and
    pushes back a single delayed clear per chat; sending a message clears
    the marker straight away.
    """

    def __init__(self, store: RemoteStore, local_uid: str,
                 idle_seconds: Optional[float] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None,
                 on_change: Optional[Callable[[Dict[str, FrozenSet[str]]], None]] = None):
        self._store = store
        self.local_uid = local_uid
        self.idle_seconds = config.TYPING_IDLE_SECONDS if idle_seconds is None else idle_seconds
        self._loop = loop
        self._on_change = on_change
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._pending_clears = set()
        self.typing_sets: Dict[str, FrozenSet[str]] = {}

    def _marker_path(self, chat_id: str) -> str:
        return f"{paths.typing_path(chat_id)}/{self.local_uid}"

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    async def keystroke(self, chat_id: str):
        try:
            await self._store.update(paths.typing_path(chat_id), {self.local_uid: True})
        except StoreError as e:
            log_event(f"[WARN][TYPING] Failed to write typing marker in {chat_id}: {e}", exc_info=True)
        self._cancel_timer(chat_id)
        self._timers[chat_id] = self._get_loop().call_later(self.idle_seconds, self._expire, chat_id)

    async def message_sent(self, chat_id: str):
        if self._cancel_timer(chat_id):
            await self._clear_marker(chat_id)

    def is_peer_typing(self, chat_id: str) -> bool:
        return any(uid != self.local_uid for uid in self.typing_sets.get(chat_id, ()))

    def peers_typing(self, chat_id: str) -> FrozenSet[str]:
        return frozenset(uid for uid in self.typing_sets.get(chat_id, ()) if uid != self.local_uid)

    def apply_snapshot(self, typing_sets: Dict[str, FrozenSet[str]]):
        self.typing_sets = typing_sets
        if self._on_change:
            self._on_change(typing_sets)

    def has_pending_clear(self, chat_id: str) -> bool:
        return chat_id in self._timers

    def cancel_all(self):
        """Disarm every pending clear. Safe to call any number of times."""
        if self._timers:
            log_event(f"[TYPING] Cancelling {len(self._timers)} pending clear(s).")
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    async def stop(self):
        """Logout path: disarm timers and remove the markers they were guarding."""
        armed = list(self._timers)
        self.cancel_all()
        for chat_id in armed:
            await self._clear_marker(chat_id)
        self.typing_sets = {}

    def _cancel_timer(self, chat_id: str) -> bool:
        handle = self._timers.pop(chat_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def _expire(self, chat_id: str):
        self._timers.pop(chat_id, None)
        task = self._get_loop().create_task(self._clear_marker(chat_id))
        self._pending_clears.add(task)
        task.add_done_callback(self._pending_clears.discard)

    async def _clear_marker(self, chat_id: str):
        try:
            await self._store.remove(self._marker_path(chat_id))
        except StoreError as e:
            log_event(f"[WARN][TYPING] Failed to clear typing marker in {chat_id}: {e}", exc_info=True)
