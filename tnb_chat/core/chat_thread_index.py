# tnb_chat/core/chat_thread_index.py
from typing import Dict, List, Optional

from tnb_chat.api import paths
from tnb_chat.api.store import RemoteStore
from tnb_chat.models.message import STATUS_SENT, Message
from tnb_chat.models.schemas import MessageSchema
from tnb_chat.utils.helpers import now_ms
from tnb_chat.utils.logger import log_event

THREAD_ID_DELIMITER = "_"
GROUP_THREAD_PREFIX = "group_"


def thread_id_for(uid_a: str, uid_b: str) -> str:
    """
    Two-party thread id: both uids sorted and joined, so either side computes the same id.

    Account uids are Supabase auth UUIDs (hex and hyphens), which never contain
    the delimiter. Any other id containing it is rejected with ValueError, since
    the joined form would no longer identify a single pair.
    """
    for uid in (uid_a, uid_b):
        if not uid or THREAD_ID_DELIMITER in uid:
            raise ValueError(f"Invalid participant id for a thread: '{uid}'")
    return THREAD_ID_DELIMITER.join(sorted((uid_a, uid_b)))


def group_thread_id(group_id: str) -> str:
    if not group_id:
        raise ValueError("Group id must not be empty")
    return f"{GROUP_THREAD_PREFIX}{group_id}"


class ChatThreadIndex:
    """Append-only threads keyed by push key; reads come from the last snapshot applied."""

    def __init__(self, store: RemoteStore):
        self._store = store
        self._threads: Dict[str, List[Message]] = {}
        log_event("[THREADS] Initialized.")

    async def append(self, thread_id: str, sender_id: str, text: str,
                     sender_name: Optional[str] = None, status: str = STATUS_SENT,
                     is_broadcast: bool = False) -> Message:
        """Write one message under a fresh write-order key. Store errors propagate to the caller."""
        key = self._store.new_key()
        message = Message(
            id=key,
            sender_id=sender_id,
            text=text,
            timestamp=now_ms(),
            status=status,
            sender_name=sender_name,
            is_broadcast=is_broadcast,
        )
        await self._store.set(f"{paths.thread_path(thread_id)}/{key}", MessageSchema.from_model(message))
        log_event(f"[THREADS] Message {key} appended to {thread_id}.")
        return message

    async def clear(self, thread_id: str):
        await self._store.remove(paths.thread_path(thread_id))
        log_event(f"[THREADS] Thread {thread_id} cleared.")

    def apply_snapshot(self, thread_id: str, messages: List[Message]):
        self._threads[thread_id] = messages

    def forget(self, thread_id: str):
        self._threads.pop(thread_id, None)

    def messages(self, thread_id: str) -> List[Message]:
        """Messages in key order; an unknown or empty thread gives an empty list."""
        return list(self._threads.get(thread_id, ()))

    def reset(self):
        self._threads = {}
