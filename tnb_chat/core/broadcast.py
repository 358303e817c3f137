# tnb_chat/core/broadcast.py
from dataclasses import dataclass, field
from typing import Iterable, List

from tnb_chat.api.errors import NotAuthorizedError, StoreError
from tnb_chat.core.chat_thread_index import ChatThreadIndex, thread_id_for
from tnb_chat.models.message import STATUS_READ
from tnb_chat.models.user import UserRecord
from tnb_chat.utils.logger import log_event

BROADCAST_SENDER_NAME = "SYSTEM"
BROADCAST_PREFIX = "📢 BROADCAST: "


@dataclass
class BroadcastResult:
    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class BroadcastFanout:
    """Administrator announcement dropped into each user's direct thread with the administrator."""

    def __init__(self, threads: ChatThreadIndex):
        self._threads = threads

    async def broadcast(self, admin: UserRecord, recipients: Iterable[str], text: str) -> BroadcastResult:
        if not admin.is_admin:
            raise NotAuthorizedError(f"User {admin.uid} is not an administrator")
        text = text.strip()
        if not text:
            raise ValueError("Broadcast text must not be empty")

        result = BroadcastResult()
        # Each append stands alone; one failure does not undo or stop the others
        for uid in recipients:
            if uid == admin.uid:
                continue
            try:
                await self._threads.append(
                    thread_id_for(admin.uid, uid),
                    sender_id=admin.uid,
                    text=f"{BROADCAST_PREFIX}{text}",
                    sender_name=BROADCAST_SENDER_NAME,
                    status=STATUS_READ,
                    is_broadcast=True,
                )
                result.delivered.append(uid)
            except (StoreError, ValueError) as e:
                log_event(f"[ERROR][BROADCAST] Delivery to {uid} failed: {e}", exc_info=True)
                result.failed.append(uid)
        log_event(f"[BROADCAST] Delivered to {len(result.delivered)} user(s), {len(result.failed)} failed.")
        return result
