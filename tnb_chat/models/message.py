# tnb_chat/models/message.py
from dataclasses import dataclass
from typing import Optional

STATUS_SENT = "sent"
STATUS_READ = "read"


@dataclass(frozen=True)
class Message:
    """
    A message inside a thread. `id` is the write-order key assigned by the
    store at append time; ordering always comes from it, never from `timestamp`.
    Only `status` may change after the write, and nothing in this package advances it yet.
    """
    id: str
    sender_id: str
    text: str
    timestamp: int                  # epoch ms at send time
    status: str = STATUS_SENT
    sender_name: Optional[str] = None  # shown in group threads
    is_broadcast: bool = False
