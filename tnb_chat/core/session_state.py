# tnb_chat/core/session_state.py
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from tnb_chat.models.call import CallSignal
from tnb_chat.models.friend_request import FriendRequest
from tnb_chat.models.group import Group
from tnb_chat.models.message import Message
from tnb_chat.models.user import Identity, UserRecord


@dataclass
class SessionContext:
    """
    Everything the client knows for one signed-in identity. Containers are
    replaced wholesale on each snapshot, never edited in place; a new
    identity always starts from a fresh SessionContext.
    """
    identity: Identity
    directory: List[UserRecord] = field(default_factory=list)
    online: FrozenSet[str] = frozenset()
    groups: List[Group] = field(default_factory=list)
    requests: List[FriendRequest] = field(default_factory=list)
    typing: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    current_thread_id: Optional[str] = None
    current_thread: List[Message] = field(default_factory=list)
    incoming_call: Optional[CallSignal] = None

    @property
    def uid(self) -> str:
        return self.identity.uid

    def user(self, uid: str) -> Optional[UserRecord]:
        return next((u for u in self.directory if u.uid == uid), None)

    @property
    def me(self) -> Optional[UserRecord]:
        return self.user(self.identity.uid)
