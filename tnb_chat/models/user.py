# tnb_chat/models/user.py
from dataclasses import dataclass, field
from typing import List, Optional

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"


@dataclass(frozen=True)
class Identity:
    """Who the identity provider says the session belongs to."""
    uid: str
    email: Optional[str] = None


@dataclass(frozen=True)
class LoginRecord:
    ip: str
    timestamp: int  # epoch ms


@dataclass
class UserRecord:
    """
    One directory entry. Owned by the account; status is written by the
    presence layer, moderation flags only by an administrator.
    """
    uid: str                 # id issued by the identity provider
    handle: str = ""         # "@name"
    name: str = ""
    bio: str = ""
    avatar: str = ""         # image URL or data URI
    status: str = STATUS_OFFLINE
    last_changed: int = 0
    is_verified: bool = False
    is_private: bool = False
    is_admin: bool = False
    is_suspended: bool = False
    joined_at: int = 0
    location: Optional[str] = None
    last_login_ip: Optional[str] = None
    login_history: List[LoginRecord] = field(default_factory=list)

    def __post_init__(self):
        if not self.name:
            self.name = self.handle or f"User_{self.uid[:4]}"

    @property
    def is_online(self) -> bool:
        return self.status == STATUS_ONLINE
