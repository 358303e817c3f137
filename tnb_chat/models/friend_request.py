# tnb_chat/models/friend_request.py
from dataclasses import dataclass

REQUEST_PENDING = "pending"
REQUEST_ACCEPTED = "accepted"
REQUEST_DECLINED = "declined"


@dataclass(frozen=True)
class FriendRequest:
    id: str
    from_uid: str
    to_uid: str
    status: str = REQUEST_PENDING
    timestamp: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != REQUEST_PENDING

    def involves(self, uid_a: str, uid_b: str) -> bool:
        """True if the request links the two accounts, in either direction."""
        return {self.from_uid, self.to_uid} == {uid_a, uid_b}

    def other_party(self, uid: str) -> str:
        return self.to_uid if self.from_uid == uid else self.from_uid
