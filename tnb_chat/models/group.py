# tnb_chat/models/group.py
from dataclasses import dataclass, field
from typing import FrozenSet


@dataclass(frozen=True)
class Group:
    id: str
    name: str
    creator_id: str
    member_ids: FrozenSet[str] = field(default_factory=frozenset)  # creator included
    description: str = ""
    avatar: str = ""
    created_at: int = 0

    def has_member(self, uid: str) -> bool:
        return uid in self.member_ids

    def __str__(self):
        return f"Group(id={self.id}, name={self.name}, members={len(self.member_ids)})"
