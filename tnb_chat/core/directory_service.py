# tnb_chat/core/directory_service.py
from typing import Any, Dict, Iterable, List, Optional

from tnb_chat.api import paths
from tnb_chat.api.errors import NotAuthorizedError
from tnb_chat.api.store import RemoteStore
from tnb_chat.core.friend_requests import FriendRequestMachine
from tnb_chat.models.group import Group
from tnb_chat.models.schemas import GroupSchema, UserRecordSchema
from tnb_chat.models.user import UserRecord
from tnb_chat.utils.helpers import emoji_avatar, generate_id, normalize_handle, now_ms
from tnb_chat.utils.logger import log_event

# Owner-editable profile fields and their wire names
PROFILE_FIELDS = {
    "name": "name",
    "bio": "bio",
    "avatar": "dpUrl",
    "handle": "userId",
    "is_private": "isPrivate",
    "location": "location",
}

# Administrator-only flags
MODERATION_FLAGS = {
    "verified": "isVerified",
    "suspended": "isSuspended",
}


class DirectoryService:
    """Profiles, moderation and groups on top of the directory/groups snapshots."""

    def __init__(self, store: RemoteStore, requests: FriendRequestMachine):
        self._store = store
        self._requests = requests
        self.users: List[UserRecord] = []
        self.groups: List[Group] = []
        log_event("[DIRECTORY] Initialized.")

    def apply_directory(self, users: List[UserRecord]):
        self.users = users

    def apply_groups(self, groups: List[Group]):
        self.groups = groups

    def user(self, uid: str) -> Optional[UserRecord]:
        return next((u for u in self.users if u.uid == uid), None)

    async def create_profile(self, uid: str, handle: str, name: str = "", location: Optional[str] = None,
                             avatar: Optional[str] = None) -> UserRecord:
        """Write the directory entry of a freshly registered account."""
        handle = normalize_handle(handle)
        user = UserRecord(
            uid=uid,
            handle=handle,
            name=name or handle.lstrip("@"),
            avatar=avatar or emoji_avatar(handle.lstrip("@") or "?"),
            joined_at=now_ms(),
            location=location,
        )
        await self._store.set(paths.user_path(uid), UserRecordSchema.from_model(user))
        log_event(f"[DIRECTORY] Profile created for {uid} ({handle}).")
        return user

    async def update_profile(self, uid: str, fields: Dict[str, Any]):
        unknown = set(fields) - set(PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Not an editable profile field: {', '.join(sorted(unknown))}")
        if not fields:
            return
        values = dict(fields)
        if "handle" in values:
            values["handle"] = normalize_handle(values["handle"])
        await self._store.update(paths.user_path(uid), {PROFILE_FIELDS[k]: v for k, v in values.items()})
        log_event(f"[DIRECTORY] Profile of {uid} updated: {sorted(values)}")

    async def toggle_flag(self, admin: UserRecord, target_uid: str, flag: str) -> bool:
        """Flip a moderation flag on `target_uid`; returns the new value."""
        if not admin.is_admin:
            raise NotAuthorizedError(f"User {admin.uid} is not an administrator")
        if flag not in MODERATION_FLAGS:
            raise ValueError(f"Unknown moderation flag '{flag}'")
        target = self.user(target_uid)
        if target is None:
            raise ValueError(f"Unknown user '{target_uid}'")
        new_value = not getattr(target, f"is_{flag}")
        await self._store.update(paths.user_path(target_uid), {MODERATION_FLAGS[flag]: new_value})
        log_event(f"[DIRECTORY] {admin.uid} set {flag}={new_value} on {target_uid}.")
        return new_value

    async def create_group(self, creator_uid: str, name: str, member_ids: Iterable[str],
                           description: str = "") -> Group:
        name = name.strip()
        if not name:
            raise ValueError("Group name must not be empty")
        group = Group(
            id=generate_id(),
            name=name,
            creator_id=creator_uid,
            member_ids=frozenset(member_ids) | {creator_uid},
            description=description or "New Group",
            avatar=emoji_avatar(name),
            created_at=now_ms(),
        )
        await self._store.set(paths.group_path(group.id), GroupSchema.from_model(group))
        log_event(f"[DIRECTORY] Group {group.id} '{name}' created by {creator_uid} with {len(group.member_ids)} member(s).")
        return group

    def visible_users(self, viewer: UserRecord) -> List[UserRecord]:
        return [u for u in self.users if u.uid != viewer.uid and self._requests.can_view(viewer, u)]

    def my_groups(self, uid: str) -> List[Group]:
        return [g for g in self.groups if g.has_member(uid)]
