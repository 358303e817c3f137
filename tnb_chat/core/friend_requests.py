# tnb_chat/core/friend_requests.py
from typing import List, Optional, Set

from tnb_chat.api import paths
from tnb_chat.api.errors import NotAuthorizedError
from tnb_chat.api.store import RemoteStore
from tnb_chat.models.friend_request import (
    REQUEST_ACCEPTED,
    REQUEST_DECLINED,
    REQUEST_PENDING,
    FriendRequest,
)
from tnb_chat.models.schemas import FriendRequestSchema
from tnb_chat.models.user import UserRecord
from tnb_chat.utils.helpers import generate_id, now_ms
from tnb_chat.utils.logger import log_event


class FriendRequestMachine:
    """
    pending -> accepted | declined. Terminal states never change again, and
    only the recipient may move a request out of pending. Transitions are
    checked against the last requests snapshot; the write itself is last
    writer wins.
    """

    def __init__(self, store: RemoteStore):
        self._store = store
        self.requests: List[FriendRequest] = []
        log_event("[REQUESTS] Initialized.")

    def apply_snapshot(self, requests: List[FriendRequest]):
        self.requests = requests

    def get(self, request_id: str) -> Optional[FriendRequest]:
        return next((r for r in self.requests if r.id == request_id), None)

    async def send(self, from_uid: str, to_uid: str) -> FriendRequest:
        if from_uid == to_uid:
            raise ValueError("Cannot send a friend request to yourself")
        request = FriendRequest(
            id=generate_id(),
            from_uid=from_uid,
            to_uid=to_uid,
            status=REQUEST_PENDING,
            timestamp=now_ms(),
        )
        await self._store.set(paths.request_path(request.id), FriendRequestSchema.from_model(request))
        log_event(f"[REQUESTS] Request {request.id} sent from {from_uid} to {to_uid}.")
        return request

    async def accept(self, request_id: str, acting_uid: str) -> bool:
        return await self._transition(request_id, acting_uid, REQUEST_ACCEPTED)

    async def decline(self, request_id: str, acting_uid: str) -> bool:
        return await self._transition(request_id, acting_uid, REQUEST_DECLINED)

    async def _transition(self, request_id: str, acting_uid: str, new_status: str) -> bool:
        request = self.get(request_id)
        if request is None:
            log_event(f"[WARN][REQUESTS] Unknown request {request_id}; nothing to {new_status}.")
            return False
        if request.to_uid != acting_uid:
            raise NotAuthorizedError(f"Only the recipient can answer request {request_id}")
        if request.is_terminal:
            log_event(f"[REQUESTS] Request {request_id} already {request.status}; ignoring '{new_status}'.")
            return False
        await self._store.update(paths.request_path(request_id), {"status": new_status})
        log_event(f"[REQUESTS] Request {request_id} {new_status} by {acting_uid}.")
        return True

    def accepted_contacts(self, uid: str) -> Set[str]:
        return {
            r.other_party(uid)
            for r in self.requests
            if r.status == REQUEST_ACCEPTED and uid in (r.from_uid, r.to_uid)
        }

    def pending_for(self, uid: str) -> List[FriendRequest]:
        """Incoming requests still waiting for `uid` to answer."""
        return [r for r in self.requests if r.to_uid == uid and r.status == REQUEST_PENDING]

    def outgoing_pending(self, uid: str) -> List[FriendRequest]:
        return [r for r in self.requests if r.from_uid == uid and r.status == REQUEST_PENDING]

    def are_contacts(self, uid_a: str, uid_b: str) -> bool:
        return any(r.status == REQUEST_ACCEPTED and r.involves(uid_a, uid_b) for r in self.requests)

    def can_view(self, viewer: UserRecord, target: UserRecord) -> bool:
        if viewer.is_admin or not target.is_private or viewer.uid == target.uid:
            return True
        return self.are_contacts(viewer.uid, target.uid)
