# tnb_chat/models/schemas.py
"""
Wire schemas for the remote store collections.

Every entry of a snapshot goes through one of these models before it reaches
local state. Field names on the wire are camelCase; the dataclass models in
this package are snake_case, so each schema carries aliases and a
``to_model()`` converter. ``from_model()`` gives the dict written back to the
store.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from tnb_chat.api.errors import SnapshotSchemaError
from tnb_chat.models.call import CallSession, CallSignal, CallType
from tnb_chat.models.friend_request import FriendRequest
from tnb_chat.models.group import Group
from tnb_chat.models.message import Message
from tnb_chat.models.user import LoginRecord, UserRecord


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _ordered_values(value: Any) -> Any:
    """The store keeps append-only sequences as maps keyed by push key; flatten them in key order."""
    if isinstance(value, dict):
        return [value[k] for k in sorted(value)]
    return value


class LoginRecordSchema(_WireModel):
    ip: str
    timestamp: int


class UserRecordSchema(_WireModel):
    uid: str
    handle: str = Field("", alias="userId")
    name: str = ""
    bio: str = ""
    avatar: str = Field("", alias="dpUrl")
    status: Literal["online", "offline"] = "offline"
    last_changed: int = Field(0, alias="lastChanged")
    is_verified: bool = Field(False, alias="isVerified")
    is_private: bool = Field(False, alias="isPrivate")
    is_admin: bool = Field(False, alias="isAdmin")
    is_suspended: bool = Field(False, alias="isSuspended")
    joined_at: int = Field(0, alias="joinedAt")
    location: Optional[str] = None
    last_login_ip: Optional[str] = Field(None, alias="lastLoginIp")
    login_history: Annotated[List[LoginRecordSchema], BeforeValidator(_ordered_values)] = Field(
        default_factory=list, alias="loginHistory"
    )

    def to_model(self) -> UserRecord:
        return UserRecord(
            uid=self.uid,
            handle=self.handle,
            name=self.name,
            bio=self.bio,
            avatar=self.avatar,
            status=self.status,
            last_changed=self.last_changed,
            is_verified=self.is_verified,
            is_private=self.is_private,
            is_admin=self.is_admin,
            is_suspended=self.is_suspended,
            joined_at=self.joined_at,
            location=self.location,
            last_login_ip=self.last_login_ip,
            login_history=[LoginRecord(ip=r.ip, timestamp=r.timestamp) for r in self.login_history],
        )

    @classmethod
    def from_model(cls, user: UserRecord) -> Dict[str, Any]:
        """Wire dict for a full profile write. loginHistory is omitted; it is appended with push()."""
        schema = cls(
            uid=user.uid,
            handle=user.handle,
            name=user.name,
            bio=user.bio,
            avatar=user.avatar,
            status=user.status,
            last_changed=user.last_changed,
            is_verified=user.is_verified,
            is_private=user.is_private,
            is_admin=user.is_admin,
            is_suspended=user.is_suspended,
            joined_at=user.joined_at,
            location=user.location,
            last_login_ip=user.last_login_ip,
        )
        return schema.model_dump(by_alias=True, exclude_none=True, exclude={"login_history"})


class MessageSchema(_WireModel):
    id: Optional[str] = None
    sender_id: str = Field(alias="senderId")
    sender_name: Optional[str] = Field(None, alias="senderName")
    text: str
    timestamp: int
    status: Literal["sent", "delivered", "read"] = "sent"
    is_broadcast: bool = Field(False, alias="isBroadcast")

    def to_model(self, key: str) -> Message:
        # The snapshot key is the write-order key; a stored "id" field never overrides it
        return Message(
            id=key,
            sender_id=self.sender_id,
            text=self.text,
            timestamp=self.timestamp,
            status=self.status,
            sender_name=self.sender_name,
            is_broadcast=self.is_broadcast,
        )

    @classmethod
    def from_model(cls, message: Message) -> Dict[str, Any]:
        schema = cls(
            id=message.id,
            sender_id=message.sender_id,
            sender_name=message.sender_name,
            text=message.text,
            timestamp=message.timestamp,
            status=message.status,
            is_broadcast=message.is_broadcast,
        )
        return schema.model_dump(by_alias=True, exclude_none=True)


class GroupSchema(_WireModel):
    id: str
    name: str
    description: str = ""
    member_ids: Annotated[List[str], BeforeValidator(_ordered_values)] = Field(
        default_factory=list, alias="memberIds"
    )
    creator_id: str = Field(alias="creatorId")
    avatar: str = Field("", alias="avatarUrl")
    created_at: int = Field(0, alias="createdAt")

    def to_model(self) -> Group:
        members: FrozenSet[str] = frozenset(self.member_ids) | {self.creator_id}
        return Group(
            id=self.id,
            name=self.name,
            creator_id=self.creator_id,
            member_ids=members,
            description=self.description,
            avatar=self.avatar,
            created_at=self.created_at,
        )

    @classmethod
    def from_model(cls, group: Group) -> Dict[str, Any]:
        schema = cls(
            id=group.id,
            name=group.name,
            description=group.description,
            member_ids=sorted(group.member_ids),
            creator_id=group.creator_id,
            avatar=group.avatar,
            created_at=group.created_at,
        )
        return schema.model_dump(by_alias=True)


class FriendRequestSchema(_WireModel):
    id: str
    from_uid: str = Field(alias="from")
    to_uid: str = Field(alias="to")
    status: Literal["pending", "accepted", "declined"] = "pending"
    timestamp: int = 0

    def to_model(self) -> FriendRequest:
        return FriendRequest(
            id=self.id,
            from_uid=self.from_uid,
            to_uid=self.to_uid,
            status=self.status,
            timestamp=self.timestamp,
        )

    @classmethod
    def from_model(cls, request: FriendRequest) -> Dict[str, Any]:
        schema = cls(
            id=request.id,
            from_uid=request.from_uid,
            to_uid=request.to_uid,
            status=request.status,
            timestamp=request.timestamp,
        )
        return schema.model_dump(by_alias=True)


class CallSignalSchema(_WireModel):
    caller_id: str = Field(alias="callerId")
    type: Literal["voice", "video"]

    def to_model(self) -> CallSignal:
        return CallSignal(caller_id=self.caller_id, type=CallType(self.type))

    @classmethod
    def from_model(cls, signal: CallSignal) -> Dict[str, Any]:
        return cls(caller_id=signal.caller_id, type=signal.type.value).model_dump(by_alias=True)


class CallSessionSchema(_WireModel):
    peer_id: str = Field(alias="peerId")
    type: Literal["voice", "video"]
    status: Literal["ringing", "connected"] = "ringing"

    def to_model(self) -> CallSession:
        return CallSession(peer_id=self.peer_id, type=CallType(self.type), status=self.status)

    @classmethod
    def from_model(cls, session: CallSession) -> Dict[str, Any]:
        return cls(peer_id=session.peer_id, type=session.type.value, status=session.status).model_dump(by_alias=True)


SchemaT = TypeVar("SchemaT", bound=_WireModel)


def parse_entry(schema_cls: Type[SchemaT], key: str, value: Any) -> SchemaT:
    """Validate one snapshot entry, raising SnapshotSchemaError with the offending key."""
    try:
        return schema_cls.model_validate(value)
    except ValidationError as e:
        raise SnapshotSchemaError(key, str(e)) from e
