# tnb_chat/models/call.py
import enum
from dataclasses import dataclass


class CallType(str, enum.Enum):
    VOICE = "voice"
    VIDEO = "video"
    MISSED = "missed"  # only used for history records


class CallState(str, enum.Enum):
    IDLE = "idle"
    CALLING = "calling"      # caller: signal written, waiting for the callee
    RINGING = "ringing"      # callee: signal observed, waiting for the user
    CONNECTED = "connected"


@dataclass(frozen=True)
class CallSignal:
    """Content of calls/<recipient uid>. At most one per recipient."""
    caller_id: str
    type: CallType


@dataclass(frozen=True)
class CallLog:
    id: str
    type: CallType
    peer_id: str
    timestamp: int
    duration: int = 0  # no timing source for calls; always 0


SESSION_RINGING = "ringing"
SESSION_CONNECTED = "connected"


@dataclass(frozen=True)
class CallSession:
    """Content of callSessions/<caller uid>: the caller's one call in progress, watched by both parties."""
    peer_id: str
    type: CallType
    status: str = SESSION_RINGING
