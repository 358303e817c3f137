# tnb_chat/core/call_signaling.py
"""
Two-party call handshake.

Two nodes carry a call. The recipient's slot (calls/<callee>) holds the ring
signal {callerId, type}. The caller's session (callSessions/<caller>) holds
{peerId, type, status} for as long as the call exists, and both parties
watch it once they are part of the call.

Caller: IDLE -> CALLING (writes its session, then the callee's slot) ->
CONNECTED (session status turns "connected") -> IDLE (session removed by
either side). Callee: IDLE -> RINGING (own slot filled) -> CONNECTED (accept
marks the session connected and clears its own slot) -> IDLE (decline or
either side ends). A slot is only cleared while it still holds this call's
signal, so a ring that waited behind a busy line survives the hang-up and is
offered next. Only the handshake lives here; media is someone else's problem.
"""
from typing import Callable, Optional

from tnb_chat.api import paths
from tnb_chat.api.errors import StoreError
from tnb_chat.api.store import RemoteStore
from tnb_chat.core.reconciler import SubscriptionReconciler, translate_call_session, translate_call_slot
from tnb_chat.models.call import (
    SESSION_CONNECTED,
    CallLog,
    CallSession,
    CallSignal,
    CallState,
    CallType,
)
from tnb_chat.models.schemas import CallSessionSchema, CallSignalSchema
from tnb_chat.utils.helpers import generate_id, now_ms
from tnb_chat.utils.logger import log_event

CALL_SESSION_SUBSCRIPTION = "call_session"


class CallSignalingMachine:

    def __init__(self, store: RemoteStore, reconciler: SubscriptionReconciler, local_uid: str,
                 on_state_changed: Optional[Callable[[CallState, Optional[str]], None]] = None,
                 on_incoming: Optional[Callable[[Optional[CallSignal]], None]] = None,
                 on_logged: Optional[Callable[[CallLog], None]] = None):
        self._store = store
        self._reconciler = reconciler
        self.local_uid = local_uid
        self._on_state_changed = on_state_changed
        self._on_incoming = on_incoming
        self._on_logged = on_logged

        self.state = CallState.IDLE
        self.peer_id: Optional[str] = None
        self.call_type: Optional[CallType] = None
        self.incoming: Optional[CallSignal] = None
        self._session_owner: Optional[str] = None  # caller uid keying the current call's session
        self._own_slot: Optional[CallSignal] = None  # last snapshot of our own slot
        log_event(f"[CALL] Initialized for {local_uid}.")

    # --- state helpers ---
    def _set_state(self, state: CallState, peer_id: Optional[str] = None, call_type: Optional[CallType] = None):
        self.state = state
        self.peer_id = peer_id
        self.call_type = call_type
        if state == CallState.IDLE:
            self._session_owner = None
        log_event(f"[CALL] State -> {state.value} (peer={peer_id}, type={call_type.value if call_type else None})")
        if self._on_state_changed:
            self._on_state_changed(state, peer_id)

    def _set_incoming(self, signal: Optional[CallSignal]):
        self.incoming = signal
        if self._on_incoming:
            self._on_incoming(signal)

    def _log_call(self, call_type: CallType, peer_id: str) -> CallLog:
        entry = CallLog(id=generate_id(), type=call_type, peer_id=peer_id, timestamp=now_ms(), duration=0)
        log_event(f"[CALL] Call log {entry.id}: {call_type.value} with {peer_id}.")
        if self._on_logged:
            self._on_logged(entry)
        return entry

    async def _clear_slot_if(self, uid: str, caller_id: str):
        """Remove calls/<uid> only while it holds a signal from caller_id."""
        path = paths.call_slot_path(uid)
        try:
            signal = translate_call_slot(await self._store.get(path))
            if signal is None or signal.caller_id != caller_id:
                return
            await self._store.remove(path)
        except StoreError as e:
            log_event(f"[WARN][CALL] Failed to clear call slot of {uid}: {e}", exc_info=True)
            return
        if uid == self.local_uid:
            self._own_slot = None

    async def _remove_session(self, owner_uid: str, peer_id: str):
        """Remove callSessions/<owner_uid> only while it still describes the call with peer_id."""
        path = paths.call_session_path(owner_uid)
        try:
            session = translate_call_session(await self._store.get(path))
            if session is None or session.peer_id != peer_id:
                return
            await self._store.remove(path)
        except StoreError as e:
            log_event(f"[WARN][CALL] Failed to remove call session of {owner_uid}: {e}", exc_info=True)

    async def _watch_session(self, owner_uid: str):
        await self._reconciler.register(CALL_SESSION_SUBSCRIPTION, paths.call_session_path(owner_uid),
                                        translate_call_session, self._on_session)
        if self.state == CallState.IDLE:
            # The first snapshot already ended the call
            self._reconciler.unregister(CALL_SESSION_SUBSCRIPTION)

    def _surface_waiting_call(self):
        waiting = self._own_slot
        if self.state != CallState.IDLE or waiting is None or waiting.caller_id == self.local_uid:
            return
        log_event(f"[CALL] Offering call from {waiting.caller_id} that waited while the line was busy.")
        self._set_state(CallState.RINGING, waiting.caller_id, waiting.type)
        self._set_incoming(waiting)

    # --- snapshot handlers ---
    def on_own_slot(self, signal: Optional[CallSignal]):
        """Apply function for the local account's slot."""
        self._own_slot = signal
        if signal is None:
            if self.state == CallState.RINGING and self.incoming is not None:
                # Caller withdrew before we answered
                caller = self.incoming
                self._set_incoming(None)
                self._set_state(CallState.IDLE)
                self._log_call(CallType.MISSED, caller.caller_id)
            return

        if signal.caller_id == self.local_uid:
            log_event("[WARN][CALL] Own slot holds a signal from ourselves; ignoring.")
            return
        if self.state in (CallState.CALLING, CallState.CONNECTED):
            log_event(f"[CALL] Busy ({self.state.value}); not surfacing incoming call from {signal.caller_id}.")
            return
        if self.state == CallState.RINGING and self.incoming == signal:
            return
        self._set_state(CallState.RINGING, signal.caller_id, signal.type)
        self._set_incoming(signal)

    def _on_session(self, session: Optional[CallSession]):
        if self.state not in (CallState.CALLING, CallState.CONNECTED):
            return
        expected_peer = self.peer_id if self._session_owner == self.local_uid else self.local_uid
        if session is not None and session.peer_id != expected_peer:
            log_event(f"[WARN][CALL] Session of {self._session_owner} now targets {session.peer_id}; ignoring.")
            return

        if session is None:
            peer_id, call_type = self.peer_id, self.call_type
            if self.state == CallState.CALLING:
                log_event(f"[CALL] {peer_id} declined the call.")
            else:
                log_event(f"[CALL] {peer_id} ended the call.")
            self._reconciler.unregister(CALL_SESSION_SUBSCRIPTION)
            self._set_state(CallState.IDLE)
            self._log_call(call_type, peer_id)
            self._surface_waiting_call()
        elif session.status == SESSION_CONNECTED and self.state == CallState.CALLING:
            self._set_state(CallState.CONNECTED, self.peer_id, self.call_type)

    # --- intents ---
    async def start_call(self, peer_id: str, call_type: CallType) -> bool:
        if call_type not in (CallType.VOICE, CallType.VIDEO):
            raise ValueError(f"Cannot place a '{call_type.value}' call")
        if peer_id == self.local_uid:
            raise ValueError("Cannot call yourself")
        if self.state != CallState.IDLE:
            log_event(f"[WARN][CALL] Cannot call {peer_id} while {self.state.value}.")
            return False

        self._set_state(CallState.CALLING, peer_id, call_type)
        self._session_owner = self.local_uid
        session = CallSession(peer_id=peer_id, type=call_type)
        signal = CallSignal(caller_id=self.local_uid, type=call_type)
        try:
            # The session exists before the callee can ring, so an accept always finds it
            await self._store.set(paths.call_session_path(self.local_uid), CallSessionSchema.from_model(session))
            await self._watch_session(self.local_uid)
            await self._store.set(paths.call_slot_path(peer_id), CallSignalSchema.from_model(signal))
        except StoreError as e:
            log_event(f"[ERROR][CALL] Failed to signal {peer_id}: {e}", exc_info=True)
            self._reconciler.unregister(CALL_SESSION_SUBSCRIPTION)
            self._set_state(CallState.IDLE)
            await self._remove_session(self.local_uid, peer_id)
            return False
        return True

    async def accept(self) -> bool:
        if self.state != CallState.RINGING or self.incoming is None:
            log_event(f"[WARN][CALL] Nothing to accept (state={self.state.value}).")
            return False
        signal = self.incoming
        session_path = paths.call_session_path(signal.caller_id)
        try:
            session = translate_call_session(await self._store.get(session_path))
            if session is not None and session.peer_id == self.local_uid:
                await self._store.update(session_path, {"status": SESSION_CONNECTED})
        except StoreError as e:
            log_event(f"[ERROR][CALL] Failed to accept call from {signal.caller_id}: {e}", exc_info=True)
            return False

        self._set_incoming(None)
        if session is None or session.peer_id != self.local_uid:
            log_event(f"[CALL] Call from {signal.caller_id} was withdrawn before it was accepted.")
            self._set_state(CallState.IDLE)
            self._log_call(CallType.MISSED, signal.caller_id)
            await self._clear_slot_if(self.local_uid, signal.caller_id)
            return False

        self._set_state(CallState.CONNECTED, signal.caller_id, signal.type)
        self._session_owner = signal.caller_id
        try:
            await self._watch_session(signal.caller_id)
        except StoreError as e:
            log_event(f"[WARN][CALL] Failed to watch call session of {signal.caller_id}: {e}", exc_info=True)
        await self._clear_slot_if(self.local_uid, signal.caller_id)
        return True

    async def decline(self) -> bool:
        if self.state != CallState.RINGING or self.incoming is None:
            log_event(f"[WARN][CALL] Nothing to decline (state={self.state.value}).")
            return False
        caller_id = self.incoming.caller_id
        self._set_incoming(None)
        self._set_state(CallState.IDLE)
        await self._clear_slot_if(self.local_uid, caller_id)
        await self._clear_slot_if(caller_id, self.local_uid)
        await self._remove_session(caller_id, self.local_uid)
        self._surface_waiting_call()
        return True

    async def end(self) -> Optional[CallLog]:
        """Hang up. Returns the call log for a call that was placed or connected."""
        if self.state == CallState.IDLE:
            return None
        if self.state == CallState.RINGING:
            await self.decline()
            return None
        peer_id, call_type, owner = self.peer_id, self.call_type, self._session_owner
        self._reconciler.unregister(CALL_SESSION_SUBSCRIPTION)
        self._set_state(CallState.IDLE)
        await self._clear_slot_if(peer_id, self.local_uid)
        await self._clear_slot_if(self.local_uid, peer_id)
        if owner == self.local_uid:
            await self._remove_session(owner, peer_id)
        elif owner is not None:
            await self._remove_session(owner, self.local_uid)
        entry = self._log_call(call_type, peer_id)
        self._surface_waiting_call()
        return entry

    async def reset(self):
        """Session teardown: hang up whatever is in progress and stop watching the call."""
        self._own_slot = None
        await self.end()
        self._reconciler.unregister(CALL_SESSION_SUBSCRIPTION)
        self.incoming = None
