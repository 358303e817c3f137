# tnb_chat/core/session_controller.py
import asyncio
from typing import Any, Dict, List, Optional

from PySide6.QtCore import QObject, Signal, Slot

from tnb_chat.api import auth as api_auth
from tnb_chat.api import lookup as api_lookup
from tnb_chat.api import paths
from tnb_chat.api.errors import AuthenticationError, NotAuthorizedError, StoreError
from tnb_chat.api.store import RemoteStore
from tnb_chat.core.broadcast import BroadcastFanout
from tnb_chat.core.call_signaling import CallSignalingMachine
from tnb_chat.core.chat_thread_index import (
    GROUP_THREAD_PREFIX,
    ChatThreadIndex,
    group_thread_id,
    thread_id_for,
)
from tnb_chat.core.directory_service import DirectoryService
from tnb_chat.core.friend_requests import FriendRequestMachine
from tnb_chat.core.presence_manager import PresenceManager
from tnb_chat.core.reconciler import (
    SubscriptionReconciler,
    translate_call_slot,
    translate_directory,
    translate_groups,
    translate_requests,
    translate_thread,
    translate_typing,
)
from tnb_chat.core.session_state import SessionContext
from tnb_chat.core.typing_coordinator import TypingCoordinator
from tnb_chat.models.call import CallLog, CallSignal, CallState, CallType
from tnb_chat.models.friend_request import FriendRequest
from tnb_chat.models.group import Group
from tnb_chat.models.message import Message
from tnb_chat.models.user import Identity, UserRecord
from tnb_chat.storage.local_storage_service import LocalStorageService
from tnb_chat.utils.logger import log_event

# Reconciler registration names
SUB_DIRECTORY = "directory"
SUB_GROUPS = "groups"
SUB_REQUESTS = "requests"
SUB_TYPING = "typing"
SUB_OWN_CALL_SLOT = "own_call_slot"
SUB_THREAD = "thread"


class SessionController(QObject):
    login_successful = Signal(object)  # Identity
    login_failed = Signal(str)
    signup_successful = Signal()
    signup_failed = Signal(str)
    logout_finished = Signal()
    status_update_signal = Signal(str)
    operation_failed = Signal(str)

    directory_updated = Signal(object)  # visible UserRecords
    online_users_updated = Signal(object)  # uids
    groups_updated = Signal(object)  # Groups the user belongs to
    requests_updated = Signal(object)  # incoming pending FriendRequests
    thread_updated = Signal(str, object)  # thread id, Messages in key order
    typing_updated = Signal(str, object)  # thread id, uids of peers typing
    incoming_call = Signal(object)  # CallSignal or None
    call_state_changed = Signal(str, str)  # CallState value, peer uid ("" when idle)
    call_logged = Signal(object)  # CallLog
    broadcast_finished = Signal(object, object)  # delivered uids, failed uids

    def __init__(self, store: RemoteStore, auth=api_auth, lookup=api_lookup,
                 local_storage: Optional[LocalStorageService] = None):
        super().__init__()
        self.store = store
        self._auth = auth
        self._lookup = lookup
        self.local_storage = local_storage or LocalStorageService()
        self.context: Optional[SessionContext] = None
        self._tasks = set()

        log_event("[CTRL] Initializing core components...")
        self.reconciler = SubscriptionReconciler(store)
        self.presence = PresenceManager(store)
        self.threads = ChatThreadIndex(store)
        self.requests = FriendRequestMachine(store)
        self.directory = DirectoryService(store, self.requests)
        self.fanout = BroadcastFanout(self.threads)
        self.typing: Optional[TypingCoordinator] = None
        self.calls: Optional[CallSignalingMachine] = None
        log_event("[CTRL] Core components initialized.")

    # --- helpers ---
    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _report(self, action: str, e: Exception):
        log_event(f"[ERROR][CTRL] {action} failed: {e}", exc_info=not isinstance(e, (ValueError, NotAuthorizedError)))
        self.operation_failed.emit(f"{action} failed: {e}")

    @property
    def current_user(self) -> Optional[UserRecord]:
        return self.context.me if self.context else None

    def _require_context(self) -> SessionContext:
        if self.context is None:
            raise NotAuthorizedError("No user is signed in")
        return self.context

    def _require_current_user(self) -> UserRecord:
        me = self._require_context().me
        if me is None:
            raise NotAuthorizedError("Profile of the signed-in user is not loaded yet")
        return me

    # --- session lifecycle ---
    @Slot(str, str)
    def handle_login_attempt(self, email: str, password: str):
        log_event(f"[CTRL] Handle Login Attempt for: {email}")
        self.status_update_signal.emit("Signing in...")
        self._spawn(self._perform_login(email, password), name=f"LoginTask_{email}")

    async def _perform_login(self, email: str, password: str):
        log_event(f"[CTRL][ASYNC] Performing login for {email}...")
        try:
            identity = await self._auth.sign_in(email, password)
        except AuthenticationError as e:
            log_event(f"[CTRL] Login failed for {email}: {e.message}")
            self.login_failed.emit(e.message)
            return
        await self._enter_session(identity)

    async def _enter_session(self, identity: Identity):
        try:
            await self._start_session(identity)
        except StoreError as e:
            log_event(f"[ERROR][CTRL] Could not start session for {identity.uid}: {e}", exc_info=True)
            self.reconciler.teardown()
            self.context = None
            self.login_failed.emit(f"Could not reach the server: {e}")
            return

        me = self.context.me
        if me is not None and me.is_suspended:
            log_event(f"[WARN][CTRL] Account {identity.uid} is suspended; signing out.")
            await self._perform_logout()
            self.login_failed.emit("This account has been suspended.")
            return
        log_event(f"[CTRL] Login successful for User: {identity.uid}, Email: {identity.email}")
        self.login_successful.emit(identity)
        self.status_update_signal.emit("Ready!")

    async def _start_session(self, identity: Identity):
        """Drop everything from a previous identity, then bring presence and subscriptions up for this one."""
        self._drop_session()
        uid = identity.uid
        self.context = SessionContext(identity=identity)
        self.typing = TypingCoordinator(self.store, uid, on_change=self._on_typing_changed)
        self.calls = CallSignalingMachine(
            self.store, self.reconciler, uid,
            on_state_changed=self._on_call_state_changed,
            on_incoming=self._on_incoming_call,
            on_logged=self._on_call_logged,
        )

        log_event("[CTRL] Running post-login setup...")
        await self.presence.start(uid)
        ip = await self._lookup.fetch_ip()
        await self.presence.record_login(uid, ip)

        await self.reconciler.register(SUB_DIRECTORY, paths.DIRECTORY, translate_directory, self._apply_directory)
        await self.reconciler.register(SUB_REQUESTS, paths.REQUESTS, translate_requests, self._apply_requests)
        await self.reconciler.register(SUB_GROUPS, paths.GROUPS, translate_groups, self._apply_groups)
        await self.reconciler.register(SUB_TYPING, paths.TYPING, translate_typing, self.typing.apply_snapshot)
        await self.reconciler.register(SUB_OWN_CALL_SLOT, paths.call_slot_path(uid), translate_call_slot,
                                       self.calls.on_own_slot)
        log_event("[CTRL] Post-login setup complete.")

    def _drop_session(self):
        """Local-only teardown; nothing is written on behalf of the identity being dropped."""
        self.reconciler.teardown()
        if self.typing:
            self.typing.cancel_all()
        self.typing = None
        self.calls = None
        self.threads.reset()
        self.context = None

    async def check_existing_session(self):
        log_event("[CTRL] Checking for existing login session...")
        identity = await self._auth.get_current_session_user()
        if identity is None:
            log_event("[CTRL] No active session found.")
            return
        await self._enter_session(identity)

    @Slot(str, str, str)
    def handle_signup_attempt(self, handle: str, email: str, password: str):
        log_event(f"[CTRL] Handle Signup Attempt for: {email}, Handle: {handle}")
        self.status_update_signal.emit("Creating account...")
        self._spawn(self._perform_signup(handle, email, password), name=f"SignupTask_{email}")

    async def _perform_signup(self, handle: str, email: str, password: str):
        log_event(f"[CTRL][ASYNC] Performing signup for {email}...")
        if not handle.strip():
            self.signup_failed.emit("A handle is required.")
            return
        try:
            identity = await self._auth.sign_up(email, password)
        except AuthenticationError as e:
            log_event(f"[CTRL] Signup failed for {email}: {e.message}")
            self.signup_failed.emit(e.message)
            return

        location, ip = await asyncio.gather(self._lookup.fetch_location(), self._lookup.fetch_ip())
        try:
            await self.directory.create_profile(identity.uid, handle, location=location)
        except StoreError as e:
            log_event(f"[ERROR][CTRL] Failed to create profile for {identity.uid}: {e}", exc_info=True)
            self.signup_failed.emit(f"Account created but the profile could not be saved: {e}")
            return
        await self.presence.record_login(identity.uid, ip)
        log_event(f"[CTRL] Signup successful for {email}.")
        self.signup_successful.emit()

    @Slot()
    def handle_logout(self):
        log_event("[CTRL] Logout initiated by user.")
        self.status_update_signal.emit("Signing out...")
        self._spawn(self._perform_logout(), name="LogoutTask")

    async def _perform_logout(self):
        log_event("[CTRL][ASYNC] Performing logout...")
        ctx = self.context
        if ctx is not None:
            if self.typing:
                await self.typing.stop()
            if self.calls:
                await self.calls.reset()
            await self.presence.stop(ctx.uid)
        if await self._auth.sign_out():
            log_event("[CTRL] Sign out successful.")
        else:
            log_event("[WARN][CTRL] Sign out call failed or returned false.")
        self._drop_session()
        log_event("[CTRL] Local state cleared after logout.")
        self.logout_finished.emit()

    def close(self):
        """Synchronous shutdown for the entry point; the store applies the offline intent on its side."""
        log_event("[CTRL] Closing controller.")
        for task in list(self._tasks):
            task.cancel()
        self._drop_session()

    # --- snapshot consumers ---
    def _apply_directory(self, users: List[UserRecord]):
        ctx = self.context
        if ctx is None:
            return
        ctx.directory = users
        self.directory.apply_directory(users)
        ctx.online = self.presence.apply_directory(users)
        self._emit_directory()
        self.online_users_updated.emit(sorted(ctx.online))

    def _emit_directory(self):
        me = self.current_user
        if me is not None:
            self.directory_updated.emit(self.directory.visible_users(me))

    def _apply_requests(self, requests: List[FriendRequest]):
        ctx = self.context
        if ctx is None:
            return
        ctx.requests = requests
        self.requests.apply_snapshot(requests)
        self.requests_updated.emit(self.requests.pending_for(ctx.uid))
        # Accepting a request can reveal a private account
        self._emit_directory()

    def _apply_groups(self, groups: List[Group]):
        ctx = self.context
        if ctx is None:
            return
        ctx.groups = groups
        self.directory.apply_groups(groups)
        self.groups_updated.emit(self.directory.my_groups(ctx.uid))

    def _apply_thread(self, thread_id: str, messages: List[Message]):
        ctx = self.context
        if ctx is None or ctx.current_thread_id != thread_id:
            return
        ctx.current_thread = messages
        self.threads.apply_snapshot(thread_id, messages)
        self.thread_updated.emit(thread_id, messages)

    def _on_typing_changed(self, typing_sets: Dict[str, Any]):
        ctx = self.context
        if ctx is None:
            return
        ctx.typing = typing_sets
        if ctx.current_thread_id and self.typing:
            self.typing_updated.emit(ctx.current_thread_id, sorted(self.typing.peers_typing(ctx.current_thread_id)))

    def _on_incoming_call(self, signal: Optional[CallSignal]):
        if self.context is not None:
            self.context.incoming_call = signal
        self.incoming_call.emit(signal)

    def _on_call_state_changed(self, state: CallState, peer_id: Optional[str]):
        self.call_state_changed.emit(state.value, peer_id or "")

    def _on_call_logged(self, entry: CallLog):
        if self.context is not None:
            self.local_storage.add_call_log(self.context.uid, entry)
        self.call_logged.emit(entry)

    def call_history(self, limit: int = 100) -> List[CallLog]:
        if self.context is None:
            return []
        return self.local_storage.get_call_logs(self.context.uid, limit)

    # --- threads ---
    @Slot(str)
    def open_direct_thread(self, peer_uid: str):
        self._spawn(self._perform_open_direct_thread(peer_uid), name=f"OpenThread_{peer_uid}")

    async def _perform_open_direct_thread(self, peer_uid: str):
        try:
            await self._open_thread(thread_id_for(self._require_context().uid, peer_uid))
        except (StoreError, ValueError, NotAuthorizedError) as e:
            self._report("Opening chat", e)

    @Slot(str)
    def open_group_thread(self, group_id: str):
        self._spawn(self._perform_open_group_thread(group_id), name=f"OpenGroupThread_{group_id}")

    async def _perform_open_group_thread(self, group_id: str):
        try:
            await self._open_thread(group_thread_id(group_id))
        except (StoreError, ValueError, NotAuthorizedError) as e:
            self._report("Opening group chat", e)

    async def _open_thread(self, thread_id: str):
        ctx = self._require_context()
        if ctx.current_thread_id == thread_id and self.reconciler.is_registered(SUB_THREAD):
            return
        if ctx.current_thread_id:
            self.threads.forget(ctx.current_thread_id)
        ctx.current_thread_id = thread_id
        ctx.current_thread = []
        log_event(f"[CTRL] Current thread set to {thread_id}")
        await self.reconciler.register(SUB_THREAD, paths.thread_path(thread_id), translate_thread,
                                       lambda messages: self._apply_thread(thread_id, messages))

    @Slot(str)
    def send_chat_message(self, text: str):
        self._spawn(self._perform_send_message(text), name="SendMessageTask")

    async def _perform_send_message(self, text: str) -> Optional[Message]:
        text = text.strip()
        if not text:
            return None
        try:
            ctx = self._require_context()
            if not ctx.current_thread_id:
                raise ValueError("No chat is open")
            thread_id = ctx.current_thread_id
            me = ctx.me
            sender_name = None
            if thread_id.startswith(GROUP_THREAD_PREFIX) and me is not None:
                sender_name = me.name
            message = await self.threads.append(thread_id, ctx.uid, text, sender_name=sender_name)
        except (StoreError, ValueError, NotAuthorizedError) as e:
            self._report("Sending message", e)
            return None
        if self.typing:
            await self.typing.message_sent(thread_id)
        return message

    @Slot()
    def handle_keystroke(self):
        ctx = self.context
        if ctx is None or not ctx.current_thread_id or self.typing is None:
            return
        self._spawn(self.typing.keystroke(ctx.current_thread_id), name="TypingTask")

    @Slot()
    def clear_current_thread(self):
        self._spawn(self._perform_clear_thread(), name="ClearThreadTask")

    async def _perform_clear_thread(self):
        try:
            ctx = self._require_context()
            if not ctx.current_thread_id:
                raise ValueError("No chat is open")
            await self.threads.clear(ctx.current_thread_id)
        except (StoreError, ValueError, NotAuthorizedError) as e:
            self._report("Clearing chat", e)

    # --- friend requests ---
    @Slot(str)
    def send_friend_request(self, to_uid: str):
        self._spawn(self._perform_send_request(to_uid), name=f"SendRequest_{to_uid}")

    async def _perform_send_request(self, to_uid: str) -> Optional[FriendRequest]:
        try:
            return await self.requests.send(self._require_context().uid, to_uid)
        except (StoreError, ValueError, NotAuthorizedError) as e:
            self._report("Sending friend request", e)
            return None

    @Slot(str)
    def accept_friend_request(self, request_id: str):
        self._spawn(self._perform_answer_request(request_id, accept=True), name=f"AcceptRequest_{request_id}")

    @Slot(str)
    def decline_friend_request(self, request_id: str):
        self._spawn(self._perform_answer_request(request_id, accept=False), name=f"DeclineRequest_{request_id}")

    async def _perform_answer_request(self, request_id: str, accept: bool) -> bool:
        try:
            uid = self._require_context().uid
            if accept:
                return await self.requests.accept(request_id, uid)
            return await self.requests.decline(request_id, uid)
        except (StoreError, NotAuthorizedError) as e:
            self._report("Answering friend request", e)
            return False

    # --- calls ---
    @Slot(str, str)
    def start_call(self, peer_uid: str, call_type: str):
        self._spawn(self._perform_start_call(peer_uid, call_type), name=f"CallTask_{peer_uid}")

    async def _perform_start_call(self, peer_uid: str, call_type: str) -> bool:
        try:
            self._require_context()
            return await self.calls.start_call(peer_uid, CallType(call_type))
        except (ValueError, NotAuthorizedError) as e:
            self._report("Starting call", e)
            return False

    @Slot()
    def accept_call(self):
        if self.calls:
            self._spawn(self.calls.accept(), name="AcceptCallTask")

    @Slot()
    def decline_call(self):
        if self.calls:
            self._spawn(self.calls.decline(), name="DeclineCallTask")

    @Slot()
    def end_call(self):
        if self.calls:
            self._spawn(self.calls.end(), name="EndCallTask")

    # --- administration, profile, groups ---
    @Slot(str)
    def broadcast(self, text: str):
        self._spawn(self._perform_broadcast(text), name="BroadcastTask")

    async def _perform_broadcast(self, text: str):
        try:
            admin = self._require_current_user()
            recipients = [u.uid for u in self._require_context().directory]
            result = await self.fanout.broadcast(admin, recipients, text)
        except (ValueError, NotAuthorizedError) as e:
            self._report("Broadcast", e)
            return None
        self.broadcast_finished.emit(result.delivered, result.failed)
        return result

    @Slot(dict)
    def update_profile(self, fields: Dict[str, Any]):
        self._spawn(self._perform_update_profile(fields), name="UpdateProfileTask")

    async def _perform_update_profile(self, fields: Dict[str, Any]) -> bool:
        try:
            await self.directory.update_profile(self._require_context().uid, fields)
            return True
        except (StoreError, ValueError, NotAuthorizedError) as e:
            self._report("Updating profile", e)
            return False

    @Slot(str, str)
    def toggle_moderation_flag(self, target_uid: str, flag: str):
        self._spawn(self._perform_toggle_flag(target_uid, flag), name=f"ToggleFlag_{target_uid}_{flag}")

    async def _perform_toggle_flag(self, target_uid: str, flag: str) -> Optional[bool]:
        try:
            return await self.directory.toggle_flag(self._require_current_user(), target_uid, flag)
        except (StoreError, ValueError, NotAuthorizedError) as e:
            self._report("Moderation", e)
            return None

    @Slot(str, list, str)
    def create_group(self, name: str, member_ids: List[str], description: str = ""):
        self._spawn(self._perform_create_group(name, member_ids, description), name=f"CreateGroup_{name}")

    async def _perform_create_group(self, name: str, member_ids: List[str], description: str = "") -> Optional[Group]:
        try:
            return await self.directory.create_group(self._require_context().uid, name, member_ids, description)
        except (StoreError, ValueError, NotAuthorizedError) as e:
            self._report("Creating group", e)
            return None
