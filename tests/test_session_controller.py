import os
import tempfile
import types
import unittest
from unittest import mock

from PySide6.QtCore import QCoreApplication

from tnb_chat.api.errors import AuthenticationError
from tnb_chat.api.store import MemoryDatabase, MemoryStore
from tnb_chat.core.chat_thread_index import thread_id_for
from tnb_chat.core.session_controller import SessionController
from tnb_chat.models.call import CallType
from tnb_chat.models.user import Identity
from tnb_chat.storage.local_storage_service import LocalStorageService


def fake_auth(uid=None, error=None):
    identity = Identity(uid=uid, email=f"{uid}@example.com") if uid else None
    return types.SimpleNamespace(
        sign_in=mock.AsyncMock(return_value=identity, side_effect=error),
        sign_up=mock.AsyncMock(return_value=identity, side_effect=error),
        sign_out=mock.AsyncMock(return_value=True),
        get_current_session_user=mock.AsyncMock(return_value=identity),
    )


def fake_lookup():
    return types.SimpleNamespace(
        fetch_ip=mock.AsyncMock(return_value="10.0.0.1"),
        fetch_location=mock.AsyncMock(return_value="21.03, 105.80"),
    )


class Recorder:
    def __init__(self, signal):
        self.calls = []
        signal.connect(lambda *args: self.calls.append(args))


class SessionControllerTests(unittest.IsolatedAsyncioTestCase):
    @classmethod
    def setUpClass(cls):
        cls.qt_app = QCoreApplication.instance() or QCoreApplication([])

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db = MemoryDatabase()
        self.seed = MemoryStore(self.db)
        await self.seed.set("directory/u1", {"uid": "u1", "userId": "@alice", "name": "Alice"})
        await self.seed.set("directory/u2", {"uid": "u2", "userId": "@bob", "name": "Bob"})
        await self.seed.set("directory/a1", {"uid": "a1", "userId": "@admin", "isAdmin": True})

    async def asyncTearDown(self):
        self.tmp.cleanup()

    def make_controller(self, uid="u1", auth=None):
        storage = LocalStorageService(os.path.join(self.tmp.name, f"{uid}.db"))
        return SessionController(MemoryStore(self.db), auth=auth or fake_auth(uid),
                                 lookup=fake_lookup(), local_storage=storage)

    async def test_login_brings_session_up(self):
        ctrl = self.make_controller("u1")
        ok = Recorder(ctrl.login_successful)
        online = Recorder(ctrl.online_users_updated)
        await ctrl._perform_login("u1@example.com", "pw")

        self.assertEqual(ok.calls, [(Identity("u1", "u1@example.com"),)])
        self.assertEqual(ctrl.context.uid, "u1")
        self.assertEqual(ctrl.current_user.handle, "@alice")
        self.assertEqual(online.calls[-1], (["u1"],))
        self.assertEqual(self.db.read("directory/u1/lastLoginIp"), "10.0.0.1")
        self.assertEqual(len(self.db.read("directory/u1/loginHistory")), 1)
        self.assertEqual(ctrl.store.pending_disconnect_writes, {"directory/u1/status": "offline"})
        self.assertEqual(sorted(ctrl.reconciler.registered_names),
                         ["directory", "groups", "own_call_slot", "requests", "typing"])

    async def test_login_failure_is_reported(self):
        ctrl = self.make_controller(auth=fake_auth(error=AuthenticationError("Wrong email or password.", 400)))
        failed = Recorder(ctrl.login_failed)
        await ctrl._perform_login("u1@example.com", "bad")
        self.assertEqual(failed.calls, [("Wrong email or password.",)])
        self.assertIsNone(ctrl.context)
        self.assertEqual(self.db.subscription_count, 0)

    async def test_identity_change_replaces_subscriptions(self):
        ctrl = self.make_controller("u1")
        await ctrl._perform_login("u1@example.com", "pw")
        ctrl._auth = fake_auth("u2")
        await ctrl._perform_login("u2@example.com", "pw")
        self.assertEqual(ctrl.context.uid, "u2")
        self.assertEqual(self.db.subscription_count, len(ctrl.reconciler.registered_names))
        # A call to the old identity no longer rings this client
        await self.seed.set("calls/u1", {"callerId": "a1", "type": "voice"})
        self.assertIsNone(ctrl.context.incoming_call)

    async def test_suspended_account_is_signed_out(self):
        await self.seed.update("directory/u2", {"isSuspended": True})
        ctrl = self.make_controller("u2")
        failed = Recorder(ctrl.login_failed)
        await ctrl._perform_login("u2@example.com", "pw")
        self.assertEqual(failed.calls, [("This account has been suspended.",)])
        self.assertIsNone(ctrl.context)
        self.assertEqual(self.db.read("directory/u2/status"), "offline")
        ctrl._auth.sign_out.assert_awaited()

    async def test_send_message_to_open_thread(self):
        ctrl = self.make_controller("u1")
        updates = Recorder(ctrl.thread_updated)
        await ctrl._perform_login("u1@example.com", "pw")
        await ctrl._perform_open_direct_thread("u2")
        ctrl.typing.idle_seconds = 60
        await ctrl.typing.keystroke(ctrl.context.current_thread_id)
        message = await ctrl._perform_send_message("  hello bob  ")

        tid = thread_id_for("u1", "u2")
        self.assertEqual(message.text, "hello bob")
        self.assertEqual(updates.calls[-1][0], tid)
        self.assertEqual([m.text for m in updates.calls[-1][1]], ["hello bob"])
        self.assertIsNone(self.db.read(f"typing/{tid}"))
        self.assertIsNone(await ctrl._perform_send_message("   "))

    async def test_logout_goes_offline_and_tears_down(self):
        ctrl = self.make_controller("u1")
        finished = Recorder(ctrl.logout_finished)
        await ctrl._perform_login("u1@example.com", "pw")
        await ctrl._perform_logout()
        self.assertEqual(len(finished.calls), 1)
        self.assertEqual(self.db.read("directory/u1/status"), "offline")
        self.assertEqual(ctrl.store.pending_disconnect_writes, {})
        self.assertEqual(self.db.subscription_count, 0)
        self.assertIsNone(ctrl.context)

    async def test_admin_broadcast(self):
        ctrl = self.make_controller("a1")
        done = Recorder(ctrl.broadcast_finished)
        await ctrl._perform_login("a1@example.com", "pw")
        await ctrl._perform_broadcast("server restart at noon")
        self.assertEqual(done.calls, [(["u1", "u2"], [])])
        self.assertIsNotNone(self.db.read(f"threads/{thread_id_for('a1', 'u1')}"))

    async def test_non_admin_broadcast_fails(self):
        ctrl = self.make_controller("u1")
        failed = Recorder(ctrl.operation_failed)
        await ctrl._perform_login("u1@example.com", "pw")
        self.assertIsNone(await ctrl._perform_broadcast("hi"))
        self.assertEqual(len(failed.calls), 1)

    async def test_missed_call_is_stored_locally(self):
        caller = self.make_controller("u1")
        callee = self.make_controller("u2")
        rings = Recorder(callee.incoming_call)
        await caller._perform_login("u1@example.com", "pw")
        await callee._perform_login("u2@example.com", "pw")

        self.assertTrue(await caller._perform_start_call("u2", "voice"))
        self.assertEqual(rings.calls[-1][0].caller_id, "u1")
        await caller.calls.end()

        history = callee.call_history()
        self.assertEqual([(l.type, l.peer_id) for l in history], [(CallType.MISSED, "u1")])
        self.assertEqual([(l.type, l.peer_id) for l in caller.call_history()], [(CallType.VOICE, "u2")])

    async def test_signup_creates_profile(self):
        ctrl = self.make_controller("u5")
        ok = Recorder(ctrl.signup_successful)
        await ctrl._perform_signup("neo", "u5@example.com", "pw")
        self.assertEqual(len(ok.calls), 1)
        profile = self.db.read("directory/u5")
        self.assertEqual(profile["userId"], "@neo")
        self.assertEqual(profile["location"], "21.03, 105.80")
        self.assertEqual(profile["lastLoginIp"], "10.0.0.1")

    async def test_friend_request_flow(self):
        alice = self.make_controller("u1")
        bob = self.make_controller("u2")
        pending = Recorder(bob.requests_updated)
        await alice._perform_login("u1@example.com", "pw")
        await bob._perform_login("u2@example.com", "pw")

        req = await alice._perform_send_request("u2")
        self.assertEqual([r.id for r in pending.calls[-1][0]], [req.id])
        self.assertFalse(await alice._perform_answer_request(req.id, accept=True))
        self.assertTrue(await bob._perform_answer_request(req.id, accept=True))
        self.assertEqual(pending.calls[-1], ([],))
        self.assertEqual(alice.requests.accepted_contacts("u1"), {"u2"})


if __name__ == "__main__":
    unittest.main()
