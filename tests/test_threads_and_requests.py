import unittest

from tnb_chat.api.errors import NotAuthorizedError, StoreError
from tnb_chat.api.store import MemoryDatabase, MemoryStore
from tnb_chat.core.broadcast import BROADCAST_PREFIX, BroadcastFanout
from tnb_chat.core.chat_thread_index import ChatThreadIndex, group_thread_id, thread_id_for
from tnb_chat.core.directory_service import DirectoryService
from tnb_chat.core.friend_requests import FriendRequestMachine
from tnb_chat.core.reconciler import (
    SubscriptionReconciler,
    translate_directory,
    translate_groups,
    translate_requests,
    translate_thread,
)
from tnb_chat.models.user import UserRecord


class ThreadIdTests(unittest.TestCase):
    def test_pair_id_is_commutative(self):
        self.assertEqual(thread_id_for("u1", "u2"), thread_id_for("u2", "u1"))
        self.assertEqual(thread_id_for("u2", "u1"), "u1_u2")

    def test_distinct_pairs_do_not_collide(self):
        ids = {thread_id_for(a, b) for a, b in [("u1", "u2"), ("u1", "u3"), ("u2", "u3"), ("u12", "u3")]}
        self.assertEqual(len(ids), 4)

    def test_ids_containing_the_delimiter_are_rejected(self):
        with self.assertRaises(ValueError):
            thread_id_for("u_1", "u2")
        with self.assertRaises(ValueError):
            thread_id_for("", "u2")

    def test_account_uuids_are_valid_participants(self):
        a = "3f2b8c1e-9d4a-4e6f-8b2c-1a2b3c4d5e6f"
        b = "0c9e7d5b-1a2f-4b3c-9d8e-7f6a5b4c3d2e"
        self.assertEqual(thread_id_for(a, b), f"{b}_{a}")

    def test_group_thread_id(self):
        self.assertEqual(group_thread_id("g9"), "group_g9")


class ChatThreadIndexTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = MemoryStore()
        self.threads = ChatThreadIndex(self.store)
        self.reconciler = SubscriptionReconciler(self.store)

    async def test_appends_come_back_in_write_order(self):
        tid = thread_id_for("u1", "u2")
        await self.reconciler.register("thread", f"threads/{tid}", translate_thread,
                                       lambda msgs: self.threads.apply_snapshot(tid, msgs))
        for i in range(10):
            await self.threads.append(tid, "u1" if i % 2 else "u2", f"m{i}")
        messages = self.threads.messages(tid)
        self.assertEqual([m.text for m in messages], [f"m{i}" for i in range(10)])
        self.assertTrue(all(m.status == "sent" for m in messages))

    async def test_unknown_thread_is_empty(self):
        self.assertEqual(self.threads.messages("nobody_here"), [])

    async def test_clear_removes_whole_thread(self):
        tid = thread_id_for("u1", "u2")
        await self.threads.append(tid, "u1", "hello")
        await self.threads.clear(tid)
        self.assertIsNone(await self.store.get(f"threads/{tid}"))


class FriendRequestTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = MemoryStore()
        self.machine = FriendRequestMachine(self.store)
        self.reconciler = SubscriptionReconciler(self.store)
        await self.reconciler.register("requests", "requests", translate_requests, self.machine.apply_snapshot)

    async def test_only_recipient_can_accept(self):
        req = await self.machine.send("u1", "u2")
        with self.assertRaises(NotAuthorizedError):
            await self.machine.accept(req.id, "u1")
        self.assertTrue(await self.machine.accept(req.id, "u2"))
        self.assertEqual(self.machine.get(req.id).status, "accepted")

    async def test_terminal_request_ignores_further_answers(self):
        req = await self.machine.send("u1", "u2")
        await self.machine.decline(req.id, "u2")
        self.assertFalse(await self.machine.accept(req.id, "u2"))
        self.assertFalse(await self.machine.decline(req.id, "u2"))
        self.assertEqual(self.machine.get(req.id).status, "declined")

    async def test_duplicates_are_kept(self):
        await self.machine.send("u1", "u2")
        await self.machine.send("u1", "u2")
        self.assertEqual(len(self.machine.pending_for("u2")), 2)
        self.assertEqual(len(self.machine.outgoing_pending("u1")), 2)

    async def test_cannot_request_self(self):
        with self.assertRaises(ValueError):
            await self.machine.send("u1", "u1")

    async def test_visibility_of_private_accounts(self):
        viewer = UserRecord(uid="u1", handle="@viewer")
        private = UserRecord(uid="u2", handle="@private", is_private=True)
        admin = UserRecord(uid="a1", handle="@admin", is_admin=True)
        public = UserRecord(uid="u3", handle="@public")

        self.assertFalse(self.machine.can_view(viewer, private))
        self.assertTrue(self.machine.can_view(viewer, public))
        self.assertTrue(self.machine.can_view(admin, private))

        # Accepted in the other direction still counts
        req = await self.machine.send("u2", "u1")
        self.assertFalse(self.machine.can_view(viewer, private))
        await self.machine.accept(req.id, "u1")
        self.assertTrue(self.machine.can_view(viewer, private))
        self.assertEqual(self.machine.accepted_contacts("u1"), {"u2"})


class FlakyStore(MemoryStore):
    """Fails every write under the given thread ids."""

    def __init__(self, database, failing_threads):
        super().__init__(database)
        self.failing_threads = set(failing_threads)

    async def set(self, path, value):
        parts = path.split("/")
        if parts[0] == "threads" and parts[1] in self.failing_threads:
            raise StoreError(f"write to {path} refused")
        await super().set(path, value)


class BroadcastTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = MemoryDatabase()
        self.admin = UserRecord(uid="admin1", handle="@admin", is_admin=True)

    async def test_broadcast_reaches_every_other_user(self):
        store = MemoryStore(self.db)
        fanout = BroadcastFanout(ChatThreadIndex(store))
        result = await fanout.broadcast(self.admin, ["admin1", "u2", "u3"], "Hi all")
        self.assertEqual(result.delivered, ["u2", "u3"])
        self.assertEqual(result.failed, [])
        for uid in ("u2", "u3"):
            thread = translate_thread(await store.get(f"threads/{thread_id_for('admin1', uid)}"))
            self.assertEqual(len(thread), 1)
            msg = thread[0]
            self.assertEqual(msg.text, f"{BROADCAST_PREFIX}Hi all")
            self.assertEqual(msg.sender_name, "SYSTEM")
            self.assertEqual(msg.status, "read")
            self.assertTrue(msg.is_broadcast)

    async def test_non_admin_is_refused(self):
        fanout = BroadcastFanout(ChatThreadIndex(MemoryStore(self.db)))
        with self.assertRaises(NotAuthorizedError):
            await fanout.broadcast(UserRecord(uid="u2"), ["u3"], "hi")

    async def test_one_failure_does_not_stop_the_rest(self):
        store = FlakyStore(self.db, {thread_id_for("admin1", "u3")})
        fanout = BroadcastFanout(ChatThreadIndex(store))
        result = await fanout.broadcast(self.admin, ["u2", "u3", "u4"], "maintenance")
        self.assertEqual(result.delivered, ["u2", "u4"])
        self.assertEqual(result.failed, ["u3"])


class DirectoryServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = MemoryStore()
        self.requests = FriendRequestMachine(self.store)
        self.directory = DirectoryService(self.store, self.requests)
        self.reconciler = SubscriptionReconciler(self.store)
        await self.reconciler.register("directory", "directory", translate_directory, self.directory.apply_directory)
        await self.reconciler.register("groups", "groups", translate_groups, self.directory.apply_groups)
        await self.reconciler.register("requests", "requests", translate_requests, self.requests.apply_snapshot)

    async def test_create_profile_normalizes_handle(self):
        user = await self.directory.create_profile("u1", "alice", location="1.00, 2.00")
        self.assertEqual(user.handle, "@alice")
        stored = self.directory.user("u1")
        self.assertEqual(stored.handle, "@alice")
        self.assertTrue(stored.avatar.startswith("data:image/svg+xml;base64,"))
        self.assertEqual(stored.location, "1.00, 2.00")

    async def test_update_profile_rejects_unknown_fields(self):
        await self.directory.create_profile("u1", "@alice")
        await self.directory.update_profile("u1", {"bio": "hello", "is_private": True})
        self.assertEqual(self.directory.user("u1").bio, "hello")
        self.assertTrue(self.directory.user("u1").is_private)
        with self.assertRaises(ValueError):
            await self.directory.update_profile("u1", {"is_admin": True})
        self.assertFalse(self.directory.user("u1").is_admin)

    async def test_toggle_flag_requires_admin(self):
        await self.directory.create_profile("u1", "@alice")
        admin = UserRecord(uid="a1", is_admin=True)
        self.assertTrue(await self.directory.toggle_flag(admin, "u1", "verified"))
        self.assertTrue(self.directory.user("u1").is_verified)
        self.assertFalse(await self.directory.toggle_flag(admin, "u1", "verified"))
        with self.assertRaises(NotAuthorizedError):
            await self.directory.toggle_flag(UserRecord(uid="u2"), "u1", "suspended")
        with self.assertRaises(ValueError):
            await self.directory.toggle_flag(admin, "u1", "admin")

    async def test_groups_include_creator(self):
        group = await self.directory.create_group("u1", "Study", ["u2"])
        self.assertEqual(group.member_ids, frozenset({"u1", "u2"}))
        self.assertEqual([g.id for g in self.directory.my_groups("u1")], [group.id])
        self.assertEqual([g.id for g in self.directory.my_groups("u2")], [group.id])
        self.assertEqual(self.directory.my_groups("u3"), [])

    async def test_visible_users_hides_self_and_private_strangers(self):
        await self.directory.create_profile("u1", "@me")
        await self.directory.create_profile("u2", "@public")
        await self.directory.create_profile("u3", "@secret")
        await self.directory.update_profile("u3", {"is_private": True})
        me = self.directory.user("u1")
        self.assertEqual([u.uid for u in self.directory.visible_users(me)], ["u2"])


if __name__ == "__main__":
    unittest.main()
