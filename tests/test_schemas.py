import unittest

from tnb_chat.api.errors import SnapshotSchemaError
from tnb_chat.models.call import CallSignal, CallType
from tnb_chat.models.group import Group
from tnb_chat.models.schemas import (
    CallSignalSchema,
    FriendRequestSchema,
    GroupSchema,
    MessageSchema,
    UserRecordSchema,
    parse_entry,
)
from tnb_chat.models.user import UserRecord


class UserRecordSchemaTests(unittest.TestCase):
    def test_wire_names_map_to_model(self):
        wire = {
            "uid": "u1",
            "userId": "@alice",
            "name": "Alice",
            "dpUrl": "https://img/alice.png",
            "status": "online",
            "isPrivate": True,
            "isAdmin": False,
            "lastLoginIp": "10.0.0.1",
            "loginHistory": {
                "-Nb2": {"ip": "10.0.0.2", "timestamp": 2},
                "-Nb1": {"ip": "10.0.0.1", "timestamp": 1},
            },
            "somethingNew": 42,
        }
        user = UserRecordSchema.model_validate(wire).to_model()
        self.assertEqual(user.handle, "@alice")
        self.assertEqual(user.avatar, "https://img/alice.png")
        self.assertTrue(user.is_online)
        self.assertTrue(user.is_private)
        self.assertEqual([r.ip for r in user.login_history], ["10.0.0.1", "10.0.0.2"])

    def test_missing_name_falls_back_to_handle(self):
        user = UserRecordSchema.model_validate({"uid": "u1", "userId": "@bob"}).to_model()
        self.assertEqual(user.name, "@bob")

    def test_from_model_omits_history_and_empty_optionals(self):
        wire = UserRecordSchema.from_model(UserRecord(uid="u1", handle="@a", name="A"))
        self.assertEqual(wire["userId"], "@a")
        self.assertNotIn("loginHistory", wire)
        self.assertNotIn("location", wire)


class OtherSchemaTests(unittest.TestCase):
    def test_message_id_comes_from_snapshot_key(self):
        msg = MessageSchema.model_validate({"id": "stale", "senderId": "u1", "text": "hi", "timestamp": 5}).to_model("-Nk1")
        self.assertEqual(msg.id, "-Nk1")
        self.assertEqual(msg.status, "sent")
        self.assertFalse(msg.is_broadcast)

    def test_group_always_contains_creator(self):
        group = GroupSchema.model_validate({"id": "g1", "name": "G", "creatorId": "u1", "memberIds": ["u2"]}).to_model()
        self.assertEqual(group.member_ids, frozenset({"u1", "u2"}))

    def test_group_round_trip_keeps_members(self):
        group = Group(id="g1", name="G", creator_id="u1", member_ids=frozenset({"u1", "u3"}))
        wire = GroupSchema.from_model(group)
        self.assertEqual(wire["memberIds"], ["u1", "u3"])
        self.assertEqual(GroupSchema.model_validate(wire).to_model(), group)

    def test_request_uses_from_and_to(self):
        req = FriendRequestSchema.model_validate({"id": "r1", "from": "u1", "to": "u2", "status": "pending"}).to_model()
        self.assertEqual((req.from_uid, req.to_uid), ("u1", "u2"))
        self.assertFalse(req.is_terminal)

    def test_call_signal_wire_shape(self):
        self.assertEqual(CallSignalSchema.from_model(CallSignal("u1", CallType.VIDEO)),
                         {"callerId": "u1", "type": "video"})

    def test_parse_entry_reports_key(self):
        with self.assertRaises(SnapshotSchemaError) as ctx:
            parse_entry(MessageSchema, "-Nbad", {"text": "no sender"})
        self.assertEqual(ctx.exception.key, "-Nbad")

    def test_unknown_status_is_rejected(self):
        with self.assertRaises(SnapshotSchemaError):
            parse_entry(FriendRequestSchema, "r1", {"id": "r1", "from": "a", "to": "b", "status": "maybe"})


if __name__ == "__main__":
    unittest.main()
