import asyncio
import os
import tempfile
import unittest
from unittest import mock

import aiohttp
from supabase_auth.errors import AuthApiError

from tnb_chat.api import auth, lookup
from tnb_chat.api.errors import AuthenticationError
from tnb_chat.models.call import CallLog, CallType
from tnb_chat.storage.local_storage_service import LocalStorageService


class LookupTests(unittest.IsolatedAsyncioTestCase):
    async def test_ip_lookup(self):
        with mock.patch.object(lookup, "_get_json", mock.AsyncMock(return_value={"ip": "203.0.113.7"})):
            self.assertEqual(await lookup.fetch_ip(), "203.0.113.7")

    async def test_ip_lookup_falls_back(self):
        with mock.patch.object(lookup, "_get_json", mock.AsyncMock(side_effect=aiohttp.ClientError("down"))):
            self.assertEqual(await lookup.fetch_ip(), "127.0.0.1")

    async def test_location_is_rounded(self):
        data = {"latitude": 21.028511, "longitude": 105.804817}
        with mock.patch.object(lookup, "_get_json", mock.AsyncMock(return_value=data)):
            self.assertEqual(await lookup.fetch_location(), "21.03, 105.80")

    async def test_location_falls_back_on_timeout(self):
        with mock.patch.object(lookup, "_get_json", mock.AsyncMock(side_effect=asyncio.TimeoutError())):
            self.assertEqual(await lookup.fetch_location(), "Unknown Location")

    async def test_location_falls_back_on_missing_fields(self):
        with mock.patch.object(lookup, "_get_json", mock.AsyncMock(return_value={"error": True})):
            self.assertEqual(await lookup.fetch_location(), "Unknown Location")


def _client_with_auth(**methods):
    client = mock.MagicMock()
    for name, impl in methods.items():
        setattr(client.auth, name, impl)
    return client


class AuthTests(unittest.IsolatedAsyncioTestCase):
    async def test_sign_in_returns_identity(self):
        user = mock.Mock(id="u1", email="a@example.com")
        response = mock.Mock(user=user, session=mock.Mock())
        client = _client_with_auth(sign_in_with_password=mock.AsyncMock(return_value=response))
        with mock.patch.object(auth, "get_supabase_client", return_value=client):
            identity = await auth.sign_in("a@example.com", "pw")
        self.assertEqual((identity.uid, identity.email), ("u1", "a@example.com"))

    async def test_wrong_password_has_readable_cause(self):
        error = AuthApiError("Invalid login credentials", 400, None)
        client = _client_with_auth(sign_in_with_password=mock.AsyncMock(side_effect=error))
        with mock.patch.object(auth, "get_supabase_client", return_value=client):
            with self.assertRaises(AuthenticationError) as ctx:
                await auth.sign_in("a@example.com", "nope")
        self.assertEqual(ctx.exception.message, "Wrong email or password.")
        self.assertEqual(ctx.exception.status, 400)

    async def test_missing_client_is_an_authentication_error(self):
        with mock.patch.object(auth, "get_supabase_client", return_value=None):
            with self.assertRaises(AuthenticationError):
                await auth.sign_up("a@example.com", "pw")

    async def test_no_session(self):
        client = _client_with_auth(get_session=mock.AsyncMock(return_value=None))
        with mock.patch.object(auth, "get_supabase_client", return_value=client):
            self.assertIsNone(await auth.get_current_session_user())


class LocalStorageTests(unittest.TestCase):
    def setUp(self):
        fd, self.db_file = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.storage = LocalStorageService(self.db_file)

    def tearDown(self):
        for suffix in ("", "-wal", "-shm"):
            if os.path.exists(self.db_file + suffix):
                os.remove(self.db_file + suffix)

    def test_call_logs_newest_first_per_owner(self):
        self.assertTrue(self.storage.ready)
        self.storage.add_call_log("u1", CallLog(id="c1", type=CallType.VOICE, peer_id="u2", timestamp=100))
        self.storage.add_call_log("u1", CallLog(id="c2", type=CallType.MISSED, peer_id="u3", timestamp=200))
        self.storage.add_call_log("u9", CallLog(id="c3", type=CallType.VIDEO, peer_id="u1", timestamp=300))
        logs = self.storage.get_call_logs("u1")
        self.assertEqual([l.id for l in logs], ["c2", "c1"])
        self.assertEqual(logs[0].type, CallType.MISSED)
        self.assertEqual(logs[1].duration, 0)
        self.assertEqual(len(self.storage.get_call_logs("u1", limit=1)), 1)


if __name__ == "__main__":
    unittest.main()
