import base64
import unittest

from tnb_chat.utils.helpers import emoji_avatar, generate_id, normalize_handle


def _decode(avatar: str) -> str:
    prefix = "data:image/svg+xml;base64,"
    assert avatar.startswith(prefix)
    return base64.b64decode(avatar[len(prefix):]).decode("utf-8")


class HelperTests(unittest.TestCase):
    def test_avatar_shows_first_two_characters(self):
        self.assertIn(">@n</text>", _decode(emoji_avatar("@neo")))

    def test_avatar_escapes_markup(self):
        svg = _decode(emoji_avatar("<&lt"))
        self.assertIn(">&lt;&amp;</text>", svg)
        self.assertNotIn("<&", svg)

    def test_normalize_handle(self):
        self.assertEqual(normalize_handle("  neo "), "@neo")
        self.assertEqual(normalize_handle("@neo"), "@neo")

    def test_generate_id(self):
        ids = {generate_id() for _ in range(50)}
        self.assertEqual(len(ids), 50)
        self.assertTrue(all(len(i) == 9 for i in ids))


if __name__ == "__main__":
    unittest.main()
