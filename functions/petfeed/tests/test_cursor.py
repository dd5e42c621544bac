import base64
import json
import unittest
from unittest.mock import patch

from petfeed.cursor import MAX_TOKEN_LENGTH, Cursor, decode_cursor, encode_cursor


def _raw_token(payload) -> str:
    return base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


class CursorCodecTests(unittest.TestCase):
    def test_roundtrip(self):
        pairs = [
            (0, "a"),
            (1_700_000_000_123, "3f2a9c0e5b7d4e1f8a6b2c3d4e5f6a7b"),
            (200, "id with spaces/and?query=1"),
            (42, "ünïcødé"),
        ]
        for created_at, post_id in pairs:
            with self.subTest(post_id=post_id):
                token = encode_cursor(created_at, post_id)
                self.assertEqual(decode_cursor(token), Cursor(created_at, post_id))

    def test_token_is_url_safe(self):
        token = encode_cursor(1_700_000_000_000, "~~~???>>>")
        for ch in "+/=":
            self.assertNotIn(ch, token)

    def test_empty_input_is_no_cursor(self):
        self.assertIsNone(decode_cursor(None))
        self.assertIsNone(decode_cursor(""))

    def test_garbage_is_invalid(self):
        for token in ["not a token", "!!!!", "%%%", "e30", "W10"]:
            with self.subTest(token=token):
                self.assertIsNone(decode_cursor(token))

    def test_truncated_token_is_invalid(self):
        token = encode_cursor(1_700_000_000_000, "abcdef")
        for cut in (1, 2, 3, 5, len(token) // 2):
            with self.subTest(cut=cut):
                self.assertIsNone(decode_cursor(token[:-cut]))

    def test_unparseable_timestamp_is_invalid(self):
        for created_at in ["yesterday", "", None, True, [1], {"t": 1}, 1.5]:
            with self.subTest(created_at=created_at):
                token = _raw_token({"createdAt": created_at, "id": "abc"})
                self.assertIsNone(decode_cursor(token))

    def test_missing_fields_are_invalid(self):
        self.assertIsNone(decode_cursor(_raw_token({"createdAt": 100})))
        self.assertIsNone(decode_cursor(_raw_token({"id": "abc"})))
        self.assertIsNone(decode_cursor(_raw_token({"createdAt": 100, "id": 7})))
        self.assertIsNone(decode_cursor(_raw_token([100, "abc"])))

    def test_iso_timestamp_is_accepted(self):
        token = _raw_token({"createdAt": "2024-01-02T03:04:05.678Z", "id": "abc"})
        self.assertEqual(decode_cursor(token), Cursor(1704164645678, "abc"))

    def test_deeply_nested_payload_is_invalid(self):
        token = base64.urlsafe_b64encode(b"[" * 100000).decode("ascii")
        self.assertIsNone(decode_cursor(token))

    def test_oversized_token_is_invalid(self):
        token = _raw_token({"createdAt": 1, "id": "x" * MAX_TOKEN_LENGTH})
        self.assertGreater(len(token), MAX_TOKEN_LENGTH)
        self.assertIsNone(decode_cursor(token))

    @patch("petfeed.cursor.json.loads", side_effect=RecursionError)
    def test_recursion_error_while_parsing_is_invalid(self, mock_loads):
        self.assertIsNone(decode_cursor(encode_cursor(1, "abc")))
        mock_loads.assert_called_once()

    def test_padded_token_is_accepted(self):
        token = _raw_token({"createdAt": 5, "id": "x"})
        self.assertEqual(decode_cursor(token), Cursor(5, "x"))


if __name__ == "__main__":
    unittest.main()
