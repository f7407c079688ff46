import threading
import unittest

from chat_relay.errors import ValidationFailure
from chat_relay.messages import InMemoryMessageStore, Message, normalize_text, utf16_length


class NormalizeTextTests(unittest.TestCase):
    def test_trims_surrounding_whitespace(self):
        self.assertEqual(normalize_text("  hello \n"), "hello")

    def test_rejects_missing_or_blank_text(self):
        for value in (None, "", "   ", 42):
            with self.subTest(value=value):
                with self.assertRaises(ValidationFailure):
                    normalize_text(value)

    def test_length_limit_applies_after_trimming(self):
        self.assertEqual(len(normalize_text(" " + "x" * 5000 + " ")), 5000)
        with self.assertRaises(ValidationFailure) as ctx:
            normalize_text("x" * 11, max_length=10)
        self.assertIn("10", ctx.exception.detail)

    def test_length_counts_utf16_code_units(self):
        emoji = "\U0001F600"

        self.assertEqual(normalize_text(emoji * 2500), emoji * 2500)
        with self.assertRaises(ValidationFailure):
            normalize_text(emoji * 2501)
        self.assertEqual(utf16_length("a" + emoji), 3)

    def test_trims_like_javascript(self):
        self.assertEqual(normalize_text("\ufeff\u3000hi\u2028"), "hi")
        self.assertEqual(normalize_text("\x1chi"), "\x1chi")
        for value in ("\ufeff", "\u00a0\ufeff\u2029"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationFailure):
                    normalize_text(value)


class InMemoryMessageStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryMessageStore()

    def test_find_between_is_symmetric_and_ordered(self):
        late = self.store.create("A", "B", "late", ts_ms=30)
        early = self.store.create("B", "A", "early", ts_ms=10)
        self.store.create("A", "C", "other", ts_ms=20)

        self.assertEqual(self.store.find_between("A", "B"), [early, late])
        self.assertEqual(self.store.find_between("B", "A", limit=1), [early])

    def test_mark_read_updates_unread_messages_from_sender(self):
        self.store.create("A", "B", "one", ts_ms=1)
        self.store.create("B", "A", "two", ts_ms=2)

        self.assertEqual(self.store.mark_read("A", "B"), 1)

        flags = [(m.text, m.is_read) for m in self.store.find_between("A", "B")]
        self.assertEqual(flags, [("one", True), ("two", False)])

    def test_requires_both_participants(self):
        with self.assertRaises(ValueError):
            self.store.create("A", "", "hi")

    def test_concurrent_creates_are_all_kept(self):
        def worker(n: int) -> None:
            for i in range(50):
                self.store.create("A", "B", f"{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stored = self.store.find_between("A", "B")
        self.assertEqual(len(stored), 400)
        self.assertEqual(len({m.msg_id for m in stored}), 400)


class MessageWireTests(unittest.TestCase):
    def test_to_wire_embeds_profiles(self):
        message = Message(msg_id="msg_1", sender_id="A", receiver_id="B", text="hi", ts_ms=7)
        sender = {"id": "A", "username": "alice"}
        receiver = {"id": "B", "username": None}

        self.assertEqual(
            message.to_wire(sender, receiver),
            {
                "id": "msg_1",
                "senderId": "A",
                "receiverId": "B",
                "sender": sender,
                "receiver": receiver,
                "text": "hi",
                "timestamp": 7,
                "isRead": False,
            },
        )


if __name__ == "__main__":
    unittest.main()
