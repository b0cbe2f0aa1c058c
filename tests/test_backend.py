import io
import json
import sys
import unittest

from pqc_tui.backend import BackendBridge
from pqc_tui.event_bus import EventBus, Topic
from pqc_tui.protocol import Room, UserIdentity
from pqc_tui.state import StateStore


def frame(ftype, value="", **metadata):
    obj = {"type": ftype, "value": value}
    if metadata:
        obj["metadata"] = metadata
    return json.dumps(obj, ensure_ascii=False) + "\n"


ME = {"userId": "me", "username": "me", "color": "#58a6ff"}


class Recorder:
    def __init__(self, bus):
        self.events = []
        for topic in (Topic.UPDATE_CURRENT_USER_TEXT, Topic.UPDATE_USERS_PANEL, Topic.UPDATE_ROOMS_PANEL,
                      Topic.UPDATE_MESSAGE_AREA, Topic.ADD_MESSAGE, Topic.EXIT):
            bus.subscribe(topic, "rec", lambda v, t=topic: self.events.append((t, v)))

    def topics(self):
        return [t for t, _ in self.events]


class FakeProcess:
    def __init__(self, code=None):
        self.code = code

    def poll(self):
        return self.code


class BridgeCase(unittest.TestCase):
    def setUp(self):
        self.store = StateStore()
        self.bus = EventBus()
        self.rec = Recorder(self.bus)
        self.bridge = BackendBridge(self.store, self.bus)
        self.stdin = io.BytesIO()

    def feed(self, *lines):
        return self.bridge.on_data("".join(lines).encode("utf-8"))

    def texts(self):
        return [m.text for m in self.store.messages()]


class TestOutbound(BridgeCase):
    def test_send_without_process_is_noop(self):
        self.assertFalse(self.bridge.send("send", "hello"))
        self.assertEqual(self.bridge.sent_count, 0)

    def test_send_writes_one_line(self):
        self.bridge.attach(self.stdin)
        self.assertTrue(self.bridge.send("connect", ""))
        self.assertTrue(self.bridge.send("send", "hello"))
        lines = self.stdin.getvalue().decode("utf-8").splitlines()
        self.assertEqual([json.loads(l) for l in lines],
                         [{"type": "connect", "value": ""}, {"type": "send", "value": "hello"}])

    def test_closed_stdin_is_noop(self):
        self.stdin.close()
        self.bridge.attach(self.stdin)
        self.assertFalse(self.bridge.send("send", "x"))

    def test_broken_pipe_is_logged(self):
        class Broken(io.BytesIO):
            def write(self, b):
                raise BrokenPipeError("gone")

        self.bridge.attach(Broken())
        with self.assertLogs("client.backend", level="ERROR") as cm:
            self.assertFalse(self.bridge.send("send", "x"))
        self.assertIn("E106", cm.output[0])


class TestFraming(BridgeCase):
    def test_bad_line_in_any_position_is_skipped(self):
        good1 = frame("message", "one")
        good2 = frame("message", "two")
        bad = "{this is not json\n"
        for lines in ((bad, good1, good2), (good1, bad, good2), (good1, good2, bad)):
            with self.subTest(order=[l[:8] for l in lines]):
                self.setUp()
                with self.assertLogs("client.backend", level="ERROR") as cm:
                    applied = self.feed(*lines)
                self.assertEqual(applied, 2)
                self.assertEqual(self.texts(), ["one", "two"])
                self.assertEqual(len(cm.output), 1)
                self.assertEqual(self.bridge.parse_failures, 1)

    def test_line_split_across_deliveries(self):
        raw = (frame("message", "hello") + frame("message", "world")).encode("utf-8")
        self.assertEqual(self.bridge.on_data(raw[:10]), 0)
        self.assertEqual(self.bridge.on_data(raw[10:30]), 1)
        self.assertEqual(self.bridge.on_data(raw[30:]), 1)
        self.assertEqual(self.texts(), ["hello", "world"])

    def test_multibyte_char_split_across_deliveries(self):
        raw = frame("message", "привет").encode("utf-8")
        cut = raw.index("р".encode("utf-8")) + 1  # inside a 2-byte sequence
        self.bridge.on_data(raw[:cut])
        self.bridge.on_data(raw[cut:])
        self.assertEqual(self.texts(), ["привет"])

    def test_empty_lines_and_crlf(self):
        self.bridge.on_data(b"\n\r\n" + frame("message", "x").replace("\n", "\r\n").encode())
        self.assertEqual(self.texts(), ["x"])

    def test_flush_parses_unterminated_tail(self):
        self.bridge.on_data(frame("message", "tail").rstrip("\n").encode())
        self.assertEqual(self.texts(), [])
        self.assertEqual(self.bridge.flush(), 1)
        self.assertEqual(self.texts(), ["tail"])

    def test_oversized_line_is_discarded(self):
        bridge = BackendBridge(self.store, self.bus, max_frame_bytes=64)
        big = frame("message", "x" * 200)
        with self.assertLogs("client.backend", level="ERROR") as cm:
            bridge.on_data(big[:100].encode())
            bridge.on_data(big[100:].encode() + frame("message", "ok").encode())
        self.assertIn("E105", cm.output[0])
        self.assertEqual(self.texts(), ["ok"])

    def test_oversized_line_over_many_deliveries_reported_once(self):
        bridge = BackendBridge(self.store, self.bus, max_frame_bytes=64)
        big = frame("message", "x" * 400).encode()
        with self.assertLogs("client.backend", level="ERROR") as cm:
            for i in range(0, len(big), 80):
                bridge.on_data(big[i:i + 80])
            bridge.on_data(frame("message", "ok").encode())
        self.assertEqual(len(cm.output), 1)
        self.assertEqual(bridge.parse_failures, 1)
        self.assertEqual(self.texts(), ["ok"])

    def test_invalid_utf8_is_replaced(self):
        self.bridge.on_data(b'{"type":"message","value":"a\xffb"}\n')
        self.assertEqual(self.texts(), ["a\ufffdb"])

    def test_deeply_nested_line_is_skipped(self):
        with self.assertLogs("client.backend", level="ERROR") as cm:
            applied = self.feed("[" * 60000 + "\n", frame("message", "after"))
        self.assertIn("E101", cm.output[0])
        self.assertEqual(applied, 1)
        self.assertEqual(self.texts(), ["after"])

    def test_deeply_nested_user_list_is_skipped(self):
        self.store.add_user(UserIdentity(user_id="u1"))
        with self.assertLogs("client.backend", level="ERROR") as cm:
            self.feed(frame("current_users", "[" * 60000), frame("message", "after"))
        self.assertIn("E103", cm.output[0])
        self.assertEqual(self.store.users(), ())
        self.assertEqual(self.texts(), ["after"])

    def test_unknown_type_ignored(self):
        self.assertEqual(self.feed(frame("telemetry", "x"), frame("message", "y")), 2)
        self.assertEqual(self.texts(), ["y"])


class TestTaxonomy(BridgeCase):
    def test_connected(self):
        self.feed(frame("connected", "me", **ME))
        self.assertTrue(self.store.connection().is_connected)
        self.assertEqual(self.store.current_user.key, "me")
        self.assertEqual(self.texts(), ["Connected to server."])
        topics = self.rec.topics()
        self.assertIn(Topic.UPDATE_CURRENT_USER_TEXT, topics)
        self.assertIn(Topic.UPDATE_USERS_PANEL, topics)

    def test_disconnected_clears(self):
        self.feed(
            frame("connected", "me", **ME),
            frame("user_entered_chat", "bob", userId="u1", username="bob"),
            frame("current_rooms", '[{"ID":"r1","Name":"Lobby"}]'),
            frame("message", "hi"),
        )
        self.store.input.insert("draft")
        self.feed(frame("disconnected", "me", **ME))
        self.assertFalse(self.store.connection().is_connected)
        self.assertEqual(self.store.current_user.key, "me")
        self.assertEqual(self.store.users(), ())
        self.assertEqual(self.store.rooms(), ())
        self.assertEqual(self.texts(), ["Disconnected from server."])
        self.assertEqual(self.store.input.text, "")

    def test_status_lines(self):
        self.feed(
            frame("reconnecting"),
            frame("keys_exchanged", "me"),
            frame("error", "room exists", color="#F00"),
            frame("success", "room created", color="#0F0"),
        )
        self.assertEqual(self.texts(), ["Reconnecting...", "Keys exchanged.", "room exists", "room created"])
        self.assertEqual([m.color for m in self.store.messages()][2:], ["#F00", "#0F0"])
        self.assertFalse(any(m.is_sent for m in self.store.messages()))

    def test_message_announced_on_bus(self):
        self.feed(frame("message", "hey", username="bob", color="#abc"))
        adds = [v for t, v in self.rec.events if t == Topic.ADD_MESSAGE]
        self.assertEqual([(m.text, m.color) for m in adds], [("hey", "#abc")])

    def test_roster_enter_leave_excludes_self(self):
        self.feed(frame("connected", "me", **ME))
        self.feed(
            frame("user_entered_chat", "me", **ME),
            frame("user_entered_chat", "bob", userId="u1", username="bob"),
            frame("user_entered_chat", "eve", userId="u2", username="eve"),
            frame("user_left_chat", "me", **ME),
            frame("user_left_chat", "eve", userId="u2", username="eve"),
        )
        self.assertEqual([u.key for u in self.store.users()], ["u1"])

    def test_entered_without_identity_is_ignored(self):
        with self.assertLogs("client.backend", level="ERROR"):
            self.feed(frame("user_entered_chat", "bob", color="#fff"))
        self.assertEqual(self.store.users(), ())
        self.assertIn(Topic.UPDATE_USERS_PANEL, self.rec.topics())

    def test_current_users_replaces(self):
        self.feed(frame("connected", "me", **ME))
        self.feed(frame("user_entered_chat", "old", userId="old", username="old"))
        users = [{"userId": "u1", "username": "a"}, {"userId": "me", "username": "me"}, {"userId": "u2"}]
        self.feed(frame("current_users", json.dumps(users), **ME))
        self.assertEqual(sorted(u.key for u in self.store.users()), ["u1", "u2"])

    def test_current_users_malformed_means_empty(self):
        self.store.add_user(UserIdentity(user_id="u1"))
        with self.assertLogs("client.backend", level="ERROR") as cm:
            self.feed(frame("current_users", "[{broken"))
        self.assertIn("E103", cm.output[0])
        self.assertEqual(self.store.users(), ())
        self.assertIn(Topic.UPDATE_USERS_PANEL, self.rec.topics())

    def test_current_rooms_replaces_directory(self):
        self.store.upsert_room(Room("old", "Old"))
        self.feed(frame("current_rooms", '[{"ID":"r1","Name":"Lobby"},{"ID":"r2","Name":"Dev"}]'))
        self.assertEqual({r.id for r in self.store.rooms()}, {"r1", "r2"})
        self.assertIn(Topic.UPDATE_ROOMS_PANEL, self.rec.topics())

    def test_available_rooms_alias(self):
        self.feed(frame("available_rooms", '[{"ID":"r1","Name":"Lobby"}]'))
        self.assertEqual([r.id for r in self.store.rooms()], ["r1"])

    def test_room_lifecycle(self):
        self.feed(
            frame("created_room", '{"ID":"r1","Name":"Lobby"}'),
            frame("created_room", '{"ID":"r2","Name":"Dev"}'),
            frame("joined_room", '{"ID":"r2","Name":"Dev"}'),
        )
        self.assertEqual(self.store.current_room().id, "r2")
        self.feed(frame("left_room", '{"ID":"r2","Name":"Dev"}'))
        self.assertIsNone(self.store.current_room())
        self.feed(frame("joined_room", '{"ID":"r1","Name":"Lobby"}'), frame("deleted_room", '{"ID":"r1"}'))
        self.assertIsNone(self.store.current_room())
        self.assertEqual([r.id for r in self.store.rooms()], ["r2"])

    def test_bad_nested_room_is_logged(self):
        with self.assertLogs("client.backend", level="ERROR"):
            self.feed(frame("joined_room", "not json"), frame("message", "after"))
        self.assertEqual(self.store.rooms(), ())
        self.assertEqual(self.texts(), ["after"])


class TestExit(BridgeCase):
    def test_exit_notified_once_with_code(self):
        self.bridge.process = FakeProcess(None)
        self.assertIsNone(self.bridge.poll_exit())
        self.bridge.process = FakeProcess(3)
        with self.assertLogs("client.backend", level="WARNING"):
            self.assertEqual(self.bridge.poll_exit(), 3)
        self.assertEqual(self.bridge.poll_exit(), 3)
        exits = [v for t, v in self.rec.events if t == Topic.EXIT]
        self.assertEqual(exits, [{"code": 3}])

    def test_exit_drops_stdin(self):
        self.bridge.attach(self.stdin)
        with self.assertLogs("client.backend", level="WARNING"):
            self.bridge.handle_exit(1)
        self.assertFalse(self.bridge.send("send", "late"))

    def test_real_child_process(self):
        script = (
            "import sys, json\n"
            "cmd = json.loads(sys.stdin.readline())\n"
            "print(json.dumps({'type': 'connected', 'value': 'me', 'metadata': {'userId': 'me', 'username': 'me'}}))\n"
            "print(json.dumps({'type': 'message', 'value': 'got ' + cmd['type']}))\n"
            "sys.stdout.flush()\n"
            "sys.exit(7)\n"
        )
        self.bridge.start([sys.executable, "-c", script])
        try:
            while self.bridge.read_available():
                pass
            self.bridge.process.wait(timeout=10)
            with self.assertLogs("client.backend", level="WARNING"):
                self.assertEqual(self.bridge.poll_exit(), 7)
        finally:
            self.bridge.stop()
            for pipe in (self.bridge.process.stdout, self.bridge.process.stderr, self.bridge.process.stdin):
                if pipe is not None:
                    pipe.close()
        self.assertEqual(self.texts(), ["Connected to server.", "got connect"])
        self.assertEqual([v for t, v in self.rec.events if t == Topic.EXIT], [{"code": 7}])

    def test_final_burst_is_applied_before_exit(self):
        script = (
            "import sys, json\n"
            "for i in range(120):\n"
            "    print(json.dumps({'type': 'message', 'value': 'burst line %03d' % i}))\n"
            "sys.stdout.flush()\n"
            "sys.exit(4)\n"
        )
        self.bridge.start([sys.executable, "-c", script])
        try:
            self.bridge.process.wait(timeout=10)
            with self.assertLogs("client.backend", level="WARNING"):
                self.assertEqual(self.bridge.poll_exit(), 4)
        finally:
            self.bridge.stop()
            for pipe in (self.bridge.process.stdout, self.bridge.process.stderr, self.bridge.process.stdin):
                if pipe is not None:
                    pipe.close()
        self.assertEqual(self.bridge.recv_count, 120)
        self.assertEqual(self.texts()[-1], "burst line 119")
        self.assertEqual(self.rec.events[-1], (Topic.EXIT, {"code": 4}))


if __name__ == "__main__":
    unittest.main()
