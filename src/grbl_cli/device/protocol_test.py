import random
import threading
import time
import unittest
import logging

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

from grbl_cli.errors import ProtocolViolation, SubscriberBusyError, TransportError
from grbl_cli.streams.dummy import DummyStream
from grbl_cli.device.protocol import AckGate, CommandChannel, ResponseAssembler, ResponseCollector, is_ack, is_error
from grbl_cli.device.status import DeviceState, DeviceStatusModel


class TestResponseAssembler(unittest.TestCase):

    def setUp(self):
        self.lines = []
        self.assembler = ResponseAssembler(self.lines.append)

    def test_lines_split_on_newline_and_strip_cr(self):
        self.assembler.feed_bytes(b"Grbl 1.1h ['$' for help]\r\nok\r\n")
        self.assertEqual(self.lines, ["Grbl 1.1h ['$' for help]", "ok"])

    def test_partial_line_is_held_until_terminator(self):
        self.assembler.feed_bytes(b"$110=50")
        self.assertEqual(self.lines, [])
        self.assertEqual(self.assembler.pending, b"$110=50")
        self.assembler.feed_bytes(b"0.000\n")
        self.assertEqual(self.lines, ["$110=500.000"])
        self.assertEqual(self.assembler.pending, b"")

    def test_empty_lines_and_arbitrary_bytes_are_accepted(self):
        self.assembler.feed_bytes(b"\n\xff\x00\n")
        self.assertEqual(len(self.lines), 2)
        self.assertEqual(self.lines[0], "")


class TestAckRecognition(unittest.TestCase):

    def test_ok_is_case_insensitive_and_trimmed(self):
        for line in ("ok", "OK", " Ok ", "ok\r"):
            self.assertTrue(is_ack(line), line)

    def test_other_lines_are_not_acks(self):
        for line in ("", "okay", "error:9", "ok c: X:0", "[MSG:ok]"):
            self.assertFalse(is_ack(line), line)

    def test_error_replies(self):
        self.assertTrue(is_error("error:15"))
        self.assertTrue(is_error("ERROR:9\r"))
        self.assertFalse(is_error("ALARM:1"))
        self.assertFalse(is_error("[MSG:error]"))


class TestAckGate(unittest.TestCase):

    def test_issue_while_outstanding_is_a_protocol_violation(self):
        gate = AckGate()
        gate.issue()
        with self.assertRaises(ProtocolViolation):
            gate.issue()
        gate.complete()
        gate.issue()
        self.assertEqual((gate.issued, gate.completed), (2, 1))

    def test_invariant_holds_for_random_call_sequences(self):
        rng = random.Random(1234)
        for _ in range(50):
            gate = AckGate()
            for _ in range(200):
                if rng.random() < 0.5:
                    outstanding = gate.issued != gate.completed
                    if outstanding:
                        with self.assertRaises(ProtocolViolation):
                            gate.issue()
                    else:
                        gate.issue()
                else:
                    gate.complete()
                self.assertTrue(gate.completed <= gate.issued <= gate.completed + 1)

    def test_stray_ack_is_dropped(self):
        gate = AckGate()
        gate.complete()
        self.assertEqual((gate.issued, gate.completed, gate.stray), (0, 0, 1))

    def test_await_returns_true_once_completed_from_another_thread(self):
        gate = AckGate()
        gate.issue()
        threading.Timer(0.05, gate.complete).start()
        self.assertTrue(gate.await_completion(poll_interval=0.01, timeout=2.0))

    def test_await_times_out(self):
        gate = AckGate()
        gate.issue()
        start = time.monotonic()
        self.assertFalse(gate.await_completion(poll_interval=0.02, timeout=0.1))
        self.assertGreaterEqual(time.monotonic() - start, 0.1)

    def test_await_raises_when_link_drops(self):
        gate = AckGate()
        gate.issue()
        with self.assertRaises(TransportError):
            gate.await_completion(poll_interval=0.01, alive=lambda: False)

    def test_await_with_nothing_outstanding_returns_immediately(self):
        self.assertTrue(AckGate().await_completion(poll_interval=10))


class TestResponseCollector(unittest.TestCase):

    def feed(self, collector, text):
        for value in text.encode():
            collector(value)

    def test_ok_completes_and_other_lines_accumulate(self):
        collector = ResponseCollector()
        collector.gate.issue()
        self.feed(collector, "[VER:1.1h.20190825:]\r\n[OPT:V,15,128]\r\nok\r\n")
        self.assertFalse(collector.gate.outstanding)
        self.assertEqual(collector.text, "[VER:1.1h.20190825:]\n[OPT:V,15,128]")

    def test_status_query_completes_on_report_not_ok(self):
        model = DeviceStatusModel()
        collector = ResponseCollector(model)
        collector.gate.issue()
        collector.expect_status()
        self.feed(collector, "ok\r\n")
        self.assertTrue(collector.gate.outstanding)
        self.feed(collector, "<Run|MPos:1.000,2.000,3.000|FS:20,0>\r\n")
        self.assertFalse(collector.gate.outstanding)
        self.assertEqual(model.state, DeviceState.RUN)

    def test_error_reply_completes_and_is_kept(self):
        collector = ResponseCollector()
        collector.gate.issue()
        self.feed(collector, "error:20\r\n")
        self.assertFalse(collector.gate.outstanding)
        self.assertEqual(collector.last_error, "error:20")
        self.assertEqual(collector.text, "error:20")

    def test_error_does_not_answer_status_query(self):
        collector = ResponseCollector(DeviceStatusModel())
        collector.gate.issue()
        collector.expect_status()
        self.feed(collector, "error:9\r\n")
        self.assertTrue(collector.gate.outstanding)
        self.feed(collector, "<Alarm|MPos:0.000,0.000,0.000|FS:0,0>\r\n")
        self.assertFalse(collector.gate.outstanding)

    def test_report_state_read_from_wpos_report(self):
        model = DeviceStatusModel()
        collector = ResponseCollector(model)
        collector.gate.issue()
        collector.expect_status()
        self.feed(collector, "<Idle|WPos:0.000,0.000,0.000|FS:0,0>\r\n")
        self.assertFalse(collector.gate.outstanding)
        self.assertEqual(collector.report_state, DeviceState.IDLE)
        # The position parse stays a no-op for WPos-only reports
        self.assertEqual(model.state, DeviceState.UNKNOWN)

    def test_line_monitor_sees_every_line(self):
        seen = []
        collector = ResponseCollector(on_line=seen.append)
        self.feed(collector, "Grbl 1.1h\r\nok\r\n")
        self.assertEqual(seen, ["Grbl 1.1h", "ok"])


class TestCommandChannel(unittest.TestCase):

    def setUp(self):
        self.stream = DummyStream()

    def test_registers_for_scope_only(self):
        with CommandChannel(self.stream) as channel:
            self.assertTrue(self.stream.subscribed)
            self.assertTrue(channel.command("G0 X1"))
        self.assertFalse(self.stream.subscribed)
        self.assertEqual(self.stream.get_sent_data(), ["G0 X1\n"])

    def test_deregisters_when_send_fails(self):
        self.stream.fail_on = lambda line: True
        with self.assertRaises(TransportError):
            with CommandChannel(self.stream) as channel:
                channel.command("G0 X1")
        self.assertFalse(self.stream.subscribed)

    def test_second_channel_cannot_subscribe(self):
        with CommandChannel(self.stream):
            with self.assertRaises(SubscriberBusyError):
                with CommandChannel(self.stream):
                    pass
            self.assertTrue(self.stream.subscribed)
        self.assertFalse(self.stream.subscribed)

    def test_channel_usable_after_status_timeout(self):
        self.stream.responder = lambda sent: [] if sent == "?" else ["ok"]
        with CommandChannel(self.stream, poll_interval=0.01) as channel:
            self.assertIsNone(channel.query_status(timeout=0.05))
            self.assertTrue(channel.command("G21", timeout=1.0))
            self.assertFalse(channel.gate.outstanding)

    def test_channel_usable_after_command_timeout(self):
        replies = iter([[], ["ok"]])
        self.stream.responder = lambda sent: next(replies)
        with CommandChannel(self.stream, poll_interval=0.01) as channel:
            self.assertFalse(channel.command("G4 P5", timeout=0.05))
            self.assertTrue(channel.command("G21", timeout=1.0))
            # A late 'ok' for the abandoned command is dropped
            self.stream.feed("ok\r\n")
            self.assertEqual(channel.gate.stray, 1)

    def test_last_error_is_per_command(self):
        replies = iter([["error:20"], ["ok"]])
        self.stream.responder = lambda sent: next(replies)
        with CommandChannel(self.stream) as channel:
            self.assertTrue(channel.command("G0 X"))
            self.assertEqual(channel.last_error, "error:20")
            self.assertTrue(channel.command("G0 X1"))
            self.assertIsNone(channel.last_error)

    def test_query_status_sends_bare_question_mark(self):
        self.stream.status_line = "<Jog|MPos:0.500,0.000,0.000|FS:75,0>"
        with CommandChannel(self.stream) as channel:
            status = channel.query_status()
        self.assertEqual(self.stream.get_sent_data(), ["?"])
        self.assertEqual(status.state, DeviceState.JOG)
        self.assertEqual(status.x, 0.5)


if __name__ == '__main__':
    unittest.main()
