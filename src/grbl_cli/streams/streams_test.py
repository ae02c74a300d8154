import unittest
import logging

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

from grbl_cli.errors import SubscriberBusyError, TransportError
from grbl_cli.streams.dummy import DummyStream
from grbl_cli.streams.streams import ReceiveSlot, Stream


class TestReceiveSlot(unittest.TestCase):

    def setUp(self):
        self.slot = ReceiveSlot()
        self.received = []

    def handler(self, value: int) -> None:
        self.received.append(value)

    def test_dispatch_delivers_each_byte(self):
        self.slot.set(self.handler)
        self.slot.dispatch(b"ok\n")
        self.assertEqual(self.received, [ord("o"), ord("k"), ord("\n")])

    def test_second_registration_fails_loudly(self):
        self.slot.set(self.handler)
        with self.assertRaises(SubscriberBusyError):
            self.slot.set(lambda value: None)
        # The original subscriber keeps the slot
        self.slot.dispatch(b"x")
        self.assertEqual(self.received, [ord("x")])

    def test_clear_by_non_owner_is_ignored(self):
        self.slot.set(self.handler)
        self.slot.clear(lambda value: None)
        self.assertTrue(self.slot.busy)
        self.slot.clear(self.handler)
        self.assertFalse(self.slot.busy)

    def test_bytes_without_subscriber_are_dropped(self):
        self.slot.dispatch(b"ok\r\n")
        self.assertEqual(self.slot.dropped, 4)
        self.assertEqual(self.received, [])


class TestDummyStream(unittest.TestCase):

    def test_conforms_to_stream_protocol(self):
        self.assertIsInstance(DummyStream(), Stream)

    def test_replies_are_fed_back_through_handler(self):
        stream = DummyStream()
        received = bytearray()
        stream.set_receive_handler(received.append)
        stream.send_text("G0 X1\n")
        stream.send_text("?")
        self.assertEqual(bytes(received), b"ok\r\n" + stream.status_line.encode() + b"\r\n")

    def test_send_on_closed_stream_raises(self):
        stream = DummyStream()
        stream.close()
        with self.assertRaises(TransportError):
            stream.send_text("G0 X1\n")
        with self.assertRaises(TransportError):
            stream.send_byte(0x85)


if __name__ == '__main__':
    unittest.main()
