import argparse
import os
import tempfile
import unittest
import logging
from unittest.mock import MagicMock

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

from grbl_cli.cmd.job import handle_jog, handle_run
from grbl_cli.device.manager import DeviceManager
from grbl_cli.streams.dummy import DummyStream, ok_responder


class TestHandleJog(unittest.TestCase):

    def test_interrupted_press_propagates_and_detaches_listener(self):
        """Ctrl-C while waiting on a previous session reaches the caller; the DRO listener is removed."""
        manager = MagicMock()
        manager.jog_press.side_effect = KeyboardInterrupt
        args = argparse.Namespace(direction="up", speed=100, hold=0.0, quiet=False,
                                  set_origin=False, return_home=False)
        with self.assertRaises(KeyboardInterrupt):
            handle_jog(manager, args)
        manager.status_model.add_listener.assert_called_once()
        manager.status_model.remove_listener.assert_called_once()


class TestHandleRun(unittest.TestCase):

    def setUp(self):
        self.stream = DummyStream()
        default = ok_responder(lambda: self.stream.status_line)

        def responder(sent):
            if sent == "G0 X1\n":
                return ["error:20"]
            return default(sent)

        self.stream.responder = responder
        self.manager = DeviceManager(self.stream, address="test_dummy")
        with tempfile.NamedTemporaryFile("w", suffix=".nc", delete=False) as f:
            f.write("G21\nG0 X1\nG0 X0\n")
            self.path = f.name

    def tearDown(self):
        self.manager.close()
        os.unlink(self.path)

    def test_rejected_line_fails_the_run(self):
        args = argparse.Namespace(gcode_file=self.path, abort_command=None, verbose=False, quiet=True)
        self.assertEqual(handle_run(self.manager, args), 1)
        self.assertEqual(self.stream.sent_lines(), ["G21", "G0 X1", "G0 X0", "?"])


if __name__ == '__main__':
    unittest.main()
