import io
import os
import tempfile
import unittest
from unittest.mock import patch

from grbl_cli.cmd.utils import format_status, load_gcode_file, progress_callback
from grbl_cli.device.status import DeviceState, DeviceStatus, parse_status

GCODE = """%
(Header comment)
G21 ; millimetres
G90

G0 X10 (rapid) Y5
  M3 S1000
;full line comment
%
"""


class TestLoadGcodeFile(unittest.TestCase):

    def test_comments_and_blank_lines_are_stripped(self):
        with tempfile.NamedTemporaryFile("w", suffix=".nc", delete=False) as f:
            f.write(GCODE)
            path = f.name
        try:
            self.assertEqual(load_gcode_file(path), ["G21", "G90", "G0 X10  Y5", "M3 S1000"])
        finally:
            os.unlink(path)


class TestFormatStatus(unittest.TestCase):

    def test_full_report(self):
        status = parse_status("<Idle|MPos:0.000,1.500,-2.000|FS:0,0|Pn:Z>")
        self.assertEqual(format_status(status), "Idle  X 0.000  Y 1.500  Z -2.000  F0 S0  Pn:Z")

    def test_unknown_position(self):
        self.assertEqual(format_status(DeviceStatus()), "Unknown  X -  Y -  Z -")

    def test_substate_shown_raw(self):
        status = DeviceStatus(state=DeviceState.UNKNOWN, raw_state="Hold:0", x=0.0, y=0.0, z=0.0)
        self.assertTrue(format_status(status).startswith("Hold:0  X 0.000"))


class TestProgressCallback(unittest.TestCase):

    @patch("grbl_cli.cmd.utils.logging.getLogger")
    def test_writes_percentage(self, mock_get_logger):
        mock_get_logger.return_value.getEffectiveLevel.return_value = 20
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            progress_callback(1, 4)
            progress_callback(4, 4)
        self.assertEqual(out.getvalue(), "\rProgress: 25.0% (1/4 lines)\rProgress: 100.0% (4/4 lines)\n")

    @patch("grbl_cli.cmd.utils.logging.getLogger")
    def test_silent_in_quiet_mode(self, mock_get_logger):
        mock_get_logger.return_value.getEffectiveLevel.return_value = 30
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            progress_callback(1, 4)
        self.assertEqual(out.getvalue(), "")


if __name__ == '__main__':
    unittest.main()
