import logging
import threading
from typing import Dict, List, Optional

import serial
import serial.tools.list_ports

from grbl_cli.errors import TransportError
from grbl_cli.streams.streams import ReceiveHandler, ReceiveSlot, Stream

# Constants
BAUD_DEFAULT = 115200
SERIAL_TIMEOUT = 0.3  # seconds
READER_JOIN_TIMEOUT = 1.0  # seconds


class USBStream(Stream):
    """USB serial connection established on initialization.

    A daemon reader thread pulls bytes off the port and hands them to the
    single registered receive handler.
    """

    def __init__(self, address: str, baudrate: int = BAUD_DEFAULT):
        """
        Initialize and open serial connection. Raises TransportError on failure.
        """
        self.serial: Optional[serial.Serial] = None
        self.address = address
        self.log = logging.getLogger("USBStream")
        self._slot = ReceiveSlot("USBStream.slot")
        self._write_lock = threading.Lock()
        self._stop = threading.Event()
        self._reader: Optional[threading.Thread] = None

        self.log.debug(f"Attempting to open {address} at {baudrate} baud...")
        try:
            self.serial = serial.Serial(
                port=address,
                baudrate=baudrate,
                timeout=SERIAL_TIMEOUT
            )

            # --- DTR TOGGLE ---
            # GRBL boards reset on DTR; start from a clean input buffer
            try:
                self.serial.dtr = False
            except IOError: pass
            self.serial.reset_input_buffer()
            try:
                self.serial.dtr = True
            except IOError: pass
            # --- END DTR TOGGLE ---

            self.log.info(f"Serial port opened successfully: {address}")

        except (serial.SerialException, OSError) as e:
            self.log.error(f"Serial connection error during init: {str(e)}")
            if self.serial and self.serial.is_open:
                try:
                    self.serial.close()
                except Exception:
                    pass
            self.serial = None
            raise TransportError(f"Failed to open USB device {address}: {e}") from e

        self._reader = threading.Thread(target=self._read_loop, name=f"usb-reader({address})", daemon=True)
        self._reader.start()

    def _read_loop(self) -> None:
        """Reader thread body: forward every received byte to the receive slot."""
        while not self._stop.is_set():
            try:
                port = self.serial
                if port is None:
                    break
                data = port.read(port.in_waiting or 1)
            except (serial.SerialException, AttributeError, OSError, TypeError) as e:
                if not self._stop.is_set():
                    self.log.error(f"Error during serial read, reader stopping: {e}")
                break
            if not data:
                continue
            try:
                self._slot.dispatch(data)
            except Exception as e:
                # A broken handler must not kill the reader
                self.log.error(f"Receive handler raised: {e}", exc_info=True)
        self.log.debug("Reader thread exiting.")

    def close(self) -> bool:
        """Close serial connection"""
        closed_successfully = True
        self._stop.set()
        if self.serial:
            try:
                if self.serial.is_open:
                    self.log.debug("Closing serial port...")
                    self.serial.close()
                    self.log.debug("Serial port closed.")
                else:
                    self.log.debug("Serial port was already closed.")
            except Exception as e:
                self.log.error(f"Error closing serial connection: {str(e)}")
                closed_successfully = False
            finally:
                self.serial = None
        else:
            self.log.debug("Close called but self.serial is already None.")

        if self._reader and self._reader is not threading.current_thread():
            self._reader.join(READER_JOIN_TIMEOUT)
        return closed_successfully

    def _write(self, data: bytes) -> None:
        if not self.is_connected():
            raise TransportError(f"Serial port {self.address} is not open")
        try:
            with self._write_lock:
                self.serial.write(data)
                self.serial.flush()
        except (serial.SerialException, AttributeError, OSError) as e:
            self.log.error(f"Error during serial send: {e}")
            raise TransportError(f"Serial send failed: {e}") from e

    def send_text(self, line: str) -> None:
        """Send a text line over the serial connection"""
        self.log.debug(f"Send: {line!r}")
        self._write(line.encode('ascii', errors='replace'))

    def send_byte(self, value: int) -> None:
        """Send one raw byte (realtime commands such as jog cancel)"""
        self.log.debug(f"Send byte: 0x{value:02X}")
        self._write(bytes([value & 0xFF]))

    def set_receive_handler(self, handler: ReceiveHandler) -> None:
        self._slot.set(handler)

    def clear_receive_handler(self, handler: ReceiveHandler) -> None:
        self._slot.clear(handler)

    def is_connected(self) -> bool:
        try:
            return bool(self.serial and self.serial.is_open)
        except Exception as e:
            self.log.debug(f"Error checking port state: {e}")
            return False

    @staticmethod
    def list_ports() -> List[Dict[str, str]]:
        """List available serial ports (Static method - no self.log)."""
        ports = []
        try:
            for port in serial.tools.list_ports.comports():
                ports.append({
                    'port': port.device,
                    'description': port.description,
                    'hwid': port.hwid
                })
        except Exception as e:
            logging.error(f"Error listing serial ports: {str(e)}")
        return ports
