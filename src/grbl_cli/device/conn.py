import logging
from typing import Optional, Tuple

from grbl_cli.errors import TransportError
from ..streams.streams import Stream
from ..streams.usb import USBStream, BAUD_DEFAULT


class Connection:
    """Handles detection and creation of device communication streams."""

    @staticmethod
    def usb(port: str, baudrate: int = BAUD_DEFAULT) -> Optional[Stream]:
        """
        Attempts to establish a USB serial connection.

        Args:
            port: The serial port identifier (e.g., /dev/ttyUSB0 or COM3).
            baudrate: Serial speed; GRBL 1.1 defaults to 115200.

        Returns:
            A Stream instance if successful, None otherwise.
        """
        log = logging.getLogger("Connection.usb")
        log.info(f"Attempting USB connection to {port}...")
        try:
            stream = USBStream(port, baudrate=baudrate)
            log.info(f"USB connection successful to {port}.")
            return stream
        except TransportError as e:
            log.error(f"Failed to open USB connection to {port}: {e}")
            return None
        except Exception as e:
            log.error(f"Unexpected error connecting via USB to {port}: {e}", exc_info=True)
            return None

    @staticmethod
    def detect_port() -> Optional[str]:
        """Picks the first CH340 / USB-serial port, else the first port found."""
        log = logging.getLogger("Connection.detect")
        usb_ports = USBStream.list_ports()
        if not usb_ports:
            log.info("No USB devices found.")
            return None
        grbl_ports = [p for p in usb_ports
                      if 'ch340' in p['description'].lower() or 'usb-serial' in p['description'].lower()]
        selected = grbl_ports[0] if grbl_ports else usb_ports[0]
        log.info(f"Found USB device: {selected['port']} - {selected['description']}")
        return selected['port']

    @staticmethod
    def auto(baudrate: int = BAUD_DEFAULT) -> Tuple[Optional[Stream], str]:
        """
        Connects to the first available serial device.

        Returns:
            A tuple of the connected Stream and its port, or (None, "") if no
            device is found or the connection fails.
        """
        log = logging.getLogger("Connection.auto")
        log.info("Scanning for USB devices...")
        port = Connection.detect_port()
        if port is None:
            log.info("Auto-detection failed: No connectable device found.")
            return None, ""
        stream = Connection.usb(port, baudrate)
        if stream is None:
            log.warning(f"Found USB device {port}, but failed to establish connection.")
            return None, ""
        return stream, port
