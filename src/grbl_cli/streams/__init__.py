"""Transports for talking to GRBL devices."""

from .streams import Stream, ReceiveSlot, ReceiveHandler
from .dummy import DummyStream
from .usb import USBStream, BAUD_DEFAULT
