"""
Stream Classes for Communication

Provides the Stream protocol implemented by every transport (USB serial,
in-memory dummy) and the guarded single-subscriber registry they share.
"""

import logging
import threading
from typing import Callable, Optional, Protocol, runtime_checkable

from grbl_cli.errors import SubscriberBusyError

ReceiveHandler = Callable[[int], None]


@runtime_checkable
class Stream(Protocol):
    """Protocol defining the interface for communication streams."""

    def close(self) -> bool:
        """Closes the stream connection."""
        ...

    def send_text(self, line: str) -> None:
        """Sends a text line verbatim (the caller supplies any terminator)."""
        ...

    def send_byte(self, value: int) -> None:
        """Sends a single raw byte, without a terminator."""
        ...

    def set_receive_handler(self, handler: ReceiveHandler) -> None:
        """Registers the one receive-byte callback. Raises SubscriberBusyError if taken."""
        ...

    def clear_receive_handler(self, handler: ReceiveHandler) -> None:
        """Deregisters the callback if it is the registered one."""
        ...

    def is_connected(self) -> bool:
        """Reports whether the link is available."""
        ...


class ReceiveSlot:
    """
    Mutex-protected registry holding at most one receive handler.

    Transports deliver every received byte through dispatch(). Registering a
    second handler while one is active fails loudly instead of silently
    splitting the byte stream between two consumers.
    """

    def __init__(self, name: str = "ReceiveSlot"):
        self.log = logging.getLogger(name)
        self._lock = threading.Lock()
        self._handler: Optional[ReceiveHandler] = None
        self.dropped = 0

    def set(self, handler: ReceiveHandler) -> None:
        with self._lock:
            if self._handler is not None:
                raise SubscriberBusyError(
                    f"Receive handler already registered ({self._handler!r}); "
                    f"refusing {handler!r}")
            self._handler = handler
        self.log.debug(f"Receive handler registered: {handler!r}")

    def clear(self, handler: ReceiveHandler) -> None:
        with self._lock:
            if self._handler != handler:
                # Only the owner may release the slot
                self.log.debug(f"Clear ignored, {handler!r} is not the registered handler")
                return
            self._handler = None
        self.log.debug(f"Receive handler cleared: {handler!r}")

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._handler is not None

    def dispatch(self, data: bytes) -> None:
        """Delivers received bytes, one call per byte, to the current handler."""
        with self._lock:
            handler = self._handler
        if handler is None:
            self.dropped += len(data)
            self.log.debug(f"No subscriber, dropped {len(data)} byte(s): {data!r}")
            return
        for value in data:
            handler(value)
