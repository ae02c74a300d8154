import logging
import threading
from typing import Callable, Iterable, List, Optional, Union

from grbl_cli.errors import TransportError
from .streams import ReceiveHandler, ReceiveSlot, Stream

IDLE_STATUS = "<Idle|MPos:0.000,0.000,0.000|FS:0,0|Pn:Z>"

Responder = Callable[[str], Iterable[str]]


def ok_responder(status_line: Callable[[], str]) -> Responder:
    """Answers '?' with the current status line and every terminated line with 'ok'."""
    def respond(sent: str) -> Iterable[str]:
        if sent == "?":
            return [status_line()]
        if sent.endswith("\n"):
            return ["ok"]
        return []
    return respond


class DummyStream(Stream):
    """A scripted in-memory stream for exercising the protocol layer in tests.

    Replies produced by the responder are fed back byte by byte through the
    receive slot, synchronously from inside send_text(), each line terminated
    with CR LF as GRBL does.
    """

    def __init__(self, address: str = "dummy_addr", responder: Optional[Responder] = None):
        self.log = logging.getLogger("DummyStream")
        self.address = address
        self.connected = True
        self.status_line = IDLE_STATUS
        self.responder: Responder = responder or ok_responder(lambda: self.status_line)
        self.sent_data: List[Union[str, bytes]] = []
        self.fail_on: Optional[Callable[[str], bool]] = None
        self._slot = ReceiveSlot("DummyStream.slot")
        self._lock = threading.Lock()
        # Registration bookkeeping for single-subscriber assertions
        self.active_subscribers = 0
        self.max_subscribers = 0
        self.registrations = 0
        self.log.debug(f"Initialized DummyStream for {address}")

    # --- Stream Protocol Methods --- #

    def close(self) -> bool:
        """Simulates closing the stream."""
        self.connected = False
        self.log.debug(f"DummyStream closed for {self.address}")
        return True

    def send_text(self, line: str) -> None:
        """Records sent text and plays back the scripted replies."""
        if not self.connected:
            self.log.error("send_text called on closed DummyStream")
            raise TransportError("Stream is closed")
        if self.fail_on is not None and self.fail_on(line):
            raise TransportError(f"Simulated send failure for {line!r}")
        self.log.debug(f"Send received data: {line!r}")
        with self._lock:
            self.sent_data.append(line)
        for reply in self.responder(line):
            self.feed(reply + "\r\n")

    def send_byte(self, value: int) -> None:
        """Records a raw byte."""
        if not self.connected:
            raise TransportError("Stream is closed")
        self.log.debug(f"Send received byte: 0x{value:02X}")
        with self._lock:
            self.sent_data.append(bytes([value]))

    def set_receive_handler(self, handler: ReceiveHandler) -> None:
        self._slot.set(handler)
        with self._lock:
            self.registrations += 1
            self.active_subscribers += 1
            self.max_subscribers = max(self.max_subscribers, self.active_subscribers)

    def clear_receive_handler(self, handler: ReceiveHandler) -> None:
        was_busy = self._slot.busy
        self._slot.clear(handler)
        if was_busy and not self._slot.busy:
            with self._lock:
                self.active_subscribers -= 1

    def is_connected(self) -> bool:
        return self.connected

    # --- Test Helper Methods --- #

    def feed(self, text: Union[str, bytes]) -> None:
        """Pushes bytes to the registered handler as if the device sent them."""
        data = text.encode('ascii') if isinstance(text, str) else text
        self._slot.dispatch(data)

    @property
    def subscribed(self) -> bool:
        return self._slot.busy

    def get_sent_data(self) -> List[Union[str, bytes]]:
        """Returns everything sent via send_text() or send_byte()."""
        with self._lock:
            return list(self.sent_data)

    def sent_lines(self) -> List[str]:
        """Returns only the text sends, terminators stripped."""
        return [d.rstrip("\n") for d in self.get_sent_data() if isinstance(d, str)]

    def clear_sent_data(self):
        """Clears the history of sent data."""
        with self._lock:
            self.sent_data.clear()
