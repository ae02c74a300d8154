"""
Line assembly and one-outstanding-command flow control.

GRBL accepts one line at a time in this mode: a new command is sent only
after the device has answered the previous one with 'ok' (or, for the
realtime '?' query, with its status report).
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from grbl_cli.errors import ProtocolViolation, TransportError
from grbl_cli.streams.streams import Stream
from .status import DeviceState, DeviceStatus, DeviceStatusModel, is_status_line, parse_state

ACK_TOKEN = "ok"
# 'error:N' also ends the exchange; the code is passed through as text
ERROR_PREFIX = "error"
STATUS_QUERY = "?"
LINE_TERMINATOR = "\n"
JOG_CANCEL = 0x85
# Soft reset. Never sent: it leaves GRBL unable to accept further jog commands.
SOFT_RESET = 0x18

# Default re-check interval for await_completion (seconds)
DEFAULT_POLL_INTERVAL = 0.1

LineConsumer = Callable[[str], None]


def is_ack(line: str) -> bool:
    return line.strip().lower() == ACK_TOKEN


def is_error(line: str) -> bool:
    return line.strip().lower().startswith(ERROR_PREFIX)


class ResponseAssembler:
    """Turns a byte stream into completed, CR-stripped response lines."""

    def __init__(self, consumer: LineConsumer):
        self._consumer = consumer
        self._buffer = bytearray()

    def feed(self, value: int) -> None:
        if value == 0x0A:
            if self._buffer.endswith(b"\r"):
                del self._buffer[-1]
            line = self._buffer.decode('ascii', errors='replace')
            self._buffer = bytearray()
            self._consumer(line)
        else:
            self._buffer.append(value)

    def feed_bytes(self, data: bytes) -> None:
        for value in data:
            self.feed(value)

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)


class AckGate:
    """
    Issue/completion counter pair enforcing a window of one.

    Invariant: completed <= issued <= completed + 1.
    """

    def __init__(self):
        self.log = logging.getLogger("AckGate")
        self._cond = threading.Condition()
        self._issued = 0
        self._completed = 0
        self.stray = 0

    @property
    def issued(self) -> int:
        with self._cond:
            return self._issued

    @property
    def completed(self) -> int:
        with self._cond:
            return self._completed

    @property
    def outstanding(self) -> bool:
        with self._cond:
            return self._completed != self._issued

    def issue(self) -> None:
        with self._cond:
            if self._completed != self._issued:
                raise ProtocolViolation(
                    f"Command issued with {self._issued - self._completed} still unacknowledged")
            self._issued += 1

    def complete(self) -> None:
        with self._cond:
            if self._completed == self._issued:
                # Nothing outstanding: a late ack from an abandoned exchange
                self.stray += 1
                self.log.warning(f"Dropping stray acknowledgment (issued={self._issued})")
                return
            self._completed += 1
            self._cond.notify_all()

    def abandon(self) -> None:
        """Gives up on the outstanding command; a late reply to it counts as stray."""
        with self._cond:
            if self._completed != self._issued:
                self.log.debug(f"Abandoning unacknowledged command (issued={self._issued})")
                self._completed = self._issued
                self._cond.notify_all()

    def await_completion(self, poll_interval: float = DEFAULT_POLL_INTERVAL,
                         timeout: Optional[float] = None,
                         alive: Optional[Callable[[], bool]] = None) -> bool:
        """
        Blocks until the outstanding command is acknowledged.

        Re-checks every poll_interval seconds so the caller's cancellation
        flags and the alive() probe are observed between polls.

        Returns:
            True once completed == issued, False if timeout elapsed first.

        Raises:
            TransportError: if alive() reports the link gone.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._cond:
            while self._completed != self._issued:
                wait = poll_interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                    wait = min(wait, remaining)
                self._cond.wait(wait)
                if self._completed != self._issued and alive is not None and not alive():
                    raise TransportError("Link lost while waiting for acknowledgment")
            return True


class ResponseCollector:
    """
    The receive handler registered for one exchange.

    Assembles lines, feeds status reports to the status model, advances the
    gate on acknowledgments and keeps every other line as response text.
    """

    def __init__(self, status_model: Optional[DeviceStatusModel] = None,
                 on_line: Optional[LineConsumer] = None):
        self.log = logging.getLogger("ResponseCollector")
        self.gate = AckGate()
        self.status_model = status_model
        self.on_line = on_line
        self.lines: List[str] = []
        self.last_line = ""
        self.last_error: Optional[str] = None
        # State token of the latest status report, whether or not its position parsed
        self.report_state: Optional[DeviceState] = None
        self._expect_status = False
        self._assembler = ResponseAssembler(self._on_line)

    def __call__(self, value: int) -> None:
        self._assembler.feed(value)

    def expect_status(self) -> None:
        """Marks the next outstanding exchange as a status query."""
        self.report_state = None
        self._expect_status = True

    def cancel_status(self) -> None:
        self._expect_status = False

    def _on_line(self, line: str) -> None:
        self.last_line = line
        self.log.debug(f"Recv: {line!r}")
        if self.on_line is not None:
            try:
                self.on_line(line)
            except Exception as e:
                self.log.error(f"Line monitor failed: {e}")

        if is_ack(line):
            if self._expect_status:
                self.log.debug("Ignoring 'ok' while a status report is pending")
                return
            self.gate.complete()
            return

        self.lines.append(line)
        if is_error(line):
            self.last_error = line.strip()
            if self._expect_status:
                self.log.debug(f"Ignoring {line!r} while a status report is pending")
                return
            self.log.warning(f"Device replied {line!r}")
            self.gate.complete()
            return

        if is_status_line(line):
            self.report_state = parse_state(line)
            if self.status_model is not None:
                self.status_model.update(line)
            if self._expect_status:
                self._expect_status = False
                self.gate.complete()

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class CommandChannel:
    """
    Scoped, window-one command channel over a stream's receive slot.

    Used as a context manager: entering registers the collector as the sole
    subscriber, leaving always deregisters it.

    Example:
        with CommandChannel(stream, status_model) as channel:
            channel.command("G0 X10")
            status = channel.query_status()
    """

    def __init__(self, stream: Stream, status_model: Optional[DeviceStatusModel] = None,
                 on_line: Optional[LineConsumer] = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.log = logging.getLogger("CommandChannel")
        self.stream = stream
        self.poll_interval = poll_interval
        self.collector = ResponseCollector(status_model or DeviceStatusModel(), on_line)

    @property
    def gate(self) -> AckGate:
        return self.collector.gate

    def __enter__(self) -> "CommandChannel":
        self.stream.set_receive_handler(self.collector)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stream.clear_receive_handler(self.collector)
        return False

    def _wait(self, timeout: Optional[float]) -> bool:
        return self.gate.await_completion(self.poll_interval, timeout, alive=self.stream.is_connected)

    def command(self, command: str, timeout: Optional[float] = None) -> bool:
        """
        Sends one line command and waits for its 'ok'.

        The gate is advanced before the bytes go out so an immediate reply is
        never mistaken for a stray acknowledgment.

        An 'error:N' reply also ends the exchange and is kept in last_error.

        Returns:
            True if answered, False if timeout elapsed first.
        """
        self.collector.last_error = None
        self.gate.issue()
        self.stream.send_text(command + LINE_TERMINATOR)
        if not self._wait(timeout):
            self.gate.abandon()
            return False
        return True

    @property
    def last_error(self) -> Optional[str]:
        """The 'error:N' reply to the latest command, if any."""
        return self.collector.last_error

    @property
    def report_state(self) -> Optional[DeviceState]:
        """State token of the report that answered the latest status query."""
        return self.collector.report_state

    def query_status(self, timeout: Optional[float] = None) -> Optional[DeviceStatus]:
        """Sends '?' and waits for the status report. Returns the model's status."""
        self.gate.issue()
        self.collector.expect_status()
        self.stream.send_text(STATUS_QUERY)
        if not self._wait(timeout):
            self.collector.cancel_status()
            self.gate.abandon()
            return None
        return self.collector.status_model.status

    def send_byte(self, value: int) -> None:
        """Sends a realtime byte. Not acknowledged, so not gated."""
        self.stream.send_byte(value)
