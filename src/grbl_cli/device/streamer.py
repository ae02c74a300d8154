import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from grbl_cli.errors import GrblCliError
from grbl_cli.streams.streams import Stream
from .protocol import CommandChannel, LineConsumer
from .status import DeviceState, DeviceStatusModel

# Interval between '?' polls while waiting for the machine to go idle
STATUS_POLL_INTERVAL = 0.2
# Re-check interval while a command is outstanding
STEP_POLL_INTERVAL = 0.1

ProgressCallback = Callable[[int, int], None]


@dataclass
class BatchResult:
    total: int
    sent: int = 0
    aborted: bool = False
    abort_sent: int = 0
    error: Optional[str] = None
    # (line index, command, reply) for every error:N the device answered
    device_errors: List[Tuple[int, str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return (self.error is None and not self.aborted and self.sent == self.total
                and not self.device_errors)


class BatchCommandStreamer:
    """
    Streams an ordered list of commands, one outstanding at a time.

    abort() may be called from any thread. It is honoured between commands
    only: the remaining primary commands are skipped and the abort commands
    are sent instead. Either way the run ends by polling status until the
    device reports Idle.

    A line the device answers with error:N is recorded in
    BatchResult.device_errors and the run moves on to the next line.
    """

    def __init__(self, stream: Stream, commands: Sequence[str],
                 abort_commands: Sequence[str] = (),
                 status_model: Optional[DeviceStatusModel] = None,
                 progress: Optional[ProgressCallback] = None,
                 on_line: Optional[LineConsumer] = None,
                 on_done: Optional[Callable[[BatchResult], None]] = None,
                 status_interval: float = STATUS_POLL_INTERVAL,
                 poll_interval: float = STEP_POLL_INTERVAL):
        self.log = logging.getLogger("BatchCommandStreamer")
        self.stream = stream
        self.commands = list(commands)
        self.abort_commands = list(abort_commands)
        self.status_model = status_model if status_model is not None else DeviceStatusModel()
        self.progress = progress
        self.on_line = on_line
        self.on_done = on_done
        self.status_interval = status_interval
        self.poll_interval = poll_interval
        self._abort = threading.Event()
        self.result = BatchResult(total=len(self.commands))

    def abort(self) -> None:
        """Requests a cooperative abort."""
        if not self._abort.is_set():
            self.log.warning("Abort requested")
        self._abort.set()

    @property
    def abort_requested(self) -> bool:
        return self._abort.is_set()

    def _report(self, index: int) -> None:
        if self.progress is None:
            return
        try:
            self.progress(index, len(self.commands))
        except Exception as e:
            self.log.error(f"Progress callback failed: {e}")

    def _send_abort_commands(self, channel: CommandChannel) -> None:
        self.result.aborted = True
        self.log.info(f"Sending {len(self.abort_commands)} abort command(s)")
        for cmd in self.abort_commands:
            channel.command(cmd)
            self.result.abort_sent += 1

    def _wait_for_idle(self, channel: CommandChannel) -> None:
        while True:
            if self._abort.is_set() and not self.result.aborted:
                self._send_abort_commands(channel)
            time.sleep(self.status_interval)
            channel.query_status()
            if channel.report_state == DeviceState.IDLE:
                self.log.debug("Device reports Idle")
                return

    def run(self) -> BatchResult:
        """Runs the batch on the calling thread. Never raises."""
        total = len(self.commands)
        self.log.info(f"Streaming {total} command(s)")
        channel = CommandChannel(self.stream, self.status_model, self.on_line, self.poll_interval)
        try:
            with channel:
                for index, cmd in enumerate(self.commands):
                    if self._abort.is_set():
                        break
                    self._report(index)
                    channel.command(cmd)
                    if channel.last_error:
                        self.log.warning(f"Line {index + 1} {cmd!r}: {channel.last_error}")
                        self.result.device_errors.append((index, cmd, channel.last_error))
                    self.result.sent += 1
                if self._abort.is_set():
                    self._send_abort_commands(channel)
                else:
                    self._report(total)
                self._wait_for_idle(channel)
        except GrblCliError as e:
            self.log.error(f"Batch ended early after {self.result.sent}/{total}: {e}")
            self.result.error = str(e)
        except Exception as e:
            self.log.error(f"Unexpected error during batch: {e}", exc_info=True)
            self.result.error = str(e)

        if self.on_done is not None:
            try:
                self.on_done(self.result)
            except Exception as e:
                self.log.error(f"Completion callback failed: {e}")
        self.log.info(f"Batch finished: {self.result.sent}/{total} sent"
                      f"{', aborted' if self.result.aborted else ''}")
        return self.result
