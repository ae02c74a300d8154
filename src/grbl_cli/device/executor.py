import logging
from typing import Optional

from grbl_cli.errors import GrblCliError
from grbl_cli.streams.streams import Stream
from .protocol import CommandChannel, DEFAULT_POLL_INTERVAL
from .status import DeviceStatusModel

# Hard budget for one command: 10 polls of 100ms
DEFAULT_COMMAND_TIMEOUT = 1.0


class SingleCommandExecutor:
    """
    Sends one command, waits (bounded) for 'ok' and returns the response text.

    The result is best-effort: if the budget runs out before the
    acknowledgment arrives, whatever was received so far is returned.
    """

    def __init__(self, stream: Stream, status_model: Optional[DeviceStatusModel] = None,
                 timeout: float = DEFAULT_COMMAND_TIMEOUT,
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.log = logging.getLogger("SingleCommandExecutor")
        self.stream = stream
        self.status_model = status_model
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.acknowledged = False

    def execute(self, command: str, timeout: Optional[float] = None) -> str:
        """
        Executes a single command.

        Args:
            command: Command line without terminator. '?' is sent as a status
                     query and completes on the status report.
            timeout: Optional override of the executor's budget in seconds.

        Returns:
            All response lines except 'ok', joined by newlines. Never raises.
        """
        effective_timeout = timeout if timeout is not None else self.timeout
        self.acknowledged = False
        channel = CommandChannel(self.stream, self.status_model, poll_interval=self.poll_interval)
        self.log.debug(f"Executing: {command!r} (timeout={effective_timeout}s)")
        try:
            with channel:
                if command.strip() == "?":
                    self.acknowledged = channel.query_status(effective_timeout) is not None
                else:
                    self.acknowledged = channel.command(command, effective_timeout)
        except GrblCliError as e:
            self.log.error(f"Command {command!r} failed: {e}")
        except Exception as e:
            self.log.error(f"Unexpected error executing {command!r}: {e}", exc_info=True)

        if not self.acknowledged:
            self.log.warning(f"No acknowledgment within {effective_timeout}s for {command!r}; "
                             f"returning partial response")
        return channel.collector.text
