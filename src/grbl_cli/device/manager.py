import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

from grbl_cli.streams.streams import Stream
from .executor import SingleCommandExecutor, DEFAULT_COMMAND_TIMEOUT
from .jog import JogController, JogSession, SPEED_MAX
from .protocol import LineConsumer
from .settings import (
    BUILD_INFO_COMMAND,
    SETTINGS_COMMAND,
    GrblBuildInfo,
    changed_settings,
    parse_build_info,
    parse_settings,
)
from .status import DeviceStatus, DeviceStatusModel
from .streamer import BatchCommandStreamer, BatchResult, ProgressCallback

# Worker threads for single commands, batch runs and jog sessions
MAX_WORKERS = 4


class DeviceManager:
    """
    Manages communication with a GRBL device via a provided Stream.

    Every operation runs on a pool worker so the caller is never blocked for
    its duration; the *_sync helpers wait on the returned Future. The stream's
    single receive slot keeps operations from interleaving on the wire.
    Connection management is handled externally.
    """

    def __init__(self, stream: Stream, address: str, verbose: bool = False,
                 timeout: float = DEFAULT_COMMAND_TIMEOUT):
        """
        Initializes the DeviceManager with an active communication stream.

        Args:
            stream: An already opened Stream object.
            address: The address associated with the stream (serial port).
            verbose: Log tracebacks for unexpected errors if True.
            timeout: Budget in seconds for single commands.
        """
        self.log = logging.getLogger("DeviceManager")
        if not stream:
            self.log.error("DeviceManager initialized without a valid stream!")
            raise ValueError("DeviceManager requires a valid Stream object.")

        self.stream: Optional[Stream] = stream
        self.address = address
        self.verbose = verbose
        self.timeout = timeout
        self.status_model = DeviceStatusModel()
        self.pool = ThreadPoolExecutor(max_workers=MAX_WORKERS, thread_name_prefix="grbl-worker")
        self.jog = JogController(stream, self.status_model, pool=self.pool)
        self.log.debug(f"DeviceManager initialized with stream for address: {self.address}")

    def close(self) -> None:
        """Stops any jog session, shuts the worker pool down and closes the stream."""
        self.jog.release()
        self.pool.shutdown(wait=True)
        if self.stream:
            try:
                self.stream.close()
                self.log.debug(f"Stream closed for address: {self.address}")
            except Exception as e:
                self.log.error(f"Error closing stream: {e}", exc_info=self.verbose)
            finally:
                self.stream = None
                self.address = ""
        else:
            self.log.debug("Close called but no active stream.")

    # --- Command Execution ---

    def _executor(self) -> SingleCommandExecutor:
        return SingleCommandExecutor(self.stream, self.status_model, timeout=self.timeout)

    def execute(self, command: str, timeout: Optional[float] = None) -> "Future[str]":
        """Executes one command on a worker; the Future resolves to the response text."""
        self.log.debug(f"Submitting command: {command!r}")
        return self.pool.submit(self._executor().execute, command, timeout)

    def execute_sync(self, command: str, timeout: Optional[float] = None) -> str:
        return self.execute(command, timeout).result()

    def query_status(self, timeout: Optional[float] = None) -> Optional[DeviceStatus]:
        """Sends '?' and returns the parsed status, or None if no report arrived."""
        response = self.execute_sync("?", timeout)
        if not response:
            return None
        return self.status_model.status

    def run_batch(self, commands: Sequence[str], abort_commands: Sequence[str] = (),
                  progress: Optional[ProgressCallback] = None,
                  on_line: Optional[LineConsumer] = None,
                  on_done: Optional[Callable[[BatchResult], None]] = None
                  ) -> Tuple[BatchCommandStreamer, "Future[BatchResult]"]:
        """
        Starts a batch run on a worker.

        Returns:
            The streamer (call abort() on it to cancel) and the Future of its result.
        """
        streamer = BatchCommandStreamer(
            self.stream, commands, abort_commands,
            status_model=self.status_model,
            progress=progress,
            on_line=on_line,
            on_done=on_done,
        )
        return streamer, self.pool.submit(streamer.run)

    # --- Jogging ---

    def jog_press(self, direction: str, speed: int = SPEED_MAX) -> JogSession:
        return self.jog.press(direction, speed)

    def jog_release(self) -> None:
        self.jog.release()

    def jog_finish(self, set_origin: bool) -> str:
        return self.jog.finish(set_origin, timeout=self.timeout)

    # --- Settings ---

    def get_build_info(self) -> GrblBuildInfo:
        return parse_build_info(self.execute_sync(BUILD_INFO_COMMAND))

    def get_settings(self):
        return parse_settings(self.execute_sync(SETTINGS_COMMAND))

    def apply_settings(self, wanted, progress: Optional[ProgressCallback] = None) -> Tuple[List[str], Optional[BatchResult]]:
        """
        Writes the settings in wanted that differ from the device's values.

        Returns:
            The '$N=value' commands sent and the batch result (None if nothing changed).

        Raises:
            ValueError: if wanted names a setting the device did not report.
        """
        current = self.get_settings()
        commands = changed_settings(current, wanted)
        if not commands:
            self.log.info("Settings already up to date")
            return commands, None
        _, future = self.run_batch(commands, progress=progress)
        return commands, future.result()
