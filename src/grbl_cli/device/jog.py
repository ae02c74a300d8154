"""
Press-and-hold jog control.

A press starts a session worker that streams small relative jog moves, each
followed by a status query, until the control is released. On release the
worker keeps polling until the device leaves the Jog state, then sends the
realtime jog-cancel byte.

Session lifecycle: Idle -> Engaged -> Releasing -> Stopped.
"""

import enum
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Dict, Optional

from grbl_cli.errors import GrblCliError
from grbl_cli.streams.streams import Stream
from .executor import SingleCommandExecutor
from .protocol import CommandChannel, JOG_CANCEL
from .status import DeviceState, DeviceStatusModel

SPEED_MIN = 10
SPEED_MAX = 100
# Feed rate in inches/min at full speed, and the floor at low speed
JOG_FEED_MAX = 75
JOG_FEED_MIN = 5
# Step distance in inches at full speed
JOG_STEP_MAX = 0.1

PRESS_POLL_INTERVAL = 0.05  # wait for a prior session's worker
STEP_POLL_INTERVAL = 0.02   # re-check while a jog/status exchange is outstanding
FIRST_MOVE_DWELL = 0.05     # minimum move time before trusting the first status
CANCEL_GRACE = 0.5          # settle time after the jog-cancel byte

SET_ORIGIN_COMMAND = "G92 X0 Y0 Z0"
RETURN_COMMAND = "G00 X0 Y0 Z0"

# '%' is replaced by the step distance
JOG_DIRECTIONS: Dict[str, str] = {
    "up-left": "Y-% X-%",
    "up": "Y-%",
    "up-right": "Y-% X+%",
    "left": "X-%",
    "right": "X+%",
    "down-left": "Y+% X-%",
    "down": "Y+%",
    "down-right": "Y+% X+%",
    "z-up": "Z+%",
    "z-down": "Z-%",
}


class JogPhase(enum.Enum):
    IDLE = "idle"
    ENGAGED = "engaged"
    RELEASING = "releasing"
    STOPPED = "stopped"


def _format_number(value: float) -> str:
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text or "0"


def jog_feed_rate(speed: int) -> float:
    return max(JOG_FEED_MAX * (speed / 100.0), JOG_FEED_MIN)


def jog_step_distance(speed: int) -> float:
    return JOG_STEP_MAX * (speed / 100.0)


def build_jog_command(axis_template: str, speed: int) -> str:
    """Builds e.g. '$J=G91 G20 F75 Y-0.1' for template 'Y-%' at speed 100."""
    feed = _format_number(jog_feed_rate(speed))
    step = _format_number(jog_step_distance(speed))
    return f"$J=G91 G20 F{feed} {axis_template}".replace("%", step)


class JogSession:
    """State for one press-to-release gesture."""

    def __init__(self, axis_template: str, speed: int):
        self.axis_template = axis_template
        self.speed = speed
        self.feed_rate = jog_feed_rate(speed)
        self.step_distance = jog_step_distance(speed)
        self.command = build_jog_command(axis_template, speed)
        self.phase = JogPhase.IDLE
        self.moves = 0
        self.error: Optional[str] = None
        self._released = threading.Event()
        self.future: Optional[Future] = None

    @property
    def engaged(self) -> bool:
        return not self._released.is_set()

    def release(self) -> None:
        self._released.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Waits for the session worker to finish. Returns False on timeout."""
        if self.future is None:
            return True
        done, _ = wait([self.future], timeout)
        return bool(done)


class JogController:
    """
    Runs jog sessions on a worker pool, one session at a time.

    The worker flag is held from press until the session has fully stopped;
    a new press blocks until the previous session's worker has exited.
    """

    def __init__(self, stream: Stream, status_model: DeviceStatusModel,
                 pool: Optional[Executor] = None):
        self.log = logging.getLogger("JogController")
        self.stream = stream
        self.status_model = status_model
        self._pool = pool if pool is not None else ThreadPoolExecutor(max_workers=1, thread_name_prefix="jog-worker")
        self._press_lock = threading.Lock()
        self._worker_active = threading.Event()
        self.session: Optional[JogSession] = None
        self.press_poll_interval = PRESS_POLL_INTERVAL
        self.step_poll_interval = STEP_POLL_INTERVAL
        self.first_move_dwell = FIRST_MOVE_DWELL
        self.cancel_grace = CANCEL_GRACE

    @property
    def worker_active(self) -> bool:
        return self._worker_active.is_set()

    def press(self, direction: str, speed: int = SPEED_MAX) -> JogSession:
        """
        Starts a jog session for a direction name or a raw axis template.

        Blocks while a previous session's worker is still running.
        """
        axis_template = JOG_DIRECTIONS.get(direction, direction)
        if "%" not in axis_template:
            raise ValueError(f"Unknown jog direction: {direction!r}")
        speed = min(max(int(speed), SPEED_MIN), SPEED_MAX)

        with self._press_lock:
            while self._worker_active.is_set():
                time.sleep(self.press_poll_interval)
            self._worker_active.set()
            session = JogSession(axis_template, speed)
            self.session = session
            self.log.debug(f"Jog press: {session.command!r}")
            try:
                session.future = self._pool.submit(self._run, session)
            except Exception:
                self._worker_active.clear()
                raise
        return session

    def release(self) -> None:
        """Signals release of the current session's control."""
        session = self.session
        if session is not None:
            self.log.debug("Jog release")
            session.release()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Waits (bounded polls) for the worker flag to clear."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        while self._worker_active.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(self.press_poll_interval)
        return True

    def finish(self, set_origin: bool, timeout: Optional[float] = None) -> str:
        """
        Ends jogging once the session has stopped.

        set_origin=True makes the current location the new reference
        position; False returns to the position held before jogging.
        """
        self.release()
        self.wait_idle()
        command = SET_ORIGIN_COMMAND if set_origin else RETURN_COMMAND
        self.log.info(f"Jog finished, sending {command!r}")
        return SingleCommandExecutor(self.stream, self.status_model).execute(command, timeout)

    def _run(self, session: JogSession) -> JogSession:
        """Session worker body."""
        channel = CommandChannel(self.stream, self.status_model, poll_interval=self.step_poll_interval)
        try:
            with channel:
                session.phase = JogPhase.ENGAGED
                first_move = True
                while session.engaged:
                    channel.command(session.command)
                    if channel.last_error:
                        # Soft limit (error:15), alarm lock (error:9) and the like
                        self.log.warning(f"Jog rejected: {channel.last_error}")
                        session.error = channel.last_error
                        session.release()
                        break
                    session.moves += 1
                    channel.query_status()
                    if first_move:
                        time.sleep(self.first_move_dwell)
                    first_move = False

                session.phase = JogPhase.RELEASING
                while True:
                    channel.query_status()
                    if channel.report_state != DeviceState.JOG:
                        break

                session.phase = JogPhase.STOPPED
                channel.send_byte(JOG_CANCEL)
                time.sleep(self.cancel_grace)
        except GrblCliError as e:
            self.log.error(f"Jog session terminated: {e}")
            session.error = str(e)
        except Exception as e:
            self.log.error(f"Unexpected error in jog session: {e}", exc_info=True)
            session.error = str(e)
        finally:
            session.phase = JogPhase.STOPPED
            self._worker_active.clear()
        self.log.debug(f"Jog session stopped after {session.moves} move(s)")
        return session
