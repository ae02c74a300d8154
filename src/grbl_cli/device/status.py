"""
Device status model.

Parses GRBL status reports, the response to the realtime '?' query:

    <Run|MPos:0.140,0.000,0.000|FS:20,0|Pn:Z>
    <Idle|MPos:0.000,0.000,0.000|FS:0,0|Pn:Z>
    <Jog|MPos:0.000,0.000,0.000|FS:0,0|Pn:Z>

Extraction is purely textual. A line that lacks the MPos marker or does not
carry exactly three numeric position fields is ignored and the previous
status is kept.
"""

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple


class DeviceState(enum.Enum):
    IDLE = "Idle"
    RUN = "Run"
    JOG = "Jog"
    ALARM = "Alarm"
    UNKNOWN = "Unknown"

    @classmethod
    def from_token(cls, token: str) -> "DeviceState":
        # Sub-states such as "Hold:0" are not decoded
        for state in cls:
            if state.value.lower() == token.lower():
                return state
        return cls.UNKNOWN


@dataclass(frozen=True)
class DeviceStatus:
    state: DeviceState = DeviceState.UNKNOWN
    raw_state: str = ""
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    feed: Optional[float] = None
    speed: Optional[float] = None
    pins: str = ""

    @property
    def position(self) -> Tuple[Optional[float], Optional[float], Optional[float]]:
        return self.x, self.y, self.z


StatusListener = Callable[[DeviceStatus], None]


def is_status_line(line: str) -> bool:
    text = line.strip()
    return text.startswith("<") and text.endswith(">")


def parse_state(line: str) -> DeviceState:
    """
    Reads only the state token of a report, e.g. Idle from '<Idle|WPos:...>'.

    Works for reports the position parser rejects, such as WPos-only
    reports from a device configured with $10=0.
    """
    text = line.strip()
    if not is_status_line(text):
        return DeviceState.UNKNOWN
    token = text[1:].split("|", 1)[0].rstrip(">")
    return DeviceState.from_token(token.split(":", 1)[0])


def _parse_float(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None


def parse_status(line: str, previous: Optional[DeviceStatus] = None) -> Optional[DeviceStatus]:
    """
    Parses one status report line.

    Args:
        line: The response line, e.g. '<Idle|MPos:0.000,0.000,0.000|FS:0,0|Pn:Z>'.
        previous: Status whose feed/speed/pins are carried over when the
                  line omits those fields.

    Returns:
        A new DeviceStatus, or None if the line is not a usable status report.
    """
    text = line.strip()
    idx1 = text.find("|MPos:")
    if idx1 < 0:
        return None
    idx1 += len("|MPos:")
    idx2 = text.find("|", idx1)
    if idx2 <= idx1:
        return None

    fields = text[idx1:idx2].split(",")
    if len(fields) != 3:
        return None
    coords = [_parse_float(f) for f in fields]
    if any(c is None for c in coords):
        return None

    raw_state = text.split("|", 1)[0].lstrip("<")
    feed = previous.feed if previous else None
    speed = previous.speed if previous else None
    pins = ""
    for part in text.strip("<>").split("|")[1:]:
        if part.startswith("FS:"):
            fs = part[3:].split(",")
            if len(fs) == 2:
                feed = _parse_float(fs[0])
                speed = _parse_float(fs[1])
        elif part.startswith("Pn:"):
            pins = part[3:]

    return DeviceStatus(
        state=DeviceState.from_token(raw_state.split(":", 1)[0]),
        raw_state=raw_state,
        x=coords[0],
        y=coords[1],
        z=coords[2],
        feed=feed,
        speed=speed,
        pins=pins,
    )


def format_status_line(status: DeviceStatus) -> str:
    """Renders a status back into GRBL's report syntax."""
    def fmt(value: Optional[float]) -> str:
        return f"{value:.3f}" if value is not None else "0.000"

    feed = f"{status.feed:g}" if status.feed is not None else "0"
    speed = f"{status.speed:g}" if status.speed is not None else "0"
    state = status.raw_state or status.state.value
    line = f"<{state}|MPos:{fmt(status.x)},{fmt(status.y)},{fmt(status.z)}|FS:{feed},{speed}"
    if status.pins:
        line += f"|Pn:{status.pins}"
    return line + ">"


class DeviceStatusModel:
    """
    Process-wide holder of the last good DeviceStatus.

    Stale values persist until a well-formed report overwrites them; they are
    never cleared. Listeners (position displays) are notified after every
    accepted update.
    """

    def __init__(self):
        self.log = logging.getLogger("DeviceStatusModel")
        self._lock = threading.Lock()
        self._status = DeviceStatus()
        self._listeners: List[StatusListener] = []
        self.last_line = ""

    @property
    def status(self) -> DeviceStatus:
        with self._lock:
            return self._status

    @property
    def state(self) -> DeviceState:
        return self.status.state

    def update(self, line: str) -> bool:
        """Applies a status line. Returns False if it was ignored."""
        with self._lock:
            parsed = parse_status(line, self._status)
            if parsed is None:
                self.log.debug(f"Ignoring malformed status line: {line!r}")
                return False
            self._status = parsed
            self.last_line = line
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(parsed)
            except Exception as e:
                self.log.error(f"Status listener {listener!r} failed: {e}", exc_info=True)
        return True

    def add_listener(self, listener: StatusListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def format_position(self) -> str:
        """DRO text, e.g. 'X 0.000  Y 0.000  Z 0.000'."""
        status = self.status
        parts = []
        for axis, value in zip("XYZ", status.position):
            parts.append(f"{axis} {value:.3f}" if value is not None else f"{axis} -")
        return "  ".join(parts)
