import logging
import re
import sys
from typing import List

from grbl_cli.device.status import DeviceStatus

_PAREN_COMMENT = re.compile(r"\([^)]*\)")


def progress_callback(index: int, total: int) -> None:
    """
    Progress callback for batch runs

    Args:
        index: Index of the command about to be sent (total when finished)
        total: Number of commands in the batch
    """
    try:
        # Skip progress output in quiet mode
        if logging.getLogger().getEffectiveLevel() >= logging.WARNING:
            return
        if total > 0:
            percent = min(100.0, (index / total) * 100)
            progress_str = f"\rProgress: {percent:.1f}% ({index}/{total} lines)"
        else:
            progress_str = f"\rProgress: {index} lines"
        sys.stdout.write(progress_str)
        if index >= total:
            sys.stdout.write("\n")
        sys.stdout.flush()
    except Exception:
        # Progress display must never interrupt streaming
        pass


def load_gcode_file(path: str) -> List[str]:
    """
    Reads a G-code file into a list of sendable lines.

    Strips ';' and '( )' comments, surrounding whitespace and blank lines.
    """
    lines = []
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for raw in f:
            line = raw.split(";", 1)[0]
            line = _PAREN_COMMENT.sub("", line).strip()
            if line and line != "%":
                lines.append(line)
    return lines


def format_status(status: DeviceStatus) -> str:
    """One-line summary, e.g. 'Idle  X 0.000  Y 0.000  Z 0.000  F0 S0'."""
    axes = []
    for axis, value in zip("XYZ", status.position):
        axes.append(f"{axis} {value:.3f}" if value is not None else f"{axis} -")
    text = f"{status.raw_state or status.state.value}  " + "  ".join(axes)
    if status.feed is not None:
        text += f"  F{status.feed:g} S{status.speed:g}" if status.speed is not None else f"  F{status.feed:g}"
    if status.pins:
        text += f"  Pn:{status.pins}"
    return text


def print_status(status: DeviceStatus) -> None:
    """Status listener that redraws a single DRO line on stdout."""
    sys.stdout.write("\r" + format_status(status) + "   ")
    sys.stdout.flush()
