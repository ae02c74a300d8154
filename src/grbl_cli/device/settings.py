"""
GRBL settings and build information.

'$I' answers with build info lines such as:

    [VER:1.1h.20190825:]
    [OPT:V,15,128]

'$$' answers with one 'key=value' line per setting:

    $0=10
    $1=25
    $110=500.000
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

log = logging.getLogger(__name__)

BUILD_INFO_COMMAND = "$I"
SETTINGS_COMMAND = "$$"

# key -> (label, unit). Bitfield settings carry the axis letters as unit.
SETTING_LABELS: "OrderedDict[str, Tuple[str, str]]" = OrderedDict([
    ("$0", ("Step pulse", "usec")),
    ("$1", ("Step idle delay", "msec")),
    ("$2", ("Step port invert", "mask XYZ")),
    ("$3", ("Direction port invert", "mask XYZ")),
    ("$4", ("Step enable invert", "boolean")),
    ("$5", ("Limit pins invert", "boolean")),
    ("$6", ("Probe pin invert", "boolean")),
    ("$10", ("Status report", "mask")),
    ("$11", ("Junction deviation", "mm")),
    ("$12", ("Arc tolerance", "mm")),
    ("$13", ("Report inches", "boolean")),
    ("$20", ("Soft limits", "boolean")),
    ("$21", ("Hard limits", "boolean")),
    ("$22", ("Homing cycle", "boolean")),
    ("$23", ("Homing dir invert", "mask XYZ")),
    ("$24", ("Homing feed", "mm/min")),
    ("$25", ("Homing seek", "mm/min")),
    ("$26", ("Homing debounce", "msec")),
    ("$27", ("Homing pull-off", "mm")),
    ("$30", ("Max spindle speed", "RPM")),
    ("$31", ("Min spindle speed", "RPM")),
    ("$32", ("Laser mode", "boolean")),
    ("$100", ("X Axis", "steps/mm")),
    ("$101", ("Y Axis", "steps/mm")),
    ("$102", ("Z Axis", "steps/mm")),
    ("$110", ("X Max rate", "mm/min")),
    ("$111", ("Y Max rate", "mm/min")),
    ("$112", ("Z Max rate", "mm/min")),
    ("$120", ("X Acceleration", "mm/sec²")),
    ("$121", ("Y Acceleration", "mm/sec²")),
    ("$122", ("Z Acceleration", "mm/sec²")),
    ("$130", ("X Max travel", "mm")),
    ("$131", ("Y Max travel", "mm")),
    ("$132", ("Z Max travel", "mm")),
])


@dataclass(frozen=True)
class GrblBuildInfo:
    version: Optional[str] = None
    build: Optional[str] = None
    options: Optional[str] = None


def _bracket_value(line: str, tag: str) -> Optional[str]:
    text = line.strip()
    prefix = f"[{tag}:"
    if not text.startswith(prefix) or not text.endswith("]"):
        return None
    return text[len(prefix):-1]


def parse_build_info(response: str) -> GrblBuildInfo:
    """
    Parses a '$I' response.

    '[VER:1.1h.20190825:]' yields version '1.1h.20190825' and no build;
    '[VER:1.1h.20190825:Shop Mill]' additionally yields build 'Shop Mill'.
    """
    version = build = options = None
    for line in response.splitlines():
        value = _bracket_value(line, "VER")
        if value is not None:
            version, _, build = value.partition(":")
            version = version or None
            build = build or None
            continue
        value = _bracket_value(line, "OPT")
        if value is not None:
            options = value
    if version is None:
        # Pre-1.1 firmware answers with a bare '[0.9j.20160316:]'
        for line in response.splitlines():
            text = line.strip()
            if text.startswith("[") and text.endswith("]") and text[1:2].isdigit():
                version = text[1:-1].partition(":")[0] or None
                break
    return GrblBuildInfo(version=version, build=build, options=options)


def parse_settings(response: str) -> "OrderedDict[str, str]":
    """Parses '$$' output into an ordered key -> value mapping."""
    values: "OrderedDict[str, str]" = OrderedDict()
    for line in response.splitlines():
        parts = line.strip().split("=")
        if len(parts) == 2 and parts[0].startswith("$"):
            values[parts[0]] = parts[1]
    return values


def parse_assignments(assignments: List[str]) -> Dict[str, str]:
    """Parses ['$110=500', '110=600'] style arguments. Keys are normalised to '$N'."""
    wanted: Dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key or not value:
            raise ValueError(f"Expected KEY=VALUE, got {item!r}")
        if not key.startswith("$"):
            key = "$" + key
        wanted[key] = value
    return wanted


def _same_value(a: str, b: str) -> bool:
    try:
        return float(a) == float(b)
    except ValueError:
        return a == b


def changed_settings(current: Mapping[str, str], wanted: Mapping[str, str]) -> List[str]:
    """
    Builds the '$N=value' commands needed to move from current to wanted.

    Commands follow the device's own ordering of keys. Keys the device did
    not report are rejected.

    Raises:
        ValueError: if wanted names a key missing from current.
    """
    unknown = [k for k in wanted if k not in current]
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
    commands = []
    for key, value in current.items():
        if key in wanted and not _same_value(value, wanted[key]):
            log.debug(f"{key}: changed from {value} to {wanted[key]}")
            commands.append(f"{key}={wanted[key]}")
    return commands


def describe(key: str) -> str:
    label, unit = SETTING_LABELS.get(key, ("", ""))
    if not label:
        return ""
    return f"{label} ({unit})" if unit else label
