import argparse
import logging

from grbl_cli.device.manager import DeviceManager
from grbl_cli.device.settings import describe, parse_assignments
from .utils import progress_callback


def handle_settings(manager: DeviceManager, args: argparse.Namespace) -> int:
    """
    Displays the device build info and settings, or writes changed settings
    when --set KEY=VALUE pairs are given.
    """
    log = logging.getLogger("Settings")

    if args.set:
        try:
            wanted = parse_assignments(args.set)
            commands, result = manager.apply_settings(wanted, progress=None if args.quiet else progress_callback)
        except ValueError as e:
            log.error(str(e))
            return 1
        if result is None:
            print("No settings changed.")
            return 0
        for cmd in commands:
            print(f"  {cmd}")
        for _, cmd, reply in result.device_errors:
            log.error(f"Device rejected {cmd}: {reply}")
        if not result.success:
            log.error(f"Failed to write settings: {result.error or ('rejected' if result.device_errors else 'aborted')}")
            return 1
        log.info(f"Wrote {len(commands)} setting(s)")
        return 0

    info = manager.get_build_info()
    values = manager.get_settings()
    if not values:
        log.error("Failed to retrieve settings")
        return 1
    log.debug(f"Retrieved {len(values)} settings")

    print("\nGRBL Settings:")
    print("-" * 50)
    print(f"  Version : {info.version or 'unknown'}")
    print(f"  Build   : {info.build or 'unknown'}")
    print(f"  Options : {info.options or 'unknown'}")
    print("-" * 50)
    max_key_len = max(len(key) for key in values)
    for key, value in values.items():
        label = describe(key)
        print(f"  {key.ljust(max_key_len + 1)}= {value.ljust(12)} {label}")
    print("-" * 50)
    print(f"Total: {len(values)} settings")
    return 0
