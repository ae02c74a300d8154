"""
Handlers for the command, status, run and jog actions.
"""

import argparse
import logging
import os
import sys
import time

from grbl_cli.device.manager import DeviceManager
from .utils import format_status, load_gcode_file, print_status, progress_callback

# How often the run handler wakes up to check for Ctrl-C
RUN_WAIT_INTERVAL = 0.2


def handle_command(manager: DeviceManager, args: argparse.Namespace) -> int:
    log = logging.getLogger("cmd.job")
    log.info(f"Executing command: {args.device_command}")
    response = manager.execute_sync(args.device_command, timeout=args.timeout)
    if response:
        print(response)
    return 0


def handle_status(manager: DeviceManager, args: argparse.Namespace) -> int:
    log = logging.getLogger("cmd.job")
    status = manager.query_status(timeout=args.timeout)
    if status is None:
        log.error("No status report received")
        return 1
    print(format_status(status))
    return 0


def handle_run(manager: DeviceManager, args: argparse.Namespace) -> int:
    """
    Streams a G-code file. The first Ctrl-C requests a cooperative abort;
    the run still finishes its abort commands and waits for Idle.

    Returns:
        Exit code (0 for success, 1 for failure or abort).
    """
    log = logging.getLogger("cmd.job")
    if not os.path.isfile(args.gcode_file):
        log.error(f"G-code file not found: {args.gcode_file}")
        return 1

    commands = load_gcode_file(args.gcode_file)
    if not commands:
        log.warning(f"No commands in {args.gcode_file}")
        return 0

    abort_commands = args.abort_command or []
    on_line = (lambda line: log.debug(f"grbl: {line}")) if args.verbose else None
    log.info(f"Streaming {len(commands)} lines from {args.gcode_file}")
    streamer, future = manager.run_batch(
        commands, abort_commands,
        progress=None if args.quiet else progress_callback,
        on_line=on_line,
    )

    while not future.done():
        try:
            time.sleep(RUN_WAIT_INTERVAL)
        except KeyboardInterrupt:
            if streamer.abort_requested:
                log.warning("Abort already requested, waiting for the device to stop...")
            else:
                sys.stdout.write("\n")
                log.warning("Aborting after the current line...")
                streamer.abort()

    result = future.result()
    if result.error:
        log.error(f"Run failed after {result.sent}/{result.total} lines: {result.error}")
        return 1
    if result.aborted:
        log.warning(f"Run aborted after {result.sent}/{result.total} lines "
                    f"({result.abort_sent} abort command(s) sent)")
        return 1
    if result.device_errors:
        for index, cmd, reply in result.device_errors:
            log.error(f"Line {index + 1} {cmd!r} rejected: {reply}")
        log.error(f"Run finished with {len(result.device_errors)} rejected line(s)")
        return 1
    log.info(f"Run complete: {result.sent} lines")
    return 0


def handle_jog(manager: DeviceManager, args: argparse.Namespace) -> int:
    """Holds a jog direction for args.hold seconds, then optionally finishes."""
    log = logging.getLogger("cmd.job")
    listener = None if args.quiet else print_status
    if listener:
        manager.status_model.add_listener(listener)
    try:
        session = manager.jog_press(args.direction, args.speed)
        log.info(f"Jogging {args.direction} at speed {args.speed} for {args.hold}s "
                 f"(F{session.feed_rate:g}, step {session.step_distance:g} in)")
        try:
            time.sleep(args.hold)
        except KeyboardInterrupt:
            pass
        manager.jog_release()
        session.wait()
    finally:
        if listener:
            manager.status_model.remove_listener(listener)
            sys.stdout.write("\n")

    if session.error:
        log.error(f"Jog failed: {session.error}")
        return 1
    log.info(f"Jog stopped after {session.moves} move(s) at {manager.status_model.format_position()}")

    if args.set_origin:
        manager.jog_finish(set_origin=True)
    elif args.return_home:
        manager.jog_finish(set_origin=False)
    return 0
