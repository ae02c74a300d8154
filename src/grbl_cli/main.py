"""
GRBL CLI Tool

A command-line tool for driving GRBL motion controllers over serial.
"""

import argparse
import logging
import sys

from grbl_cli.cmd.interactive import interactive_mode
from grbl_cli.cmd.job import handle_command, handle_jog, handle_run, handle_status
from grbl_cli.cmd.settings import handle_settings
from grbl_cli.device.conn import Connection
from grbl_cli.device.executor import DEFAULT_COMMAND_TIMEOUT
from grbl_cli.device.jog import JOG_DIRECTIONS, SPEED_MAX, SPEED_MIN
from grbl_cli.device.manager import DeviceManager
from grbl_cli.streams.usb import BAUD_DEFAULT, USBStream


def speed_value(text: str) -> int:
    value = int(text)
    if not SPEED_MIN <= value <= SPEED_MAX:
        raise argparse.ArgumentTypeError(f"speed must be between {SPEED_MIN} and {SPEED_MAX}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='GRBL CLI Tool',
        epilog="""A tool for driving GRBL motion controllers over serial."""
    )

    # Global options (apply to all subcommands)
    parser.add_argument('--device', '-d', default=None,
                        help='Serial port of the device (auto-detected if omitted)')
    parser.add_argument('--baud', type=int, default=BAUD_DEFAULT,
                        help=f'Serial baud rate (default: {BAUD_DEFAULT})')
    parser.add_argument('--timeout', type=float, default=DEFAULT_COMMAND_TIMEOUT,
                        help=f'Seconds to wait for a single command\'s "ok" (default: {DEFAULT_COMMAND_TIMEOUT})')
    # Logging / Output options (Mutually Exclusive)
    log_level_group = parser.add_mutually_exclusive_group()
    log_level_group.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose DEBUG level logging')
    log_level_group.add_argument('--quiet', '-q', action='store_true',
                        help='Suppress INFO level logging, show only WARNINGs and ERRORs')

    subparsers = parser.add_subparsers(dest='action', title='Actions',
                                       description='Choose an action to perform', required=True)

    # --- Scan Subcommand ---
    subparsers.add_parser('scan', help='List available serial ports and exit')

    # --- Command Subcommand ---
    parser_command = subparsers.add_parser('command', help='Execute a single command on the device')
    parser_command.add_argument('device_command', help='The command string to send')

    # --- Status Subcommand ---
    subparsers.add_parser('status', help='Show device state and position')

    # --- Run Subcommand ---
    parser_run = subparsers.add_parser('run', help='Stream a G-code file to the device')
    parser_run.add_argument('gcode_file', help='Path to the G-code file')
    parser_run.add_argument('--abort-command', action='append', metavar='CMD',
                            help='Command to send if the run is aborted with Ctrl-C (repeatable)')

    # --- Jog Subcommand ---
    parser_jog = subparsers.add_parser('jog', help='Jog the machine while "holding" a direction')
    parser_jog.add_argument('direction', choices=list(JOG_DIRECTIONS), help='Jog direction')
    parser_jog.add_argument('--speed', type=speed_value, default=SPEED_MAX,
                            help=f'Jog speed {SPEED_MIN}-{SPEED_MAX} (default: {SPEED_MAX})')
    parser_jog.add_argument('--hold', type=float, default=0.5,
                            help='Seconds to hold the direction (default: 0.5)')
    finish_group = parser_jog.add_mutually_exclusive_group()
    finish_group.add_argument('--set-origin', action='store_true',
                              help='Make the final position the new X0 Y0 Z0')
    finish_group.add_argument('--return', dest='return_home', action='store_true',
                              help='Move back to X0 Y0 Z0 after jogging')

    # --- Settings Subcommand ---
    parser_settings = subparsers.add_parser('settings', help='Show or change GRBL settings')
    parser_settings.add_argument('--set', action='append', metavar='KEY=VALUE',
                                 help='Change a setting, e.g. --set 110=500 (repeatable)')

    # --- Interactive Subcommand ---
    subparsers.add_parser('interactive', aliases=['i'], help='Enter interactive command mode')

    return parser


def main() -> int:
    args = build_parser().parse_args()

    # Set up logging level based on flags
    log_level = logging.INFO # Default
    if args.verbose:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.WARNING

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    log = logging.getLogger("main")

    # Handle scan mode separately as it doesn't need a connection
    if args.action == 'scan':
        ports = USBStream.list_ports()
        if not ports:
            log.info("No serial ports found")
        for port in ports:
            print(f"{port['port']:<20} {port['description']}  [{port['hwid']}]")
        return 0

    # --- Device Connection Logic ---
    if args.device:
        stream, address = Connection.usb(args.device, args.baud), args.device
    else:
        log.info("No device specified, attempting auto-detect...")
        stream, address = Connection.auto(args.baud)
    if stream is None:
        log.error("Failed to connect to device")
        return 1

    manager = DeviceManager(stream, address, verbose=args.verbose, timeout=args.timeout)
    exit_code = 1 # Default to error
    try:
        if args.action == 'command':
            exit_code = handle_command(manager, args)
        elif args.action == 'status':
            exit_code = handle_status(manager, args)
        elif args.action == 'run':
            exit_code = handle_run(manager, args)
        elif args.action == 'jog':
            exit_code = handle_jog(manager, args)
        elif args.action == 'settings':
            exit_code = handle_settings(manager, args)
        elif args.action in ('interactive', 'i'):
            exit_code = interactive_mode(manager)

    except KeyboardInterrupt:
        log.warning("Operation cancelled by user")
        manager.jog_release()
        exit_code = 1
    except Exception as e:
        log.error(f"An unexpected error occurred: {str(e)}")
        log.exception("Exception details:")
        exit_code = 1
    finally:
        manager.close()

    return exit_code

if __name__ == "__main__":
    sys.exit(main())
