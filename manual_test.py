#!/usr/bin/env python

import argparse
import logging
import sys
import time

from grbl_cli.device.conn import Connection
from grbl_cli.device.manager import DeviceManager
from grbl_cli.streams.usb import BAUD_DEFAULT


def main():
    parser = argparse.ArgumentParser(description="Exercise DeviceManager against a real GRBL board.")
    parser.add_argument("-p", "--port", default=None, help="Serial port (auto-detected if omitted)")
    parser.add_argument("-b", "--baud", type=int, default=BAUD_DEFAULT, help="Baud rate")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-c", "--command", default="$I", help="Command to execute via DeviceManager (e.g. '$I', '$$', 'G21')")
    parser.add_argument("-j", "--jog", default=None, help="Also jog briefly in this direction (e.g. 'right', 'z-up')")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    log = logging.getLogger("manual_test")

    if args.port:
        stream, address = Connection.usb(args.port, args.baud), args.port
    else:
        stream, address = Connection.auto(args.baud)
    if stream is None:
        log.error("Could not open a serial connection.")
        return 1
    log.info(f"Connected on {address}")

    dm = DeviceManager(stream=stream, address=address, verbose=args.verbose)
    try:
        info = dm.get_build_info()
        log.info(f"Build info: {info}")

        log.info(f"Executing command: '{args.command}'")
        response = dm.execute_sync(args.command)
        log.info(f"""Response:
---
{response}
---""")

        status = dm.query_status()
        log.info(f"Status: {status}")

        if args.jog:
            log.info(f"Jogging {args.jog} for 0.3s at speed 10...")
            session = dm.jog_press(args.jog, 10)
            time.sleep(0.3)
            dm.jog_release()
            session.wait()
            log.info(f"Jog done after {session.moves} move(s), error={session.error}; "
                     f"position {dm.status_model.format_position()}")
            dm.jog_finish(set_origin=False)
    except KeyboardInterrupt:
        log.warning("Interrupted.")
        dm.jog_release()
    finally:
        log.info("Closing connection...")
        dm.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
