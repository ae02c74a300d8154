from grbl_cli.device.jog import JOG_DIRECTIONS, SPEED_MAX
from grbl_cli.device.manager import DeviceManager
from .utils import format_status

import atexit
import logging
import os
import time

# Get a logger specific to this module
logger = logging.getLogger(__name__)

try:
    import readline
    readline_available = True
except ImportError:
    readline_available = False
    logger.warning("readline library not found. History functionality will be disabled.")

import platformdirs

DEFAULT_JOG_HOLD = 0.5  # seconds


def setup_history():
    """Sets up readline history file in a platform-specific user data directory."""
    if not readline_available:
        print("Note: Readline library not available. Command history disabled.")
        return

    try:
        data_dir = platformdirs.user_data_dir("grbl-cli")
        history_file = os.path.join(data_dir, "history")
        os.makedirs(data_dir, exist_ok=True)
        logger.debug(f"Ensured history directory exists: {data_dir}")
    except Exception as e:
        print(f"Warning: Could not create history directory: {str(e)}. History disabled.")
        return

    if os.path.exists(history_file):
        try:
            readline.read_history_file(history_file)
        except Exception as e:
            # Corrupt or empty history; we can still save new entries
            print(f"Warning: Could not read history file '{history_file}': {str(e)}")

    try:
        readline.set_history_length(1000)
        atexit.register(readline.write_history_file, history_file)
    except Exception as e:
        print(f"Warning: Failed to register history saving: {str(e)}")


def print_help():
    """Print help information for interactive mode"""
    print("\nAvailable commands:")
    print("  help                        - Show this help information")
    print("  exit, quit                  - Exit interactive mode")
    print("  status                      - Show device state and position")
    print("  jog DIR [SECONDS] [SPEED]   - Jog in a direction (speed 10-100)")
    print("  origin                      - Set the current position as X0 Y0 Z0")
    print("  return                      - Move back to X0 Y0 Z0")
    print("  clear                       - Clear the screen")
    print(f"\nJog directions: {', '.join(JOG_DIRECTIONS)}")
    print("\nAny other input will be sent as a command to the device.")
    print("\nCommon device commands:")
    print("  $I       - Show firmware build info")
    print("  $$       - Show all settings")
    print("  $X       - Clear alarm state")
    print("  $H       - Run homing cycle")
    print("\nPress up/down arrows to navigate command history")


def jog(manager: DeviceManager, words) -> None:
    if not words or words[0] not in JOG_DIRECTIONS:
        print(f"Usage: jog DIR [SECONDS] [SPEED]; DIR is one of {', '.join(JOG_DIRECTIONS)}")
        return
    try:
        hold = float(words[1]) if len(words) > 1 else DEFAULT_JOG_HOLD
        speed = int(words[2]) if len(words) > 2 else SPEED_MAX
    except ValueError:
        print("Error: SECONDS must be a number and SPEED an integer")
        return
    session = manager.jog_press(words[0], speed)
    try:
        time.sleep(hold)
    finally:
        manager.jog_release()
        session.wait()
    if session.error:
        print(f"Jog failed: {session.error}")
    else:
        print(manager.status_model.format_position())


def interactive_mode(manager: DeviceManager) -> int:
    """
    Run an interactive shell for communicating with the GRBL device

    Args:
        manager: DeviceManager instance connected to a device

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    setup_history()

    print("\nEntering interactive mode. Type 'help' for commands, 'exit' to quit.")
    info = manager.get_build_info()
    print(f"Connected to GRBL {info.version or 'unknown'} on {manager.address}")

    # Command loop
    while True:
        try:
            cmd_input = input("grbl> ").strip()

            # Skip empty lines
            if not cmd_input:
                continue

            words = cmd_input.split()
            keyword = words[0].lower()
            if keyword in ('exit', 'quit'):
                break
            elif keyword == 'help':
                print_help()
            elif keyword == 'status':
                status = manager.query_status()
                if status is not None:
                    print(format_status(status))
                else:
                    print("Error: no status report received")
            elif keyword == 'jog':
                jog(manager, words[1:])
            elif keyword == 'origin':
                manager.jog_finish(set_origin=True)
            elif keyword == 'return':
                manager.jog_finish(set_origin=False)
            elif keyword == 'clear':
                os.system('cls' if os.name == 'nt' else 'clear')
            else:
                response = manager.execute_sync(cmd_input)
                if response:
                    print(response)

        except KeyboardInterrupt:
            manager.jog_release()
            print("\nUse 'exit' or 'quit' to exit interactive mode")
        except EOFError:
            # Handle Ctrl+D
            print("\nExiting interactive mode")
            break
        except Exception as e:
            print(f"Error: {str(e)}")

    print("Interactive mode closed")
    return 0
