"""
Exception types raised by the grbl_cli transport and protocol layers.

Callers above the protocol layer (executors, streamer, jog sessions) catch
these and degrade to "operation ended early"; they are not meant to reach
end users directly.
"""


class GrblCliError(Exception):
    """Base exception for all grbl_cli errors."""
    pass


class TransportError(GrblCliError):
    """The link to the device is down or a write failed."""
    pass


class SubscriberBusyError(GrblCliError):
    """A receive handler is already registered with the transport."""
    pass


class ProtocolViolation(GrblCliError):
    """A command was issued while the previous one was still unacknowledged."""
    pass
