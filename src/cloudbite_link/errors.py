"""
Error taxonomy for server discovery and connection management
"""


class ConnectionSubsystemError(Exception):
    """Base class for every error raised by the connection subsystem"""


class NetworkUnavailableError(ConnectionSubsystemError):
    """No active WiFi/ethernet adapter. Not retried until the OS reports connectivity again."""


class ServerNotFoundError(ConnectionSubsystemError):
    """No compatible server answered, either on revalidation or after a full scan."""


class ServerUnhealthyError(ConnectionSubsystemError):
    """A previously reachable server keeps failing health checks."""
