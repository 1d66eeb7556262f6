"""Exception hierarchy for the relay bridge.

Transport failures are raised by the MQTT adapter and always caught at the
ConnectionManager boundary. Configuration failures propagate so that a
misconfigured device (or process) stops where the problem is.
"""

from __future__ import annotations

__all__ = ["ConfigurationError", "RelayControlError", "TransportError"]


class RelayControlError(Exception):
    """Base class for all relay bridge errors."""


class TransportError(RelayControlError):
    """Bus operation failed (connect, ping, publish, subscribe, disconnect).

    Attributes:
        reason: Specific failure reason
        operation: Transport operation that failed

    """

    def __init__(self, reason: str, operation: str = "unknown") -> None:
        """Initialize transport error with reason and operation."""
        self.reason: str = reason
        self.operation: str = operation
        super().__init__(f"Transport {operation} failed: {reason}")


class ConfigurationError(RelayControlError):
    """Required configuration is missing or invalid.

    Raised when:
    - The mqtt block is absent at startup
    - A relay has no serial port configured
    - Discovery is requested for a device without an entity id

    Attributes:
        reason: Specific failure reason
        field: Configuration field at fault, if known

    """

    def __init__(self, reason: str, field: str | None = None) -> None:
        """Initialize configuration error with reason and field."""
        self.reason: str = reason
        self.field: str | None = field
        msg = f"Configuration error: {reason}" if field is None else f"Configuration error [{field}]: {reason}"
        super().__init__(msg)
