# modbus_actuator/errors.py
"""
Error taxonomy for transport, device and session operations
"""


class ActuatorError(Exception):
    """Base class for all actuator protocol errors."""

    hint = "See the event log for details."

    def user_message(self):
        """Human-readable message with the corrective action"""
        return f"{self.title}: {self}. {self.hint}"

    @property
    def title(self):
        return "Actuator error"


class TransportError(ActuatorError):
    """The register transport could not carry out a request."""

    @property
    def title(self):
        return "Transport error"


class NotConnectedError(TransportError):
    """An operation was attempted with no active transport."""

    hint = "Connect first."

    @property
    def title(self):
        return "Not connected"


class CommunicationError(TransportError):
    """A read or write failed or timed out on the link."""

    hint = "Check wiring, port settings and baud rate."

    @property
    def title(self):
        return "Communication failed"


class NotFoundError(ActuatorError):
    """No slave answers at the requested address."""

    hint = "Check the slave address."

    def __init__(self, slave, message=None):
        self.slave = slave
        super().__init__(message or f"slave {slave} is not present")

    @property
    def title(self):
        return "Device not found"


class OutOfRangeError(ActuatorError):
    """A register address or value lies outside the declared bounds."""

    hint = "Check the register address and value range."

    @property
    def title(self):
        return "Out of range"


class ValidationError(ActuatorError, ValueError):
    """A caller-supplied parameter is outside its legal range."""

    hint = "Correct the parameter and retry."

    @property
    def title(self):
        return "Invalid parameter"
