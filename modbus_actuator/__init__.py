"""Modbus actuator core: register codec, status decoding, devices, simulation and sessions."""

__version__ = "0.3.0"

from .actuator_device import ActuatorDevice
from .config import CommandKind
from .errors import (
    ActuatorError,
    CommunicationError,
    NotConnectedError,
    NotFoundError,
    OutOfRangeError,
    TransportError,
    ValidationError,
)
from .logger import EventLogger, LogComponent, LogLevel
from .modbus_master import (
    ActuatorMaster,
    SerialActuatorMaster,
    SerialSettings,
    SimulatedActuatorMaster,
)
from .register_codec import DeviceConfiguration, decode_configuration, encode_configuration
from .session import Mode, PollResult, Session
from .simulator import SimulationEngine, VirtualDeviceState, VirtualSlave
from .status_decoder import ActuatorStatus, RawScale, decode_status, status_label

__all__ = [
    "ActuatorDevice",
    "ActuatorError",
    "ActuatorMaster",
    "ActuatorStatus",
    "CommandKind",
    "CommunicationError",
    "DeviceConfiguration",
    "EventLogger",
    "LogComponent",
    "LogLevel",
    "Mode",
    "NotConnectedError",
    "NotFoundError",
    "OutOfRangeError",
    "PollResult",
    "RawScale",
    "SerialActuatorMaster",
    "SerialSettings",
    "Session",
    "SimulatedActuatorMaster",
    "SimulationEngine",
    "TransportError",
    "ValidationError",
    "VirtualDeviceState",
    "VirtualSlave",
    "decode_configuration",
    "decode_status",
    "encode_configuration",
    "status_label",
]
