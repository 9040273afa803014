# modbus_actuator/modbus_master.py
"""
Register transports: pymodbus serial RTU master and an in-process simulated network
"""
import threading
from dataclasses import dataclass

import serial
from pymodbus.client import ModbusSerialClient
from pymodbus.exceptions import ModbusException

from . import config
from .errors import (
    ActuatorError,
    CommunicationError,
    NotConnectedError,
    NotFoundError,
    ValidationError,
)
from .logger import EventLogger, LogComponent
from .products import PRODUCT_S7X, product_name
from .simulator import SimulationEngine, VirtualSlave

MAX_READ_COUNT = 125

PARITIES = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
}
STOPBITS = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}


def validate_slave_address(address):
    """Slave addresses on the bus are 1-254"""
    if not isinstance(address, int) or isinstance(address, bool) \
            or not config.SLAVE_ID_MIN <= address <= config.SLAVE_ID_MAX:
        raise ValidationError(
            f"slave address {address!r} outside {config.SLAVE_ID_MIN}-{config.SLAVE_ID_MAX}"
        )
    return address


@dataclass
class SerialSettings:
    port: str = config.SERIAL_PORT
    baudrate: int = config.SERIAL_BAUDRATE
    parity: str = config.SERIAL_PARITY
    stopbits: int = config.SERIAL_STOPBITS
    bytesize: int = config.SERIAL_BYTESIZE
    timeout: float = config.SERIAL_TIMEOUT

    def validate(self):
        if not self.port:
            raise ValidationError("serial port not set")
        if self.baudrate not in config.AVAILABLE_BAUDRATES:
            raise ValidationError(f"unsupported baud rate {self.baudrate}")
        if self.parity not in PARITIES:
            raise ValidationError(f"parity must be one of {', '.join(PARITIES)}")
        if self.stopbits not in STOPBITS:
            raise ValidationError("stop bits must be 1 or 2")
        if self.bytesize not in (7, 8):
            raise ValidationError("byte size must be 7 or 8")
        return self

    def describe(self):
        return f"{self.port} {self.baudrate} {self.bytesize}{self.parity}{self.stopbits}"


class ActuatorMaster:
    """Register-level access to a set of actuator slaves"""

    def __init__(self, logger=None):
        self.logger = logger or EventLogger()
        self.connected = False
        self.lock = threading.Lock()

        # Statistics
        self.commands_sent = 0
        self.status_reads = 0
        self.errors = 0

    @property
    def is_connected(self):
        return self.connected

    def _require_connected(self):
        if not self.connected:
            raise NotConnectedError("no active transport")

    @staticmethod
    def _check_register_args(start, count):
        if start < 0 or start > 0xFFFF:
            raise ValidationError(f"register address {start} outside 0-65535")
        if not 1 <= count <= MAX_READ_COUNT:
            raise ValidationError(f"register count {count} outside 1-{MAX_READ_COUNT}")

    @staticmethod
    def _check_value(value):
        if not 0 <= int(value) <= 0xFFFF:
            raise ValidationError(f"register value {value} outside 0-65535")

    def connect(self):
        raise NotImplementedError

    def disconnect(self):
        raise NotImplementedError

    def read_registers(self, slave, start, count):
        raise NotImplementedError

    def write_register(self, slave, address, value):
        raise NotImplementedError

    def write_coil(self, slave, address, value):
        raise NotImplementedError

    def list_slaves(self):
        raise NotImplementedError

    def scan(self, start=config.SCAN_START_DEFAULT, end=config.SCAN_END_DEFAULT):
        """Query addresses start..end, return {address: product_id} of responders"""
        self._require_connected()
        validate_slave_address(start)
        validate_slave_address(end)
        found = {}
        for address in range(start, end + 1):
            try:
                found[address] = self.read_registers(address, config.HR_PRODUCT_ID, 1)[0]
            except (CommunicationError, NotFoundError):
                continue
            self.logger.info(
                LogComponent.MODBUS,
                f"Found slave {address}: {product_name(found[address])}"
            )
        self.logger.info(LogComponent.MODBUS, f"Scan {start}-{end}: {len(found)} device(s)")
        return found

    def get_statistics(self):
        """Get transport statistics"""
        return {
            'connected': self.connected,
            'commands_sent': self.commands_sent,
            'status_reads': self.status_reads,
            'errors': self.errors,
        }


class SerialActuatorMaster(ActuatorMaster):
    """Modbus RTU master over a serial port (pymodbus)"""

    def __init__(self, settings: SerialSettings = None, logger=None, client_factory=ModbusSerialClient):
        super().__init__(logger)
        self.settings = (settings or SerialSettings()).validate()
        self.client_factory = client_factory
        self.client = None
        self._known_slaves = []

    def connect(self):
        """Open the serial port"""
        if self.connected:
            self.logger.warn(LogComponent.MODBUS, "Already connected")
            return True

        s = self.settings
        self.client = self.client_factory(
            port=s.port,
            baudrate=s.baudrate,
            parity=PARITIES[s.parity],
            stopbits=STOPBITS[s.stopbits],
            bytesize=s.bytesize,
            timeout=s.timeout,
        )
        try:
            ok = self.client.connect()
        except ModbusException as e:
            ok = False
            self.logger.error(LogComponent.MODBUS, f"Connection error: {e}")

        if not ok:
            self.client = None
            self.logger.error(LogComponent.MODBUS, f"Failed to open {s.describe()}")
            raise CommunicationError(f"cannot open {s.port}")

        self.connected = True
        self.logger.info(LogComponent.MODBUS, f"Open {s.describe()}")
        return True

    def disconnect(self):
        """Close the serial port once any request in flight has finished"""
        with self.lock:
            if self.client:
                try:
                    self.client.close()
                    self.logger.info(LogComponent.MODBUS, f"Closed {self.settings.port}")
                finally:
                    self.client = None
            self.connected = False
            self._known_slaves = []

    def _active_client(self):
        """Client for a request; call with self.lock held"""
        if self.client is None:
            raise NotConnectedError("serial port closed")
        return self.client

    def _fail(self, message, exc=None):
        self.errors += 1
        self.logger.error(LogComponent.MODBUS, message)
        if exc is not None:
            raise CommunicationError(message) from exc
        raise CommunicationError(message)

    def read_registers(self, slave, start, count):
        """Read holding registers"""
        self._require_connected()
        validate_slave_address(slave)
        self._check_register_args(start, count)

        with self.lock:
            try:
                result = self._active_client().read_holding_registers(start, count=count, device_id=slave)
            except ModbusException as e:
                self._fail(f"Read HR[{start}:{start + count}] slave {slave}: {e}", e)

        if result.isError():
            self._fail(f"Error reading HR[{start}:{start + count}] slave {slave}")

        self.status_reads += 1
        return list(result.registers)

    def write_register(self, slave, address, value):
        """Write single holding register"""
        self._require_connected()
        validate_slave_address(slave)
        self._check_register_args(address, 1)
        self._check_value(value)

        self.logger.info(LogComponent.MODBUS, f"Write HR[{address}] = {value} slave {slave}")
        with self.lock:
            try:
                result = self._active_client().write_register(address, int(value), device_id=slave)
            except ModbusException as e:
                self._fail(f"Write HR[{address}] slave {slave}: {e}", e)

        if result.isError():
            self._fail(f"Error writing HR[{address}] slave {slave}")
        self.commands_sent += 1

    def write_coil(self, slave, address, value):
        """Write single coil"""
        self._require_connected()
        validate_slave_address(slave)
        self._check_register_args(address, 1)

        self.logger.info(LogComponent.MODBUS, f"Write COIL[{address}] = {int(bool(value))} slave {slave}")
        with self.lock:
            try:
                result = self._active_client().write_coil(address, bool(value), device_id=slave)
            except ModbusException as e:
                self._fail(f"Write COIL[{address}] slave {slave}: {e}", e)

        if result.isError():
            self._fail(f"Error writing COIL[{address}] slave {slave}")
        self.commands_sent += 1

    def scan(self, start=config.SCAN_START_DEFAULT, end=config.SCAN_END_DEFAULT):
        found = super().scan(start, end)
        self._known_slaves = sorted(found)
        return found

    def list_slaves(self):
        """Addresses that answered the last scan"""
        return list(self._known_slaves)


class SimulatedActuatorMaster(ActuatorMaster):
    """In-process network of virtual slaves fed by a SimulationEngine"""

    def __init__(self, logger=None, tick_interval=config.SIM_TICK_MS / 1000.0,
                 step_size=config.SIM_STEP_SIZE, seed=None):
        super().__init__(logger)
        self._slaves = {}
        self._slaves_lock = threading.Lock()
        self.engine = SimulationEngine(
            self.virtual_slaves,
            tick_interval=tick_interval,
            step_size=step_size,
            seed=seed,
            logger=self.logger,
        )

    def connect(self):
        self.connected = True
        self.logger.info(LogComponent.MODBUS, "Simulation transport connected")
        return True

    def disconnect(self):
        self.engine.stop()
        if self.connected:
            self.logger.info(LogComponent.MODBUS, "Simulation transport disconnected")
        self.connected = False

    # --- Virtual network ---

    def add_slave(self, address, product_id=PRODUCT_S7X, initial_position=0.0,
                  speed_setting=config.SIM_SPEED_DEFAULT):
        validate_slave_address(address)
        if not 1 <= int(speed_setting) <= 100:
            raise ValidationError(f"speed setting {speed_setting} outside 1-100")
        with self._slaves_lock:
            if address in self._slaves:
                raise ValidationError(f"slave {address} already present")
            slave = VirtualSlave(
                address,
                product_id=product_id,
                initial_position=initial_position,
                speed_setting=int(speed_setting),
                logger=self.logger,
            )
            self._slaves[address] = slave
        self.logger.info(
            LogComponent.SIM,
            f"Added slave {address} ({product_name(product_id)}) at {slave.state.position:.0f}%"
        )
        return slave

    def remove_slave(self, address):
        with self._slaves_lock:
            if address not in self._slaves:
                raise NotFoundError(address)
            del self._slaves[address]
        self.logger.info(LogComponent.SIM, f"Removed slave {address}")

    def clear_slaves(self):
        with self._slaves_lock:
            count = len(self._slaves)
            self._slaves.clear()
        if count:
            self.logger.info(LogComponent.SIM, f"Cleared {count} slave(s)")

    def list_slaves(self):
        with self._slaves_lock:
            return sorted(self._slaves)

    def virtual_slaves(self):
        with self._slaves_lock:
            return list(self._slaves.values())

    def get_slave(self, address):
        with self._slaves_lock:
            try:
                return self._slaves[address]
            except KeyError:
                raise NotFoundError(address) from None

    # --- Register access ---

    def _slave_for(self, slave):
        self._require_connected()
        validate_slave_address(slave)
        try:
            return self.get_slave(slave)
        except NotFoundError:
            self.errors += 1
            self.logger.warn(LogComponent.MODBUS, f"No slave at address {slave}")
            raise

    def read_registers(self, slave, start, count):
        vs = self._slave_for(slave)
        try:
            values = vs.read_registers(start, count)
        except ActuatorError as e:
            self.errors += 1
            self.logger.warn(LogComponent.MODBUS, f"Read HR slave {slave}: {e}")
            raise
        self.status_reads += 1
        return values

    def read_coils(self, slave, start, count):
        return self._slave_for(slave).read_coils(start, count)

    def write_register(self, slave, address, value):
        vs = self._slave_for(slave)
        self._check_value(value)
        self.logger.info(LogComponent.MODBUS, f"Write HR[{address}] = {value} slave {slave}")
        vs.write_register(address, value)
        self.commands_sent += 1

    def write_coil(self, slave, address, value):
        vs = self._slave_for(slave)
        self.logger.info(LogComponent.MODBUS, f"Write COIL[{address}] = {int(bool(value))} slave {slave}")
        vs.write_coil(address, value)
        self.commands_sent += 1
