# modbus_actuator/actuator_device.py
"""
One actuator on the bus: configuration read/write, commands and status polling
"""
import threading

from . import config
from .config import CommandKind
from .errors import NotConnectedError, ValidationError
from .logger import EventLogger, LogComponent
from .modbus_master import validate_slave_address
from .products import is_register_available, mask_unavailable, product_name
from .register_codec import (
    CALIBRATION_FIELDS,
    CALIBRATION_REGISTERS,
    CONFIG_READ_BLOCKS,
    CONFIG_WRITE_ORDER,
    DeviceConfiguration,
    decode_configuration,
    encode_calibration,
    encode_configuration,
    pack_bytes,
    registers_from_block,
)
from .status_decoder import RawScale, decode_status_block


class ActuatorDevice:
    def __init__(self, master, slave_address, product_id=None, raw_scale=RawScale.COUNTS,
                 name=None, logger=None):
        self.master = master
        self.slave_address = validate_slave_address(slave_address)
        self.product_id = product_id
        self.raw_scale = raw_scale
        self.name = name or f"Actuator {slave_address}"
        self.logger = logger or EventLogger()

        # Last known values (may be stale between polls)
        self.status = None
        self.configuration = None

        # One request at a time per slave
        self._io_lock = threading.Lock()

    def __repr__(self):
        return f"ActuatorDevice(slave={self.slave_address}, product={product_name(self.product_id)})"

    @property
    def torque_limit(self):
        """Highest configured torque, 100 % until the configuration has been read"""
        if self.configuration is None:
            return 100.0
        return float(max(self.configuration.close_torque, self.configuration.open_torque))

    def _available(self, register):
        return self.product_id is None or is_register_available(self.product_id, register)

    def _write(self, address, value):
        self.master.write_register(self.slave_address, address, value)

    # --- Configuration ---

    def read_configuration(self):
        """Read and decode the configuration registers.

        Register blocks the product does not implement keep their defaults.
        The cached configuration is only replaced when every read succeeds.
        """
        registers = {}
        with self._io_lock:
            for start, count in CONFIG_READ_BLOCKS:
                wanted = [r for r in range(start, start + count) if self._available(r)]
                if not wanted:
                    continue
                values = self.master.read_registers(self.slave_address, start, count)
                block = registers_from_block(start, values)
                registers.update({r: block[r] for r in wanted})

        cfg = decode_configuration(registers)
        if self.product_id is not None:
            cfg = mask_unavailable(cfg, self.product_id)

        self.configuration = cfg
        self.logger.info(LogComponent.DEVICE, f"Slave {self.slave_address}: configuration read")
        return cfg.copy()

    def write_configuration(self, cfg: DeviceConfiguration):
        """Write every configuration register in CONFIG_WRITE_ORDER.

        Sequential and not transactional: a failure part way through leaves
        the device holding a mix of old and new values. Read back to verify.
        """
        registers = encode_configuration(cfg)
        written = []
        with self._io_lock:
            for address in CONFIG_WRITE_ORDER:
                if not self._available(address):
                    continue
                self._write(address, registers[address])
                written.append(address)

        self.configuration = cfg.copy()
        self.logger.info(
            LogComponent.DEVICE,
            f"Slave {self.slave_address}: wrote {len(written)} configuration registers"
        )
        return written

    def write_calibration(self, cfg: DeviceConfiguration):
        """Write the 8 calibration words only (not transactional)"""
        words = encode_calibration(cfg)
        written = []
        with self._io_lock:
            for address in CALIBRATION_REGISTERS:
                if not self._available(address):
                    continue
                self._write(address, words[address])
                written.append(address)

        if self.configuration is not None:
            for name in CALIBRATION_FIELDS:
                setattr(self.configuration, name, getattr(cfg, name))
        self.logger.info(
            LogComponent.DEVICE,
            f"Slave {self.slave_address}: wrote {len(written)} calibration words"
        )
        return written

    def set_torque_limits(self, close_torque, open_torque):
        for value in (close_torque, open_torque):
            if not config.TORQUE_MIN <= int(value) <= config.TORQUE_MAX:
                raise ValidationError(
                    f"torque {value} outside {config.TORQUE_MIN}-{config.TORQUE_MAX}"
                )
        with self._io_lock:
            self._write(config.HR_TORQUE, pack_bytes(close_torque, open_torque))
        if self.configuration is not None:
            self.configuration.close_torque = int(close_torque)
            self.configuration.open_torque = int(open_torque)
        self.logger.info(
            LogComponent.DEVICE,
            f"Slave {self.slave_address}: torque close {close_torque}% open {open_torque}%"
        )

    # --- Commands ---

    def issue_command(self, kind: CommandKind):
        """Write the command coil for kind (momentary)"""
        if not self.master.is_connected:
            self.logger.error(LogComponent.DEVICE, f"Slave {self.slave_address}: not connected")
            raise NotConnectedError("no active transport")

        kind = CommandKind(kind)
        self.logger.info(LogComponent.DEVICE, f"Slave {self.slave_address}: {kind.name}")
        with self._io_lock:
            self.master.write_coil(self.slave_address, int(kind), True)

    def open(self):
        return self.issue_command(CommandKind.OPEN)

    def close(self):
        return self.issue_command(CommandKind.CLOSE)

    def stop(self):
        return self.issue_command(CommandKind.STOP)

    def emergency_shutdown(self):
        return self.issue_command(CommandKind.ESD)

    def partial_stroke_test(self):
        return self.issue_command(CommandKind.PST)

    def move_to_position(self, percent):
        """Write the position setpoint (0-100 %)"""
        if not 0 <= percent <= 100:
            raise ValidationError(f"position {percent} outside 0-100")
        raw = int(round(percent * config.COUNTS_DIVISOR))
        with self._io_lock:
            self._write(config.HR_SETPOINT, min(raw, config.COUNTS_FULL_SCALE))
        self.logger.info(LogComponent.DEVICE, f"Slave {self.slave_address}: move to {percent}%")

    def toggle_setup_mode(self):
        """Request the inverse of the last observed setup flag and re-poll.

        There is no acknowledgement from the device; if it switches late the
        returned status still shows the old mode until the next poll.
        """
        requested = not (self.status.setup_mode if self.status else False)
        self.logger.info(
            LogComponent.DEVICE,
            f"Slave {self.slave_address}: setup mode {'ON' if requested else 'OFF'} requested"
        )
        with self._io_lock:
            self.master.write_coil(self.slave_address, config.COIL_SOFT_SETUP, requested)
        return self.poll_status()

    # --- Status ---

    def poll_status(self):
        """Read the status block, decode it and replace the cached status"""
        with self._io_lock:
            regs = self.master.read_registers(
                self.slave_address, config.STATUS_BLOCK_START, config.STATUS_BLOCK_COUNT
            )
        status = decode_status_block(regs, self.raw_scale, self.torque_limit)
        if self.product_id is None and status.product_id:
            self.product_id = status.product_id
        self.status = status
        return status

    def read_product_id(self):
        with self._io_lock:
            product_id = self.master.read_registers(self.slave_address, config.HR_PRODUCT_ID, 1)[0]
        self.product_id = product_id
        return product_id

    def get_status_dict(self):
        """Cached status as dictionary"""
        data = {
            'slave': self.slave_address,
            'name': self.name,
            'product': product_name(self.product_id),
        }
        if self.status is not None:
            data.update(self.status.to_dict())
        return data
