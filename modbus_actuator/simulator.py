# modbus_actuator/simulator.py
"""
Virtual actuators: pymodbus register banks driven by a tick-based kinematic model
"""
import random
import threading
from dataclasses import dataclass, replace

from pymodbus.datastore import ModbusSequentialDataBlock

from . import config
from .config import CommandKind
from .errors import OutOfRangeError, ValidationError
from .logger import EventLogger, LogComponent
from .products import PRODUCT_S7X, default_configuration, product_name
from .register_codec import FunctionAction, enum_or_default, encode_configuration, pack_bytes, split_bytes
from .status_decoder import RawScale, percent_to_raw

PST_STROKE = 10.0  # partial stroke travel, percent

PST_IDLE = 0
PST_IN_PROGRESS = 1
PST_PASSED = 2
PST_FAILED = 3

_COMMAND_COILS = {int(kind) for kind in CommandKind}

# Highest priority first when several command bits arrive in one write
_COMMAND_PRIORITY = (
    CommandKind.STOP,
    CommandKind.ESD,
    CommandKind.CLOSE,
    CommandKind.OPEN,
    CommandKind.PST,
)


@dataclass
class VirtualDeviceState:
    address: int
    position: float = 0.0
    torque: float = 0.0
    pending_command: CommandKind = None
    target_position: float = 0.0
    speed_setting: int = config.SIM_SPEED_DEFAULT
    setup_mode: bool = False
    calibrated: bool = True
    alarm_word: int = 0
    pst_result: int = PST_IDLE
    pst_return_position: float = None

    @property
    def moving(self):
        return self.pending_command in (CommandKind.OPEN, CommandKind.CLOSE)

    @property
    def open_limit(self):
        return not self.moving and self.position >= 100.0

    @property
    def close_limit(self):
        return not self.moving and self.position <= 0.0


class VirtualSlave:
    """One simulated actuator: holding registers, coils and kinematic state"""

    def __init__(self, address, product_id=PRODUCT_S7X, initial_position=0.0,
                 speed_setting=config.SIM_SPEED_DEFAULT, logger=None):
        self.address = address
        self.product_id = product_id
        self.logger = logger or EventLogger()
        self.lock = threading.RLock()

        self.registers = ModbusSequentialDataBlock(0, [0] * config.SIM_BANK_SIZE)
        self.coils = ModbusSequentialDataBlock(0, [False] * config.SIM_COIL_COUNT)

        position = max(0.0, min(float(initial_position), 100.0))
        self.state = VirtualDeviceState(
            address=address,
            position=position,
            target_position=position,
            speed_setting=speed_setting,
        )
        self._init_registers()

    @property
    def name(self):
        return product_name(self.product_id)

    def _init_registers(self):
        """Load product defaults into the configuration registers"""
        cfg = default_configuration(self.product_id)
        cfg.close_torque = config.SIM_TORQUE_LIMIT_DEFAULT
        cfg.open_torque = config.SIM_TORQUE_LIMIT_DEFAULT
        for reg, value in encode_configuration(cfg).items():
            self.registers.setValues(reg, [value])
        self._refresh()

    def _check_range(self, size, start, count, what):
        if count < 1 or start < 0 or start + count > size:
            raise OutOfRangeError(
                f"{what} {start}..{start + count - 1} outside bank of slave {self.address}"
            )

    # --- Modbus access ---

    def read_registers(self, start, count):
        with self.lock:
            self._check_range(config.SIM_BANK_SIZE, start, count, "register")
            return list(self.registers.getValues(start, count))

    def read_coils(self, start, count):
        with self.lock:
            self._check_range(config.SIM_COIL_COUNT, start, count, "coil")
            return [bool(v) for v in self.coils.getValues(start, count)]

    def write_register(self, address, value):
        with self.lock:
            self._check_range(config.SIM_BANK_SIZE, address, 1, "register")
            value = int(value) & 0xFFFF
            if address == config.HR_TORQUE:
                close, opn = split_bytes(value)
                value = pack_bytes(self._clamp_torque(close), self._clamp_torque(opn))
            self.registers.setValues(address, [value])
            self._handle_register_write(address, value)
            self._refresh()

    def write_coil(self, address, value):
        with self.lock:
            self._check_range(config.SIM_COIL_COUNT, address, 1, "coil")
            value = bool(value)
            self.coils.setValues(address, [value])
            if address == config.COIL_SOFT_SETUP:
                self._set_setup_mode(value)
            elif value and address in _COMMAND_COILS:
                self.apply_command(CommandKind(address))
                # command coils are momentary
                self.coils.setValues(address, [False])
            self._refresh()

    @staticmethod
    def _clamp_torque(value):
        return max(config.TORQUE_MIN, min(value, config.TORQUE_MAX))

    def _handle_register_write(self, address, value):
        if address == config.HR_HOST_COMMAND:
            self._set_setup_mode(bool(value & (1 << config.COIL_SOFT_SETUP)))
            for kind in _COMMAND_PRIORITY:
                if value & (1 << int(kind)):
                    self.apply_command(kind)
                    break
        elif address == config.HR_SETPOINT:
            raw = min(value, config.COUNTS_FULL_SCALE)
            self._abort_pst()
            self._go_to(raw / config.COUNTS_DIVISOR)
        elif address == config.HR_ALARMS:
            self.state.alarm_word = value
        elif address == config.HR_CALIBRATE and value:
            self.state.calibrated = True
            self.registers.setValues(address, [0])
            self.logger.info(LogComponent.SIM, f"Slave {self.address}: calibration done")
        elif address == config.HR_RESET_ERRORS and value:
            self.state.alarm_word = 0
            self.registers.setValues(address, [0])
            self.logger.info(LogComponent.SIM, f"Slave {self.address}: errors reset")

    def _set_setup_mode(self, active):
        if active != self.state.setup_mode:
            self.state.setup_mode = active
            self.logger.info(
                LogComponent.SIM,
                f"Slave {self.address}: setup mode {'ON' if active else 'OFF'}"
            )

    # --- Commands ---

    def apply_command(self, kind: CommandKind):
        """Apply a host command to the state machine; False if ignored"""
        with self.lock:
            s = self.state
            if kind == CommandKind.OPEN:
                if s.position >= 100.0:
                    self.logger.info(LogComponent.SIM, f"Slave {self.address}: already open")
                    return False
                self._abort_pst()
                s.pending_command = CommandKind.OPEN
                s.target_position = 100.0
            elif kind == CommandKind.CLOSE:
                if s.position <= 0.0:
                    self.logger.info(LogComponent.SIM, f"Slave {self.address}: already closed")
                    return False
                self._abort_pst()
                s.pending_command = CommandKind.CLOSE
                s.target_position = 0.0
            elif kind == CommandKind.STOP:
                self._abort_pst()
                s.pending_command = None
                s.target_position = s.position
            elif kind == CommandKind.ESD:
                s.alarm_word |= 1 << 2
                self._abort_pst()
                self._apply_action(self._esd_action())
            elif kind == CommandKind.PST:
                if s.moving:
                    self.logger.warn(LogComponent.SIM, f"Slave {self.address}: PST refused while moving")
                    return False
                s.pst_result = PST_IN_PROGRESS
                s.pst_return_position = s.position
                if s.position >= PST_STROKE:
                    self._go_to(s.position - PST_STROKE)
                else:
                    self._go_to(s.position + PST_STROKE)

            self.logger.info(
                LogComponent.SIM,
                f"Slave {self.address}: {kind.name} at {s.position:.1f}%"
            )
            self._refresh()
            return True

    def _abort_pst(self):
        """Any other motion command ends a running partial stroke as failed"""
        s = self.state
        s.pst_return_position = None
        if s.pst_result == PST_IN_PROGRESS:
            s.pst_result = PST_FAILED
            self.logger.warn(LogComponent.SIM, f"Slave {self.address}: PST interrupted")

    def _esd_action(self):
        _, lower = split_bytes(self.registers.getValues(config.HR_FAILSAFE_POS, 1)[0])
        return enum_or_default(FunctionAction, lower, FunctionAction.STAY_PUT)

    def _apply_action(self, action):
        if action == FunctionAction.GO_OPEN:
            self.apply_command(CommandKind.OPEN)
        elif action == FunctionAction.GO_CLOSE:
            self.apply_command(CommandKind.CLOSE)
        elif action == FunctionAction.GO_TO_POSITION:
            upper, _ = split_bytes(self.registers.getValues(config.HR_FAILSAFE_POS, 1)[0])
            self._go_to(min(upper, 100))
        else:
            self.apply_command(CommandKind.STOP)

    def _go_to(self, target):
        s = self.state
        target = max(0.0, min(float(target), 100.0))
        s.target_position = target
        if target > s.position:
            s.pending_command = CommandKind.OPEN
        elif target < s.position:
            s.pending_command = CommandKind.CLOSE
        else:
            s.pending_command = None

    # --- Tick ---

    def torque_limit(self):
        """Active torque limit: open torque while opening, close torque while closing"""
        close, opn = split_bytes(self.registers.getValues(config.HR_TORQUE, 1)[0])
        if self.state.pending_command == CommandKind.OPEN:
            return float(opn)
        if self.state.pending_command == CommandKind.CLOSE:
            return float(close)
        return float(min(close, opn))

    def step(self, rng: random.Random, step_size=config.SIM_STEP_SIZE):
        """Advance one tick"""
        with self.lock:
            s = self.state
            if s.moving:
                delta = s.speed_setting / 100.0 * step_size
                if s.pending_command == CommandKind.OPEN:
                    s.position = min(s.target_position, s.position + delta)
                else:
                    s.position = max(s.target_position, s.position - delta)
                if s.position == s.target_position:
                    self._arrive()

            low, high = config.SIM_MOVING_TORQUE if s.moving else config.SIM_IDLE_TORQUE
            s.torque = max(0.0, min(rng.uniform(low, high), self.torque_limit()))
            self._refresh()

    def _arrive(self):
        s = self.state
        s.pending_command = None
        if s.pst_return_position is not None:
            back = s.pst_return_position
            s.pst_return_position = None
            self._go_to(back)
            if s.moving:
                return
        if s.pst_result == PST_IN_PROGRESS:
            s.pst_result = PST_PASSED
            self.logger.info(LogComponent.SIM, f"Slave {self.address}: PST passed")
        if s.open_limit:
            self.logger.info(LogComponent.SIM, f"Slave {self.address}: open limit reached")
        elif s.close_limit:
            self.logger.info(LogComponent.SIM, f"Slave {self.address}: close limit reached")

    def _refresh(self):
        """Write the state back into the status registers"""
        s = self.state
        word = 1 << config.STATUS_REMOTE
        if s.open_limit:
            word |= 1 << config.STATUS_LIMIT_OPEN
        if s.close_limit:
            word |= 1 << config.STATUS_LIMIT_CLOSE
        if s.pending_command == CommandKind.OPEN:
            word |= 1 << config.STATUS_OPENING
        if s.pending_command == CommandKind.CLOSE:
            word |= 1 << config.STATUS_CLOSING
        if s.moving:
            word |= 1 << config.STATUS_RUNNING
        if s.setup_mode:
            word |= 1 << config.STATUS_SETUP
        if s.calibrated:
            word |= 1 << config.STATUS_CALIBRATED

        values = {
            config.HR_ALARMS: s.alarm_word & 0xFFFF,
            config.HR_STATUS_WORD: word,
            config.HR_HOST_COMMAND: (1 << config.COIL_SOFT_SETUP) if s.setup_mode else 0,
            config.HR_POSITION_PERMILLE: percent_to_raw(s.position, RawScale.PERMILLE),
            config.HR_TORQUE_PERMILLE: percent_to_raw(s.torque, RawScale.PERMILLE),
            config.HR_POSITION_COUNTS: percent_to_raw(s.position, RawScale.COUNTS),
            config.HR_TORQUE_COUNTS: percent_to_raw(s.torque, RawScale.COUNTS),
            config.HR_PST_RESULT: s.pst_result,
            config.HR_PRODUCT_ID: int(self.product_id) & 0xFFFF,
        }
        for reg, value in values.items():
            self.registers.setValues(reg, [value])
        self.coils.setValues(config.COIL_SOFT_SETUP, [s.setup_mode])

    # --- Helpers ---

    def set_alarm(self, name, active=True):
        """Raise or clear a named alarm bit"""
        bits = {v: k for k, v in config.ALARM_BITS.items()}
        if name not in bits:
            raise ValidationError(f"unknown alarm '{name}'")
        with self.lock:
            if active:
                self.state.alarm_word |= 1 << bits[name]
            else:
                self.state.alarm_word &= ~(1 << bits[name])
            self._refresh()

    def snapshot(self):
        with self.lock:
            return replace(self.state)


class SimulationEngine:
    """Ticks every virtual slave on a fixed interval in a daemon thread"""

    def __init__(self, slaves_provider, tick_interval=config.SIM_TICK_MS / 1000.0,
                 step_size=config.SIM_STEP_SIZE, seed=None, logger=None):
        self.slaves_provider = slaves_provider
        self.tick_interval = tick_interval
        self.step_size = step_size
        self.rng = random.Random(seed)
        self.logger = logger or EventLogger()

        self.tick_count = 0
        self.running = False
        self._thread = None
        self._stop_event = threading.Event()

    def tick(self):
        """Advance every slave by one tick"""
        for slave in self.slaves_provider():
            slave.step(self.rng, self.step_size)
        self.tick_count += 1

    def start(self):
        if self.running:
            self.logger.warn(LogComponent.SIM, "Simulation already running")
            return False

        self._stop_event.clear()
        self.running = True
        self._thread = threading.Thread(target=self._run, daemon=True, name="sim-engine")
        self._thread.start()
        self.logger.info(
            LogComponent.SIM,
            f"Simulation started, tick {self.tick_interval * 1000:.0f} ms"
        )
        return True

    def _run(self):
        while not self._stop_event.wait(self.tick_interval):
            try:
                self.tick()
            except Exception as e:
                self.logger.error(LogComponent.SIM, f"Tick error: {e}")

    def stop(self):
        if not self.running:
            return
        self._stop_event.set()
        self.running = False
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.tick_interval * 5 + 1.0)
        self._thread = None
        self.logger.info(LogComponent.SIM, f"Simulation stopped after {self.tick_count} ticks")
