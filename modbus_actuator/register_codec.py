# modbus_actuator/register_codec.py
"""
Register codec: DeviceConfiguration <-> holding register values

Layout (UH = upper byte, LH = lower byte):
    11        function register, one two-state flag per bit
    12        enable register, bits 0-13 flags, bits 14-15 reserved
    101       UH control mode        LH modulation delay
    102       UH deadband            LH network adapter
    103-106   relays 1-8 (UH = odd relay, LH = even relay)
    107       UH failsafe function   LH relay 9
    108       UH failsafe position   LH ESD function
    109       UH ESD delay           LH loss-comm function
    110       UH loss-comm delay     LH network baud rate
    111       UH response delay      LH network parity
    112       UH close torque        LH open torque
    113       UH LSA                 LH LSB
    114       UH open speed start    LH open speed ratio
    115       UH close speed start   LH close speed ratio
    500-507   calibration words (AI1, AI2, AO1, AO2 zero/span pairs)

Relay byte: trigger in bits 0-5, bit 6 flashing, bit 7 normally open.
Decoding never raises: unknown enum bytes fall back to the field default and
bounded numbers are clamped.
"""
from dataclasses import dataclass, field, fields, replace
from enum import IntEnum

from . import config


# --- Two-state flags ------------------------------------------------------

class EhoType(IntEnum):
    DOUBLE_ACTION = 0
    SPRING_RETURN = 1


class InputFunction(IntEnum):
    MAINTAINED = 0
    MOMENTARY = 1


class EnabledState(IntEnum):
    DISABLED = 0
    ENABLED = 1


class Polarity(IntEnum):
    NORMAL = 0
    REVERSED = 1


class TriggerType(IntEnum):
    NORMALLY_OPEN = 0
    NORMALLY_CLOSE = 1


class CloseDirection(IntEnum):
    CLOCKWISE = 0
    COUNTER_CLOCKWISE = 1


class SeatMode(IntEnum):
    POSITION = 0
    TORQUE = 1


# --- Byte enums -----------------------------------------------------------

class ControlMode(IntEnum):
    TWO_WIRE_DISCRETE = 0
    THREE_WIRE_DISCRETE = 1
    FOUR_WIRE_DISCRETE = 2
    ANALOG_4_20MA = 3
    ANALOG_0_10V = 4
    ANALOG_2_10V = 5
    ANALOG_0_5V = 6
    ANALOG_1_5V = 7
    NETWORK = 8


class NetworkAdapter(IntEnum):
    NONE = 0
    MODBUS_BUS = 1
    MODBUS_REPEATER = 2
    MODBUS_TCP = 3
    DEVICENET = 4
    ETHERNET_IP = 5
    PROFIBUS = 6
    PROFINET = 7
    HART = 8
    HART_IP = 9
    FOUNDATION_FIELDBUS = 10


class RelayTrigger(IntEnum):
    LSO = 0
    LSC = 1
    LSA = 2
    LSB = 3
    OPENING = 4
    CLOSING = 5
    OPEN_TORQUE = 6
    CLOSE_TORQUE = 7
    LOCAL = 8
    STOP = 9
    REMOTE = 10
    VALVE_DRIFT = 16
    LOST_POWER = 17
    LOST_PHASE = 18
    MOTOR_OVERLOAD = 19
    OPEN_INHIBIT = 20
    CLOSE_INHIBIT = 21
    LOCAL_ESD = 22
    ANY_ESD = 23
    LOST_ANALOG = 24
    GENERIC = 25
    MOVING = 26
    VALVE_STALL = 27
    MONITOR_RELAY = 28
    PST_IN_PROCESS = 29


class RelayMode(IntEnum):
    CONTINUOUS = 0
    FLASHING = 1


class RelayContactType(IntEnum):
    NORMALLY_CLOSED = 0
    NORMALLY_OPEN = 1


class FunctionAction(IntEnum):
    STAY_PUT = 0
    GO_OPEN = 1
    GO_CLOSE = 2
    GO_TO_POSITION = 3


class NetworkBaudRate(IntEnum):
    BAUD_1200 = 0
    BAUD_2400 = 1
    BAUD_4800 = 2
    BAUD_9600 = 3
    BAUD_19200 = 4
    BAUD_38400 = 5

    @property
    def bps(self):
        return config.AVAILABLE_BAUDRATES[self.value]


class NetworkCommParity(IntEnum):
    NONE = 0
    ODD = 1
    EVEN = 2


# --- Data model -----------------------------------------------------------

RELAY_COUNT = 9


@dataclass(frozen=True)
class RelayConfig:
    trigger: RelayTrigger = RelayTrigger.LSO
    mode: RelayMode = RelayMode.CONTINUOUS
    contact: RelayContactType = RelayContactType.NORMALLY_CLOSED


def _default_relays():
    return [RelayConfig() for _ in range(RELAY_COUNT)]


@dataclass
class DeviceConfiguration:
    # Register 11
    eho_type: EhoType = EhoType.DOUBLE_ACTION
    local_input_function: InputFunction = InputFunction.MAINTAINED
    remote_input_function: InputFunction = InputFunction.MAINTAINED
    remote_esd_enabled: EnabledState = EnabledState.DISABLED
    loss_comm_enabled: EnabledState = EnabledState.DISABLED
    ai1_polarity: Polarity = Polarity.NORMAL
    ai2_polarity: Polarity = Polarity.NORMAL
    ao1_polarity: Polarity = Polarity.NORMAL
    ao2_polarity: Polarity = Polarity.NORMAL
    di1_open_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    di2_close_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    di3_stop_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    di4_esd_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    di5_pst_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    close_direction: CloseDirection = CloseDirection.CLOCKWISE
    seat: SeatMode = SeatMode.POSITION

    # Register 12
    torque_backseat: EnabledState = EnabledState.DISABLED
    torque_retry: EnabledState = EnabledState.DISABLED
    remote_display: EnabledState = EnabledState.DISABLED
    leds: EnabledState = EnabledState.DISABLED
    open_inhibit: EnabledState = EnabledState.DISABLED
    close_inhibit: EnabledState = EnabledState.DISABLED
    local_esd: EnabledState = EnabledState.DISABLED
    esd_or_thermal: EnabledState = EnabledState.DISABLED
    esd_or_local: EnabledState = EnabledState.DISABLED
    esd_or_stop: EnabledState = EnabledState.DISABLED
    esd_or_inhibit: EnabledState = EnabledState.DISABLED
    esd_or_torque: EnabledState = EnabledState.DISABLED
    close_speed_control: EnabledState = EnabledState.DISABLED
    open_speed_control: EnabledState = EnabledState.DISABLED
    reserved_enable_bits: int = 0

    # Registers 101-115
    control_mode: ControlMode = ControlMode.TWO_WIRE_DISCRETE
    modulation_delay: int = 1
    deadband: int = 20
    network_adapter: NetworkAdapter = NetworkAdapter.NONE
    relays: list = field(default_factory=_default_relays)
    failsafe_function: FunctionAction = FunctionAction.STAY_PUT
    failsafe_go_to_position: int = 50
    esd_function: FunctionAction = FunctionAction.STAY_PUT
    esd_delay: int = 0
    loss_comm_function: FunctionAction = FunctionAction.STAY_PUT
    loss_comm_delay: int = 0
    network_baud_rate: NetworkBaudRate = NetworkBaudRate.BAUD_9600
    network_response_delay: int = 8
    network_comm_parity: NetworkCommParity = NetworkCommParity.NONE
    close_torque: int = 50
    open_torque: int = 50
    lsa: int = 25
    lsb: int = 75
    open_speed_control_start: int = 70
    open_speed_control_ratio: int = 50
    close_speed_control_start: int = 30
    close_speed_control_ratio: int = 50

    # Registers 500-507
    ai1_zero: int = 0
    ai1_span: int = config.CALIBRATION_MAX
    ai2_zero: int = 0
    ai2_span: int = config.CALIBRATION_MAX
    ao1_zero: int = 0
    ao1_span: int = config.CALIBRATION_MAX
    ao2_zero: int = 0
    ao2_span: int = config.CALIBRATION_MAX

    def copy(self):
        return replace(self, relays=list(self.relays))


FIELD_DEFAULTS = {
    f.name: f.default for f in fields(DeviceConfiguration) if f.name != "relays"
}


# --- Register tables ------------------------------------------------------

FUNCTION_FLAGS = [
    (0, "eho_type", EhoType),
    (1, "local_input_function", InputFunction),
    (2, "remote_input_function", InputFunction),
    (3, "remote_esd_enabled", EnabledState),
    (4, "loss_comm_enabled", EnabledState),
    (5, "ai1_polarity", Polarity),
    (6, "ai2_polarity", Polarity),
    (7, "ao1_polarity", Polarity),
    (8, "ao2_polarity", Polarity),
    (9, "di1_open_trigger", TriggerType),
    (10, "di2_close_trigger", TriggerType),
    (11, "di3_stop_trigger", TriggerType),
    (12, "di4_esd_trigger", TriggerType),
    (13, "di5_pst_trigger", TriggerType),
    (14, "close_direction", CloseDirection),
    (15, "seat", SeatMode),
]

ENABLE_FLAGS = [
    (0, "torque_backseat"),
    (1, "torque_retry"),
    (2, "remote_display"),
    (3, "leds"),
    (4, "open_inhibit"),
    (5, "close_inhibit"),
    (6, "local_esd"),
    (7, "esd_or_thermal"),
    (8, "esd_or_local"),
    (9, "esd_or_stop"),
    (10, "esd_or_inhibit"),
    (11, "esd_or_torque"),
    (12, "close_speed_control"),
    (13, "open_speed_control"),
]
ENABLE_RESERVED_SHIFT = 14
ENABLE_RESERVED_MASK = 0x3


@dataclass(frozen=True)
class ByteField:
    register: int
    upper: bool
    name: str
    enum: type = None
    minimum: int = 0
    maximum: int = 0xFF
    step: int = 1


BYTE_FIELDS = [
    ByteField(config.HR_CONTROL, True, "control_mode", ControlMode),
    ByteField(config.HR_CONTROL, False, "modulation_delay"),
    ByteField(config.HR_DEADBAND, True, "deadband"),
    ByteField(config.HR_DEADBAND, False, "network_adapter", NetworkAdapter),
    ByteField(config.HR_FAILSAFE, True, "failsafe_function", FunctionAction),
    ByteField(config.HR_FAILSAFE_POS, True, "failsafe_go_to_position", maximum=100),
    ByteField(config.HR_FAILSAFE_POS, False, "esd_function", FunctionAction),
    ByteField(config.HR_ESD_DELAY, True, "esd_delay"),
    ByteField(config.HR_ESD_DELAY, False, "loss_comm_function", FunctionAction),
    ByteField(config.HR_LOSS_COMM_DELAY, True, "loss_comm_delay"),
    ByteField(config.HR_LOSS_COMM_DELAY, False, "network_baud_rate", NetworkBaudRate),
    ByteField(config.HR_NETWORK, True, "network_response_delay"),
    ByteField(config.HR_NETWORK, False, "network_comm_parity", NetworkCommParity),
    ByteField(config.HR_TORQUE, True, "close_torque",
              minimum=config.TORQUE_MIN, maximum=config.TORQUE_MAX),
    ByteField(config.HR_TORQUE, False, "open_torque",
              minimum=config.TORQUE_MIN, maximum=config.TORQUE_MAX),
    ByteField(config.HR_LSA_LSB, True, "lsa", minimum=1, maximum=99),
    ByteField(config.HR_LSA_LSB, False, "lsb", minimum=1, maximum=99),
    ByteField(config.HR_OPEN_SPEED, True, "open_speed_control_start", minimum=5, maximum=95, step=5),
    ByteField(config.HR_OPEN_SPEED, False, "open_speed_control_ratio", minimum=5, maximum=95, step=5),
    ByteField(config.HR_CLOSE_SPEED, True, "close_speed_control_start", minimum=5, maximum=95, step=5),
    ByteField(config.HR_CLOSE_SPEED, False, "close_speed_control_ratio", minimum=5, maximum=95, step=5),
]

CALIBRATION_FIELDS = [
    "ai1_zero", "ai1_span",
    "ai2_zero", "ai2_span",
    "ao1_zero", "ao1_span",
    "ao2_zero", "ao2_span",
]

CALIBRATION_REGISTERS = tuple(
    range(config.HR_CALIBRATION_START, config.HR_CALIBRATION_START + config.CALIBRATION_COUNT)
)

# Flags first, then scalars and relays, then network settings and limits
CONFIG_WRITE_ORDER = (
    config.HR_FUNCTION, config.HR_ENABLE,
    101, 102, 103, 104, 105, 106, 107,
    108, 109, 110, 111,
    112, 113, 114, 115,
)

# Contiguous blocks read by ActuatorDevice.read_configuration
CONFIG_READ_BLOCKS = (
    (config.HR_FUNCTION, 1),
    (config.HR_ENABLE, 1),
    (101, 2),
    (103, 9),
    (112, 1),
    (113, 3),
    (config.HR_CALIBRATION_START, config.CALIBRATION_COUNT),
)


def relay_location(index):
    """(register, upper) of relay index 0-8"""
    if index == RELAY_COUNT - 1:
        return config.HR_FAILSAFE, False
    return config.HR_RELAY_FIRST + index // 2, index % 2 == 0


def field_location(name):
    """(register, bit) holding a configuration field; bit is None for whole bytes/words"""
    for bit, fname, _ in FUNCTION_FLAGS:
        if fname == name:
            return config.HR_FUNCTION, bit
    for bit, fname in ENABLE_FLAGS:
        if fname == name:
            return config.HR_ENABLE, bit
    if name == "reserved_enable_bits":
        return config.HR_ENABLE, ENABLE_RESERVED_SHIFT
    for bf in BYTE_FIELDS:
        if bf.name == name:
            return bf.register, None
    if name in CALIBRATION_FIELDS:
        return config.HR_CALIBRATION_START + CALIBRATION_FIELDS.index(name), None
    raise KeyError(name)


# --- Primitive helpers ----------------------------------------------------

def pack_bytes(upper, lower):
    """Combine two bytes into one 16-bit register"""
    return ((int(upper) & 0xFF) << 8) | (int(lower) & 0xFF)


def split_bytes(value):
    """Split a 16-bit register into (upper, lower)"""
    value = int(value) & 0xFFFF
    return (value >> 8) & 0xFF, value & 0xFF


def enum_or_default(enum_cls, raw, default):
    """Map a raw integer onto enum_cls, falling back to default if undefined"""
    try:
        return enum_cls(int(raw))
    except ValueError:
        return default


def clamp_scalar(bf: ByteField, raw):
    value = max(bf.minimum, min(int(raw), bf.maximum))
    if bf.step > 1:
        value = int(round(value / bf.step)) * bf.step
        value = max(bf.minimum, min(value, bf.maximum))
    return value


def clamp_calibration(value):
    return max(0, min(int(value), config.CALIBRATION_MAX))


def encode_relay(relay: RelayConfig):
    value = int(relay.trigger) & 0x3F
    if relay.mode == RelayMode.FLASHING:
        value |= 1 << 6
    if relay.contact == RelayContactType.NORMALLY_OPEN:
        value |= 1 << 7
    return value


def decode_relay(value):
    value = int(value) & 0xFF
    return RelayConfig(
        trigger=enum_or_default(RelayTrigger, value & 0x3F, RelayTrigger.LSO),
        mode=RelayMode.FLASHING if value & (1 << 6) else RelayMode.CONTINUOUS,
        contact=RelayContactType.NORMALLY_OPEN if value & (1 << 7) else RelayContactType.NORMALLY_CLOSED,
    )


# --- Flag registers -------------------------------------------------------

def pack_function_register(cfg: DeviceConfiguration):
    value = 0
    for bit, name, _ in FUNCTION_FLAGS:
        if int(getattr(cfg, name)) & 1:
            value |= 1 << bit
    return value


def unpack_function_register(value, cfg: DeviceConfiguration):
    for bit, name, enum_cls in FUNCTION_FLAGS:
        setattr(cfg, name, enum_cls((int(value) >> bit) & 1))


def pack_enable_register(cfg: DeviceConfiguration):
    value = 0
    for bit, name in ENABLE_FLAGS:
        if int(getattr(cfg, name)) & 1:
            value |= 1 << bit
    value |= (int(cfg.reserved_enable_bits) & ENABLE_RESERVED_MASK) << ENABLE_RESERVED_SHIFT
    return value


def unpack_enable_register(value, cfg: DeviceConfiguration):
    for bit, name in ENABLE_FLAGS:
        setattr(cfg, name, EnabledState((int(value) >> bit) & 1))
    cfg.reserved_enable_bits = (int(value) >> ENABLE_RESERVED_SHIFT) & ENABLE_RESERVED_MASK


# --- Whole configuration --------------------------------------------------

def _encode_byte(cfg, bf: ByteField):
    value = getattr(cfg, bf.name)
    if bf.enum is not None:
        return int(enum_or_default(bf.enum, value, FIELD_DEFAULTS[bf.name]))
    return clamp_scalar(bf, value)


def encode_calibration(cfg: DeviceConfiguration):
    """Calibration words keyed by register address (500-507)"""
    return {
        reg: clamp_calibration(getattr(cfg, name))
        for reg, name in zip(CALIBRATION_REGISTERS, CALIBRATION_FIELDS)
    }


def encode_configuration(cfg: DeviceConfiguration):
    """Encode a configuration to {register: value}, in write order then calibration"""
    halves = {}
    for bf in BYTE_FIELDS:
        halves[(bf.register, bf.upper)] = _encode_byte(cfg, bf)
    for index, relay in enumerate(cfg.relays[:RELAY_COUNT]):
        halves[relay_location(index)] = encode_relay(relay)

    registers = {
        config.HR_FUNCTION: pack_function_register(cfg),
        config.HR_ENABLE: pack_enable_register(cfg),
    }
    for reg in CONFIG_WRITE_ORDER[2:]:
        registers[reg] = pack_bytes(halves.get((reg, True), 0), halves.get((reg, False), 0))
    registers.update(encode_calibration(cfg))
    return registers


def decode_configuration(registers, base: DeviceConfiguration = None):
    """Decode {register: value} into a DeviceConfiguration.

    Registers absent from the mapping keep the value from ``base`` (or the
    dataclass defaults). Never raises on malformed values.
    """
    cfg = base.copy() if base is not None else DeviceConfiguration()

    if config.HR_FUNCTION in registers:
        unpack_function_register(registers[config.HR_FUNCTION], cfg)
    if config.HR_ENABLE in registers:
        unpack_enable_register(registers[config.HR_ENABLE], cfg)

    for bf in BYTE_FIELDS:
        if bf.register not in registers:
            continue
        upper, lower = split_bytes(registers[bf.register])
        raw = upper if bf.upper else lower
        if bf.enum is not None:
            setattr(cfg, bf.name, enum_or_default(bf.enum, raw, FIELD_DEFAULTS[bf.name]))
        else:
            setattr(cfg, bf.name, clamp_scalar(bf, raw))

    relays = list(cfg.relays) + _default_relays()[len(cfg.relays):]
    for index in range(RELAY_COUNT):
        reg, upper = relay_location(index)
        if reg in registers:
            hi, lo = split_bytes(registers[reg])
            relays[index] = decode_relay(hi if upper else lo)
    cfg.relays = relays[:RELAY_COUNT]

    for reg, name in zip(CALIBRATION_REGISTERS, CALIBRATION_FIELDS):
        if reg in registers:
            setattr(cfg, name, clamp_calibration(registers[reg]))

    return cfg


def registers_from_block(start, values):
    """Turn a contiguous read into {register: value}"""
    return {start + offset: int(v) for offset, v in enumerate(values)}
