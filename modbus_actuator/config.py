# modbus_actuator/config.py
"""
Configuration for the actuator Modbus core (register map, timing, defaults)
"""
from enum import IntEnum

# Serial (RTU) Connection
SERIAL_PORT = "COM1"
SERIAL_BAUDRATE = 9600
SERIAL_PARITY = "N"      # 'N', 'E', 'O'
SERIAL_STOPBITS = 1
SERIAL_BYTESIZE = 8
SERIAL_TIMEOUT = 1.0
AVAILABLE_BAUDRATES = [1200, 2400, 4800, 9600, 19200, 38400]

# Slave addressing
SLAVE_ID_MIN = 1
SLAVE_ID_MAX = 254
SCAN_START_DEFAULT = 1
SCAN_END_DEFAULT = 10

# Timing
POLL_INTERVAL_MS = 500       # single-device control views
POLL_INTERVAL_MIN_MS = 100   # network-wide views
SIM_TICK_MS = 100

# Status registers
HR_ALARMS = 0                # alarm bits, see ALARM_BITS
HR_ALARMS_2 = 1
HR_ALERTS = 2
HR_STATUS_WORD = 3           # operating status bits, see STATUS_* below
HR_IO_STATUS = 4             # relays 1-9 bits 0-8, DI1-5 bits 9-13
HR_HOST_COMMAND = 10         # coil n aliases bit n
HR_SETPOINT = 20             # target position 0-4095
HR_POSITION_PERMILLE = 21    # 0-1000
HR_TORQUE_PERMILLE = 22      # 0-1000
HR_POSITION_COUNTS = 23      # 0-4095
HR_TORQUE_COUNTS = 24        # 0-4095
HR_PST_RESULT = 29
HR_PRODUCT_ID = 30
STATUS_BLOCK_START = 0
STATUS_BLOCK_COUNT = 31

# Status word bits (HR_STATUS_WORD)
STATUS_LIMIT_OPEN = 0
STATUS_LIMIT_CLOSE = 1
STATUS_TORQUE_SW_OPEN = 2
STATUS_TORQUE_SW_CLOSE = 3
STATUS_OPENING = 4
STATUS_CLOSING = 5
STATUS_LOCAL = 6
STATUS_REMOTE = 7
STATUS_STOP = 8
STATUS_SETUP = 9
STATUS_HANDWHEEL = 10
STATUS_CALIBRATED = 11
STATUS_RUNNING = 12

# Alarm bits (HR_ALARMS)
ALARM_BITS = {
    0: "STALL",
    1: "VALVE_DRIFT",
    2: "ESD_ACTIVE",
    3: "MOTOR_THERMAL",
    4: "LOSS_OF_POWER",
    13: "LOSS_OF_SIGNAL",
    14: "LOW_OIL",
    15: "UNIT_ALARM",
}
ALARM_LIMIT_CONFLICT = "LIMIT_SWITCH_CONFLICT"

# Command coils (same numbering as HR_HOST_COMMAND bits)
COIL_OPEN = 0
COIL_CLOSE = 1
COIL_STOP = 2
COIL_ESD = 3
COIL_PST = 4
COIL_SOFT_SETUP = 15


class CommandKind(IntEnum):
    """Host commands, valued by their coil number"""
    OPEN = COIL_OPEN
    CLOSE = COIL_CLOSE
    STOP = COIL_STOP
    ESD = COIL_ESD
    PST = COIL_PST


# Configuration registers
HR_FUNCTION = 11
HR_ENABLE = 12
HR_CONTROL = 101             # UH control mode, LH modulation delay
HR_DEADBAND = 102            # UH deadband, LH network adapter
HR_RELAY_FIRST = 103         # 103-106 relays 1-8, 107 LH relay 9
HR_FAILSAFE = 107            # UH failsafe function
HR_FAILSAFE_POS = 108        # UH go-to position, LH ESD function
HR_ESD_DELAY = 109           # UH ESD delay, LH loss-comm function
HR_LOSS_COMM_DELAY = 110     # UH loss-comm delay, LH baud rate
HR_NETWORK = 111             # UH response delay, LH parity
HR_TORQUE = 112              # UH close torque, LH open torque
HR_LSA_LSB = 113
HR_OPEN_SPEED = 114
HR_CLOSE_SPEED = 115
HR_CALIBRATION_START = 500
CALIBRATION_COUNT = 8
CALIBRATION_MAX = 4095

# Maintenance registers (simulator)
HR_CALIBRATE = 200
HR_RESET_ERRORS = 201

# PST results (HR_PST_RESULT)
PST_RESULT_MAP = {
    0: "Never run",
    1: "In progress",
    2: "Passed",
    3: "Failed",
}

# Raw scaling
PERMILLE_FULL_SCALE = 1000
PERMILLE_DIVISOR = 10.0
COUNTS_FULL_SCALE = 4095
COUNTS_DIVISOR = 40.95

# Torque limits (HR_TORQUE bytes)
TORQUE_MIN = 15
TORQUE_MAX = 100

# Simulation
SIM_BANK_SIZE = 600
SIM_COIL_COUNT = 16
SIM_STEP_SIZE = 2.0          # percent per tick at speed 100
SIM_SPEED_DEFAULT = 50
SIM_TORQUE_LIMIT_DEFAULT = 80
SIM_MOVING_TORQUE = (40.0, 60.0)
SIM_IDLE_TORQUE = (20.0, 30.0)

# Log Settings
LOG_MAX_LINES = 500
