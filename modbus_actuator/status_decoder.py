# modbus_actuator/status_decoder.py
"""
Status decoder: status word + alarm word + analog registers -> ActuatorStatus
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from . import config


class RawScale(Enum):
    """Raw register domain for position/torque"""
    PERMILLE = (config.PERMILLE_FULL_SCALE, config.PERMILLE_DIVISOR)
    COUNTS = (config.COUNTS_FULL_SCALE, config.COUNTS_DIVISOR)

    def __init__(self, full_scale, divisor):
        self.full_scale = full_scale
        self.divisor = divisor


def raw_to_percent(raw, scale=RawScale.PERMILLE):
    """Scale a raw register to 0-100 %, two decimals"""
    raw = max(0, min(int(raw), scale.full_scale))
    return round(raw / scale.divisor, 2)


def percent_to_raw(percent, scale=RawScale.PERMILLE):
    """Inverse of raw_to_percent, rounding down so bounds are never exceeded"""
    percent = max(0.0, min(float(percent), 100.0))
    return min(int(percent * scale.divisor + 1e-6), scale.full_scale)


@dataclass(frozen=True)
class ActuatorStatus:
    position: float = 0.0
    torque: float = 0.0
    power_ok: bool = True
    comm_ok: bool = True
    calibrated: bool = False
    moving: bool = False
    opening: bool = False
    closing: bool = False
    open_limit: bool = False
    close_limit: bool = False
    setup_mode: bool = False
    stop_mode: bool = False
    local_mode: bool = False
    remote_mode: bool = False
    alarms: tuple = ()
    product_id: int = 0
    pst_result: int = 0
    timestamp: datetime = None

    @property
    def has_alarm(self):
        return bool(self.alarms)

    @property
    def label(self):
        return status_label(self)

    def to_dict(self):
        return {
            'position': self.position,
            'torque': self.torque,
            'power_ok': self.power_ok,
            'comm_ok': self.comm_ok,
            'calibrated': self.calibrated,
            'moving': self.moving,
            'open_limit': self.open_limit,
            'close_limit': self.close_limit,
            'setup_mode': self.setup_mode,
            'alarms': list(self.alarms),
            'label': self.label,
            'pst_result': config.PST_RESULT_MAP.get(self.pst_result, "Unknown"),
        }


def _bit(word, bit):
    return bool(int(word) & (1 << bit))


def describe_alarms(alarm_word):
    """Names of the alarm bits set in alarm_word, in bit order"""
    return tuple(name for bit, name in sorted(config.ALARM_BITS.items()) if _bit(alarm_word, bit))


def decode_status(status_word, position_raw, torque_raw, *, scale=RawScale.PERMILLE,
                  alarm_word=0, torque_limit=100.0, product_id=0, pst_result=0):
    """Decode one status snapshot.

    Never raises on malformed words. A motor that reports running (or a
    direction bit) has both limit flags cleared; two simultaneous limit bits
    are contradictory, so both are cleared and LIMIT_SWITCH_CONFLICT is
    reported as an alarm.
    """
    alarms = describe_alarms(alarm_word)

    opening = _bit(status_word, config.STATUS_OPENING)
    closing = _bit(status_word, config.STATUS_CLOSING)
    moving = _bit(status_word, config.STATUS_RUNNING) or opening or closing

    open_limit = _bit(status_word, config.STATUS_LIMIT_OPEN)
    close_limit = _bit(status_word, config.STATUS_LIMIT_CLOSE)
    if open_limit and close_limit:
        open_limit = close_limit = False
        alarms = alarms + (config.ALARM_LIMIT_CONFLICT,)
    if moving:
        open_limit = close_limit = False

    torque = raw_to_percent(torque_raw, scale)
    torque = max(0.0, min(torque, float(torque_limit)))

    return ActuatorStatus(
        position=raw_to_percent(position_raw, scale),
        torque=torque,
        power_ok="LOSS_OF_POWER" not in alarms,
        comm_ok="LOSS_OF_SIGNAL" not in alarms,
        calibrated=_bit(status_word, config.STATUS_CALIBRATED),
        moving=moving,
        opening=opening,
        closing=closing,
        open_limit=open_limit,
        close_limit=close_limit,
        setup_mode=_bit(status_word, config.STATUS_SETUP),
        stop_mode=_bit(status_word, config.STATUS_STOP),
        local_mode=_bit(status_word, config.STATUS_LOCAL),
        remote_mode=_bit(status_word, config.STATUS_REMOTE),
        alarms=alarms,
        product_id=int(product_id),
        pst_result=int(pst_result),
        timestamp=datetime.now(),
    )


def decode_status_block(registers, scale=RawScale.COUNTS, torque_limit=100.0):
    """Decode a status block read from register 0 (at least STATUS_BLOCK_COUNT values)"""
    if scale is RawScale.COUNTS:
        pos_raw = registers[config.HR_POSITION_COUNTS]
        torque_raw = registers[config.HR_TORQUE_COUNTS]
    else:
        pos_raw = registers[config.HR_POSITION_PERMILLE]
        torque_raw = registers[config.HR_TORQUE_PERMILLE]
    return decode_status(
        registers[config.HR_STATUS_WORD], pos_raw, torque_raw,
        scale=scale,
        alarm_word=registers[config.HR_ALARMS],
        torque_limit=torque_limit,
        product_id=registers[config.HR_PRODUCT_ID],
        pst_result=registers[config.HR_PST_RESULT],
    )


def status_label(status: ActuatorStatus):
    """Single display label.

    Precedence: ALARM > OPENING/CLOSING > OPEN > CLOSED > STOPPED. A moving
    actuator without exactly one direction bit is classed by position
    (above 50 % counts as opening).
    """
    if status.alarms:
        return "ALARM"
    if status.moving:
        if status.opening and not status.closing:
            return "OPENING"
        if status.closing and not status.opening:
            return "CLOSING"
        return "OPENING" if status.position > 50 else "CLOSING"
    if status.open_limit:
        return "OPEN"
    if status.close_limit:
        return "CLOSED"
    return "STOPPED"
