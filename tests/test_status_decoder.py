import pytest

from modbus_actuator import config
from modbus_actuator.status_decoder import (
    ActuatorStatus,
    RawScale,
    decode_status,
    decode_status_block,
    describe_alarms,
    percent_to_raw,
    raw_to_percent,
    status_label,
)


def _word(*bits):
    value = 0
    for bit in bits:
        value |= 1 << bit
    return value


def test_permille_scaling():
    assert raw_to_percent(0) == 0.0
    assert raw_to_percent(505) == 50.5
    assert raw_to_percent(1000) == 100.0
    assert raw_to_percent(1500) == 100.0


def test_counts_scaling():
    assert raw_to_percent(4095, RawScale.COUNTS) == 100.0
    assert raw_to_percent(2048, RawScale.COUNTS) == pytest.approx(50.01, abs=0.01)


def test_percent_to_raw_never_exceeds_full_scale():
    assert percent_to_raw(100.0, RawScale.COUNTS) == 4095
    assert percent_to_raw(150.0, RawScale.PERMILLE) == 1000
    assert percent_to_raw(-3.0, RawScale.PERMILLE) == 0
    assert percent_to_raw(12.34, RawScale.PERMILLE) == 123


def test_limit_flags_decoded():
    status = decode_status(_word(config.STATUS_LIMIT_OPEN), 1000, 250)
    assert status.open_limit
    assert not status.close_limit
    assert status.position == 100.0
    assert status.torque == 25.0
    assert status.label == "OPEN"


def test_both_limits_are_cleared_and_reported():
    status = decode_status(_word(config.STATUS_LIMIT_OPEN, config.STATUS_LIMIT_CLOSE), 500, 0)
    assert not status.open_limit
    assert not status.close_limit
    assert config.ALARM_LIMIT_CONFLICT in status.alarms
    assert status.label == "ALARM"


def test_moving_clears_limit_flags():
    word = _word(config.STATUS_RUNNING, config.STATUS_OPENING, config.STATUS_LIMIT_CLOSE)
    status = decode_status(word, 10, 400)
    assert status.moving
    assert status.opening
    assert not status.close_limit
    assert status.label == "OPENING"


def test_torque_clamped_to_limit():
    status = decode_status(0, 0, 900, torque_limit=70)
    assert status.torque == 70.0


def test_label_precedence():
    assert status_label(ActuatorStatus(alarms=("STALL",), moving=True, opening=True)) == "ALARM"
    assert status_label(ActuatorStatus(moving=True, closing=True, open_limit=True)) == "CLOSING"
    assert status_label(ActuatorStatus(open_limit=True, close_limit=True)) == "OPEN"
    assert status_label(ActuatorStatus(close_limit=True)) == "CLOSED"
    assert status_label(ActuatorStatus()) == "STOPPED"


def test_label_falls_back_to_position_without_direction():
    assert status_label(ActuatorStatus(moving=True, position=70.0)) == "OPENING"
    assert status_label(ActuatorStatus(moving=True, position=50.0)) == "CLOSING"


def test_alarm_names():
    assert describe_alarms(0) == ()
    assert describe_alarms(_word(0, 4, 15)) == ("STALL", "LOSS_OF_POWER", "UNIT_ALARM")
    status = decode_status(0, 0, 0, alarm_word=_word(4, 13))
    assert not status.power_ok
    assert not status.comm_ok


def test_decode_status_block_uses_scale_registers():
    registers = [0] * config.STATUS_BLOCK_COUNT
    registers[config.HR_STATUS_WORD] = _word(config.STATUS_CALIBRATED, config.STATUS_SETUP)
    registers[config.HR_POSITION_PERMILLE] = 250
    registers[config.HR_POSITION_COUNTS] = 4095
    registers[config.HR_PST_RESULT] = 2
    registers[config.HR_PRODUCT_ID] = 0x8002

    counts = decode_status_block(registers)
    assert counts.position == 100.0
    assert counts.calibrated
    assert counts.setup_mode
    assert counts.product_id == 0x8002
    assert counts.to_dict()["pst_result"] == "Passed"

    permille = decode_status_block(registers, RawScale.PERMILLE)
    assert permille.position == 25.0
