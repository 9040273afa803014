import random

import pytest

from modbus_actuator import config
from modbus_actuator.config import CommandKind
from modbus_actuator.errors import OutOfRangeError, ValidationError
from modbus_actuator.register_codec import FunctionAction, pack_bytes
from modbus_actuator.simulator import (
    PST_FAILED,
    PST_PASSED,
    SimulationEngine,
    VirtualSlave,
)
from modbus_actuator.status_decoder import RawScale, decode_status_block


def _run(slave, rng, ticks):
    for _ in range(ticks):
        slave.step(rng)


def _run_until_idle(slave, rng, limit=500):
    for _ in range(limit):
        slave.step(rng)
        if not slave.state.moving:
            return
    raise AssertionError("slave never stopped")


def test_open_cycle_reaches_open_limit():
    rng = random.Random(1)
    slave = VirtualSlave(1, speed_setting=50)
    assert slave.apply_command(CommandKind.OPEN)

    positions = []
    raws = []
    while slave.state.moving:
        slave.step(rng)
        positions.append(slave.state.position)
        raws.append(slave.read_registers(config.HR_POSITION_COUNTS, 1)[0])
        assert len(positions) < 500

    assert all(b > a for a, b in zip(positions, positions[1:]))
    assert all(b > a for a, b in zip(raws, raws[1:]))
    assert len(positions) == 100

    status = decode_status_block(slave.read_registers(0, config.STATUS_BLOCK_COUNT))
    assert status.position == 100.0
    assert not status.moving
    assert status.open_limit
    assert not status.close_limit


def test_close_cycle_reaches_close_limit():
    rng = random.Random(2)
    slave = VirtualSlave(1, initial_position=30.0, speed_setting=100)
    slave.apply_command(CommandKind.CLOSE)
    _run_until_idle(slave, rng)
    assert slave.state.position == 0.0
    assert slave.state.close_limit
    assert not slave.state.open_limit


def test_torque_stays_within_bounds():
    rng = random.Random(3)
    slave = VirtualSlave(1)
    slave.apply_command(CommandKind.OPEN)
    for _ in range(20):
        slave.step(rng)
        assert 40.0 <= slave.state.torque <= 60.0
    slave.apply_command(CommandKind.STOP)
    for _ in range(20):
        slave.step(rng)
        assert 20.0 <= slave.state.torque <= 30.0


def test_torque_clamped_to_configured_limit():
    rng = random.Random(4)
    slave = VirtualSlave(1)
    slave.write_register(config.HR_TORQUE, pack_bytes(80, 45))
    slave.apply_command(CommandKind.OPEN)
    for _ in range(30):
        slave.step(rng)
        assert slave.state.torque <= 45.0


def test_torque_register_bytes_are_clamped():
    slave = VirtualSlave(1)
    slave.write_register(config.HR_TORQUE, pack_bytes(5, 200))
    assert slave.read_registers(config.HR_TORQUE, 1)[0] == pack_bytes(15, 100)


def test_open_ignored_at_open_limit():
    slave = VirtualSlave(1, initial_position=100.0)
    assert not slave.apply_command(CommandKind.OPEN)
    assert not slave.state.moving
    assert slave.state.open_limit


def test_stop_mid_travel():
    rng = random.Random(5)
    slave = VirtualSlave(1)
    slave.apply_command(CommandKind.OPEN)
    _run(slave, rng, 10)
    slave.write_coil(config.COIL_STOP, True)
    position = slave.state.position
    _run(slave, rng, 10)
    assert slave.state.position == position
    assert not slave.state.open_limit
    assert not slave.state.close_limit
    assert slave.read_coils(config.COIL_STOP, 1) == [False]


def test_command_coil_starts_motion():
    slave = VirtualSlave(1)
    slave.write_coil(config.COIL_OPEN, True)
    assert slave.state.pending_command is CommandKind.OPEN
    word = slave.read_registers(config.HR_STATUS_WORD, 1)[0]
    assert word & (1 << config.STATUS_OPENING)
    assert word & (1 << config.STATUS_RUNNING)


def test_host_command_register_stop_wins():
    slave = VirtualSlave(1, initial_position=50.0)
    slave.write_register(config.HR_HOST_COMMAND, (1 << config.COIL_OPEN) | (1 << config.COIL_STOP))
    assert not slave.state.moving


def test_esd_sets_alarm_and_stays_put_by_default():
    slave = VirtualSlave(1, initial_position=40.0)
    slave.apply_command(CommandKind.OPEN)
    slave.apply_command(CommandKind.ESD)
    assert not slave.state.moving
    status = decode_status_block(slave.read_registers(0, config.STATUS_BLOCK_COUNT))
    assert "ESD_ACTIVE" in status.alarms
    assert status.label == "ALARM"


def test_esd_go_to_position():
    rng = random.Random(6)
    slave = VirtualSlave(1, initial_position=20.0, speed_setting=100)
    slave.write_register(config.HR_FAILSAFE_POS, pack_bytes(60, FunctionAction.GO_TO_POSITION))
    slave.apply_command(CommandKind.ESD)
    _run_until_idle(slave, rng)
    assert slave.state.position == 60.0


def test_reset_errors_clears_alarms():
    slave = VirtualSlave(1)
    slave.apply_command(CommandKind.ESD)
    slave.write_register(config.HR_RESET_ERRORS, 1)
    assert slave.read_registers(config.HR_ALARMS, 1) == [0]
    assert slave.read_registers(config.HR_RESET_ERRORS, 1) == [0]


def test_partial_stroke_test_passes_and_returns():
    rng = random.Random(7)
    slave = VirtualSlave(1, initial_position=50.0, speed_setting=50)
    assert slave.apply_command(CommandKind.PST)
    _run(slave, rng, 10)
    assert slave.state.position == 40.0
    _run_until_idle(slave, rng)
    assert slave.state.position == 50.0
    assert slave.state.pst_result == PST_PASSED
    assert slave.read_registers(config.HR_PST_RESULT, 1) == [PST_PASSED]


def test_stop_during_partial_stroke_fails_it():
    rng = random.Random(8)
    slave = VirtualSlave(1, initial_position=50.0)
    slave.apply_command(CommandKind.PST)
    _run(slave, rng, 3)
    slave.apply_command(CommandKind.STOP)
    assert slave.state.pst_result == PST_FAILED


def test_pst_refused_while_moving():
    slave = VirtualSlave(1)
    slave.apply_command(CommandKind.OPEN)
    assert not slave.apply_command(CommandKind.PST)


def test_setpoint_register_moves_to_target():
    rng = random.Random(9)
    slave = VirtualSlave(1, speed_setting=100)
    slave.write_register(config.HR_SETPOINT, 2048)
    _run_until_idle(slave, rng)
    assert slave.state.position == pytest.approx(50.0, abs=0.1)
    assert not slave.state.open_limit
    assert not slave.state.close_limit


def test_setup_coil_mirrors_status_bit():
    slave = VirtualSlave(1)
    slave.write_coil(config.COIL_SOFT_SETUP, True)
    word = slave.read_registers(config.HR_STATUS_WORD, 1)[0]
    assert word & (1 << config.STATUS_SETUP)
    assert slave.read_coils(config.COIL_SOFT_SETUP, 1) == [True]


def test_out_of_range_access():
    slave = VirtualSlave(1)
    with pytest.raises(OutOfRangeError):
        slave.read_registers(config.SIM_BANK_SIZE - 2, 5)
    with pytest.raises(OutOfRangeError):
        slave.write_coil(config.SIM_COIL_COUNT, True)


def test_bank_edges():
    slave = VirtualSlave(1)
    assert len(slave.read_registers(0, config.SIM_BANK_SIZE)) == config.SIM_BANK_SIZE
    slave.write_register(config.SIM_BANK_SIZE - 1, 77)
    assert slave.read_registers(config.SIM_BANK_SIZE - 1, 1) == [77]
    assert len(slave.read_coils(0, config.SIM_COIL_COUNT)) == config.SIM_COIL_COUNT
    with pytest.raises(OutOfRangeError):
        slave.read_registers(-1, 1)
    with pytest.raises(OutOfRangeError):
        slave.read_registers(0, 0)
    with pytest.raises(OutOfRangeError):
        slave.write_register(config.SIM_BANK_SIZE, 1)
    with pytest.raises(OutOfRangeError):
        slave.read_coils(config.SIM_COIL_COUNT - 1, 2)


def test_set_alarm_rejects_unknown_name():
    slave = VirtualSlave(1)
    slave.set_alarm("STALL")
    assert slave.read_registers(config.HR_ALARMS, 1) == [1]
    with pytest.raises(ValidationError):
        slave.set_alarm("NOT_AN_ALARM")


def test_product_id_register():
    slave = VirtualSlave(3, product_id=0x8001)
    assert slave.read_registers(config.HR_PRODUCT_ID, 1) == [0x8001]
    assert slave.name == "EHO"


def test_engine_tick_advances_every_slave():
    slaves = [VirtualSlave(1), VirtualSlave(2, initial_position=100.0)]
    engine = SimulationEngine(lambda: slaves, seed=10)
    slaves[0].apply_command(CommandKind.OPEN)
    slaves[1].apply_command(CommandKind.CLOSE)
    for _ in range(5):
        engine.tick()
    assert engine.tick_count == 5
    assert slaves[0].state.position == 5.0
    assert slaves[1].state.position == 95.0


def test_engine_start_and_stop():
    engine = SimulationEngine(lambda: [], tick_interval=0.01)
    assert engine.start()
    assert not engine.start()
    engine.stop()
    assert not engine.running


def test_raw_position_floor_keeps_counts_within_scale():
    slave = VirtualSlave(1, initial_position=100.0)
    assert slave.read_registers(config.HR_POSITION_COUNTS, 1) == [RawScale.COUNTS.full_scale]
    assert slave.read_registers(config.HR_POSITION_PERMILLE, 1) == [1000]


def test_open_during_partial_stroke_fails_it_and_keeps_opening():
    rng = random.Random(11)
    slave = VirtualSlave(1, initial_position=50.0, speed_setting=50)
    slave.apply_command(CommandKind.PST)
    _run(slave, rng, 1)
    assert slave.apply_command(CommandKind.OPEN)
    assert slave.state.pst_result == PST_FAILED

    previous = slave.state.position
    for _ in range(200):
        slave.step(rng)
        assert slave.state.position >= previous
        previous = slave.state.position
    assert slave.state.position == 100.0
    assert slave.state.open_limit
    assert slave.state.pst_result == PST_FAILED


def test_setpoint_during_partial_stroke_fails_it():
    rng = random.Random(12)
    slave = VirtualSlave(1, initial_position=50.0, speed_setting=100)
    slave.apply_command(CommandKind.PST)
    _run(slave, rng, 2)
    slave.write_register(config.HR_SETPOINT, 0)
    _run_until_idle(slave, rng)
    assert slave.state.position == 0.0
    assert slave.state.close_limit
    assert slave.state.pst_result == PST_FAILED


def test_esd_during_partial_stroke_fails_it():
    rng = random.Random(13)
    slave = VirtualSlave(1, initial_position=50.0, speed_setting=100)
    slave.write_register(config.HR_FAILSAFE_POS, pack_bytes(50, FunctionAction.GO_OPEN))
    slave.apply_command(CommandKind.PST)
    _run(slave, rng, 1)
    slave.apply_command(CommandKind.ESD)
    _run_until_idle(slave, rng)
    assert slave.state.position == 100.0
    assert slave.state.pst_result == PST_FAILED
