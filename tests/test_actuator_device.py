import pytest

from modbus_actuator import config
from modbus_actuator.actuator_device import ActuatorDevice
from modbus_actuator.config import CommandKind
from modbus_actuator.errors import NotConnectedError, NotFoundError, ValidationError
from modbus_actuator.modbus_master import SimulatedActuatorMaster
from modbus_actuator.products import PRODUCT_EHO, PRODUCT_NOVA, PRODUCT_S7X
from modbus_actuator.register_codec import (
    ControlMode,
    EnabledState,
    RelayConfig,
    RelayMode,
    RelayTrigger,
)


def _bus(*slaves):
    master = SimulatedActuatorMaster(seed=42)
    master.connect()
    for address, product_id, position in slaves:
        master.add_slave(address, product_id=product_id, initial_position=position)
    return master


def _tick(master, count):
    for _ in range(count):
        master.engine.tick()


def test_poll_status_reads_simulated_slave():
    master = _bus((1, PRODUCT_S7X, 100.0))
    device = ActuatorDevice(master, 1)
    status = device.poll_status()
    assert status.position == 100.0
    assert status.open_limit
    assert status.remote_mode
    assert device.product_id == PRODUCT_S7X
    assert device.status is status


def test_unknown_slave_leaves_cache_unchanged():
    master = _bus((1, PRODUCT_S7X, 0.0))
    device = ActuatorDevice(master, 1)
    before = device.poll_status()
    device.slave_address = 9
    with pytest.raises(NotFoundError):
        device.read_configuration()
    with pytest.raises(NotFoundError):
        device.poll_status()
    assert device.status is before
    assert device.configuration is None


def test_configuration_write_read_round_trip():
    master = _bus((2, PRODUCT_NOVA, 0.0))
    device = ActuatorDevice(master, 2, product_id=PRODUCT_NOVA)
    cfg = device.read_configuration()

    cfg.control_mode = ControlMode.NETWORK
    cfg.deadband = 15
    cfg.open_inhibit = EnabledState.ENABLED
    cfg.relays[8] = RelayConfig(RelayTrigger.MOVING, RelayMode.FLASHING)
    cfg.close_torque = 35
    cfg.open_torque = 95
    cfg.close_speed_control_ratio = 25
    cfg.ao2_zero = 100

    written = device.write_configuration(cfg)
    assert written[:2] == [config.HR_FUNCTION, config.HR_ENABLE]
    assert len(written) == 17
    assert len(device.write_calibration(cfg)) == 8

    assert device.read_configuration() == cfg


def test_configuration_skips_registers_product_lacks():
    master = _bus((3, PRODUCT_EHO, 0.0))
    device = ActuatorDevice(master, 3, product_id=PRODUCT_EHO)
    cfg = device.read_configuration()
    cfg.close_torque = 30
    written = device.write_configuration(cfg)
    assert config.HR_TORQUE not in written
    assert 103 not in written
    assert device.write_calibration(cfg) == []
    assert device.read_configuration().close_torque == 50


def test_torque_limit_follows_configuration():
    master = _bus((1, PRODUCT_S7X, 0.0))
    device = ActuatorDevice(master, 1)
    assert device.torque_limit == 100.0
    device.read_configuration()
    assert device.torque_limit == config.SIM_TORQUE_LIMIT_DEFAULT
    device.set_torque_limits(30, 45)
    assert device.torque_limit == 45.0
    with pytest.raises(ValidationError):
        device.set_torque_limits(10, 50)


def test_open_command_moves_actuator():
    master = _bus((1, PRODUCT_S7X, 0.0))
    device = ActuatorDevice(master, 1)
    device.open()
    first = device.poll_status()
    assert first.label == "OPENING"

    previous = first.position
    for _ in range(10):
        _tick(master, 1)
        position = device.poll_status().position
        assert position > previous
        previous = position


def test_stop_and_close_commands():
    master = _bus((1, PRODUCT_S7X, 50.0))
    device = ActuatorDevice(master, 1)
    device.close()
    _tick(master, 5)
    device.stop()
    status = device.poll_status()
    assert not status.moving
    assert status.label == "STOPPED"
    assert status.position == pytest.approx(45.0, abs=0.05)


def test_issue_command_requires_connection():
    master = SimulatedActuatorMaster(seed=1)
    master.add_slave(1)
    device = ActuatorDevice(master, 1)
    with pytest.raises(NotConnectedError):
        device.issue_command(CommandKind.OPEN)


def test_emergency_shutdown_raises_alarm():
    master = _bus((1, PRODUCT_S7X, 20.0))
    device = ActuatorDevice(master, 1)
    device.emergency_shutdown()
    status = device.poll_status()
    assert "ESD_ACTIVE" in status.alarms
    assert status.label == "ALARM"


def test_toggle_setup_mode():
    master = _bus((1, PRODUCT_S7X, 0.0))
    device = ActuatorDevice(master, 1)
    device.poll_status()
    assert device.toggle_setup_mode().setup_mode
    assert not device.toggle_setup_mode().setup_mode


def test_move_to_position():
    master = _bus((1, PRODUCT_S7X, 0.0))
    device = ActuatorDevice(master, 1)
    device.move_to_position(25)
    _tick(master, 60)
    status = device.poll_status()
    assert status.position == pytest.approx(25.0, abs=0.1)
    with pytest.raises(ValidationError):
        device.move_to_position(101)


def test_read_product_id_and_status_dict():
    master = _bus((6, PRODUCT_EHO, 0.0))
    device = ActuatorDevice(master, 6, name="Tank inlet")
    assert device.read_product_id() == PRODUCT_EHO
    device.poll_status()
    data = device.get_status_dict()
    assert data["product"] == "EHO"
    assert data["name"] == "Tank inlet"
    assert data["label"] == "CLOSED"


def test_invalid_slave_address_rejected():
    with pytest.raises(ValidationError):
        ActuatorDevice(SimulatedActuatorMaster(), 0)
