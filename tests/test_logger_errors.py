from modbus_actuator.errors import (
    ActuatorError,
    CommunicationError,
    NotConnectedError,
    NotFoundError,
    OutOfRangeError,
    TransportError,
    ValidationError,
)
from modbus_actuator.logger import EventLogger, LogComponent, LogLevel


def test_log_entry_format():
    logger = EventLogger()
    entry = logger.info(LogComponent.MODBUS, "Connected")
    assert " INFO  MODBUS   Connected" in entry
    assert logger.get_all_logs() == [entry]


def test_log_is_bounded():
    logger = EventLogger(max_lines=3)
    for i in range(5):
        logger.info(LogComponent.SYSTEM, f"line {i}")
    logs = logger.get_all_logs()
    assert len(logs) == 3
    assert logs[0].endswith("line 2")


def test_log_filters():
    logger = EventLogger()
    logger.info(LogComponent.SIM, "tick")
    logger.warn(LogComponent.DEVICE, "slow")
    logger.error(LogComponent.DEVICE, "failed")
    assert len(logger.get_logs(component=LogComponent.DEVICE)) == 2
    assert len(logger.get_logs(level=LogLevel.ERROR)) == 1
    assert logger.get_logs(level=LogLevel.WARN, component=LogComponent.SIM) == []
    logger.clear()
    assert logger.get_all_logs() == []


def test_export_to_file(tmp_path):
    logger = EventLogger()
    logger.info(LogComponent.SESSION, "Opening simulation session")
    logger.warn(LogComponent.DEVICE, "slow reply", slave=4)
    path = tmp_path / "events.log"
    assert logger.export_to_file(path)
    text = path.read_text(encoding="utf-8")
    assert "Opening simulation session" in text
    assert "[  4] slow reply" in text
    assert "Total entries: 2 (warnings: 1, errors: 0)" in text


def test_export_failure_is_reported_and_logged(tmp_path, capsys):
    logger = EventLogger()
    assert not logger.export_to_file(tmp_path)
    assert "Export error" in capsys.readouterr().out
    errors = logger.get_entries(level=LogLevel.ERROR)
    assert len(errors) == 1
    assert errors[0].component is LogComponent.SYSTEM


def test_entries_filter_by_slave_and_notify_listeners():
    logger = EventLogger()
    seen = []
    logger.subscribe(seen.append)
    logger.info(LogComponent.DEVICE, "configuration read", slave=2)
    logger.info(LogComponent.DEVICE, "configuration read", slave=5)
    logger.unsubscribe(seen.append)
    logger.error(LogComponent.MODBUS, "timeout", slave=5)

    assert [e.slave for e in seen] == [2, 5]
    assert [e.message for e in logger.get_entries(slave=5)] == ["configuration read", "timeout"]
    assert logger.counts() == {LogLevel.INFO: 2, LogLevel.WARN: 0, LogLevel.ERROR: 1}


def test_error_messages_name_the_corrective_action():
    not_connected = NotConnectedError("no active transport").user_message()
    not_found = NotFoundError(12).user_message()
    comm = CommunicationError("timeout").user_message()

    assert not_connected.startswith("Not connected")
    assert "Connect first" in not_connected
    assert not_found.startswith("Device not found")
    assert "slave 12" in not_found
    assert "slave address" in not_found
    assert comm.startswith("Communication failed")
    assert "wiring" in comm


def test_error_hierarchy():
    assert issubclass(NotConnectedError, TransportError)
    assert issubclass(CommunicationError, TransportError)
    assert issubclass(OutOfRangeError, ActuatorError)
    assert issubclass(ValidationError, ValueError)
    assert NotFoundError(3, "gone").slave == 3
