import pytest

from modbus_actuator.main import build_parser, main


def test_simulate_prints_status(capsys, tmp_path):
    log_file = tmp_path / "events.log"
    code = main([
        "--log-file", str(log_file),
        "simulate", "--devices", "2", "--seconds", "0.5", "--interval", "100",
        "--seed", "1", "--issue", "open",
    ])
    out = capsys.readouterr().out
    assert code == 0
    assert "[  1]" in out
    assert "[  2]" in out
    assert "Command: simulate" in log_file.read_text(encoding="utf-8")


def test_invalid_interval_reports_error(capsys):
    code = main(["simulate", "--seconds", "0.1", "--interval", "50"])
    out = capsys.readouterr().out
    assert code == 2
    assert out.startswith("Error: Invalid parameter")


def test_parser_requires_subcommand():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_command_choices():
    args = build_parser().parse_args(["command", "--slave", "3", "--port", "COM7", "esd"])
    assert args.kind == "esd"
    assert args.slave == 3
    assert args.port == "COM7"
    with pytest.raises(SystemExit):
        build_parser().parse_args(["command", "--slave", "3", "explode"])


def test_verbose_echoes_errors_to_stderr(capsys):
    code = main(["--verbose", "simulate", "--seconds", "0.1", "--interval", "50"])
    err = capsys.readouterr().err
    assert code == 2
    assert " ERROR SYSTEM " in err
    assert "Command: simulate" not in err
