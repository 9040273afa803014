# modbus_actuator/main.py
"""
Command line entry point: simulation demo, bus scan, configuration backup/restore
"""
import argparse
import sys
import time

from serial.tools import list_ports

from . import config
from .config import CommandKind
from .config_store import ActuatorEntry, SystemConfig, load_system_config, save_system_config
from .errors import ActuatorError
from .logger import EventLogger, LogComponent, LogLevel
from .modbus_master import SerialSettings
from .products import PRODUCT_EHO, PRODUCT_NOVA, PRODUCT_S7X, product_name
from .session import Mode, Session

PRODUCTS = {
    "S7X": PRODUCT_S7X,
    "EHO": PRODUCT_EHO,
    "NOVA": PRODUCT_NOVA,
}


def _serial_settings(args):
    return SerialSettings(
        port=args.port,
        baudrate=args.baud,
        parity=args.parity,
        stopbits=args.stopbits,
        timeout=args.timeout,
    )


def _print_status(device):
    s = device.status
    alarms = ", ".join(s.alarms) if s.alarms else "-"
    print(
        f"  [{device.slave_address:3d}] {s.label:8s} pos {s.position:6.2f}%  "
        f"torque {s.torque:6.2f}%  setup {'ON' if s.setup_mode else 'off'}  alarms {alarms}"
    )


def _ports_command(args):
    ports = list(list_ports.comports())
    if not ports:
        print("No serial ports found")
        return 0
    for p in ports:
        print(f"{p.device:12s} {p.description}")
    return 0


def _simulate_command(args, logger):
    slaves = [(i, PRODUCTS[args.product]) for i in range(1, args.devices + 1)]
    with Session(logger=logger, sim_seed=args.seed) as session:
        session.open(Mode.SIMULATION, slaves=slaves)
        if args.issue:
            session.get_device(args.slave).issue_command(CommandKind[args.issue.upper()])

        session.start_polling(args.interval)
        deadline = time.monotonic() + args.seconds
        while time.monotonic() < deadline:
            time.sleep(args.interval / 1000.0)
            results = session.drain_results()
            if not results:
                continue
            print(time.strftime("%H:%M:%S"))
            for result in results:
                if result.ok:
                    _print_status(session.get_device(result.slave))
                else:
                    print(f"  [{result.slave:3d}] {result.error.user_message()}")
    return 0


def _scan_command(args, logger):
    with Session(logger=logger) as session:
        devices = session.open(
            Mode.HARDWARE,
            serial_settings=_serial_settings(args),
            scan_range=(args.start, args.end),
        )
        for device in devices:
            print(f"Slave {device.slave_address}: {product_name(device.product_id)}")
        if not devices:
            print("No devices found")
    return 0


def _read_config_command(args, logger):
    system = SystemConfig(
        com_port=args.port, baud_rate=args.baud, parity=args.parity, stop_bits=args.stopbits
    )
    with Session(logger=logger) as session:
        session.open(Mode.HARDWARE, slaves=args.slave, serial_settings=_serial_settings(args))
        for device in session.device_list():
            device.read_product_id()
            cfg = device.read_configuration()
            status = device.poll_status()
            system.actuators.append(ActuatorEntry(
                slave_id=device.slave_address,
                device_name=device.name,
                product_id=device.product_id,
                pst_result=status.pst_result,
                configuration=cfg,
            ))
            print(f"Slave {device.slave_address}: {product_name(device.product_id)} read")
    save_system_config(args.output, system)
    print(f"Saved {len(system.actuators)} actuator(s) to {args.output}")
    return 0


def _write_config_command(args, logger):
    system = load_system_config(args.input)
    settings = SerialSettings(
        port=args.port or system.com_port or config.SERIAL_PORT,
        baudrate=system.baud_rate,
        parity=system.parity,
        stopbits=system.stop_bits,
        timeout=args.timeout,
    )
    entries = [a for a in system.actuators if not args.slave or a.slave_id in args.slave]
    with Session(logger=logger) as session:
        session.open(
            Mode.HARDWARE,
            slaves=[(a.slave_id, a.product_id) for a in entries],
            serial_settings=settings,
        )
        for entry in entries:
            device = session.get_device(entry.slave_id)
            written = device.write_configuration(entry.configuration)
            device.write_calibration(entry.configuration)
            print(f"Slave {entry.slave_id}: {len(written)} registers written")
    return 0


def _send_command(args, logger):
    with Session(logger=logger) as session:
        session.open(Mode.HARDWARE, slaves=[args.slave], serial_settings=_serial_settings(args))
        device = session.get_device(args.slave)
        if args.kind == "setup":
            device.poll_status()
            device.toggle_setup_mode()
        else:
            device.issue_command(CommandKind[args.kind.upper()])
        device.poll_status()
        _print_status(device)
    return 0


def _add_serial_args(parser, port_default=config.SERIAL_PORT):
    parser.add_argument("--port", default=port_default, help="Serial port, e.g. COM3 or /dev/ttyUSB0")
    parser.add_argument("--baud", type=int, default=config.SERIAL_BAUDRATE, choices=config.AVAILABLE_BAUDRATES)
    parser.add_argument("--parity", default=config.SERIAL_PARITY, choices=["N", "E", "O"])
    parser.add_argument("--stopbits", type=int, default=config.SERIAL_STOPBITS, choices=[1, 2])
    parser.add_argument("--timeout", type=float, default=config.SERIAL_TIMEOUT, help="Response timeout in seconds")


def _echo_entry(entry):
    if entry.level is not LogLevel.INFO:
        print(entry.format(), file=sys.stderr)


def build_parser():
    parser = argparse.ArgumentParser(description="Modbus actuator configuration and monitoring")
    parser.add_argument("--log-file", help="Export the event log here on exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Echo warnings and errors as they are logged")
    sub = parser.add_subparsers(dest="subcommand", required=True)

    p = sub.add_parser("ports", help="List serial ports")
    p.set_defaults(func=lambda args, logger: _ports_command(args))

    p = sub.add_parser("simulate", help="Run simulated actuators and print their status")
    p.add_argument("--devices", type=int, default=3)
    p.add_argument("--product", default="S7X", choices=sorted(PRODUCTS))
    p.add_argument("--seconds", type=float, default=10.0)
    p.add_argument("--interval", type=int, default=config.POLL_INTERVAL_MS, help="Poll interval in ms")
    p.add_argument("--issue", choices=["open", "close", "stop", "esd", "pst"], help="Command sent before polling")
    p.add_argument("--slave", type=int, default=1, help="Slave receiving --issue")
    p.add_argument("--seed", type=int, default=None)
    p.set_defaults(func=_simulate_command)

    p = sub.add_parser("scan", help="Search the bus for actuators")
    _add_serial_args(p)
    p.add_argument("--start", type=int, default=config.SCAN_START_DEFAULT)
    p.add_argument("--end", type=int, default=config.SCAN_END_DEFAULT)
    p.set_defaults(func=_scan_command)

    p = sub.add_parser("read-config", help="Back up actuator configuration to JSON")
    _add_serial_args(p)
    p.add_argument("--slave", type=int, nargs="+", required=True)
    p.add_argument("--output", required=True)
    p.set_defaults(func=_read_config_command)

    p = sub.add_parser("write-config", help="Restore actuator configuration from JSON")
    _add_serial_args(p, port_default=None)
    p.add_argument("--input", required=True)
    p.add_argument("--slave", type=int, nargs="*", help="Limit to these slaves")
    p.set_defaults(func=_write_config_command)

    p = sub.add_parser("command", help="Send a command to one actuator")
    _add_serial_args(p)
    p.add_argument("--slave", type=int, required=True)
    p.add_argument("kind", choices=["open", "close", "stop", "esd", "pst", "setup"])
    p.set_defaults(func=_send_command)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = EventLogger()
    if args.verbose:
        logger.subscribe(_echo_entry)
    logger.info(LogComponent.SYSTEM, f"Command: {args.subcommand}")

    try:
        return args.func(args, logger)
    except ActuatorError as e:
        logger.error(LogComponent.SYSTEM, str(e))
        print(f"Error: {e.user_message()}")
        return 2
    finally:
        if args.log_file:
            logger.export_to_file(args.log_file)


if __name__ == "__main__":
    sys.exit(main())
