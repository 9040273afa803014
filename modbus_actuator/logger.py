# modbus_actuator/logger.py
"""
Event log shared by the master, devices, simulator and session

Entries are kept as records so the CLI can filter them by level,
component or slave, and listeners see each entry as it is added.
"""
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from . import config


class LogLevel(Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class LogComponent(Enum):
    MODBUS = "MODBUS"
    DEVICE = "DEVICE"
    SIM = "SIM"
    SESSION = "SESSION"
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str
    slave: int = None

    def format(self):
        where = f"[{self.slave:3d}] " if self.slave is not None else ""
        return (
            f"[{self.timestamp.strftime('%H:%M:%S.%f')[:-3]}] "
            f"{self.level.value:5s} {self.component.value:8s} {where}{self.message}"
        )


class EventLogger:
    def __init__(self, max_lines=config.LOG_MAX_LINES):
        self.max_lines = max_lines
        self._entries = deque(maxlen=max_lines)
        self._listeners = []
        self._lock = threading.Lock()

    def add_log(self, level: LogLevel, component: LogComponent, message: str, slave=None):
        """Add a log entry and return its formatted line"""
        entry = LogEntry(datetime.now(), level, component, message, slave)
        with self._lock:
            self._entries.append(entry)
            listeners = list(self._listeners)
        for listener in listeners:
            listener(entry)
        return entry.format()

    def info(self, component: LogComponent, message: str, slave=None):
        return self.add_log(LogLevel.INFO, component, message, slave)

    def warn(self, component: LogComponent, message: str, slave=None):
        return self.add_log(LogLevel.WARN, component, message, slave)

    def error(self, component: LogComponent, message: str, slave=None):
        return self.add_log(LogLevel.ERROR, component, message, slave)

    def subscribe(self, listener):
        """Call listener(entry) for every entry added from now on"""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def get_entries(self, level: LogLevel = None, component: LogComponent = None, slave=None):
        """Entries matching every filter given, oldest first"""
        with self._lock:
            entries = list(self._entries)
        return [
            e for e in entries
            if (level is None or e.level is level)
            and (component is None or e.component is component)
            and (slave is None or e.slave == slave)
        ]

    def get_logs(self, level: LogLevel = None, component: LogComponent = None, slave=None):
        return [e.format() for e in self.get_entries(level, component, slave)]

    def get_all_logs(self):
        return self.get_logs()

    def counts(self):
        """Number of retained entries per level"""
        entries = self.get_entries()
        return {level: sum(1 for e in entries if e.level is level) for level in LogLevel}

    def clear(self):
        with self._lock:
            self._entries.clear()

    def export_to_file(self, filepath) -> bool:
        """Export the log to a text file; False (and an ERROR entry) on failure"""
        entries = self.get_entries()
        counts = self.counts()
        try:
            with open(filepath, 'w', encoding='utf-8') as f:
                f.write("=" * 80 + "\n")
                f.write("ACTUATOR MODBUS - EVENT LOG\n")
                f.write(f"Exported: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
                f.write("=" * 80 + "\n\n")

                for entry in entries:
                    f.write(entry.format() + "\n")

                f.write("\n" + "=" * 80 + "\n")
                f.write(
                    f"Total entries: {len(entries)} "
                    f"(warnings: {counts[LogLevel.WARN]}, errors: {counts[LogLevel.ERROR]})\n"
                )
            return True
        except OSError as e:
            print(f"Export error: {e}")
            self.error(LogComponent.SYSTEM, f"Log export to {filepath} failed: {e}")
            return False
