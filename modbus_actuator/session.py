# modbus_actuator/session.py
"""
Session: owns the active transport, its devices and the status poller.

Lifecycle is explicit: open(mode) -> switch_mode(mode) ... -> close().
Switching mode tears the old mode down completely (poller stopped,
simulation stopped, devices and virtual slaves cleared, transport
disconnected) before the new transport is created.

Poll results are pushed onto ``Session.results`` (a queue.Queue of
PollResult); consumers decide how to fan them out.
"""
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

from . import config
from .actuator_device import ActuatorDevice
from .errors import ActuatorError, NotConnectedError, NotFoundError, ValidationError
from .logger import EventLogger, LogComponent
from .modbus_master import SerialActuatorMaster, SerialSettings, SimulatedActuatorMaster
from .products import PRODUCT_S7X
from .status_decoder import ActuatorStatus, RawScale


class Mode(Enum):
    SIMULATION = "simulation"
    HARDWARE = "hardware"


@dataclass
class PollResult:
    slave: int
    epoch: int
    status: ActuatorStatus = None
    error: ActuatorError = None
    timestamp: float = field(default_factory=time.time)

    @property
    def ok(self):
        return self.error is None


def _check_interval(interval_ms):
    if interval_ms < config.POLL_INTERVAL_MIN_MS:
        raise ValidationError(
            f"poll interval {interval_ms} ms below minimum {config.POLL_INTERVAL_MIN_MS} ms"
        )
    return interval_ms


class StatusPoller:
    """Polls every device of a session, one at a time, on a fixed interval"""

    def __init__(self, devices_provider, results, epoch, epoch_provider,
                 interval_ms=config.POLL_INTERVAL_MS, logger=None):
        self.devices_provider = devices_provider
        self.results = results
        self.epoch = epoch
        self.epoch_provider = epoch_provider
        self.interval_ms = _check_interval(interval_ms)
        self.logger = logger or EventLogger()

        self.polls = 0
        self.discarded = 0
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and not self._stop_event.is_set()

    @property
    def stopped(self):
        return self._stop_event.is_set()

    def start(self):
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="status-poller")
        self._thread.start()
        self.logger.info(LogComponent.SESSION, f"Polling every {self.interval_ms} ms")

    def stop(self):
        """Halt immediately; an in-flight read finishes but its result is dropped"""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self.logger.info(LogComponent.SESSION, f"Polling stopped after {self.polls} poll(s)")

    def _run(self):
        while not self._stop_event.is_set():
            self.poll_once()
            self._stop_event.wait(self.interval_ms / 1000.0)

    def poll_once(self):
        """Poll each device in turn and publish the results"""
        for device in self.devices_provider():
            if self._stop_event.is_set():
                break
            try:
                result = PollResult(device.slave_address, self.epoch, status=device.poll_status())
            except ActuatorError as e:
                self.logger.warn(
                    LogComponent.SESSION,
                    f"Poll slave {device.slave_address} failed: {e}"
                )
                result = PollResult(device.slave_address, self.epoch, error=e)
            self.polls += 1
            self._publish(result)

    def _publish(self, result):
        if self._stop_event.is_set() or self.epoch_provider() != self.epoch:
            self.discarded += 1
            return
        self.results.put(result)


class Session:
    def __init__(self, logger=None, hardware_factory=SerialActuatorMaster,
                 poll_interval_ms=config.POLL_INTERVAL_MS,
                 sim_tick_ms=config.SIM_TICK_MS, sim_step_size=config.SIM_STEP_SIZE,
                 sim_seed=None, raw_scale=RawScale.COUNTS):
        self.logger = logger or EventLogger()
        self.hardware_factory = hardware_factory
        self.poll_interval_ms = _check_interval(poll_interval_ms)
        self.sim_tick_ms = sim_tick_ms
        self.sim_step_size = sim_step_size
        self.sim_seed = sim_seed
        self.raw_scale = raw_scale

        self.mode = None
        self.master = None
        self.devices = {}
        self.poller = None
        self.results = queue.Queue()
        self.epoch = 0
        self._lock = threading.RLock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def is_open(self):
        return self.master is not None

    @property
    def is_polling(self):
        return self.poller is not None and self.poller.running

    # --- Lifecycle ---

    def open(self, mode: Mode, slaves=None, serial_settings: SerialSettings = None,
             scan_range=None, start_simulation=True):
        """Create the transport for mode and provision its devices.

        slaves: addresses or (address, product_id[, initial_position]) tuples.
        In hardware mode, scan_range=(start, end) polls each bus address instead.
        """
        with self._lock:
            if self.is_open:
                raise ValidationError("session already open, use switch_mode()")
            mode = Mode(mode)
            self.epoch += 1
            self.logger.info(LogComponent.SESSION, f"Opening {mode.value} session")

            self.mode = mode
            try:
                if mode is Mode.SIMULATION:
                    self._open_simulation(slaves or [], start_simulation)
                else:
                    self._open_hardware(slaves or [], serial_settings, scan_range)
            except ActuatorError as e:
                self.logger.error(LogComponent.SESSION, f"Open failed: {e}")
                self._teardown()
                self.mode = None
                raise
            return list(self.devices.values())

    def _open_simulation(self, slaves, start_simulation):
        master = SimulatedActuatorMaster(
            logger=self.logger,
            tick_interval=self.sim_tick_ms / 1000.0,
            step_size=self.sim_step_size,
            seed=self.sim_seed,
        )
        master.connect()
        self.master = master
        for item in slaves:
            address, product_id, position = self._slave_spec(item)
            master.add_slave(address, product_id=product_id, initial_position=position)
            self._add_device(address, product_id)
        if start_simulation:
            master.engine.start()

    def _open_hardware(self, slaves, serial_settings, scan_range):
        master = self.hardware_factory(serial_settings or SerialSettings(), logger=self.logger)
        master.connect()
        self.master = master
        for item in slaves:
            address, product_id, _ = self._slave_spec(item, default_product=None)
            self._add_device(address, product_id)
        if scan_range:
            for address, product_id in master.scan(*scan_range).items():
                if address not in self.devices:
                    self._add_device(address, product_id)

    @staticmethod
    def _slave_spec(item, default_product=PRODUCT_S7X):
        if isinstance(item, int):
            return item, default_product, 0.0
        item = tuple(item)
        address = item[0]
        product_id = item[1] if len(item) > 1 else default_product
        position = item[2] if len(item) > 2 else 0.0
        return address, product_id, position

    def _add_device(self, address, product_id):
        device = ActuatorDevice(
            self.master, address,
            product_id=product_id,
            raw_scale=self.raw_scale,
            logger=self.logger,
        )
        self.devices[address] = device
        return device

    def switch_mode(self, mode: Mode, **kwargs):
        """Tear the current mode down completely, then open mode"""
        with self._lock:
            self._teardown()
            return self.open(mode, **kwargs)

    def close(self):
        with self._lock:
            self._teardown()

    def _teardown(self):
        if not self.is_open:
            return
        self.logger.info(LogComponent.SESSION, f"Closing {self.mode.value} session")
        self.epoch += 1
        self.stop_polling()

        master = self.master
        if isinstance(master, SimulatedActuatorMaster):
            master.engine.stop()
        self.devices.clear()
        if isinstance(master, SimulatedActuatorMaster):
            master.clear_slaves()
        master.disconnect()

        self.master = None
        self.mode = None

    # --- Devices ---

    def _require_open(self):
        if not self.is_open:
            raise NotConnectedError("session is not open")

    def add_device(self, address, product_id=PRODUCT_S7X, initial_position=0.0):
        """Provision a device (a new virtual slave in simulation mode)"""
        with self._lock:
            self._require_open()
            if address in self.devices:
                raise ValidationError(f"slave {address} already present")
            if self.mode is Mode.SIMULATION:
                self.master.add_slave(address, product_id=product_id,
                                      initial_position=initial_position)
            return self._add_device(address, product_id)

    def remove_device(self, address):
        with self._lock:
            self._require_open()
            if address not in self.devices:
                raise NotFoundError(address)
            del self.devices[address]
            if self.mode is Mode.SIMULATION:
                self.master.remove_slave(address)

    def get_device(self, address):
        try:
            return self.devices[address]
        except KeyError:
            raise NotFoundError(address) from None

    def device_list(self):
        with self._lock:
            return list(self.devices.values())

    # --- Polling ---

    def start_polling(self, interval_ms=None):
        with self._lock:
            self._require_open()
            self.stop_polling()
            self.poller = StatusPoller(
                self.device_list,
                self.results,
                self.epoch,
                lambda: self.epoch,
                interval_ms=interval_ms or self.poll_interval_ms,
                logger=self.logger,
            )
            self.poller.start()
            return self.poller

    def stop_polling(self):
        if self.poller is not None:
            self.poller.stop()
            self.poller = None

    def poll_all(self):
        """Poll every device once from the calling thread"""
        self._require_open()
        results = []
        for device in self.device_list():
            try:
                results.append(PollResult(device.slave_address, self.epoch, status=device.poll_status()))
            except ActuatorError as e:
                self.logger.warn(LogComponent.SESSION, f"Poll slave {device.slave_address} failed: {e}")
                results.append(PollResult(device.slave_address, self.epoch, error=e))
        return results

    def drain_results(self):
        """Pop every queued poll result"""
        items = []
        while True:
            try:
                items.append(self.results.get_nowait())
            except queue.Empty:
                return items
