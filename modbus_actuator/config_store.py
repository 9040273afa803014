# modbus_actuator/config_store.py
"""
Saved system configuration: JSON document and CSV export

Document layout:
    {
      "com_port": "COM3", "baud_rate": 9600, "parity": "N", "stop_bits": 1,
      "actuators": [
        {"slave_id": 1, "device_name": "...", "product_id": 32768,
         "product_name": "S7X", "pst_result": 0,
         "configuration": {"eho_type": "DOUBLE_ACTION", ..., "relays": [...]}}
      ]
    }

Enum fields are stored by member name. Fields the product does not
implement are left out on save and restored from product defaults on load.
"""
import csv
import json
from dataclasses import dataclass, field
from enum import IntEnum

from . import config
from .products import (
    PRODUCT_S7X,
    default_configuration,
    is_field_available,
    is_register_available,
    is_relay_available,
    mask_unavailable,
    product_name,
)
from .register_codec import (
    FIELD_DEFAULTS,
    DeviceConfiguration,
    RelayConfig,
    RelayContactType,
    RelayMode,
    RelayTrigger,
)


@dataclass
class ActuatorEntry:
    slave_id: int
    device_name: str = ""
    product_id: int = PRODUCT_S7X
    pst_result: int = 0
    configuration: DeviceConfiguration = field(default_factory=DeviceConfiguration)


@dataclass
class SystemConfig:
    com_port: str = ""
    baud_rate: int = config.SERIAL_BAUDRATE
    parity: str = config.SERIAL_PARITY
    stop_bits: int = config.SERIAL_STOPBITS
    actuators: list = field(default_factory=list)

    def find(self, slave_id):
        for entry in self.actuators:
            if entry.slave_id == slave_id:
                return entry
        return None


def _enum_by_name(enum_cls, name, default):
    try:
        return enum_cls[name]
    except KeyError:
        return default


def configuration_to_dict(cfg: DeviceConfiguration, product_id=None):
    data = {}
    for name in FIELD_DEFAULTS:
        if product_id is not None and not is_field_available(product_id, name):
            continue
        value = getattr(cfg, name)
        data[name] = value.name if isinstance(value, IntEnum) else int(value)

    data["relays"] = [
        {
            "index": index,
            "trigger": relay.trigger.name,
            "mode": relay.mode.name,
            "contact": relay.contact.name,
        }
        for index, relay in enumerate(cfg.relays)
        if product_id is None or is_relay_available(product_id, index)
    ]
    return data


def configuration_from_dict(data, product_id=None):
    """Inverse of configuration_to_dict; unknown names fall back to defaults"""
    cfg = default_configuration(product_id)
    for name, default in FIELD_DEFAULTS.items():
        if name not in data:
            continue
        current = getattr(cfg, name)
        if isinstance(default, IntEnum):
            setattr(cfg, name, _enum_by_name(type(default), data[name], current))
        else:
            setattr(cfg, name, int(data[name]))

    for item in data.get("relays", []):
        index = int(item.get("index", -1))
        if not 0 <= index < len(cfg.relays):
            continue
        cfg.relays[index] = RelayConfig(
            trigger=_enum_by_name(RelayTrigger, item.get("trigger"), RelayTrigger.LSO),
            mode=_enum_by_name(RelayMode, item.get("mode"), RelayMode.CONTINUOUS),
            contact=_enum_by_name(RelayContactType, item.get("contact"),
                                  RelayContactType.NORMALLY_CLOSED),
        )

    if product_id is not None:
        cfg = mask_unavailable(cfg, product_id)
    return cfg


def entry_to_dict(entry: ActuatorEntry):
    data = {
        "slave_id": entry.slave_id,
        "device_name": entry.device_name,
        "product_id": entry.product_id,
        "product_name": product_name(entry.product_id),
    }
    if is_register_available(entry.product_id, config.HR_PST_RESULT):
        data["pst_result"] = entry.pst_result
    data["configuration"] = configuration_to_dict(entry.configuration, entry.product_id)
    return data


def entry_from_dict(data):
    product_id = data.get("product_id", PRODUCT_S7X)
    return ActuatorEntry(
        slave_id=int(data["slave_id"]),
        device_name=data.get("device_name", ""),
        product_id=product_id,
        pst_result=int(data.get("pst_result", 0)),
        configuration=configuration_from_dict(data.get("configuration", {}), product_id),
    )


def to_dict(cfg: SystemConfig):
    return {
        "com_port": cfg.com_port,
        "baud_rate": cfg.baud_rate,
        "parity": cfg.parity,
        "stop_bits": cfg.stop_bits,
        "actuators": [entry_to_dict(a) for a in cfg.actuators],
    }


def from_dict(data):
    return SystemConfig(
        com_port=data.get("com_port", ""),
        baud_rate=int(data.get("baud_rate", config.SERIAL_BAUDRATE)),
        parity=data.get("parity", config.SERIAL_PARITY),
        stop_bits=int(data.get("stop_bits", config.SERIAL_STOPBITS)),
        actuators=[entry_from_dict(a) for a in data.get("actuators", [])],
    )


def save_system_config(path, cfg: SystemConfig):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(to_dict(cfg), f, indent=2)


def load_system_config(path):
    with open(path, "r", encoding="utf-8") as f:
        return from_dict(json.load(f))


def export_csv(path, cfg: SystemConfig):
    """One row per actuator, configuration fields flattened"""
    names = list(FIELD_DEFAULTS)
    header = ["slave_id", "device_name", "product"] + names + [
        f"relay{i + 1}" for i in range(len(DeviceConfiguration().relays))
    ]
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for entry in cfg.actuators:
            c = entry.configuration
            row = [entry.slave_id, entry.device_name, product_name(entry.product_id)]
            for name in names:
                value = getattr(c, name)
                row.append(value.name if isinstance(value, IntEnum) else value)
            for relay in c.relays:
                row.append(f"{relay.trigger.name}/{relay.mode.name}/{relay.contact.name}")
            writer.writerow(row)
