# modbus_actuator/products.py
"""
Product identifiers and per-product register/bit availability
"""
from .register_codec import (
    FIELD_DEFAULTS, RELAY_COUNT, DeviceConfiguration, EhoType, NetworkAdapter,
    field_location, relay_location,
)

PRODUCT_S7X = 0x8000
PRODUCT_EHO = 0x8001
PRODUCT_NOVA = 0x8002

PRODUCT_NAMES = {
    PRODUCT_S7X: "S7X",
    PRODUCT_EHO: "EHO",
    PRODUCT_NOVA: "Nova",
}

# Whole registers a product does not implement
_UNAVAILABLE_REGISTERS = {
    PRODUCT_EHO: {24, 26, 28, 103, 104, 105, 106, 112, 113, 114, 115,
                  500, 501, 502, 503, 504, 505, 506, 507},
    PRODUCT_S7X: {16, 28, 29, 105, 106, 502, 503, 506, 507},
    PRODUCT_NOVA: set(),
}

# (register, bit) pairs a product does not implement
_UNAVAILABLE_BITS = {
    PRODUCT_EHO: {
        (0, 1), (0, 3), (1, 15), (2, 0), (2, 15), (3, 2), (3, 3), (3, 10),
        (4, 0), (4, 1), (4, 2), (4, 3), (4, 5), (4, 6), (4, 7), (4, 8), (4, 11),
        (11, 6), (11, 8), (11, 14), (11, 15),
        (12, 0), (12, 1), (12, 2), (12, 4), (12, 5), (12, 7), (12, 8),
        (12, 9), (12, 10), (12, 11), (12, 12), (12, 13),
    },
    PRODUCT_S7X: {
        (0, 14), (4, 4), (4, 5), (4, 6), (4, 7), (4, 8), (4, 11), (4, 12), (4, 13),
        (10, 3), (10, 4),
        (11, 0), (11, 3), (11, 6), (11, 8), (11, 11), (11, 12), (11, 13),
        (12, 2), (12, 4), (12, 5), (12, 6), (12, 7), (12, 8), (12, 9),
        (12, 10), (12, 11),
    },
    PRODUCT_NOVA: {(0, 14), (3, 10), (11, 0)},
}

# Relay 9 lives in the lower half of register 107
_NO_RELAY_9 = {PRODUCT_EHO, PRODUCT_S7X}


def product_name(product_id):
    """Display name, 'Unknown (0x....)' for unrecognised identifiers"""
    if product_id is None:
        return "Unknown"
    return PRODUCT_NAMES.get(product_id, f"Unknown (0x{product_id:04X})")


def is_known_product(product_id):
    return product_id in PRODUCT_NAMES


def is_register_available(product_id, register):
    """Unknown products get full access"""
    return register not in _UNAVAILABLE_REGISTERS.get(product_id, ())


def is_bit_available(product_id, register, bit):
    if not is_register_available(product_id, register):
        return False
    return (register, bit) not in _UNAVAILABLE_BITS.get(product_id, ())


def available_bits(product_id, register, total_bits=16):
    return [b for b in range(total_bits) if is_bit_available(product_id, register, b)]


def has_relay_9(product_id):
    return product_id not in _NO_RELAY_9


def relay_count(product_id):
    """Number of configurable output relays"""
    if not is_register_available(product_id, 103):
        return 0
    count = sum(2 for reg in range(103, 107) if is_register_available(product_id, reg))
    return count + (1 if has_relay_9(product_id) else 0)


def default_configuration(product_id):
    """Power-on configuration for a product"""
    cfg = DeviceConfiguration()
    if product_id == PRODUCT_EHO:
        cfg.eho_type = EhoType.SPRING_RETURN
    elif product_id == PRODUCT_NOVA:
        cfg.network_adapter = NetworkAdapter.MODBUS_BUS
    return cfg


def is_field_available(product_id, name):
    register, bit = field_location(name)
    if bit is None:
        return is_register_available(product_id, register)
    return is_bit_available(product_id, register, bit)


def is_relay_available(product_id, index):
    register, _ = relay_location(index)
    if index == RELAY_COUNT - 1:
        return has_relay_9(product_id) and is_register_available(product_id, register)
    return is_register_available(product_id, register)


def mask_unavailable(cfg: DeviceConfiguration, product_id):
    """Copy of cfg with fields the product lacks reset to its defaults"""
    defaults = default_configuration(product_id)
    masked = cfg.copy()
    for name in FIELD_DEFAULTS:
        if not is_field_available(product_id, name):
            setattr(masked, name, getattr(defaults, name))
    masked.relays = [
        relay if is_relay_available(product_id, i) else defaults.relays[i]
        for i, relay in enumerate(masked.relays)
    ]
    return masked
