"""Resource quantity helpers."""

from decimal import Decimal

from kubernetes.utils.quantity import parse_quantity


def format_quantity(value: Decimal) -> str:
    """Canonical decimal form: plain integers, otherwise milli units."""
    if value == value.to_integral_value():
        return str(int(value))
    milli = value * 1000
    if milli == milli.to_integral_value():
        return f"{int(milli)}m"
    return format(value.normalize(), "f")


def add_quantity(count: int, existing: str) -> str:
    return format_quantity(Decimal(count) + parse_quantity(existing))


def is_zero(quantity: object) -> bool:
    try:
        return parse_quantity(quantity) == 0
    except ValueError:
        return False
