"""Formatting utilities for human-readable metric values."""

import time

BANDWIDTH_ORDERS = ("KB/s", "MB/s", "GB/s", "TB/s")
BYTE_ORDERS = ("B", "KB", "MB", "GB", "TB")


def format_unit_size(value: float, orders: tuple[str, ...]) -> str:
    """Scale `value` by 1024 until it fits the largest sensible unit.

    Args:
        value: Quantity expressed in the first unit of `orders`.
        orders: Unit labels, each 1024 times the previous.

    Returns:
        The value with one decimal and its unit, e.g. "1.5 MB".
    """
    order = 0
    while value >= 1024 and order + 1 < len(orders):
        order += 1
        value = value / 1024
    return f"{value:.1f} {orders[order]}"


def format_bandwidth(kilobytes_per_second: float) -> str:
    """Format a rate given in KB/s."""
    return format_unit_size(kilobytes_per_second, BANDWIDTH_ORDERS)


def format_byte_count(count: float) -> str:
    """Format a size given in bytes."""
    return format_unit_size(count, BYTE_ORDERS)


def format_millisecond(millisecond: int) -> str:
    """Format a duration as mm:ss, or hh:mm:ss from one hour on.

    Durations under a second are shown as one second.
    """
    seconds = millisecond // 1000
    if seconds < 3600:
        return time.strftime("%M:%S", time.gmtime(max(1, seconds)))
    return time.strftime("%H:%M:%S", time.gmtime(seconds))
