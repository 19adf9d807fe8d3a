"""
Core Module Package.

Infrastructure shared by every engine package.

Components:
- clock: Unified time abstraction
"""

from .clock import ClockProtocol, SystemClock, MockClock, get_clock, set_clock


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "get_clock",
    "set_clock",
]
