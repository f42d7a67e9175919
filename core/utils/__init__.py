"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Epoch-millisecond clocks and ISO-8601 stamps
"""

from core.utils.time import current_utc_millis, utc_now_iso

__all__ = ["current_utc_millis", "utc_now_iso"]
