"""
Timezone handling utilities for consistent UTC storage and elapsed-time math
"""
from datetime import datetime, timezone
import time


def utc_now():
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def utc_timestamp_ms():
    """Get current UTC timestamp as epoch milliseconds"""
    return int(time.time() * 1000)


def format_utc_for_db():
    """Get UTC timestamp formatted for database storage"""
    return utc_now().isoformat()


def parse_utc_string(utc_string):
    """Parse UTC string back to datetime object"""
    if utc_string.endswith('Z'):
        utc_string = utc_string[:-1] + '+00:00'
    return datetime.fromisoformat(utc_string)


def elapsed_ms_since(start_ms=None, created_at=None):
    """
    Milliseconds elapsed since start_ms (epoch ms), falling back to the
    created_at ISO string. Never less than 1 so a finished run always has a time.
    """
    now_ms = utc_timestamp_ms()
    if start_ms is None and created_at:
        try:
            start_ms = int(parse_utc_string(created_at).timestamp() * 1000)
        except ValueError:
            start_ms = None
    if start_ms is None:
        return 1
    return max(1, now_ms - int(start_ms))
