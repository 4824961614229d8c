"""Utility modules for the shuffler."""

from shuffler.utils.locks import ForwardingLock, get_address_lock, release_address_lock
from shuffler.utils.scheduler import AsyncioClock, Clock, RepeatingTask

__all__ = [
    "AsyncioClock",
    "Clock",
    "ForwardingLock",
    "RepeatingTask",
    "get_address_lock",
    "release_address_lock",
]
