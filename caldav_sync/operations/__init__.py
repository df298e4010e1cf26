"""
Sans-I/O business logic shared by the sync and async coordinators.
"""
from .classify import classify_delta
from .classify import classify_full
from .classify import partition

__all__ = ["classify_delta", "classify_full", "partition"]
