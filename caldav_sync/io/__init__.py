"""
HTTP transports for the sync protocol: SyncIO (requests) and AsyncIO
(aiohttp).  They only move DAVRequest / DAVResponse objects over the
wire; building and interpreting them is done in caldav_sync.protocol.
"""
from .async_ import AsyncIO
from .base import AsyncIOProtocol
from .base import SyncIOProtocol
from .sync import SyncIO

__all__ = ["AsyncIO", "AsyncIOProtocol", "SyncIO", "SyncIOProtocol"]
