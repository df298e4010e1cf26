"""
What DAVRemote / AsyncDAVRemote expect from a transport.  SyncIO and
AsyncIO are the implementations shipped here; tests pass mocks.
"""
from typing import Protocol, runtime_checkable

from caldav_sync.protocol.types import DAVRequest, DAVResponse


@runtime_checkable
class SyncIOProtocol(Protocol):
    """
    Connection problems must be raised as
    ``caldav_sync.lib.error.TransportError`` subclasses; HTTP error
    statuses are returned, not raised.
    """

    def execute(self, request: DAVRequest) -> DAVResponse:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class AsyncIOProtocol(Protocol):
    async def execute(self, request: DAVRequest) -> DAVResponse:
        ...

    async def close(self) -> None:
        ...
