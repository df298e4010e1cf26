#!/usr/bin/env python
import logging
import os
from typing import Optional
from typing import TYPE_CHECKING

from caldav_sync import __version__

if TYPE_CHECKING:
    from caldav_sync.types import BatchResult

## Environmental variables prepended with "PYTHON_CALDAV_SYNC" are used for debug purposes,
## environmental variables prepended with "CALDAV_" are for connection parameters
debug_dump_communication = bool(os.environ.get("PYTHON_CALDAV_SYNC_COMMDUMP", False))
## one of DEBUG, DEVELOPMENT, PRODUCTION
debugmode = os.environ.get("PYTHON_CALDAV_SYNC_DEBUGMODE")
if not debugmode:
    if "dev" in __version__:
        debugmode = "DEVELOPMENT"
    else:
        debugmode = "PRODUCTION"

log = logging.getLogger("caldav_sync")
if debugmode.startswith("DEBUG"):
    log.setLevel(logging.DEBUG)
else:
    log.setLevel(logging.WARNING)


def errmsg(response) -> str:
    """Utility for formatting an error response to an error string"""
    body = response.body.decode("utf-8", errors="replace") if response.body else ""
    return "%s %s\n\n%s" % (response.status, response.reason, body)


class SyncError(Exception):
    url: Optional[str] = None
    reason: str = "no reason"

    def __init__(self, url: Optional[str] = None, reason: Optional[str] = None) -> None:
        if url:
            self.url = url
        if reason:
            self.reason = reason

    def __str__(self) -> str:
        return "%s at '%s', reason %s" % (
            self.__class__.__name__,
            self.url,
            self.reason,
        )


class TokenInvalid(SyncError):
    """
    The server no longer accepts the sync token (RFC 6578
    DAV:valid-sync-token precondition).  The coordinator handles this
    by doing a full resynchronization; it is never a hard failure.
    """

    pass


class TransportError(SyncError):
    """
    Connectivity, authorization or server failure.  The stored token
    must be left as it is so that a later run can retry.
    """

    pass


class AuthorizationError(TransportError):
    """
    The server answered 401 or 403 without a sync-token precondition.
    """

    pass


class NotFoundError(TransportError):
    pass


class ServerError(TransportError):
    pass


class ResponseError(TransportError):
    pass


class SyncNotSupported(ResponseError):
    """
    The server does not implement the sync-collection REPORT on this
    collection.
    """

    pass


class ConnectionFailure(TransportError):
    pass


class RequestTimeout(TransportError):
    pass


class SyncCancelled(SyncError):
    reason = "cancelled by caller"


class StoreError(SyncError):
    pass


class PartialBatchFailure(SyncError):
    """
    Raised by BatchResult.raise_for_failures().  The successful part of
    the batch is still available through the ``batch`` attribute.
    """

    def __init__(self, batch: "BatchResult") -> None:
        self.batch = batch
        failed = sorted(batch.failed)
        super().__init__(
            url=None,
            reason="%i of %i collections failed: %s"
            % (len(failed), len(batch), ", ".join(failed)),
        )

    def __str__(self) -> str:
        return "%s: %s" % (self.__class__.__name__, self.reason)
