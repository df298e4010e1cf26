"""
Data passed between the protocol layer and the I/O layer.

A DAVRequest says what to send, a DAVResponse holds what came back.
Neither knows anything about sockets or sessions.
"""
from dataclasses import dataclass, field
from enum import Enum

## status codes a sync run can run into
_REASONS = {
    200: "OK",
    207: "Multi-Status",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    507: "Insufficient Storage",
}


class DAVMethod(Enum):
    REPORT = "REPORT"


@dataclass(frozen=True)
class DAVRequest:
    """
    An HTTP request, ready to be executed by SyncIO or AsyncIO.

    ``url`` is absolute; ``body`` is the encoded XML document, if any.
    """

    method: DAVMethod
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None


@dataclass(frozen=True)
class DAVResponse:
    status: int
    headers: dict[str, str]
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def reason(self) -> str:
        return _REASONS.get(self.status, "Unknown")


@dataclass
class CalendarQueryResult:
    """
    One calendar object as listed in a REPORT answer.

    ``calendar_data`` is only filled in when the report asked for it.
    ``status`` is the per-resource status, 200 unless the server said
    otherwise.
    """

    href: str
    etag: str | None = None
    calendar_data: str | None = None
    status: int = 200


@dataclass
class SyncCollectionResult:
    """
    What one sync-collection REPORT answered.

    ``changed`` are members that are new or changed since the token
    sent, ``deleted`` the hrefs of removed members.  ``truncated`` is
    set when the server answered 507 for the collection itself, that
    is, there is more to fetch starting from ``sync_token``.
    """

    changed: list[CalendarQueryResult] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    sync_token: str | None = None
    truncated: bool = False
