"""
Sans-I/O handling of the sync-collection REPORT (RFC 6578) and the
calendar-query REPORT used to emulate it.

Nothing in here does I/O: requests are built as DAVRequest objects,
responses come in as DAVResponse objects and go out as result
dataclasses or exceptions.

    protocol = SyncProtocol(base_url="https://cal.example.com")
    request = protocol.sync_collection_request("/calendars/user/work/", token)
    response = SyncIO().execute(request)
    result = protocol.parse_sync_collection(response, "/calendars/user/work/")
"""
from .operations import SyncProtocol
from .types import CalendarQueryResult
from .types import DAVMethod
from .types import DAVRequest
from .types import DAVResponse
from .types import SyncCollectionResult
from .xml_builders import build_calendar_query_body
from .xml_builders import build_sync_collection_body
from .xml_parsers import normalize_href
from .xml_parsers import parse_calendar_query_response
from .xml_parsers import parse_error_conditions
from .xml_parsers import parse_sync_collection_response

__all__ = [
    "CalendarQueryResult",
    "DAVMethod",
    "DAVRequest",
    "DAVResponse",
    "SyncCollectionResult",
    "SyncProtocol",
    "build_calendar_query_body",
    "build_sync_collection_body",
    "normalize_href",
    "parse_calendar_query_response",
    "parse_error_conditions",
    "parse_sync_collection_response",
]
