"""
Pure functions for building the REPORT bodies used for synchronization.

All functions in this module are pure - they take data in and return XML out,
with no side effects or I/O.
"""
from typing import List
from typing import Optional

from caldav_sync.elements import cdav
from caldav_sync.elements import dav
from caldav_sync.elements.base import BaseElement


def _sync_props(load_data: bool) -> BaseElement:
    props: List[BaseElement] = [dav.GetEtag()]
    if load_data:
        props.append(cdav.CalendarData())
    return dav.Prop() + props


def build_sync_collection_body(
    sync_token: Optional[str] = None,
    load_data: bool = False,
    sync_level: str = "1",
    limit: Optional[int] = None,
) -> bytes:
    """
    Build sync-collection REPORT request body (RFC 6578 section 3.2).

    An empty sync token asks the server for the complete collection
    together with a fresh token.

    Args:
        sync_token: Previous sync token (None or empty for initial sync)
        load_data: Ask for calendar-data in addition to the etag
        sync_level: Sync level (usually "1")
        limit: Ask the server to truncate the result after this many
            responses

    Returns:
        UTF-8 encoded XML bytes
    """
    elements: List[BaseElement] = [
        dav.SyncToken(sync_token or ""),
        dav.SyncLevel(sync_level),
    ]
    if limit:
        elements.append(dav.Limit() + dav.NResults(str(limit)))
    elements.append(_sync_props(load_data))

    return (dav.SyncCollection() + elements).tostring()


def build_calendar_query_body(load_data: bool = False) -> bytes:
    """
    Build a calendar-query REPORT matching every object in a calendar.

    Used to enumerate etags on servers without sync-collection support.

    Returns:
        UTF-8 encoded XML bytes
    """
    filter_elem = cdav.Filter() + cdav.CompFilter("VCALENDAR")
    root = cdav.CalendarQuery() + [_sync_props(load_data), filter_elem]
    return root.tostring()
