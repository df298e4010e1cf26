"""
Pure functions for parsing the XML responses of the sync layer.

All functions in this module are pure - they take XML bytes in and return
structured data out, with no side effects or I/O.
"""

import logging
from urllib.parse import unquote
from urllib.parse import urlsplit

from lxml import etree
from lxml.etree import _Element

from caldav_sync.elements import cdav, dav
from caldav_sync.lib import error

from .types import CalendarQueryResult, SyncCollectionResult

log = logging.getLogger(__name__)


def parse_sync_collection_response(
    body: bytes,
    status_code: int = 207,
    huge_tree: bool = False,
    collection_path: str | None = None,
) -> SyncCollectionResult:
    """
    Parse a sync-collection REPORT response.

    Args:
        body: Raw XML response bytes
        status_code: HTTP status code of the response
        huge_tree: Allow parsing very large XML documents
        collection_path: Path of the synced collection.  A response for
            the collection itself is not a member; with status 507 it
            means the result was truncated (RFC 6578 section 3.6).

    Returns:
        SyncCollectionResult with changed items, deleted hrefs, and new sync token
    """
    if status_code not in (200, 207):
        raise error.ResponseError(reason=f"sync-collection failed with status {status_code}")

    if not body:
        return SyncCollectionResult()

    tree = _parse_xml(body, huge_tree)
    own_path = normalize_href(collection_path).rstrip("/") if collection_path else None

    result = SyncCollectionResult()
    for elem in _strip_to_multistatus(tree):
        if elem.tag == dav.SyncToken.tag:
            result.sync_token = (elem.text or "").strip() or None
            continue

        if elem.tag != dav.Response.tag:
            continue

        href, propstats, status = _parse_response_element(elem)
        code = _status_to_code(status) if status else None

        if code == 507 or (own_path is not None and href.rstrip("/") == own_path):
            if code == 507:
                log.debug("sync-collection result truncated by the server")
                result.truncated = True
            continue

        if code == 404 or (code is None and _all_propstats_missing(propstats)):
            result.deleted.append(href)
            continue

        etag, calendar_data = _extract_etag_and_data(propstats)
        result.changed.append(
            CalendarQueryResult(
                href=href,
                etag=etag,
                calendar_data=calendar_data,
                status=code or 200,
            )
        )

    return result


def parse_calendar_query_response(
    body: bytes,
    status_code: int = 207,
    huge_tree: bool = False,
) -> list[CalendarQueryResult]:
    """
    Parse a calendar-query REPORT response.

    Args:
        body: Raw XML response bytes
        status_code: HTTP status code of the response
        huge_tree: Allow parsing very large XML documents

    Returns:
        List of CalendarQueryResult with etags (and calendar data if requested)
    """
    if status_code not in (200, 207):
        raise error.ResponseError(reason=f"REPORT failed with status {status_code}")

    if not body:
        return []

    results: list[CalendarQueryResult] = []
    for elem in _strip_to_multistatus(_parse_xml(body, huge_tree)):
        if elem.tag != dav.Response.tag:
            continue

        href, propstats, status = _parse_response_element(elem)
        code = _status_to_code(status) if status else 200
        if code == 404:
            continue

        etag, calendar_data = _extract_etag_and_data(propstats)
        results.append(
            CalendarQueryResult(
                href=href,
                etag=etag,
                calendar_data=calendar_data,
                status=code,
            )
        )

    return results


def parse_error_conditions(body: bytes) -> list[str]:
    """
    Return the tags of the precondition/postcondition elements in a
    DAV:error response body (RFC 4918 section 16).

    An unparsable or non-error body yields an empty list, as plenty of
    servers send HTML error pages.
    """
    if not body:
        return []
    try:
        tree = _parse_xml(body)
    except etree.XMLSyntaxError:
        log.debug("error body is not XML, ignoring it")
        return []
    if tree.tag != dav.Error.tag:
        tree = tree.find(".//" + dav.Error.tag)
        if tree is None:
            return []
    return [child.tag for child in tree if isinstance(child.tag, str)]


def normalize_href(href: str) -> str:
    """
    Normalize an href to a path.

    Absolute URLs are reduced to their path, percent-encoding is
    undone and duplicate slashes are folded.
    """
    if not href:
        return href

    # Fix for double-encoded URLs (e.g., Confluence)
    if "%2540" in href:
        href = href.replace("%2540", "%40")
    if "://" in href:
        href = urlsplit(href).path
    href = unquote(href)
    while "//" in href:
        href = href.replace("//", "/")
    return href


# Helper functions


def _parse_xml(body: bytes, huge_tree: bool = False) -> _Element:
    parser = etree.XMLParser(huge_tree=huge_tree)
    return etree.fromstring(body, parser)


def _strip_to_multistatus(tree: _Element) -> _Element | list[_Element]:
    """
    The children to iterate over: those of DAV:multistatus, which some
    servers wrap in an <xml> element and some leave out entirely.
    """
    if tree.tag == "xml" and len(tree) > 0 and tree[0].tag == dav.MultiStatus.tag:
        return tree[0]
    if tree.tag == dav.MultiStatus.tag:
        return tree
    return [tree]


def _parse_response_element(
    response: _Element,
) -> tuple[str, list[_Element], str | None]:
    """(href, propstats, response-level status) of a DAV:response"""
    status: str | None = None
    href: str | None = None
    propstats: list[_Element] = []

    for elem in response:
        if elem.tag == dav.Status.tag:
            status = elem.text
        elif elem.tag == dav.Href.tag:
            href = normalize_href((elem.text or "").strip())
        elif elem.tag == dav.PropStat.tag:
            propstats.append(elem)

    return (href or "", propstats, status)


def _extract_etag_and_data(
    propstats: list[_Element],
) -> tuple[str | None, str | None]:
    etag: str | None = None
    calendar_data: str | None = None
    for propstat in propstats:
        if _status_to_code(_propstat_status(propstat)) == 404:
            continue
        prop = propstat.find(dav.Prop.tag)
        if prop is None:
            continue
        for child in prop:
            if child.tag == cdav.CalendarData.tag:
                calendar_data = child.text
            elif child.tag == dav.GetEtag.tag:
                etag = child.text
    return etag, calendar_data


def _all_propstats_missing(propstats: list[_Element]) -> bool:
    """Some servers flag deleted members with 404 propstats only."""
    if not propstats:
        return False
    return all(_status_to_code(_propstat_status(p)) == 404 for p in propstats)


def _propstat_status(propstat: _Element) -> str | None:
    status_elem = propstat.find(dav.Status.tag)
    if status_elem is None:
        return None
    return status_elem.text


def _status_to_code(status: str | None) -> int:
    """Status code of a line like "HTTP/1.1 404 Not Found", 200 if unparsable"""
    try:
        return int(status.split()[1])
    except (AttributeError, IndexError, ValueError):
        return 200
