"""
Sans-I/O handler for the sync-collection protocol.

Builds requests and interprets responses without doing any I/O.
"""
import base64
import logging
from typing import Dict
from typing import List
from typing import Optional
from urllib.parse import urljoin
from urllib.parse import urlparse

from caldav_sync.elements import dav
from caldav_sync.lib import error

from .types import CalendarQueryResult
from .types import DAVMethod
from .types import DAVRequest
from .types import DAVResponse
from .types import SyncCollectionResult
from .xml_builders import build_calendar_query_body
from .xml_builders import build_sync_collection_body
from .xml_parsers import parse_calendar_query_response
from .xml_parsers import parse_error_conditions
from .xml_parsers import parse_sync_collection_response

log = logging.getLogger("caldav_sync")

## Error conditions meaning the server can't do sync-collection at all
_UNSUPPORTED_CONDITIONS = (dav.SyncTraversalSupported.tag, dav.SupportedReport.tag)


class SyncProtocol:
    """
    Sans-I/O sync-collection protocol handler.

    Example:
        protocol = SyncProtocol(base_url="https://cal.example.com/")

        # Build request
        request = protocol.sync_collection_request("/calendars/user/work/", token)

        # Execute with your I/O (not shown)
        response = io.execute(request)

        # Parse response
        result = protocol.parse_sync_collection(response, "/calendars/user/work/")
    """

    def __init__(
        self,
        base_url: str = "",
        username: Optional[str] = None,
        password: Optional[str] = None,
        bearer_token: Optional[str] = None,
        huge_tree: bool = False,
    ):
        """
        Args:
            base_url: Base URL for the CalDAV server
            username: Username for Basic authentication
            password: Password for Basic authentication
            bearer_token: Token for Bearer authentication (wins over Basic)
            huge_tree: Allow parsing very large XML documents
        """
        self.base_url = base_url.rstrip("/") if base_url else ""
        self.huge_tree = huge_tree
        self._auth_header = self._build_auth_header(username, password, bearer_token)

    def _build_auth_header(
        self,
        username: Optional[str],
        password: Optional[str],
        bearer_token: Optional[str],
    ) -> Optional[str]:
        if bearer_token:
            return f"Bearer {bearer_token}"
        if username and password:
            credentials = f"{username}:{password}"
            encoded = base64.b64encode(credentials.encode()).decode()
            return f"Basic {encoded}"
        return None

    def _base_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/xml; charset=utf-8",
        }
        if self._auth_header:
            headers["Authorization"] = self._auth_header
        return headers

    def resolve_url(self, path: str) -> str:
        """
        Resolve a collection path (or full URL) to a full URL.

        Paths starting with a slash are relative to the server root, as
        hrefs in multistatus responses are; other paths are relative to
        the base URL.
        """
        if not path:
            return self.base_url or ""
        if urlparse(path).scheme:
            return path
        if self.base_url:
            return urljoin(self.base_url + "/", path)
        return path

    # Request builders

    def sync_collection_request(
        self,
        path: str,
        sync_token: Optional[str] = None,
        load_data: bool = False,
        limit: Optional[int] = None,
    ) -> DAVRequest:
        """
        Build a sync-collection REPORT request.  RFC 6578 only defines
        the report for Depth 0.
        """
        body = build_sync_collection_body(sync_token, load_data=load_data, limit=limit)
        return DAVRequest(
            method=DAVMethod.REPORT,
            url=self.resolve_url(path),
            headers={**self._base_headers(), "Depth": "0"},
            body=body,
        )

    def calendar_query_request(self, path: str, load_data: bool = False) -> DAVRequest:
        """
        Build a calendar-query REPORT listing every object with its etag.
        """
        return DAVRequest(
            method=DAVMethod.REPORT,
            url=self.resolve_url(path),
            headers={**self._base_headers(), "Depth": "1"},
            body=build_calendar_query_body(load_data=load_data),
        )

    # Response parsers

    def parse_sync_collection(
        self, response: DAVResponse, path: str, url: Optional[str] = None
    ) -> SyncCollectionResult:
        """
        Parse a sync-collection REPORT response.

        Raises:
            TokenInvalid: the server rejected the sync token
            SyncNotSupported: the server can't do sync-collection here
            TransportError: any other failure
        """
        self.check_response(response, url or self.resolve_url(path))
        result = parse_sync_collection_response(
            response.body,
            response.status,
            huge_tree=self.huge_tree,
            collection_path=urlparse(self.resolve_url(path)).path or path,
        )
        log.debug(
            "sync-collection on %s: %i changed, %i deleted, token %s",
            path,
            len(result.changed),
            len(result.deleted),
            result.sync_token,
        )
        return result

    def parse_calendar_query(
        self, response: DAVResponse, url: Optional[str] = None
    ) -> List[CalendarQueryResult]:
        self.check_response(response, url)
        return parse_calendar_query_response(
            response.body, response.status, huge_tree=self.huge_tree
        )

    def check_response(self, response: DAVResponse, url: Optional[str] = None) -> None:
        """
        Map a non-multistatus response to the matching exception.
        """
        if response.ok:
            return

        reason = f"{response.status} {response.reason}"
        conditions = parse_error_conditions(response.body)
        if dav.ValidSyncToken.tag in conditions:
            raise error.TokenInvalid(url=url, reason=reason)
        if response.status == 501 or any(
            c in conditions for c in _UNSUPPORTED_CONDITIONS
        ):
            raise error.SyncNotSupported(url=url, reason=reason)
        if response.status in (401, 403):
            raise error.AuthorizationError(url=url, reason=reason)
        if response.status == 404:
            raise error.NotFoundError(url=url, reason=reason)
        if response.status >= 500:
            raise error.ServerError(url=url, reason=reason)
        raise error.ResponseError(url=url, reason=error.errmsg(response))
