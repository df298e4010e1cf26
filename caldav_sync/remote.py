"""
The remote side of collection synchronization.

``RemoteCollection`` / ``AsyncRemoteCollection`` is the contract the
coordinators consume.  ``DAVRemote`` / ``AsyncDAVRemote`` implement it
for CalDAV servers with the sync-collection REPORT (RFC 6578), using the
Sans-I/O protocol layer for XML and the I/O layer for HTTP.

Servers that don't support sync-collection get emulated tokens: the
calendar is listed with a calendar-query REPORT and the token is a hash
of all etags (``fake-...``).  A delta against such a token can only say
"nothing changed" or "token invalid", the latter triggering a full
resync in the coordinator.
"""
import hashlib
import logging
from typing import Dict
from typing import List
from typing import Optional
from typing import Protocol
from typing import Tuple
from typing import runtime_checkable

from .io import AsyncIO
from .io import SyncIO
from .lib import error
from .protocol import CalendarQueryResult
from .protocol import SyncCollectionResult
from .protocol import SyncProtocol
from .types import ItemListing
from .types import RemoteChange
from .types import RemoteItem

log = logging.getLogger("caldav_sync")

FAKE_TOKEN_PREFIX = "fake-"


@runtime_checkable
class RemoteCollection(Protocol):
    def list_all(self, collection_id: str) -> Tuple[List[RemoteItem], str]:
        """
        Enumerate every item of the collection.

        Returns:
            (items, token) where token describes the enumerated state.
            ``items`` may be an ItemListing; one with ``complete`` unset
            was cut short and doesn't show which members are gone.
        """
        ...

    def delta(self, collection_id: str, token: str) -> Tuple[List[RemoteChange], str]:
        """
        Report changes since ``token``.

        Raises:
            TokenInvalid: the token is expired or unknown to the server
            TransportError: connectivity, authorization or server failure
        """
        ...


@runtime_checkable
class AsyncRemoteCollection(Protocol):
    async def list_all(self, collection_id: str) -> Tuple[List[RemoteItem], str]:
        ...

    async def delta(
        self, collection_id: str, token: str
    ) -> Tuple[List[RemoteChange], str]:
        ...


def generate_fake_sync_token(items: List[RemoteItem]) -> str:
    """
    Token for servers without sync support: a hash over all hrefs and
    etags, independent of ordering.
    """
    parts = sorted(f"{i.href}|{i.etag or ''}" for i in items)
    hash_value = hashlib.md5("\n".join(parts).encode()).hexdigest()
    return f"{FAKE_TOKEN_PREFIX}{hash_value}"


def is_fake_sync_token(token: Optional[str]) -> bool:
    return isinstance(token, str) and token.startswith(FAKE_TOKEN_PREFIX)


class BaseDAVRemote:
    """
    Request building and result folding shared by DAVRemote and
    AsyncDAVRemote.
    """

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        bearer_token: Optional[str] = None,
        load_objects: bool = False,
        limit: Optional[int] = None,
        max_pages: int = 50,
        emulate_sync_tokens: bool = True,
        huge_tree: bool = False,
    ) -> None:
        """
        Args:
            url: base URL of the server; collection ids are resolved
                against it
            username, password: credentials for Basic authentication
            bearer_token: token for Bearer authentication
            load_objects: also fetch the calendar data of changed items
            limit: ask the server to truncate each REPORT after this
                many responses
            max_pages: how many truncated REPORTs to follow in one call
            emulate_sync_tokens: fall back to etag hashing on servers
                without sync-collection support
            huge_tree: allow parsing very large XML documents
        """
        self.url = url
        self.protocol = SyncProtocol(
            base_url=url,
            username=username,
            password=password,
            bearer_token=bearer_token,
            huge_tree=huge_tree,
        )
        self.load_objects = load_objects
        self.limit = limit
        self.max_pages = max_pages
        self.emulate_sync_tokens = emulate_sync_tokens

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.url})"

    def _check_token(self, collection_id: str, result: SyncCollectionResult) -> str:
        if not result.sync_token:
            raise error.ResponseError(
                url=self.protocol.resolve_url(collection_id),
                reason="sync-collection response without a sync-token",
            )
        return result.sync_token

    def _fold_items(
        self, items: Dict[str, RemoteItem], result: SyncCollectionResult
    ) -> None:
        for href in result.deleted:
            items.pop(href, None)
        for obj in result.changed:
            items[obj.href] = RemoteItem(
                href=obj.href, etag=obj.etag, data=obj.calendar_data
            )

    def _to_changes(self, result: SyncCollectionResult) -> List[RemoteChange]:
        changes = [
            RemoteChange(href=obj.href, etag=obj.etag, data=obj.calendar_data)
            for obj in result.changed
        ]
        changes.extend(RemoteChange(href=href, deleted=True) for href in result.deleted)
        return changes

    def _to_items(self, results: List[CalendarQueryResult]) -> List[RemoteItem]:
        return [
            RemoteItem(href=obj.href, etag=obj.etag, data=obj.calendar_data)
            for obj in results
        ]

    def _more_pages(self, collection_id: str, result: SyncCollectionResult, page: int) -> bool:
        if not result.truncated:
            return False
        if page >= self.max_pages:
            log.info(
                "%s: still truncated after %i pages, continuing on next sync",
                collection_id,
                page,
            )
            return False
        return True

    def _compare_fake_token(self, collection_id: str, token: str, items: List[RemoteItem]) -> str:
        current = generate_fake_sync_token(items)
        if current != token:
            raise error.TokenInvalid(
                url=self.protocol.resolve_url(collection_id),
                reason="collection changed since emulated sync token was issued",
            )
        return current


class DAVRemote(BaseDAVRemote):
    """
    RemoteCollection for CalDAV servers, synchronous flavour.

    Example:
        with DAVRemote("https://cal.example.com/", username="u", password="p") as remote:
            coordinator = SyncCoordinator(remote)
            result = coordinator.sync_collection("/calendars/u/work/")
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        ssl_verify_cert: bool = True,
        proxy: Optional[str] = None,
        io: Optional[SyncIO] = None,
        **kwargs,
    ) -> None:
        super().__init__(url, **kwargs)
        self.io = io or SyncIO(timeout=timeout, verify=ssl_verify_cert, proxy=proxy)

    def close(self) -> None:
        self.io.close()

    def __enter__(self) -> "DAVRemote":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _report(self, collection_id: str, token: Optional[str]) -> SyncCollectionResult:
        request = self.protocol.sync_collection_request(
            collection_id, token, load_data=self.load_objects, limit=self.limit
        )
        response = self.io.execute(request)
        return self.protocol.parse_sync_collection(response, collection_id, request.url)

    def _query_all(self, collection_id: str) -> List[RemoteItem]:
        request = self.protocol.calendar_query_request(
            collection_id, load_data=self.load_objects
        )
        response = self.io.execute(request)
        return self._to_items(self.protocol.parse_calendar_query(response, request.url))

    def list_all(self, collection_id: str) -> Tuple[List[RemoteItem], str]:
        try:
            result = self._report(collection_id, None)
        except error.SyncNotSupported:
            if not self.emulate_sync_tokens:
                raise
            log.info("%s: no sync-collection support, emulating sync tokens", collection_id)
            items = ItemListing(self._query_all(collection_id))
            return items, generate_fake_sync_token(items)

        items: Dict[str, RemoteItem] = {}
        self._fold_items(items, result)
        page = 1
        while self._more_pages(collection_id, result, page):
            result = self._report(collection_id, self._check_token(collection_id, result))
            self._fold_items(items, result)
            page += 1
        listing = ItemListing(items.values(), complete=not result.truncated)
        return listing, self._check_token(collection_id, result)

    def delta(self, collection_id: str, token: str) -> Tuple[List[RemoteChange], str]:
        if is_fake_sync_token(token):
            items = self._query_all(collection_id)
            return [], self._compare_fake_token(collection_id, token, items)

        try:
            result = self._report(collection_id, token)
        except error.SyncNotSupported as e:
            ## a server that stopped supporting sync-collection; a full
            ## resync with emulated tokens sorts it out
            if not self.emulate_sync_tokens:
                raise
            raise error.TokenInvalid(url=e.url, reason=e.reason) from e
        changes = self._to_changes(result)
        page = 1
        while self._more_pages(collection_id, result, page):
            result = self._report(collection_id, self._check_token(collection_id, result))
            changes.extend(self._to_changes(result))
            page += 1
        return changes, self._check_token(collection_id, result)


class AsyncDAVRemote(BaseDAVRemote):
    """
    AsyncRemoteCollection for CalDAV servers.

    Example:
        async with AsyncDAVRemote("https://cal.example.com/", username="u", password="p") as remote:
            coordinator = AsyncSyncCoordinator(remote)
            result = await coordinator.sync_collection("/calendars/u/work/")
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        ssl_verify_cert: bool = True,
        proxy: Optional[str] = None,
        io: Optional[AsyncIO] = None,
        **kwargs,
    ) -> None:
        super().__init__(url, **kwargs)
        self.io = io or AsyncIO(timeout=timeout, verify_ssl=ssl_verify_cert, proxy=proxy)

    async def close(self) -> None:
        await self.io.close()

    async def __aenter__(self) -> "AsyncDAVRemote":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def _report(
        self, collection_id: str, token: Optional[str]
    ) -> SyncCollectionResult:
        request = self.protocol.sync_collection_request(
            collection_id, token, load_data=self.load_objects, limit=self.limit
        )
        response = await self.io.execute(request)
        return self.protocol.parse_sync_collection(response, collection_id, request.url)

    async def _query_all(self, collection_id: str) -> List[RemoteItem]:
        request = self.protocol.calendar_query_request(
            collection_id, load_data=self.load_objects
        )
        response = await self.io.execute(request)
        return self._to_items(self.protocol.parse_calendar_query(response, request.url))

    async def list_all(self, collection_id: str) -> Tuple[List[RemoteItem], str]:
        try:
            result = await self._report(collection_id, None)
        except error.SyncNotSupported:
            if not self.emulate_sync_tokens:
                raise
            log.info("%s: no sync-collection support, emulating sync tokens", collection_id)
            items = ItemListing(await self._query_all(collection_id))
            return items, generate_fake_sync_token(items)

        items: Dict[str, RemoteItem] = {}
        self._fold_items(items, result)
        page = 1
        while self._more_pages(collection_id, result, page):
            result = await self._report(
                collection_id, self._check_token(collection_id, result)
            )
            self._fold_items(items, result)
            page += 1
        listing = ItemListing(items.values(), complete=not result.truncated)
        return listing, self._check_token(collection_id, result)

    async def delta(
        self, collection_id: str, token: str
    ) -> Tuple[List[RemoteChange], str]:
        if is_fake_sync_token(token):
            items = await self._query_all(collection_id)
            return [], self._compare_fake_token(collection_id, token, items)

        try:
            result = await self._report(collection_id, token)
        except error.SyncNotSupported as e:
            ## a server that stopped supporting sync-collection; a full
            ## resync with emulated tokens sorts it out
            if not self.emulate_sync_tokens:
                raise
            raise error.TokenInvalid(url=e.url, reason=e.reason) from e
        changes = self._to_changes(result)
        page = 1
        while self._more_pages(collection_id, result, page):
            result = await self._report(
                collection_id, self._check_token(collection_id, result)
            )
            changes.extend(self._to_changes(result))
            page += 1
        return changes, self._check_token(collection_id, result)
