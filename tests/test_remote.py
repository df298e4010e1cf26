"""
Tests for DAVRemote / AsyncDAVRemote, with the HTTP layer replaced by
mocks returning canned multistatus documents.
"""
from unittest import mock

import pytest
from lxml import etree

from caldav_sync import SyncCoordinator
from caldav_sync.elements import dav
from caldav_sync.lib import error
from caldav_sync.protocol import DAVResponse
from caldav_sync.remote import AsyncDAVRemote
from caldav_sync.remote import AsyncRemoteCollection
from caldav_sync.remote import DAVRemote
from caldav_sync.remote import generate_fake_sync_token
from caldav_sync.remote import is_fake_sync_token
from caldav_sync.remote import RemoteCollection
from caldav_sync.types import RemoteItem

URL = "https://cal.example.com/"
WORK = "/calendars/u/work/"


def multistatus(token, changed=(), deleted=(), truncated=False):
    """A sync-collection response; ``changed`` holds (href, etag) pairs"""
    parts = ['<d:multistatus xmlns:d="DAV:">']
    for href, etag in changed:
        parts.append(
            f"<d:response><d:href>{href}</d:href><d:propstat>"
            f"<d:prop><d:getetag>{etag}</d:getetag></d:prop>"
            "<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
        )
    for href in deleted:
        parts.append(
            f"<d:response><d:href>{href}</d:href>"
            "<d:status>HTTP/1.1 404 Not Found</d:status></d:response>"
        )
    if truncated:
        parts.append(
            f"<d:response><d:href>{WORK}</d:href>"
            "<d:status>HTTP/1.1 507 Insufficient Storage</d:status></d:response>"
        )
    parts.append(f"<d:sync-token>{token}</d:sync-token></d:multistatus>")
    return DAVResponse(status=207, headers={}, body="".join(parts).encode())


def error_response(status, condition=None):
    body = b""
    if condition:
        body = f'<d:error xmlns:d="DAV:"><d:{condition}/></d:error>'.encode()
    return DAVResponse(status=status, headers={}, body=body)


def sent_token(call):
    request = call.args[0]
    return etree.fromstring(request.body).find(dav.SyncToken.tag).text


class TestFakeSyncToken:
    def test_order_independent(self):
        a = RemoteItem(href="/a", etag="1")
        b = RemoteItem(href="/b", etag="2")
        assert generate_fake_sync_token([a, b]) == generate_fake_sync_token([b, a])
        assert is_fake_sync_token(generate_fake_sync_token([a]))

    def test_changes_with_etag(self):
        before = generate_fake_sync_token([RemoteItem(href="/a", etag="1")])
        after = generate_fake_sync_token([RemoteItem(href="/a", etag="2")])
        assert before != after

    def test_real_tokens(self):
        assert not is_fake_sync_token("http://example.com/sync/1")
        assert not is_fake_sync_token(None)


class TestDAVRemote:
    def setup_method(self):
        self.io = mock.Mock()
        self.remote = DAVRemote(URL, io=self.io, username="u", password="p")

    def test_contract(self):
        assert isinstance(self.remote, RemoteCollection)

    def test_list_all(self):
        self.io.execute.return_value = multistatus(
            "tok-1", changed=[(f"{WORK}a.ics", '"1"'), (f"{WORK}b.ics", '"2"')]
        )
        items, token = self.remote.list_all(WORK)
        assert token == "tok-1"
        assert items == [
            RemoteItem(href=f"{WORK}a.ics", etag='"1"'),
            RemoteItem(href=f"{WORK}b.ics", etag='"2"'),
        ]
        request = self.io.execute.call_args.args[0]
        assert request.url == "https://cal.example.com/calendars/u/work/"
        assert request.headers["Depth"] == "0"
        assert not sent_token(self.io.execute.call_args)

    def test_list_all_follows_truncation(self):
        self.io.execute.side_effect = [
            multistatus("tok-1", changed=[(f"{WORK}a.ics", '"1"')], truncated=True),
            multistatus("tok-2", changed=[(f"{WORK}b.ics", '"1"')]),
        ]
        items, token = self.remote.list_all(WORK)
        assert token == "tok-2"
        assert [i.href for i in items] == [f"{WORK}a.ics", f"{WORK}b.ics"]
        assert sent_token(self.io.execute.call_args_list[1]) == "tok-1"

    def test_max_pages(self):
        self.remote.max_pages = 2
        self.io.execute.side_effect = [
            multistatus("tok-1", changed=[(f"{WORK}a.ics", '"1"')], truncated=True),
            multistatus("tok-2", changed=[(f"{WORK}b.ics", '"1"')], truncated=True),
            multistatus("tok-3", changed=[(f"{WORK}c.ics", '"1"')]),
        ]
        items, token = self.remote.list_all(WORK)
        assert token == "tok-2"
        assert len(items) == 2
        assert not items.complete

    def test_complete_listing(self):
        self.io.execute.return_value = multistatus(
            "tok-1", changed=[(f"{WORK}a.ics", '"1"')]
        )
        items, token = self.remote.list_all(WORK)
        assert items.complete

    def test_truncated_resync_keeps_unlisted_items(self):
        coordinator = SyncCoordinator(self.remote)
        self.remote.max_pages = 1
        self.io.execute.side_effect = [
            error_response(403, "valid-sync-token"),
            multistatus("tok-9", changed=[(f"{WORK}a.ics", '"1"')], truncated=True),
        ]
        known = {f"{WORK}a.ics": '"1"', f"{WORK}b.ics": '"1"'}
        result = coordinator.sync_collection(WORK, "tok-1", known=known)
        assert result.fallback
        assert result.deleted_items == []
        assert result.snapshot[f"{WORK}b.ics"] == '"1"'
        assert result.new_token == "tok-9"

    def test_delta(self):
        self.io.execute.return_value = multistatus(
            "tok-2", changed=[(f"{WORK}a.ics", '"2"')], deleted=[f"{WORK}b.ics"]
        )
        changes, token = self.remote.delta(WORK, "tok-1")
        assert token == "tok-2"
        assert [(c.href, c.etag, c.deleted) for c in changes] == [
            (f"{WORK}a.ics", '"2"', False),
            (f"{WORK}b.ics", None, True),
        ]
        assert sent_token(self.io.execute.call_args) == "tok-1"

    def test_delta_pages_are_concatenated(self):
        self.io.execute.side_effect = [
            multistatus("tok-2", changed=[(f"{WORK}a.ics", '"2"')], truncated=True),
            multistatus("tok-3", deleted=[f"{WORK}a.ics"]),
        ]
        changes, token = self.remote.delta(WORK, "tok-1")
        assert token == "tok-3"
        assert [c.deleted for c in changes] == [False, True]

    @pytest.mark.parametrize("status", [403, 409])
    def test_invalid_token(self, status):
        self.io.execute.return_value = error_response(status, "valid-sync-token")
        with pytest.raises(error.TokenInvalid):
            self.remote.delta(WORK, "tok-old")

    @pytest.mark.parametrize(
        "status,exception",
        [
            (401, error.AuthorizationError),
            (404, error.NotFoundError),
            (500, error.ServerError),
        ],
    )
    def test_transport_errors(self, status, exception):
        self.io.execute.return_value = error_response(status)
        with pytest.raises(exception):
            self.remote.delta(WORK, "tok-1")

    def test_missing_sync_token(self):
        self.io.execute.return_value = DAVResponse(
            status=207, headers={}, body=b'<d:multistatus xmlns:d="DAV:"/>'
        )
        with pytest.raises(error.ResponseError):
            self.remote.list_all(WORK)

    def test_emulated_tokens(self):
        query = multistatus("ignored", changed=[(f"{WORK}a.ics", '"1"')])
        self.io.execute.side_effect = [error_response(501), query]
        items, token = self.remote.list_all(WORK)
        assert is_fake_sync_token(token)
        assert [i.href for i in items] == [f"{WORK}a.ics"]
        second_request = self.io.execute.call_args_list[1].args[0]
        assert second_request.headers["Depth"] == "1"
        assert b"calendar-query" in second_request.body

        self.io.execute.side_effect = [query]
        changes, same = self.remote.delta(WORK, token)
        assert changes == []
        assert same == token

        self.io.execute.side_effect = [
            multistatus("ignored", changed=[(f"{WORK}a.ics", '"2"')])
        ]
        with pytest.raises(error.TokenInvalid):
            self.remote.delta(WORK, token)

    def test_emulation_disabled(self):
        self.remote.emulate_sync_tokens = False
        self.io.execute.return_value = error_response(403, "sync-traversal-supported")
        with pytest.raises(error.SyncNotSupported):
            self.remote.list_all(WORK)
        with pytest.raises(error.SyncNotSupported):
            self.remote.delta(WORK, "tok-1")

    def test_delta_on_unsupported_server_forces_resync(self):
        self.io.execute.return_value = error_response(501)
        with pytest.raises(error.TokenInvalid):
            self.remote.delta(WORK, "tok-1")

    def test_context_manager_closes_io(self):
        with self.remote:
            pass
        self.io.close.assert_called_once_with()


class TestAsyncDAVRemote:
    def setup_method(self):
        self.io = mock.AsyncMock()
        self.remote = AsyncDAVRemote(URL, io=self.io)

    def test_contract(self):
        assert isinstance(self.remote, AsyncRemoteCollection)

    @pytest.mark.asyncio
    async def test_list_all_and_delta(self):
        self.io.execute.side_effect = [
            multistatus("tok-1", changed=[(f"{WORK}a.ics", '"1"')], truncated=True),
            multistatus("tok-2", changed=[(f"{WORK}b.ics", '"1"')]),
            multistatus("tok-3", deleted=[f"{WORK}a.ics"]),
        ]
        items, token = await self.remote.list_all(WORK)
        assert token == "tok-2"
        assert len(items) == 2

        changes, token = await self.remote.delta(WORK, token)
        assert token == "tok-3"
        assert changes[0].deleted

    @pytest.mark.asyncio
    async def test_invalid_token(self):
        self.io.execute.return_value = error_response(403, "valid-sync-token")
        with pytest.raises(error.TokenInvalid):
            await self.remote.delta(WORK, "tok-old")

    @pytest.mark.asyncio
    async def test_emulated_tokens(self):
        query = multistatus("ignored", changed=[(f"{WORK}a.ics", '"1"')])
        self.io.execute.side_effect = [error_response(501), query, query]
        items, token = await self.remote.list_all(WORK)
        assert is_fake_sync_token(token)
        assert await self.remote.delta(WORK, token) == ([], token)

    @pytest.mark.asyncio
    async def test_context_manager_closes_io(self):
        async with self.remote:
            pass
        self.io.close.assert_awaited_once_with()
