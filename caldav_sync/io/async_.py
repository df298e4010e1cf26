"""
aiohttp transport for AsyncDAVRemote.
"""
import asyncio
import logging
from typing import Optional

import aiohttp

from caldav_sync.lib import error
from caldav_sync.protocol.types import DAVRequest, DAVResponse

log = logging.getLogger("caldav_sync")


class AsyncIO:
    """
    Sends DAVRequests with an aiohttp ClientSession, created lazily on
    first use inside the running event loop.

    Example:
        async with AsyncIO(timeout=10) as io:
            response = await io.execute(request)
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        proxy: Optional[str] = None,
    ):
        """
        Args:
            session: session to reuse; it is left open by ``close()``
            timeout: total seconds allowed per request
            verify_ssl: check the server certificate
            proxy: proxy URL
        """
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.verify_ssl = verify_ssl
        self.proxy = proxy

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                connector=aiohttp.TCPConnector(ssl=self.verify_ssl),
            )
        return self._session

    async def execute(self, request: DAVRequest) -> DAVResponse:
        """
        Send the request and read the whole body.

        Raises:
            RequestTimeout: no complete answer within the timeout
            ConnectionFailure: any other aiohttp client error

        Cancelling the calling task aborts the request; the
        CancelledError is not translated.
        """
        session = await self._get_session()
        log.debug("%s %s", request.method.value, request.url)

        try:
            async with session.request(
                method=request.method.value,
                url=request.url,
                headers=request.headers,
                data=request.body,
                proxy=self.proxy,
            ) as response:
                return DAVResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    body=await response.read(),
                )
        except asyncio.TimeoutError as e:
            raise error.RequestTimeout(url=request.url, reason="timed out") from e
        except aiohttp.ClientError as e:
            raise error.ConnectionFailure(url=request.url, reason=str(e)) from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "AsyncIO":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
