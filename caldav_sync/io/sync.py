"""
requests transport for DAVRemote.
"""

import datetime
import logging
from tempfile import NamedTemporaryFile
from typing import Optional

import requests

from caldav_sync.lib import error
from caldav_sync.protocol.types import DAVRequest, DAVResponse

log = logging.getLogger("caldav_sync")


class SyncIO:
    """
    Sends DAVRequests with a requests Session.

    Example:
        with SyncIO(timeout=10) as io:
            response = io.execute(protocol.sync_collection_request(path, token))
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        verify: bool = True,
        proxy: Optional[str] = None,
    ):
        """
        Args:
            session: session to reuse; it is left open by ``close()``
            timeout: seconds to wait for the server, per request
            verify: check the server certificate (or a CA bundle path)
            proxy: proxy URL, used for both http and https
        """
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.timeout = timeout
        self.verify = verify
        self.proxies = {"http": proxy, "https": proxy} if proxy else None

    def execute(self, request: DAVRequest) -> DAVResponse:
        """
        Send the request.  HTTP error statuses are returned as they are.

        Raises:
            RequestTimeout: the server did not answer within ``timeout``
            ConnectionFailure: any other requests-level failure
        """
        log.debug("%s %s", request.method.value, request.url)
        try:
            response = self.session.request(
                method=request.method.value,
                url=request.url,
                headers=request.headers,
                data=request.body,
                timeout=self.timeout,
                verify=self.verify,
                proxies=self.proxies,
            )
        except requests.exceptions.Timeout as e:
            raise error.RequestTimeout(url=request.url, reason=str(e)) from e
        except requests.exceptions.RequestException as e:
            raise error.ConnectionFailure(url=request.url, reason=str(e)) from e

        dav_response = DAVResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )
        if error.debug_dump_communication:
            _dump_communication(request, dav_response)
        return dav_response

    def close(self) -> None:
        if self._owns_session and self.session:
            self.session.close()

    def __enter__(self) -> "SyncIO":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def _dump_communication(request: DAVRequest, response: DAVResponse) -> None:
    with NamedTemporaryFile(prefix="caldavsynccomm", delete=False) as commlog:
        commlog.write(b"=" * 80 + b"\n")
        commlog.write(f"{datetime.datetime.now():%FT%H:%M:%S}".encode("utf-8"))
        commlog.write(b"\n====>\n")
        commlog.write(f"{request.method.value} {request.url}\n".encode("utf-8"))
        commlog.write(
            "\n".join(
                f"{k}: {v}" for k, v in request.headers.items() if k != "Authorization"
            ).encode("utf-8")
        )
        commlog.write(b"\n\n")
        commlog.write(request.body or b"")
        commlog.write(b"\n<====\n")
        commlog.write(f"{response.status} {response.reason}\n".encode("utf-8"))
        commlog.write(
            "\n".join(f"{k}: {v}" for k, v in response.headers.items()).encode("utf-8")
        )
        commlog.write(b"\n\n")
        commlog.write(response.body)
        commlog.write(b"\n")
