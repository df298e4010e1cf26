"""
asyncio twin of caldav_sync.coordinator.

The decision logic (incremental vs. full, classification) is the same
and shared through the helpers in the coordinator module; only the
remote calls are awaited and ``sync_many`` runs the collections as
tasks, bounded by a semaphore.
"""
import asyncio
import logging
from collections.abc import Iterable
from typing import Dict
from typing import Optional
from typing import Union

from .coordinator import check_collection_id
from .coordinator import delta_sync_result
from .coordinator import full_sync_result
from .coordinator import KnownItems
from .coordinator import log_token_rejected
from .coordinator import TokenSource
from .lib import error
from .remote import AsyncRemoteCollection
from .store import prior_state
from .types import BatchResult
from .types import SyncResult

log = logging.getLogger("caldav_sync")


class AsyncSyncCoordinator:
    """
    Example:
        async with AsyncDAVRemote(url, username=u, password=p) as remote:
            coordinator = AsyncSyncCoordinator(remote, timeout=60)
            batch = await coordinator.sync_many(paths, store)
        store.merge(batch)
    """

    def __init__(
        self,
        remote: AsyncRemoteCollection,
        max_concurrency: int = 5,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Args:
            remote: the collection backend
            max_concurrency: collections synced at the same time in
                ``sync_many``
            timeout: seconds allowed per collection; None for no limit
        """
        self.remote = remote
        self.max_concurrency = max_concurrency
        self.timeout = timeout

    async def _full_sync(
        self,
        collection_id: str,
        known: KnownItems = None,
        previous_token: Optional[str] = None,
    ) -> SyncResult:
        items, token = await self.remote.list_all(collection_id)
        return full_sync_result(collection_id, items, token, known, previous_token)

    async def _sync(
        self, collection_id: str, prior_token: Optional[str], known: KnownItems
    ) -> SyncResult:
        if not prior_token:
            return await self._full_sync(collection_id)
        try:
            changes, token = await self.remote.delta(collection_id, prior_token)
        except error.TokenInvalid as e:
            log_token_rejected(collection_id, e)
            return await self._full_sync(
                collection_id, known=known, previous_token=prior_token
            )
        return delta_sync_result(collection_id, changes, token, known, prior_token)

    async def sync_collection(
        self,
        collection_id: str,
        prior_token: Optional[str] = None,
        known: KnownItems = None,
        timeout: Optional[float] = None,
    ) -> SyncResult:
        """
        Same contract as SyncCoordinator.sync_collection.  Instead of a
        cancel event, the coroutine may be cancelled, and ``timeout``
        (default: the coordinator's) bounds the whole collection sync.

        Raises:
            SyncCancelled: the timeout expired
            TransportError: nothing was synced; keep the prior token
        """
        check_collection_id(collection_id)
        timeout = timeout if timeout is not None else self.timeout
        if timeout is None:
            return await self._sync(collection_id, prior_token, known)
        try:
            return await asyncio.wait_for(
                self._sync(collection_id, prior_token, known), timeout
            )
        except asyncio.TimeoutError as e:
            raise error.SyncCancelled(
                url=collection_id, reason=f"timed out after {timeout}s"
            ) from e

    async def sync_many(
        self, collection_ids: Iterable[str], token_store: TokenSource
    ) -> BatchResult:
        """
        Sync several collections concurrently, at most
        ``max_concurrency`` at a time.  Failures are captured per
        collection; ``token_store`` is only read.
        """
        ids = list(dict.fromkeys(collection_ids))
        if not ids:
            return BatchResult()

        semaphore = asyncio.Semaphore(max(1, self.max_concurrency))

        async def _one(cid: str) -> Union[SyncResult, BaseException]:
            async with semaphore:
                token, known = prior_state(token_store, cid)
                try:
                    return await self.sync_collection(cid, token, known)
                except error.SyncCancelled as e:
                    log.info("sync of %s cancelled: %s", cid, e.reason)
                    return e
                except Exception as e:
                    log.error("sync of %s failed", cid, exc_info=True)
                    return e

        outcomes = await asyncio.gather(*(_one(cid) for cid in ids))
        results: Dict[str, Union[SyncResult, BaseException]] = dict(zip(ids, outcomes))
        return BatchResult(results)
