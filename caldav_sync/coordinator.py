"""
The sync coordinator decides, per collection, between an incremental
sync (a stored token exists) and a full sync (no token, or the server
rejected it), and classifies what the remote reports into new, modified
and deleted items.

It owns no state: the prior token and the previously seen items come in
as arguments, the new ones go out in the SyncResult.  Persisting them is
up to the caller, typically through caldav_sync.store.SyncTokenStore::

    store = SyncTokenStore.load("sync_tokens.json")
    coordinator = SyncCoordinator(remote)
    batch = coordinator.sync_many(calendar_paths, store)
    store.merge(batch)
    store.save()
"""
import logging
import threading
from collections.abc import Iterable
from collections.abc import Mapping
from concurrent.futures import as_completed
from concurrent.futures import ThreadPoolExecutor
from typing import Dict
from typing import Optional
from typing import Union

from .lib import error
from .operations import classify_delta
from .operations import classify_full
from .operations import partition
from .remote import RemoteCollection
from .store import prior_state
from .store import SyncTokenStore
from .types import BatchResult
from .types import ChangeKind
from .types import RemoteChange
from .types import RemoteItem
from .types import SyncResult

log = logging.getLogger("caldav_sync")

KnownItems = Optional[Mapping[str, Optional[str]]]
TokenSource = Union[SyncTokenStore, Mapping[str, str]]


def full_sync_result(
    collection_id: str,
    items: Iterable[RemoteItem],
    token: str,
    known: KnownItems = None,
    previous_token: Optional[str] = None,
) -> SyncResult:
    ## plain lists count as complete
    complete = getattr(items, "complete", True)
    if not complete:
        log.info("%s: enumeration incomplete, not reporting deletions", collection_id)
    changes, snapshot = classify_full(items, known, complete=complete)
    return _result(collection_id, token, changes, snapshot, True, previous_token)


def delta_sync_result(
    collection_id: str,
    changes: Iterable[RemoteChange],
    token: str,
    known: KnownItems,
    previous_token: str,
) -> SyncResult:
    classified, snapshot = classify_delta(changes, known)
    return _result(collection_id, token, classified, snapshot, False, previous_token)


def _result(collection_id, token, changes, snapshot, full_sync, previous_token) -> SyncResult:
    by_kind = partition(changes)
    log.info(
        "synced %s (%s): %i new, %i modified, %i deleted",
        collection_id,
        "full" if full_sync else "incremental",
        len(by_kind[ChangeKind.NEW]),
        len(by_kind[ChangeKind.MODIFIED]),
        len(by_kind[ChangeKind.DELETED]),
    )
    return SyncResult(
        collection_id=collection_id,
        new_token=token,
        changes=tuple(changes),
        snapshot=snapshot,
        full_sync=full_sync,
        previous_token=previous_token,
    )


def check_collection_id(collection_id: str) -> None:
    if not collection_id:
        raise ValueError("collection_id must be a non-empty string")


def log_token_rejected(collection_id: str, e: error.TokenInvalid) -> None:
    log.warning(
        "sync token for %s rejected (%s), doing a full resync", collection_id, e.reason
    )


class SyncCoordinator:
    """
    Synchronous coordinator.  Collections in ``sync_many`` are synced
    on a thread pool of at most ``max_workers`` threads.
    """

    def __init__(self, remote: RemoteCollection, max_workers: int = 5) -> None:
        self.remote = remote
        self.max_workers = max_workers

    def _check_cancel(self, cancel: Optional[threading.Event], collection_id: str) -> None:
        if cancel is not None and cancel.is_set():
            raise error.SyncCancelled(url=collection_id)

    def _call(self, cancel: Optional[threading.Event], collection_id: str, method, *args):
        """
        One remote call, bracketed by cancel checks.  A transport
        failure while ``cancel`` is set is the request being torn down
        by whoever cancelled (closing the remote), not a server problem.
        """
        self._check_cancel(cancel, collection_id)
        try:
            ret = method(collection_id, *args)
        except error.TransportError as e:
            if cancel is not None and cancel.is_set():
                raise error.SyncCancelled(url=collection_id, reason=str(e)) from e
            raise
        self._check_cancel(cancel, collection_id)
        return ret

    def _full_sync(
        self,
        collection_id: str,
        cancel: Optional[threading.Event],
        known: KnownItems = None,
        previous_token: Optional[str] = None,
    ) -> SyncResult:
        items, token = self._call(cancel, collection_id, self.remote.list_all)
        return full_sync_result(collection_id, items, token, known, previous_token)

    def sync_collection(
        self,
        collection_id: str,
        prior_token: Optional[str] = None,
        known: KnownItems = None,
        cancel: Optional[threading.Event] = None,
    ) -> SyncResult:
        """
        Sync one collection.

        Args:
            collection_id: path (or URL) of the collection
            prior_token: token from the last successful sync, if any
            known: identifier -> etag of the items seen on the last
                sync (``SyncResult.snapshot``); decides between NEW and
                MODIFIED
            cancel: checked before and after each request; when set,
                the sync is aborted with SyncCancelled.  Setting it does
                not interrupt a request already sent; a transport failure
                of that request while it is set (the cancelling thread
                closed the remote, or the request timed out) is reported
                as SyncCancelled as well

        Returns:
            SyncResult.  ``full_sync`` is set when the complete
            collection was enumerated, including when the server
            rejected ``prior_token``.

        Raises:
            TransportError: nothing was synced; keep the prior token
            SyncCancelled: ``cancel`` was set
        """
        check_collection_id(collection_id)
        if not prior_token:
            return self._full_sync(collection_id, cancel)

        try:
            changes, token = self._call(
                cancel, collection_id, self.remote.delta, prior_token
            )
        except error.TokenInvalid as e:
            log_token_rejected(collection_id, e)
            return self._full_sync(
                collection_id, cancel, known=known, previous_token=prior_token
            )
        return delta_sync_result(collection_id, changes, token, known, prior_token)

    def _sync_one(
        self,
        collection_id: str,
        token_store: TokenSource,
        cancel: Optional[threading.Event],
    ) -> SyncResult:
        token, known = prior_state(token_store, collection_id)
        return self.sync_collection(collection_id, token, known, cancel)

    def sync_many(
        self,
        collection_ids: Iterable[str],
        token_store: TokenSource,
        cancel: Optional[threading.Event] = None,
    ) -> BatchResult:
        """
        Sync several collections independently.

        ``token_store`` is only read.  A failing collection is recorded
        in the returned BatchResult and does not stop the others; merge
        the result into the store with ``SyncTokenStore.merge`` to
        advance the tokens of the successful ones.
        """
        ids = list(dict.fromkeys(collection_ids))
        if not ids:
            return BatchResult()

        outcomes: Dict[str, Union[SyncResult, BaseException]] = {}
        workers = max(1, min(self.max_workers, len(ids)))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="caldav-sync"
        ) as pool:
            futures = {
                pool.submit(self._sync_one, cid, token_store, cancel): cid for cid in ids
            }
            for future in as_completed(futures):
                cid = futures[future]
                try:
                    outcomes[cid] = future.result()
                except error.SyncCancelled as e:
                    log.info("sync of %s cancelled", cid)
                    outcomes[cid] = e
                except Exception as e:
                    log.error("sync of %s failed", cid, exc_info=True)
                    outcomes[cid] = e

        return BatchResult({cid: outcomes[cid] for cid in ids})
