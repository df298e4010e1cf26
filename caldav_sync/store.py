"""
Durable storage of sync tokens between runs.

The store is a JSON file with the per-collection token, the items seen
on the last sync (href -> etag) and the time of the last successful
sync::

    {"tokens": {"/calendars/u/work/": "http://example.com/sync/42"},
     "items": {"/calendars/u/work/": {"/calendars/u/work/a.ics": "\"1\""}},
     "last_sync": "2026-10-19T12:00:00+00:00"}

Only successful sync results are ever applied, so a failing collection
keeps its old token and the next run retries from there.
"""
import json
import logging
import os
import tempfile
import threading
from collections.abc import Mapping
from datetime import datetime
from datetime import timezone
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

from .lib import error
from .types import BatchResult
from .types import CollectionState
from .types import SyncResult

log = logging.getLogger("caldav_sync")


class SyncTokenStore:
    """
    Collection id -> CollectionState, plus the last-sync timestamp.

    All access goes through a lock, so results coming in from several
    worker threads can be applied concurrently.  With ``autosave`` the
    file is rewritten after every applied result.
    """

    def __init__(self, path: Optional[str] = None, autosave: bool = False) -> None:
        self.path = path
        self.autosave = autosave
        self._lock = threading.Lock()
        self._states: Dict[str, CollectionState] = {}
        self._last_sync: Optional[datetime] = None

    @classmethod
    def load(cls, path: str, autosave: bool = False) -> "SyncTokenStore":
        """
        Read a store file.  A missing file gives an empty store.

        Raises:
            StoreError: the file exists but can't be read or parsed
        """
        store = cls(path, autosave=autosave)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            log.info("no sync token store at %s, starting from scratch", path)
            return store
        except (OSError, ValueError) as e:
            raise error.StoreError(url=path, reason=str(e)) from e

        if not isinstance(data, dict):
            raise error.StoreError(url=path, reason="unexpected layout of store file")
        tokens = data.get("tokens") or {}
        items = data.get("items") or {}
        if (
            not isinstance(tokens, dict)
            or not isinstance(items, dict)
            or not all(isinstance(v, dict) or v is None for v in items.values())
        ):
            raise error.StoreError(url=path, reason="unexpected layout of store file")

        for cid, token in tokens.items():
            store._states[cid] = CollectionState(
                token=token, items=dict(items.get(cid) or {})
            )
        ## items without token, a collection whose token was dropped
        for cid in items:
            if cid not in store._states:
                store._states[cid] = CollectionState(items=dict(items[cid] or {}))

        last_sync = data.get("last_sync")
        if last_sync:
            try:
                store._last_sync = datetime.fromisoformat(last_sync)
            except ValueError as e:
                raise error.StoreError(
                    url=path, reason=f"bad last_sync timestamp {last_sync!r}"
                ) from e
        log.debug("loaded %i collection(s) from %s", len(store._states), path)
        return store

    def to_dict(self) -> dict:
        with self._lock:
            return self._to_dict()

    def _to_dict(self) -> dict:
        return {
            "tokens": {
                cid: state.token
                for cid, state in self._states.items()
                if state.token is not None
            },
            "items": {cid: dict(state.items) for cid, state in self._states.items()},
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
        }

    def save(self, path: Optional[str] = None) -> None:
        """
        Write the store.  The file is replaced atomically, a crash
        leaves either the old or the new content.
        """
        path = path or self.path
        if not path:
            raise error.StoreError(reason="no path to save the sync token store to")
        with self._lock:
            self._write(path, self._to_dict())

    def _write(self, path: str, data: dict) -> None:
        directory = os.path.dirname(os.path.abspath(path))
        fd, tmp = tempfile.mkstemp(prefix=".caldavsync", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, path)
        except OSError as e:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise error.StoreError(url=path, reason=str(e)) from e
        log.debug("saved sync token store to %s", path)

    @property
    def last_sync(self) -> Optional[datetime]:
        return self._last_sync

    def collection_ids(self) -> List[str]:
        with self._lock:
            return list(self._states)

    def __contains__(self, collection_id: str) -> bool:
        with self._lock:
            return collection_id in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def get_state(self, collection_id: str) -> CollectionState:
        """A copy of the stored state; empty if the collection is unknown."""
        with self._lock:
            state = self._states.get(collection_id)
            if state is None:
                return CollectionState()
            return CollectionState(
                token=state.token, items=dict(state.items), synced_at=state.synced_at
            )

    def token(self, collection_id: str) -> Optional[str]:
        return self.get_state(collection_id).token

    def apply(self, result: SyncResult) -> None:
        """
        Record a successful sync: the new token and the snapshot
        replace what was stored for the collection.
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            self._states[result.collection_id] = CollectionState(
                token=result.new_token, items=dict(result.snapshot), synced_at=now
            )
            self._last_sync = now
            if self.autosave and self.path:
                self._write(self.path, self._to_dict())

    def merge(self, batch: BatchResult) -> List[str]:
        """
        Apply the successful entries of a batch; failed collections keep
        their stored token.  Returns the ids that were applied.
        """
        applied = []
        for cid, result in batch.succeeded.items():
            self.apply(result)
            applied.append(cid)
        for cid in batch.failed:
            log.debug("%s failed, keeping its stored token", cid)
        return applied

    def forget(self, collection_id: str) -> None:
        """Drop a collection, so the next sync of it is a full one."""
        with self._lock:
            self._states.pop(collection_id, None)
            if self.autosave and self.path:
                self._write(self.path, self._to_dict())


def prior_state(
    source: Union[SyncTokenStore, Mapping], collection_id: str
) -> Tuple[Optional[str], Optional[Dict[str, Optional[str]]]]:
    """
    (token, known items) for a collection.  ``source`` is either a
    SyncTokenStore or a plain mapping collection id -> token.
    """
    if isinstance(source, SyncTokenStore):
        state = source.get_state(collection_id)
        return state.token, state.items
    return source.get(collection_id), None
