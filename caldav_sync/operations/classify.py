"""
Change classification for collection synchronization.

Pure functions (Sans-I/O): they take what the remote reported plus the
identifiers and etags seen on the previous sync, and return classified
changes plus the new snapshot.  Nothing here talks to a server.

Rules:
- an identifier reported both as changed and as deleted is DELETED
- a changed identifier not seen before is NEW, a seen one is MODIFIED
- a changed identifier whose etag equals the one seen before is not a
  change at all
- a full enumeration has no prior state: every item is NEW
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from caldav_sync.types import ChangeKind
from caldav_sync.types import ItemChange
from caldav_sync.types import RemoteChange
from caldav_sync.types import RemoteItem

log = logging.getLogger("caldav_sync")

Snapshot = Dict[str, Optional[str]]


@dataclass
class _Collapsed:
    etag: Optional[str] = None
    data: Optional[str] = None
    deleted: bool = False


def _collapse(changes: Iterable[RemoteChange]) -> Dict[str, _Collapsed]:
    """
    Merge repeated entries for the same identifier, keeping the order
    of first appearance.  Deletion is sticky; otherwise the last etag wins.
    """
    merged: Dict[str, _Collapsed] = {}
    for change in changes:
        if not change.href:
            log.warning("ignoring a change without identifier")
            continue
        entry = merged.get(change.href)
        if entry is None:
            entry = merged[change.href] = _Collapsed(deleted=change.deleted)
        elif entry.deleted != change.deleted:
            log.debug(
                "%s reported both as changed and deleted, treating it as deleted",
                change.href,
            )
        if change.deleted or entry.deleted:
            entry.deleted = True
            entry.etag = None
            entry.data = None
        else:
            entry.etag = change.etag
            entry.data = change.data
    return merged


def classify_full(
    items: Iterable[RemoteItem],
    known: Optional[Mapping[str, Optional[str]]] = None,
    complete: bool = True,
) -> Tuple[List[ItemChange], Snapshot]:
    """
    Classify the result of a full enumeration.

    Every current item is NEW.  When ``known`` is given (a full resync
    after a rejected token), identifiers that were known but are gone
    now are reported as DELETED so the consumer can drop them.

    An incomplete enumeration (the server was still truncating) says
    nothing about the missing identifiers: they stay in the snapshot
    with their known etag and are not reported.

    Returns:
        (changes, snapshot)
    """
    merged = _collapse(RemoteChange(href=i.href, etag=i.etag, data=i.data) for i in items)

    changes: List[ItemChange] = []
    snapshot: Snapshot = {}
    for href, entry in merged.items():
        changes.append(
            ItemChange(
                identifier=href, kind=ChangeKind.NEW, etag=entry.etag, data=entry.data
            )
        )
        snapshot[href] = entry.etag

    for href, etag in (known or {}).items():
        if href in snapshot:
            continue
        if complete:
            changes.append(ItemChange(identifier=href, kind=ChangeKind.DELETED))
        else:
            snapshot[href] = etag

    return changes, snapshot


def classify_delta(
    changes: Iterable[RemoteChange],
    known: Optional[Mapping[str, Optional[str]]] = None,
) -> Tuple[List[ItemChange], Snapshot]:
    """
    Classify the result of an incremental sync against what was seen
    before.

    Returns:
        (changes, snapshot) where snapshot is ``known`` with the delta applied
    """
    snapshot: Snapshot = dict(known or {})
    result: List[ItemChange] = []

    for href, entry in _collapse(changes).items():
        if entry.deleted:
            snapshot.pop(href, None)
            result.append(ItemChange(identifier=href, kind=ChangeKind.DELETED))
            continue

        if href in snapshot:
            if entry.etag and snapshot[href] == entry.etag:
                continue
            kind = ChangeKind.MODIFIED
        else:
            kind = ChangeKind.NEW

        snapshot[href] = entry.etag
        result.append(
            ItemChange(identifier=href, kind=kind, etag=entry.etag, data=entry.data)
        )

    return result, snapshot


def partition(changes: Iterable[ItemChange]) -> Dict[ChangeKind, List[ItemChange]]:
    """
    Split changes by kind.  Raises ValueError if an identifier occurs
    more than once.
    """
    ret: Dict[ChangeKind, List[ItemChange]] = {kind: [] for kind in ChangeKind}
    seen = set()
    for change in changes:
        if change.identifier in seen:
            raise ValueError(f"{change.identifier} classified more than once")
        seen.add(change.identifier)
        ret[change.kind].append(change)
    return ret
