"""
Data model of the sync layer.

``RemoteItem`` and ``RemoteChange`` are what a remote collection
reports; ``ItemChange`` and ``SyncResult`` are what the coordinator
hands back after classifying them against what it has seen before.
"""
from __future__ import annotations

import re
from collections.abc import Iterator
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from typing import Dict
from typing import Optional
from typing import Tuple
from typing import Union

import icalendar

from .lib import error


class ChangeKind(Enum):
    NEW = "new"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class RemoteItem:
    """One member of a collection, as reported by a full enumeration."""

    href: str
    etag: Optional[str] = None
    data: Optional[str] = None


class ItemListing(list):
    """
    The RemoteItems of a full enumeration.

    ``complete`` is False when the server still reported a truncated
    result when paging stopped; members missing from the listing may
    then still exist.
    """

    def __init__(self, items=(), complete: bool = True) -> None:
        super().__init__(items)
        self.complete = complete


@dataclass(frozen=True)
class RemoteChange:
    """One entry of an incremental (sync-token based) report."""

    href: str
    etag: Optional[str] = None
    data: Optional[str] = None
    deleted: bool = False


@dataclass(frozen=True)
class ItemChange:
    """
    A classified change to one item of a collection.

    ``etag`` and ``data`` are only set for NEW and MODIFIED items;
    ``data`` additionally requires the remote to have been asked for
    the calendar data.
    """

    identifier: str
    kind: ChangeKind
    etag: Optional[str] = None
    data: Optional[str] = None

    @property
    def uid(self) -> Optional[str]:
        """
        The UID of the calendar object, if the payload is available.
        """
        if not self.data:
            return None
        match = re.search(r"^UID:(.+)$", self.data, re.MULTILINE)
        if match:
            return match.group(1).strip()
        ## folded lines and the like
        for comp in self.icalendar_instance.subcomponents:
            if comp.name in ("VEVENT", "VTODO", "VJOURNAL") and "UID" in comp:
                return str(comp["UID"])
        return None

    @property
    def icalendar_instance(self) -> Optional[icalendar.Calendar]:
        """
        The payload parsed with icalendar (a fresh copy on each access).
        """
        if not self.data:
            return None
        return icalendar.Calendar.from_ical(self.data)


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of syncing one collection.

    Attributes:
        collection_id: the synced collection
        new_token: token to store for the next incremental sync
        changes: classified changes, in the order the remote reported them
        snapshot: identifier -> etag of every item known after this sync
        full_sync: True if this came from a full enumeration, either
            because there was no prior token or because the server
            rejected it
        previous_token: the token this sync started from
    """

    collection_id: str
    new_token: Optional[str]
    changes: Tuple[ItemChange, ...] = ()
    snapshot: Dict[str, Optional[str]] = field(default_factory=dict)
    full_sync: bool = False
    previous_token: Optional[str] = None

    def _of_kind(self, kind: ChangeKind) -> list[ItemChange]:
        return [c for c in self.changes if c.kind is kind]

    @property
    def new_items(self) -> list[ItemChange]:
        return self._of_kind(ChangeKind.NEW)

    @property
    def modified_items(self) -> list[ItemChange]:
        return self._of_kind(ChangeKind.MODIFIED)

    @property
    def deleted_items(self) -> list[ItemChange]:
        return self._of_kind(ChangeKind.DELETED)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def fallback(self) -> bool:
        """True when a stored token was rejected and a full resync happened."""
        return self.full_sync and self.previous_token is not None


@dataclass
class CollectionState:
    """What the token store keeps per collection."""

    token: Optional[str] = None
    items: Dict[str, Optional[str]] = field(default_factory=dict)
    synced_at: Optional[datetime] = None


class BatchResult(Mapping):
    """
    Per-collection outcome of a multi-collection sync: each value is
    either a SyncResult or the exception that collection failed with.
    """

    def __init__(
        self, outcomes: Optional[Dict[str, Union[SyncResult, BaseException]]] = None
    ) -> None:
        self._outcomes: Dict[str, Union[SyncResult, BaseException]] = dict(
            outcomes or {}
        )

    def __getitem__(self, collection_id: str) -> Union[SyncResult, BaseException]:
        return self._outcomes[collection_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._outcomes)

    def __len__(self) -> int:
        return len(self._outcomes)

    def __repr__(self) -> str:
        return "BatchResult(%i succeeded, %i failed)" % (
            len(self.succeeded),
            len(self.failed),
        )

    @property
    def succeeded(self) -> Dict[str, SyncResult]:
        return {k: v for k, v in self._outcomes.items() if isinstance(v, SyncResult)}

    @property
    def failed(self) -> Dict[str, BaseException]:
        return {
            k: v for k, v in self._outcomes.items() if not isinstance(v, SyncResult)
        }

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise error.PartialBatchFailure(self)
