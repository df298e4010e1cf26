#!/usr/bin/env python
import logging

__version__ = "0.3.0"

from .async_coordinator import AsyncSyncCoordinator
from .coordinator import SyncCoordinator
from .store import SyncTokenStore
from .types import BatchResult
from .types import ChangeKind
from .types import ItemChange
from .types import SyncResult

# Silence notification of no default logging handler
log = logging.getLogger("caldav_sync")
log.addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "AsyncSyncCoordinator",
    "BatchResult",
    "ChangeKind",
    "ItemChange",
    "SyncCoordinator",
    "SyncResult",
    "SyncTokenStore",
]
