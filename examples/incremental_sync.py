import logging
import sys

## We'll try to use the local caldav_sync library, not the system-installed
sys.path.insert(0, "..")
sys.path.insert(0, ".")

from caldav_sync import SyncCoordinator
from caldav_sync import SyncTokenStore
from caldav_sync import config

## CONFIGURATION.  Set CALDAV_URL, CALDAV_USERNAME, CALDAV_PASSWORD and
## CALDAV_COLLECTIONS (comma separated collection paths) in the
## environment, or put caldav_url, caldav_user, caldav_pass and
## caldav_collections in ~/.config/caldav/calendar.conf.  The tokens are
## kept in the file given by CALDAV_SYNC_STORE.


def print_changes(result, max_shown=3):
    """
    Prints what happened to one collection, with a few hrefs per class
    """
    print(
        f"{result.collection_id}: {len(result.new_items)} new, "
        f"{len(result.modified_items)} modified, "
        f"{len(result.deleted_items)} deleted"
        + (" (full sync)" if result.full_sync else "")
    )
    for label, items in (
        ("new", result.new_items),
        ("modified", result.modified_items),
        ("deleted", result.deleted_items),
    ):
        for change in items[:max_shown]:
            print(f"  {label}: {change.identifier}")
        if len(items) > max_shown:
            print(f"  ... and {len(items) - max_shown} more {label}")


def run(remote, collection_ids, store_path):
    """
    One sync run: load the tokens, sync every collection, report,
    store the new tokens of the collections that went well.

    Returns the BatchResult.
    """
    ## A missing store file just means that this is the first run,
    ## all collections will be fully enumerated.
    store = SyncTokenStore.load(store_path)

    ## The coordinator never writes to the store by itself ...
    coordinator = SyncCoordinator(remote)
    batch = coordinator.sync_many(collection_ids, store)

    for cid, outcome in batch.items():
        if cid in batch.succeeded:
            print_changes(outcome)
        else:
            print(f"{cid}: FAILED - {outcome}")

    ## ... only the successful collections get their token advanced.
    ## A failing one keeps the old token, and will be retried from
    ## there on the next run.
    store.merge(batch)
    store.save()
    return batch


def main():
    logging.basicConfig(level=logging.INFO)
    collection_ids = config.get_collections()
    if not collection_ids:
        print("No collections configured, set CALDAV_COLLECTIONS")
        return 2
    remote = config.get_remote()
    if remote is None:
        print("No server configured, set CALDAV_URL")
        return 2
    with remote:
        batch = run(remote, collection_ids, config.get_store_path())
    return 0 if batch.ok else 1


if __name__ == "__main__":
    sys.exit(main())
