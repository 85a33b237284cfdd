"""pocketsync: keep a local collection in sync with a PocketBase collection."""

from .collection import ApplySink, LocalCollection
from .config import CollectionConfig, Config, RemoteConfig, load_config
from .errors import (
    PocketSyncError,
    SubscriptionError,
    TimeoutWaitingForIds,
    TransactionError,
    UnexpectedMutationKind,
)
from .remote import PocketBaseClient, RecordService
from .sync import CollectionSync
from .types import (
    ApplyKind,
    ApplyOp,
    EventKind,
    FetchOptions,
    Mutation,
    MutationKind,
    RealtimeEvent,
)

__version__ = "0.1.0"

__all__ = [
    "ApplyKind",
    "ApplyOp",
    "ApplySink",
    "CollectionConfig",
    "CollectionSync",
    "Config",
    "EventKind",
    "FetchOptions",
    "LocalCollection",
    "Mutation",
    "MutationKind",
    "PocketBaseClient",
    "PocketSyncError",
    "RealtimeEvent",
    "RecordService",
    "RemoteConfig",
    "SubscriptionError",
    "TimeoutWaitingForIds",
    "TransactionError",
    "UnexpectedMutationKind",
    "load_config",
]
