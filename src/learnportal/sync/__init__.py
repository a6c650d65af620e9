"""Best-effort replication of local records to a remote document store."""

from learnportal.sync.coordinator import (
    FlushReport,
    ReplicationCoordinator,
    ReplicationJob,
    collection_for,
)
from learnportal.sync.remote import HttpRemoteStore, NullRemoteStore, RemoteStore

__all__ = [
    "FlushReport",
    "HttpRemoteStore",
    "NullRemoteStore",
    "RemoteStore",
    "ReplicationCoordinator",
    "ReplicationJob",
    "collection_for",
]
