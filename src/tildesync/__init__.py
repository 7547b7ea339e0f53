"""Storage synchronization engine for the TildePlayer music player."""

from .config import Config, RemoteSettings, load_config
from .credentials import CredentialStore
from .errors import ErrorKind, SyncError
from .models import Collection, ForceSyncResult, RemoteDocument, SyncMode, SyncState
from .reconciler import reconcile
from .remote.client import RemoteDocumentClient
from .storage.kv_store import KeyValueStore
from .sync.coordinator import SyncCoordinator, build_coordinator
from .sync.events import EventType, SyncEvent, SyncNotifier

__all__ = [
    'Config',
    'RemoteSettings',
    'load_config',
    'CredentialStore',
    'ErrorKind',
    'SyncError',
    'Collection',
    'ForceSyncResult',
    'RemoteDocument',
    'SyncMode',
    'SyncState',
    'reconcile',
    'RemoteDocumentClient',
    'KeyValueStore',
    'SyncCoordinator',
    'build_coordinator',
    'EventType',
    'SyncEvent',
    'SyncNotifier',
]
