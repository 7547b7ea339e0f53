"""Synchronization between the local store and the remote document.

This module orchestrates the local key/value store, the credential store
and the remote document client. The local store is always written first;
the remote document is only involved while the credentials are valid, and
any remote failure degrades the current call to local-only operation.
"""

import asyncio
import logging
from dataclasses import replace
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..config import Config
from ..credentials import CredentialStore
from ..errors import LocalStorageError, NotFoundError, SyncError, ValidationError
from ..models import (
    Collection,
    ErrorRecord,
    ForceSyncResult,
    RemoteDocument,
    SyncMode,
    SyncState,
    TRACK_COLLECTIONS,
    isoformat,
    parse_isoformat,
    utc_now,
)
from ..reconciler import (
    DEFAULT_DURATION_POLICY,
    find_new,
    merge_into,
    reconcile,
    validate_collection,
)
from ..remote.client import RemoteDocumentClient
from ..storage.kv_store import KeyValueStore
from .events import SyncNotifier

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "lastSyncTimestamp"

# A missing remote document is created once and the operation retried once
MAX_CREATE_ATTEMPTS = 1


class SyncCoordinator:
    """Service keeping the named collections consistent across backends."""

    def __init__(
        self,
        store: KeyValueStore,
        credentials: CredentialStore,
        client: RemoteDocumentClient,
        notifier: Optional[SyncNotifier] = None,
        duration_policy: str = DEFAULT_DURATION_POLICY,
    ):
        """Initialize the sync coordinator.

        Args:
            store: Local store used as the durability floor
            credentials: Remote document id and token
            client: Client for the remote document
            notifier: Channel for readiness and error events
            duration_policy: Canonical value for legacy ``medium`` durations
        """
        self.store = store
        self.credentials = credentials
        self.client = client
        self.notifier = notifier or SyncNotifier()
        self.duration_policy = duration_policy
        self._state = SyncState(
            credentials_valid=credentials.has_valid_settings,
            last_sync=parse_isoformat(store.get(LAST_SYNC_KEY)),
        )
        self._ready = asyncio.Event()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def remote_enabled(self) -> bool:
        return self.credentials.has_valid_settings

    async def initialize(self) -> SyncState:
        """Validate credentials, pull the remote document and reconcile.

        Returns:
            State after initialization; remote problems leave it in LOCAL mode
        """
        logger.info("Initializing storage synchronization")

        if self.credentials.token:
            await self.credentials.validate()
        self._update_state()

        if self.remote_enabled:
            await self._pull()
        else:
            logger.warning("No valid remote settings, using local storage only")
            self._update_state(mode=SyncMode.LOCAL)

        await self.sync_track_collections()

        self._update_state(initialized=True)
        self.notifier.ready(f"Storage ready in {self._state.mode.value} mode")
        self._ready.set()
        return self._state

    async def wait_ready(self) -> SyncState:
        """Wait until ``initialize`` has completed."""
        await self._ready.wait()
        return self._state

    async def save_data(self, name, value: Any) -> bool:
        """Save a collection locally, then remotely when possible.

        Returns:
            True if the value reached the remote document, or was stored
            locally when the remote side is unavailable
        """
        try:
            collection = self._parse(name)
            if collection in TRACK_COLLECTIONS:
                validate_collection(collection, value)
            elif not isinstance(value, list):
                raise ValidationError(f"Collection '{collection.value}' must be a list")
        except ValidationError as e:
            self._report(e)
            return False

        success = self._store_local(collection, value)

        if collection is Collection.APPROVED:
            self._merge_approved_locally(value)

        pulled = False
        if self.remote_enabled:
            if await self._push({collection: value}):
                success = True
                pulled = await self._pull() is not None
        else:
            logger.debug(f"Saved {collection.value} to local storage only")
            self._update_state(mode=SyncMode.LOCAL)

        # A pull can bring in track collections that break the invariants
        if pulled or collection in TRACK_COLLECTIONS:
            await self.sync_track_collections()

        return success

    async def load_data(self, name) -> Any:
        """Load a collection, preferring the remote copy.

        Returns:
            Collection value, or None if it exists nowhere
        """
        try:
            collection = self._parse(name)
        except ValidationError as e:
            self._report(e)
            return None

        remote = self.remote_enabled
        value = None

        if remote:
            try:
                document = await self.client.fetch_document()
            except SyncError as e:
                self._report(e)
                remote = False
            else:
                self._update_state(mode=SyncMode.REMOTE)
                value = document.get(collection)
                if value is not None:
                    self._store_local(collection, value)
        else:
            self._update_state(mode=SyncMode.LOCAL)

        if value is None:
            value = self.store.get(collection.value)

        if collection is Collection.TRACKS and not value:
            approved = self.store.get(Collection.APPROVED.value)
            if isinstance(approved, list) and approved:
                logger.info(
                    f"No tracks in main collection, using {len(approved)} approved tracks"
                )
                value = approved
                self._store_local(Collection.TRACKS, approved)
                if remote:
                    await self._push({Collection.TRACKS: approved})

        return value

    async def sync_track_collections(self) -> Set[Collection]:
        """Reconcile the track collections and persist the ones that changed.

        Safe to call any number of times.

        Returns:
            Names of the collections that were rewritten
        """
        collections = {name: self.store.get(name.value) for name in TRACK_COLLECTIONS}
        try:
            result = reconcile(collections, self.duration_policy)
        except ValidationError as e:
            self._report(e)
            return set()

        changed = result.changed_collections()
        if not changed:
            logger.debug("Track collections already consistent")
            return set()

        for name, value in changed.items():
            self._store_local(name, value)
        logger.info(
            "Reconciled "
            + ", ".join(f"{name.value} ({len(value)})" for name, value in changed.items())
        )

        if self.remote_enabled:
            await self._push(changed)

        return set(changed)

    async def force_sync_all(self) -> ForceSyncResult:
        """Push every non-empty local track collection, pull, then reconcile."""
        logger.info("Performing full synchronization")

        if not self.remote_enabled:
            logger.info("No valid remote settings, only reconciling local collections")
            await self.sync_track_collections()
            return self._local_result()

        try:
            for name in TRACK_COLLECTIONS:
                value = self.store.get(name.value)
                if isinstance(value, list) and value:
                    await self._with_document(partial(self.client.patch_document, {name: value}))
            await self._pull_remote()
        except SyncError as e:
            self._report(e)
            return ForceSyncResult(success=False, error=str(e), error_kind=e.kind)

        await self.sync_track_collections()
        result = self._local_result()
        logger.info(
            f"Full sync complete: {len(result.tracks)} tracks, "
            f"{len(result.approved_tracks)} approved, {len(result.pending_tracks)} pending"
        )
        return result

    def set_credential(self, token: Optional[str]) -> Optional[asyncio.Task]:
        """Update the token; validation runs in the background.

        Returns:
            The validation task, if one was scheduled
        """
        task = self.credentials.set_token(token)
        if task is not None:
            task.add_done_callback(lambda _: self._update_state())
        self._update_state()
        return task

    def set_document_id(self, document_id: Optional[str]) -> None:
        self.credentials.set_document_id(document_id)
        self._update_state()

    async def close(self) -> None:
        await self.client.close()
        self.store.close()

    async def _push(self, fields: Dict[Collection, List[Any]]) -> bool:
        try:
            await self._with_document(partial(self.client.patch_document, fields))
        except SyncError as e:
            self._report(e)
            return False
        self._update_state(mode=SyncMode.REMOTE)
        return True

    async def _pull(self) -> Optional[RemoteDocument]:
        try:
            return await self._with_document(self._pull_remote)
        except SyncError as e:
            self._report(e)
            return None

    async def _pull_remote(self) -> RemoteDocument:
        """Overwrite local collections with the ones in the remote document."""
        document = await self.client.fetch_document()
        pulled = document.collections()
        summary = []
        for name, value in pulled.items():
            new = self._count_new(name, self.store.get(name.value), value)
            self._store_local(name, value)
            summary.append(f"{name.value} ({new} new)" if new else name.value)

        now = utc_now()
        self.store.set(LAST_SYNC_KEY, isoformat(now))
        self._update_state(mode=SyncMode.REMOTE, last_sync=now)
        self.notifier.synced(
            f"Pulled {', '.join(summary) or 'nothing'} from remote document"
        )
        return document

    async def _with_document(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``operation``, creating the remote document if it is missing."""
        created = 0
        while True:
            try:
                return await operation()
            except NotFoundError:
                if created >= MAX_CREATE_ATTEMPTS or not self.credentials.token:
                    raise
                created += 1
                await self._create_document()

    async def _create_document(self) -> None:
        # Seeded with the local copy so the following pull cannot erase it
        document = RemoteDocument.empty()
        for name in Collection:
            value = self.store.get(name.value)
            if isinstance(value, list):
                document.set(name, value)

        document_id = await self.client.create_document(document)
        self.credentials.set_document_id(document_id)
        logger.info(f"Created remote document {document_id}")

    @staticmethod
    def _count_new(name: Collection, previous: Any, pulled: List[Any]) -> int:
        """Number of pulled tracks that were not in the local copy."""
        if name not in TRACK_COLLECTIONS:
            return 0
        try:
            baseline = validate_collection(name, previous if isinstance(previous, list) else None)
            return len(find_new(baseline, validate_collection(name, pulled)))
        except ValidationError:
            return 0

    def _merge_approved_locally(self, approved: List[Any]) -> None:
        tracks = self.store.get(Collection.TRACKS.value)
        if not isinstance(tracks, list):
            tracks = []
        merged, modified = merge_into(tracks, approved)
        if modified:
            self._store_local(Collection.TRACKS, merged)
            logger.info(f"Added {len(merged) - len(tracks)} approved tracks to main collection")

    def _store_local(self, name: Collection, value: Any) -> bool:
        if self.store.set(name.value, value):
            return True
        self._report(
            self.store.last_error or LocalStorageError(f"Could not store {name.value} locally")
        )
        return False

    def _local_result(self) -> ForceSyncResult:
        def collection(name: Collection) -> List[Any]:
            value = self.store.get(name.value)
            return value if isinstance(value, list) else []

        return ForceSyncResult(
            success=True,
            tracks=collection(Collection.TRACKS),
            approved_tracks=collection(Collection.APPROVED),
            pending_tracks=collection(Collection.PENDING),
        )

    def _report(self, error: SyncError) -> None:
        logger.warning(f"[{error.kind.value}] {error}")
        self._update_state(
            mode=SyncMode.LOCAL,
            last_error=ErrorRecord(kind=error.kind, message=str(error)),
        )
        self.notifier.error(error.kind, str(error))

    def _update_state(self, **changes) -> None:
        changes.setdefault('credentials_valid', self.credentials.has_valid_settings)
        self._state = replace(self._state, **changes)

    @staticmethod
    def _parse(name) -> Collection:
        try:
            return Collection.parse(name)
        except ValueError:
            raise ValidationError(f"Unknown collection: {name}")


def build_coordinator(config: Config, notifier: Optional[SyncNotifier] = None) -> SyncCoordinator:
    """Wire a coordinator from configuration."""
    store = KeyValueStore(config.db_path, max_bytes=config.max_bytes)
    credentials = CredentialStore(store)
    client = RemoteDocumentClient(credentials, config.remote)
    credentials.validator = client.validate_credential
    return SyncCoordinator(
        store,
        credentials,
        client,
        notifier=notifier,
        duration_policy=config.duration_policy,
    )
