"""
Sync-state store: the canonical local list of remote-synchronized entities.

Three kinds of change are applied here:
- Full reload from a list fetch
- Optimistic point updates (create/update/delete), applied before the
  network call confirming them returns
- Sync confirmation after a separate apply-to-remote call

Every local mutation is stamped from a strictly increasing sequence. A
confirmation or error report carries the stamp taken when its request was
issued and only touches entities not mutated since, so a late-arriving
older result can never undo a newer optimistic edit.
"""
import dataclasses
import itertools
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from dashsync.coordination import CancellationToken, RequestCoordinator
from dashsync.errors import Aborted, ApiError, ValidationError
from .models import SyncStatus

logger = logging.getLogger("sync_state.store")

EntityT = TypeVar("EntityT")

# Set by the store itself, never by a caller's field changes
MANAGED_FIELDS = frozenset({"id", "sync_status", "last_sync_at", "sync_error", "stamp"})


@dataclass(frozen=True)
class StoreSnapshot(Generic[EntityT]):
    """Immutable view handed to subscribers; replaced on every change."""
    entities: Tuple[EntityT, ...] = ()
    loading: bool = False
    error: Optional[str] = None
    last_loaded_at: Optional[float] = None
    generation: int = 0


Listener = Callable[[StoreSnapshot], None]


@dataclass
class Tombstone(Generic[EntityT]):
    """An entity hidden by a local delete; ``confirmed_at`` is set once the remote delete succeeded."""
    entity: EntityT
    removed_at: float
    confirmed_at: Optional[float] = None


class SyncStateStore(Generic[EntityT]):
    """
    Base store for entities with ``id``, ``sync_status``, ``last_sync_at``,
    ``sync_error`` and ``stamp`` attributes.

    Subclasses implement ``_fetch`` (network load, given the call's
    cancellation token) and ``_parse`` (payload to entities), and may
    override ``_loaded`` to keep extra data from the payload.
    """

    name = "entities"

    def __init__(self, coordinator: RequestCoordinator, clock: Callable[[], float] = time.monotonic):
        self._coordinator = coordinator
        self._clock = clock
        self._entities: Dict[Any, EntityT] = {}
        self._tombstones: Dict[Any, Tombstone[EntityT]] = {}
        self._loading = False
        self._error: Optional[str] = None
        self._last_loaded_at: Optional[float] = None
        self._last_stamp = 0.0
        self._provisional_ids = itertools.count(-1, -1)
        self._snapshot: StoreSnapshot = StoreSnapshot()
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    @property
    def entities(self) -> List[EntityT]:
        return list(self._snapshot.entities)

    def get(self, entity_id: Any) -> Optional[EntityT]:
        return self._entities.get(entity_id)

    def count_by_status(self) -> Dict[SyncStatus, int]:
        counts = {status: 0 for status in SyncStatus}
        for entity in self._entities.values():
            counts[entity.sync_status] += 1
        return counts

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def on_state_change(self, callback: Listener, emit_current: bool = False) -> Callable[[], None]:
        """
        Register a callback invoked synchronously with every new snapshot.

        Returns:
            Unsubscribe callable
        """
        self._listeners.append(callback)
        if emit_current:
            callback(self._snapshot)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self) -> None:
        self._snapshot = StoreSnapshot(
            entities=tuple(self._entities.values()),
            loading=self._loading,
            error=self._error,
            last_loaded_at=self._last_loaded_at,
            generation=self._snapshot.generation + 1,
        )
        snapshot = self._snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"{self.name} listener failed")

    # ------------------------------------------------------------------
    # Stamps
    # ------------------------------------------------------------------

    def _stamp(self) -> float:
        stamp = max(self._clock(), self._last_stamp + 1e-6)
        self._last_stamp = stamp
        return stamp

    def begin_reconciliation(self) -> float:
        """Stamp for an apply-to-remote call about to be issued."""
        return self._stamp()

    def provisional_id(self) -> int:
        """Negative id for an entity the server has not assigned one to yet."""
        return next(self._provisional_ids)

    # ------------------------------------------------------------------
    # Full reload
    # ------------------------------------------------------------------

    async def _fetch(self, token: CancellationToken, force: bool) -> Any:
        raise NotImplementedError

    def _parse(self, payload: Any) -> List[EntityT]:
        raise NotImplementedError

    def _loaded(self, payload: Any) -> None:
        """Hook for data carried by the payload besides the entities."""

    async def load_entities(self, force: bool = False) -> StoreSnapshot:
        """
        Reload the list, superseding any load already in flight.

        A failure keeps the entities already displayed and records the
        message in ``snapshot.error``; it is not raised.
        """
        started = self._stamp()
        self._loading = True
        self._error = None
        self._emit()

        try:
            await self._coordinator.safe_call(
                lambda token: self._fetch(token, force),
                abort_key=f"{self.name}:load",
                apply=lambda payload: self._apply_reload(payload, started),
            )
        except Aborted:
            logger.info(f"{self.name} load cancelled")
            self._loading = False
            self._emit()
        except ApiError as e:
            logger.warning(f"{self.name} load failed: {e.message}")
            self._loading = False
            self._error = e.message or f"Failed to load {self.name}"
            self._emit()

        return self._snapshot

    async def refresh_entities(self) -> StoreSnapshot:
        """Reload bypassing the cache."""
        return await self.load_entities(force=True)

    def _apply_reload(self, payload: Any, started: float) -> None:
        # A reload issued after a delete was confirmed no longer lists the entity
        self._tombstones = {
            entity_id: tombstone
            for entity_id, tombstone in self._tombstones.items()
            if tombstone.confirmed_at is None or tombstone.confirmed_at > started
        }

        fresh: Dict[Any, EntityT] = {}
        for entity in self._parse(payload):
            if entity.id in self._tombstones:
                continue
            fresh[entity.id] = dataclasses.replace(entity, stamp=started)

        # Local edits made after the reload was issued win over the reloaded copy
        kept = 0
        for entity_id, entity in self._entities.items():
            if entity.stamp > started:
                fresh[entity_id] = entity
                kept += 1

        self._entities = fresh
        self._loaded(payload)
        self._loading = False
        self._error = None
        self._last_loaded_at = self._clock()
        logger.info(f"Loaded {len(fresh)} {self.name} ({kept} newer local edits kept)")
        self._emit()

    # ------------------------------------------------------------------
    # Optimistic updates
    # ------------------------------------------------------------------

    def add_optimistic(self, entity: EntityT) -> EntityT:
        """Insert an entity as pending."""
        entity = dataclasses.replace(
            entity, sync_status=SyncStatus.PENDING, sync_error=None, stamp=self._stamp()
        )
        self._entities[entity.id] = entity
        self._emit()
        return entity

    def update_optimistic(self, entity_id: Any, **changes: Any) -> Optional[EntityT]:
        """
        Apply field changes and mark the entity pending. None if unknown.

        Raises:
            ValidationError: A change names an unknown or store-managed field
        """
        current = self._entities.get(entity_id)
        if current is None:
            return None
        editable = {f.name for f in dataclasses.fields(current)} - MANAGED_FIELDS
        rejected = sorted(set(changes) - editable)
        if rejected:
            raise ValidationError(
                f"Cannot change {', '.join(rejected)} on {self.name} {entity_id}",
                details={"fields": rejected},
            )
        updated = dataclasses.replace(
            current, **changes, sync_status=SyncStatus.PENDING, sync_error=None, stamp=self._stamp()
        )
        self._entities[entity_id] = updated
        self._emit()
        return updated

    def remove_optimistic(self, entity_id: Any) -> Optional[EntityT]:
        """Hide an entity while its remote delete is in flight. None if unknown."""
        current = self._entities.pop(entity_id, None)
        if current is None:
            return None
        self._tombstones[entity_id] = Tombstone(current, self._stamp())
        self._emit()
        return current

    def confirm_removed(self, entity_id: Any) -> None:
        """
        Record that the remote delete succeeded.

        The tombstone stays until a reload issued after this point, so a
        reload already in flight cannot bring the entity back.
        """
        tombstone = self._tombstones.get(entity_id)
        if tombstone is not None and tombstone.confirmed_at is None:
            tombstone.confirmed_at = self._stamp()

    def restore_removed(self, entity_id: Any, message: str) -> Optional[EntityT]:
        """Put back an entity whose remote delete failed, flagged as error."""
        tombstone = self._tombstones.get(entity_id)
        if tombstone is None or tombstone.confirmed_at is not None:
            return None
        del self._tombstones[entity_id]
        restored = dataclasses.replace(
            tombstone.entity, sync_status=SyncStatus.ERROR, sync_error=message, stamp=self._stamp()
        )
        self._entities[entity_id] = restored
        self._emit()
        return restored

    def replace_provisional(self, provisional_id: Any, entity: EntityT) -> EntityT:
        """
        Swap a provisional entity for the server's copy, keeping its position
        and local sync state.
        """
        current = self._entities.get(provisional_id)
        if entity.id in self._entities and entity.id != provisional_id:
            # Another caller already stored the server copy
            self._entities.pop(provisional_id, None)
            self._emit()
            return self._entities[entity.id]

        status = current.sync_status if current is not None else SyncStatus.PENDING
        error = current.sync_error if current is not None else None
        stored = dataclasses.replace(entity, sync_status=status, sync_error=error, stamp=self._stamp())

        if current is None:
            self._entities[stored.id] = stored
        else:
            self._entities = {
                (stored.id if key == provisional_id else key): (stored if key == provisional_id else value)
                for key, value in self._entities.items()
            }
        self._emit()
        return stored

    def discard(self, entity_id: Any) -> bool:
        """Drop a local entity outright (user chose discard over retry)."""
        if self._entities.pop(entity_id, None) is None:
            return False
        self._emit()
        return True

    # ------------------------------------------------------------------
    # Sync confirmation
    # ------------------------------------------------------------------

    def mark_pending(self, ids: Iterable[Any]) -> float:
        """
        Mark entities pending (retry after an error).

        Returns:
            The stamp applied
        """
        stamp = self._stamp()
        changed = False
        for entity_id in ids:
            current = self._entities.get(entity_id)
            if current is None or current.sync_status == SyncStatus.PENDING:
                continue
            self._entities[entity_id] = dataclasses.replace(
                current, sync_status=SyncStatus.PENDING, sync_error=None, stamp=stamp
            )
            changed = True
        if changed:
            self._emit()
        return stamp

    def confirm_synced(self, ids: Iterable[Any], at: float, synced_at: Optional[datetime] = None) -> List[Any]:
        """
        Mark pending entities synced.

        Entities mutated after ``at`` are left alone (stale confirmation).

        Returns:
            Ids actually confirmed
        """
        synced_at = synced_at or datetime.now(timezone.utc)
        return self._settle(ids, at, SyncStatus.SYNCED, None, synced_at)

    def mark_error(self, ids: Iterable[Any], at: float, message: str) -> List[Any]:
        """
        Mark pending entities as failed to sync, keeping the local edit.

        Returns:
            Ids actually marked
        """
        return self._settle(ids, at, SyncStatus.ERROR, message, None)

    def _settle(
        self,
        ids: Iterable[Any],
        at: float,
        status: SyncStatus,
        message: Optional[str],
        synced_at: Optional[datetime],
    ) -> List[Any]:
        settled = []
        for entity_id in ids:
            current = self._entities.get(entity_id)
            if current is None or current.sync_status != SyncStatus.PENDING:
                continue
            if current.stamp > at:
                logger.warning(
                    f"Rejected stale {status.value} for {self.name} {entity_id} "
                    f"(issued at {at:.6f}, entity stamped {current.stamp:.6f})"
                )
                continue
            changes: Dict[str, Any] = {"sync_status": status, "sync_error": message}
            if synced_at is not None:
                changes["last_sync_at"] = synced_at
            self._entities[entity_id] = dataclasses.replace(current, **changes)
            settled.append(entity_id)

        if settled:
            logger.info(f"{len(settled)} {self.name} marked {status.value}")
            self._emit()
        return settled

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Drop everything (logout or page leave)."""
        self._entities = {}
        self._tombstones = {}
        self._loading = False
        self._error = None
        self._last_loaded_at = None
        self._emit()
