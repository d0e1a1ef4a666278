"""
Zone sync: pushes pending redirect rules to the provider and reconciles
the store with the result.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from dashsync.coordination import RequestCoordinator
from dashsync.errors import ApiError, AuthExpired
from dashsync.redirects_client import RedirectsClient
from dashsync.schemas import ApplyRedirectsResponse
from .models import SyncStatus
from .redirects_store import RedirectsStore

logger = logging.getLogger("sync_state.reconciler")


@dataclass
class SyncAllResult:
    """Outcome of a sync-all run."""
    zones: List[int] = field(default_factory=list)
    rules_applied: int = 0
    failed: Dict[int, str] = field(default_factory=dict)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.failed


class ZoneSyncReconciler:
    """
    Applies redirect rules zone by zone.

    Failures leave the affected rules in ``error`` with the message, so the
    UI keeps showing them until the user retries or discards.
    """

    def __init__(self, store: RedirectsStore, client: RedirectsClient, coordinator: RequestCoordinator):
        self.store = store
        self.client = client
        self.coordinator = coordinator
        self._syncing = False

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def zones_needing_sync(self) -> List[int]:
        """Zones with pending or failed rules, skipping paused and archived sites."""
        zones = {
            rule.zone_id
            for rule in self.store.entities
            if rule.zone_id and rule.is_active_site and rule.needs_sync
        }
        return sorted(zones)

    async def apply_zone(self, zone_id: int) -> ApplyRedirectsResponse:
        """
        Apply one zone and confirm the rules the provider reports as synced.

        Rules edited while the call is in flight keep their newer pending
        state; rules in error are retried.
        """
        retry = [rule.id for rule in self.store.rules_in_zone(zone_id) if rule.sync_status == SyncStatus.ERROR]
        self.store.mark_pending(retry)
        at = self.store.begin_reconciliation()

        try:
            response = await self.coordinator.safe_call(
                lambda token: self.client.apply_zone_redirects(zone_id),
                lock_key=f"zone:sync:{zone_id}",
            )
        except ApiError as e:
            pending = [r.id for r in self.store.rules_in_zone(zone_id) if r.sync_status == SyncStatus.PENDING]
            self.store.mark_error(pending, at, e.message)
            logger.warning(f"Zone {zone_id} sync failed: {e.message}")
            raise

        confirmed = self.store.confirm_synced([rule.id for rule in response.synced_rules], at)
        logger.info(f"Zone {zone_id} synced: {len(confirmed)} rule(s) confirmed")
        return response

    async def sync_all(self) -> SyncAllResult:
        """
        Sync every zone that needs it, then reload the store.

        Guarded against re-entry: a second call while one is running returns
        a skipped result immediately.
        """
        if self._syncing:
            logger.debug("Sync already running")
            return SyncAllResult(skipped=True)

        self._syncing = True
        try:
            zones = self.zones_needing_sync()
            result = SyncAllResult(zones=zones)
            if not zones:
                logger.info("All redirects are already synced")
                return result

            for zone_id in zones:
                try:
                    response = await self.apply_zone(zone_id)
                except AuthExpired:
                    raise
                except ApiError as e:
                    result.failed[zone_id] = e.message
                    continue
                result.rules_applied += response.rules_applied

            await self.store.refresh_entities()
            logger.info(
                f"Synced {len(zones) - len(result.failed)} of {len(zones)} zone(s): "
                f"{result.rules_applied} redirect(s) applied"
            )
            return result
        finally:
            self._syncing = False
