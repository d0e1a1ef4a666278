"""
TDS rules for the account, with per-rule domain bindings.
"""
import dataclasses
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from dashsync.coordination import CancellationToken, RequestCoordinator
from dashsync.errors import ApiError, ValidationError
from dashsync.schemas import TdsRulesResponse
from dashsync.tds_client import TdsClient
from .models import BindingStatus, DomainBinding, TdsRule
from .store import SyncStateStore

logger = logging.getLogger("sync_state.store")


class TdsStore(SyncStateStore[TdsRule]):
    """
    TDS rules in priority order.

    A TDS rule has no separate apply step: a successful PATCH is the
    remote confirmation, so updates go pending -> synced in one call.
    """

    name = "tds"

    def __init__(
        self,
        coordinator: RequestCoordinator,
        client: TdsClient,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(coordinator, clock)
        self.client = client
        self.bindings: Dict[int, List[DomainBinding]] = {}

    # ===== Rules =====

    async def _fetch(self, token: CancellationToken, force: bool) -> TdsRulesResponse:
        token.raise_if_cancelled()
        return await self.client.get_rules(force=force)

    def _parse(self, payload: TdsRulesResponse) -> List[TdsRule]:
        return [TdsRule.from_payload(rule) for rule in payload.rules]

    def reorder_optimistic(self, order: List[int]) -> None:
        """Reorder rules locally; ids not listed keep their relative order at the end."""
        reordered = {rule_id: self._entities[rule_id] for rule_id in order if rule_id in self._entities}
        for rule_id, rule in self._entities.items():
            reordered.setdefault(rule_id, rule)
        self._entities = {
            rule_id: dataclasses.replace(rule, priority=index)
            for index, (rule_id, rule) in enumerate(reordered.items())
        }
        self._emit()

    async def reorder_rules(self, order: List[int]) -> None:
        previous = list(self._entities.keys())
        self.reorder_optimistic(order)
        try:
            await self._coordinator.safe_call(
                lambda token: self.client.reorder_rules(order),
                lock_key="tds:reorder",
            )
        except ApiError:
            self.reorder_optimistic(previous)
            raise

    async def create_rule(
        self,
        rule_name: str,
        tds_type: str,
        logic: Optional[Dict[str, Any]] = None,
        priority: int = 0,
    ) -> TdsRule:
        if not rule_name.strip():
            raise ValidationError("Rule name is required", details={"field": "rule_name"})

        provisional = self.add_optimistic(TdsRule(
            id=self.provisional_id(),
            rule_name=rule_name,
            tds_type=tds_type,
            priority=priority,
            logic=dict(logic or {}),
        ))
        data = {"rule_name": rule_name, "tds_type": tds_type, "logic_json": logic or {}, "priority": priority}

        try:
            response = await self._coordinator.safe_call(
                lambda token: self.client.create_rule(data),
                lock_key="tds:create",
            )
        except ApiError as e:
            self.mark_error([provisional.id], provisional.stamp, e.message)
            raise

        stored = self.replace_provisional(provisional.id, TdsRule.from_payload(response.rule))
        # The create call is itself the remote apply
        self.confirm_synced([stored.id], stored.stamp)
        return self.get(stored.id) or stored

    async def update_rule(self, rule_id: int, **changes: Any) -> TdsRule:
        edited = self.update_optimistic(rule_id, **changes)
        if edited is None:
            raise ValidationError(f"Unknown TDS rule {rule_id}", details={"id": rule_id})

        wire = dict(changes)
        if "logic" in wire:
            wire["logic_json"] = wire.pop("logic")

        try:
            await self._coordinator.safe_call(
                lambda token: self.client.update_rule(rule_id, wire),
                lock_key=f"tds:update:{rule_id}",
            )
        except ApiError as e:
            self.mark_error([rule_id], edited.stamp, e.message)
            raise

        self.confirm_synced([rule_id], edited.stamp)
        return self.get(rule_id) or edited

    async def delete_rule(self, rule_id: int) -> bool:
        if self.remove_optimistic(rule_id) is None:
            return False
        try:
            await self._coordinator.safe_call(
                lambda token: self.client.delete_rule(rule_id),
                lock_key=f"tds:delete:{rule_id}",
            )
        except ApiError as e:
            self.restore_removed(rule_id, e.message)
            raise
        self.confirm_removed(rule_id)
        self.bindings.pop(rule_id, None)
        return True

    # ===== Domain bindings =====

    async def load_bindings(self, rule_id: int) -> Optional[List[DomainBinding]]:
        """
        Load the domains bound to a rule. Switching rules quickly keeps only
        the last one; a superseded load returns None.
        """

        def apply(payload) -> None:
            self.bindings[rule_id] = [DomainBinding.from_payload(b, rule_id) for b in payload]
            self._emit()

        async def fetch(token: CancellationToken):
            token.raise_if_cancelled()
            return await self.client.get_rule_domains(rule_id)

        payload = await self._coordinator.safe_call(fetch, abort_key="tds:bindings", apply=apply)
        if payload is None:
            return None
        return self.bindings.get(rule_id, [])

    async def bind_domains(self, rule_id: int, domain_ids: List[int]) -> List[DomainBinding]:
        """
        Bind domains: pending at once, applied on success. A failed bind
        drops the pending bindings and re-raises.
        """
        current = self.bindings.setdefault(rule_id, [])
        bound = {b.domain_id for b in current}
        new_ids = [domain_id for domain_id in domain_ids if domain_id not in bound]
        if not new_ids:
            return []

        pending = [DomainBinding(domain_id=domain_id, rule_id=rule_id) for domain_id in new_ids]
        current.extend(pending)
        self._emit()

        try:
            response = await self._coordinator.safe_call(
                lambda token: self.client.bind_domains(rule_id, new_ids),
                lock_key=f"tds:bind:{rule_id}",
            )
        except ApiError:
            self.bindings[rule_id] = [b for b in self.bindings.get(rule_id, []) if not any(b is p for p in pending)]
            self._emit()
            raise

        confirmed = {b.domain_id: b for b in response.bindings}
        applied = []
        for binding in pending:
            wire = confirmed.get(binding.domain_id)
            if wire is not None:
                binding.binding_id = wire.binding_id
                binding.domain_name = wire.domain_name or binding.domain_name
                binding.enabled = wire.enabled
            binding.binding_status = BindingStatus.APPLIED
            applied.append(binding)
        logger.info(f"Bound {len(applied)} domain(s) to TDS rule {rule_id}")
        self._emit()
        return applied

    async def unbind_domain(self, rule_id: int, domain_id: int) -> bool:
        """
        Unbind a domain: shown as removed at once and dropped on success;
        the previous status comes back if the call fails.
        """
        binding = next((b for b in self.bindings.get(rule_id, []) if b.domain_id == domain_id), None)
        if binding is None:
            return False

        previous = binding.binding_status
        binding.binding_status = BindingStatus.REMOVED
        self._emit()

        try:
            await self._coordinator.safe_call(
                lambda token: self.client.unbind_domain(rule_id, domain_id),
                lock_key=f"tds:unbind:{rule_id}:{domain_id}",
            )
        except ApiError:
            binding.binding_status = previous
            self._emit()
            raise

        self.bindings[rule_id] = [b for b in self.bindings.get(rule_id, []) if b is not binding]
        self._emit()
        return True

    def clear(self) -> None:
        self.bindings = {}
        super().clear()
