"""
Redirect rules across the selected sites.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from dashsync.coordination import CancellationToken, RequestCoordinator
from dashsync.errors import ApiError, ValidationError
from dashsync.redirects_client import RedirectsClient
from dashsync.schemas import RedirectDomainPayload, SiteRedirectsResponse, ZoneLimit
from .models import RedirectRule, SiteContext
from .store import SyncStateStore

logger = logging.getLogger("sync_state.store")

VALID_STATUS_CODES = (301, 302)


class RedirectsStore(SyncStateStore[RedirectRule]):
    """
    Redirect rules of every selected site, flattened into one list.

    Besides the rules it keeps every domain of the loaded sites (a rule can
    only be created on a known domain) and the zone quotas, deduplicated by
    zone.
    """

    name = "redirects"

    def __init__(
        self,
        coordinator: RequestCoordinator,
        client: RedirectsClient,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(coordinator, clock)
        self.client = client
        self.site_contexts: List[SiteContext] = []
        self.domains: Dict[int, Tuple[RedirectDomainPayload, SiteContext]] = {}
        self.zone_limits: List[ZoneLimit] = []
        self.total_domains = 0
        self.total_redirects = 0

    # ===== Loading =====

    async def select_sites(self, contexts: List[SiteContext], force: bool = False):
        """Switch the selection and load it; an empty selection clears the store."""
        self.site_contexts = list(contexts)
        if not self.site_contexts:
            self._coordinator.cancel(f"{self.name}:load", "selection cleared")
            self.clear()
            return self.snapshot
        return await self.load_entities(force=force)

    async def _fetch(
        self, token: CancellationToken, force: bool
    ) -> List[Tuple[SiteContext, SiteRedirectsResponse]]:
        contexts = list(self.site_contexts)
        responses = await asyncio.gather(*(
            self.client.get_site_redirects(ctx.site_id, force=force, token=token)
            for ctx in contexts
        ))
        return list(zip(contexts, responses))

    def _parse(self, payload: List[Tuple[SiteContext, SiteRedirectsResponse]]) -> List[RedirectRule]:
        rules = []
        for context, response in payload:
            for domain in response.domains:
                if domain.redirect is not None:
                    rules.append(RedirectRule.from_payload(domain, context))
        return rules

    def _loaded(self, payload: List[Tuple[SiteContext, SiteRedirectsResponse]]) -> None:
        self.domains = {}
        limits: Dict[int, ZoneLimit] = {}
        self.total_domains = 0
        self.total_redirects = 0
        for context, response in payload:
            for domain in response.domains:
                self.domains[domain.domain_id] = (domain, context)
            for limit in response.zone_limits:
                limits.setdefault(limit.zone_id, limit)
            self.total_domains += response.total_domains
            self.total_redirects += response.total_redirects
        self.zone_limits = list(limits.values())

    def clear(self) -> None:
        self.domains = {}
        self.zone_limits = []
        self.total_domains = 0
        self.total_redirects = 0
        super().clear()

    # ===== Selectors =====

    def rules_in_zone(self, zone_id: int) -> List[RedirectRule]:
        return [rule for rule in self._entities.values() if rule.zone_id == zone_id]

    def find_by_domain(self, domain_id: int) -> Optional[RedirectRule]:
        for rule in self._entities.values():
            if rule.domain_id == domain_id:
                return rule
        return None

    # ===== Workflows =====

    async def create_rule(
        self,
        domain_id: int,
        template_id: str,
        params: Optional[Dict[str, Any]] = None,
        status_code: int = 301,
    ) -> RedirectRule:
        """
        Create a redirect: shown as pending at once, then swapped for the
        server's copy. A failed create stays in the list as an error.
        """
        if status_code not in VALID_STATUS_CODES:
            raise ValidationError(f"Unsupported status code {status_code}", details={"status_code": status_code})
        known = self.domains.get(domain_id)
        if known is None:
            raise ValidationError(f"Unknown domain {domain_id}", details={"domain_id": domain_id})
        domain, context = known

        provisional = self.add_optimistic(RedirectRule(
            id=self.provisional_id(),
            domain_id=domain_id,
            domain_name=domain.domain_name,
            zone_id=domain.zone_id,
            site_id=context.site_id,
            site_name=context.site_name,
            site_status=domain.site_status,
            template_id=template_id,
            params=dict(params or {}),
            status_code=status_code,
        ))

        try:
            response = await self._coordinator.safe_call(
                lambda token: self.client.create_redirect(domain_id, template_id, params, status_code),
                lock_key=f"redirects:create:{domain_id}",
            )
        except ApiError as e:
            self.mark_error([provisional.id], provisional.stamp, e.message)
            raise

        created = RedirectRule(
            id=response.redirect.id,
            domain_id=domain_id,
            domain_name=domain.domain_name,
            zone_id=domain.zone_id,
            site_id=context.site_id,
            site_name=context.site_name,
            site_status=domain.site_status,
            template_id=response.redirect.template_id or template_id,
            params=dict(response.redirect.params),
            enabled=response.redirect.enabled,
            status_code=response.redirect.status_code,
        )
        return self.replace_provisional(provisional.id, created)

    async def update_rule(self, rule_id: int, **changes: Any) -> RedirectRule:
        """Apply changes optimistically; the rule stays pending until its zone is applied."""
        if "status_code" in changes and changes["status_code"] not in VALID_STATUS_CODES:
            raise ValidationError(f"Unsupported status code {changes['status_code']}")
        edited = self.update_optimistic(rule_id, **changes)
        if edited is None:
            raise ValidationError(f"Unknown redirect {rule_id}", details={"id": rule_id})

        try:
            await self._coordinator.safe_call(
                lambda token: self.client.update_redirect(rule_id, changes),
                lock_key=f"redirects:update:{rule_id}",
            )
        except ApiError as e:
            self.mark_error([rule_id], edited.stamp, e.message)
            raise
        return self.get(rule_id) or edited

    async def delete_rule(self, rule_id: int) -> bool:
        """
        Delete a redirect. It disappears at once and comes back flagged as
        an error if the remote delete fails.
        """
        if self.remove_optimistic(rule_id) is None:
            return False
        try:
            await self._coordinator.safe_call(
                lambda token: self.client.delete_redirect(rule_id),
                lock_key=f"redirects:delete:{rule_id}",
            )
        except ApiError as e:
            self.restore_removed(rule_id, e.message)
            raise
        self.confirm_removed(rule_id)
        return True

    async def set_enabled(self, rule_ids: List[int], enabled: bool) -> List[int]:
        """
        Bulk enable/disable.

        Returns:
            Ids whose update failed (left in error)
        """
        edits = [edit for edit in (self.update_optimistic(i, enabled=enabled) for i in rule_ids) if edit]
        results = await asyncio.gather(
            *(
                self._coordinator.safe_call(
                    lambda token, rule_id=edit.id: self.client.update_redirect(rule_id, {"enabled": enabled}),
                    lock_key=f"redirects:update:{edit.id}",
                )
                for edit in edits
            ),
            return_exceptions=True,
        )

        failed = []
        for edit, result in zip(edits, results):
            if isinstance(result, ApiError):
                self.mark_error([edit.id], edit.stamp, result.message)
                failed.append(edit.id)
            elif isinstance(result, BaseException):
                raise result
        if failed:
            logger.warning(f"Bulk update failed for {len(failed)} of {len(edits)} redirects")
        return failed
