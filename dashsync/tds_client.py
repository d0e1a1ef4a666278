"""
TDS (traffic distribution) API client.

Every mutation invalidates the whole ``tds:`` namespace.
"""
import logging
from typing import Any, Dict, List

from dashsync.api_client import ApiClient
from dashsync.cache import CacheManager, PREFIX_TDS, get_ttl
from dashsync.cache.ttl_policies import (
    tds_params_key,
    tds_presets_key,
    tds_rule_domains_key,
    tds_rule_key,
    tds_rules_key,
)
from dashsync.schemas import (
    BindDomainsResponse,
    CreateFromPresetResponse,
    RuleDomainsResponse,
    TdsDomainBindingPayload,
    TdsParam,
    TdsPreset,
    TdsRuleResponse,
    TdsRulesResponse,
)

logger = logging.getLogger("clients.tds")


class TdsClient:
    """Typed access to TDS rule and binding endpoints."""

    def __init__(self, api: ApiClient, cache_manager: CacheManager):
        self.api = api
        self.cache_manager = cache_manager

    @property
    def cache(self):
        return self.cache_manager.cache

    def _invalidate(self) -> None:
        self.cache.invalidate_by_prefix(PREFIX_TDS)

    # ===== Reference data =====

    async def get_presets(self) -> List[TdsPreset]:
        async def fetch():
            body = await self.api.get("/tds/presets")
            return [TdsPreset.model_validate(p) for p in body.get("presets", [])]

        return await self.cache_manager.get(tds_presets_key(), fetch, get_ttl("tds:presets"))

    async def get_params(self) -> List[TdsParam]:
        async def fetch():
            body = await self.api.get("/tds/params")
            return [TdsParam.model_validate(p) for p in body.get("params", [])]

        return await self.cache_manager.get(tds_params_key(), fetch, get_ttl("tds:params"))

    # ===== Rules =====

    async def get_rules(self, force: bool = False) -> TdsRulesResponse:
        async def fetch():
            return TdsRulesResponse.model_validate(await self.api.get("/tds/rules"))

        return await self.cache_manager.get(
            tds_rules_key(), fetch, get_ttl("tds:rules"), force_refresh=force
        )

    async def get_rule(self, rule_id: int) -> TdsRuleResponse:
        async def fetch():
            return TdsRuleResponse.model_validate(await self.api.get(f"/tds/rules/{rule_id}"))

        return await self.cache_manager.get(tds_rule_key(rule_id), fetch, get_ttl("tds:rule:detail"))

    async def create_rule(self, data: Dict[str, Any]) -> TdsRuleResponse:
        response = TdsRuleResponse.model_validate(await self.api.post("/tds/rules", data))
        self._invalidate()
        logger.info(f"Created TDS rule {response.rule.id}")
        return response

    async def create_rule_from_preset(self, data: Dict[str, Any]) -> CreateFromPresetResponse:
        response = CreateFromPresetResponse.model_validate(await self.api.post("/tds/rules/from-preset", data))
        self._invalidate()
        return response

    async def update_rule(self, rule_id: int, changes: Dict[str, Any]) -> None:
        await self.api.patch(f"/tds/rules/{rule_id}", changes)
        self._invalidate()

    async def delete_rule(self, rule_id: int) -> None:
        await self.api.delete(f"/tds/rules/{rule_id}")
        self._invalidate()
        logger.info(f"Deleted TDS rule {rule_id}")

    async def reorder_rules(self, order: List[int]) -> None:
        rules = [{"id": rule_id, "priority": index} for index, rule_id in enumerate(order)]
        await self.api.patch("/tds/rules/reorder", {"rules": rules})
        self._invalidate()

    # ===== Domain bindings =====

    async def get_rule_domains(self, rule_id: int) -> List[TdsDomainBindingPayload]:
        async def fetch():
            return RuleDomainsResponse.model_validate(await self.api.get(f"/tds/rules/{rule_id}/domains")).domains

        return await self.cache_manager.get(
            tds_rule_domains_key(rule_id), fetch, get_ttl("tds:rule:domains")
        )

    async def bind_domains(self, rule_id: int, domain_ids: List[int]) -> BindDomainsResponse:
        response = BindDomainsResponse.model_validate(
            await self.api.post(f"/tds/rules/{rule_id}/domains", {"domain_ids": domain_ids})
        )
        self._invalidate()
        return response

    async def unbind_domain(self, rule_id: int, domain_id: int) -> None:
        await self.api.delete(f"/tds/rules/{rule_id}/domains/{domain_id}")
        self._invalidate()

    def invalidate_all(self) -> int:
        return self.cache.invalidate_by_prefix(PREFIX_TDS)
