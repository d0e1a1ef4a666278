"""
Redirects API client.

Key patterns:
- Templates/presets: long TTL (24h), rarely change
- Site redirects: short TTL (30s), deduplicated per site
- Mutations invalidate by prefix; the stores apply optimistic updates
"""
import logging
from typing import Any, Dict, List, Optional

from dashsync.api_client import ApiClient
from dashsync.cache import CacheManager, PREFIX_REDIRECT_DETAIL, PREFIX_REDIRECTS, PREFIX_SITE_REDIRECTS, get_ttl
from dashsync.cache.ttl_policies import (
    redirect_detail_key,
    redirect_presets_key,
    redirect_templates_key,
    site_redirects_key,
    zone_status_key,
)
from dashsync.coordination import CancellationToken
from dashsync.schemas import (
    ApplyPresetResponse,
    ApplyRedirectsResponse,
    CreateRedirectResponse,
    RedirectPayload,
    RedirectPreset,
    RedirectResponse,
    RedirectTemplate,
    SiteRedirectsResponse,
    ZoneLimitsResponse,
)

logger = logging.getLogger("clients.redirects")


class RedirectsClient:
    """Typed access to redirect endpoints with caching and invalidation."""

    def __init__(self, api: ApiClient, cache_manager: CacheManager):
        self.api = api
        self.cache_manager = cache_manager

    @property
    def cache(self):
        return self.cache_manager.cache

    # ===== Reference data =====

    async def get_templates(self) -> List[RedirectTemplate]:
        async def fetch():
            body = await self.api.get("/redirects/templates")
            return [RedirectTemplate.model_validate(t) for t in body.get("templates", [])]

        return await self.cache_manager.get(
            redirect_templates_key(), fetch, get_ttl("redirects:templates")
        )

    async def get_presets(self) -> List[RedirectPreset]:
        async def fetch():
            body = await self.api.get("/redirects/presets")
            return [RedirectPreset.model_validate(p) for p in body.get("presets", [])]

        return await self.cache_manager.get(
            redirect_presets_key(), fetch, get_ttl("redirects:presets")
        )

    # ===== Site redirects =====

    async def get_site_redirects(
        self,
        site_id: int,
        force: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> SiteRedirectsResponse:
        """
        Get all domains of a site with their redirects.

        The fetch is shared by every concurrent caller for the site, so the
        cancellation token is only checked before joining it.
        """
        if token is not None:
            token.raise_if_cancelled()

        async def fetch():
            return SiteRedirectsResponse.model_validate(await self.api.get(f"/sites/{site_id}/redirects"))

        return await self.cache_manager.get(
            site_redirects_key(site_id), fetch, get_ttl("redirects:site"), force_refresh=force
        )

    async def get_redirect(self, redirect_id: int) -> RedirectPayload:
        async def fetch():
            return RedirectResponse.model_validate(await self.api.get(f"/redirects/{redirect_id}")).redirect

        return await self.cache_manager.get(
            redirect_detail_key(redirect_id), fetch, get_ttl("redirect:detail")
        )

    # ===== Mutations =====

    async def create_redirect(
        self,
        domain_id: int,
        template_id: str,
        params: Optional[Dict[str, Any]] = None,
        status_code: int = 301,
    ) -> CreateRedirectResponse:
        body = {"template_id": template_id, "params": params or {}, "status_code": status_code}
        response = CreateRedirectResponse.model_validate(
            await self.api.post(f"/domains/{domain_id}/redirects", body)
        )
        self.cache.invalidate_by_prefix(PREFIX_SITE_REDIRECTS)
        self.cache.invalidate(redirect_detail_key(response.redirect.id))
        logger.info(f"Created redirect {response.redirect.id} on domain {domain_id}")
        return response

    async def apply_preset(
        self,
        domain_id: int,
        preset_id: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> ApplyPresetResponse:
        body = {"preset_id": preset_id, "params": params or {}}
        response = ApplyPresetResponse.model_validate(
            await self.api.post(f"/domains/{domain_id}/redirects/preset", body)
        )
        self.cache.invalidate_by_prefix(PREFIX_SITE_REDIRECTS)
        logger.info(f"Applied preset {preset_id} to domain {domain_id} ({response.created_count} created)")
        return response

    async def update_redirect(self, redirect_id: int, changes: Dict[str, Any]) -> None:
        await self.api.patch(f"/redirects/{redirect_id}", changes)
        self.cache.invalidate_by_prefix(PREFIX_SITE_REDIRECTS)
        self.cache.invalidate(redirect_detail_key(redirect_id))

    async def delete_redirect(self, redirect_id: int) -> None:
        await self.api.delete(f"/redirects/{redirect_id}")
        self.cache.invalidate_by_prefix(PREFIX_SITE_REDIRECTS)
        self.cache.invalidate(redirect_detail_key(redirect_id))
        logger.info(f"Deleted redirect {redirect_id}")

    # ===== Zone operations =====

    async def apply_zone_redirects(self, zone_id: int) -> ApplyRedirectsResponse:
        """Push every redirect of a zone to the provider."""
        response = ApplyRedirectsResponse.model_validate(
            await self.api.post(f"/zones/{zone_id}/apply-redirects")
        )
        # A site may span several zones
        self.cache.invalidate_by_prefix(PREFIX_SITE_REDIRECTS)
        self.cache.invalidate(zone_status_key(zone_id))
        logger.info(f"Applied zone {zone_id}: {response.rules_applied} rule(s)")
        return response

    async def get_zone_limits(self, zone_id: int) -> ZoneLimitsResponse:
        async def fetch():
            return ZoneLimitsResponse.model_validate(await self.api.get(f"/zones/{zone_id}/redirect-limits"))

        return await self.cache_manager.get(
            zone_status_key(zone_id), fetch, get_ttl("redirects:zone:status")
        )

    def invalidate_all(self) -> int:
        """Drop every redirect-related cache entry."""
        return self.cache.invalidate_by_prefix(PREFIX_REDIRECTS) + self.cache.invalidate_by_prefix(
            PREFIX_REDIRECT_DETAIL
        )
