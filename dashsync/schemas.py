"""
Pydantic schemas for control-plane responses.

Only the fields the coordination layer reads are declared; anything else
the API sends is ignored.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel


class WireModel(BaseModel):
    """Base for response payloads"""

    class Config:
        extra = "ignore"


# ===== AUTH SCHEMAS =====

class UserProfile(WireModel):
    """Authenticated user"""
    id: Optional[Union[int, str]] = None
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    type: Optional[str] = None


class LoginResponse(WireModel):
    """Login / refresh response"""
    ok: Optional[bool] = None
    access_token: Optional[str] = None
    user: Optional[UserProfile] = None
    error: Optional[str] = None
    message: Optional[str] = None


class MeResponse(WireModel):
    """GET /auth/me (user may be nested or flat)"""
    ok: Optional[bool] = None
    user: Optional[UserProfile] = None
    id: Optional[Union[int, str]] = None
    email: Optional[str] = None
    name: Optional[str] = None

    def profile(self) -> Optional[UserProfile]:
        if self.user is not None:
            return self.user
        if self.id is None and self.email is None:
            return None
        return UserProfile(id=self.id, email=self.email, name=self.name)


# ===== REDIRECT SCHEMAS =====

class RedirectPayload(WireModel):
    """Redirect rule attached to a domain"""
    id: int
    template_id: Optional[str] = None
    preset_id: Optional[str] = None
    params: Dict[str, Any] = {}
    enabled: bool = True
    status_code: int = 301
    sync_status: str = "never"
    last_sync_at: Optional[str] = None
    sync_error: Optional[str] = None
    updated_at: Optional[str] = None


class RedirectDomainPayload(WireModel):
    """Domain row of a site's redirect list"""
    domain_id: int
    domain_name: str
    domain_role: str = "reserve"
    zone_id: Optional[int] = None
    site_status: Optional[str] = None
    redirect: Optional[RedirectPayload] = None


class ZoneLimit(WireModel):
    """Redirect rule quota for one zone"""
    zone_id: int
    zone_name: Optional[str] = None
    used: int = 0
    max: int = 0


class SiteRedirectsResponse(WireModel):
    """GET /sites/{id}/redirects"""
    ok: Optional[bool] = None
    site_id: Optional[int] = None
    domains: List[RedirectDomainPayload] = []
    zone_limits: List[ZoneLimit] = []
    total_domains: int = 0
    total_redirects: int = 0


class ZoneLimitsResponse(ZoneLimit):
    """GET /zones/{id}/redirect-limits"""
    ok: Optional[bool] = None


class RedirectTemplate(WireModel):
    """Redirect template (T1-T7)"""
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    params: List[Dict[str, Any]] = []


class RedirectPreset(WireModel):
    """Redirect preset (P1-P5)"""
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    templates: List[str] = []


class RedirectResponse(WireModel):
    """GET /redirects/{id}"""
    ok: Optional[bool] = None
    redirect: RedirectPayload


class CreateRedirectResponse(WireModel):
    """POST /domains/{id}/redirects"""
    ok: Optional[bool] = None
    redirect: RedirectPayload


class ApplyPresetResponse(WireModel):
    """POST /domains/{id}/redirects/preset"""
    ok: Optional[bool] = None
    preset_id: Optional[str] = None
    created_count: int = 0
    redirect_ids: List[int] = []


class SyncedRule(WireModel):
    """Rule confirmed by an apply-to-provider call"""
    id: int
    cf_rule_id: Optional[str] = None


class ApplyRedirectsResponse(WireModel):
    """POST /zones/{id}/apply-redirects"""
    ok: Optional[bool] = None
    zone_id: Optional[int] = None
    rules_applied: int = 0
    synced_rules: List[SyncedRule] = []


# ===== TDS SCHEMAS =====

class TdsRulePayload(WireModel):
    """Traffic distribution rule"""
    id: int
    rule_name: str
    tds_type: Optional[str] = None
    preset_id: Optional[str] = None
    priority: int = 0
    status: str = "active"
    logic_json: Dict[str, Any] = {}
    updated_at: Optional[str] = None


class TdsDomainBindingPayload(WireModel):
    """Domain bound to a TDS rule"""
    binding_id: Optional[int] = None
    domain_id: int
    domain_name: str = ""
    enabled: bool = True
    binding_status: str = "pending"


class TdsRulesResponse(WireModel):
    """GET /tds/rules"""
    ok: Optional[bool] = None
    rules: List[TdsRulePayload] = []


class TdsRuleResponse(WireModel):
    """GET /tds/rules/{id} and POST /tds/rules"""
    ok: Optional[bool] = None
    rule: TdsRulePayload
    domains: List[TdsDomainBindingPayload] = []


class CreateFromPresetResponse(WireModel):
    """POST /tds/rules/from-preset"""
    ok: Optional[bool] = None
    rule_id: Optional[int] = None
    rule: Optional[TdsRulePayload] = None


class TdsPreset(WireModel):
    """TDS rule preset"""
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    tds_type: Optional[str] = None


class TdsParam(WireModel):
    """Matchable request parameter"""
    key: str
    name: Optional[str] = None
    type: Optional[str] = None


class RuleDomainsResponse(WireModel):
    """GET /tds/rules/{id}/domains"""
    ok: Optional[bool] = None
    domains: List[TdsDomainBindingPayload] = []


class BindDomainsResponse(WireModel):
    """POST /tds/rules/{id}/domains"""
    ok: Optional[bool] = None
    bound: int = 0
    bindings: List[TdsDomainBindingPayload] = []
