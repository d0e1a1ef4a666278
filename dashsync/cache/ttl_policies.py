"""
TTL configuration and cache-key layout.

Keys are namespaced so that a mutation can drop every dependent entry with
a single prefix invalidation instead of tracking per-key dependencies.
"""
from typing import Dict

HOUR = 60 * 60

# TTL configuration by key family (in seconds)
TTL_CONFIG: Dict[str, float] = {
    "redirects:templates": 24 * HOUR,   # reference data, rarely changes
    "redirects:presets": 24 * HOUR,
    "redirects:site": 30,               # main working list
    "redirect:detail": 30,              # drawer detail
    "redirects:zone:status": 15,        # zone limits change with every sync
    "tds:presets": 24 * HOUR,
    "tds:params": 24 * HOUR,
    "tds:rules": 30,
    "tds:rule:detail": 30,
    "tds:rule:domains": 30,
}

# Invalidation prefixes
PREFIX_SITE_REDIRECTS = "redirects:site:"
PREFIX_REDIRECTS = "redirects:"
PREFIX_REDIRECT_DETAIL = "redirect:"
PREFIX_TDS = "tds:"


def get_ttl(family: str) -> float:
    """Get the TTL for a key family (30 seconds for unknown families)."""
    return TTL_CONFIG.get(family, 30)


# Redirect keys

def redirect_templates_key() -> str:
    return "redirects:templates:v1"


def redirect_presets_key() -> str:
    return "redirects:presets:v1"


def site_redirects_key(site_id: int) -> str:
    return f"redirects:site:{site_id}:v1"


def redirect_detail_key(redirect_id: int) -> str:
    return f"redirect:{redirect_id}:v1"


def zone_status_key(zone_id: int) -> str:
    return f"redirects:zone:{zone_id}:status:v1"


# TDS keys

def tds_presets_key() -> str:
    return "tds:presets:v1"


def tds_params_key() -> str:
    return "tds:params:v1"


def tds_rules_key() -> str:
    return "tds:rules:v1"


def tds_rule_key(rule_id: int) -> str:
    return f"tds:rule:{rule_id}:v1"


def tds_rule_domains_key(rule_id: int) -> str:
    return f"tds:rule:{rule_id}:domains:v1"
