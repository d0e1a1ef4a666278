"""
Reconciled entities and sync statistics.

These dataclasses are the canonical local copies rendered by the UI. Each
reconciled entity carries its sync status against the remote provider and
the stamp of the last local mutation applied to it.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from dashsync.schemas import RedirectDomainPayload, TdsDomainBindingPayload, TdsRulePayload


class SyncStatus(Enum):
    """Agreement between local state and the remote provider."""
    NEVER = "never"
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SyncStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.NEVER


class BindingStatus(Enum):
    """State of a domain bound to a TDS rule."""
    PENDING = "pending"
    APPLIED = "applied"
    REMOVED = "removed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "BindingStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


# Sites in these states are left out of sync counts and bulk sync
INACTIVE_SITE_STATUSES = ("paused", "archived")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp from the API ('Z' suffix allowed)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class SiteContext:
    """Site selected in the site selector."""
    site_id: int
    site_name: str = ""
    project_id: Optional[int] = None
    project_name: str = ""


@dataclass
class RedirectRule:
    """A redirect on a donor domain, flattened with its domain and site."""
    id: int
    domain_id: int
    domain_name: str
    zone_id: Optional[int] = None
    site_id: Optional[int] = None
    site_name: str = ""
    site_status: Optional[str] = None
    template_id: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    status_code: int = 301
    sync_status: SyncStatus = SyncStatus.NEVER
    last_sync_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    stamp: float = 0.0

    @property
    def is_active_site(self) -> bool:
        return self.site_status not in INACTIVE_SITE_STATUSES

    @property
    def needs_sync(self) -> bool:
        return self.sync_status in (SyncStatus.PENDING, SyncStatus.ERROR)

    @classmethod
    def from_payload(cls, domain: RedirectDomainPayload, site: Optional[SiteContext] = None) -> "RedirectRule":
        redirect = domain.redirect
        if redirect is None:
            raise ValueError(f"Domain {domain.domain_id} has no redirect")
        return cls(
            id=redirect.id,
            domain_id=domain.domain_id,
            domain_name=domain.domain_name,
            zone_id=domain.zone_id,
            site_id=site.site_id if site else None,
            site_name=site.site_name if site else "",
            site_status=domain.site_status,
            template_id=redirect.template_id,
            params=dict(redirect.params),
            enabled=redirect.enabled,
            status_code=redirect.status_code,
            sync_status=SyncStatus.parse(redirect.sync_status),
            last_sync_at=parse_timestamp(redirect.last_sync_at or redirect.updated_at),
            sync_error=redirect.sync_error,
        )


@dataclass
class TdsRule:
    """Traffic distribution rule; a successful update is its remote apply."""
    id: int
    rule_name: str
    tds_type: Optional[str] = None
    preset_id: Optional[str] = None
    priority: int = 0
    status: str = "active"
    logic: Dict[str, Any] = field(default_factory=dict)
    sync_status: SyncStatus = SyncStatus.NEVER
    last_sync_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    stamp: float = 0.0

    @classmethod
    def from_payload(cls, rule: TdsRulePayload) -> "TdsRule":
        return cls(
            id=rule.id,
            rule_name=rule.rule_name,
            tds_type=rule.tds_type,
            preset_id=rule.preset_id,
            priority=rule.priority,
            status=rule.status,
            logic=dict(rule.logic_json),
            sync_status=SyncStatus.SYNCED,
            last_sync_at=parse_timestamp(rule.updated_at),
        )


@dataclass
class DomainBinding:
    """A domain bound to a TDS rule."""
    domain_id: int
    rule_id: int
    domain_name: str = ""
    binding_id: Optional[int] = None
    enabled: bool = True
    binding_status: BindingStatus = BindingStatus.PENDING

    @classmethod
    def from_payload(cls, binding: TdsDomainBindingPayload, rule_id: int) -> "DomainBinding":
        return cls(
            domain_id=binding.domain_id,
            rule_id=rule_id,
            domain_name=binding.domain_name,
            binding_id=binding.binding_id,
            enabled=binding.enabled,
            binding_status=BindingStatus.parse(binding.binding_status),
        )


@dataclass
class SyncStats:
    """Sync counts for the header indicator."""
    synced: int = 0
    pending: int = 0
    error: int = 0
    total: int = 0
    last_sync: Optional[datetime] = None

    @property
    def ratio(self) -> float:
        return self.synced / self.total if self.total > 0 else 0.0

    @property
    def indicator(self) -> str:
        """'error', 'pending', 'success' or 'none' (nothing configured)."""
        if self.total == 0:
            return "none"
        if self.error > 0:
            return "error"
        if self.pending > 0:
            return "pending"
        if self.synced == self.total:
            return "success"
        return "pending"

    def summary(self, now: Optional[datetime] = None) -> str:
        parts = []
        if self.synced:
            parts.append(f"{self.synced} synced")
        if self.pending:
            parts.append(f"{self.pending} pending")
        if self.error:
            parts.append(f"{self.error} error")
        if self.last_sync:
            parts.append(f"Last sync: {describe_last_sync(self.last_sync, now)}")
        return " • ".join(parts) or "No redirects configured"


def calculate_sync_stats(rules: Iterable[RedirectRule]) -> SyncStats:
    """Count sync statuses, leaving out rules on paused or archived sites."""
    stats = SyncStats()
    for rule in rules:
        if not rule.is_active_site:
            continue
        stats.total += 1
        if rule.sync_status == SyncStatus.SYNCED:
            stats.synced += 1
            if rule.last_sync_at and (stats.last_sync is None or rule.last_sync_at > stats.last_sync):
                stats.last_sync = rule.last_sync_at
        elif rule.sync_status == SyncStatus.PENDING:
            stats.pending += 1
        elif rule.sync_status == SyncStatus.ERROR:
            stats.error += 1
    return stats


def describe_last_sync(last_sync: datetime, now: Optional[datetime] = None) -> str:
    """Human-readable age such as '5 min ago', '2 hours ago' or '1 day ago'."""
    now = now or datetime.now(timezone.utc)
    minutes = max(0, int((now - last_sync).total_seconds() // 60))
    hours = minutes // 60
    days = hours // 24
    if minutes < 60:
        return f"{minutes} min ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    return f"{days} day{'s' if days > 1 else ''} ago"
