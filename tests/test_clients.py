"""
Tests for the domain clients and the redirect / TDS store workflows.
"""
import asyncio

import pytest

from conftest import domain_json, redirect_json, settle, site_json
from dashsync.cache.ttl_policies import (
    redirect_templates_key,
    site_redirects_key,
    tds_presets_key,
    tds_rules_key,
    zone_status_key,
)
from dashsync.errors import HttpError, ValidationError
from dashsync.sync_state import BindingStatus, SiteContext, SyncStatus

SITE = SiteContext(site_id=1, site_name="Main")


def tds_rule_json(rule_id, name, priority=0, logic=None):
    return {
        "id": rule_id,
        "rule_name": name,
        "tds_type": "smartshield",
        "priority": priority,
        "status": "active",
        "logic_json": logic or {"geo": ["US"]},
        "updated_at": "2026-10-01T12:00:00Z",
    }


def site_one():
    return site_json(1, [
        domain_json(101, "a.example", zone_id=10, redirect=redirect_json(1)),
        domain_json(102, "b.example", zone_id=10, redirect=redirect_json(2)),
        domain_json(103, "c.example", zone_id=10),
    ])


# =============================================================================
# Redirects client
# =============================================================================

class TestRedirectsClient:
    """Tests for caching and invalidation scopes."""

    @pytest.mark.asyncio
    async def test_templates_cached(self, ctx, transport):
        transport.reply("GET", "/redirects/templates", {"templates": [{"id": "T1", "name": "Main redirect"}]})

        first = await ctx.redirects.get_templates()
        second = await ctx.redirects.get_templates()

        assert first[0].id == "T1"
        assert second is first
        assert transport.count("GET", "/redirects/templates") == 1

    @pytest.mark.asyncio
    async def test_force_refetches_site(self, ctx, transport):
        transport.reply("GET", "/sites/1/redirects", site_one())

        await ctx.redirects.get_site_redirects(1)
        await ctx.redirects.get_site_redirects(1, force=True)

        assert transport.count("GET", "/sites/1/redirects") == 2

    @pytest.mark.asyncio
    async def test_create_invalidates_site_lists_only(self, ctx, transport):
        transport.reply("GET", "/redirects/templates", {"templates": []})
        transport.reply("GET", "/sites/1/redirects", site_one())
        transport.reply("GET", "/sites/2/redirects", site_json(2, []))
        transport.reply("POST", "/domains/103/redirects", {"ok": True, "redirect": redirect_json(9, "pending")})
        await ctx.redirects.get_templates()
        await ctx.redirects.get_site_redirects(1)
        await ctx.redirects.get_site_redirects(2)

        response = await ctx.redirects.create_redirect(103, "T1", {"target_url": "https://x.example"})

        assert response.redirect.id == 9
        assert site_redirects_key(1) not in ctx.cache
        assert site_redirects_key(2) not in ctx.cache
        assert redirect_templates_key() in ctx.cache
        assert transport.calls_to("POST", "/domains/103/redirects")[0].body == {
            "template_id": "T1",
            "params": {"target_url": "https://x.example"},
            "status_code": 301,
        }

    @pytest.mark.asyncio
    async def test_zone_apply_invalidates_zone_status(self, ctx, transport):
        transport.reply("GET", "/zones/10/redirect-limits", {"zone_id": 10, "used": 2, "max": 10})
        transport.reply("POST", "/zones/10/apply-redirects", {"ok": True, "zone_id": 10, "rules_applied": 0})

        limits = await ctx.redirects.get_zone_limits(10)
        assert (limits.used, limits.max) == (2, 10)
        assert zone_status_key(10) in ctx.cache

        await ctx.redirects.apply_zone_redirects(10)
        assert zone_status_key(10) not in ctx.cache

    @pytest.mark.asyncio
    async def test_invalidate_all(self, ctx, transport):
        transport.reply("GET", "/redirects/templates", {"templates": []})
        transport.reply("GET", "/redirects/5", {"ok": True, "redirect": redirect_json(5)})
        transport.reply("GET", "/tds/presets", {"presets": []})
        await ctx.redirects.get_templates()
        await ctx.redirects.get_redirect(5)
        await ctx.tds.get_presets()

        assert ctx.redirects.invalidate_all() == 2
        assert tds_presets_key() in ctx.cache


# =============================================================================
# TDS client
# =============================================================================

class TestTdsClient:
    """Tests for TDS endpoints."""

    @pytest.mark.asyncio
    async def test_mutation_invalidates_tds_namespace(self, ctx, transport):
        transport.reply("GET", "/tds/rules", {"rules": [tds_rule_json(1, "Geo")]})
        transport.reply("GET", "/tds/params", {"params": [{"key": "geo"}]})
        transport.reply("PATCH", "/tds/rules/1", {"ok": True})
        await ctx.tds.get_rules()
        await ctx.tds.get_params()

        await ctx.tds.update_rule(1, {"rule_name": "Geo US"})

        assert tds_rules_key() not in ctx.cache
        assert len(ctx.cache) == 0

    @pytest.mark.asyncio
    async def test_reorder_payload(self, ctx, transport):
        transport.reply("PATCH", "/tds/rules/reorder", {"ok": True})

        await ctx.tds.reorder_rules([3, 1, 2])

        assert transport.calls[0].body == {"rules": [
            {"id": 3, "priority": 0},
            {"id": 1, "priority": 1},
            {"id": 2, "priority": 2},
        ]}

    @pytest.mark.asyncio
    async def test_create_from_preset(self, ctx, transport):
        transport.reply("POST", "/tds/rules/from-preset", {"ok": True, "rule_id": 12})

        response = await ctx.tds.create_rule_from_preset({"preset_id": "S1"})

        assert response.rule_id == 12


# =============================================================================
# Redirects store workflows
# =============================================================================

class TestRedirectsStore:
    """Tests for optimistic redirect workflows."""

    @pytest.fixture
    def site(self, ctx, transport):
        transport.reply("GET", "/sites/1/redirects", site_one())
        return ctx

    @pytest.mark.asyncio
    async def test_select_sites_loads_domains_and_limits(self, site):
        store = site.redirects_store
        await store.select_sites([SITE])

        assert [r.id for r in store.entities] == [1, 2]
        assert set(store.domains) == {101, 102, 103}
        assert [z.zone_id for z in store.zone_limits] == [10]
        assert store.total_domains == 3
        assert store.get(1).site_name == "Main"
        assert store.find_by_domain(102).id == 2

    @pytest.mark.asyncio
    async def test_empty_selection_clears(self, site):
        store = site.redirects_store
        await store.select_sites([SITE])

        await store.select_sites([])

        assert store.entities == []
        assert store.domains == {}

    @pytest.mark.asyncio
    async def test_create_rule_replaces_provisional(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])
        transport.reply("POST", "/domains/103/redirects", {
            "ok": True,
            "redirect": redirect_json(55, "pending", status_code=302),
        })
        gate = transport.gate("POST", "/domains/103/redirects")

        task = asyncio.create_task(store.create_rule(103, "T1", {"target_url": "https://x.example"}, 302))
        await settle()
        provisional = store.find_by_domain(103)
        assert provisional.id < 0
        assert provisional.sync_status == SyncStatus.PENDING

        gate.set()
        created = await task

        assert created.id == 55
        assert created.sync_status == SyncStatus.PENDING
        assert [r.id for r in store.entities] == [1, 2, 55]
        assert store.get(provisional.id) is None

    @pytest.mark.asyncio
    async def test_failed_create_stays_as_error(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])
        transport.reply("POST", "/domains/103/redirects", {"message": "Template T9 not found"}, status=422)

        with pytest.raises(HttpError):
            await store.create_rule(103, "T9")

        rule = store.find_by_domain(103)
        assert rule.sync_status == SyncStatus.ERROR
        assert rule.sync_error == "Template T9 not found"
        assert store.discard(rule.id)

    @pytest.mark.asyncio
    async def test_create_validates_before_network(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])
        calls = len(transport.calls)

        with pytest.raises(ValidationError):
            await store.create_rule(999, "T1")
        with pytest.raises(ValidationError):
            await store.create_rule(103, "T1", status_code=307)

        assert len(transport.calls) == calls
        assert len(store.entities) == 2

    @pytest.mark.asyncio
    async def test_update_rule(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])
        transport.reply("PATCH", "/redirects/1", {"ok": True})

        updated = await store.update_rule(1, enabled=False)

        assert updated.enabled is False
        assert updated.sync_status == SyncStatus.PENDING
        assert transport.calls_to("PATCH", "/redirects/1")[0].body == {"enabled": False}

    @pytest.mark.asyncio
    async def test_update_with_invalid_field_never_reaches_network(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])

        with pytest.raises(ValidationError):
            await store.update_rule(1, target="https://x.example")
        with pytest.raises(ValidationError):
            await store.update_rule(1, sync_status=SyncStatus.SYNCED)

        assert transport.count("PATCH", "/redirects/1") == 0
        assert store.get(1).sync_status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_failed_update_keeps_edit_in_error(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])
        transport.reply("PATCH", "/redirects/1", {"message": "invalid params"}, status=400)

        with pytest.raises(HttpError):
            await store.update_rule(1, params={"target_url": ""})

        rule = store.get(1)
        assert rule.sync_status == SyncStatus.ERROR
        assert rule.params == {"target_url": ""}

    @pytest.mark.asyncio
    async def test_delete_rule(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])
        transport.reply("DELETE", "/redirects/1", None, status=204)

        assert await store.delete_rule(1) is True
        assert store.get(1) is None
        assert await store.delete_rule(1) is False

    @pytest.mark.asyncio
    async def test_failed_delete_restores_rule(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])
        transport.reply("DELETE", "/redirects/1", {"message": "locked"}, status=409)

        with pytest.raises(HttpError):
            await store.delete_rule(1)

        assert store.get(1).sync_status == SyncStatus.ERROR
        assert store.get(1).sync_error == "locked"

    @pytest.mark.asyncio
    async def test_bulk_enable_reports_failures(self, site, transport):
        store = site.redirects_store
        await store.select_sites([SITE])
        transport.reply("PATCH", "/redirects/1", {"ok": True})
        transport.reply("PATCH", "/redirects/2", {"message": "nope"}, status=500)

        failed = await store.set_enabled([1, 2, 404], enabled=False)

        assert failed == [2]
        assert store.get(1).sync_status == SyncStatus.PENDING
        assert store.get(2).sync_status == SyncStatus.ERROR
        assert store.get(2).enabled is False


# =============================================================================
# TDS store workflows
# =============================================================================

class TestTdsStore:
    """Tests for TDS rules and domain bindings."""

    @pytest.fixture
    def rules(self, ctx, transport):
        transport.reply("GET", "/tds/rules", {"rules": [
            tds_rule_json(1, "Geo", 0),
            tds_rule_json(2, "Bots", 1),
            tds_rule_json(3, "Mobile", 2),
        ]})
        return ctx

    @pytest.mark.asyncio
    async def test_load(self, rules):
        store = rules.tds_store
        await store.load_entities()

        assert [r.rule_name for r in store.entities] == ["Geo", "Bots", "Mobile"]
        assert all(r.sync_status == SyncStatus.SYNCED for r in store.entities)

    @pytest.mark.asyncio
    async def test_update_confirms_synced(self, rules, transport):
        store = rules.tds_store
        await store.load_entities()
        transport.reply("PATCH", "/tds/rules/1", {"ok": True})

        updated = await store.update_rule(1, logic={"geo": ["DE"]})

        assert updated.logic == {"geo": ["DE"]}
        assert updated.sync_status == SyncStatus.SYNCED
        assert transport.calls_to("PATCH", "/tds/rules/1")[0].body == {"logic_json": {"geo": ["DE"]}}

    @pytest.mark.asyncio
    async def test_failed_update_marks_error(self, rules, transport):
        store = rules.tds_store
        await store.load_entities()
        transport.reply("PATCH", "/tds/rules/1", {"message": "bad logic"}, status=422)

        with pytest.raises(HttpError):
            await store.update_rule(1, rule_name="Geo v2")

        assert store.get(1).rule_name == "Geo v2"
        assert store.get(1).sync_status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_create_rule(self, rules, transport):
        store = rules.tds_store
        await store.load_entities()
        transport.reply("POST", "/tds/rules", {"ok": True, "rule": tds_rule_json(9, "New", 3)})

        created = await store.create_rule("New", "smartshield", {"geo": ["US"]}, priority=3)

        assert created.id == 9
        assert created.sync_status == SyncStatus.SYNCED
        assert [r.id for r in store.entities] == [1, 2, 3, 9]

    @pytest.mark.asyncio
    async def test_create_requires_name(self, rules):
        with pytest.raises(ValidationError):
            await rules.tds_store.create_rule("  ", "smartshield")

    @pytest.mark.asyncio
    async def test_reorder_rolls_back_on_failure(self, rules, transport):
        store = rules.tds_store
        await store.load_entities()
        transport.reply("PATCH", "/tds/rules/reorder", {"message": "conflict"}, status=409)

        with pytest.raises(HttpError):
            await store.reorder_rules([3, 1, 2])

        assert [(r.id, r.priority) for r in store.entities] == [(1, 0), (2, 1), (3, 2)]

    @pytest.mark.asyncio
    async def test_reorder(self, rules, transport):
        store = rules.tds_store
        await store.load_entities()
        transport.reply("PATCH", "/tds/rules/reorder", {"ok": True})

        await store.reorder_rules([3, 1])

        assert [(r.id, r.priority) for r in store.entities] == [(3, 0), (1, 1), (2, 2)]

    @pytest.mark.asyncio
    async def test_delete_rule_drops_bindings(self, rules, transport):
        store = rules.tds_store
        await store.load_entities()
        transport.reply("GET", "/tds/rules/1/domains", {"domains": [{"domain_id": 201, "binding_status": "applied"}]})
        transport.reply("DELETE", "/tds/rules/1", {"ok": True})
        await store.load_bindings(1)

        assert await store.delete_rule(1)
        assert 1 not in store.bindings

    @pytest.mark.asyncio
    async def test_bind_domains(self, rules, transport):
        store = rules.tds_store
        transport.reply("POST", "/tds/rules/1/domains", {
            "ok": True,
            "bound": 2,
            "bindings": [
                {"binding_id": 11, "domain_id": 201, "domain_name": "a.example"},
                {"binding_id": 12, "domain_id": 202, "domain_name": "b.example"},
            ],
        })
        gate = transport.gate("POST", "/tds/rules/1/domains")

        task = asyncio.create_task(store.bind_domains(1, [201, 202]))
        await settle()
        assert [b.binding_status for b in store.bindings[1]] == [BindingStatus.PENDING] * 2

        gate.set()
        applied = await task

        assert [b.binding_id for b in applied] == [11, 12]
        assert all(b.binding_status == BindingStatus.APPLIED for b in store.bindings[1])
        assert transport.calls_to("POST", "/tds/rules/1/domains")[0].body == {"domain_ids": [201, 202]}

    @pytest.mark.asyncio
    async def test_failed_bind_drops_pending(self, rules, transport):
        store = rules.tds_store
        transport.reply("POST", "/tds/rules/1/domains", {"message": "domain in use"}, status=409)

        with pytest.raises(HttpError):
            await store.bind_domains(1, [201])

        assert store.bindings[1] == []

    @pytest.mark.asyncio
    async def test_unbind(self, rules, transport):
        store = rules.tds_store
        transport.reply("GET", "/tds/rules/1/domains", {"domains": [
            {"binding_id": 11, "domain_id": 201, "binding_status": "applied"},
            {"binding_id": 12, "domain_id": 202, "binding_status": "applied"},
        ]})
        transport.reply("DELETE", "/tds/rules/1/domains/201", {"ok": True})
        transport.reply("DELETE", "/tds/rules/1/domains/202", {"message": "busy"}, status=503)
        await store.load_bindings(1)

        assert await store.unbind_domain(1, 201)
        with pytest.raises(HttpError):
            await store.unbind_domain(1, 202)

        assert [(b.domain_id, b.binding_status) for b in store.bindings[1]] == [(202, BindingStatus.APPLIED)]
        assert await store.unbind_domain(1, 999) is False

    @pytest.mark.asyncio
    async def test_switching_rules_keeps_last_bindings_load(self, rules, transport):
        store = rules.tds_store
        transport.reply("GET", "/tds/rules/1/domains", {"domains": [{"domain_id": 201}]})
        transport.reply("GET", "/tds/rules/2/domains", {"domains": [{"domain_id": 301}]})
        gate = transport.gate("GET", "/tds/rules/1/domains")

        first = asyncio.create_task(store.load_bindings(1))
        await settle()
        second = await store.load_bindings(2)
        gate.set()

        assert await first is None
        await settle()
        assert [b.domain_id for b in second] == [301]
        assert 1 not in store.bindings
