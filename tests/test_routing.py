"""TenantRouter, account directory, and table naming."""

import pytest

from tenantvault.credentials.routing import (
    BackendAccountDirectory,
    TableNaming,
    TenantRouter,
    normalize_cloud_class,
)
from tenantvault.exceptions import BackendError, CredentialError
from tenantvault.types import AccountEntry, CloudClass, RouteDecision, TableRef


# ── normalize_cloud_class ─────────────────────────────────────────────────────

@pytest.mark.parametrize("raw, expected", [
    ("Private Cloud", CloudClass.PRIVATE),
    ("private", CloudClass.PRIVATE),
    ("PRIVATE-DEDICATED", CloudClass.PRIVATE),
    ("Public Cloud", CloudClass.PUBLIC),
    ("platform", CloudClass.PUBLIC),
    ("", CloudClass.PUBLIC),
    (None, CloudClass.PUBLIC),
    (CloudClass.PRIVATE, CloudClass.PRIVATE),
])
def test_normalize_cloud_class(raw, expected):
    assert normalize_cloud_class(raw) == expected


# ── TenantRouter.resolve ──────────────────────────────────────────────────────

class TestTenantRouter:
    @pytest.mark.asyncio
    async def test_explicit_remote_id_is_trusted(self, make_directory):
        directory = make_directory()
        router = TenantRouter(directory)
        route = await router.resolve("A1", remote_account_id="111122223333", cloud_class="private")
        assert route == RouteDecision(remote_account_id="111122223333", cloud_class=CloudClass.PRIVATE)
        assert directory.lookups == 0

    @pytest.mark.asyncio
    async def test_explicit_remote_id_defaults_to_public(self):
        route = await TenantRouter().resolve("A1", remote_account_id="111122223333")
        assert route.cloud_class == CloudClass.PUBLIC

    @pytest.mark.asyncio
    async def test_no_directory_routes_to_admin(self):
        route = await TenantRouter().resolve("A1")
        assert route == RouteDecision()
        assert not route.has_dedicated_store

    @pytest.mark.asyncio
    async def test_no_account_id_skips_directory(self, make_directory):
        directory = make_directory()
        route = await TenantRouter(directory).resolve(None, cloud_class="private")
        assert route == RouteDecision(cloud_class=CloudClass.PRIVATE)
        assert directory.lookups == 0

    @pytest.mark.asyncio
    async def test_unknown_account_routes_to_admin(self, make_directory):
        route = await TenantRouter(make_directory()).resolve("A1")
        assert route.remote_account_id is None

    @pytest.mark.asyncio
    async def test_account_without_remote_id_routes_to_admin(self, make_directory):
        directory = make_directory({"A1": AccountEntry(account_id="A1", cloud_type="Private Cloud")})
        route = await TenantRouter(directory).resolve("A1")
        assert route.remote_account_id is None

    @pytest.mark.asyncio
    async def test_private_cloud_type(self, make_directory):
        directory = make_directory({
            "A1": AccountEntry(account_id="A1", remote_account_id="999", cloud_type="Private Cloud"),
        })
        route = await TenantRouter(directory).resolve("A1")
        assert route == RouteDecision(remote_account_id="999", cloud_class=CloudClass.PRIVATE)

    @pytest.mark.asyncio
    async def test_subscription_tier_used_when_no_cloud_type(self, make_directory):
        directory = make_directory({
            "A1": AccountEntry(account_id="A1", remote_account_id="999", subscription_tier="private"),
        })
        route = await TenantRouter(directory).resolve("A1")
        assert route.cloud_class == CloudClass.PRIVATE

    @pytest.mark.asyncio
    async def test_platform_tier_is_public(self, make_directory):
        directory = make_directory({
            "A1": AccountEntry(account_id="A1", remote_account_id="999", subscription_tier="platform"),
        })
        route = await TenantRouter(directory).resolve("A1")
        assert route.cloud_class == CloudClass.PUBLIC

    @pytest.mark.asyncio
    async def test_explicit_cloud_class_overrides_directory(self, make_directory):
        directory = make_directory({
            "A1": AccountEntry(account_id="A1", remote_account_id="999", cloud_type="Private Cloud"),
        })
        route = await TenantRouter(directory).resolve("A1", cloud_class="public")
        assert route == RouteDecision(remote_account_id="999", cloud_class=CloudClass.PUBLIC)

    @pytest.mark.asyncio
    async def test_directory_failure_means_no_remote(self, make_directory, caplog):
        directory = make_directory(error=BackendError("throttled"))
        route = await TenantRouter(directory).resolve("A1")
        assert route == RouteDecision()
        assert "lookup failed" in caplog.text

    @pytest.mark.asyncio
    async def test_cache_reuses_directory_answers(self, make_directory):
        directory = make_directory({"A1": AccountEntry(account_id="A1", remote_account_id="999")})
        router = TenantRouter(directory, cache_ttl_seconds=300)
        first = await router.resolve("A1")
        second = await router.resolve("A1")
        assert first == second
        assert directory.lookups == 1

        router.clear_cache()
        await router.resolve("A1")
        assert directory.lookups == 2

    @pytest.mark.asyncio
    async def test_no_cache_by_default(self, make_directory):
        directory = make_directory()
        router = TenantRouter(directory)
        await router.resolve("A1")
        await router.resolve("A1")
        assert directory.lookups == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, make_directory):
        directory = make_directory(error=RuntimeError("down"))
        router = TenantRouter(directory, cache_ttl_seconds=300)
        await router.resolve("A1")
        await router.resolve("A1")
        assert directory.lookups == 2


# ── BackendAccountDirectory ───────────────────────────────────────────────────

class TestBackendAccountDirectory:
    @pytest.mark.asyncio
    async def test_reads_camel_case_registry_item(self, backend):
        admin = TableRef(name="vault-admin-test")
        await backend.put(admin, {
            "PK": "PLATFORM#ACCOUNTS",
            "SK": "ACCOUNT#A1",
            "awsAccountId": "999",
            "cloudType": "Private Cloud",
        })
        entry = await BackendAccountDirectory(backend, admin).get_account("A1")
        assert entry == AccountEntry(account_id="A1", remote_account_id="999", cloud_type="Private Cloud")

    @pytest.mark.asyncio
    async def test_reads_snake_case_registry_item(self, backend):
        admin = TableRef(name="vault-admin-test")
        await backend.put(admin, {
            "PK": "PLATFORM#ACCOUNTS",
            "SK": "ACCOUNT#A2",
            "aws_account_id": "888",
            "subscription_tier": "public",
        })
        entry = await BackendAccountDirectory(backend, admin).get_account("A2")
        assert entry.remote_account_id == "888"
        assert entry.subscription_tier == "public"

    @pytest.mark.asyncio
    async def test_unknown_account(self, backend):
        directory = BackendAccountDirectory(backend, TableRef(name="vault-admin-test"))
        assert await directory.get_account("nope") is None


# ── TableNaming ───────────────────────────────────────────────────────────────

class TestTableNaming:
    def test_no_remote_is_admin(self, naming):
        assert naming.for_route(RouteDecision(), "A1") == TableRef(name="vault-admin-test")

    def test_public_table(self, naming):
        ref = naming.for_route(RouteDecision(remote_account_id="999"), "A1")
        assert ref == TableRef(name="account-admin-public-test", remote_account_id="999", account_id="A1")

    def test_private_table(self, naming):
        route = RouteDecision(remote_account_id="999", cloud_class=CloudClass.PRIVATE)
        ref = naming.for_route(route, "A1")
        assert ref.name == "account-A1-admin-private-test"
        assert ref.remote_account_id == "999"

    def test_private_without_account_raises(self, naming):
        route = RouteDecision(remote_account_id="999", cloud_class=CloudClass.PRIVATE)
        with pytest.raises(CredentialError):
            naming.for_route(route, None)

    def test_from_config(self):
        from tenantvault.config import VaultConfig
        cfg = VaultConfig(workspace="prod", admin_table_prefix="systiva-admin")
        naming = TableNaming.from_config(cfg)
        assert naming.admin().name == "systiva-admin-prod"
        assert naming.for_route(RouteDecision(remote_account_id="1"), "A1").name == "account-admin-public-prod"
