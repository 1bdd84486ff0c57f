"""
Tests for TodoStack against the in-memory provider.
"""

import pytest

from moraine.config.settings import SettingsError, StackSettings
from moraine.providers.local import LocalProvider
from moraine.stack import (
    ENABLE_STATIC_WEBSITE,
    PUBLISH_ASSETS,
    RESOLVE_SITE_ENDPOINT,
    StackExports,
    TodoStack,
)
from tests.conftest import FIXED_NOW, StubResolver

API_ENDPOINT = "https://todo-app.azurewebsites.net/api"


def make_stack(provider, settings, gate, store, resolver=None):
    return TodoStack(
        provider,
        settings,
        gate,
        store_factory=lambda connection_string: store,
        resolver=resolver or StubResolver(gate),
        clock=lambda: FIXED_NOW,
    )


class TestDeclaration:
    """Tests for resource declaration order and derived values."""

    def test_resources_declared_in_dependency_order(self, settings, store, apply_gate):
        provider = LocalProvider()
        make_stack(provider, settings, apply_gate, store).build()

        assert [(kind, name) for kind, name, _ in provider.declarations] == [
            ("resource_group", "todo-rg"),
            ("telemetry", "todo-insights"),
            ("sql_database", "todo-sql"),
            ("function_app", "todo-app"),
            ("firewall_rules", "/local/sqlServers/todo-sql-server"),
            ("static_site", "todo-front"),
        ]

    def test_function_app_settings(self, settings, store, apply_gate):
        provider = LocalProvider()
        make_stack(provider, settings, apply_gate, store).build()

        _, _, args = provider.declarations[3]
        app_settings = args["app_settings"]
        assert set(app_settings) == {"ConnectionString", "APPINSIGHTS_INSTRUMENTATIONKEY"}
        assert app_settings["ConnectionString"].value().startswith(
            "Server=tcp:todo-sql-server.database.windows.net;initial catalog=todo-sql;"
        )

    def test_exports(self, settings, store, apply_gate):
        exports = make_stack(LocalProvider(), settings, apply_gate, store).build()

        assert exports.sql_connection_string.value() == (
            "Server=tcp:todo-sql-server.database.windows.net;initial catalog=todo-sql;"
            "user ID=TodoAdmin;password=T0d0Adm1n;"
            "Min Pool Size=0;Max Pool Size=30;Persist Security Info=true;"
        )
        assert exports.api_endpoint.value() == API_ENDPOINT
        assert exports.front_endpoint.value() == "https://todofront.z6.web.core.windows.net/"
        assert exports.database_access_rules.value() == ["outbound-10-0-0-1", "outbound-10-0-0-2"]
        assert set(exports.as_dict()) == {
            "sqlServerConnectionString",
            "apiEndpoint",
            "frontEndpoint",
            "databaseAccessRules",
            "publishedAssets",
        }
        assert "sqlServerConnectionString" in StackExports.SECRETS

    def test_password_required(self, asset_tree, store, apply_gate):
        settings = StackSettings(asset_root=asset_tree)

        with pytest.raises(SettingsError, match="sql_admin_password"):
            make_stack(LocalProvider(), settings, apply_gate, store).build()

    def test_explicit_password_wins(self, settings, store, apply_gate):
        stack = make_stack(LocalProvider(), settings, apply_gate, store)
        stack.sql_password = "from-config"

        assert "password=from-config;" in stack.build().sql_connection_string.value()


class TestSideEffects:
    """Tests for side effects chained onto provisioning."""

    def test_apply_enables_website_then_publishes(self, settings, store, apply_gate):
        exports = make_stack(LocalProvider(), settings, apply_gate, store).build()

        assert store.calls[0] == ("enable_static_website", "index.html", "index.html")
        assert store.uploaded_names() == ["index.html", "static/js/main.abc123.js"]
        assert exports.published_assets.value() == ["index.html", "static/js/main.abc123.js"]

    def test_api_endpoint_rewritten_into_bundle(self, settings, store, apply_gate):
        make_stack(LocalProvider(), settings, apply_gate, store).build()

        content, content_type = store.objects[("$web", "static/js/main.abc123.js")]
        assert content == f'fetch("{API_ENDPOINT}/todos")'.encode()
        assert content_type == "text/javascript"

    def test_effects_wait_for_connection_string(self, settings, store, apply_gate):
        provider = LocalProvider(pending={"todo-front.connection_string"})
        exports = make_stack(provider, settings, apply_gate, store).build()

        assert store.calls == []
        assert exports.published_assets.is_pending

        provider.properties["todo-front.connection_string"].resolve("AccountName=todofront")

        assert store.uploaded_names() == ["index.html", "static/js/main.abc123.js"]
        assert exports.published_assets.is_resolved

    def test_site_endpoint_resolved_with_account_and_group(self, settings, store, apply_gate):
        resolver = StubResolver(apply_gate, endpoint="https://custom.example/")
        exports = make_stack(LocalProvider(), settings, apply_gate, store, resolver).build()

        assert resolver.lookups == [("todofront", {"resource_group": "todo-rg"})]
        assert exports.front_endpoint.value() == "https://custom.example/"

    def test_native_site_endpoint(self, settings, store, apply_gate):
        settings = settings.model_copy(update={"resolve_site_endpoint": False})
        resolver = StubResolver(apply_gate)
        exports = make_stack(LocalProvider(), settings, apply_gate, store, resolver).build()

        assert resolver.lookups == []
        assert RESOLVE_SITE_ENDPOINT not in exports.effects
        assert exports.front_endpoint.value() == "https://todofront.z6.web.core.windows.net/"

    def test_signed_asset_urls(self, settings, store, apply_gate):
        settings = settings.model_copy(update={"sign_assets": True})
        exports = make_stack(LocalProvider(), settings, apply_gate, store).build()

        urls = exports.asset_urls.value()
        assert set(urls) == {"index.html", "static/js/main.abc123.js"}
        assert "se=2024-05-01T14:00:00Z" in urls["index.html"]
        assert "publishedAssetUrls" in exports.as_dict()

    def test_preview_performs_no_side_effects(self, settings, store, preview_gate):
        resolver = StubResolver(preview_gate)
        exports = make_stack(LocalProvider(), settings, preview_gate, store, resolver).build()

        assert store.calls == []
        assert resolver.lookups == []
        assert exports.published_assets.is_unknown
        assert exports.front_endpoint.is_unknown
        assert exports.database_access_rules.is_resolved
        assert set(exports.effects) == {ENABLE_STATIC_WEBSITE, PUBLISH_ASSETS, RESOLVE_SITE_ENDPOINT}

    def test_upstream_failure_skips_publish(self, settings, store, apply_gate):
        cause = RuntimeError("function app deployment failed")
        provider = LocalProvider(pending={"todo-app.default_hostname"})
        exports = make_stack(provider, settings, apply_gate, store).build()

        provider.properties["todo-app.default_hostname"].fail(cause)

        assert store.uploaded_names() == []
        assert exports.api_endpoint.cause is cause
        assert exports.published_assets.cause is cause
        assert exports.front_endpoint.is_resolved


class TestFirewallRules:
    """Tests for rules derived from the app's outbound addresses."""

    def test_rules_declared_once_addresses_are_known(self, settings, store, apply_gate):
        provider = LocalProvider(pending={"todo-app.outbound_addresses"})
        exports = make_stack(provider, settings, apply_gate, store).build()

        assert "firewall_rules" not in [kind for kind, _, _ in provider.declarations]
        assert exports.database_access_rules.is_pending

        provider.properties["todo-app.outbound_addresses"].resolve("1.2.3.4,5.6.7.8,")

        assert exports.database_access_rules.value() == ["outbound-1-2-3-4", "outbound-5-6-7-8"]
        assert provider.declarations[-1][0] == "firewall_rules"

    def test_changed_addresses_retire_old_rules(self, settings, store, apply_gate):
        provider = LocalProvider()
        make_stack(provider, settings, apply_gate, store).build()

        provider.values["todo-app.outbound_addresses"] = "10.0.0.1,10.0.0.3"
        make_stack(provider, settings, apply_gate, store).build()

        changes = provider.rule_changes[-1]
        assert changes.create == ("outbound-10-0-0-3",)
        assert changes.keep == ("outbound-10-0-0-1",)
        assert changes.retire == ("outbound-10-0-0-2",)
