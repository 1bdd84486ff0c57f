"""
TodoStack: the to-do application stack.

Declares the resources in dependency order and chains the side effects
onto the deferred values they need:

    resource group -> Application Insights -> SQL server + database
      -> function app (connection string, instrumentation key)
      -> firewall rules from the app's outbound addresses
    -> front-end storage account
      -> enable static website -> publish assets (API endpoint rewritten in)
                               -> resolve public site endpoint

Example:
    gate = gate_from_runtime()
    stack = TodoStack(AzureProvider(), settings, gate)
    exports = stack.build()
    export_all(exports.as_dict(), secrets=StackExports.SECRETS)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import structlog

from moraine.config.settings import SettingsError, StackSettings
from moraine.core.context import ExecutionGate
from moraine.core.deferred import DeferredValue
from moraine.core.effects import EffectPlan
from moraine.network.firewall import AddressRule, RuleSynthesizer
from moraine.providers.base import ResourceProvider
from moraine.publishing.assets import (
    AssetPublisher,
    PlaceholderRewrite,
    PublishedObject,
    SigningPolicy,
    utcnow,
)
from moraine.publishing.blob_store import AzureBlobStore, BlobStore
from moraine.resolver.endpoint import EndpointResolver

logger = structlog.get_logger()

CONNECTION_STRING_TEMPLATE = (
    "Server=tcp:{fqdn};initial catalog={database};user ID={login};password={password};"
    "Min Pool Size=0;Max Pool Size=30;Persist Security Info=true;"
)

ENABLE_STATIC_WEBSITE = "enable-static-website"
PUBLISH_ASSETS = "publish-assets"
RESOLVE_SITE_ENDPOINT = "resolve-site-endpoint"


@dataclass
class StackExports:
    """Values exported by the stack; most are still pending when returned."""

    sql_connection_string: DeferredValue[str]
    api_endpoint: DeferredValue[str]
    front_endpoint: DeferredValue[str | None]
    database_access_rules: DeferredValue[list[str]]
    published_assets: DeferredValue[list[str]]
    asset_urls: DeferredValue[dict[str, str]] | None = None
    effects: dict[str, DeferredValue[Any]] = field(default_factory=dict)

    SECRETS = ("sqlServerConnectionString", "publishedAssetUrls")

    def as_dict(self) -> dict[str, DeferredValue[Any]]:
        exports: dict[str, DeferredValue[Any]] = {
            "sqlServerConnectionString": self.sql_connection_string,
            "apiEndpoint": self.api_endpoint,
            "frontEndpoint": self.front_endpoint,
            "databaseAccessRules": self.database_access_rules,
            "publishedAssets": self.published_assets,
        }
        if self.asset_urls is not None:
            exports["publishedAssetUrls"] = self.asset_urls
        return exports


class TodoStack:
    """
    Orchestrates resource declarations and their side effects.

    The provider decides what a declaration does (Pulumi resources or the
    in-memory LocalProvider); the gate decides whether side effects run.
    """

    def __init__(
        self,
        provider: ResourceProvider,
        settings: StackSettings,
        gate: ExecutionGate,
        sql_password: DeferredValue[str] | str | None = None,
        store_factory: Callable[[str], BlobStore] = AzureBlobStore.from_connection_string,
        resolver: EndpointResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            provider: Resource provider
            settings: Stack settings
            gate: Execution gate shared by every side effect
            sql_password: SQL admin password; defaults to settings.sql_admin_password
            store_factory: Opens a BlobStore from a storage connection string
            resolver: Endpoint resolver (default: az CLI query)
            clock: Clock for signed URL expiry
        """
        self.provider = provider
        self.settings = settings
        self.gate = gate
        self.sql_password = sql_password
        self.store_factory = store_factory
        self.resolver = resolver or EndpointResolver(gate)
        self.clock = clock
        self.plan = EffectPlan(gate)

    def _password(self) -> DeferredValue[str] | str:
        if self.sql_password is not None:
            return self.sql_password
        if self.settings.sql_admin_password is not None:
            return self.settings.sql_admin_password.get_secret_value()
        raise SettingsError("sql_admin_password is required")

    def build(self) -> StackExports:
        """
        Declare the stack.

        Returns:
            Exports; deferred values settle as provisioning progresses
        """
        settings = self.settings
        provider = self.provider
        password = self._password()

        logger.info("stack_build_started", project=settings.project, mode=self.gate.mode.value)

        group = provider.resource_group(settings.resource_name("rg"), settings.location, settings.tags)
        instrumentation_key = provider.telemetry(settings.resource_name("insights"), group)

        database = provider.sql_database(
            settings.resource_name("sql"), group, settings.sql_admin_login, password
        )
        connection_string = DeferredValue.format(
            CONNECTION_STRING_TEMPLATE,
            fqdn=database.fqdn,
            database=database.database_name,
            login=settings.sql_admin_login,
            password=password,
        )

        app = provider.function_app(
            settings.resource_name("app"),
            group,
            settings.function_package,
            {
                "ConnectionString": connection_string,
                "APPINSIGHTS_INSTRUMENTATIONKEY": instrumentation_key,
            },
        )

        rules = RuleSynthesizer(settings.rule_prefix).synthesize(
            app.outbound_addresses,
            scope=database.server_id,
            declare=provider.firewall_rules,
        )
        api_endpoint = DeferredValue.format("https://{}/api", app.default_hostname)

        site = provider.static_site(settings.resource_name("front"), group)

        self.plan.declare(ENABLE_STATIC_WEBSITE, self._enable_static_website, site.connection_string)
        published = self.plan.declare(
            PUBLISH_ASSETS,
            self._publish_assets,
            site.connection_string,
            api_endpoint,
            after=(ENABLE_STATIC_WEBSITE,),
        )

        front_endpoint: DeferredValue[str | None]
        if settings.resolve_site_endpoint:
            front_endpoint = self.plan.declare(
                RESOLVE_SITE_ENDPOINT,
                self._resolve_site_endpoint,
                site.account_name,
                group.name,
                after=(ENABLE_STATIC_WEBSITE,),
            )
        else:
            front_endpoint = site.web_endpoint

        effects = self.plan.execute()

        return StackExports(
            sql_connection_string=connection_string,
            api_endpoint=api_endpoint,
            front_endpoint=front_endpoint,
            database_access_rules=rules.map(_rule_ids),
            published_assets=published.map(_object_names),
            asset_urls=published.map(_signed_urls) if settings.sign_assets else None,
            effects=effects,
        )

    # Side effects; only ever called through the effect plan.

    def _enable_static_website(self, connection_string: str) -> None:
        store = self.store_factory(connection_string)
        store.enable_static_website(self.settings.index_document, self.settings.error_document)

    def _publish_assets(self, connection_string: str, api_endpoint: str) -> list[PublishedObject]:
        settings = self.settings
        publisher = AssetPublisher(
            self.store_factory(connection_string),
            self.gate,
            clock=self.clock,
            max_workers=settings.upload_workers,
        )
        rewrite = PlaceholderRewrite(
            token=settings.endpoint_placeholder,
            value=api_endpoint,
            patterns=tuple(settings.placeholder_patterns),
        )
        return publisher.publish(
            settings.asset_root,
            settings.site_container,
            sign=settings.sign_assets,
            signing=SigningPolicy(settings.signing_duration),
            transforms=[rewrite],
        )

    def _resolve_site_endpoint(self, account_name: str, resource_group: str) -> str | None:
        return self.resolver.resolve(account_name, resource_group=resource_group)


def _rule_ids(rules: list[AddressRule]) -> list[str]:
    return [rule.rule_id for rule in rules]


def _object_names(objects: list[PublishedObject]) -> list[str]:
    return [obj.name for obj in objects]


def _signed_urls(objects: list[PublishedObject]) -> dict[str, str]:
    return {obj.name: obj.signed_url for obj in objects if obj.signed_url}
