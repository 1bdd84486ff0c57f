"""
Azure provider: declares the stack with pulumi_azure resources.

This creates actual Pulumi resources with sensible defaults and mirrors
their outputs into DeferredValues.
"""

from pathlib import Path
from typing import Any, Mapping

import structlog

try:
    import pulumi
    import pulumi_azure as azure
except ImportError:
    raise ImportError(
        "pulumi and pulumi-azure required for AzureProvider. "
        "Install with: pip install pulumi pulumi-azure"
    )

from moraine.core.deferred import DeferredValue
from moraine.network.firewall import AddressRule
from moraine.providers.base import (
    DatabaseHandle,
    FunctionAppHandle,
    ResourceGroupHandle,
    ResourceProvider,
    StaticSiteHandle,
)
from moraine.providers.pulumi_bridge import from_output, to_input

logger = structlog.get_logger()

# Validity window of the function package URL; the app reads it on every cold start.
PACKAGE_SAS_START = "2019-01-01"
PACKAGE_SAS_EXPIRY = "2100-01-01"


def _account_name(name: str) -> str:
    """Storage account logical names: lowercase alphanumerics only."""
    return "".join(ch for ch in name.lower() if ch.isalnum())[:16]


class AzureProvider(ResourceProvider):
    """
    Azure provider implementation.

    Example:
        provider = AzureProvider()
        group = provider.resource_group("todo-rg", "westeurope", {})
        database = provider.sql_database("todo-sql", group, "TodoAdmin", password)
    """

    def __init__(
        self,
        sql_version: str = "12.0",
        functions_version: str = "~4",
        worker_runtime: str = "dotnet",
    ):
        """
        Args:
            sql_version: Azure SQL server version
            functions_version: Azure Functions runtime version
            worker_runtime: FUNCTIONS_WORKER_RUNTIME of the function app
        """
        self.sql_version = sql_version
        self.functions_version = functions_version
        self.worker_runtime = worker_runtime
        self.tags: dict[str, str] = {}
        self.resources: dict[str, pulumi.CustomResource] = {}
        self._groups: dict[int, azure.core.ResourceGroup] = {}
        self._servers: dict[str, azure.mssql.Server] = {}

    def get_provider_name(self) -> str:
        return "azure"

    def _group(self, handle: ResourceGroupHandle) -> azure.core.ResourceGroup:
        return self._groups[id(handle)]

    def resource_group(self, name: str, location: str, tags: Mapping[str, str]) -> ResourceGroupHandle:
        self.tags = dict(tags)
        group = azure.core.ResourceGroup(name, location=location, tags=self.tags)
        self.resources[name] = group
        handle = ResourceGroupHandle(name=from_output(group.name, label=f"{name}.name"))
        self._groups[id(handle)] = group
        return handle

    def telemetry(self, name: str, group: ResourceGroupHandle) -> DeferredValue[str]:
        rg = self._group(group)
        insights = azure.appinsights.Insights(
            name,
            resource_group_name=rg.name,
            location=rg.location,
            application_type="web",
            tags=self.tags,
        )
        self.resources[name] = insights
        return from_output(insights.instrumentation_key, label=f"{name}.instrumentation_key")

    def sql_database(
        self,
        name: str,
        group: ResourceGroupHandle,
        login: str,
        password: DeferredValue[str] | str,
    ) -> DatabaseHandle:
        rg = self._group(group)
        server = azure.mssql.Server(
            f"{name}-server",
            resource_group_name=rg.name,
            location=rg.location,
            version=self.sql_version,
            administrator_login=login,
            administrator_login_password=pulumi.Output.secret(to_input(password)),
            tags=self.tags,
        )
        database = azure.mssql.Database(
            name,
            server_id=server.id,
            sku_name="Basic",
            tags=self.tags,
        )
        self.resources[f"{name}-server"] = server
        self.resources[name] = database

        server_id = from_output(server.id, label=f"{name}.server_id")
        server_id.on_settled(lambda settled: self._register_server(settled, server))
        return DatabaseHandle(
            server_id=server_id,
            server_name=from_output(server.name, label=f"{name}.server_name"),
            fqdn=from_output(server.fully_qualified_domain_name, label=f"{name}.fqdn"),
            database_name=from_output(database.name, label=f"{name}.database_name"),
        )

    def function_app(
        self,
        name: str,
        group: ResourceGroupHandle,
        package: Path,
        app_settings: Mapping[str, DeferredValue[str] | str],
    ) -> FunctionAppHandle:
        rg = self._group(group)

        plan = azure.appservice.ServicePlan(
            f"{name}-plan",
            resource_group_name=rg.name,
            location=rg.location,
            os_type="Windows",
            sku_name="Y1",
            tags=self.tags,
        )

        storage = azure.storage.Account(
            _account_name(f"{name}storage"),
            resource_group_name=rg.name,
            location=rg.location,
            account_tier="Standard",
            account_replication_type="LRS",
            account_kind="StorageV2",
            access_tier="Hot",
            tags=self.tags,
        )
        container = azure.storage.Container(
            f"{name}-zips",
            storage_account_name=storage.name,
            container_access_type="private",
        )
        blob = azure.storage.Blob(
            f"{name}-zip",
            storage_account_name=storage.name,
            storage_container_name=container.name,
            type="Block",
            source=pulumi.FileArchive(str(package)),
        )

        settings: dict[str, Any] = {
            "FUNCTIONS_WORKER_RUNTIME": self.worker_runtime,
            "WEBSITE_RUN_FROM_PACKAGE": self._signed_package_url(storage, container, blob),
        }
        settings.update({key: to_input(value) for key, value in app_settings.items()})

        app = azure.appservice.WindowsFunctionApp(
            name,
            resource_group_name=rg.name,
            location=rg.location,
            service_plan_id=plan.id,
            storage_account_name=storage.name,
            storage_account_access_key=storage.primary_access_key,
            functions_extension_version=self.functions_version,
            app_settings=settings,
            site_config=azure.appservice.WindowsFunctionAppSiteConfigArgs(
                cors=azure.appservice.WindowsFunctionAppSiteConfigCorsArgs(allowed_origins=["*"]),
            ),
            tags=self.tags,
        )
        self.resources[name] = app

        return FunctionAppHandle(
            name=from_output(app.name, label=f"{name}.name"),
            default_hostname=from_output(app.default_hostname, label=f"{name}.default_hostname"),
            outbound_addresses=from_output(app.outbound_ip_addresses, label=f"{name}.outbound_addresses"),
        )

    def _signed_package_url(
        self,
        storage: azure.storage.Account,
        container: azure.storage.Container,
        blob: azure.storage.Blob,
    ) -> "pulumi.Output[str]":
        sas = azure.storage.get_account_blob_container_sas_output(
            connection_string=storage.primary_connection_string,
            container_name=container.name,
            https_only=True,
            start=PACKAGE_SAS_START,
            expiry=PACKAGE_SAS_EXPIRY,
            permissions=azure.storage.GetAccountBlobContainerSASPermissionsArgs(
                read=True,
                add=False,
                create=False,
                write=False,
                delete=False,
                list=False,
            ),
        )
        return pulumi.Output.concat(blob.url, sas.sas)

    def static_site(self, name: str, group: ResourceGroupHandle) -> StaticSiteHandle:
        rg = self._group(group)
        account = azure.storage.Account(
            _account_name(name),
            resource_group_name=rg.name,
            location=rg.location,
            account_tier="Standard",
            account_replication_type="LRS",
            account_kind="StorageV2",
            access_tier="Hot",
            tags=self.tags,
        )
        self.resources[name] = account
        return StaticSiteHandle(
            account_name=from_output(account.name, label=f"{name}.account_name"),
            connection_string=from_output(account.primary_blob_connection_string, label=f"{name}.connection_string"),
            web_endpoint=from_output(account.primary_web_endpoint, label=f"{name}.web_endpoint"),
        )

    def _register_server(self, server_id: DeferredValue[str], server: azure.mssql.Server) -> None:
        if server_id.is_resolved:
            self._servers[server_id.value()] = server

    def firewall_rules(self, server_id: str, rules: list[AddressRule]) -> list[Any]:
        server = self._servers.get(server_id)
        opts = pulumi.ResourceOptions(depends_on=[server]) if server is not None else None
        declared = [
            azure.mssql.FirewallRule(
                rule.rule_id,
                name=rule.rule_id,
                server_id=server.id if server is not None else server_id,
                start_ip_address=rule.start_address,
                end_ip_address=rule.end_address,
                opts=opts,
            )
            for rule in rules
        ]
        self.resources.update(zip((rule.rule_id for rule in rules), declared))
        logger.info("firewall_rules_declared", server=server_id, rules=[rule.rule_id for rule in rules])
        return declared
