"""
Local provider for development and testing.
"""

from pathlib import Path
from typing import Any, Iterable, Mapping

import structlog

from moraine.core.deferred import DeferredValue
from moraine.network.firewall import AddressRule, RuleChanges, reconcile
from moraine.providers.base import (
    DatabaseHandle,
    FunctionAppHandle,
    ResourceGroupHandle,
    ResourceProvider,
    StaticSiteHandle,
)

logger = structlog.get_logger()


class LocalProvider(ResourceProvider):
    """
    In-memory provider that simulates provisioning.

    Every property is a DeferredValue registered under "<resource>.<property>"
    in `properties`. Properties resolve immediately with a fake value unless
    their key is listed in `pending`, in which case the caller resolves them
    later, the way the provisioning engine would.

    Firewall rules are kept per server across builds, so running the same
    stack twice shows which rules a new address list creates and retires.

    Example:
        provider = LocalProvider(pending={"todo-app.outbound_addresses"})
        exports = TodoStack(provider, settings, gate).build()

        provider.properties["todo-app.outbound_addresses"].resolve("1.2.3.4,5.6.7.8")
    """

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        pending: Iterable[str] = (),
    ):
        """
        Args:
            values: Overrides of fake property values, by key
            pending: Keys left unresolved
        """
        self.values = dict(values or {})
        self.pending = set(pending)
        self.properties: dict[str, DeferredValue[Any]] = {}
        self.declarations: list[tuple[str, str, dict[str, Any]]] = []
        self.firewall: dict[str, dict[str, AddressRule]] = {}
        self.rule_changes: list[RuleChanges] = []

    def get_provider_name(self) -> str:
        return "local"

    def _declare(self, kind: str, name: str, **args: Any) -> None:
        self.declarations.append((kind, name, args))
        logger.debug("resource_declared", kind=kind, name=name)

    def _property(self, resource: str, prop: str, default: Any) -> DeferredValue[Any]:
        key = f"{resource}.{prop}"
        deferred: DeferredValue[Any] = DeferredValue(label=key)
        self.properties[key] = deferred
        if key not in self.pending:
            deferred.resolve(self.values.get(key, default))
        return deferred

    def resource_group(self, name: str, location: str, tags: Mapping[str, str]) -> ResourceGroupHandle:
        self._declare("resource_group", name, location=location, tags=dict(tags))
        return ResourceGroupHandle(name=self._property(name, "name", name))

    def telemetry(self, name: str, group: ResourceGroupHandle) -> DeferredValue[str]:
        self._declare("telemetry", name, group=group.name)
        return self._property(name, "instrumentation_key", "00000000-0000-0000-0000-000000000000")

    def sql_database(
        self,
        name: str,
        group: ResourceGroupHandle,
        login: str,
        password: DeferredValue[str] | str,
    ) -> DatabaseHandle:
        self._declare("sql_database", name, group=group.name, login=login, password=password)
        server = f"{name}-server"
        return DatabaseHandle(
            server_id=self._property(name, "server_id", f"/local/sqlServers/{server}"),
            server_name=self._property(name, "server_name", server),
            fqdn=self._property(name, "fqdn", f"{server}.database.windows.net"),
            database_name=self._property(name, "database_name", name),
        )

    def function_app(
        self,
        name: str,
        group: ResourceGroupHandle,
        package: Path,
        app_settings: Mapping[str, DeferredValue[str] | str],
    ) -> FunctionAppHandle:
        self._declare("function_app", name, group=group.name, package=str(package), app_settings=dict(app_settings))
        return FunctionAppHandle(
            name=self._property(name, "name", name),
            default_hostname=self._property(name, "default_hostname", f"{name}.azurewebsites.net"),
            outbound_addresses=self._property(name, "outbound_addresses", "10.0.0.1,10.0.0.2"),
        )

    def static_site(self, name: str, group: ResourceGroupHandle) -> StaticSiteHandle:
        self._declare("static_site", name, group=group.name)
        account = name.replace("-", "")
        return StaticSiteHandle(
            account_name=self._property(name, "account_name", account),
            connection_string=self._property(
                name,
                "connection_string",
                f"DefaultEndpointsProtocol=https;AccountName={account};AccountKey=bG9jYWw=;EndpointSuffix=core.windows.net",
            ),
            web_endpoint=self._property(name, "web_endpoint", f"https://{account}.z6.web.core.windows.net/"),
        )

    def firewall_rules(self, server_id: str, rules: list[AddressRule]) -> list[Any]:
        current = self.firewall.get(server_id, {})
        changes = reconcile(current, rules)
        self.rule_changes.append(changes)

        for rule_id in changes.retire:
            logger.info("firewall_rule_retired", server=server_id, rule=rule_id)
        for rule_id in changes.create:
            logger.info("firewall_rule_created", server=server_id, rule=rule_id)

        self.firewall[server_id] = {rule.rule_id: rule for rule in rules}
        self._declare("firewall_rules", server_id, rules=[rule.rule_id for rule in rules])
        return list(rules)
