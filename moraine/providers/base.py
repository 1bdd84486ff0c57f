"""
Base resource provider abstraction.

A provider turns resource declarations into real (or simulated) resources
and hands back their properties as deferred values. The orchestrator only
talks to this interface, so the whole pipeline can be exercised against
LocalProvider without a cloud backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from moraine.core.deferred import DeferredValue
from moraine.network.firewall import AddressRule


@dataclass
class ResourceGroupHandle:
    name: DeferredValue[str]


@dataclass
class DatabaseHandle:
    """SQL server and database properties."""

    server_id: DeferredValue[str]
    server_name: DeferredValue[str]
    fqdn: DeferredValue[str]
    database_name: DeferredValue[str]


@dataclass
class FunctionAppHandle:
    """Function app properties known after provisioning."""

    name: DeferredValue[str]
    default_hostname: DeferredValue[str]
    outbound_addresses: DeferredValue[str]
    """Comma-separated outbound IP addresses assigned by the platform"""


@dataclass
class StaticSiteHandle:
    """Storage account serving the static website."""

    account_name: DeferredValue[str]
    connection_string: DeferredValue[str]
    web_endpoint: DeferredValue[str]


class ResourceProvider(ABC):
    """
    Declares the resources of the stack.

    Values passed in (settings, connection strings, keys) may be plain or
    deferred; everything returned is deferred.
    """

    @abstractmethod
    def resource_group(self, name: str, location: str, tags: Mapping[str, str]) -> ResourceGroupHandle:
        """Create the resource group everything else lives in."""
        pass

    @abstractmethod
    def telemetry(self, name: str, group: ResourceGroupHandle) -> DeferredValue[str]:
        """
        Create an Application Insights component.

        Returns:
            Instrumentation key
        """
        pass

    @abstractmethod
    def sql_database(
        self,
        name: str,
        group: ResourceGroupHandle,
        login: str,
        password: DeferredValue[str] | str,
    ) -> DatabaseHandle:
        """Create a SQL server and a Basic database on it."""
        pass

    @abstractmethod
    def function_app(
        self,
        name: str,
        group: ResourceGroupHandle,
        package: Path,
        app_settings: Mapping[str, DeferredValue[str] | str],
    ) -> FunctionAppHandle:
        """
        Create a consumption-plan function app running from a zip package.

        Args:
            package: Local folder with the published functions
            app_settings: Extra application settings (connection strings, keys)
        """
        pass

    @abstractmethod
    def static_site(self, name: str, group: ResourceGroupHandle) -> StaticSiteHandle:
        """Create a StorageV2 account able to host a static website."""
        pass

    @abstractmethod
    def firewall_rules(self, server_id: str, rules: list[AddressRule]) -> list[Any]:
        """
        Declare the complete set of firewall rules of a SQL server.

        Called with resolved values. Rules missing from 'rules' but declared
        by a previous run are retired.
        """
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Short name of the backend (e.g. "azure", "local")."""
        pass
