"""
Pulumi program entry point.

Run from a Pulumi project directory (see infra/):

    pulumi config set location westeurope
    pulumi config set --secret sqlAdminPassword '...'
    pulumi up
"""

from typing import Any

import pulumi

from moraine.config.settings import StackSettings, load_settings
from moraine.logging import bind_context, configure_logging
from moraine.providers.azure import AzureProvider
from moraine.providers.pulumi_bridge import export_all, from_output, gate_from_runtime
from moraine.stack import StackExports, TodoStack

# Pulumi config key -> StackSettings field
CONFIG_KEYS = {
    "project": "project",
    "location": "location",
    "sqlAdminLogin": "sql_admin_login",
    "assetRoot": "asset_root",
    "functionPackage": "function_package",
    "siteContainer": "site_container",
    "endpointPlaceholder": "endpoint_placeholder",
    "signAssets": "sign_assets",
    "signingDuration": "signing_duration",
    "uploadWorkers": "upload_workers",
    "rulePrefix": "rule_prefix",
    "resolveSiteEndpoint": "resolve_site_endpoint",
}


def settings_from_config(config: pulumi.Config) -> StackSettings:
    """Read StackSettings from the Pulumi stack configuration and environment."""
    overrides: dict[str, Any] = {field: config.get(key) for key, field in CONFIG_KEYS.items()}
    overrides["tags"] = config.get_object("tags")
    overrides["placeholder_patterns"] = config.get_object("placeholderPatterns")
    return load_settings(config.get("settingsFile"), overrides=overrides)


def run() -> StackExports:
    """Declare the stack and register its outputs."""
    configure_logging(json_output=True)
    config = pulumi.Config()
    settings = settings_from_config(config)
    gate = gate_from_runtime()
    bind_context(stack=pulumi.get_stack(), mode=gate.mode.value)

    password = from_output(config.require_secret("sqlAdminPassword"), label="sqlAdminPassword")

    stack = TodoStack(AzureProvider(), settings, gate, sql_password=password)
    exports = stack.build()
    export_all(exports.as_dict(), secrets=StackExports.SECRETS)
    return exports
