"""
moraine: deferred-value provisioning of the to-do application stack.

Resource properties that only exist after provisioning (hostnames,
connection strings, outbound addresses) are carried as DeferredValues.
Side effects (enabling the static website, publishing the front-end,
querying the control plane) are declared on an EffectPlan and only run in
APPLY mode once their inputs have resolved.

Example:
    from moraine import DeferredValue, ExecutionGate, LocalProvider, TodoStack, StackSettings

    settings = StackSettings(sql_admin_password="...", asset_root="./build")
    stack = TodoStack(LocalProvider(), settings, ExecutionGate.preview())
    exports = stack.build()
"""

from moraine.config.settings import SettingsError, StackSettings, load_settings
from moraine.core.context import ExecutionGate, ExecutionMode
from moraine.core.deferred import DeferredStateError, DeferredValue, ResolutionError
from moraine.core.effects import EffectPlan, EffectPlanError
from moraine.network.firewall import AddressRule, RuleSynthesizer, reconcile, rule_id_for
from moraine.providers.local import LocalProvider
from moraine.publishing.assets import AssetPublisher, PlaceholderRewrite, PublishError, PublishedObject
from moraine.resolver.endpoint import EndpointResolutionError, EndpointResolver
from moraine.stack import StackExports, TodoStack

__version__ = "0.1.0"
__all__ = [
    "DeferredValue",
    "DeferredStateError",
    "ResolutionError",
    "ExecutionGate",
    "ExecutionMode",
    "EffectPlan",
    "EffectPlanError",
    "AssetPublisher",
    "PlaceholderRewrite",
    "PublishError",
    "PublishedObject",
    "EndpointResolver",
    "EndpointResolutionError",
    "AddressRule",
    "RuleSynthesizer",
    "reconcile",
    "rule_id_for",
    "LocalProvider",
    "StackSettings",
    "SettingsError",
    "load_settings",
    "TodoStack",
    "StackExports",
]
