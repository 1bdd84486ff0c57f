"""
Resource providers.

AzureProvider (pulumi_azure) is imported from moraine.providers.azure
directly, so the rest of the package works without a Pulumi runtime.
"""

from moraine.providers.base import (
    DatabaseHandle,
    FunctionAppHandle,
    ResourceGroupHandle,
    ResourceProvider,
    StaticSiteHandle,
)
from moraine.providers.local import LocalProvider

__all__ = [
    "ResourceProvider",
    "ResourceGroupHandle",
    "DatabaseHandle",
    "FunctionAppHandle",
    "StaticSiteHandle",
    "LocalProvider",
]
