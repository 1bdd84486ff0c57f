"""
Publishing local file trees to object storage.
"""

from moraine.publishing.assets import (
    Asset,
    AssetPublisher,
    PlaceholderRewrite,
    PublishedObject,
    PublishError,
    SigningPolicy,
    collect_assets,
    iter_files,
)
from moraine.publishing.blob_store import AzureBlobStore, BlobStore
from moraine.publishing.content_types import content_type_for

__all__ = [
    "Asset",
    "AssetPublisher",
    "PlaceholderRewrite",
    "PublishedObject",
    "PublishError",
    "SigningPolicy",
    "collect_assets",
    "iter_files",
    "BlobStore",
    "AzureBlobStore",
    "content_type_for",
]
