"""
Object storage backends for the asset publisher.
"""

from abc import ABC, abstractmethod
from datetime import datetime

import structlog
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    StaticWebsite,
    generate_blob_sas,
)

logger = structlog.get_logger()


class BlobStore(ABC):
    """
    Object storage operations the publisher needs.

    Implementations must make upload() overwrite existing objects so a
    re-run of an interrupted publish converges to the same state.
    """

    @abstractmethod
    def upload(self, container: str, name: str, data: bytes, content_type: str) -> str:
        """
        Upload bytes as an object.

        Returns:
            Base URI of the object (without any access token)
        """
        pass

    @abstractmethod
    def sign_read(self, container: str, name: str, expires_at: datetime) -> str:
        """
        Create a read-only access token valid immediately until expires_at.

        Returns:
            Query string token, without the leading '?'
        """
        pass

    @abstractmethod
    def enable_static_website(self, index_document: str, error_document: str) -> None:
        """Turn on static website hosting for the account."""
        pass


class AzureBlobStore(BlobStore):
    """
    Azure Blob Storage backend.

    Example:
        store = AzureBlobStore.from_connection_string(connection_string)
        url = store.upload("$web", "index.html", b"<html/>", "text/html")
    """

    def __init__(self, client: BlobServiceClient):
        self.client = client

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "AzureBlobStore":
        return cls(BlobServiceClient.from_connection_string(connection_string))

    @property
    def account_name(self) -> str:
        return self.client.account_name

    def upload(self, container: str, name: str, data: bytes, content_type: str) -> str:
        blob = self.client.get_blob_client(container=container, blob=name)
        blob.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
        )
        logger.debug("blob_uploaded", account=self.account_name, container=container, blob=name)
        return blob.url

    def sign_read(self, container: str, name: str, expires_at: datetime) -> str:
        account_key = getattr(self.client.credential, "account_key", None)
        if not account_key:
            raise ValueError(
                f"Cannot sign '{container}/{name}': storage account '{self.account_name}' "
                f"was not opened with an account key"
            )

        return generate_blob_sas(
            account_name=self.account_name,
            container_name=container,
            blob_name=name,
            account_key=account_key,
            permission=BlobSasPermissions(read=True),
            expiry=expires_at,
        )

    def enable_static_website(self, index_document: str, error_document: str) -> None:
        self.client.set_service_properties(
            static_website=StaticWebsite(
                enabled=True,
                index_document=index_document,
                error_document404_path=error_document,
            )
        )
        logger.info(
            "static_website_enabled",
            account=self.account_name,
            index_document=index_document,
            error_document=error_document,
        )
