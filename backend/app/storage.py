"""Azure Blob Storage integration for scholarship documents.

Uploaded requirement documents live in the ``scholarship-documents``
container; reviewers reference them by blob path in the document
verification payload.  This module only turns those paths into
time-limited, read-only SAS URLs.

Usage::

    from app.storage import document_storage

    urls = document_storage.resolve_urls({"valid_id": "applications/abc/id.pdf"})
"""

import logging
import os
from datetime import datetime, timedelta, timezone

from azure.storage.blob import BlobSasPermissions, generate_blob_sas
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

CONTAINER_NAME = os.getenv("AZURE_STORAGE_CONTAINER", "scholarship-documents")
SAS_EXPIRY_HOURS = int(os.getenv("DOCUMENT_URL_EXPIRY_HOURS", "1"))


class DocumentStorage:
    """Resolve stored document paths to download URLs."""

    def __init__(
        self,
        connection_string: str | None = None,
        account_name: str | None = None,
        account_key: str | None = None,
        container: str = CONTAINER_NAME,
    ) -> None:
        self.connection_string = connection_string or os.getenv(
            "AZURE_STORAGE_CONNECTION_STRING"
        )
        self.account_name = account_name or os.getenv("AZURE_STORAGE_ACCOUNT_NAME")
        self.account_key = account_key or os.getenv("AZURE_STORAGE_ACCOUNT_KEY")
        self.container = container

        if not self.account_name or not self.account_key:
            # Try to extract from connection string
            if self.connection_string:
                parts = dict(
                    pair.split("=", 1)
                    for pair in self.connection_string.split(";")
                    if "=" in pair
                )
                self.account_name = self.account_name or parts.get("AccountName")
                self.account_key = self.account_key or parts.get("AccountKey")

        if not self.account_name or not self.account_key:
            logger.warning(
                "Azure storage credentials not set; document links will be unavailable"
            )

    @property
    def configured(self) -> bool:
        return bool(self.account_name and self.account_key)

    def generate_sas_url(self, blob_path: str, expiry_hours: int = SAS_EXPIRY_HOURS) -> str:
        """Generate a time-limited SAS URL for secure file download.

        Raises:
            RuntimeError: If storage credentials are missing.
        """
        if not self.configured:
            raise RuntimeError(
                "Cannot generate SAS URL: AZURE_STORAGE_ACCOUNT_NAME and "
                "AZURE_STORAGE_ACCOUNT_KEY are required, or include them in "
                "AZURE_STORAGE_CONNECTION_STRING"
            )

        sas_token = generate_blob_sas(
            account_name=self.account_name,
            container_name=self.container,
            blob_name=blob_path,
            account_key=self.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(hours=expiry_hours),
        )
        return (
            f"https://{self.account_name}.blob.core.windows.net/"
            f"{self.container}/{blob_path}?{sas_token}"
        )

    def resolve_urls(self, document_refs: dict[str, str]) -> dict[str, str | None]:
        """Map each checklist item's blob path to a download URL.

        Items whose URL cannot be generated map to ``None``.
        """
        urls: dict[str, str | None] = {}
        for item, blob_path in document_refs.items():
            if not blob_path:
                urls[item] = None
                continue
            try:
                urls[item] = self.generate_sas_url(blob_path)
            except Exception as exc:
                logger.warning("Could not resolve document %s (%s): %s", item, blob_path, exc)
                urls[item] = None
        return urls


# Module-level singleton
document_storage = DocumentStorage()
