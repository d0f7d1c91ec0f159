"""Lookups of student, school and category names.

Students, partner schools and scholarship categories are owned by the
registry service.  The review workflow only stores their ids and asks the
directory for display names when building reports.
"""

import logging
import os
from typing import Any, Protocol

import httpx
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DIRECTORY_SERVICE_URL = os.getenv("DIRECTORY_SERVICE_URL", "")
DIRECTORY_TIMEOUT_SECONDS = float(os.getenv("DIRECTORY_TIMEOUT_SECONDS", "5.0"))
DIRECTORY_API_KEY = os.getenv("DIRECTORY_API_KEY", "")


class DirectoryError(Exception):
    """The directory service could not answer a lookup."""


class Directory(Protocol):
    async def student_name(self, student_id: str) -> str | None: ...

    async def school_name(self, school_id: str) -> str | None: ...

    async def category_name(self, category_id: str) -> str | None: ...


class NullDirectory:
    """Directory used when no registry service is configured."""

    async def student_name(self, student_id: str) -> str | None:
        return None

    async def school_name(self, school_id: str) -> str | None:
        return None

    async def category_name(self, category_id: str) -> str | None:
        return None


class HttpDirectoryClient:
    """Directory backed by the registry service's REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DIRECTORY_TIMEOUT_SECONDS,
        api_key: str = DIRECTORY_API_KEY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._transport = transport

    async def _get(self, path: str) -> dict[str, Any] | None:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=headers, transport=self._transport
            ) as client:
                response = await client.get(url)
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as exc:
            raise DirectoryError(f"Directory lookup timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise DirectoryError(f"Directory lookup failed: {url}: {exc}") from exc
        except ValueError as exc:
            raise DirectoryError(f"Directory returned invalid JSON: {url}") from exc

    async def student_name(self, student_id: str) -> str | None:
        data = await self._get(f"/students/{student_id}")
        if not data:
            return None
        if data.get("full_name"):
            return data["full_name"]
        parts = [data.get("first_name"), data.get("middle_name"), data.get("last_name")]
        name = " ".join(p for p in parts if p)
        return name or None

    async def school_name(self, school_id: str) -> str | None:
        data = await self._get(f"/schools/{school_id}")
        return data.get("name") if data else None

    async def category_name(self, category_id: str) -> str | None:
        data = await self._get(f"/categories/{category_id}")
        return data.get("name") if data else None


def build_directory() -> Directory:
    """Return the HTTP client when ``DIRECTORY_SERVICE_URL`` is set."""
    if DIRECTORY_SERVICE_URL:
        logger.info("Directory lookups via %s", DIRECTORY_SERVICE_URL)
        return HttpDirectoryClient(DIRECTORY_SERVICE_URL)
    logger.warning("DIRECTORY_SERVICE_URL not set, reports will show placeholder names")
    return NullDirectory()
