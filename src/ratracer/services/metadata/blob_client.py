"""Vercel Blob client for publishing rat metadata JSON."""

import json
from typing import Any

import httpx
import structlog

from ratracer.services.exceptions import (
    BlobAuthError,
    BlobNetworkError,
    BlobRateLimitError,
    BlobStorageError,
)

logger = structlog.get_logger()


def metadata_path(token_id: int) -> str:
    """Blob pathname for a rat's metadata document."""
    return f"rats/metadata/{token_id}.json"


class BlobStorageClient:
    """Uploads metadata documents to Vercel Blob at deterministic paths.

    Uploads use a fixed pathname (no random suffix) with overwrite allowed, so
    re-uploading a token's metadata after a webhook retry replaces the object
    with identical content instead of failing.
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://blob.vercel-storage.com",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Blob client.

        Args:
            token: Read-write token (from BLOB_READ_WRITE_TOKEN env var)
            api_url: Blob API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {token}",
            "x-api-version": "7",
            "x-content-type": "application/json",
            "x-add-random-suffix": "0",
            "x-allow-overwrite": "1",
            "x-cache-control-max-age": "60",
        }

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    async def put_metadata(self, token_id: int, metadata: dict[str, Any]) -> str:
        """Upload a metadata document for a token.

        Args:
            token_id: On-chain token ID (determines the pathname)
            metadata: JSON-serializable metadata document

        Returns:
            Public URL of the stored document

        Raises:
            BlobRateLimitError: Rate limit exceeded (429)
            BlobNetworkError: Timeout, connection failure or 5xx response
            BlobAuthError: Invalid or missing token (401, 403)
            BlobStorageError: Any other unexpected response
        """
        body = json.dumps(metadata, indent=2, sort_keys=True).encode("utf-8")
        pathname = metadata_path(token_id)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.put(
                    f"{self.api_url}/{pathname}", headers=self.headers, content=body
                )
        except httpx.TimeoutException as e:
            raise BlobNetworkError(f"Request timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise BlobNetworkError(f"Network error: {e}") from e

        # Error classification
        if response.status_code == 429:
            raise BlobRateLimitError(f"Rate limit exceeded: {response.text}")
        elif response.status_code >= 500:
            raise BlobNetworkError(
                f"Service unavailable ({response.status_code}): {response.text}"
            )
        elif response.status_code in (401, 403):
            raise BlobAuthError(
                f"Blob storage rejected credentials ({response.status_code}). "
                "Check BLOB_READ_WRITE_TOKEN configuration."
            )
        elif response.status_code >= 400:
            raise BlobStorageError(f"Upload failed ({response.status_code}): {response.text}")

        url = response.json().get("url")
        if not url:
            raise BlobStorageError("Upload response did not include a URL")

        logger.info("blob.uploaded", token_id=token_id, url=url, size=len(body))
        return url
