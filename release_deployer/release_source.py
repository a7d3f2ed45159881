"""
GitHub release feed client.

Answers "what is the newest release" and downloads release assets. Downloads
are streamed to a temp file beside the destination and renamed into place only
once the whole body has been written.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import aiofiles  # type: ignore
import httpx
from pydantic import ValidationError

from release_deployer.exceptions import (
    DownloadError,
    RateLimited,
    ReleaseDecodeError,
    ReleaseHTTPError,
)
from release_deployer.models import Asset, Release
from release_deployer.utils.log_sanitizer import sanitize_for_log

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class GitHubReleaseClient:
    """Client for the GitHub Releases API."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the release client.

        Args:
            token: Optional GitHub token sent as "Authorization: token <token>"
            base_url: API base URL (GitHub Enterprise installs differ)
            timeout: Client-level timeout for every request, in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout, follow_redirects=True, transport=transport
        )

    def _headers(self, accept: str) -> dict:
        headers = {"Accept": accept, "User-Agent": "release-deployer"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    async def latest_release(self, repo: str) -> Release:
        """
        Fetch the latest published release of a repository.

        Args:
            repo: Repository as owner/name

        Returns:
            The release descriptor

        Raises:
            RateLimited: On 403/429 responses
            ReleaseHTTPError: On other non-200 responses or transport failures
            ReleaseDecodeError: If the body is not a valid release document
        """
        url = f"{self.base_url}/repos/{repo}/releases/latest"
        try:
            response = await self._client.get(
                url, headers=self._headers("application/vnd.github.v3+json")
            )
        except httpx.HTTPError as e:
            raise ReleaseHTTPError(f"Request to {url} failed: {e}") from e

        if response.status_code in (403, 429):
            raise RateLimited(f"Rate limited by GitHub API ({response.status_code}) for {repo}")

        if response.status_code != 200:
            raise ReleaseHTTPError(
                f"GitHub API returned {response.status_code}: "
                f"{sanitize_for_log(response.text, max_length=200)}",
                status_code=response.status_code,
            )

        try:
            release = Release.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ReleaseDecodeError(f"Failed to decode release for {repo}: {e}") from e

        logger.debug(
            f"Latest release for {repo}: {sanitize_for_log(release.tag_name)} "
            f"with {len(release.assets)} assets"
        )
        return release

    async def download_asset(self, asset: Asset, dest_path: Path) -> Path:
        """
        Download an asset to dest_path.

        The body is streamed to "<dest_path>.tmp" and renamed over dest_path
        only after the transfer completes, so a failed download never leaves a
        partial file under the final name.

        Raises:
            DownloadError: On any transport, status or filesystem failure
        """
        dest_path = Path(dest_path)
        tmp_path = dest_path.with_name(dest_path.name + ".tmp")
        name = sanitize_for_log(asset.name)

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DownloadError(f"Failed to create destination directory: {e}") from e

        try:
            async with self._client.stream(
                "GET", asset.browser_download_url, headers=self._headers("application/octet-stream")
            ) as response:
                if response.status_code != 200:
                    raise DownloadError(
                        f"Download of {name} failed with status {response.status_code}"
                    )
                async with aiofiles.open(tmp_path, "wb") as f:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        await f.write(chunk)
            os.replace(tmp_path, dest_path)
        except DownloadError:
            _remove_quietly(tmp_path)
            raise
        except (httpx.HTTPError, OSError) as e:
            _remove_quietly(tmp_path)
            raise DownloadError(f"Failed to download {name}: {e}") from e

        logger.info(f"Downloaded {name} to {dest_path}")
        return dest_path

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove partial download {path}: {e}")
