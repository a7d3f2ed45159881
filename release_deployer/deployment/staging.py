"""
Staging pipeline.

Materializes one release into the inactive slot directory:
download -> checksum verification -> extraction -> install hook.
Staging only ever writes inside that slot's directory tree, so a failure at
any step leaves the live slot and the ledger untouched.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Optional

from release_deployer.archive import extract_archive, strip_archive_extension
from release_deployer.checksums import parse_checksums, verify_file_sha256
from release_deployer.exceptions import (
    ChecksumPolicyViolation,
    InstallHookFailure,
    NoMatchingAsset,
    StageError,
)
from release_deployer.models import (
    Asset,
    Release,
    Slot,
    StagedRelease,
    StageStatus,
    slot_directory,
)
from release_deployer.process_runner import run_command
from release_deployer.utils.log_sanitizer import sanitize_for_log

logger = logging.getLogger(__name__)


def find_checksums_asset(release: Release, asset: Asset) -> Optional[Asset]:
    """
    Find the checksum manifest that belongs to a primary asset.

    The manifest name must start with the asset's base name (archive extension
    stripped) and contain "checksums", e.g. app_checksums.txt for app.tar.gz.
    """
    base = strip_archive_extension(asset.name)
    for candidate in release.assets:
        if candidate.name == asset.name:
            continue
        if candidate.name.startswith(base) and "checksums" in candidate.name:
            return candidate
    return None


class StagingPipeline:
    """Stages releases into slot directories under the install directory."""

    def __init__(
        self,
        release_source: Any,
        install_dir: Path,
        asset_suffix: str = "",
        verify_checksums: bool = False,
        install_command: Optional[str] = None,
        command_timeout: Optional[float] = None,
        cleanup_on_failure: bool = False,
    ):
        """
        Initialize the staging pipeline.

        Args:
            release_source: Client providing download_asset(asset, dest_path)
            install_dir: Directory containing the blue/green slot directories
            asset_suffix: Suffix selecting the primary release asset
            verify_checksums: Require a checksum manifest and verify against it
            install_command: Shell command run inside the slot after extraction
            command_timeout: Timeout for the install command in seconds
            cleanup_on_failure: Remove the slot directory when staging fails
        """
        self.release_source = release_source
        self.install_dir = Path(install_dir)
        self.asset_suffix = asset_suffix
        self.verify_checksums = verify_checksums
        self.install_command = install_command
        self.command_timeout = command_timeout
        self.cleanup_on_failure = cleanup_on_failure

    def select_asset(self, release: Release) -> Asset:
        """
        Pick the asset matching the configured suffix.

        Raises:
            NoMatchingAsset: If no asset name ends with the suffix
        """
        asset = release.find_asset_with_suffix(self.asset_suffix)
        if asset is None:
            raise NoMatchingAsset(
                f"No asset with suffix '{self.asset_suffix}' in release "
                f"{sanitize_for_log(release.tag_name)}"
            )
        return asset

    async def stage(self, release: Release, slot: Slot) -> StagedRelease:
        """
        Stage a release into a slot's directory.

        Args:
            release: Release descriptor from the feed
            slot: Inactive slot to stage into

        Returns:
            StagedRelease with status READY

        Raises:
            StageError: NoMatchingAsset, DownloadError, ChecksumPolicyViolation,
                IntegrityFailure, ExtractError or InstallHookFailure
        """
        # Selection happens before anything touches the filesystem
        asset = self.select_asset(release)
        slot_dir = slot_directory(self.install_dir, slot)
        staged = StagedRelease(release=release, asset=asset, slot=slot, slot_dir=slot_dir)
        tag = sanitize_for_log(release.tag_name)

        logger.info(f"Staging {tag} into {slot} slot ({slot_dir}) from {asset.name}")
        try:
            await self._run_steps(staged)
        except StageError as e:
            staged.status = StageStatus.FAILED
            staged.error = str(e)
            logger.error(f"Staging {tag} into {slot} slot failed: {type(e).__name__}: {e}")
            self._cleanup(slot_dir)
            raise
        except OSError as e:
            staged.status = StageStatus.FAILED
            staged.error = str(e)
            logger.error(f"Staging {tag} into {slot} slot failed: {e}")
            self._cleanup(slot_dir)
            raise StageError(f"Filesystem error while staging {tag}: {e}") from e

        staged.status = StageStatus.READY
        logger.info(f"Staged {tag} into {slot} slot")
        return staged

    async def _run_steps(self, staged: StagedRelease) -> None:
        slot_dir = staged.slot_dir
        asset = staged.asset

        # A directory left by a failed attempt is reused
        slot_dir.mkdir(parents=True, exist_ok=True)

        staged.status = StageStatus.DOWNLOADING
        staged.asset_path = await self.release_source.download_asset(
            asset, slot_dir / asset.name
        )

        if self.verify_checksums:
            staged.status = StageStatus.VERIFYING
            await self._verify(staged)

        staged.status = StageStatus.EXTRACTING
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, extract_archive, staged.asset_path, slot_dir)

        if self.install_command:
            staged.status = StageStatus.INSTALLING
            logger.info(f"Running install command: {self.install_command}")
            result = await run_command(slot_dir, self.install_command, self.command_timeout)
            if not result.success:
                raise InstallHookFailure(
                    f"Install command {result.describe()}", returncode=result.returncode
                )
            logger.info("Install command completed successfully")

    async def _verify(self, staged: StagedRelease) -> None:
        asset = staged.asset
        logger.info(f"Checksum verification enabled, looking for manifest for {asset.name}")

        manifest_asset = find_checksums_asset(staged.release, asset)
        if manifest_asset is None:
            raise ChecksumPolicyViolation(
                f"Checksum verification requested but no checksums asset found for {asset.name}"
            )

        manifest_path = await self.release_source.download_asset(
            manifest_asset, staged.slot_dir / manifest_asset.name
        )
        checksums = parse_checksums(manifest_path)

        base = Path(asset.name).name
        expected = checksums.get(base)
        if expected is None:
            raise ChecksumPolicyViolation(
                f"No checksum entry for {base} in {manifest_asset.name}"
            )

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, verify_file_sha256, staged.asset_path, expected)
        logger.info(f"Checksum verification passed for {base}")

    def _cleanup(self, slot_dir: Path) -> None:
        if not self.cleanup_on_failure:
            logger.info(f"Leaving {slot_dir} in place for inspection")
            return
        shutil.rmtree(slot_dir, ignore_errors=True)
        logger.info(f"Removed failed staging directory {slot_dir}")
