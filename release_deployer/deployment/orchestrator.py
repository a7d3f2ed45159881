"""
Deployment orchestrator and scheduler.

Runs the periodic deployment check: ask the release feed for the newest
release, compare it with the ledger's active version, and stage plus cut over
when it differs. One cycle runs at a time; a stop event is checked between
cycles and while waiting for the next tick, never in the middle of a cycle.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from release_deployer.config import DeployerConfig
from release_deployer.deployment.cutover import (
    CutoverProtocol,
    HealthChecker,
    RollbackProtocol,
    SlotSwitcher,
    resolve_live_slot,
)
from release_deployer.deployment.ledger import SlotLedgerStore
from release_deployer.deployment.staging import StagingPipeline
from release_deployer.exceptions import (
    DeployerError,
    InvalidRollbackTarget,
    LedgerCommitError,
    NoMatchingAsset,
    PersistenceError,
)
from release_deployer.logging_config import log_deployment_operation
from release_deployer.models import CycleOutcome, CycleResult, Release, Slot, SlotLedger
from release_deployer.release_source import GitHubReleaseClient
from release_deployer.utils.log_sanitizer import mask_secret, sanitize_for_log

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    """
    Owns the slot ledger and drives staging, cutover and rollback.

    The ledger is loaded once at construction and afterwards replaced only
    with the ledger returned by a committed cutover or rollback.
    """

    def __init__(
        self,
        config: DeployerConfig,
        dry_run: bool = False,
        release_source: Optional[Any] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the orchestrator and load the ledger.

        Args:
            config: Validated deployer configuration
            dry_run: Check and compare only; never stage, switch or write
            release_source: Release feed client (defaults to GitHubReleaseClient)
            http_transport: Optional httpx transport for the feed and health check

        Raises:
            PersistenceError: If the ledger exists but cannot be loaded
        """
        self.config = config
        self.dry_run = dry_run
        self._stop_event = asyncio.Event()
        self._pending_commit: Optional[Path] = None

        self.ledger_store = SlotLedgerStore(config.state_path)
        self.ledger: SlotLedger = self._load_ledger()

        self.release_source = release_source or GitHubReleaseClient(
            token=config.github_token,
            base_url=config.api_base_url,
            timeout=config.http_timeout,
            transport=http_transport,
        )
        self.staging = StagingPipeline(
            release_source=self.release_source,
            install_dir=config.install_path,
            asset_suffix=config.asset_suffix,
            verify_checksums=config.verify_checksums,
            install_command=config.run_command,
            command_timeout=config.command_timeout,
            cleanup_on_failure=config.cleanup_failed_stages,
        )

        health_checker = None
        if config.health_check_url:
            health_checker = HealthChecker(
                config.health_check_url,
                timeout=config.health_check_timeout,
                transport=http_transport,
            )
        switcher = SlotSwitcher(
            ledger_store=self.ledger_store,
            entry_point=config.symlink_path,
            install_dir=config.install_path,
            post_deploy_command=config.post_deploy_script,
            command_timeout=config.command_timeout,
        )
        self.cutover_protocol = CutoverProtocol(switcher, health_checker)
        self.rollback_protocol = RollbackProtocol(switcher, health_checker)

        logger.info(
            f"Deployer ready for {config.repo}: install_dir={config.install_dir} "
            f"entry_point={config.current_symlink} token={mask_secret(config.github_token)} "
            f"verify_checksums={config.verify_checksums} dry_run={dry_run}"
        )

    def _load_ledger(self) -> SlotLedger:
        live_slot = self.live_slot()

        if self.dry_run:
            ledger = self.ledger_store.peek_pending(live_slot) or self.ledger_store.load()
        else:
            ledger = self.ledger_store.recover_pending(live_slot) or self.ledger_store.load()

        if live_slot is not None and live_slot != ledger.active_slot:
            logger.error(
                f"Entry point {self.config.current_symlink} serves {live_slot} but the "
                f"ledger records {ledger.active_slot} as active"
            )
        return ledger

    def live_slot(self) -> Optional[Slot]:
        """Slot the live entry point currently resolves to."""
        return resolve_live_slot(self.config.symlink_path, self.config.install_path)

    @property
    def current_version(self) -> str:
        return self.ledger.active_version

    def status(self) -> Dict[str, Any]:
        """Ledger and entry point summary for display."""
        live = self.live_slot()
        return {
            "repo": self.config.repo,
            "active_slot": self.ledger.active_slot.value,
            "active_version": self.ledger.active_version,
            "blue_version": self.ledger.blue_version,
            "green_version": self.ledger.green_version,
            "entry_point": str(self.config.symlink_path),
            "entry_point_slot": live.value if live else None,
            "consistent": live is None or live == self.ledger.active_slot,
        }

    def _retry_pending_commit(self) -> None:
        if self._pending_commit is None:
            return
        try:
            self.ledger_store.commit(self._pending_commit)
        except PersistenceError as e:
            logger.critical(f"Ledger still inconsistent, commit retry failed: {e}")
            return
        logger.warning(f"Ledger commit retry succeeded for {self._pending_commit}")
        self._pending_commit = None

    def _adopt_uncommitted(self, error: LedgerCommitError) -> None:
        # The entry point already serves the new slot, so the in-memory ledger
        # follows it; otherwise the next cycle would stage into the live slot.
        if error.ledger is not None:
            self.ledger = error.ledger
        self._pending_commit = error.pending_path

    async def check_and_deploy(self) -> CycleResult:
        """
        Run one deployment check cycle.

        Returns:
            CycleResult describing the outcome; errors are logged, not raised
        """
        self._retry_pending_commit()
        logger.info(f"Checking for new releases for repo: {self.config.repo}")

        try:
            release = await self.release_source.latest_release(self.config.repo)
        except DeployerError as e:
            logger.error(f"Failed to get latest release for {self.config.repo}: {e}")
            return CycleResult(
                outcome=CycleOutcome.FAILED, error=str(e), error_type=type(e).__name__
            )

        tag = sanitize_for_log(release.tag_name)
        current = self.current_version
        if release.tag_name == current:
            logger.info(f"Already on latest version: {tag} ({self.ledger.active_slot} slot)")
            return CycleResult(
                outcome=CycleOutcome.UP_TO_DATE,
                version=release.tag_name,
                slot=self.ledger.active_slot,
            )

        target = self.ledger.inactive_slot
        logger.info(f"New version available: {tag} (current: {current or 'none'})")

        if self.dry_run:
            self._announce_dry_run(release, target)
            return CycleResult(outcome=CycleOutcome.DRY_RUN, version=release.tag_name, slot=target)

        try:
            await self.deploy(release)
        except DeployerError as e:
            logger.error(f"Deployment of {tag} to {target} slot failed: {type(e).__name__}: {e}")
            if not isinstance(e, LedgerCommitError):
                log_deployment_operation(
                    "deploy",
                    success=False,
                    details={"version": release.tag_name, "slot": target.value},
                    error=f"{type(e).__name__}: {e}",
                )
            return CycleResult(
                outcome=CycleOutcome.FAILED,
                version=release.tag_name,
                slot=target,
                error=str(e),
                error_type=type(e).__name__,
            )

        return CycleResult(outcome=CycleOutcome.DEPLOYED, version=release.tag_name, slot=target)

    def _announce_dry_run(self, release: Release, target: Slot) -> None:
        tag = sanitize_for_log(release.tag_name)
        try:
            asset = self.staging.select_asset(release)
        except NoMatchingAsset as e:
            logger.warning(f"DRY RUN: Would fail to deploy {tag}: {e}")
            return
        logger.info(
            f"DRY RUN: Would deploy version {tag} to {target} slot "
            f"({self.config.slot_dir(target)}) using {asset.name}"
        )

    async def deploy(self, release: Release) -> SlotLedger:
        """
        Stage a release into the inactive slot and cut over to it.

        Raises:
            DeployerError: Any staging, cutover or persistence failure
        """
        target = self.ledger.inactive_slot
        logger.info(
            f"Starting deployment of {sanitize_for_log(release.tag_name)} to {target} slot"
        )

        staged = await self.staging.stage(release, target)
        try:
            self.ledger = await self.cutover_protocol.cutover(staged, self.ledger)
        except LedgerCommitError as e:
            self._adopt_uncommitted(e)
            raise

        logger.info(
            f"Deployment of {sanitize_for_log(release.tag_name)} to {target} slot "
            "completed successfully"
        )
        return self.ledger

    async def rollback(self) -> Optional[SlotLedger]:
        """
        Roll back to the previously active slot.

        Returns:
            The committed ledger, or None in dry-run mode

        Raises:
            RollbackError: If the previous slot cannot be made live
            PersistenceError: If the ledger cannot be written
        """
        previous = self.ledger.inactive_slot
        logger.info(
            f"Starting rollback from {self.ledger.active_slot} slot "
            f"(version {self.ledger.active_version or 'none'}) to {previous} slot"
        )

        if self.dry_run:
            try:
                self.rollback_protocol.check_target(self.ledger)
            except InvalidRollbackTarget as e:
                logger.warning(f"DRY RUN: Rollback would fail: {e}")
                return None
            logger.info(
                f"DRY RUN: Would rollback to {previous} slot "
                f"({self.ledger.version_of(previous)})"
            )
            return None

        self._retry_pending_commit()
        try:
            self.ledger = await self.rollback_protocol.rollback(self.ledger)
        except LedgerCommitError as e:
            self._adopt_uncommitted(e)
            raise
        except DeployerError as e:
            log_deployment_operation(
                "rollback",
                success=False,
                details={"slot": previous.value},
                error=f"{type(e).__name__}: {e}",
            )
            raise
        return self.ledger

    async def run_once(self) -> CycleResult:
        """Run a single cycle, logging unexpected errors instead of raising."""
        try:
            return await self.check_and_deploy()
        except Exception as e:
            logger.error(f"Deployment check failed: {e}", exc_info=True)
            return CycleResult(
                outcome=CycleOutcome.FAILED, error=str(e), error_type=type(e).__name__
            )

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run deployment cycles until the stop event is set.

        The first cycle starts immediately. After each cycle the loop waits
        check_interval_seconds or until the stop event is set, whichever
        comes first. A set stop event wins over a due tick. A caller's event
        replaces the orchestrator's own, so stop() sets whichever is in use.
        """
        if stop_event is not None:
            self._stop_event = stop_event
        stop = self._stop_event
        interval = self.config.check_interval_seconds
        logger.info(f"Starting deployment loop for {self.config.repo} (interval {interval}s)")

        while not stop.is_set():
            await self.run_once()

            if stop.is_set():
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Shutting down deployer")

    def stop(self) -> None:
        """Request the loop to stop after the current cycle."""
        self._stop_event.set()

    async def close(self) -> None:
        """Release network resources."""
        close = getattr(self.release_source, "close", None)
        if close is not None:
            await close()
