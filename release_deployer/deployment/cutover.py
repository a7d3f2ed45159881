"""
Cutover and rollback protocols.

Both protocols move the live entry point between the two slot directories and
commit the slot ledger as one logical transaction:

1. the next ledger is written to a pending file,
2. a freshly named symlink to the target slot is renamed over the entry point,
3. the pending ledger is renamed over the ledger file.

The rename in step 2 is the commit point for readers of the entry point. If it
fails, the pending ledger is discarded and nothing observable changed. If step 3
fails, the entry point is already switched; that window is logged as CRITICAL
and closed on the next start by SlotLedgerStore.recover_pending().
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

import httpx

from release_deployer.deployment.ledger import SlotLedgerStore
from release_deployer.exceptions import (
    EntryPointSwitchError,
    HealthCheckTimeout,
    InvalidRollbackTarget,
    LedgerCommitError,
    PersistenceError,
    RollbackError,
)
from release_deployer.logging_config import log_deployment_operation
from release_deployer.models import Slot, SlotLedger, StagedRelease, slot_directory
from release_deployer.process_runner import run_command

logger = logging.getLogger(__name__)

HEALTH_POLL_INTERVAL = 2.0
HEALTH_REQUEST_TIMEOUT = 5.0


def switch_entry_point(symlink_path: Path, target_dir: Path) -> None:
    """
    Atomically point symlink_path at target_dir.

    A uniquely named temporary link is created next to the entry point and
    renamed over it, so a reader resolving the entry point sees either the old
    target or the new one, never a missing link.

    Raises:
        EntryPointSwitchError: If the link cannot be created or renamed; the
            existing entry point is untouched in both cases
    """
    symlink_path = Path(symlink_path)
    tmp_link = symlink_path.with_name(f".{symlink_path.name}.{uuid.uuid4().hex[:8]}.tmp")

    try:
        symlink_path.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(os.path.abspath(target_dir), tmp_link)
    except OSError as e:
        raise EntryPointSwitchError(f"Failed to create link to {target_dir}: {e}") from e

    try:
        os.replace(tmp_link, symlink_path)
    except OSError as e:
        try:
            os.unlink(tmp_link)
        except OSError:
            logger.warning(f"Failed to remove temporary link {tmp_link}")
        raise EntryPointSwitchError(
            f"Failed to move {symlink_path} to {target_dir}: {e}"
        ) from e


def resolve_live_slot(symlink_path: Path, install_dir: Path) -> Optional[Slot]:
    """Return the slot the entry point resolves to, or None."""
    if not os.path.islink(symlink_path):
        return None
    target = os.path.realpath(symlink_path)
    for slot in Slot:
        if target == os.path.realpath(slot_directory(install_dir, slot)):
            return slot
    return None


class HealthChecker:
    """Polls an HTTP health endpoint until it reports success or a deadline passes."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        interval: float = HEALTH_POLL_INTERVAL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.interval = interval
        self._transport = transport

    async def wait_healthy(self) -> None:
        """
        Poll until the endpoint answers with a 2xx or 3xx status.

        Raises:
            HealthCheckTimeout: If no successful answer arrives within timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        attempts = 0

        async with httpx.AsyncClient(
            timeout=HEALTH_REQUEST_TIMEOUT, transport=self._transport
        ) as client:
            while True:
                attempts += 1
                try:
                    response = await client.get(self.url)
                    if 200 <= response.status_code < 400:
                        logger.info(f"Health check passed for {self.url} after {attempts} attempts")
                        return
                    logger.debug(f"Health check {self.url} returned {response.status_code}")
                except httpx.HTTPError as e:
                    logger.debug(f"Health check {self.url} failed: {e}")

                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(self.interval, remaining))

        raise HealthCheckTimeout(
            f"Health check failed for {self.url} within {self.timeout}s ({attempts} attempts)"
        )


class SlotSwitcher:
    """Moves the entry point between slots and commits the ledger alongside."""

    def __init__(
        self,
        ledger_store: SlotLedgerStore,
        entry_point: Path,
        install_dir: Path,
        post_deploy_command: Optional[str] = None,
        command_timeout: Optional[float] = None,
    ):
        self.ledger_store = ledger_store
        self.entry_point = Path(entry_point)
        self.install_dir = Path(install_dir)
        self.post_deploy_command = post_deploy_command
        self.command_timeout = command_timeout

    def switch(self, next_ledger: SlotLedger, operation: str) -> SlotLedger:
        """
        Point the entry point at next_ledger.active_slot and commit next_ledger.

        Raises:
            PersistenceError: If the pending ledger cannot be written (nothing switched)
            EntryPointSwitchError: If the link swap fails (nothing switched)
            LedgerCommitError: If the ledger commit fails after the switch
        """
        target_slot = next_ledger.active_slot
        target_dir = slot_directory(self.install_dir, target_slot)

        pending = self.ledger_store.prepare(next_ledger)

        logger.info(f"Switching {self.entry_point} to {target_dir}")
        try:
            switch_entry_point(self.entry_point, target_dir)
        except EntryPointSwitchError:
            self.ledger_store.discard(pending)
            raise

        try:
            self.ledger_store.commit(pending)
        except PersistenceError as e:
            logger.critical(
                f"LEDGER INCONSISTENT: {self.entry_point} now serves {target_slot} "
                f"({next_ledger.active_version}) but the ledger commit failed: {e}. "
                f"Pending ledger kept at {pending} for recovery on next start."
            )
            log_deployment_operation(
                operation,
                success=False,
                details={"version": next_ledger.active_version, "slot": target_slot.value},
                error=f"ledger commit failed after switch: {e}",
            )
            raise LedgerCommitError(str(e), pending_path=pending, ledger=next_ledger) from e

        return next_ledger

    async def run_post_deploy(self, operation: str) -> None:
        """Run the post-deploy command; failures are logged, never raised."""
        if not self.post_deploy_command:
            return
        logger.info(f"Running post-deploy script after {operation}: {self.post_deploy_command}")
        try:
            result = await run_command("/", self.post_deploy_command, self.command_timeout)
        except OSError as e:
            logger.warning(f"Post-deploy script could not be started after {operation}: {e}")
            return
        if result.success:
            logger.info("Post-deploy script completed successfully")
        else:
            logger.warning(f"Post-deploy script failed after {operation}: {result.describe()}")


class CutoverProtocol:
    """Makes a staged release live."""

    def __init__(self, switcher: SlotSwitcher, health_checker: Optional[HealthChecker] = None):
        self.switcher = switcher
        self.health_checker = health_checker

    async def cutover(self, staged: StagedRelease, ledger: SlotLedger) -> SlotLedger:
        """
        Health-gate the staged release, switch the entry point, commit the ledger.

        Args:
            staged: READY staged release in the ledger's inactive slot
            ledger: Current ledger (not modified)

        Returns:
            The committed ledger with the staged slot active

        Raises:
            HealthCheckTimeout: Health gate failed; nothing was changed
            EntryPointSwitchError: Link swap failed; nothing was changed
            PersistenceError: Ledger could not be written (LedgerCommitError if
                the entry point had already switched)
        """
        if not staged.is_ready:
            raise ValueError(f"Cannot cut over a release in status {staged.status.value}")
        if staged.slot != ledger.inactive_slot:
            raise ValueError(f"Staged slot {staged.slot} is the active slot")

        version = staged.version
        if self.health_checker:
            logger.info(f"Performing health check on {self.health_checker.url}")
            await self.health_checker.wait_healthy()

        next_ledger = ledger.with_version(staged.slot, version).switched_to(staged.slot)
        committed = self.switcher.switch(next_ledger, "cutover")

        log_deployment_operation(
            "cutover",
            success=True,
            details={
                "version": version,
                "slot": staged.slot.value,
                "previous_slot": ledger.active_slot.value,
                "previous_version": ledger.active_version,
            },
        )
        await self.switcher.run_post_deploy("cutover")
        return committed


class RollbackProtocol:
    """Switches the entry point back to the previously active slot."""

    def __init__(self, switcher: SlotSwitcher, health_checker: Optional[HealthChecker] = None):
        self.switcher = switcher
        self.health_checker = health_checker

    def check_target(self, ledger: SlotLedger) -> Slot:
        """
        Validate that the inactive slot holds an installed release.

        Raises:
            InvalidRollbackTarget: If its directory is missing or no version is recorded
        """
        target = ledger.inactive_slot
        target_dir = slot_directory(self.switcher.install_dir, target)
        if not target_dir.is_dir():
            raise InvalidRollbackTarget(
                f"Cannot roll back to {target} slot: {target_dir} does not exist"
            )
        if not ledger.version_of(target):
            raise InvalidRollbackTarget(
                f"Cannot roll back to {target} slot: no release recorded for it"
            )
        return target

    async def rollback(self, ledger: SlotLedger) -> SlotLedger:
        """
        Make the inactive slot live again without re-staging anything.

        Returns:
            The committed ledger with the slots flipped

        Raises:
            InvalidRollbackTarget: Target slot never staged; nothing was changed
            RollbackError: Link swap failed; nothing was changed
            PersistenceError: Ledger could not be written (LedgerCommitError if
                the entry point had already switched)
        """
        target = self.check_target(ledger)
        logger.info(
            f"Rolling back from {ledger.active_slot} ({ledger.active_version or '-'}) "
            f"to {target} ({ledger.version_of(target)})"
        )

        try:
            committed = self.switcher.switch(ledger.switched_to(target), "rollback")
        except EntryPointSwitchError as e:
            raise RollbackError(f"Failed to switch entry point during rollback: {e}") from e

        log_deployment_operation(
            "rollback",
            success=True,
            details={
                "version": committed.active_version,
                "slot": target.value,
                "previous_slot": ledger.active_slot.value,
                "previous_version": ledger.active_version,
            },
        )
        await self.switcher.run_post_deploy("rollback")

        if self.health_checker:
            logger.info("Validating rollback with health check")
            try:
                await self.health_checker.wait_healthy()
            except HealthCheckTimeout as e:
                logger.error(f"Rollback to {target} is live but failed validation: {e}")

        logger.info(f"Rollback completed to {target} slot")
        return committed
