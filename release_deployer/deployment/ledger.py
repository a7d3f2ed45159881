"""
Slot ledger persistence.

Handles loading and saving the slot ledger to disk. Every write goes through a
temp file that is flushed, fsynced and renamed over the target, so a reader
never sees a half-written ledger.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from release_deployer.exceptions import PersistenceError
from release_deployer.models import Slot, SlotLedger

logger = logging.getLogger(__name__)


class SlotLedgerStore:
    """
    Reads and writes the slot ledger file.

    Besides plain load/save, the store supports a two-phase write used by the
    cutover: the next ledger is first written to a pending file next to the
    ledger, and renamed into place once the entry point has been switched.
    """

    def __init__(self, path: Path) -> None:
        """
        Initialize the ledger store.

        Args:
            path: Location of the ledger file (e.g., /opt/app/state.yaml)
        """
        self.path = Path(path)
        self.pending_path = self.path.with_name(self.path.name + ".pending")

    def load(self) -> SlotLedger:
        """
        Load the ledger from disk.

        Returns:
            The persisted ledger, or the default ledger if no file exists yet

        Raises:
            PersistenceError: If the file exists but cannot be read or parsed
        """
        if not self.path.exists():
            logger.info(f"No ledger found at {self.path}, starting with blue slot active")
            return SlotLedger()

        ledger = self._read(self.path)
        logger.info(
            f"Loaded ledger from {self.path}: active={ledger.active_slot} "
            f"blue={ledger.blue_version or '-'} green={ledger.green_version or '-'}"
        )
        return ledger

    def save(self, ledger: SlotLedger) -> None:
        """
        Durably write the ledger, creating parent directories as needed.

        Raises:
            PersistenceError: On any I/O or serialization failure
        """
        self._write(self.path, ledger)
        logger.debug(f"Saved ledger to {self.path}")

    def prepare(self, ledger: SlotLedger) -> Path:
        """
        Write the next ledger to the pending file without touching the ledger.

        Returns:
            Path of the pending file, to be passed to commit() or discard()
        """
        self._write(self.pending_path, ledger)
        logger.debug(f"Prepared pending ledger at {self.pending_path}")
        return self.pending_path

    def commit(self, pending: Path) -> None:
        """
        Rename a prepared pending ledger over the ledger file.

        Raises:
            PersistenceError: If the rename fails; the pending file is left in place
        """
        try:
            os.replace(pending, self.path)
            _fsync_directory(self.path.parent)
        except OSError as e:
            raise PersistenceError(f"Failed to commit ledger {pending} -> {self.path}: {e}") from e
        logger.debug(f"Committed ledger {self.path}")

    def discard(self, pending: Path) -> None:
        """Remove a prepared pending ledger that will not be committed."""
        try:
            pending.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove pending ledger {pending}: {e}")

    def load_pending(self) -> Optional[SlotLedger]:
        """Return the pending ledger left by an interrupted cutover, if any."""
        if not self.pending_path.exists():
            return None
        return self._read(self.pending_path)

    def recover_pending(self, live_slot: Optional[Slot]) -> Optional[SlotLedger]:
        """
        Resolve a pending ledger left behind by a cutover that did not commit.

        If the live entry point already resolves to the pending ledger's active
        slot, the switch happened and the pending ledger is committed. Otherwise
        the switch never happened and the pending ledger is dropped.

        Args:
            live_slot: Slot the entry point currently resolves to, or None

        Returns:
            The committed ledger if recovery promoted it, otherwise None
        """
        try:
            pending = self.load_pending()
        except PersistenceError as e:
            logger.warning(f"Discarding unreadable pending ledger {self.pending_path}: {e}")
            self.discard(self.pending_path)
            return None

        if pending is None:
            return None

        if _switch_happened(pending, live_slot):
            logger.warning(
                f"Recovering pending ledger: entry point already serves {live_slot} "
                f"({pending.active_version})"
            )
            self.commit(self.pending_path)
            return pending

        logger.warning(
            f"Discarding pending ledger for {pending.active_slot}: entry point serves "
            f"{live_slot or 'nothing'}"
        )
        self.discard(self.pending_path)
        return None

    def peek_pending(self, live_slot: Optional[Slot]) -> Optional[SlotLedger]:
        """
        Read-only form of recover_pending() for dry-run and status views.

        Returns the pending ledger only when recover_pending() would commit
        it. Nothing on disk is renamed or removed.
        """
        try:
            pending = self.load_pending()
        except PersistenceError as e:
            logger.warning(f"Ignoring unreadable pending ledger {self.pending_path}: {e}")
            return None

        if pending is None:
            return None
        if _switch_happened(pending, live_slot):
            logger.info(f"Pending ledger matches live {live_slot} slot, showing it")
            return pending

        logger.info(
            f"Ignoring pending ledger for {pending.active_slot}: entry point serves "
            f"{live_slot or 'nothing'}"
        )
        return None

    def _read(self, path: Path) -> SlotLedger:
        try:
            with open(path, "r") as f:
                document = yaml.safe_load(f)
        except OSError as e:
            raise PersistenceError(f"Failed to read ledger {path}: {e}") from e
        except yaml.YAMLError as e:
            raise PersistenceError(f"Failed to parse ledger {path}: {e}") from e

        if document is None:
            logger.warning(f"Ledger {path} is empty, using default ledger")
            return SlotLedger()
        if not isinstance(document, dict):
            raise PersistenceError(f"Ledger {path} is not a key/value document")

        try:
            return SlotLedger.model_validate(document)
        except ValidationError as e:
            raise PersistenceError(f"Invalid ledger {path}: {e}") from e

    def _write(self, target: Path, ledger: SlotLedger) -> None:
        temp_file = target.with_name(f".{target.name}.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w") as f:
                yaml.safe_dump(ledger.to_document(), f, default_flow_style=False, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            os.replace(temp_file, target)
            _fsync_directory(target.parent)
        except (OSError, yaml.YAMLError) as e:
            try:
                temp_file.unlink()
            except OSError:
                pass
            raise PersistenceError(f"Failed to write ledger {target}: {e}") from e


def _switch_happened(pending: SlotLedger, live_slot: Optional[Slot]) -> bool:
    return live_slot is not None and pending.active_slot == live_slot


def _fsync_directory(directory: Path) -> None:
    """Flush a directory entry so a rename inside it survives a crash."""
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)
