"""
Pydantic models for release-deployer.

These models provide type-safe structures for the slot ledger, the release
feed payload, and staging/cycle bookkeeping.
"""

from release_deployer.models.deployment import (
    CycleOutcome,
    CycleResult,
    StagedRelease,
    StageStatus,
)
from release_deployer.models.release import Asset, Release
from release_deployer.models.slot import Slot, SlotLedger, inactive_slot, slot_directory

__all__ = [
    # Slots
    "Slot",
    "SlotLedger",
    "inactive_slot",
    "slot_directory",
    # Release feed
    "Asset",
    "Release",
    # Deployment
    "CycleOutcome",
    "CycleResult",
    "StagedRelease",
    "StageStatus",
]
