"""
Deployment-related data models.

These models describe one staging attempt and the outcome of a deployment
check cycle. Neither is persisted; the slot ledger is the only durable state.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from release_deployer.models.release import Asset, Release
from release_deployer.models.slot import Slot


class StageStatus(str, Enum):
    """Progress of a release through the staging pipeline."""

    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    EXTRACTING = "extracting"
    INSTALLING = "installing"
    READY = "ready"
    FAILED = "failed"


class StagedRelease(BaseModel):
    """
    A release being materialized into the inactive slot.

    Created at the start of a staging attempt. Only a READY staged release may
    be handed to the cutover protocol.
    """

    release: Release = Field(..., description="Release descriptor being staged")
    asset: Asset = Field(..., description="Primary asset selected by suffix")
    slot: Slot = Field(..., description="Inactive slot receiving the release")
    slot_dir: Path = Field(..., description="Directory of the receiving slot")
    status: StageStatus = Field(default=StageStatus.DOWNLOADING, description="Staging progress")
    asset_path: Optional[Path] = Field(None, description="Local path of the downloaded asset")
    error: Optional[str] = Field(None, description="Failure message when status is FAILED")

    @property
    def version(self) -> str:
        return self.release.tag_name

    @property
    def is_ready(self) -> bool:
        return self.status is StageStatus.READY


class CycleOutcome(str, Enum):
    """How a deployment check cycle ended."""

    UP_TO_DATE = "up_to_date"
    DEPLOYED = "deployed"
    DRY_RUN = "dry_run"
    FAILED = "failed"


class CycleResult(BaseModel):
    """Summary of one deployment check cycle."""

    outcome: CycleOutcome = Field(..., description="How the cycle ended")
    version: Optional[str] = Field(None, description="Release tag reported by the feed")
    slot: Optional[Slot] = Field(None, description="Slot that was (or would be) targeted")
    error: Optional[str] = Field(None, description="Error message for failed cycles")
    error_type: Optional[str] = Field(None, description="Exception class name for failed cycles")
