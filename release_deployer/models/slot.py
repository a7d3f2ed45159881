"""
Slot and ledger models.

A deployment target has exactly two environment slots. The ledger records which
one is live and which release tag each slot last received.
"""

from enum import Enum
from pathlib import Path
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Slot(str, Enum):
    """One of the two fixed environment slots."""

    BLUE = "blue"
    GREEN = "green"

    @property
    def other(self) -> "Slot":
        """The complementary slot."""
        return Slot.GREEN if self is Slot.BLUE else Slot.BLUE

    def __str__(self) -> str:
        return self.value


class SlotLedger(BaseModel):
    """
    Durable record of the active slot and each slot's installed version.

    Instances are frozen; cutover and rollback build a new ledger rather than
    mutating the one the orchestrator holds.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    active_slot: Slot = Field(
        default=Slot.BLUE, description="Slot currently reachable via the entry point"
    )
    blue_version: str = Field(
        default="", description="Release tag last installed into the blue slot"
    )
    green_version: str = Field(
        default="", description="Release tag last installed into the green slot"
    )

    @field_validator("blue_version", "green_version", mode="before")
    @classmethod
    def _empty_version(cls, value: object) -> object:
        # YAML renders an empty value as null
        return "" if value is None else value

    @property
    def inactive_slot(self) -> Slot:
        return self.active_slot.other

    @property
    def active_version(self) -> str:
        return self.version_of(self.active_slot)

    def version_of(self, slot: Slot) -> str:
        """Return the release tag recorded for a slot ("" if never staged)."""
        return self.blue_version if slot is Slot.BLUE else self.green_version

    def with_version(self, slot: Slot, version: str) -> "SlotLedger":
        """Return a copy with the given slot's version replaced."""
        field = "blue_version" if slot is Slot.BLUE else "green_version"
        return self.model_copy(update={field: version})

    def switched_to(self, slot: Slot) -> "SlotLedger":
        """Return a copy with the given slot marked active."""
        return self.model_copy(update={"active_slot": slot})

    def to_document(self) -> dict:
        """Plain key/value form written to the ledger file."""
        return {
            "active_slot": self.active_slot.value,
            "blue_version": self.blue_version,
            "green_version": self.green_version,
        }


def inactive_slot(ledger: SlotLedger) -> Slot:
    """Complement of the ledger's active slot."""
    return ledger.active_slot.other


def slot_directory(install_dir: Union[str, Path], slot: Slot) -> Path:
    """Directory holding a slot's files (e.g., <install_dir>/green)."""
    return Path(install_dir) / Slot(slot).value
