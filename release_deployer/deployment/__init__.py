"""
Blue/green deployment module.

Provides the pieces that move a release from the feed to the live entry point:
- Slot ledger persistence with two-phase commit
- Staging into the inactive slot
- Health-gated cutover and rollback
- The periodic orchestrator

Usage:
    from release_deployer.deployment import DeploymentOrchestrator

    orchestrator = DeploymentOrchestrator(config)
    await orchestrator.run(stop_event)
"""

from release_deployer.deployment.cutover import (
    CutoverProtocol,
    HealthChecker,
    RollbackProtocol,
    SlotSwitcher,
    resolve_live_slot,
    switch_entry_point,
)
from release_deployer.deployment.ledger import SlotLedgerStore
from release_deployer.deployment.orchestrator import DeploymentOrchestrator
from release_deployer.deployment.staging import StagingPipeline, find_checksums_asset

__all__ = [
    # Main orchestrator
    "DeploymentOrchestrator",
    # Ledger
    "SlotLedgerStore",
    # Staging
    "StagingPipeline",
    "find_checksums_asset",
    # Cutover / rollback
    "CutoverProtocol",
    "HealthChecker",
    "RollbackProtocol",
    "SlotSwitcher",
    "resolve_live_slot",
    "switch_entry_point",
]
