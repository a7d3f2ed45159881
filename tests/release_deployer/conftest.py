"""
Shared fixtures for release-deployer tests.
"""

import hashlib
import io
import tarfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from release_deployer.config import DeployerConfig
from release_deployer.deployment.cutover import switch_entry_point
from release_deployer.deployment.ledger import SlotLedgerStore
from release_deployer.models import Asset, Release, Slot, SlotLedger


def build_tar_gz(files: Dict[str, bytes]) -> bytes:
    """Build an in-memory tar.gz archive from a name -> content mapping."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o755 if name.endswith(".sh") else 0o644
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeReleaseSource:
    """In-memory release feed serving one release and its asset payloads."""

    def __init__(self, release: Optional[Release] = None, payloads: Optional[dict] = None):
        self.release = release
        self.payloads: Dict[str, bytes] = payloads or {}
        self.error: Optional[Exception] = None
        self.latest_calls = 0
        self.downloads: List[str] = []
        self.closed = False

    async def latest_release(self, repo: str) -> Release:
        self.latest_calls += 1
        if self.error is not None:
            raise self.error
        return self.release

    async def download_asset(self, asset: Asset, dest_path: Path) -> Path:
        self.downloads.append(asset.name)
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest_path.write_bytes(self.payloads[asset.name])
        return dest_path

    async def close(self) -> None:
        self.closed = True


def make_release(tag: str, payloads: Dict[str, bytes]) -> Release:
    return Release(
        tag_name=tag,
        assets=[
            Asset(name=name, browser_download_url=f"https://example.invalid/{tag}/{name}")
            for name in payloads
        ],
    )


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@pytest.fixture
def tar_gz():
    """Factory building tar.gz archive bytes."""
    return build_tar_gz


@pytest.fixture
def release_factory():
    """Factory building a Release whose assets are the given payload names."""
    return make_release


@pytest.fixture
def fake_source_cls():
    return FakeReleaseSource


@pytest.fixture
def digest():
    return sha256_hex


@pytest.fixture
def deployer_config(tmp_path) -> DeployerConfig:
    """Minimal valid configuration rooted in tmp_path."""
    install_dir = tmp_path / "app"
    install_dir.mkdir()
    config = DeployerConfig(
        repo="owner/project",
        asset_suffix=".tar.gz",
        install_dir=str(install_dir),
        current_symlink=str(tmp_path / "current"),
        check_interval_seconds=1,
    )
    config.validate_required()
    return config


@pytest.fixture
def blue_live(deployer_config) -> SlotLedger:
    """
    Host with v1.0.0 installed and live in the blue slot, green never staged.
    """
    blue_dir = deployer_config.slot_dir(Slot.BLUE)
    blue_dir.mkdir(parents=True)
    (blue_dir / "VERSION").write_text("v1.0.0\n")
    switch_entry_point(deployer_config.symlink_path, blue_dir)

    ledger = SlotLedger(active_slot=Slot.BLUE, blue_version="v1.0.0", green_version="")
    SlotLedgerStore(deployer_config.state_path).save(ledger)
    return ledger
