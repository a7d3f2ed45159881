"""
Tests for the staging pipeline.
"""

import pytest

from release_deployer.deployment.staging import StagingPipeline, find_checksums_asset
from release_deployer.exceptions import (
    ChecksumPolicyViolation,
    DownloadError,
    ExtractError,
    InstallHookFailure,
    IntegrityFailure,
    NoMatchingAsset,
)
from release_deployer.models import Asset, Release, Slot, StageStatus


class TestFindChecksumsAsset:
    """Test manifest discovery by name."""

    def test_matches_base_name(self, release_factory):
        release = release_factory(
            "v1", {"app.tar.gz": b"", "other_checksums.txt": b"", "app_checksums.txt": b""}
        )
        asset = release.find_asset_with_suffix(".tar.gz")
        assert find_checksums_asset(release, asset).name == "app_checksums.txt"

    def test_no_manifest(self, release_factory):
        release = release_factory("v1", {"app.tar.gz": b"", "SHA256SUMS": b""})
        asset = release.find_asset_with_suffix(".tar.gz")
        assert find_checksums_asset(release, asset) is None


class TestStagingPipeline:
    """Test staging a release into a slot directory."""

    @pytest.fixture
    def payload(self, tar_gz):
        return tar_gz({"VERSION": b"v1.1.0\n", "install.sh": b"#!/bin/sh\necho ok\n"})

    def make_pipeline(self, source, tmp_path, **kwargs):
        return StagingPipeline(release_source=source, install_dir=tmp_path / "app", **kwargs)

    @pytest.mark.asyncio
    async def test_stage_tar_gz(self, tmp_path, payload, release_factory, fake_source_cls):
        """A tar.gz asset is downloaded and extracted into the slot."""
        release = release_factory("v1.1.0", {"app.tar.gz": payload})
        source = fake_source_cls(release, {"app.tar.gz": payload})
        pipeline = self.make_pipeline(source, tmp_path, asset_suffix=".tar.gz")

        staged = await pipeline.stage(release, Slot.GREEN)

        assert staged.status is StageStatus.READY
        assert staged.is_ready
        assert staged.version == "v1.1.0"
        assert staged.slot_dir == tmp_path / "app" / "green"
        assert (staged.slot_dir / "VERSION").read_text() == "v1.1.0\n"
        assert staged.asset_path == staged.slot_dir / "app.tar.gz"
        assert not (tmp_path / "app" / "blue").exists()

    @pytest.mark.asyncio
    async def test_first_matching_asset_wins(self, tmp_path, tar_gz, fake_source_cls):
        """The first asset ending with the suffix is selected."""
        first = tar_gz({"which": b"first"})
        second = tar_gz({"which": b"second"})
        release = Release(
            tag_name="v2",
            assets=[
                Asset(name="notes.txt", browser_download_url="https://x/notes.txt"),
                Asset(name="a.tar.gz", browser_download_url="https://x/a.tar.gz"),
                Asset(name="b.tar.gz", browser_download_url="https://x/b.tar.gz"),
            ],
        )
        source = fake_source_cls(release, {"a.tar.gz": first, "b.tar.gz": second})
        pipeline = self.make_pipeline(source, tmp_path, asset_suffix=".tar.gz")

        staged = await pipeline.stage(release, Slot.BLUE)

        assert staged.asset.name == "a.tar.gz"
        assert (staged.slot_dir / "which").read_bytes() == b"first"

    @pytest.mark.asyncio
    async def test_raw_binary_passthrough(self, tmp_path, release_factory, fake_source_cls):
        """A non-archive asset is left in the slot as downloaded."""
        release = release_factory("v1", {"app-linux-amd64": b"\x7fELF"})
        source = fake_source_cls(release, {"app-linux-amd64": b"\x7fELF"})
        pipeline = self.make_pipeline(source, tmp_path, asset_suffix="linux-amd64")

        staged = await pipeline.stage(release, Slot.GREEN)

        assert staged.is_ready
        assert (staged.slot_dir / "app-linux-amd64").read_bytes() == b"\x7fELF"

    @pytest.mark.asyncio
    async def test_no_matching_asset_touches_nothing(
        self, tmp_path, payload, release_factory, fake_source_cls
    ):
        """Without a matching asset nothing is downloaded or created."""
        release = release_factory("v1", {"app.zip": payload})
        source = fake_source_cls(release, {"app.zip": payload})
        pipeline = self.make_pipeline(source, tmp_path, asset_suffix=".tar.gz")

        with pytest.raises(NoMatchingAsset):
            await pipeline.stage(release, Slot.GREEN)

        assert source.downloads == []
        assert not (tmp_path / "app").exists()

    @pytest.mark.asyncio
    async def test_reuses_existing_slot_dir(
        self, tmp_path, payload, release_factory, fake_source_cls
    ):
        """A slot directory left by an earlier attempt is reused."""
        leftover = tmp_path / "app" / "green"
        leftover.mkdir(parents=True)
        (leftover / "stale").write_text("old")
        release = release_factory("v1", {"app.tar.gz": payload})
        pipeline = self.make_pipeline(
            fake_source_cls(release, {"app.tar.gz": payload}), tmp_path, asset_suffix=".tar.gz"
        )

        staged = await pipeline.stage(release, Slot.GREEN)

        assert staged.is_ready
        assert (leftover / "VERSION").exists()

    @pytest.mark.asyncio
    async def test_download_failure(self, tmp_path, payload, release_factory, fake_source_cls):
        """Download errors propagate as staging errors."""
        release = release_factory("v1", {"app.tar.gz": payload})
        source = fake_source_cls(release, {})

        async def failing_download(asset, dest_path):
            raise DownloadError("boom")

        source.download_asset = failing_download
        pipeline = self.make_pipeline(source, tmp_path, asset_suffix=".tar.gz")

        with pytest.raises(DownloadError):
            await pipeline.stage(release, Slot.GREEN)

    @pytest.mark.asyncio
    async def test_corrupt_archive(self, tmp_path, release_factory, fake_source_cls):
        """A corrupt archive fails staging with ExtractError."""
        release = release_factory("v1", {"app.tar.gz": b"garbage"})
        pipeline = self.make_pipeline(
            fake_source_cls(release, {"app.tar.gz": b"garbage"}), tmp_path, asset_suffix=".tar.gz"
        )
        with pytest.raises(ExtractError):
            await pipeline.stage(release, Slot.GREEN)


class TestStagingVerification:
    """Test checksum verification during staging."""

    @pytest.fixture
    def payload(self, tar_gz):
        return tar_gz({"VERSION": b"v1.1.0\n"})

    @pytest.mark.asyncio
    async def test_verified_release(
        self, tmp_path, payload, digest, release_factory, fake_source_cls
    ):
        """A matching manifest entry lets staging proceed."""
        manifest = f"{digest(payload)}  app.tar.gz\n".encode()
        payloads = {"app.tar.gz": payload, "app_checksums.txt": manifest}
        release = release_factory("v1.1.0", payloads)
        source = fake_source_cls(release, payloads)
        pipeline = StagingPipeline(
            source, tmp_path / "app", asset_suffix=".tar.gz", verify_checksums=True
        )

        staged = await pipeline.stage(release, Slot.GREEN)

        assert staged.is_ready
        assert source.downloads == ["app.tar.gz", "app_checksums.txt"]

    @pytest.mark.asyncio
    async def test_missing_manifest(self, tmp_path, payload, release_factory, fake_source_cls):
        """Verification without a manifest is a policy violation and nothing is extracted."""
        release = release_factory("v1.1.0", {"app.tar.gz": payload})
        pipeline = StagingPipeline(
            fake_source_cls(release, {"app.tar.gz": payload}),
            tmp_path / "app",
            asset_suffix=".tar.gz",
            verify_checksums=True,
        )

        with pytest.raises(ChecksumPolicyViolation):
            await pipeline.stage(release, Slot.GREEN)
        assert not (tmp_path / "app" / "green" / "VERSION").exists()

    @pytest.mark.asyncio
    async def test_manifest_without_entry(
        self, tmp_path, payload, release_factory, fake_source_cls
    ):
        """A manifest that does not list the asset is a policy violation."""
        payloads = {"app.tar.gz": payload, "app_checksums.txt": b"abc  something-else\n"}
        release = release_factory("v1.1.0", payloads)
        pipeline = StagingPipeline(
            fake_source_cls(release, payloads),
            tmp_path / "app",
            asset_suffix=".tar.gz",
            verify_checksums=True,
        )

        with pytest.raises(ChecksumPolicyViolation):
            await pipeline.stage(release, Slot.GREEN)

    @pytest.mark.asyncio
    async def test_digest_mismatch_prevents_extraction(
        self, tmp_path, payload, digest, release_factory, fake_source_cls
    ):
        """A wrong digest fails with IntegrityFailure before extraction."""
        manifest = f"{digest(b'something else')}  app.tar.gz\n".encode()
        payloads = {"app.tar.gz": payload, "app_checksums.txt": manifest}
        release = release_factory("v1.1.0", payloads)
        pipeline = StagingPipeline(
            fake_source_cls(release, payloads),
            tmp_path / "app",
            asset_suffix=".tar.gz",
            verify_checksums=True,
        )

        with pytest.raises(IntegrityFailure):
            await pipeline.stage(release, Slot.GREEN)
        assert not (tmp_path / "app" / "green" / "VERSION").exists()

    @pytest.mark.asyncio
    async def test_verification_off_ignores_manifest(
        self, tmp_path, payload, release_factory, fake_source_cls
    ):
        """With verification off the manifest is never fetched."""
        payloads = {"app.tar.gz": payload, "app_checksums.txt": b"bad  app.tar.gz\n"}
        release = release_factory("v1.1.0", payloads)
        source = fake_source_cls(release, payloads)
        pipeline = StagingPipeline(source, tmp_path / "app", asset_suffix=".tar.gz")

        staged = await pipeline.stage(release, Slot.GREEN)

        assert staged.is_ready
        assert source.downloads == ["app.tar.gz"]


class TestInstallHook:
    """Test the install command."""

    @pytest.fixture
    def payload(self, tar_gz):
        return tar_gz({"install.sh": b"#!/bin/sh\necho installed > marker\n"})

    @pytest.mark.asyncio
    async def test_runs_in_slot_dir(self, tmp_path, payload, release_factory, fake_source_cls):
        """The install command runs with the slot as working directory."""
        release = release_factory("v1", {"app.tar.gz": payload})
        pipeline = StagingPipeline(
            fake_source_cls(release, {"app.tar.gz": payload}),
            tmp_path / "app",
            asset_suffix=".tar.gz",
            install_command="./install.sh",
        )

        staged = await pipeline.stage(release, Slot.GREEN)

        assert (staged.slot_dir / "marker").read_text().strip() == "installed"

    @pytest.mark.asyncio
    async def test_failing_hook(self, tmp_path, payload, release_factory, fake_source_cls):
        """A non-zero exit is InstallHookFailure and the slot contents are kept."""
        release = release_factory("v1", {"app.tar.gz": payload})
        pipeline = StagingPipeline(
            fake_source_cls(release, {"app.tar.gz": payload}),
            tmp_path / "app",
            asset_suffix=".tar.gz",
            install_command="exit 7",
        )

        with pytest.raises(InstallHookFailure) as exc_info:
            await pipeline.stage(release, Slot.GREEN)

        assert exc_info.value.returncode == 7
        assert (tmp_path / "app" / "green" / "install.sh").exists()

    @pytest.mark.asyncio
    async def test_hook_timeout(self, tmp_path, payload, release_factory, fake_source_cls):
        """A hook exceeding command_timeout fails staging."""
        release = release_factory("v1", {"app.tar.gz": payload})
        pipeline = StagingPipeline(
            fake_source_cls(release, {"app.tar.gz": payload}),
            tmp_path / "app",
            asset_suffix=".tar.gz",
            install_command="sleep 5",
            command_timeout=0.2,
        )

        with pytest.raises(InstallHookFailure, match="timed out"):
            await pipeline.stage(release, Slot.GREEN)

    @pytest.mark.asyncio
    async def test_cleanup_on_failure(self, tmp_path, payload, release_factory, fake_source_cls):
        """cleanup_on_failure removes the failed slot directory."""
        release = release_factory("v1", {"app.tar.gz": payload})
        pipeline = StagingPipeline(
            fake_source_cls(release, {"app.tar.gz": payload}),
            tmp_path / "app",
            asset_suffix=".tar.gz",
            install_command="false",
            cleanup_on_failure=True,
        )

        with pytest.raises(InstallHookFailure):
            await pipeline.stage(release, Slot.GREEN)
        assert not (tmp_path / "app" / "green").exists()
