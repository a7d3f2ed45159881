"""
Tests for the command line interface.
"""

from unittest.mock import AsyncMock, patch

import pytest
import yaml

from release_deployer import __version__
from release_deployer.__main__ import main
from release_deployer.deployment.cutover import switch_entry_point
from release_deployer.deployment.ledger import SlotLedgerStore
from release_deployer.models import CycleOutcome, CycleResult, Slot, SlotLedger


@pytest.fixture
def config_file(tmp_path):
    install_dir = tmp_path / "app"
    install_dir.mkdir()
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(
            {
                "repo": "owner/project",
                "asset_suffix": ".tar.gz",
                "install_dir": str(install_dir),
                "current_symlink": str(tmp_path / "current"),
            },
            f,
        )
    return path


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep the CLI from replacing pytest's log handlers."""
    with patch("release_deployer.__main__.configure_from_settings"), patch(
        "release_deployer.__main__.setup_logging"
    ):
        yield


@pytest.fixture
def deployed_host(tmp_path, config_file):
    """v1.0.0 in blue, v1.1.0 in green and live."""
    install_dir = tmp_path / "app"
    for slot in Slot:
        (install_dir / slot.value).mkdir()
    switch_entry_point(tmp_path / "current", install_dir / "green")
    SlotLedgerStore(install_dir / "state.yaml").save(
        SlotLedger(active_slot=Slot.GREEN, blue_version="v1.0.0", green_version="v1.1.0")
    )
    return config_file


class TestCli:
    """Test argument handling and exit codes."""

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--help"])
        assert exc_info.value.code == 0
        assert "--rollback" in capsys.readouterr().out

    def test_generate_config(self, tmp_path, capsys):
        path = tmp_path / "generated.yaml"
        assert main(["--generate-config", "-c", str(path)]) == 0
        assert path.exists()
        assert main(["--validate-config", "-c", str(path)]) == 0

    def test_validate_valid(self, config_file, capsys):
        assert main(["--validate-config", "-c", str(config_file)]) == 0
        assert "Configuration valid" in capsys.readouterr().out

    def test_validate_invalid(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("repo: owner/project\n")
        assert main(["--validate-config", "-c", str(path)]) == 1
        assert "Configuration invalid" in capsys.readouterr().out

    def test_missing_config_fails_startup(self, tmp_path, capsys):
        assert main(["-c", str(tmp_path / "missing.yaml")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_corrupt_ledger_fails_startup(self, tmp_path, config_file, capsys):
        (tmp_path / "app" / "state.yaml").write_text("active_slot: [")
        assert main(["--once", "-c", str(config_file)]) == 1

    def test_status(self, deployed_host, capsys):
        assert main(["--status", "-c", str(deployed_host)]) == 0
        out = capsys.readouterr().out
        assert "Active slot:    green" in out
        assert "v1.1.0" in out

    def test_rollback(self, tmp_path, deployed_host):
        assert main(["--rollback", "-c", str(deployed_host)]) == 0
        ledger = SlotLedgerStore(tmp_path / "app" / "state.yaml").load()
        assert ledger.active_slot is Slot.BLUE

    def test_failed_rollback_exit_code(self, tmp_path, config_file):
        """Rolling back with nothing to roll back to exits non-zero."""
        assert main(["--rollback", "-c", str(config_file)]) == 1

    def test_once_runs_single_cycle(self, config_file):
        with patch(
            "release_deployer.deployment.orchestrator.DeploymentOrchestrator.check_and_deploy",
            new_callable=AsyncMock,
            return_value=CycleResult(outcome=CycleOutcome.FAILED, error="feed down"),
        ) as check:
            assert main(["--once", "-c", str(config_file)]) == 0
        assert check.await_count == 1

    def test_dry_run_flag_passed(self, config_file):
        with patch("release_deployer.__main__.DeploymentOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run_once = AsyncMock()
            orchestrator_cls.return_value.close = AsyncMock()
            assert main(["--once", "--dry-run", "-c", str(config_file)]) == 0

        assert orchestrator_cls.call_args.kwargs["dry_run"] is True
