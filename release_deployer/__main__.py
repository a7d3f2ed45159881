"""
release-deployer CLI entry point.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from release_deployer import __version__
from release_deployer.config import DEFAULT_CONFIG_PATH, DeployerConfig, generate_default_config
from release_deployer.deployment import DeploymentOrchestrator
from release_deployer.exceptions import ConfigError, DeployerError, PersistenceError
from release_deployer.logging_config import configure_from_settings, setup_logging

logger = logging.getLogger("release_deployer")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="release-deployer",
        description="release-deployer - Blue/green deployment of GitHub releases",
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Check for releases and log what would happen without changing anything",
    )

    parser.add_argument("--once", action="store_true", help="Run a single check cycle and exit")

    parser.add_argument(
        "--rollback", action="store_true", help="Switch back to the previous slot and exit"
    )

    parser.add_argument("--status", action="store_true", help="Show slot status and exit")

    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration file and exit"
    )

    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Generate example configuration file and exit",
    )

    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    parser.add_argument(
        "--version", action="version", version=f"release-deployer {__version__}"
    )

    return parser


def print_status(status: dict) -> None:
    print(f"Repository:     {status['repo']}")
    print(f"Active slot:    {status['active_slot']}")
    print(f"Active version: {status['active_version'] or '(none)'}")
    print(f"Blue version:   {status['blue_version'] or '(none)'}")
    print(f"Green version:  {status['green_version'] or '(none)'}")
    print(f"Entry point:    {status['entry_point']} -> {status['entry_point_slot'] or '(unset)'}")
    if not status["consistent"]:
        print("WARNING: entry point and ledger disagree on the active slot")


async def run_service(orchestrator: DeploymentOrchestrator) -> None:
    """Run the deployment loop until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    try:
        await orchestrator.run(stop_event)
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)


async def execute(args: argparse.Namespace, config: DeployerConfig) -> int:
    """Build the orchestrator and run the requested mode."""
    try:
        orchestrator = DeploymentOrchestrator(config, dry_run=args.dry_run or args.status)
    except PersistenceError as e:
        logger.error(f"Failed to load slot ledger: {e}")
        print(f"Error loading slot ledger: {e}", file=sys.stderr)
        return 1

    try:
        if args.status:
            print_status(orchestrator.status())
            return 0

        if args.rollback:
            try:
                await orchestrator.rollback()
            except DeployerError as e:
                logger.error(f"Rollback failed: {type(e).__name__}: {e}")
                print(f"Rollback failed: {e}", file=sys.stderr)
                return 1
            return 0

        if args.once:
            await orchestrator.run_once()
            return 0

        await run_service(orchestrator)
        return 0
    finally:
        await orchestrator.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    # Handle config generation
    if args.generate_config:
        setup_logging(console_level="DEBUG" if args.verbose else "INFO")
        generate_default_config(args.config)
        print(f"Generated example configuration at: {args.config}")
        return 0

    try:
        config = DeployerConfig.from_file(args.config)
    except ConfigError as e:
        if args.validate_config:
            print(f"Configuration invalid: {e}")
        else:
            print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    # Handle config validation
    if args.validate_config:
        print(f"Configuration valid: {args.config}")
        return 0

    try:
        configure_from_settings(config.logging, verbose=args.verbose)
    except (ConfigError, OSError) as e:
        print(f"Error configuring logging: {e}", file=sys.stderr)
        return 1

    logger.info(f"release-deployer {__version__} starting with configuration {args.config}")

    try:
        return asyncio.run(execute(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        # Print to stderr for systemd journal
        print(f"Error running release-deployer: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
