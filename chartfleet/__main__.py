"""
ChartFleet CLI entry point.

    chartfleet --config /etc/chartfleet/config.yml           # run the controller
    chartfleet --once                                         # one pass over every deployment
    chartfleet --config ./fleet.yml --generate-config         # write defaults
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from chartfleet.config.settings import ChartFleetConfig, default_config_path
from chartfleet.logging_config import ConsoleFormatter
from chartfleet.logging_config import setup_logging as setup_full_logging
from chartfleet.manager import ChartFleetManager

# Used when the configured log directory is not writable
FALLBACK_LOG_DIR = Path.home() / ".local" / "log" / "chartfleet"


def setup_logging(config: ChartFleetConfig, verbose: bool = False) -> None:
    """Configure logging from the logging section, falling back to stdout only."""
    console_level = "DEBUG" if verbose else config.logging.console_level

    log_dir = Path(config.logging.log_dir)
    if not os.access(log_dir, os.W_OK) and not os.access(log_dir.parent, os.W_OK):
        log_dir = FALLBACK_LOG_DIR

    try:
        setup_full_logging(
            log_dir=str(log_dir),
            console_level=console_level,
            file_level=config.logging.file_level,
            use_json=config.logging.use_json,
        )
    except PermissionError:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ConsoleFormatter())
        logging.basicConfig(level=logging.getLevelName(console_level), handlers=[handler])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chartfleet",
        description="ChartFleet - Staged chart rollouts across a fleet of clusters",
    )
    parser.add_argument(
        "--config",
        "-c",
        default=default_config_path(),
        help="Configuration file (default: $CHARTFLEET_CONFIG or /etc/chartfleet/config.yml)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log DEBUG to the console")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--generate-config", action="store_true", help="Write a default configuration and exit"
    )
    mode.add_argument(
        "--validate-config", action="store_true", help="Check the configuration and exit"
    )
    mode.add_argument(
        "--once", action="store_true", help="Reconcile every ChartDeployment once and exit"
    )
    return parser


def _config_command(args: argparse.Namespace) -> Optional[int]:
    """Handle --generate-config/--validate-config; None when neither was given."""
    if args.generate_config:
        ChartFleetConfig().save(args.config)
        print(f"Wrote default configuration to {args.config}")
        return 0

    if args.validate_config:
        try:
            config = ChartFleetConfig.from_file(args.config)
        except Exception as e:
            print(f"Configuration {args.config} is invalid: {e}")
            return 1
        print(f"Configuration {args.config} is valid (store backend: {config.store.backend})")
        return 0

    return None


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    exit_code = _config_command(args)
    if exit_code is not None:
        return exit_code

    try:
        config = ChartFleetConfig.from_file(args.config)
    except Exception as e:
        print(f"Error loading configuration {args.config}: {e}", file=sys.stderr)
        return 1

    setup_logging(config, args.verbose)
    logger = logging.getLogger(__name__)
    logger.info(f"Loaded configuration from {args.config}")

    try:
        manager = ChartFleetManager(config)
        if args.once:
            failures = asyncio.run(manager.run_once())
            if failures:
                logger.error(f"{failures} ChartDeployments failed to reconcile")
            return 1 if failures else 0

        asyncio.run(manager.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        # stderr ends up in the systemd journal
        print(f"Error running ChartFleet: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
