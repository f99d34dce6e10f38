from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

from jobshell.lib.config_parser import load_config
from jobshell.shell.repl import run_command, run_repl, run_script
from jobshell.shell.session import Registry


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging
        quiet: Suppress info logging
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )


def build_registry(config_path: Optional[Path], session_key: Optional[str]) -> Registry:
    """Load the configuration and build a registry from it."""
    config = load_config(config_path)
    if session_key:
        config.session_key = session_key
    return Registry(config)


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = argparse.ArgumentParser(
        description="Job-control shell whose processes are asyncio tasks",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        'script',
        type=Path,
        nargs='?',
        help='Shell script to run instead of the interactive shell'
    )
    parser.add_argument(
        '--command', '-c',
        metavar='COMMAND',
        help='Run a command (e.g. "seq 3 | map \'x * 2\'") and exit'
    )
    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='Path to a YAML configuration file'
    )
    parser.add_argument(
        '--session', '-s',
        metavar='KEY',
        help='Session key (default: from configuration)'
    )
    parser.add_argument(
        '--no-profile',
        action='store_true',
        help='Do not run the profile at startup'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose (debug) logging'
    )
    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress informational output'
    )

    args = parser.parse_args()
    setup_logging(args.verbose, args.quiet)

    try:
        registry = build_registry(args.config, args.session)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        if args.verbose:
            logger.exception("Configuration error details:")
        return 1

    profile = not args.no_profile
    try:
        if args.command is not None:
            return asyncio.run(run_command(args.command, registry, profile=profile))
        if args.script is not None:
            if not args.script.exists():
                logger.error(f"Script not found: {args.script}")
                return 1
            return asyncio.run(run_script(args.script, registry, profile=profile))
        logger.debug("Starting interactive shell...")
        asyncio.run(run_repl(registry, profile=profile))
        return 0
    except KeyboardInterrupt:
        return 130


if __name__ == '__main__':
    sys.exit(main())
