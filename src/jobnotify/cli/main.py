"""
Main CLI entry point for job-notify.

This module provides the main command-line interface with subcommands
for initializing configuration, inspecting it, sending a test
notification, and running the job watcher.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from jobnotify import __version__


def create_parser() -> argparse.ArgumentParser:
    """
    Create the main argument parser with all subcommands.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="job-notify",
        description="Notify a chat channel when Kubernetes Jobs succeed or fail.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  job-notify init                      Create .job-notify/config.yaml
  job-notify config                    Show effective settings
  job-notify test --outcome failed     Send a test notification
  job-notify run --namespace batch     Watch jobs in one namespace
  job-notify run --level failed        Only notify failed jobs

For more information on a command, run: job-notify <command> --help
""",
    )

    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"job-notify {__version__}",
    )

    # Global options
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to config file (default: .job-notify/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        default=None,
        help="Logging level override (defaults to config log_level or INFO)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    # init
    init_parser = subparsers.add_parser(
        "init",
        help="Initialize project configuration",
        description="Create the project configuration file with defaults.",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing configuration",
    )

    # config
    subparsers.add_parser(
        "config",
        help="Show effective configuration",
        description="Print the validated settings after merging file, env, and defaults.",
    )

    # test
    test_parser = subparsers.add_parser(
        "test",
        help="Send a test notification",
        description="Send a synthetic job completion notification through the configured channel.",
    )
    test_parser.add_argument(
        "--outcome",
        choices=["succeeded", "failed"],
        default="succeeded",
        help="Outcome of the synthetic job (default: succeeded)",
    )
    test_parser.add_argument(
        "--job-name",
        metavar="NAME",
        default="job-notify-test",
        help="Job name shown in the test message (default: job-notify-test)",
    )
    test_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the rendered message without sending it",
    )

    # run
    run_parser = subparsers.add_parser(
        "run",
        help="Watch jobs and send completion notifications",
        description="Watch Job resources and notify once per job success or failure.",
    )
    _add_runtime_overrides(run_parser)

    return parser


def _add_runtime_overrides(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--namespace",
        metavar="NS",
        default=None,
        help="Namespace to watch (default: config namespace, empty for all)",
    )
    parser.add_argument(
        "--level",
        choices=["all", "failed"],
        default=None,
        help="Notification level: all (success and failure) or failed",
    )
    parser.add_argument(
        "--resync-period",
        metavar="SECONDS",
        type=int,
        default=None,
        help="Watch resync period in seconds (default: 30)",
    )
    parser.add_argument(
        "--kubeconfig",
        metavar="PATH",
        default=None,
        help="Kubeconfig path used with --no-in-cluster",
    )
    parser.add_argument(
        "--in-cluster",
        dest="in_cluster",
        action="store_true",
        default=None,
        help="Use the pod service account (default)",
    )
    parser.add_argument(
        "--no-in-cluster",
        dest="in_cluster",
        action="store_false",
        help="Use a kubeconfig instead of in-cluster credentials",
    )


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    from jobnotify.cli import commands

    try:
        if args.command == "init":
            return commands.cmd_init(args)

        elif args.command == "config":
            return commands.cmd_config(args)

        elif args.command == "test":
            return commands.cmd_test(args)

        elif args.command == "run":
            return commands.cmd_run(args)

        else:
            parser.print_help()
            return 1

    except KeyboardInterrupt:
        print("\nAborted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
