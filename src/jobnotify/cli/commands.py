"""
Command handlers for the job-notify CLI.

This module contains the implementation of each CLI command.
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import Any, Dict, List, Tuple
from urllib.parse import urlsplit

from tabulate import tabulate

from jobnotify.classifier import JobIdentity, NotificationEvent, Outcome, utcnow
from jobnotify.config import (
    Config,
    ConfigError,
    Settings,
    init_config,
    resolve_settings,
)
from jobnotify.coordinator import NotificationCoordinator
from jobnotify.logging_config import setup_logging
from jobnotify.notifiers import DeliveryError, build_notifier, render_summary
from jobnotify.watch import JobWatcher, WatchError, load_batch_api

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)
# How often the main thread wakes up while waiting for shutdown
WAIT_INTERVAL_SECONDS = 1.0


# =============================================================================
# Helper Functions
# =============================================================================

def get_configured_config(args: Any) -> Config:
    """Build Config from --config and any runtime CLI overrides."""
    overrides: Dict[str, Any] = {
        "namespace": getattr(args, "namespace", None),
        "notification_level": getattr(args, "level", None),
        "resync_period_seconds": getattr(args, "resync_period", None),
        "kubeconfig": getattr(args, "kubeconfig", None),
        "in_cluster": getattr(args, "in_cluster", None),
        "log_level": getattr(args, "log_level", None),
    }
    return Config(config_path=getattr(args, "config", None), overrides=overrides)


def mask_url(url: str) -> str:
    """Hide the secret part of a webhook URL, keeping scheme and host."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return "***"
    return f"{parts.scheme}://{parts.netloc}/***"


def settings_rows(settings: Settings) -> List[Tuple[str, str]]:
    """Rows for the effective settings table."""
    return [
        ("notification_level", settings.notification_level.value),
        ("namespace", settings.namespace_label),
        ("in_cluster", str(settings.in_cluster).lower()),
        ("kubeconfig", settings.kubeconfig or "-"),
        ("resync_period", f"{settings.resync_period:g}s"),
        ("delivery_timeout", f"{settings.delivery_timeout:g}s"),
        ("channel.type", settings.channel_type),
        ("channel.url", mask_url(settings.channel_url)),
        ("log_level", settings.log_level),
    ]


def _load_settings(args: Any) -> Settings:
    return resolve_settings(get_configured_config(args))


# =============================================================================
# Commands
# =============================================================================

def cmd_init(args: Any) -> int:
    """Create the project configuration file."""
    try:
        path = init_config(project_root=Path.cwd(), overwrite=args.force)
    except FileExistsError as exc:
        print(f"Error: {exc}")
        print("Pass --force to overwrite.")
        return 1

    print(f"Created configuration: {path}")
    print("Set SLACK_WEBHOOK_URL (or edit channel.url) before running 'job-notify run'.")
    return 0


def cmd_config(args: Any) -> int:
    """Print effective settings."""
    try:
        settings = _load_settings(args)
    except ConfigError as exc:
        print(f"Error: {exc}")
        return 1

    print(tabulate(settings_rows(settings), headers=["Setting", "Value"], tablefmt="simple"))
    return 0


def cmd_test(args: Any) -> int:
    """Send a synthetic notification through the configured channel."""
    try:
        settings = _load_settings(args)
    except ConfigError as exc:
        print(f"Error: {exc}")
        return 1

    event = NotificationEvent(
        identity=JobIdentity(namespace=settings.namespace or "default", name=args.job_name),
        outcome=Outcome(args.outcome),
        observed_at=utcnow(),
    )
    summary = render_summary(event)

    if args.dry_run:
        print("Dry run enabled. Message preview:")
        print(summary)
        print(f"Channel: {settings.channel_type} ({mask_url(settings.channel_url)})")
        return 0

    notifier = build_notifier(settings)
    try:
        notifier.deliver(event, summary, settings.delivery_timeout)
    except DeliveryError as exc:
        print(f"[failed] {settings.channel_type} - {exc}")
        return 1

    print(f"[ok] {settings.channel_type} - test notification sent")
    return 0


def _install_signal_handlers(watcher: JobWatcher) -> None:
    def handle_signal(signum: int, _frame: Any) -> None:
        logger.info(f"Received signal, shutting down (signal={signal.Signals(signum).name})")
        watcher.stop()

    for sig in SHUTDOWN_SIGNALS:
        signal.signal(sig, handle_signal)


def cmd_run(args: Any) -> int:
    """Watch jobs until SIGINT/SIGTERM and notify on completion."""
    try:
        settings = _load_settings(args)
    except ConfigError as exc:
        print(f"Error: {exc}")
        return 1

    setup_logging(settings.log_level)
    logger.info(
        f"Loaded configuration (namespace={settings.namespace_label}, "
        f"in_cluster={settings.in_cluster}, resync_period={settings.resync_period:g}s, "
        f"notification_level={settings.notification_level.value}, "
        f"channel={settings.channel_type})"
    )

    try:
        batch_api = load_batch_api(settings.in_cluster, settings.kubeconfig)
    except WatchError as exc:
        logger.error(f"Failed to run: {exc}")
        return 1

    coordinator = NotificationCoordinator(
        build_notifier(settings),
        level=settings.notification_level,
        delivery_timeout=settings.delivery_timeout,
    )
    watcher = JobWatcher(
        batch_api,
        coordinator.handle_update,
        namespace=settings.namespace,
        resync_period=settings.resync_period,
    )
    _install_signal_handlers(watcher)

    try:
        watcher.start()
        while not watcher.wait(WAIT_INTERVAL_SECONDS):
            pass
    finally:
        watcher.stop()
        coordinator.close()

    if watcher.error is not None:
        logger.error(f"Failed to run: {watcher.error}")
        return 1
    return 0
