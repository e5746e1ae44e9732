"""
jobnotify - completion notifications for Kubernetes Jobs.

Watches batch Job resources and sends exactly one notification per job
when it succeeds or fails:
- Edge detection on (previous, current) job snapshots
- In-memory deduplication keyed by namespace/name
- Notification level policy (all or failed only)
- Slack, Discord, and generic webhook channels
"""

from jobnotify._version import __version__

from jobnotify.config import Config, NotificationLevel, Settings, resolve_settings
from jobnotify.classifier import (
    JobIdentity,
    JobSnapshot,
    NotificationEvent,
    Outcome,
    classify,
    snapshot_from_job,
)
from jobnotify.dedup import InMemoryDedupStore
from jobnotify.coordinator import HandleResult, NotificationCoordinator
from jobnotify.notifiers import (
    DeliveryError,
    DiscordNotifier,
    Notifier,
    SlackNotifier,
    WebhookNotifier,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "Config",
    "NotificationLevel",
    "Settings",
    "resolve_settings",
    # Classification
    "JobIdentity",
    "JobSnapshot",
    "NotificationEvent",
    "Outcome",
    "classify",
    "snapshot_from_job",
    # Coordination
    "InMemoryDedupStore",
    "HandleResult",
    "NotificationCoordinator",
    # Channels
    "DeliveryError",
    "DiscordNotifier",
    "Notifier",
    "SlackNotifier",
    "WebhookNotifier",
]
