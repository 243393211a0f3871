"""Notification delivery and activity logging."""

from .email import EmailNotifier
from .notifier import (
    ActivityLog,
    LogNotifier,
    Notifier,
    OwnerContext,
    StructlogActivityLog,
    notification_categories,
)

__all__ = [
    "ActivityLog",
    "EmailNotifier",
    "LogNotifier",
    "Notifier",
    "OwnerContext",
    "StructlogActivityLog",
    "notification_categories",
]
