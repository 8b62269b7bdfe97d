"""
Completion notifications.

The reconciliation pass builds a subject and body with a
``CompletionNotifier`` and hands them to a ``NotificationDispatcher``
(normally a ``NotificationEngine`` routing to e-mail or the log).
"""

from runregistry.notification.channels import BaseDispatcher, EmailDispatcher, LogDispatcher
from runregistry.notification.engine import NotificationEngine, split_destination
from runregistry.notification.messages import TemplateCompletionNotifier
from runregistry.notification.protocol import (
    CompletionNotifier,
    DeliveryRecord,
    NotificationDispatcher,
    SchemeDispatcher,
)

__all__ = [
    "NotificationDispatcher",
    "SchemeDispatcher",
    "CompletionNotifier",
    "DeliveryRecord",
    "NotificationEngine",
    "split_destination",
    "TemplateCompletionNotifier",
    "BaseDispatcher",
    "EmailDispatcher",
    "LogDispatcher",
]
