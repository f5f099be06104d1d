"""Notification dispatch, delivery channels and the in-app inbox."""

from src.notifications.channels import (
    EmailChannel,
    InAppChannel,
    LogChannel,
    NotificationEvent,
    WebhookChannel,
    channels_from_settings,
)
from src.notifications.dispatcher import (
    DeadLetter,
    NotificationDispatcher,
    get_dispatcher,
    set_dispatcher,
)

__all__ = [
    "DeadLetter",
    "EmailChannel",
    "InAppChannel",
    "LogChannel",
    "NotificationDispatcher",
    "NotificationEvent",
    "WebhookChannel",
    "channels_from_settings",
    "get_dispatcher",
    "set_dispatcher",
]
