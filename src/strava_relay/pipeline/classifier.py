"""
Maps Strava webhook events to delay-queue actions.
"""

from enum import Enum

from ..api.models import WebhookEvent


class EventAction(Enum):
    ENQUEUE = "enqueue"
    UPDATE = "update"
    CANCEL = "cancel"
    IGNORE = "ignore"


_ACTIVITY_ACTIONS = {
    'create': EventAction.ENQUEUE,
    'update': EventAction.UPDATE,
    'delete': EventAction.CANCEL,
}


def classify(event: WebhookEvent) -> EventAction:
    """Only activity create/update/delete events do anything; athlete events are ignored."""
    if event.object_type != 'activity':
        return EventAction.IGNORE
    return _ACTIVITY_ACTIONS.get(event.aspect_type, EventAction.IGNORE)
