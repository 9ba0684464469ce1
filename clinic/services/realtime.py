import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

logger = logging.getLogger(__name__)

UPDATES_GROUP = "updates"


def broadcast_update(event: str, payload: dict) -> None:
    """Push a change event to every socket in the ``updates`` group."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    message = {"type": "broadcast.change", "event": event, "ts": timezone.now().isoformat(), **payload}
    try:
        async_to_sync(channel_layer.group_send)(UPDATES_GROUP, message)
    except Exception:
        # the write already committed; a dead channel layer must not fail the request
        logger.warning("could not broadcast %s", event, exc_info=True)
