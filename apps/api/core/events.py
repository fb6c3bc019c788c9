"""
Lightweight Event System for Extensibility

Provides a simple event emitter pattern for hooks and extensibility.
Not a full plugin registry - just enough to keep side effects (cache
invalidation, notifications) out of the code that produces the data.
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

# Event registry: event_name -> list of handlers
_event_handlers: Dict[str, List[Callable]] = {}


def subscribe(event_name: str, handler: Callable):
    """
    Subscribe a handler function to an event.

    Args:
        event_name: Name of the event (e.g., 'sleep.night_upserted')
        handler: Function to call when event fires

    Subscribing the same handler twice is a no-op.
    """
    handlers = _event_handlers.setdefault(event_name, [])
    if handler in handlers:
        return
    handlers.append(handler)
    logger.debug(f"Subscribed handler to event: {event_name}")


def unsubscribe(event_name: str, handler: Callable):
    """Remove a previously subscribed handler (no-op if absent)."""
    handlers = _event_handlers.get(event_name, [])
    if handler in handlers:
        handlers.remove(handler)


def emit(event_name: str, **kwargs):
    """
    Emit an event, calling all subscribed handlers.

    Handler failures are logged and never propagate to the emitter.

    Example:
        emit('sleep.night_upserted', athlete_id=str(athlete_id), night_date=night.night_date)
    """
    if event_name not in _event_handlers:
        return

    for handler in list(_event_handlers[event_name]):
        try:
            handler(**kwargs)
        except Exception as e:
            logger.error(f"Error in event handler for {event_name}: {e}", exc_info=True)


# Common event names
EVENT_SLEEP_NIGHT_UPSERTED = 'sleep.night_upserted'
