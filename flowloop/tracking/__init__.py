"""Tracking module for FlowLoop.

Provides the callback and subscription channel that carries run
progress to observers.
"""

from flowloop.tracking.callbacks import (
    CallbackEvent,
    CallbackContext,
    CallbackManager,
    Subscription,
)

__all__ = [
    "CallbackEvent",
    "CallbackContext",
    "CallbackManager",
    "Subscription",
]
