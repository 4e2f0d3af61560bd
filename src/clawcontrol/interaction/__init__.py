"""User interaction module for deployment callbacks."""

from .handler import (
    AutoResponseHandler,
    CallbackInteractionHandler,
    CLIInteractionHandler,
    InteractionHandler,
)

__all__ = [
    "InteractionHandler",
    "CLIInteractionHandler",
    "CallbackInteractionHandler",
    "AutoResponseHandler",
]
