"""
Event bus - small typed publish/subscribe channel.

Decoupled from any wallet object so providers and tests can drive the
same event stream. Callbacks may be plain functions or coroutines.
"""

import inspect
import logging
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")


class WalletEvent(str, Enum):
    """Events published by WalletGateway."""
    ACCOUNT_CHANGED = "accountChanged"
    CHAIN_CHANGED = "chainChanged"
    DISCONNECTED = "disconnected"


class ProviderEvent(str, Enum):
    """Events published by wallet providers (EIP-1193 names)."""
    ACCOUNTS_CHANGED = "accountsChanged"
    CHAIN_CHANGED = "chainChanged"
    DISCONNECT = "disconnect"


class EventBus(Generic[K]):
    """Observer registry keyed by event kind."""

    def __init__(self):
        self._listeners: dict[K, list[Callable[[Any], Any]]] = {}

    def on(self, event: K, callback: Callable[[Any], Any]) -> Callable[[], None]:
        """Register a callback. Returns a function that unregisters it."""
        self._listeners.setdefault(event, []).append(callback)
        return lambda: self.off(event, callback)

    def off(self, event: K, callback: Callable[[Any], Any]) -> None:
        """Unregister a callback (no-op if it was never registered)."""
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def clear(self) -> None:
        self._listeners.clear()

    def listener_count(self, event: K) -> int:
        return len(self._listeners.get(event, []))

    async def emit(self, event: K, data: Any = None) -> None:
        """
        Deliver an event to every subscriber in registration order.

        A failing subscriber is logged and does not stop delivery to the rest.
        """
        for callback in list(self._listeners.get(event, [])):
            try:
                result = callback(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                name = event.value if isinstance(event, Enum) else event
                logger.error(f"Event listener for '{name}' failed: {e}", exc_info=True)
