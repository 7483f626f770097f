"""Lifecycle state reported to the host."""

import logging
from collections.abc import Callable

from convmem.types import MemoryStatus, SystemState

logger = logging.getLogger(__name__)

ProgressListener = Callable[[MemoryStatus], None]


class ConversationMemoryStateManager:
    """Holds the system state, its message and episode progress.

    Listeners are notified synchronously on every change; a failing
    listener is logged and does not affect the others.
    """

    def __init__(self) -> None:
        self._state = SystemState.NOT_INITIALIZED
        self._message = ""
        self._processed_episodes = 0
        self._total_episodes = 0
        self._listeners: list[ProgressListener] = []

    @property
    def state(self) -> SystemState:
        return self._state

    @property
    def message(self) -> str:
        return self._message

    def set_system_state(self, state: SystemState, message: str = "") -> None:
        if state != self._state:
            logger.info(
                "memory_state_changed",
                extra={
                    "state.from": self._state.value,
                    "state.to": state.value,
                    "state.message": message,
                },
            )
        self._state = state
        self._message = message
        self._notify()

    def set_progress(self, processed: int, total: int) -> None:
        self._processed_episodes = processed
        self._total_episodes = total
        self._notify()

    def get_current_status(self) -> MemoryStatus:
        return MemoryStatus(
            state=self._state,
            message=self._message,
            processed_episodes=self._processed_episodes,
            total_episodes=self._total_episodes,
        )

    def on_progress(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        status = self.get_current_status()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.warning("state_listener_failed", exc_info=True)

    def dispose(self) -> None:
        self._listeners.clear()
