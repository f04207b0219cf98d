"""Update-callback plumbing shared by the view models."""

import logging
from dataclasses import dataclass, field
from typing import Callable, List

from ..utils.log import log_with_timestamp


@dataclass
class UpdateNotifier:
    """Lets a UI register callbacks invoked after the view model's state changes.

    Callbacks run synchronously on the event loop thread; an exception in one
    callback is logged and does not prevent the others from running.
    """

    _update_callbacks: List[Callable[[], None]] = field(default_factory=list, init=False, repr=False)

    @property
    def log_prefix(self) -> str:
        return f"[{type(self).__name__}]"

    def register_update_callback(self, callback: Callable[[], None]):
        """Register a callback to be called when state is updated."""
        if callback not in self._update_callbacks:
            self._update_callbacks.append(callback)

    def unregister_update_callback(self, callback: Callable[[], None]):
        """Unregister an update callback."""
        if callback in self._update_callbacks:
            self._update_callbacks.remove(callback)

    def _notify_updated(self):
        for callback in list(self._update_callbacks):
            try:
                callback()
            except Exception as e:
                name = getattr(callback, "__name__", repr(callback))
                log_with_timestamp(f"Error calling update callback {name}: {e}", self.log_prefix, logging.ERROR)
