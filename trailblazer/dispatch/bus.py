"""In-process publish/subscribe bus between producers and the tracker."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from trailblazer.dispatch.actions import Action, ActionType

logger = logging.getLogger("trailblazer.dispatch.bus")

Handler = Callable[[Action], Union[Any, Awaitable[Any]]]


class ActionBus:
    """
    Deliver each dispatched action to the handlers subscribed to its type.

    Handlers run one after another in subscription order. A handler that
    raises stops delivery and the exception reaches the dispatcher.
    """

    def __init__(self) -> None:
        self._handlers: dict[ActionType, list[Handler]] = {}
        self._observers: list[Handler] = []

    def subscribe(self, action_type: ActionType, handler: Handler) -> None:
        self._handlers.setdefault(ActionType(action_type), []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Observe every action before type-specific handlers run."""
        self._observers.append(handler)

    def has_handlers(self, action_type: ActionType) -> bool:
        return bool(self._handlers.get(ActionType(action_type)))

    async def dispatch(self, action: Action) -> list[Any]:
        logger.debug("Dispatching %s tab_id=%s", action.type.value, action.payload.get("tab_id"))
        for observer in list(self._observers):
            result = observer(action)
            if inspect.isawaitable(result):
                await result
        results: list[Any] = []
        for handler in list(self._handlers.get(action.type, [])):
            result = handler(action)
            if inspect.isawaitable(result):
                result = await result
            results.append(result)
        return results
