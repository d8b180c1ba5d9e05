"""Local actions the peer may invoke, keyed by name and shape."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from serialrpc.core.errors import ActionExecutionError, ActionNotFoundError
from serialrpc.core.model import COMMAND_SHAPES, ActionHandler, ActionRegistration, Shape

LOGGER = logging.getLogger(__name__)


class ActionRegistry:
    def __init__(self) -> None:
        self._actions: dict[tuple[str, Shape], ActionRegistration] = {}

    def register(self, name: str, shape: Shape, handler: ActionHandler) -> ActionRegistration:
        """Register `handler` for (name, shape), replacing any previous one."""
        if shape not in COMMAND_SHAPES:
            raise ValueError(f"Shape {shape.name} cannot be used for an action")
        registration = ActionRegistration(name=name.strip(), shape=shape, handler=handler)
        key = (registration.name, shape)
        if key in self._actions:
            LOGGER.debug("Replacing action %s/%s", registration.name, shape.value)
        self._actions[key] = registration
        return registration

    def action(self, name: str, shape: Shape) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of `register`."""

        def _decorator(handler: ActionHandler) -> ActionHandler:
            self.register(name, shape, handler)
            return handler

        return _decorator

    def get(self, name: str, shape: Shape) -> ActionRegistration | None:
        return self._actions.get((name, shape))

    def names(self) -> list[tuple[str, Shape]]:
        return sorted(self._actions, key=lambda key: (key[0], key[1].value))

    def __contains__(self, key: object) -> bool:
        return key in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def invoke(self, name: str, shape: Shape, args: Sequence[Any] = ()) -> Any:
        registration = self._actions.get((name, shape))
        if registration is None:
            raise ActionNotFoundError(
                f"No action registered for '{name}' with shape {shape.name}"
            )
        try:
            return registration.handler(*args)
        except Exception as exc:
            raise ActionExecutionError(f"Action '{name}' failed: {exc}") from exc
