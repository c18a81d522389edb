"""Event-kind to handler dispatch."""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from ratracer.services.webhooks.events import ContractEvent, EventKind

logger = structlog.get_logger()

Handler = Callable[[ContractEvent, Any], Awaitable[dict]]


class EventRouter:
    """Maps each event kind to the coroutine that applies it.

    Handlers are registered with the ``register`` decorator:

        router = EventRouter()

        @router.register(EventKind.RAT_MINTED)
        async def handle_mint(event, ctx):
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind, Handler] = {}

    def register(self, kind: EventKind) -> Callable[[Handler], Handler]:
        def decorator(func: Handler) -> Handler:
            if kind in self._handlers:
                raise ValueError(f"Handler already registered for {kind.value}")
            self._handlers[kind] = func
            return func

        return decorator

    @property
    def kinds(self) -> list[EventKind]:
        return list(self._handlers)

    def handler_for(self, kind: EventKind) -> Handler:
        """Look up the handler for a kind.

        Raises:
            LookupError: If no handler is registered
        """
        try:
            return self._handlers[kind]
        except KeyError:
            raise LookupError(f"No handler registered for {kind.value}") from None

    async def dispatch(self, event: ContractEvent, ctx: Any) -> dict:
        """Run the registered handler for ``event.kind``."""
        handler = self.handler_for(event.kind)
        logger.debug("webhook.dispatch", event_name=event.kind.value, handler=handler.__name__)
        return await handler(event, ctx)
