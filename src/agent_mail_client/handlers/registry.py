"""Priority-ordered registry of inbound mail handlers."""

from __future__ import annotations

import logging

from ..errors import DuplicateHandler
from ..protocol.mail import Mail
from .base import MailHandler, MailHandlerResult

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Registry for mail handlers.

    Handlers are kept sorted by descending priority; ties keep
    registration order. Dispatch stops at the first handler that reports
    ``handled`` without an error.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, MailHandler] = {}
        self._sorted: list[MailHandler] = []

    def register(self, handler: MailHandler) -> None:
        """Register a handler.

        Raises:
            DuplicateHandler: If a handler with the same id is registered
        """
        if handler.id in self._handlers:
            raise DuplicateHandler(f"Handler with id '{handler.id}' already registered")

        self._handlers[handler.id] = handler
        self._resort()
        logger.debug(f"Registered mail handler: {handler.id} (priority {handler.priority})")

    def unregister(self, handler_id: str) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        if self._handlers.pop(handler_id, None) is None:
            return False
        self._resort()
        logger.debug(f"Unregistered mail handler: {handler_id}")
        return True

    def get_handler(self, handler_id: str) -> MailHandler | None:
        return self._handlers.get(handler_id)

    def get_all_handlers(self) -> list[MailHandler]:
        """All handlers in dispatch order."""
        return list(self._sorted)

    def clear(self) -> None:
        self._handlers.clear()
        self._sorted = []

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, handler_id: object) -> bool:
        return handler_id in self._handlers

    async def process(self, mail: Mail) -> list[MailHandlerResult]:
        """Run every matching handler until one fully handles the mail.

        A handler that raises is recorded as an unhandled result carrying
        the exception; it does not stop iteration.

        Returns:
            One result per handler invoked, in dispatch order
        """
        results: list[MailHandlerResult] = []

        for handler in list(self._sorted):
            try:
                if not handler.can_handle(mail):
                    continue
                result = await handler.handle(mail)
            except Exception as e:
                logger.exception(f"Mail handler {handler.id} failed on {mail.message_id}")
                results.append(MailHandlerResult(handled=False, error=e))
                continue

            results.append(result)
            if result.ok:
                break

        return results

    async def process_one(self, mail: Mail) -> MailHandlerResult | None:
        """Return the first result that fully handles the mail, if any."""
        for handler in list(self._sorted):
            try:
                if not handler.can_handle(mail):
                    continue
                result = await handler.handle(mail)
            except Exception:
                logger.exception(f"Mail handler {handler.id} failed on {mail.message_id}")
                continue

            if result.ok:
                return result

        return None

    def find_handlers(self, mail: Mail) -> list[MailHandler]:
        """Handlers whose matcher accepts ``mail``, in dispatch order."""
        return [h for h in self._sorted if h.can_handle(mail)]

    def _resort(self) -> None:
        # sorted() is stable, so equal priorities keep registration order
        self._sorted = sorted(self._handlers.values(), key=lambda h: -h.priority)
