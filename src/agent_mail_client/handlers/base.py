"""Base classes for inbound mail handlers.

Handlers let independent parts of an application claim inbound mail
without polling. Each handler declares what it accepts (a ``MailMatcher``
and/or ``custom_can_handle``) and reports back with a ``MailHandlerResult``.
"""

from __future__ import annotations

import inspect
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..protocol.mail import Mail

FieldPattern = str | re.Pattern[str]


@dataclass(frozen=True)
class MailMatcher:
    """Declarative mail filter.

    Every populated field must match: a ``str`` is a substring test, a
    compiled pattern is a ``search``. Header patterns are keyed by header
    name and fail when the header is absent.
    """

    subject: FieldPattern | None = None
    from_: FieldPattern | None = None
    to: FieldPattern | None = None
    body: FieldPattern | None = None
    headers: dict[str, FieldPattern] = field(default_factory=dict)


@dataclass
class MailHandlerResult:
    """Outcome of one handler invocation."""

    handled: bool
    data: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """Handled without error; stops dispatch."""
        return self.handled and self.error is None


class MailHandler(ABC):
    """Abstract base class for mail handlers.

    Subclasses implement ``handle`` and optionally ``custom_can_handle``.
    """

    def __init__(
        self,
        id: str,
        priority: int = 0,
        matcher: MailMatcher | None = None,
    ):
        self.id = id
        self.priority = priority
        self.matcher = matcher

    def can_handle(self, mail: Mail) -> bool:
        """Check the matcher, then the custom predicate."""
        matcher = self.matcher
        if matcher is None:
            return self.custom_can_handle(mail)

        checks = (
            (matcher.subject, mail.subject),
            (matcher.from_, mail.from_address),
            (matcher.to, mail.to_address),
            (matcher.body, mail.body),
        )
        for pattern, value in checks:
            if pattern and not self.match_field(value, pattern):
                return False

        for name, pattern in matcher.headers.items():
            value = mail.headers.get(name)
            if not value or not self.match_field(value, pattern):
                return False

        return self.custom_can_handle(mail)

    def custom_can_handle(self, mail: Mail) -> bool:
        """Override for matching logic a ``MailMatcher`` cannot express."""
        return True

    @staticmethod
    def match_field(value: Any, pattern: FieldPattern) -> bool:
        text = "" if value is None else value if isinstance(value, str) else str(value)
        if isinstance(pattern, str):
            return pattern in text
        return pattern.search(text) is not None

    @abstractmethod
    async def handle(self, mail: Mail) -> MailHandlerResult:
        """Process a mail accepted by ``can_handle``."""

    # Result helpers

    def success(self, data: Any = None) -> MailHandlerResult:
        return MailHandlerResult(handled=True, data=data)

    def error(self, error: BaseException) -> MailHandlerResult:
        return MailHandlerResult(handled=True, error=error)

    def not_handled(self) -> MailHandlerResult:
        return MailHandlerResult(handled=False)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, priority={self.priority})"


class FunctionMailHandler(MailHandler):
    """Wrap a plain function or coroutine function as a handler.

    The function's return value becomes the result data, unless it returns
    a ``MailHandlerResult`` itself.

    Example:
        registry.register(
            FunctionMailHandler(
                "alerts",
                on_alert,
                priority=10,
                matcher=MailMatcher(subject=re.compile(r"^ALERT")),
            )
        )
    """

    def __init__(
        self,
        id: str,
        func: Callable[[Mail], Any | Awaitable[Any]],
        priority: int = 0,
        matcher: MailMatcher | None = None,
    ):
        super().__init__(id, priority, matcher)
        self.func = func

    async def handle(self, mail: Mail) -> MailHandlerResult:
        result = self.func(mail)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, MailHandlerResult):
            return result
        return self.success(result)
