"""Unit tests for mail handlers and the handler registry."""

from __future__ import annotations

import re

import pytest

from agent_mail_client.errors import DuplicateHandler
from agent_mail_client.handlers import (
    FunctionMailHandler,
    HandlerRegistry,
    MailHandler,
    MailHandlerResult,
    MailMatcher,
)
from agent_mail_client.protocol import Mail


def make_mail(**overrides) -> Mail:
    fields = {
        "from_address": "agent@example.org",
        "to_address": "me@example.org",
        "subject": "Project created",
        "body": "Project alpha is ready",
        "headers": {"X-Kind": "event"},
    }
    fields.update(overrides)
    return Mail(**fields)


class RecordingHandler(MailHandler):
    """Handler that records calls and returns a canned result."""

    def __init__(self, id: str, priority: int = 0, result=None, matcher=None, calls=None):
        super().__init__(id, priority, matcher)
        self.result = result if result is not None else MailHandlerResult(handled=True)
        self.calls = calls if calls is not None else []

    async def handle(self, mail: Mail) -> MailHandlerResult:
        self.calls.append(self.id)
        return self.result


class ExplodingHandler(MailHandler):
    async def handle(self, mail: Mail) -> MailHandlerResult:
        raise RuntimeError("handler bug")


# =============================================================================
# Matcher Tests
# =============================================================================


class TestMatching:
    """Tests for MailHandler.can_handle."""

    def test_no_matcher_accepts_everything(self) -> None:
        assert RecordingHandler("h").can_handle(make_mail())

    def test_substring_fields(self) -> None:
        handler = RecordingHandler(
            "h", matcher=MailMatcher(subject="created", from_="agent@", body="alpha")
        )

        assert handler.can_handle(make_mail())
        assert not handler.can_handle(make_mail(body="Project beta"))

    def test_regex_fields(self) -> None:
        handler = RecordingHandler("h", matcher=MailMatcher(subject=re.compile(r"^Project \w+$")))

        assert handler.can_handle(make_mail())
        assert not handler.can_handle(make_mail(subject="Re: Project created"))

    def test_all_fields_must_match(self) -> None:
        handler = RecordingHandler("h", matcher=MailMatcher(subject="created", to="other@"))
        assert not handler.can_handle(make_mail())

    def test_header_matching(self) -> None:
        handler = RecordingHandler("h", matcher=MailMatcher(headers={"X-Kind": "event"}))

        assert handler.can_handle(make_mail())
        assert not handler.can_handle(make_mail(headers={}))
        assert not handler.can_handle(make_mail(headers={"X-Kind": "command"}))

    def test_custom_can_handle(self) -> None:
        class OnlyShort(RecordingHandler):
            def custom_can_handle(self, mail: Mail) -> bool:
                return len(str(mail.body)) < 10

        handler = OnlyShort("h", matcher=MailMatcher(subject="created"))

        assert not handler.can_handle(make_mail())
        assert handler.can_handle(make_mail(body="short"))

    def test_result_helpers(self) -> None:
        handler = RecordingHandler("h")
        error = ValueError("bad")

        assert handler.success({"a": 1}) == MailHandlerResult(handled=True, data={"a": 1})
        assert handler.error(error) == MailHandlerResult(handled=True, error=error)
        assert handler.not_handled() == MailHandlerResult(handled=False)
        assert not handler.error(error).ok


# =============================================================================
# Registry Tests
# =============================================================================


class TestRegistry:
    """Tests for registration and ordering."""

    def test_duplicate_id_rejected(self) -> None:
        registry = HandlerRegistry()
        registry.register(RecordingHandler("h"))

        with pytest.raises(DuplicateHandler):
            registry.register(RecordingHandler("h"))

    def test_priority_order_with_stable_ties(self) -> None:
        registry = HandlerRegistry()
        registry.register(RecordingHandler("low", priority=1))
        registry.register(RecordingHandler("tie_a", priority=5))
        registry.register(RecordingHandler("high", priority=10))
        registry.register(RecordingHandler("tie_b", priority=5))

        assert [h.id for h in registry.get_all_handlers()] == ["high", "tie_a", "tie_b", "low"]

    def test_unregister_and_lookup(self) -> None:
        registry = HandlerRegistry()
        handler = RecordingHandler("h")
        registry.register(handler)

        assert registry.get_handler("h") is handler
        assert "h" in registry
        assert registry.unregister("h") is True
        assert registry.unregister("h") is False
        assert registry.get_handler("h") is None

    def test_clear(self) -> None:
        registry = HandlerRegistry()
        registry.register(RecordingHandler("a"))
        registry.clear()

        assert len(registry) == 0
        assert registry.get_all_handlers() == []

    def test_find_handlers(self) -> None:
        registry = HandlerRegistry()
        registry.register(RecordingHandler("yes", matcher=MailMatcher(subject="created")))
        registry.register(RecordingHandler("no", matcher=MailMatcher(subject="deleted")))

        assert [h.id for h in registry.find_handlers(make_mail())] == ["yes"]


class TestDispatch:
    """Tests for process/process_one."""

    @pytest.mark.asyncio
    async def test_first_full_handling_stops_dispatch(self) -> None:
        calls: list[str] = []
        registry = HandlerRegistry()
        registry.register(RecordingHandler("second", priority=1, calls=calls))
        registry.register(RecordingHandler("first", priority=9, calls=calls))

        results = await registry.process(make_mail())

        assert calls == ["first"]
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_errors_and_unhandled_continue(self) -> None:
        """Errors, raising handlers and not-handled results do not stop iteration."""
        calls: list[str] = []
        registry = HandlerRegistry()
        registry.register(
            RecordingHandler(
                "errors",
                priority=4,
                result=MailHandlerResult(handled=True, error=ValueError("x")),
                calls=calls,
            )
        )
        registry.register(ExplodingHandler("explodes", priority=3))
        registry.register(
            RecordingHandler(
                "declines", priority=2, result=MailHandlerResult(handled=False), calls=calls
            )
        )
        registry.register(RecordingHandler("handles", priority=1, calls=calls))

        results = await registry.process(make_mail())

        assert calls == ["errors", "declines", "handles"]
        assert len(results) == 4
        assert isinstance(results[1].error, RuntimeError)
        assert results[1].handled is False
        assert results[-1].ok

    @pytest.mark.asyncio
    async def test_non_matching_handlers_skipped(self) -> None:
        calls: list[str] = []
        registry = HandlerRegistry()
        registry.register(
            RecordingHandler("skip", priority=5, matcher=MailMatcher(subject="nope"), calls=calls)
        )
        registry.register(RecordingHandler("take", calls=calls))

        await registry.process(make_mail())

        assert calls == ["take"]

    @pytest.mark.asyncio
    async def test_process_one(self) -> None:
        registry = HandlerRegistry()
        registry.register(ExplodingHandler("explodes", priority=2))
        registry.register(
            RecordingHandler(
                "handles", priority=1, result=MailHandlerResult(handled=True, data="done")
            )
        )

        result = await registry.process_one(make_mail())

        assert result is not None
        assert result.data == "done"

    @pytest.mark.asyncio
    async def test_process_one_nothing_handles(self) -> None:
        registry = HandlerRegistry()
        registry.register(RecordingHandler("declines", result=MailHandlerResult(handled=False)))

        assert await registry.process_one(make_mail()) is None


class TestFunctionMailHandler:
    """Tests for function-backed handlers."""

    @pytest.mark.asyncio
    async def test_sync_function(self) -> None:
        handler = FunctionMailHandler("f", lambda mail: mail.subject.upper())
        result = await handler.handle(make_mail())

        assert result.ok
        assert result.data == "PROJECT CREATED"

    @pytest.mark.asyncio
    async def test_async_function_returning_result(self) -> None:
        async def decline(mail: Mail) -> MailHandlerResult:
            return MailHandlerResult(handled=False)

        handler = FunctionMailHandler("f", decline, priority=3)
        result = await handler.handle(make_mail())

        assert result.handled is False
        assert handler.priority == 3
