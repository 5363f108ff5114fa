"""Inbound mail handlers, their registry, and body decoding."""

from .base import FunctionMailHandler, MailHandler, MailHandlerResult, MailMatcher
from .decoder import Decoder, ResponseDecoder
from .registry import HandlerRegistry

__all__ = [
    "MailMatcher",
    "MailHandler",
    "MailHandlerResult",
    "FunctionMailHandler",
    "HandlerRegistry",
    "Decoder",
    "ResponseDecoder",
]
