"""Decoding of mail bodies into structured data.

Agents answer in free-form text that often carries JSON, sometimes
wrapped in prose. ``ResponseDecoder`` tries, in order: the body as-is when
already structured, strict JSON, the first embedded JSON object, the first
embedded JSON array, ``"true"``/``"false"``, and finally the raw string.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from ..protocol.mail import Mail

_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)
_PATH_SPLIT_RE = re.compile(r"[.\[\]]")
_ERROR_TEXT_RE = re.compile(r"error:\s*(.+)", re.IGNORECASE)

_SUCCESS_WORDS = ("success", "completed", "created", "updated", "deleted")


@runtime_checkable
class Decoder(Protocol):
    """Anything that turns a mail into application data."""

    def decode(self, mail: Mail) -> Any: ...


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


class ResponseDecoder:
    """Default ``Decoder``: JSON-aware, falls back to plain text."""

    def __init__(
        self,
        parse_json: bool = True,
        extract_json: bool = True,
        parse_booleans: bool = True,
        custom_decoder: Callable[[Any], Any] | None = None,
    ):
        self.parse_json = parse_json
        self.extract_json = extract_json
        self.parse_booleans = parse_booleans
        self.custom_decoder = custom_decoder

    def decode(self, mail: Mail) -> Any:
        """Decode the body of ``mail``. Empty bodies decode to None."""
        body = mail.body
        if body is None or body == "":
            return None

        if self.custom_decoder is not None:
            return self.custom_decoder(body)

        if not isinstance(body, str):
            return body

        if self.parse_json:
            parsed = _try_json(body)
            if parsed is not None:
                return parsed

        if self.extract_json:
            extracted = self._extract_embedded(body)
            if extracted is not None:
                return extracted

        if self.parse_booleans:
            lowered = body.strip().lower()
            if lowered == "true":
                return True
            if lowered == "false":
                return False

        return body

    def decode_as(self, mail: Mail, validator: Callable[[Any], bool]) -> Any:
        """Decode and return the data only if ``validator`` accepts it."""
        decoded = self.decode(mail)
        return decoded if validator(decoded) else None

    def extract_fields(self, mail: Mail, fields: list[str]) -> dict[str, Any]:
        """Pick ``fields`` out of a decoded object (missing ones are skipped)."""
        decoded = self.decode(mail)
        if not isinstance(decoded, dict):
            return {}
        return {name: decoded[name] for name in fields if name in decoded}

    def extract_path(self, mail: Mail, path: str) -> Any:
        """Follow a path like ``data.items[0].name``; None when it breaks."""
        current = self.decode(mail)
        for key in filter(None, _PATH_SPLIT_RE.split(path)):
            if isinstance(current, dict):
                current = current.get(key)
            elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
                current = current[int(key)]
            else:
                return None
        return current

    @staticmethod
    def _extract_embedded(text: str) -> Any:
        for pattern in (_OBJECT_RE, _ARRAY_RE):
            match = pattern.search(text)
            if match:
                parsed = _try_json(match.group(0))
                if parsed is not None:
                    return parsed
        return None

    # =========================================================================
    # Common response conventions
    # =========================================================================

    @staticmethod
    def extract_success(mail: Mail) -> bool:
        """Guess whether a reply reports success."""
        decoded = ResponseDecoder().decode(mail)

        if isinstance(decoded, dict):
            if "success" in decoded:
                return bool(decoded["success"])
            if "ok" in decoded:
                return bool(decoded["ok"])
            if "error" in decoded:
                return not decoded["error"]
            if "status" in decoded:
                return decoded["status"] in ("success", "ok", 200)

        text = str(mail.body).lower()
        return any(word in text for word in _SUCCESS_WORDS)

    @staticmethod
    def extract_error(mail: Mail) -> str | None:
        """Pull an error message out of a reply, if it carries one."""
        decoded = ResponseDecoder().decode(mail)

        if isinstance(decoded, dict):
            if "error" in decoded:
                return str(decoded["error"])
            if "message" in decoded and decoded.get("success") is False:
                return str(decoded["message"])
            if "error_message" in decoded:
                return str(decoded["error_message"])

        match = _ERROR_TEXT_RE.search(str(mail.body))
        if match:
            return match.group(1).strip()
        return None
