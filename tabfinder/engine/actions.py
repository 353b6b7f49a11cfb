"""Dispatch activated results and raw query text to the platform."""

import re
from typing import Optional
from urllib.parse import urlsplit

from loguru import logger

from .providers import ActionSink
from .records import Record, SourceKind


_SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:\S")
_HTTP_PREFIX = re.compile(r"^https?://", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s")


def looks_like_url(text: str) -> bool:
    """
    Decide whether typed text should be opened rather than searched.

    Anything with a scheme counts; otherwise a single token containing an
    inner dot (``example.com``, ``docs.python.org/3``) does.
    """
    if not text or _WHITESPACE.search(text):
        return False
    if _SCHEME_PATTERN.match(text):
        try:
            urlsplit(text)
        except ValueError:
            return False
        return True
    return "." in text and not text.startswith(".") and not text.endswith(".")


def ensure_scheme(text: str) -> str:
    if _HTTP_PREFIX.match(text):
        return text
    return "https://" + text


class ActionDispatcher:
    """
    Turns an activation into platform calls.

    Sink failures are logged and swallowed; a failed action never takes
    the engine down.
    """

    def __init__(self, sink: ActionSink):
        self.sink = sink
        self.stats = {"dispatched": 0, "failed": 0}

    async def activate(self, record: Record) -> bool:
        try:
            if record.source == SourceKind.TAB:
                window_id = await self.sink.activate_tab(record.id)
                if window_id is None:
                    window_id = record.window_id
                if window_id is not None:
                    await self.sink.focus_window(window_id)
            elif record.source == SourceKind.CLOSED_TAB:
                await self.sink.restore_session(record.id)
            elif record.url:
                await self.sink.open_url(record.url)
            else:
                logger.debug(f"Nothing to open for {record.source.value} {record.id}")
                return False
        except Exception as e:
            self.stats["failed"] += 1
            logger.error(f"Failed to activate {record.source.value} {record.id}: {e}")
            return False

        self.stats["dispatched"] += 1
        return True

    async def fallback(self, text: str) -> bool:
        """Open typed text as a URL, or run it as a web search."""
        text = text.strip()
        if not text:
            return False

        try:
            if looks_like_url(text):
                await self.sink.open_url(ensure_scheme(text))
            else:
                await self.sink.dispatch_web_search(text)
        except Exception as e:
            self.stats["failed"] += 1
            logger.error(f"Fallback action failed for {text!r}: {e}")
            return False

        self.stats["dispatched"] += 1
        return True


def describe(record: Optional[Record]) -> str:
    if record is None:
        return "<none>"
    return f"[{record.source.value}] {record.display_title}"
