"""Rich logging integration for udptracker.

Provides a RichHandler subclass that tags records with the current
correlation ID and highlights session states, plus a file formatter that
strips Rich markup from messages logged with explicit markup.
"""

from __future__ import annotations

import logging
import re
from typing import Any, ClassVar

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

_MARKUP_PATTERN = re.compile(r"\[/?[a-z#][^\]]*\]")


class CorrelationRichHandler(RichHandler):
    """RichHandler with correlation ID support and state highlighting.

    Session states (``AWAITING_CONNECT``, ``SUCCEEDED``, ...) are colored
    orange, tracker actions (``connect``, ``announce``) bright cyan.
    """

    STATE_PATTERN: ClassVar[re.Pattern[str]] = re.compile(
        r"\b(IDLE|AWAITING_CONNECT|AWAITING_ANNOUNCE|SUCCEEDED|FAILED)\b"
    )
    ACTION_PATTERN: ClassVar[re.Pattern[str]] = re.compile(
        r"\b(connect|announce|retransmit\w*)\b"
    )

    def __init__(
        self,
        *args: Any,
        console: Console | None = None,
        highlight_states: bool = True,
        **kwargs: Any,
    ) -> None:
        """Initialize RichHandler.

        Args:
            *args: Positional arguments for RichHandler
            console: Optional Rich Console instance
            highlight_states: Whether to color session states and actions
            **kwargs: Keyword arguments for RichHandler

        """
        if console is None:
            console = Console(stderr=True, markup=True)
        self.highlight_states = highlight_states
        kwargs.setdefault("markup", True)
        super().__init__(*args, console=console, **kwargs)

    def _colorize(self, message: str) -> str:
        message = escape(message)
        if not self.highlight_states:
            return message
        message = self.STATE_PATTERN.sub(r"[orange1]\1[/orange1]", message)
        return self.ACTION_PATTERN.sub(r"[bright_cyan]\1[/bright_cyan]", message)

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record with correlation ID."""
        if not hasattr(record, "correlation_id"):
            from udptracker.utils.logging_config import correlation_id

            record.correlation_id = correlation_id.get() or "no-correlation-id"
        super().emit(record)

    def render_message(self, record: logging.LogRecord, message: str) -> Any:
        """Render the message with session states and actions colored."""
        return super().render_message(record, self._colorize(message))


def strip_rich_markup(text: str) -> str:
    """Strip Rich markup from text for file logging."""
    return _MARKUP_PATTERN.sub("", text)


class FileFormatter(logging.Formatter):
    """Formatter for file output that strips Rich markup."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record, stripping Rich markup for file output."""
        return strip_rich_markup(super().format(record))


def create_rich_handler(
    console: Console | None = None,
    level: int | str = logging.INFO,
    show_path: bool = False,
    rich_tracebacks: bool = True,
) -> logging.Handler:
    """Create a RichHandler with correlation ID support.

    Args:
        console: Optional Rich Console instance
        level: Log level
        show_path: Whether to show file paths in log output
        rich_tracebacks: Whether to use rich tracebacks

    Returns:
        Configured RichHandler instance

    """
    return CorrelationRichHandler(
        console=console,
        level=level,
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
    )
