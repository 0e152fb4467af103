"""
DealerDocs Notifier — the seam between file operations and the user.

Components never talk to a UI directly. Toasts, blocking alerts,
confirmations, rename prompts, copy-link offers, inline image display and
"open in a new context" all go through a Notifier.

Implementations:
    LoggingNotifier — headless; logs everything, answers confirms with a fixed value
    ConsoleNotifier — interactive terminal, used by the CLI
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger("dealerdocs.engine.notifier")

# Returns an error message for invalid input, None when valid
InputValidator = Callable[[str], Optional[str]]


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Notification:
    level: NotificationLevel
    title: str
    message: str = ""
    toast: bool = False


class Notifier:
    """
    Base notifier. Subclasses override the hooks they can render;
    the defaults are non-interactive.
    """

    async def notify(
        self,
        level: NotificationLevel,
        title: str,
        message: str = "",
        toast: bool = False,
    ) -> None:
        raise NotImplementedError

    async def confirm(self, title: str, message: str = "") -> bool:
        return False

    async def prompt(
        self,
        title: str,
        value: str = "",
        validator: Optional[InputValidator] = None,
    ) -> Optional[str]:
        return None

    async def offer_copy(self, title: str, text: str) -> bool:
        """Show ``text`` with a copy affordance. Returns True if it was copied."""
        await self.notify(NotificationLevel.SUCCESS, title, text)
        return False

    async def show_image(self, title: str, url: str) -> None:
        """Display an image reference; returns when the view is closed."""
        return None

    async def open_external(self, url: str) -> None:
        """Hand a reference to an external viewer (a new browsing context)."""
        return None

    # Convenience wrappers

    async def success(self, title: str, message: str = "", toast: bool = False) -> None:
        await self.notify(NotificationLevel.SUCCESS, title, message, toast)

    async def error(self, title: str, message: str = "", toast: bool = False) -> None:
        await self.notify(NotificationLevel.ERROR, title, message, toast)

    async def warning(self, title: str, message: str = "", toast: bool = False) -> None:
        await self.notify(NotificationLevel.WARNING, title, message, toast)

    async def info(self, title: str, message: str = "", toast: bool = False) -> None:
        await self.notify(NotificationLevel.INFO, title, message, toast)


class LoggingNotifier(Notifier):
    """Headless notifier for services and scripts."""

    _LEVELS = {
        NotificationLevel.SUCCESS: logging.INFO,
        NotificationLevel.INFO: logging.INFO,
        NotificationLevel.WARNING: logging.WARNING,
        NotificationLevel.ERROR: logging.ERROR,
    }

    def __init__(self, auto_confirm: bool = False):
        self._auto_confirm = auto_confirm

    async def notify(self, level, title, message="", toast=False) -> None:
        logger.log(self._LEVELS[NotificationLevel(level)], f"{title}: {message}" if message else title)

    async def confirm(self, title: str, message: str = "") -> bool:
        logger.info(f"Confirm '{title}' -> {self._auto_confirm}")
        return self._auto_confirm


class ConsoleNotifier(Notifier):
    """Terminal notifier. Blocking input runs off the event loop."""

    def __init__(self, assume_yes: bool = False, output=print, answers: Optional[Dict[str, str]] = None):
        self._assume_yes = assume_yes
        self._output = output
        # Preset prompt answers by title (non-interactive use)
        self._answers = dict(answers or {})

    async def notify(self, level, title, message="", toast=False) -> None:
        level = NotificationLevel(level)
        line = f"[{level.value}] {title}"
        if message:
            line += f": {message}"
        self._output(line)

    async def confirm(self, title: str, message: str = "") -> bool:
        if self._assume_yes:
            return True
        text = f"{title} {message}" if message else title
        answer = await asyncio.to_thread(input, f"{text} [y/N] ")
        return answer.strip().lower() in ("y", "yes")

    async def prompt(self, title, value="", validator=None) -> Optional[str]:
        if title in self._answers:
            answer = self._answers.pop(title)
            error = validator(answer) if validator else None
            if error is not None:
                self._output(error)
                return None
            return answer
        while True:
            answer = await asyncio.to_thread(input, f"{title} [{value}]: ")
            answer = answer.strip() or value
            error = validator(answer) if validator else None
            if error is None:
                return answer
            self._output(error)

    async def offer_copy(self, title: str, text: str) -> bool:
        self._output(f"{title}: {text}")
        return False

    async def open_external(self, url: str) -> None:
        self._output(f"Opened {url}")
