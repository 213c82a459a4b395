"""User-visible notices (sign-in prompt, storage warnings)."""
from typing import Protocol

from marketcart.logging import get_logger

logger = get_logger(__name__)


class Notifier(Protocol):
    """Something that can show a short message to the user."""

    def info(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LogNotifier:
    """Default notifier: routes notices to the log."""

    def info(self, message: str) -> None:
        logger.info(f"Notice: {message}")

    def warning(self, message: str) -> None:
        logger.warning(f"Notice: {message}")

    def error(self, message: str) -> None:
        logger.error(f"Notice: {message}")


class RecordingNotifier:
    """Keeps notices in memory, useful for headless sessions and tests."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))
