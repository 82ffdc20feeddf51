"""Capture the current text selection through the shared clipboard."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional, Protocol

try:  # pragma: no cover - executed during module import
    import pyperclip  # type: ignore
except ImportError:  # pragma: no cover - handled by PyperclipClipboard
    pyperclip = None  # type: ignore

try:
    import keyboard  # type: ignore
except Exception:  # pragma: no cover - optional dependency on unsupported platforms
    keyboard = None  # type: ignore


SETTLE_DELAY = 0.05
POLL_INTERVAL = 0.05
POLL_ATTEMPTS = 20
COPY_COMBINATION = "ctrl+c"

_LOGGER = logging.getLogger("kanjireadassist.capture")


class CaptureFailure(enum.Enum):
    NO_SELECTION = "no_selection"
    EMPTY_TEXT = "empty_text"
    CLIPBOARD_UNAVAILABLE = "clipboard_unavailable"


class CaptureError(RuntimeError):
    """Raised when no usable text could be captured from the selection."""

    reason: CaptureFailure


class NoSelectionError(CaptureError):
    reason = CaptureFailure.NO_SELECTION

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Clipboard received no text after {attempts} poll attempts")
        self.attempts = attempts


class EmptyTextError(CaptureError):
    reason = CaptureFailure.EMPTY_TEXT

    def __init__(self) -> None:
        super().__init__("Captured text is empty after trimming")


class ClipboardError(CaptureError):
    reason = CaptureFailure.CLIPBOARD_UNAVAILABLE


class ClipboardBridge(Protocol):  # pragma: no cover - protocol is for type checking only
    def clear(self) -> None:
        """Empty the clipboard."""

    def contains_text(self) -> bool:
        """Return ``True`` if the clipboard currently holds text."""

    def get_text(self) -> str:
        """Return the clipboard text."""


class InputSimulator(Protocol):  # pragma: no cover - protocol is for type checking only
    def send_copy_combination(self) -> None:
        """Send the platform copy keystroke to the focused window."""


class PyperclipClipboard:
    """Clipboard bridge backed by pyperclip."""

    def __init__(self, clipboard_module=pyperclip) -> None:
        if clipboard_module is None:
            raise RuntimeError(
                "The 'pyperclip' package is required. Install it with 'pip install pyperclip'."
            )
        self._clipboard = clipboard_module

    def clear(self) -> None:
        self._call(self._clipboard.copy, "")

    def contains_text(self) -> bool:
        return bool(self._call(self._clipboard.paste))

    def get_text(self) -> str:
        return self._call(self._clipboard.paste) or ""

    def _call(self, func, *args):
        try:
            return func(*args)
        except Exception as exc:
            if pyperclip is not None and isinstance(exc, pyperclip.PyperclipException):
                raise ClipboardError(f"Failed to access clipboard: {exc}") from exc
            raise ClipboardError(f"Unexpected error while accessing clipboard: {exc}") from exc


class KeyboardInputSimulator:
    """Send the copy keystroke with the ``keyboard`` package."""

    def __init__(self, combination: str = COPY_COMBINATION, *, keyboard_module=keyboard) -> None:
        if keyboard_module is None:
            raise RuntimeError(
                "The 'keyboard' package is required. Install it with 'pip install keyboard'."
            )
        self.combination = combination
        self._keyboard = keyboard_module

    def send_copy_combination(self) -> None:
        self._keyboard.send(self.combination)


class CaptureController:
    """Obtain the selected text by clearing the clipboard and simulating a copy.

    The copy keystroke is handled asynchronously by the foreground
    application, so the clipboard is polled a bounded number of times until
    text shows up.
    """

    def __init__(
        self,
        clipboard: ClipboardBridge,
        input_simulator: InputSimulator,
        *,
        settle_delay: float = SETTLE_DELAY,
        poll_interval: float = POLL_INTERVAL,
        poll_attempts: int = POLL_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if poll_attempts < 1:
            raise ValueError("poll_attempts must be at least 1")
        self._clipboard = clipboard
        self._input = input_simulator
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts
        self._sleep = sleep
        self._logger = logger or _LOGGER

    async def capture(self) -> str:
        """Return the trimmed selection or raise :class:`CaptureError`."""

        self._clipboard.clear()
        await self._sleep(self.settle_delay)
        self._input.send_copy_combination()

        if not await self._wait_for_text():
            raise NoSelectionError(self.poll_attempts)

        text = self._clipboard.get_text().strip()
        if not text:
            raise EmptyTextError()
        self._logger.debug("Captured %d characters from selection", len(text))
        return text

    async def _wait_for_text(self) -> bool:
        for attempt in range(1, self.poll_attempts + 1):
            if self._clipboard.contains_text():
                self._logger.debug("Clipboard text available after %d poll(s)", attempt)
                return True
            if attempt < self.poll_attempts:
                await self._sleep(self.poll_interval)
        return False
