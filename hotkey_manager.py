"""Global hotkey registration based on the ``keyboard`` package."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

try:
    import keyboard  # type: ignore
except Exception:  # pragma: no cover - optional dependency on unsupported platforms
    keyboard = None  # type: ignore

from pipeline import CaptureRequest


DEFAULT_HOTKEY = "ctrl+f2"
MIN_TRIGGER_INTERVAL = 0.15

_MODIFIER_ALIASES = {
    "control": "ctrl",
    "ctrl": "ctrl",
    "alt": "alt",
    "shift": "shift",
    "win": "windows",
    "windows": "windows",
    "cmd": "command",
    "command": "command",
}


def normalize_hotkey(combo: str) -> str:
    """Return ``combo`` in the lower-case ``mod+key`` form the keyboard package expects.

    ``"Ctrl-F2"`` and ``" ctrl + f2 "`` both become ``"ctrl+f2"``.
    """

    parts = [part.strip().lower() for part in combo.replace("-", "+").split("+") if part.strip()]
    if not parts:
        raise ValueError(f"Invalid hotkey definition: {combo!r}")

    normalized = [_MODIFIER_ALIASES.get(part, part) for part in parts]
    if all(part in _MODIFIER_ALIASES.values() for part in normalized):
        raise ValueError(f"Hotkey combination is missing a non-modifier key: {combo!r}")
    return "+".join(normalized)


def describe_hotkey(combo: str) -> str:
    """Human readable label, e.g. ``Ctrl+F2``."""

    return "+".join(
        part.upper() if len(part) <= 3 and part[0] == "f" else part.capitalize()
        for part in normalize_hotkey(combo).split("+")
    )


class KeyboardHotkeyService:
    """Forward presses of a global key combination as :class:`CaptureRequest` tokens."""

    def __init__(
        self,
        combo: str,
        on_trigger: Callable[[CaptureRequest], object],
        logger: logging.Logger,
        *,
        keyboard_module=keyboard,
        time_provider: Callable[[], float] = time.perf_counter,
        min_trigger_interval: float = MIN_TRIGGER_INTERVAL,
    ) -> None:
        if keyboard_module is None:
            raise RuntimeError(
                "The 'keyboard' package is required. Install it with 'pip install keyboard'."
            )
        self.combo = normalize_hotkey(combo)
        self._on_trigger = on_trigger
        self._logger = logger
        self._keyboard = keyboard_module
        self._time_provider = time_provider
        self._min_trigger_interval = min_trigger_interval
        self._last_trigger_time: Optional[float] = None
        self._handle: Optional[object] = None
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        with self._lock:
            if self._handle is not None:
                return
            self._handle = self._keyboard.add_hotkey(self.combo, self._on_hotkey)
        self._logger.info("Registered hotkey %s", describe_hotkey(self.combo))

    def stop(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self._keyboard.remove_hotkey(handle)
        except (KeyError, ValueError) as exc:
            self._logger.debug("Hotkey %s was already removed: %s", self.combo, exc)
        self._logger.info("Unregistered hotkey %s", describe_hotkey(self.combo))

    def describe_bindings(self) -> str:
        return f"capture: {describe_hotkey(self.combo)}"

    def _on_hotkey(self) -> None:
        timestamp = self._time_provider()
        with self._lock:
            last = self._last_trigger_time
            if last is not None and timestamp - last < self._min_trigger_interval:
                return
            self._last_trigger_time = timestamp
        try:
            self._on_trigger(CaptureRequest(timestamp=timestamp))
        except Exception as exc:  # pragma: no cover - keyboard hook thread must survive
            self._logger.exception("Error while dispatching hotkey event: %s", exc)
