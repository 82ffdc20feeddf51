"""Desktop utility that shows inline romaji and an English translation of the selection."""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import sys
import tempfile
import threading
from dataclasses import asdict, dataclass, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Callable, Optional, Sequence, Tuple

try:  # pragma: no cover - optional dependency for system tray support
    import pystray  # type: ignore
    from pystray import MenuItem  # type: ignore
except Exception:  # pragma: no cover - missing package or no usable display backend
    pystray = None  # type: ignore
    MenuItem = None  # type: ignore

try:  # pragma: no cover - optional dependency for system tray support
    from PIL import Image, ImageDraw  # type: ignore
except ImportError:  # pragma: no cover - handled when starting the tray icon
    Image = None  # type: ignore
    ImageDraw = None  # type: ignore

from capture_controller import (
    CaptureController,
    ClipboardBridge,
    InputSimulator,
    KeyboardInputSimulator,
    PyperclipClipboard,
)
from enrichment import EnrichmentCoordinator, TranslationProvider, TransliterationProvider
from hotkey_manager import KeyboardHotkeyService, describe_hotkey, normalize_hotkey
from pipeline import CaptureRequest, PipelineDriver, PresentationSink
from translation_service import GoogleTranslateClient
from transliteration_service import ROMAJI_SYSTEMS, KakasiTransliterator


APP_NAME = "Kanji Read-Assist"

LOG_FILE_NAME = "kanjireadassist.log"
LOG_MAX_BYTES = 2_097_152
LOG_BACKUP_COUNT = 3

PREFERENCES_FILE = Path.home() / ".kanjireadassist_preferences.json"


@dataclass(frozen=True)
class AppSettings:
    hotkey: str = "ctrl+f2"
    copy_combo: str = "ctrl+c"
    dest_language: str = "en"
    romaji_system: str = "hepburn"
    brackets: Tuple[str, str] = ("(", ")")
    settle_delay: float = 0.05
    poll_interval: float = 0.05
    poll_attempts: int = 20
    provider_timeout: Optional[float] = 10.0
    translation_http_timeout: float = 5.0
    min_trigger_interval: float = 0.15


def _get_app_logger(log_dir: Optional[Path] = None, *, verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger("kanjireadassist")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if logger.handlers:
        return logger

    log_dir = log_dir or PREFERENCES_FILE.parent
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        handler = None
    if handler is not None:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger


def _load_preferences(path: Path = PREFERENCES_FILE) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _save_preferences(preferences: dict, path: Path = PREFERENCES_FILE) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(preferences, indent=2, ensure_ascii=False), encoding="utf-8")
    except OSError:
        pass


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def settings_from_preferences(preferences: dict) -> AppSettings:
    """Merge a preferences mapping over the defaults, ignoring invalid values."""

    settings = AppSettings()
    updates: dict = {}

    hotkey = preferences.get("hotkey")
    if isinstance(hotkey, str):
        try:
            updates["hotkey"] = normalize_hotkey(hotkey)
        except ValueError:
            pass

    copy_combo = preferences.get("copy_combo")
    if isinstance(copy_combo, str) and copy_combo.strip():
        updates["copy_combo"] = copy_combo.strip().lower()

    dest = preferences.get("dest_language")
    if isinstance(dest, str) and dest.strip():
        updates["dest_language"] = dest.strip()

    system = preferences.get("romaji_system")
    if system in ROMAJI_SYSTEMS:
        updates["romaji_system"] = system

    brackets = preferences.get("brackets")
    if (
        isinstance(brackets, (list, tuple))
        and len(brackets) == 2
        and all(isinstance(part, str) for part in brackets)
    ):
        updates["brackets"] = (brackets[0], brackets[1])

    for key in ("settle_delay", "poll_interval", "min_trigger_interval"):
        value = preferences.get(key)
        if _is_number(value) and value >= 0:
            updates[key] = float(value)

    for key in ("translation_http_timeout",):
        value = preferences.get(key)
        if _is_number(value) and value > 0:
            updates[key] = float(value)

    attempts = preferences.get("poll_attempts")
    if isinstance(attempts, int) and not isinstance(attempts, bool) and attempts >= 1:
        updates["poll_attempts"] = attempts

    if "provider_timeout" in preferences:
        timeout = preferences["provider_timeout"]
        # None or a non-positive number disables the timeout, as --timeout 0 does.
        if timeout is None or (_is_number(timeout) and timeout <= 0):
            updates["provider_timeout"] = None
        elif _is_number(timeout):
            updates["provider_timeout"] = float(timeout)

    return replace(settings, **updates)


def load_settings(path: Path = PREFERENCES_FILE) -> AppSettings:
    """Load settings, writing the defaults on first run so they can be edited."""

    preferences = _load_preferences(path)
    settings = settings_from_preferences(preferences)
    if not path.exists():
        _save_preferences(settings_to_preferences(settings), path)
    return settings


def settings_to_preferences(settings: AppSettings) -> dict:
    data = asdict(settings)
    data["brackets"] = list(settings.brackets)
    return data


class SingleInstanceError(RuntimeError):
    """Raised when another instance of the application is already running."""


class SingleInstanceGuard:
    """Hold an exclusive lock file so only one process drives the clipboard."""

    def __init__(self, name: str, lock_dir: Optional[Path] = None) -> None:
        self._lock_path = Path(lock_dir or tempfile.gettempdir()) / f"{name}.lock"
        self._lock_file: Optional[IO[str]] = None

    def acquire(self) -> None:
        if self._lock_file is not None:
            return
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(self._lock_path, "a+")
        try:
            self._lock(lock_file)
        except OSError as exc:
            lock_file.close()
            raise SingleInstanceError("Another instance is already running") from exc
        self._lock_file = lock_file

    def release(self) -> None:
        lock_file, self._lock_file = self._lock_file, None
        if lock_file is None:
            return
        try:
            with contextlib.suppress(OSError):
                self._unlock(lock_file)
        finally:
            lock_file.close()
            with contextlib.suppress(OSError):
                self._lock_path.unlink()

    @staticmethod
    def _lock(lock_file: IO[str]) -> None:
        if sys.platform == "win32":  # pragma: no cover - platform specific
            import msvcrt  # type: ignore

            lock_file.seek(0)
            msvcrt.locking(lock_file.fileno(), msvcrt.LK_NBLCK, 1)
        else:  # pragma: no cover - exercised on non-Windows platforms
            import fcntl  # type: ignore

            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

    @staticmethod
    def _unlock(lock_file: IO[str]) -> None:
        if sys.platform == "win32":  # pragma: no cover - platform specific
            import msvcrt  # type: ignore

            lock_file.seek(0)
            msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
        else:  # pragma: no cover - exercised on non-Windows platforms
            import fcntl  # type: ignore

            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def __enter__(self) -> "SingleInstanceGuard":
        self.acquire()
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.release()


class SystemTrayController:
    """Tray icon with an Exit command and a ready notification."""

    def __init__(self, app: "ReadAssistApp", tooltip: str) -> None:
        self._app = app
        self._tooltip = tooltip
        self._icon: Optional["pystray.Icon"] = None

    @staticmethod
    def _is_supported() -> bool:
        return pystray is not None and MenuItem is not None and Image is not None and ImageDraw is not None

    def start(self) -> None:
        if not self._is_supported():
            logging.getLogger("kanjireadassist.tray").warning(
                "System tray icon is unavailable because required dependencies are missing."
            )
            return

        assert pystray is not None  # noqa: S101 - guarded by _is_supported
        menu = pystray.Menu(MenuItem("Exit", self._on_exit))
        self._icon = pystray.Icon("kanjireadassist", self._create_icon_image(), self._tooltip, menu=menu)
        self._icon.run_detached()
        self._notify_ready()

    def stop(self) -> None:
        if self._icon is not None:
            self._icon.stop()
            self._icon = None

    def _notify_ready(self) -> None:
        if self._icon is None:
            return
        try:
            self._icon.notify(f"Select text → Press {describe_hotkey(self._app.settings.hotkey)}", "Tool Ready")
        except (NotImplementedError, AttributeError):
            pass  # backend without notification support

    def _on_exit(self, icon: "pystray.Icon", _: object) -> None:
        self._app.stop()
        icon.stop()

    @staticmethod
    def _create_icon_image() -> "Image.Image":
        assert Image is not None and ImageDraw is not None  # noqa: S101 - guarded by _is_supported

        size = 64
        image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        draw.ellipse((8, 8, size - 8, size - 8), fill=(200, 40, 50, 255))
        draw.rectangle((20, size // 2 - 4, size - 20, size // 2 + 4), fill=(255, 255, 255, 255))
        return image


class ReadAssistApp:
    """Wire the hotkey, the capture pipeline and the result window together."""

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        *,
        clipboard: Optional[ClipboardBridge] = None,
        input_simulator: Optional[InputSimulator] = None,
        transliterator: Optional[TransliterationProvider] = None,
        translator: Optional[TranslationProvider] = None,
        presentation_sink: Optional[PresentationSink] = None,
        hotkey_service_factory: Optional[
            Callable[[str, Callable[[CaptureRequest], object], logging.Logger], KeyboardHotkeyService]
        ] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings or AppSettings()
        self._logger = logger or logging.getLogger("kanjireadassist")
        self._stop_event = threading.Event()
        self._hotkey_service_factory = hotkey_service_factory
        self._hotkey_service: Optional[KeyboardHotkeyService] = None
        self._tray_controller: Optional[SystemTrayController] = None

        capture = CaptureController(
            clipboard or PyperclipClipboard(),
            input_simulator or KeyboardInputSimulator(self.settings.copy_combo),
            settle_delay=self.settings.settle_delay,
            poll_interval=self.settings.poll_interval,
            poll_attempts=self.settings.poll_attempts,
            logger=self._logger.getChild("capture"),
        )
        enrichment = EnrichmentCoordinator(
            transliterator
            or KakasiTransliterator(self.settings.romaji_system, self.settings.brackets),
            translator or GoogleTranslateClient(timeout=self.settings.translation_http_timeout),
            dest_language=self.settings.dest_language,
            provider_timeout=self.settings.provider_timeout,
            logger=self._logger.getChild("enrichment"),
        )
        self._presentation_sink = presentation_sink
        self.pipeline = PipelineDriver(
            capture,
            enrichment,
            self,
            logger=self._logger.getChild("pipeline"),
        )

    @property
    def tooltip(self) -> str:
        return f"Romaji + {self.settings.dest_language.upper()} ({describe_hotkey(self.settings.hotkey)})"

    def start(self, *, tray_controller: Optional[SystemTrayController] = None) -> None:
        """Start listening for the hotkey and block until :meth:`stop` is called."""

        self._tray_controller = tray_controller
        self.pipeline.start()
        self._hotkey_service = self._create_hotkey_service()
        if self._hotkey_service is not None:
            try:
                self._hotkey_service.start()
                self._logger.info("Hotkey service started with %s", self._hotkey_service.describe_bindings())
            except Exception as exc:
                self._logger.exception("Failed to start hotkey service: %s", exc)
                self._hotkey_service = None

        self._logger.info(
            "%s is running. Select text and press %s.", APP_NAME, describe_hotkey(self.settings.hotkey)
        )
        if self._tray_controller is not None:
            self._tray_controller.start()

        try:
            self._stop_event.wait()
        except KeyboardInterrupt:  # pragma: no cover - manual console interruption
            self.stop()
        finally:
            if self._tray_controller is not None:
                self._tray_controller.stop()
            if self._hotkey_service is not None:
                self._hotkey_service.stop()
                self._hotkey_service = None
            self.pipeline.stop()
            close = getattr(self._presentation_sink, "close", None)
            if close is not None:
                close()
            self._logger.info("%s stopped", APP_NAME)

    def stop(self) -> None:
        """Signal the application to shut down."""

        self._stop_event.set()

    def trigger(self) -> bool:
        """Start a capture as if the hotkey had been pressed."""

        return self.pipeline.submit()

    def _create_hotkey_service(self) -> Optional[KeyboardHotkeyService]:
        try:
            if self._hotkey_service_factory is not None:
                return self._hotkey_service_factory(
                    self.settings.hotkey, self.pipeline.submit, self._logger.getChild("hotkeys")
                )
            return KeyboardHotkeyService(
                self.settings.hotkey,
                self.pipeline.submit,
                self._logger.getChild("hotkeys"),
                min_trigger_interval=self.settings.min_trigger_interval,
            )
        except Exception as exc:
            self._logger.exception("Failed to create hotkey service: %s", exc)
            return None

    def show(self, romaji: str, english: str) -> None:
        """Forward a result to the presentation sink, opening the popup window on first use."""

        if self._presentation_sink is None:
            from result_window import ResultWindowManager

            self._presentation_sink = ResultWindowManager()
        self._presentation_sink.show(romaji, english)


def _hotkey_argument(value: str) -> str:
    try:
        return normalize_hotkey(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Show inline romaji and an English translation of the selected text."
    )
    parser.add_argument(
        "--hotkey",
        type=_hotkey_argument,
        default=None,
        help="Global hotkey (default: from preferences, ctrl+f2).",
    )
    parser.add_argument("--dest", default=None, help="Translation target language (default: en).")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-provider timeout in seconds for romaji and translation.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log pipeline state transitions.")
    return parser.parse_args(argv)


def apply_arguments(settings: AppSettings, args: argparse.Namespace) -> AppSettings:
    updates: dict = {}
    if args.hotkey:
        updates["hotkey"] = normalize_hotkey(args.hotkey)
    if args.dest:
        updates["dest_language"] = args.dest
    if args.timeout is not None:
        updates["provider_timeout"] = args.timeout if args.timeout > 0 else None
    return replace(settings, **updates)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logger = _get_app_logger(verbose=args.verbose)
    try:
        with SingleInstanceGuard("kanjireadassist"):
            settings = apply_arguments(load_settings(), args)
            app = ReadAssistApp(settings, logger=logger)
            app.start(tray_controller=SystemTrayController(app, app.tooltip))
    except SingleInstanceError:
        logger.warning("%s is already running.", APP_NAME)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
