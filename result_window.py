"""Popup window that shows the romaji and English results."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Optional

try:
    import tkinter as tk
    from tkinter import scrolledtext, font as tkfont
except ImportError as exc:  # pragma: no cover - tkinter is part of stdlib on Windows
    raise SystemExit("tkinter is required to display the result window") from exc


WINDOW_TITLE = "Translation Result"
WINDOW_SIZE = (650, 650)
SCREEN_MARGIN = 30

_LOGGER = logging.getLogger("kanjireadassist.window")


class ResultWindowManager:
    """Create and reuse a single Tk window for displaying results.

    Tk is not thread safe, so the window lives on its own thread and
    :meth:`show` only hands results over through a queue.
    """

    def __init__(self, title: str = WINDOW_TITLE) -> None:
        self._title = title
        self._queue: "queue.Queue[tuple[str, str]]" = queue.Queue()
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._window: Optional[tk.Tk] = None

    def show(self, romaji: str, english: str) -> None:
        if self._thread is None or not self._thread.is_alive():
            self._ready.clear()
            self._thread = threading.Thread(target=self._run_window, name="ResultWindow", daemon=True)
            self._thread.start()
            self._ready.wait()
        self._queue.put((romaji, english))

    def close(self) -> None:
        window = self._window
        if window is not None:
            try:
                window.after(0, window.destroy)
            except (RuntimeError, tk.TclError):
                pass

    def _run_window(self) -> None:
        try:
            window = tk.Tk()
        except tk.TclError as exc:
            _LOGGER.error("Unable to open result window: %s", exc)
            self._ready.set()
            return
        self._window = window
        window.title(self._title)
        width, height = WINDOW_SIZE
        window.geometry(f"{width}x{height}")
        window.configure(bg="#f0f0f0")
        window.withdraw()

        label_font = tkfont.Font(family="Segoe UI", size=11, weight="bold")
        text_font = tkfont.Font(family="Meiryo UI", size=13)

        content_pane = tk.PanedWindow(window, orient=tk.VERTICAL, sashwidth=6)
        content_pane.pack(fill=tk.BOTH, expand=True, padx=10, pady=10)

        def add_section(label: str, minsize: int) -> scrolledtext.ScrolledText:
            frame = tk.Frame(content_pane)
            content_pane.add(frame, minsize=minsize)
            tk.Label(frame, text=label, font=label_font).pack(anchor="w", pady=(0, 4))
            box = scrolledtext.ScrolledText(frame, wrap=tk.WORD, height=8, bg="white")
            box.configure(state=tk.DISABLED, font=text_font)
            box.pack(fill=tk.BOTH, expand=True)
            return box

        romaji_box = add_section("ROMAJI (Inline):", 120)
        english_box = add_section("ENGLISH TRANSLATION:", 180)

        def set_text(box: scrolledtext.ScrolledText, value: str) -> None:
            box.configure(state=tk.NORMAL)
            box.delete("1.0", tk.END)
            box.insert(tk.END, value)
            box.configure(state=tk.DISABLED)

        def hide_window() -> None:
            window.withdraw()

        def handle_escape(event: tk.Event) -> str:
            hide_window()
            return "break"

        window.protocol("WM_DELETE_WINDOW", hide_window)
        window.bind("<Escape>", handle_escape)

        def place_bottom_right() -> None:
            window.update_idletasks()
            x = max(window.winfo_screenwidth() - width - SCREEN_MARGIN, 0)
            y = max(window.winfo_screenheight() - height - SCREEN_MARGIN, 0)
            window.geometry(f"+{x}+{y}")

        def bring_to_front() -> None:
            place_bottom_right()
            window.deiconify()
            window.lift()
            window.attributes("-topmost", True)
            window.focus_force()

        def apply_update() -> None:
            try:
                while True:
                    romaji, english = self._queue.get_nowait()
                    set_text(romaji_box, romaji)
                    set_text(english_box, english)
                    bring_to_front()
            except queue.Empty:
                pass
            window.after(100, apply_update)

        self._ready.set()
        apply_update()
        window.mainloop()
        self._window = None
