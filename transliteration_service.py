"""Inline romaji annotation of Japanese text using pykakasi."""

from __future__ import annotations

import asyncio
import re
import threading
from typing import Callable, Iterable, Mapping, Optional, Tuple

try:  # pragma: no cover - executed during module import
    import pykakasi  # type: ignore
except ImportError:  # pragma: no cover - handled in KakasiTransliterator
    pykakasi = None  # type: ignore


ROMAJI_SYSTEMS = ("hepburn", "kunrei", "passport")
DEFAULT_BRACKETS: Tuple[str, str] = ("(", ")")

# Hiragana, katakana, CJK ideographs and the iteration/closing marks.
_JAPANESE_RE = re.compile(r"[぀-ヿ㐀-䶿一-鿿々〆ｦ-ﾟ]")


class TransliterationError(RuntimeError):
    """Raised when text cannot be converted to romaji."""


def _default_kakasi_factory():
    if pykakasi is None:
        raise TransliterationError(
            "The 'pykakasi' package is required. Install it with 'pip install pykakasi'."
        )
    return pykakasi.kakasi()


class KakasiTransliterator:
    """Render text as ``original(romaji)`` for every Japanese token.

    Tokens without Japanese characters (Latin text, digits, punctuation) are
    copied through unchanged, so ``"日本語 OK"`` becomes
    ``"日本語(nihongo) OK"``.
    """

    def __init__(
        self,
        system: str = "hepburn",
        brackets: Tuple[str, str] = DEFAULT_BRACKETS,
        *,
        kakasi_factory: Callable[[], object] = _default_kakasi_factory,
    ) -> None:
        if system not in ROMAJI_SYSTEMS:
            raise ValueError(f"Unknown romaji system: {system!r}")
        if len(brackets) != 2:
            raise ValueError("brackets must be an (open, close) pair")
        self.system = system
        self.brackets = (brackets[0], brackets[1])
        self._kakasi_factory = kakasi_factory
        self._kakasi: Optional[object] = None
        self._kakasi_lock = threading.Lock()

    @property
    def kakasi(self):
        with self._kakasi_lock:
            if self._kakasi is None:
                self._kakasi = self._kakasi_factory()
            converter = self._kakasi
        assert converter is not None  # For type checkers
        return converter

    def convert_sync(self, text: str) -> str:
        if not text:
            raise TransliterationError("Cannot transliterate empty text")
        try:
            tokens = self.kakasi.convert(text)
        except TransliterationError:
            raise
        except Exception as exc:
            raise TransliterationError(f"pykakasi failed to convert text: {exc}") from exc
        return self.annotate(tokens)

    async def convert(self, text: str) -> str:
        return await asyncio.to_thread(self.convert_sync, text)

    def annotate(self, tokens: Iterable[Mapping[str, str]]) -> str:
        """Join pykakasi tokens, bracketing the reading after Japanese words."""

        opening, closing = self.brackets
        parts = []
        for token in tokens:
            original = token.get("orig", "")
            reading = (token.get(self.system) or "").strip()
            if reading and reading != original and _JAPANESE_RE.search(original):
                parts.append(f"{original}{opening}{reading}{closing}")
            else:
                parts.append(original)
        return "".join(parts)
