"""Translation utilities for Kanji Read-Assist."""

from __future__ import annotations

import asyncio
import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Optional


DEFAULT_DEST_LANGUAGE = "en"


class TranslationError(RuntimeError):
    """Raised when the translation service cannot complete a request."""


@dataclass
class TranslationResult:
    text: str
    detected_source: Optional[str]


class GoogleTranslateClient:
    """Minimal client for the unofficial Google Translate web API."""

    endpoint = "https://translate.googleapis.com/translate_a/single"

    def __init__(self, timeout: float = 5.0, *, source_language: Optional[str] = None) -> None:
        self.timeout = timeout
        self.source_language = source_language

    def translate(self, text: str, src: Optional[str], dest: str) -> TranslationResult:
        if not text:
            raise TranslationError("Cannot translate empty text")

        params = {
            "client": "gtx",
            "dt": "t",
            "sl": (src or "auto"),
            "tl": dest,
            "q": text,
        }
        url = f"{self.endpoint}?{urllib.parse.urlencode(params)}"
        request = urllib.request.Request(url, headers={"User-Agent": "Mozilla/5.0"})

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                payload = response.read()
        except (socket.timeout, TimeoutError) as exc:
            raise TranslationError(
                f"Request to Google Translate timed out after {self.timeout}s"
            ) from exc
        except urllib.error.URLError as exc:  # pragma: no cover - network errors are runtime issues
            raise TranslationError("Network error while contacting Google Translate") from exc

        return self._parse_payload(payload)

    async def translate_async(self, text: str, dest: str = DEFAULT_DEST_LANGUAGE) -> TranslationResult:
        """Run :meth:`translate` on a worker thread so the event loop stays free."""

        return await asyncio.to_thread(self.translate, text, self.source_language, dest)

    @staticmethod
    def _parse_payload(payload: bytes) -> TranslationResult:
        try:
            data = json.loads(payload.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TranslationError("Invalid response from Google Translate") from exc

        try:
            segments = data[0]
            translated_text = "".join(part[0] for part in segments if part and part[0])
        except (IndexError, KeyError, TypeError) as exc:  # pragma: no cover - guards against API changes
            raise TranslationError("Unexpected translation response structure") from exc

        detected_source = None
        if len(data) > 2 and isinstance(data[2], str):
            detected_source = data[2]

        return TranslationResult(text=translated_text, detected_source=detected_source)
