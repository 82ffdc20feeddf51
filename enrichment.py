"""Run transliteration and translation side by side for captured text."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from translation_service import DEFAULT_DEST_LANGUAGE, TranslationResult


PROVIDER_TIMEOUT = 10.0

TRANSLITERATION_ERROR_PREFIX = "Romaji Error"
TRANSLATION_ERROR_TEXT = "Translation Error (Check Internet connection)"

_LOGGER = logging.getLogger("kanjireadassist.enrichment")


class TransliterationProvider(Protocol):  # pragma: no cover - protocol is for type checking only
    async def convert(self, text: str) -> str:
        """Return ``text`` with inline romaji annotations."""


class TranslationProvider(Protocol):  # pragma: no cover - protocol is for type checking only
    async def translate_async(self, text: str, dest: str) -> TranslationResult:
        """Translate ``text`` into ``dest``."""


@dataclass(frozen=True)
class EnrichmentResult:
    transliteration: str
    translation: str
    transliteration_failed: bool = False
    translation_failed: bool = False


@dataclass(frozen=True)
class ProviderOutcome:
    """Terminal state of a single provider call."""

    value: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def describe_error(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or type(exc).__name__


class EnrichmentCoordinator:
    """Join the romaji and translation providers without coupling their failures."""

    def __init__(
        self,
        transliterator: TransliterationProvider,
        translator: TranslationProvider,
        *,
        dest_language: str = DEFAULT_DEST_LANGUAGE,
        provider_timeout: Optional[float] = PROVIDER_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._transliterator = transliterator
        self._translator = translator
        self.dest_language = dest_language
        self.provider_timeout = provider_timeout
        self._logger = logger or _LOGGER

    async def enrich(self, text: str) -> EnrichmentResult:
        romaji, english = await asyncio.gather(
            self._guarded("transliteration", lambda: self._transliterator.convert(text)),
            self._guarded("translation", lambda: self._translate(text)),
        )
        return EnrichmentResult(
            transliteration=romaji.value if romaji.ok else self._transliteration_sentinel(romaji.error),
            translation=english.value if english.ok else self._translation_sentinel(english.error),
            transliteration_failed=not romaji.ok,
            translation_failed=not english.ok,
        )

    async def _translate(self, text: str) -> str:
        translation = await self._translator.translate_async(text, self.dest_language)
        return getattr(translation, "text", str(translation))

    async def _guarded(self, name: str, call: Callable[[], Awaitable[Any]]) -> ProviderOutcome:
        try:
            if self.provider_timeout is None:
                value = await call()
            else:
                value = await asyncio.wait_for(call(), timeout=self.provider_timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as exc:
            self._logger.warning("%s provider timed out after %ss", name, self.provider_timeout)
            return ProviderOutcome(error=exc)
        except Exception as exc:
            self._logger.warning("%s provider failed: %s", name, describe_error(exc))
            return ProviderOutcome(error=exc)

        if not isinstance(value, str) or not value.strip():
            self._logger.warning("%s provider returned an empty result", name)
            return ProviderOutcome(error=ValueError(f"{name} provider returned an empty result"))
        return ProviderOutcome(value=value)

    def _transliteration_sentinel(self, error: Optional[BaseException]) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"{TRANSLITERATION_ERROR_PREFIX}: timed out after {self.provider_timeout}s"
        return f"{TRANSLITERATION_ERROR_PREFIX}: {describe_error(error) if error else 'unknown error'}"

    def _translation_sentinel(self, error: Optional[BaseException]) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"Translation Error (timed out after {self.provider_timeout}s)"
        return TRANSLATION_ERROR_TEXT
