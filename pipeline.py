"""Hotkey-to-popup pipeline: capture, enrich, present."""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from capture_controller import CaptureController, CaptureError, ClipboardError
from enrichment import EnrichmentCoordinator, EnrichmentResult


_LOGGER = logging.getLogger("kanjireadassist.pipeline")


class PipelineState(enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    CAPTURE_FAILED = "capture_failed"
    CAPTURED = "captured"
    ENRICHING = "enriching"
    PRESENTING = "presenting"


@dataclass(frozen=True)
class CaptureRequest:
    """Token produced each time the global hotkey fires."""

    timestamp: float = field(default_factory=time.perf_counter)


class PresentationSink(Protocol):  # pragma: no cover - protocol is for type checking only
    def show(self, romaji: str, english: str) -> None:
        """Display the enrichment result."""


class PipelineDriver:
    """Serialises pipeline runs so only one capture touches the clipboard at a time.

    Requests that arrive while a run is in flight are dropped rather than
    queued: the clipboard is a single shared slot and a second clear/copy
    sequence would clobber the first one's text.
    """

    def __init__(
        self,
        capture_controller: CaptureController,
        enrichment: EnrichmentCoordinator,
        sink: PresentationSink,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._capture = capture_controller
        self._enrichment = enrichment
        self._sink = sink
        self._logger = logger or _LOGGER

        self._state = PipelineState.IDLE
        self._state_lock = threading.Lock()
        self._in_flight = False

        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._requests: Optional["asyncio.Queue[Optional[CaptureRequest]]"] = None
        self._ready = threading.Event()
        self._stopping = False

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and self._loop is not None and not self._stopping

    # Admission ---------------------------------------------------------

    def _admit(self) -> bool:
        with self._state_lock:
            if self._in_flight:
                return False
            self._in_flight = True
            return True

    def _release(self) -> None:
        with self._state_lock:
            self._in_flight = False
            self._state = PipelineState.IDLE

    def _set_state(self, state: PipelineState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        self._logger.debug("Pipeline state %s -> %s", previous.value, state.value)

    # Runs --------------------------------------------------------------

    async def run_once(self, request: Optional[CaptureRequest] = None) -> Optional[EnrichmentResult]:
        """Execute a single run, or return ``None`` if one is already in flight."""

        if not self._admit():
            self._logger.info("Ignoring capture request; a run is already in progress")
            return None
        try:
            return await self._execute(request or CaptureRequest())
        finally:
            self._release()

    async def _execute(self, request: CaptureRequest) -> Optional[EnrichmentResult]:
        self._set_state(PipelineState.CAPTURING)
        try:
            text = await self._capture.capture()
        except ClipboardError as exc:
            self._set_state(PipelineState.CAPTURE_FAILED)
            self._logger.warning("Capture discarded: %s", exc)
            return None
        except CaptureError as exc:
            self._set_state(PipelineState.CAPTURE_FAILED)
            self._logger.info("Capture discarded (%s): %s", exc.reason.value, exc)
            return None

        self._set_state(PipelineState.CAPTURED)
        self._set_state(PipelineState.ENRICHING)
        result = await self._enrichment.enrich(text)

        self._set_state(PipelineState.PRESENTING)
        try:
            self._sink.show(result.transliteration, result.translation)
        except Exception as exc:
            self._logger.exception("Presentation failed: %s", exc)
        self._logger.info(
            "Run finished in %.3fs (romaji_failed=%s, translation_failed=%s)",
            time.perf_counter() - request.timestamp,
            result.transliteration_failed,
            result.translation_failed,
        )
        return result

    # Worker thread -----------------------------------------------------

    def start(self, timeout: float = 5.0) -> None:
        previous = self._thread
        if previous is not None and previous.is_alive():
            if not self._stopping:
                return
            # A stop() timed out while a run was still finishing.
            previous.join(timeout=timeout)
            if previous.is_alive():
                raise RuntimeError("Previous pipeline worker is still shutting down")
        self._ready.clear()
        self._stopping = False
        self._thread = threading.Thread(target=self._run_worker, name="PipelineWorker", daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout=5):
            raise RuntimeError("Pipeline worker failed to initialize within timeout")

    def stop(self, timeout: float = 5.0) -> None:
        with self._state_lock:
            self._stopping = True
            loop, requests = self._loop, self._requests
            if loop is not None and requests is not None:
                try:
                    # Queued behind any admitted request, so that run is released first.
                    loop.call_soon_threadsafe(requests.put_nowait, None)
                except RuntimeError:
                    pass  # loop already closed
        thread = self._thread
        if thread is None:
            return
        thread.join(timeout=timeout)
        if thread.is_alive():
            self._logger.warning(
                "Pipeline worker did not exit within %.1fs; it will stop after the current run", timeout
            )
        elif self._thread is thread:
            self._thread = None

    def submit(self, request: Optional[CaptureRequest] = None) -> bool:
        """Queue a run from any thread. Returns ``False`` if the request was dropped."""

        with self._state_lock:
            loop, requests = self._loop, self._requests
            if loop is None or requests is None or self._stopping:
                reason = "not running"
            elif self._in_flight:
                reason = "busy"
            else:
                self._in_flight = True
                try:
                    loop.call_soon_threadsafe(requests.put_nowait, request or CaptureRequest())
                    reason = None
                except RuntimeError:
                    self._in_flight = False
                    reason = "not running"
        if reason == "busy":
            self._logger.info("Ignoring capture request; a run is already in progress")
            return False
        if reason is not None:
            self._logger.warning("Dropping capture request; pipeline worker is not running")
            return False
        return True

    def _run_worker(self) -> None:
        try:
            asyncio.run(self._consume())
        except Exception as exc:  # pragma: no cover - logging runtime issues
            self._logger.exception("Pipeline worker crashed: %s", exc)
        finally:
            self._ready.set()

    async def _consume(self) -> None:
        requests: "asyncio.Queue[Optional[CaptureRequest]]" = asyncio.Queue()
        loop = asyncio.get_running_loop()
        with self._state_lock:
            self._requests = requests
            self._loop = loop
        self._ready.set()
        try:
            while True:
                request = await requests.get()
                if request is None:
                    break
                try:
                    await self._execute(request)
                except Exception as exc:
                    self._logger.exception("Error while processing capture request: %s", exc)
                finally:
                    self._release()
        finally:
            with self._state_lock:
                # A restarted worker may already own these.
                if self._loop is loop:
                    self._loop = None
                    self._requests = None
