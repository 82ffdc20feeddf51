import asyncio
import logging
import time
import unittest

from capture_controller import CaptureController, ClipboardError
from enrichment import TRANSLATION_ERROR_TEXT, EnrichmentCoordinator, EnrichmentResult
from fakes import (
    FakeClipboard,
    FakeInputSimulator,
    FakeSleep,
    FakeTranslator,
    FakeTransliterator,
    RecordingSink,
)
from pipeline import CaptureRequest, PipelineDriver, PipelineState
from translation_service import TranslationError


class PipelineTestMixin:
    def _create_driver(
        self,
        selection="日本語",
        *,
        transliterator=None,
        translator=None,
        sink=None,
        sleep=None,
        poll_attempts=5,
    ):
        clipboard = FakeClipboard("stale text")
        simulator = FakeInputSimulator(clipboard, selection)
        capture = CaptureController(
            clipboard,
            simulator,
            poll_attempts=poll_attempts,
            sleep=sleep or FakeSleep(),
        )
        enrichment = EnrichmentCoordinator(
            transliterator or FakeTransliterator("日本語(nihongo)"),
            translator or FakeTranslator("Japanese"),
            provider_timeout=2.0,
        )
        sink = sink or RecordingSink()
        driver = PipelineDriver(capture, enrichment, sink, logger=logging.getLogger("tests.pipeline"))
        self.clipboard = clipboard
        self.simulator = simulator
        self.sink = sink
        return driver


class PipelineRunTests(PipelineTestMixin, unittest.IsolatedAsyncioTestCase):
    async def test_presents_romaji_and_translation(self):
        driver = self._create_driver("日本語")

        result = await driver.run_once()

        self.assertEqual(result, EnrichmentResult("日本語(nihongo)", "Japanese"))
        self.assertEqual(self.sink.shown, [("日本語(nihongo)", "Japanese")])
        self.assertIs(driver.state, PipelineState.IDLE)

    async def test_empty_clipboard_never_presents(self):
        driver = self._create_driver(None)

        result = await driver.run_once()

        self.assertIsNone(result)
        self.assertEqual(self.sink.shown, [])
        self.assertIs(driver.state, PipelineState.IDLE)

    async def test_whitespace_selection_never_presents(self):
        driver = self._create_driver("   \n")
        self.assertIsNone(await driver.run_once())
        self.assertEqual(self.sink.shown, [])

    async def test_translation_failure_is_still_presented(self):
        driver = self._create_driver(translator=FakeTranslator(error=TranslationError("offline")))

        await driver.run_once()

        self.assertEqual(self.sink.shown, [("日本語(nihongo)", TRANSLATION_ERROR_TEXT)])

    async def test_clipboard_error_is_discarded_with_warning(self):
        driver = self._create_driver()

        def locked():
            raise ClipboardError("clipboard locked by another process")

        self.clipboard.on_clear = locked

        with self.assertLogs("tests.pipeline", level="WARNING") as logs:
            result = await driver.run_once()

        self.assertIsNone(result)
        self.assertEqual(self.sink.shown, [])
        self.assertEqual(self.simulator.copy_calls, 0)
        self.assertIs(driver.state, PipelineState.IDLE)
        self.assertTrue(any("clipboard locked" in line for line in logs.output))
        self.assertTrue(any(record.levelno == logging.WARNING for record in logs.records))

        self.clipboard.on_clear = None
        self.assertIsNotNone(await driver.run_once())

    async def test_sink_error_does_not_break_driver(self):
        class BrokenSink:
            def show(self, romaji, english):
                raise RuntimeError("window closed")

        driver = self._create_driver(sink=BrokenSink())
        with self.assertLogs("tests.pipeline", level="ERROR"):
            result = await driver.run_once()

        self.assertIsNotNone(result)
        self.assertIs(driver.state, PipelineState.IDLE)
        self.assertIsNotNone(await driver.run_once())

    async def test_state_transitions_follow_run_order(self):
        states = []

        class StateRecordingSink(RecordingSink):
            def show(self, romaji, english):
                states.append(driver.state)
                super().show(romaji, english)

        driver = self._create_driver(sink=StateRecordingSink())
        self.clipboard.on_clear = lambda: states.append(driver.state)

        await driver.run_once()

        self.assertEqual(states, [PipelineState.CAPTURING, PipelineState.PRESENTING])

    async def test_overlapping_requests_run_a_single_capture(self):
        driver = self._create_driver(translator=FakeTranslator("Japanese", delay=0.05))

        first, second = await asyncio.gather(driver.run_once(), driver.run_once())

        self.assertEqual(self.clipboard.events, ["clear", "copy"])
        self.assertEqual(self.simulator.copy_calls, 1)
        self.assertEqual([first is None, second is None].count(True), 1)
        self.assertEqual(len(self.sink.shown), 1)

    async def test_next_request_runs_after_previous_finishes(self):
        driver = self._create_driver()
        await driver.run_once()
        await driver.run_once()
        self.assertEqual(self.clipboard.events, ["clear", "copy", "clear", "copy"])
        self.assertEqual(len(self.sink.shown), 2)


class PipelineWorkerTests(PipelineTestMixin, unittest.TestCase):
    def tearDown(self) -> None:
        driver = getattr(self, "driver", None)
        if driver is not None:
            driver.stop()

    @staticmethod
    def _wait_until(predicate, timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    def test_submit_without_worker_is_dropped(self):
        driver = self._create_driver()
        self.assertFalse(driver.submit())
        self.assertEqual(self.clipboard.events, [])

    def test_submitted_request_is_presented(self):
        self.driver = self._create_driver()
        self.driver.start()

        self.assertTrue(self.driver.submit(CaptureRequest()))

        self.assertTrue(self.sink.event.wait(timeout=2))
        self.assertEqual(self.sink.shown, [("日本語(nihongo)", "Japanese")])
        self.assertTrue(self._wait_until(lambda: self.driver.state is PipelineState.IDLE))

    def test_requests_during_run_are_ignored(self):
        self.driver = self._create_driver(translator=FakeTranslator("Japanese", delay=0.3))
        self.driver.start()

        self.assertTrue(self.driver.submit())
        self.assertFalse(self.driver.submit())
        self.assertFalse(self.driver.submit())

        self.assertTrue(self.sink.event.wait(timeout=2))
        self.assertEqual(self.clipboard.events, ["clear", "copy"])
        self.assertEqual(len(self.sink.shown), 1)

    def test_worker_survives_unexpected_errors(self):
        self.driver = self._create_driver()
        original_send = self.simulator.send_copy_combination
        calls = []

        def flaky_send():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("input injection blocked")
            original_send()

        self.simulator.send_copy_combination = flaky_send
        self.driver.start()

        with self.assertLogs("tests.pipeline", level="ERROR"):
            self.assertTrue(self.driver.submit())
            self.assertTrue(self._wait_until(lambda: self.driver.submit()))

        self.assertTrue(self.sink.event.wait(timeout=2))
        self.assertEqual(len(calls), 2)
        self.assertEqual(self.sink.shown, [("日本語(nihongo)", "Japanese")])

    def test_stop_ends_worker(self):
        self.driver = self._create_driver()
        self.driver.start()
        self.assertTrue(self.driver.is_running)
        self.driver.stop()
        self.assertFalse(self.driver.is_running)
        self.assertFalse(self.driver.submit())

    def test_restart_after_timed_out_stop_keeps_new_worker(self):
        self.driver = self._create_driver(translator=FakeTranslator("Japanese", delay=0.4))
        self.driver.start()
        self.assertTrue(self.driver.submit())
        old_worker = self.driver._thread

        with self.assertLogs("tests.pipeline", level="WARNING"):
            self.driver.stop(timeout=0.05)

        self.assertTrue(old_worker.is_alive())
        self.assertIs(self.driver._thread, old_worker)
        self.assertFalse(self.driver.is_running)
        self.assertFalse(self.driver.submit())

        self.driver.start()

        self.assertFalse(old_worker.is_alive())
        self.assertIsNot(self.driver._thread, old_worker)
        self.assertTrue(self.driver.is_running)
        self.assertEqual(len(self.sink.shown), 1)

        self.sink.event.clear()
        self.assertTrue(self._wait_until(lambda: self.driver.state is PipelineState.IDLE))
        self.assertTrue(self.driver.submit())
        self.assertTrue(self.sink.event.wait(timeout=2))
        self.assertEqual(len(self.sink.shown), 2)

    def test_request_admitted_before_stop_releases_its_slot(self):
        self.driver = self._create_driver(translator=FakeTranslator("Japanese", delay=0.1))
        self.driver.start()

        self.assertTrue(self.driver.submit())
        self.driver.stop()

        self.assertFalse(self.driver.is_running)
        self.assertEqual(len(self.sink.shown), 1)
        self.assertFalse(self.driver._in_flight)

        self.driver.start()
        self.assertTrue(self.driver.submit())
        self.assertTrue(self._wait_until(lambda: len(self.sink.shown) == 2))


if __name__ == "__main__":  # pragma: no cover - allows direct execution
    unittest.main()
