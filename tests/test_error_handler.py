import os
import sys
import unittest
from unittest.mock import MagicMock

import requests

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from error_handler import ErrorHandler  # noqa: E402
from exceptions import GenerationError  # noqa: E402


class TestErrorHandler(unittest.TestCase):

    def setUp(self):
        self.sleeps = []
        self.handler = ErrorHandler(max_retries=3, retry_interval=0.5, sleep=self.sleeps.append)

    def test_handle_error_records_details(self):
        self.handler.handle_error(TimeoutError("slow"), {"tier": "store", "text": "queen"})
        self.handler.handle_error(ValueError("bad"), {"tier": "generator"})

        summary = self.handler.get_error_summary()
        self.assertEqual(summary["total_errors"], 2)
        self.assertEqual(summary["error_count_by_type"], {"TimeoutError": 1, "ValueError": 1})
        self.assertEqual(summary["recoverable_errors"], 1)
        self.assertEqual(summary["unrecoverable_errors"], 1)
        self.assertEqual(summary["latest_error"]["context"], {"tier": "generator"})

    def test_details_are_bounded(self):
        handler = ErrorHandler(max_details=3)
        for i in range(5):
            handler.handle_error(ValueError(str(i)), {})
        self.assertEqual(len(handler.error_details), 3)
        self.assertEqual(handler.get_error_summary()["total_errors"], 5)

    def test_recoverable_classification(self):
        self.assertTrue(self.handler.is_recoverable(requests.Timeout()))
        self.assertTrue(self.handler.is_recoverable(ConnectionError()))
        self.assertTrue(self.handler.is_recoverable(GenerationError("busy", status_code=503)))
        self.assertFalse(self.handler.is_recoverable(GenerationError("denied", status_code=401)))
        self.assertFalse(self.handler.is_recoverable(ValueError()))

    def test_wrapped_transport_error_is_recoverable(self):
        try:
            try:
                raise requests.ConnectionError("refused")
            except requests.ConnectionError as e:
                raise GenerationError("request failed") from e
        except GenerationError as wrapped:
            self.assertTrue(self.handler.is_recoverable(wrapped))

    def test_retry_succeeds_after_transient_failures(self):
        operation = MagicMock(side_effect=[TimeoutError(), TimeoutError(), "vector"])
        self.assertEqual(self.handler.retry_operation(operation, ("queen",)), "vector")
        self.assertEqual(operation.call_count, 3)
        self.assertEqual(self.sleeps, [0.5, 1.0])

    def test_retry_gives_up_after_max_retries(self):
        operation = MagicMock(side_effect=TimeoutError("still slow"))
        with self.assertRaises(TimeoutError):
            self.handler.retry_operation(operation)
        self.assertEqual(operation.call_count, 4)
        self.assertEqual(self.sleeps, [0.5, 1.0, 2.0])

    def test_unrecoverable_error_not_retried(self):
        operation = MagicMock(side_effect=ValueError("broken"))
        with self.assertRaises(ValueError):
            self.handler.retry_operation(operation)
        self.assertEqual(operation.call_count, 1)
        self.assertEqual(self.sleeps, [])

    def test_before_attempt_runs_for_every_attempt(self):
        attempts = []
        operation = MagicMock(side_effect=[TimeoutError(), "vector"])
        result = self.handler.retry_operation(operation, before_attempt=attempts.append)
        self.assertEqual(result, "vector")
        self.assertEqual(attempts, [0, 1])

    def test_before_attempt_can_stop_retries(self):
        def refuse_after_first(attempt):
            if attempt > 0:
                raise PermissionError("no more attempts")

        operation = MagicMock(side_effect=TimeoutError())
        with self.assertRaises(PermissionError):
            self.handler.retry_operation(operation, before_attempt=refuse_after_first)
        self.assertEqual(operation.call_count, 1)

    def test_no_retries_by_default(self):
        handler = ErrorHandler(sleep=self.sleeps.append)
        operation = MagicMock(side_effect=TimeoutError())
        with self.assertRaises(TimeoutError):
            handler.retry_operation(operation)
        self.assertEqual(operation.call_count, 1)

    def test_reset(self):
        self.handler.handle_error(ValueError(), {})
        self.handler.reset()
        self.assertEqual(self.handler.get_error_summary()["total_errors"], 0)
        self.assertIsNone(self.handler.get_error_summary()["latest_error"])


if __name__ == "__main__":
    unittest.main()
