"""
Unit tests for the bounded-time execution helper.
"""
import threading
import unittest

from CertCheck.utils.deadline import TimeoutMode, run_with_deadline
from CertCheck.utils.errors import DeadlineExceeded, TransportError


class TestRunWithDeadline(unittest.TestCase):

    def setUp(self):
        self.release = threading.Event()

    def tearDown(self):
        self.release.set()

    def test_returns_value(self):
        self.assertEqual(run_with_deadline(lambda a, b=0: a + b, 5, 2, b=3), 5)

    def test_propagates_operation_error(self):
        def failing():
            raise TransportError("Cannot connect")

        with self.assertRaises(TransportError) as cm:
            run_with_deadline(failing, 5)
        self.assertNotIsInstance(cm.exception, DeadlineExceeded)

    def test_times_out(self):
        with self.assertRaises(DeadlineExceeded) as cm:
            run_with_deadline(self.release.wait, 0.05, 5)
        self.assertEqual(cm.exception.message, "Timeout after 0.05 seconds")

    def test_disabled_mode_runs_inline(self):
        caller = threading.current_thread()
        self.assertIs(run_with_deadline(threading.current_thread, 0), caller)
        with self.assertLogs(level="WARNING") as logs:
            run_with_deadline(lambda: None, None)
        self.assertIn("without a deadline", logs.output[0])

    def test_mode_selection(self):
        self.assertEqual(TimeoutMode.for_timeout(0), TimeoutMode.DISABLED)
        self.assertEqual(TimeoutMode.for_timeout(None), TimeoutMode.DISABLED)
        self.assertEqual(TimeoutMode.for_timeout(1.5), TimeoutMode.ENFORCED)


if __name__ == '__main__':
    unittest.main()
