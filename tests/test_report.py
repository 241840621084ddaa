"""
Unit tests for the status line composer.
"""
import unittest

from CertCheck.config.certcheck_config import EvaluationResult, Finding, ValidationConfig
from CertCheck.report import compose_status_line
from CertCheck.utils.errors import ErrorLevel

THRESHOLDS = ValidationConfig(critical_days=15, warning_days=20)


class TestComposeStatusLine(unittest.TestCase):

    def setUp(self):
        self.result = EvaluationResult(
            matched_name="www.example.com",
            matched_issuer="Example CA",
            valid_until="Mar  5 12:00:00 2027 GMT",
            days_valid=369,
        )

    def test_ok(self):
        self.assertEqual(
            compose_status_line(self.result, THRESHOLDS),
            "SSL_CERT OK: X.509 certificate 'www.example.com' from 'Example CA' "
            "valid until Mar  5 12:00:00 2027 GMT (expires in 369 days)|days=369;20;15;;",
        )

    def test_ok_annotations_in_order(self):
        result = self.result.update(self_signed=True, grade="A+", days_valid=1)
        self.assertEqual(
            compose_status_line(result, THRESHOLDS, name="web"),
            "SSL_CERT OK web: X.509 self signed certificate 'www.example.com' from 'Example CA' "
            "valid until Mar  5 12:00:00 2027 GMT (expires tomorrow), SSL Labs grade: A+|days=1;20;15;;",
        )

    def test_warnings_are_joined(self):
        result = self.result.record(Finding(ErrorLevel.WARN, "expiry_check", "certificate will expire on Mar  5 12:00:00 2027 GMT"))
        result = result.record(Finding(ErrorLevel.WARN, "ssllabs_check", "SSL Labs assessment in progress"))
        self.assertEqual(
            compose_status_line(result, THRESHOLDS),
            "SSL_CERT WARNING: certificate will expire on Mar  5 12:00:00 2027 GMT; SSL Labs assessment in progress|days=369;20;15;;",
        )

    def test_critical_uses_terminal_finding(self):
        result = self.result.record(Finding(ErrorLevel.WARN, "expiry_check", "certificate will expire soon"))
        result = result.record(Finding(ErrorLevel.CRIT, "name_check", "invalid CN ('a' does not match 'b')"))
        self.assertEqual(
            compose_status_line(result, THRESHOLDS),
            "SSL_CERT CRITICAL: invalid CN ('a' does not match 'b')|days=369;20;15;;",
        )

    def test_no_performance_data_without_day_count(self):
        result = EvaluationResult().record(Finding(ErrorLevel.UNKNOWN, "ConfigurationError", "--host is required"))
        self.assertEqual(compose_status_line(result), "SSL_CERT UNKNOWN: --host is required")

    def test_empty_thresholds(self):
        line = compose_status_line(self.result, ValidationConfig())
        self.assertTrue(line.endswith("|days=369;;;;"))

    def test_long_output_lines(self):
        result = self.result.update(long_output=(("serial", "0A1B2C"), ("email", "")))
        lines = compose_status_line(result, THRESHOLDS).split("\n")
        self.assertEqual(lines[1:], ["serial: 0A1B2C", "email: "])


if __name__ == '__main__':
    unittest.main()
