"""
Unit tests for the SSL Labs grade converter.
"""
import unittest

from CertCheck.checks.grade_converter import SSL_LABS_GRADES, convert_grade
from CertCheck.utils.errors import ErrorLevel, ParseError


class TestConvertGrade(unittest.TestCase):

    def test_grades_are_strictly_ordered(self):
        ordered = ["A+", "A", "A-", "B", "C", "D", "E", "F"]
        scores = [convert_grade(grade) for grade in ordered]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertEqual(len(set(scores)), len(scores))

    def test_bottom_grades_rank_together(self):
        self.assertEqual(convert_grade("F"), convert_grade("T"))
        self.assertEqual(convert_grade("T"), convert_grade("M"))
        self.assertTrue(all(convert_grade(g) <= 0 for g in ("F", "T", "M")))

    def test_input_is_normalized(self):
        self.assertEqual(convert_grade(" a+ "), SSL_LABS_GRADES["A+"])
        self.assertEqual(convert_grade("b"), 80)

    def test_unknown_grade_is_unknown_level(self):
        for grade in ("Z", "A++", "", None):
            with self.subTest(grade=grade):
                with self.assertRaises(ParseError) as cm:
                    convert_grade(grade)
                self.assertEqual(cm.exception.level, ErrorLevel.UNKNOWN)
                self.assertIn("Cannot convert SSL Labs grade", cm.exception.message)


if __name__ == '__main__':
    unittest.main()
