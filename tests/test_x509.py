"""
Unit tests for certificate normalization.
"""
import unittest
from dataclasses import replace
from datetime import timedelta
from unittest.mock import Mock, patch

import requests
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7

from CertCheck.utils.errors import ParseError
from CertCheck.utils.x509 import (
    classify_signature_algorithm,
    fetch_issuer_certificate,
    format_serial,
    load_certificates,
    load_issuer_bytes,
    parse_certificate,
)
from tests.cert_factory import NOW, make_ca, make_certificate, make_leaf, to_der, to_pem


class TestParseCertificate(unittest.TestCase):

    def setUp(self):
        self.ca_cert, _ = make_ca()
        self.leaf = make_leaf(
            cn="www.example.com",
            org="Example Inc",
            email="admin@example.com",
            alt_names=("www.example.com", "example.com", "192.0.2.10"),
            ocsp_uri="http://ocsp.example.com",
            ca_issuers_uri="http://ca.example.com/ca.der",
            not_after=NOW + timedelta(days=90),
        )
        self.attributes = parse_certificate(to_pem(self.leaf, self.ca_cert))

    def test_names(self):
        attrs = self.attributes
        self.assertEqual(attrs.subject_cn, "www.example.com")
        self.assertEqual(attrs.organization, "Example Inc")
        self.assertEqual(attrs.email, "admin@example.com")
        self.assertEqual(attrs.issuer_cn, "Example CA")
        self.assertEqual(attrs.issuer_org, "Example Trust")
        self.assertIn("CN=www.example.com", attrs.subject)
        self.assertFalse(attrs.is_self_issued)

    def test_alt_names_keep_certificate_order(self):
        self.assertEqual(self.attributes.alt_names, ("www.example.com", "example.com", "192.0.2.10"))

    def test_access_information(self):
        self.assertEqual(self.attributes.ocsp_uri, "http://ocsp.example.com")
        self.assertEqual(self.attributes.issuer_cert_uri, "http://ca.example.com/ca.der")

    def test_leaf_only_pem(self):
        self.assertEqual(self.attributes.pem, to_pem(self.leaf))

    def test_dates_and_serial(self):
        self.assertEqual(self.attributes.not_after, NOW + timedelta(days=90))
        self.assertEqual(self.attributes.serial, "0A1B2C")

    def test_signature_algorithm(self):
        self.assertEqual(self.attributes.signature_algorithm, "sha256WithRSAEncryption")
        self.assertFalse(self.attributes.has_weak_signature)
        weak = replace(self.attributes, signature_algorithm="sha1WithRSAEncryption")
        self.assertEqual(weak.weak_signature, "SHA-1")

    def test_long_output_values(self):
        attrs = self.attributes
        self.assertEqual(attrs.long_output_value("enddate"), "May 30 12:00:00 2026 GMT")
        self.assertEqual(attrs.long_output_value("serial"), "0A1B2C")
        self.assertEqual(attrs.long_output_value("ocsp_uri"), "http://ocsp.example.com")
        self.assertRegex(attrs.long_output_value("hash"), r"^[0-9a-f]{8}$")
        self.assertRegex(attrs.long_output_value("fingerprint"), r"^([0-9A-F]{2}:){19}[0-9A-F]{2}$")
        self.assertRegex(attrs.long_output_value("modulus"), r"^[0-9A-F]+$")
        with self.assertRaises(KeyError):
            attrs.long_output_value("bogus")

    def test_missing_optional_fields(self):
        attrs = parse_certificate(to_pem(make_certificate(cn="plain.example.com")))
        self.assertIsNone(attrs.organization)
        self.assertIsNone(attrs.email)
        self.assertIsNone(attrs.ocsp_uri)
        self.assertEqual(attrs.alt_names, ())
        self.assertTrue(attrs.is_self_issued)
        self.assertEqual(attrs.long_output_value("email"), "")


class TestHelpers(unittest.TestCase):

    def test_classify_signature_algorithm(self):
        cases = {
            "sha1WithRSAEncryption": "SHA-1",
            "ecdsa-with-SHA1": None,
            "md5WithRSAEncryption": "MD5",
            "MD5": "MD5",
            "sha256WithRSAEncryption": None,
            "": None,
        }
        for name, expected in cases.items():
            with self.subTest(name=name):
                self.assertEqual(classify_signature_algorithm(name), expected)

    def test_format_serial(self):
        self.assertEqual(format_serial(0xABC), "0ABC")
        self.assertEqual(format_serial(0x1234), "1234")
        self.assertEqual(format_serial(0), "00")

    def test_load_certificates_errors(self):
        with self.assertRaises(ParseError) as cm:
            load_certificates(b"garbage")
        self.assertEqual(cm.exception.message, "No certificate returned")

        with self.assertRaises(ParseError) as cm:
            load_certificates(b"-----BEGIN CERTIFICATE-----\nnot base64\n-----END CERTIFICATE-----\n")
        self.assertIn("Cannot parse certificate", cm.exception.message)


class TestIssuerDownload(unittest.TestCase):

    def setUp(self):
        self.ca_cert, _ = make_ca()
        self.leaf = make_leaf(ca_issuers_uri="http://ca.example.com/ca.der")

    def test_der_pem_and_pkcs7(self):
        bundle = pkcs7.serialize_certificates([self.ca_cert], Encoding.DER)
        for label, data in (("der", to_der(self.ca_cert)), ("pem", to_pem(self.ca_cert)), ("p7", bundle)):
            with self.subTest(encoding=label):
                self.assertEqual(load_issuer_bytes(data, self.leaf), self.ca_cert)

    def test_garbage_is_none(self):
        self.assertIsNone(load_issuer_bytes(b"\x00\x01garbage", self.leaf))

    @patch("CertCheck.utils.x509.requests.get")
    def test_fetch_issuer_certificate(self, mock_get):
        mock_get.return_value = Mock(content=to_der(self.ca_cert), raise_for_status=Mock())
        self.assertEqual(fetch_issuer_certificate(self.leaf, timeout=3), self.ca_cert)
        mock_get.assert_called_once_with("http://ca.example.com/ca.der", timeout=3)

    @patch("CertCheck.utils.x509.requests.get")
    def test_fetch_issuer_certificate_without_timeout(self, mock_get):
        mock_get.return_value = Mock(content=to_der(self.ca_cert), raise_for_status=Mock())
        self.assertEqual(fetch_issuer_certificate(self.leaf, timeout=0), self.ca_cert)
        mock_get.assert_called_once_with("http://ca.example.com/ca.der", timeout=None)

    @patch("CertCheck.utils.x509.requests.get")
    def test_fetch_issuer_certificate_failure(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("refused")
        self.assertIsNone(fetch_issuer_certificate(self.leaf))

    def test_no_aia(self):
        self.assertIsNone(fetch_issuer_certificate(make_leaf()))


if __name__ == '__main__':
    unittest.main()
