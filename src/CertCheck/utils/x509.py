import logging
import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtensionOID, NameOID
from dataclasses import dataclass
from datetime import datetime
from OpenSSL import crypto
from typing import Optional

from CertCheck.utils.errors import ParseError
from CertCheck.utils.misc import format_openssl_date, request_timeout

PEM_MARKER = b"-----BEGIN CERTIFICATE-----"

@dataclass(frozen=True)
class CertificateAttributes:
    """Normalized view of the leaf certificate; derived once per run and never modified."""
    pem: bytes
    not_before: datetime
    not_after: datetime
    subject: str
    subject_cn: Optional[str]
    issuer: str
    issuer_cn: Optional[str]
    issuer_org: Optional[str]
    serial: str
    ocsp_uri: Optional[str]
    issuer_cert_uri: Optional[str]
    signature_algorithm: str
    alt_names: tuple[str, ...]
    organization: Optional[str]
    email: Optional[str]
    modulus: Optional[str]
    subject_hash: str
    fingerprint: str

    @property
    def weak_signature(self) -> Optional[str]:
        return classify_signature_algorithm(self.signature_algorithm)

    @property
    def has_weak_signature(self) -> bool:
        return self.weak_signature is not None

    @property
    def is_self_issued(self) -> bool:
        return self.subject == self.issuer

    def long_output_value(self, attribute: str) -> str:
        match attribute:
            case "startdate":
                return format_openssl_date(self.not_before)
            case "enddate":
                return format_openssl_date(self.not_after)
            case "subject":
                return self.subject
            case "issuer":
                return self.issuer
            case "serial":
                return self.serial
            case "modulus":
                return self.modulus or "Wrong Algorithm type"
            case "hash":
                return self.subject_hash
            case "email":
                return self.email or ""
            case "ocsp_uri":
                return self.ocsp_uri or ""
            case "fingerprint":
                return self.fingerprint
        raise KeyError(attribute)

def classify_signature_algorithm(name: str) -> Optional[str]:
    """
    Return 'SHA-1' or 'MD5' when the signature algorithm name denotes a weak digest, else None.

    'sha1' is matched case-sensitively (OpenSSL names such as 'sha1WithRSAEncryption'); 'md5' in any case.
    """
    if not name:
        return None
    if "sha1" in name:
        return "SHA-1"
    if "md5" in name.lower():
        return "MD5"
    return None

def _first_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> Optional[str]:
    attrs = name.get_attributes_for_oid(oid)
    return attrs[0].value if attrs else None

def get_extension_value(cert, oid, attr=None):
    """Safely extract extension value, optionally accessing a nested attribute."""
    try:
        ext = cert.extensions.get_extension_for_oid(oid).value
        return getattr(ext, attr) if attr else ext
    except x509.ExtensionNotFound:
        return None

def get_aia_urls(cert: x509.Certificate, access_method: x509.ObjectIdentifier) -> list[str]:
    """Extract URLs of one access method (OCSP or CA Issuers) from the Authority Information Access extension."""
    aia = get_extension_value(cert, ExtensionOID.AUTHORITY_INFORMATION_ACCESS)
    if aia is None:
        return []
    return [
        desc.access_location.value
        for desc in aia
        if desc.access_method == access_method and isinstance(desc.access_location, x509.UniformResourceIdentifier)
    ]

def get_alt_names(cert: x509.Certificate) -> tuple[str, ...]:
    """DNS names and IP addresses from the SubjectAlternativeName extension, in certificate order."""
    san = get_extension_value(cert, ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    if san is None:
        return ()
    names = []
    for general_name in san:
        if isinstance(general_name, x509.DNSName):
            names.append(general_name.value)
        elif isinstance(general_name, x509.IPAddress):
            names.append(str(general_name.value))
    return tuple(names)

def get_emails(cert: x509.Certificate) -> list[str]:
    """Subject emailAddress attributes followed by rfc822Name SubjectAlternativeName entries."""
    emails = [attr.value for attr in cert.subject.get_attributes_for_oid(NameOID.EMAIL_ADDRESS)]
    san = get_extension_value(cert, ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    if san is not None:
        emails.extend(email for email in san.get_values_for_type(x509.RFC822Name) if email not in emails)
    return emails

def format_serial(serial_number: int) -> str:
    """Upper-case hex, zero-padded to an even number of digits, as printed by `openssl x509 -serial`."""
    serial = f'{serial_number:X}'
    if len(serial) % 2:
        serial = '0' + serial
    return serial

def format_fingerprint(cert: x509.Certificate) -> str:
    return ":".join(f'{b:02X}' for b in cert.fingerprint(hashes.SHA1()))

def get_subject_hash(cert: x509.Certificate) -> str:
    """OpenSSL subject name hash (the value used for c_rehash style trust directories)."""
    return f'{crypto.X509.from_cryptography(cert).subject_name_hash():08x}'

def get_modulus(cert: x509.Certificate) -> Optional[str]:
    public_key = cert.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        return None
    return f'{public_key.public_numbers().n:X}'

def get_signature_algorithm_name(cert: x509.Certificate) -> str:
    oid = cert.signature_algorithm_oid
    return getattr(oid, "_name", None) or oid.dotted_string

def load_certificates(data: bytes) -> list[x509.Certificate]:
    """Parse every PEM certificate block in data, leaf first."""
    if PEM_MARKER not in data:
        raise ParseError("No certificate returned")
    try:
        return x509.load_pem_x509_certificates(data)
    except ValueError as e:
        raise ParseError(f"Cannot parse certificate: {e}") from e

def parse_certificate(data: bytes) -> CertificateAttributes:
    """
    Parse the first certificate in a PEM byte stream into a CertificateAttributes record.

    Args:
        data:   PEM bytes as produced by the retrieval stage (leaf first).

    Returns:
        CertificateAttributes for the leaf certificate.

    Raises:
        ParseError if no certificate marker is present or the certificate cannot be decoded.
    """
    logging.debug("-----------------------------------Entering parse_certificate()-----------------------------------")
    cert = load_certificates(data)[0]

    ocsp_uris = get_aia_urls(cert, AuthorityInformationAccessOID.OCSP)
    issuer_uris = get_aia_urls(cert, AuthorityInformationAccessOID.CA_ISSUERS)
    emails = get_emails(cert)

    attributes = CertificateAttributes(
        pem                 = cert.public_bytes(serialization.Encoding.PEM),
        not_before          = cert.not_valid_before_utc,
        not_after           = cert.not_valid_after_utc,
        subject             = cert.subject.rfc4514_string(),
        subject_cn          = _first_attribute(cert.subject, NameOID.COMMON_NAME),
        issuer              = cert.issuer.rfc4514_string(),
        issuer_cn           = _first_attribute(cert.issuer, NameOID.COMMON_NAME),
        issuer_org          = _first_attribute(cert.issuer, NameOID.ORGANIZATION_NAME),
        serial              = format_serial(cert.serial_number),
        ocsp_uri            = ocsp_uris[0] if ocsp_uris else None,
        issuer_cert_uri     = issuer_uris[0] if issuer_uris else None,
        signature_algorithm = get_signature_algorithm_name(cert),
        alt_names           = get_alt_names(cert),
        organization        = _first_attribute(cert.subject, NameOID.ORGANIZATION_NAME),
        email               = " ".join(emails) if emails else None,
        modulus             = get_modulus(cert),
        subject_hash        = get_subject_hash(cert),
        fingerprint         = format_fingerprint(cert),
    )

    logging.info(f'Subject:             {attributes.subject}')
    logging.info(f'Issuer:              {attributes.issuer}')
    logging.info(f'Serial number (hex): {attributes.serial}')
    logging.info(f'Not valid after UTC: {attributes.not_after}')
    logging.info(f'Signature Algorithm: {attributes.signature_algorithm}')
    logging.debug(f'SubAltName(s):       {", ".join(attributes.alt_names)}')
    return attributes

def load_issuer_bytes(fetched_file: bytes, cert: x509.Certificate) -> Optional[x509.Certificate]:
    """Decode a downloaded issuer certificate in PEM, DER or PKCS#7 form."""
    is_pem = fetched_file.strip().startswith(b"-----BEGIN")

    # Try loading single cert first
    try:
        if is_pem:
            return x509.load_pem_x509_certificate(fetched_file)
        return x509.load_der_x509_certificate(fetched_file)
    except ValueError:
        pass

    # Try to load as PKCS#7 bundled certificates
    logging.info('Attempting to extract issuer cert from PKCS#7 bundle.')
    try:
        if is_pem:
            pkcs7_certs = pkcs7.load_pem_pkcs7_certificates(fetched_file)
        else:
            pkcs7_certs = pkcs7.load_der_pkcs7_certificates(fetched_file)
    except ValueError:
        logging.error("Downloaded issuer data is neither a certificate nor a PKCS#7 bundle.")
        return None

    for c in pkcs7_certs:
        if c.subject == cert.issuer:
            return c
    logging.error("No matching issuer certificate found in PKCS#7 bundle.")
    return None

def fetch_issuer_certificate(cert: x509.Certificate, timeout: float = 10) -> Optional[x509.Certificate]:
    """
    Download the issuer certificate named by the AIA CA Issuers URL (if present).
    Supports DER, PEM, and PKCS#7 (.p7b/.p7c) encoded responses.
    Returns None if no issuer cert is present or downloadable.
    """
    logging.debug("-----------------------------------Entering fetch_issuer_certificate()----------------------------")

    ca_issuer_urls = get_aia_urls(cert, AuthorityInformationAccessOID.CA_ISSUERS)
    logging.debug(f'Extracted AIA value(s) from certificate as: {ca_issuer_urls} ')

    for url in ca_issuer_urls:
        logging.info(f"Attempting to download Issuing CA certificate from: {url}")
        try:
            response = requests.get(url, timeout=request_timeout(timeout))
            response.raise_for_status()
        except requests.RequestException as e:
            logging.error(f"Failed to download Issuing CA certificate: {e}")
            continue

        issuer = load_issuer_bytes(response.content, cert)
        if issuer is not None:
            return issuer

    return None
