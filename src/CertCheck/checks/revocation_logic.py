import logging
import requests
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, ed448, padding, rsa
from cryptography.x509 import ocsp, ExtendedKeyUsageOID
from cryptography.x509.oid import ExtensionOID
from dataclasses import dataclass
from requests.exceptions import RequestException
from typing import Optional

from CertCheck.utils.misc import request_timeout
from CertCheck.utils.x509 import fetch_issuer_certificate, get_extension_value, load_certificates

GOOD    = "good"
REVOKED = "revoked"
UNKNOWN = "unknown"

@dataclass(frozen=True)
class OCSPResult:
    status: str
    text: str
    reason: Optional[str] = None

def get_issuer_certificate(cert: x509.Certificate, presented_pem: bytes, timeout: float = 10) -> Optional[x509.Certificate]:
    """
    Issuer certificate for revocation checking: downloaded from the AIA CA Issuers URL, or taken from the
    presented chain when the certificate carries no usable URL.
    """
    logging.debug("-----------------------------------Entering get_issuer_certificate()------------------------------")
    issuer = fetch_issuer_certificate(cert, timeout)
    if issuer is not None:
        return issuer

    for candidate in load_certificates(presented_pem)[1:]:
        if candidate.subject == cert.issuer:
            logging.info(f'Using issuer certificate from presented chain: {candidate.subject.rfc4514_string()}')
            return candidate
    return None

def query_ocsp(cert: x509.Certificate, issuer_cert: x509.Certificate, url: str, timeout: float = 10) -> OCSPResult:
    """
    Ask the OCSP responder at url about cert.

    Returns:
        OCSPResult with status GOOD or REVOKED when the responder gave a verified answer, otherwise UNKNOWN
        with the responder's (or transport's) text.
    """
    logging.debug("-----------------------------------Entering query_ocsp()------------------------------------------")
    builder = ocsp.OCSPRequestBuilder()
    builder = builder.add_certificate(cert, issuer_cert, hashes.SHA1())
    req_data = builder.build().public_bytes(serialization.Encoding.DER)

    headers = {
        'Content-Type': 'application/ocsp-request',
        'Accept': 'application/ocsp-response'
    }

    logging.debug(f'Querying OCSP server {url} for cert serial number {cert.serial_number}')
    try:
        response = requests.post(url, data=req_data, headers=headers, timeout=request_timeout(timeout))
    except RequestException as e:
        logging.error(f'Exception encountered querying OCSP responder {url}: {e}')
        return OCSPResult(UNKNOWN, f"Error querying OCSP responder {url}: {e}")

    if response.status_code != 200:
        error_msg = f'Received HTTP response code {response.status_code} querying OCSP responder {url}'
        logging.error(error_msg)
        return OCSPResult(UNKNOWN, error_msg)

    return check_ocsp_response(cert, issuer_cert, response.content)

def check_ocsp_response(cert: x509.Certificate, issuer_cert: x509.Certificate, ocsp_response_bytes: bytes) -> OCSPResult:
    """Parse and verify a DER OCSP response and extract the status for cert."""
    logging.debug("-----------------------------------Entering check_ocsp_response()---------------------------------")

    try:
        ocsp_resp = ocsp.load_der_ocsp_response(ocsp_response_bytes)
    except ValueError as e:
        exception_msg = f"Error parsing OCSP response: {e}"
        logging.error(exception_msg)
        return OCSPResult(UNKNOWN, exception_msg)

    if ocsp_resp.response_status != ocsp.OCSPResponseStatus.SUCCESSFUL:
        error_msg = f"OCSP responder answered {ocsp_resp.response_status.name}"
        logging.error(error_msg)
        return OCSPResult(UNKNOWN, error_msg)

    matched_single_resp = None
    for single_resp in ocsp_resp.responses:
        if single_resp.serial_number == cert.serial_number:
            logging.debug(f" - Cert Serial Number:  {single_resp.serial_number}")
            logging.debug(f" - Certificate Status:  {single_resp.certificate_status.name}")
            logging.debug(f" - This Update:         {single_resp.this_update_utc}")
            logging.debug(f" - Next Update:         {single_resp.next_update_utc}")
            matched_single_resp = single_resp
            break

    if matched_single_resp is None:
        error_msg = "OCSP response did not contain a SingleResponse for this certificate"
        logging.error(error_msg)
        return OCSPResult(UNKNOWN, error_msg)

    if not validate_ocsp_signature(ocsp_resp, issuer_cert):
        error_msg = "Digital signature verification on OCSP response failed"
        logging.error(error_msg)
        return OCSPResult(UNKNOWN, error_msg)

    cert_status = matched_single_resp.certificate_status
    if cert_status == ocsp.OCSPCertStatus.GOOD:
        logging.info('Certificate OCSP revocation check returned status: GOOD.')
        return OCSPResult(GOOD, "good")
    elif cert_status == ocsp.OCSPCertStatus.REVOKED:
        reason = matched_single_resp.revocation_reason.name if matched_single_resp.revocation_reason else "UNSPECIFIED"
        logging.error(f'Certificate confirmed REVOKED via OCSP check due to: {reason}')
        return OCSPResult(REVOKED, f"revoked ({reason})", reason)
    else:
        error_msg = 'OCSP responder returned status UNKNOWN'
        logging.error(error_msg)
        return OCSPResult(UNKNOWN, error_msg)

def validate_ocsp_signature(ocsp_resp: ocsp.OCSPResponse, issuer_cert: x509.Certificate) -> bool:
    """Validate the OCSP response signature against the issuer or a delegated responder it certified."""
    candidate_responder_certs = []
    for ocsp_cert in ocsp_resp.certificates:
        logging.info(f'Found delegated OCSP Responder cert embedded in OCSP response: {ocsp_cert.subject.rfc4514_string()}')
        try:
            ocsp_cert.verify_directly_issued_by(issuer_cert)
        except (ValueError, TypeError, InvalidSignature) as e:
            logging.debug(f"OCSP responder cert not issued by CA: {e}")
            continue

        # Delegated responders MUST have id-kp-OCSPSigning EKU per RFC6960
        eku = get_extension_value(ocsp_cert, ExtensionOID.EXTENDED_KEY_USAGE)
        if eku is not None and ExtendedKeyUsageOID.OCSP_SIGNING in eku:
            candidate_responder_certs.append(ocsp_cert)
        else:
            logging.warning("OCSP cert issued by CA but missing OCSP_SIGNING EKU - invalid per RFC 6960")

    if not candidate_responder_certs:
        logging.info('No delegated responder cert found; using issuing CA certificate for OCSP signature verification.')
        candidate_responder_certs = [issuer_cert]

    data_to_verify = ocsp_resp.tbs_response_bytes
    signature = ocsp_resp.signature
    signature_hash_algorithm = ocsp_resp.signature_hash_algorithm

    for responder_cert in candidate_responder_certs:
        pubkey = responder_cert.public_key()
        try:
            if isinstance(pubkey, rsa.RSAPublicKey):
                pubkey.verify(signature, data_to_verify, padding.PKCS1v15(), signature_hash_algorithm)
            elif isinstance(pubkey, ec.EllipticCurvePublicKey):
                pubkey.verify(signature, data_to_verify, ec.ECDSA(signature_hash_algorithm))
            elif isinstance(pubkey, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
                pubkey.verify(signature, data_to_verify)
            else:
                logging.error(f"Unsupported public key type: {type(pubkey)}")
                continue
        except InvalidSignature:
            logging.error('Signature could not be verified against the attempted responder public key.')
            continue

        logging.info(f"Verified digital signature on OCSP response; signed by: {responder_cert.subject.rfc4514_string()}")
        return True

    logging.error("Could not verify OCSP response signature against OCSP responder signing certificate(s).")
    return False
