import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Tuple

from CertCheck.checks.grade_converter import convert_grade
from CertCheck.checks.retrieval_logic import EXPIRED_CODE, RetrievalResult
from CertCheck.checks.revocation_logic import GOOD, REVOKED, get_issuer_certificate, query_ocsp
from CertCheck.checks.ssllabs_logic import fetch_assessment
from CertCheck.config.certcheck_config import (
    DEFAULT_TIMEOUT,
    LONG_OUTPUT_ATTRIBUTES,
    EvaluationResult,
    Finding,
    ValidationConfig,
)
from CertCheck.utils.errors import CertCheckError, ErrorLevel
from CertCheck.utils.matchers import get_matcher
from CertCheck.utils.misc import days_until, format_openssl_date, func_name
from CertCheck.utils.x509 import CertificateAttributes, load_certificates

@dataclass(frozen=True)
class CheckContext:
    """Read-only inputs shared by every check."""
    cert: CertificateAttributes
    retrieval: RetrievalResult
    config: ValidationConfig
    host: str
    now: datetime
    timeout: float = DEFAULT_TIMEOUT

CheckResult = Tuple[ErrorLevel, EvaluationResult]

def signature_algorithm_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    """Reject certificates signed with SHA-1 or MD5 unless weak signatures are explicitly tolerated."""
    logging.debug("-----------------------------------Entering signature_algorithm_check()---------------------------")
    cert = context.cert
    if not cert.has_weak_signature:
        return ErrorLevel.NONE, result

    if not context.config.reject_weak_signature:
        logging.warning(f'Certificate is signed with {cert.weak_signature} ({cert.signature_algorithm}); ignored per configuration.')
        return ErrorLevel.NONE, result

    logging.error(f'Weak signature algorithm: {cert.signature_algorithm}')
    return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), f'Certificate is signed with {cert.weak_signature}'))

def long_output_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    """Collect the requested attribute values for the long output; these are reported, never judged."""
    logging.debug("-----------------------------------Entering long_output_check()-----------------------------------")
    collected = []
    for attribute in context.config.long_output:
        if attribute not in LONG_OUTPUT_ATTRIBUTES:
            logging.error(f"Invalid certificate attribute requested for long output: {attribute}")
            return ErrorLevel.UNKNOWN, result.record(Finding(ErrorLevel.UNKNOWN, func_name(), f'Invalid certificate attribute: {attribute}'))
        collected.append((attribute, context.cert.long_output_value(attribute)))
    return ErrorLevel.NONE, result.update(long_output=tuple(collected))

def expiry_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    """Check the validity window against the expiry and the critical/warning day thresholds."""
    logging.debug("-----------------------------------Entering expiry_check()----------------------------------------")
    config = context.config
    not_after = context.cert.not_after
    valid_until = format_openssl_date(not_after)
    days = days_until(not_after, context.now)
    logging.info(f'Certificate valid until {valid_until} ({days} days)')
    result = result.update(valid_until=valid_until, days_valid=days)

    if config.ignore_expiration:
        logging.warning('Skipping expiration checks per configuration.')
        return ErrorLevel.NONE, result

    if not_after < context.now:
        logging.error(f'Certificate expired on {valid_until}')
        return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), 'certificate is expired'))

    if config.critical_days is not None and not_after < context.now + timedelta(days=config.critical_days):
        logging.error(f'Certificate expires within {config.critical_days} days')
        return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), f'certificate will expire on {valid_until}'))

    if config.warning_days is not None and not_after < context.now + timedelta(days=config.warning_days):
        logging.warning(f'Certificate expires within {config.warning_days} days')
        return ErrorLevel.WARN, result.record(Finding(ErrorLevel.WARN, func_name(), f'certificate will expire on {valid_until}'))

    return ErrorLevel.NONE, result

def name_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    """The configured name must match the subject CN or, when enabled, one SubAltName entry."""
    logging.debug("-----------------------------------Entering name_check()------------------------------------------")
    cert = context.cert
    expected = context.config.common_name
    if not expected:
        return ErrorLevel.NONE, result.update(matched_name=cert.subject_cn)

    matcher = get_matcher(context.config.match_mode)
    candidates = [cert.subject_cn]
    if context.config.match_altnames:
        candidates.extend(cert.alt_names)
    logging.debug(f'Matching {expected} ({matcher.mode}) against: {candidates}')

    if matcher.match_any(expected, candidates):
        return ErrorLevel.NONE, result.update(matched_name=expected)

    logging.error(f'Certificate not valid for {expected}.')
    violation = f"invalid CN ('{cert.subject_cn or ''}' does not match '{expected}')"
    return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), violation))

def issuer_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    """The configured issuer must equal the issuer's O or CN attribute."""
    logging.debug("-----------------------------------Entering issuer_check()----------------------------------------")
    cert = context.cert
    expected = context.config.issuer
    if not expected:
        return ErrorLevel.NONE, result.update(matched_issuer=cert.issuer_cn)

    if expected in (cert.issuer_org, cert.issuer_cn):
        return ErrorLevel.NONE, result.update(matched_issuer=expected)

    actual = cert.issuer_org or cert.issuer_cn or cert.issuer
    logging.error(f'Issuer mismatch: {actual}')
    violation = f"invalid CA ('{expected}' does not match '{actual}')"
    return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), violation))

def serial_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    logging.debug("-----------------------------------Entering serial_check()----------------------------------------")
    expected = context.config.serial
    if not expected or expected == context.cert.serial:
        return ErrorLevel.NONE, result

    violation = f"invalid serial number ('{expected}' does not match '{context.cert.serial}')"
    return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), violation))

def organization_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    logging.debug("-----------------------------------Entering organization_check()----------------------------------")
    expected = context.config.organization
    actual = context.cert.organization
    if not expected or (actual and actual.startswith(expected)):
        return ErrorLevel.NONE, result

    violation = f"invalid organization ('{expected}' does not match '{actual or ''}')"
    return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), violation))

def email_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    logging.debug("-----------------------------------Entering email_check()-----------------------------------------")
    expected = context.config.email
    actual = context.cert.email
    if not expected or (actual and actual.startswith(expected)):
        return ErrorLevel.NONE, result

    violation = f"invalid email ('{expected}' does not match '{actual or ''}')"
    return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), violation))

def trust_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    """Turn the chain verification faults collected during the handshake into a verdict."""
    logging.debug("-----------------------------------Entering trust_check()-----------------------------------------")
    config = context.config
    if not config.check_authority:
        logging.warning('Skipping certificate authority verification per configuration.')
        return ErrorLevel.NONE, result

    errors = list(context.retrieval.verify_errors)
    if config.ignore_expiration:
        errors = [error for error in errors if error.code != EXPIRED_CODE]
    if not errors:
        return ErrorLevel.NONE, result

    self_signed = any(error.self_signed for error in errors)
    if self_signed and not config.allow_self_signed:
        return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), 'Cannot verify certificate: self signed certificate'))

    # Only the self-signed faults are excused; anything else still fails the chain.
    errors = [error for error in errors if not error.self_signed]
    if not errors:
        logging.info('Self-signed certificate accepted per configuration.')
        return ErrorLevel.NONE, result.update(self_signed=True)

    details = "; ".join(f'verification error: {error.message}' for error in errors)
    logging.error(f'Chain verification failed: {details}')
    return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), f'Cannot verify certificate: {details}'))

def ssllabs_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    """Compare the SSL Labs grade of the host against the configured minimum grade."""
    logging.debug("-----------------------------------Entering ssllabs_check()---------------------------------------")
    config = context.config
    if config.grade_threshold is None:
        return ErrorLevel.NONE, result

    assessment = fetch_assessment(context.host, config.ignore_grade_cache, context.timeout)
    message = assessment.status_message or ''

    match assessment.status:
        case "READY":
            if assessment.grade is None:
                violation = f'No SSL Labs grade available for {context.host}'
                return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), violation))
            if convert_grade(assessment.grade) < convert_grade(config.grade_threshold):
                violation = f'{context.host} has an SSL Labs grade of {assessment.grade} instead of {config.grade_threshold}'
                return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), violation))
            return ErrorLevel.NONE, result.update(grade=assessment.grade)
        case "IN_PROGRESS":
            logging.warning(f'SSL Labs assessment of {context.host} still in progress.')
            return ErrorLevel.WARN, result.record(Finding(ErrorLevel.WARN, func_name(), 'SSL Labs assessment in progress'))
        case "ERROR":
            return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), f'Error checking SSL Labs: {message}'.rstrip(': ')))
        case "DNS":
            return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), f'SSL Labs cannot resolve {context.host}'))
        case _:
            return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), f"Unknown SSL Labs status '{assessment.status}'"))

def revocation_check(context: CheckContext, result: EvaluationResult) -> CheckResult:
    """Ask the certificate's OCSP responder whether it has been revoked."""
    logging.debug("-----------------------------------Entering revocation_check()------------------------------------")
    if not context.config.check_revocation:
        return ErrorLevel.NONE, result

    if not context.cert.ocsp_uri:
        logging.warning('Certificate has no OCSP URI; skipping revocation check.')
        return ErrorLevel.NONE, result

    leaf = load_certificates(context.cert.pem)[0]
    issuer = get_issuer_certificate(leaf, context.retrieval.pem, context.timeout)
    if issuer is None:
        violation = 'Cannot fetch the issuer certificate to check revocation'
        return ErrorLevel.WARN, result.record(Finding(ErrorLevel.WARN, func_name(), violation))

    ocsp_result = query_ocsp(leaf, issuer, context.cert.ocsp_uri, context.timeout)
    if ocsp_result.status == REVOKED:
        violation = f'certificate is revoked ({ocsp_result.reason})'
        return ErrorLevel.CRIT, result.record(Finding(ErrorLevel.CRIT, func_name(), violation))
    if ocsp_result.status != GOOD:
        return ErrorLevel.WARN, result.record(Finding(ErrorLevel.WARN, func_name(), f'OCSP: {ocsp_result.text}'))
    return ErrorLevel.NONE, result

CHECKS: list[Callable[[CheckContext, EvaluationResult], CheckResult]] = [
    signature_algorithm_check,
    long_output_check,
    expiry_check,
    name_check,
    issuer_check,
    serial_check,
    organization_check,
    email_check,
    trust_check,
    ssllabs_check,
    revocation_check,
]

def run_checks(context: CheckContext, checks=None) -> EvaluationResult:
    """
    Run the checks in order and stop at the first CRITICAL or UNKNOWN outcome.

    Warnings are recorded and evaluation continues; the final status is the most severe recorded level.
    """
    my_checks = checks or CHECKS
    result = EvaluationResult()
    for check in my_checks:
        try:
            level, result = check(context, result)
        except CertCheckError as e:
            level = e.level
            result = result.record(Finding(level, check.__name__, e.message))

        if level.is_terminal:
            logging.error(f'{check.__name__} ended evaluation with {level.label}.')
            break

    logging.info(f'-----------------------------------END verification for {context.host}: {result.status.label}-----------------------------')
    return result
