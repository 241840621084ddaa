import inspect
import math
from datetime import datetime
from typing import Optional

SECONDS_PER_DAY = 86400

def func_name() -> str:
    return inspect.currentframe().f_back.f_code.co_name

def get_verify_error_description(code: int) -> str:
    """Returns the OpenSSL description for an X509_V_ERR_* certificate verification error code.

    Args:
        code (int): The verification error code reported by the TLS library's verify callback.

    Returns:
        str: The descriptive string for the given code.
    """
    VERIFY_ERRORS_MAP = {
        2:  "unable to get issuer certificate",
        3:  "unable to get certificate CRL",
        4:  "unable to decrypt certificate's signature",
        6:  "unable to decode issuer public key",
        7:  "certificate signature failure",
        9:  "certificate is not yet valid",
        10: "certificate has expired",
        13: "format error in certificate's notBefore field",
        14: "format error in certificate's notAfter field",
        17: "out of memory",
        18: "self signed certificate",
        19: "self signed certificate in certificate chain",
        20: "unable to get local issuer certificate",
        21: "unable to verify the first certificate",
        22: "certificate chain too long",
        23: "certificate revoked",
        24: "invalid CA certificate",
        25: "path length constraint exceeded",
        26: "unsupported certificate purpose",
        27: "certificate not trusted",
        28: "certificate rejected",
        32: "key usage does not include certificate signing",
        62: "hostname mismatch",
        66: "EE certificate key too weak",
        67: "CA certificate key too weak",
        68: "CA signature digest algorithm too weak",
    }
    return VERIFY_ERRORS_MAP.get(code, f"verification error {code}")

def format_openssl_date(moment: datetime) -> str:
    """Render a UTC timestamp the way `openssl x509 -enddate` does, e.g. 'Mar  5 12:00:00 2027 GMT'."""
    return f'{moment:%b} {moment.day:2d} {moment:%H:%M:%S %Y} GMT'

def days_until(not_after: datetime, now: datetime) -> int:
    """
    Signed number of days between now and not_after, rounded to the nearest integer.

    Exact halves round toward zero, so 36 hours is 1 day and -1 second is 0 days.
    """
    quotient = (not_after - now).total_seconds() / SECONDS_PER_DAY
    magnitude = math.ceil(abs(quotient) - 0.5)
    return int(math.copysign(max(magnitude, 0), quotient))

def format_days(days: int) -> str:
    if days > 1:
        return f'expires in {days} days'
    if days == 1:
        return 'expires tomorrow'
    if days == 0:
        return 'expires today'
    if days == -1:
        return 'expired yesterday'
    return f'expired {abs(days)} days ago'

def request_timeout(timeout: Optional[float]) -> Optional[float]:
    """Timeout for requests calls: 0 (or less) means no limit, which requests spells as None."""
    if timeout is None or timeout <= 0:
        return None
    return timeout
